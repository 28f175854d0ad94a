from typing import Optional, Tuple

import numpy as np

from .errors import ConfigurationError


def scale_factors(target_size: Tuple[int, int], input_size: Tuple[int, int]) -> Tuple[float, float]:
    """
    Factors mapping model-input pixels to target pixels: (target_w / in_w, target_h / in_h).
    """

    tw, th = target_size
    iw, ih = input_size
    if tw <= 0 or th <= 0:
        raise ConfigurationError(f"target_size must be positive, got {target_size}")
    if iw <= 0 or ih <= 0:
        raise ConfigurationError(f"input_size must be positive, got {input_size}")
    return float(tw) / float(iw), float(th) / float(ih)


def fit_to_input(
    image: np.ndarray,
    input_size: Tuple[int, int] = (640, 640),
    interpolation: Optional[int] = None,
):
    """
    Stretch a frame to the model input size (no padding, aspect ratio not kept).

    Returns:
        resized: image resized to `input_size` (width, height)
        scale: (sx, sy) mapping model-input coordinates back onto the original frame
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for fit_to_input(). Install with `pip install opencv-python`.") from e

    if image is None or not hasattr(image, "shape"):
        raise TypeError("image must be a NumPy array.")
    if image.ndim != 3 or image.shape[2] != 3:
        raise ConfigurationError(f"Expected image shape (H, W, 3), got {getattr(image, 'shape', None)}")

    h, w = image.shape[:2]  # (h, w)
    new_w, new_h = input_size
    scale = scale_factors((w, h), (new_w, new_h))

    if (w, h) != (new_w, new_h):
        if interpolation is None:
            interpolation = cv2.INTER_AREA if (w > new_w or h > new_h) else cv2.INTER_LINEAR
        image = cv2.resize(image, (new_w, new_h), interpolation=interpolation)

    return image, scale
