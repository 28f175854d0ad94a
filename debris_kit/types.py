from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import numpy as np

from .errors import ConfigurationError


@dataclass(frozen=True)
class Box:
    """
    Axis-aligned box in corner form (top-left x/y plus width/height).
    """

    x: float
    y: float
    width: float
    height: float

    @property
    def x_max(self) -> float:
        return self.x + self.width

    @property
    def y_max(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> Tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.x_max, self.y_max


@dataclass(frozen=True)
class Candidate:
    """
    Raw detection emitted by the decoder, before suppression.

    `box` is already in target space. `class_id` is the index into the class
    rows of the model output (attribute index minus 4), or None when no class
    could be scored.
    """

    box: Box
    confidence: float
    class_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "x": self.box.x,
            "y": self.box.y,
            "width": self.box.width,
            "height": self.box.height,
            "confidence": self.confidence,
            "class_id": self.class_id,
        }


@dataclass(frozen=True)
class Detection(Candidate):
    """
    Member of the final, suppressed detection set for one cycle.
    """

    @classmethod
    def from_candidate(cls, cand: Candidate) -> "Detection":
        return cls(box=cand.box, confidence=cand.confidence, class_id=cand.class_id)


@dataclass(frozen=True, eq=False)
class PixelBuffer:
    """
    Immutable RGB frame snapshot.

    `data` holds width*height pixels in row-major scan order, either as an
    (H, W, 3) array or as a flat interleaved RGBRGB... array. The array is
    copied and marked read-only. Values must be 8-bit channel intensities: uint8
    arrays, or integer arrays whose values all lie in 0..255. Float images are
    rejected rather than truncated. Buffers compare by identity.
    """

    width: int
    height: int
    data: np.ndarray

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ConfigurationError(f"Pixel buffer size must be positive, got {self.width}x{self.height}")
        arr = np.asarray(self.data)
        if arr.dtype != np.uint8:
            if not np.issubdtype(arr.dtype, np.integer):
                raise ConfigurationError(f"Pixel data must be 8-bit integer channel values, got dtype {arr.dtype}")
            if arr.size and (arr.min() < 0 or arr.max() > 255):
                raise ConfigurationError(
                    f"Pixel values must lie in 0..255, got range {arr.min()}..{arr.max()} ({arr.dtype})"
                )
        arr = np.array(arr, dtype=np.uint8, copy=True)
        expected = self.width * self.height * 3
        if arr.size != expected:
            raise ConfigurationError(
                f"Pixel buffer holds {arr.size} values, expected {expected} for {self.width}x{self.height} RGB"
            )
        if arr.ndim not in (1, 3) or (arr.ndim == 3 and arr.shape != (self.height, self.width, 3)):
            raise ConfigurationError(
                f"Pixel data must be (H, W, 3) or flat, got shape {arr.shape} for {self.width}x{self.height}"
            )
        arr = arr.reshape(self.height, self.width, 3)
        arr.setflags(write=False)
        object.__setattr__(self, "data", arr)

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @classmethod
    def from_array(cls, image: np.ndarray, *, bgr: bool = False) -> "PixelBuffer":
        """
        Build a buffer from an (H, W, 3) array. Set `bgr=True` for OpenCV frames.
        """

        if image is None or not hasattr(image, "shape"):
            raise TypeError("image must be a NumPy array.")
        if image.ndim != 3 or image.shape[2] != 3:
            raise ConfigurationError(f"Expected image shape (H, W, 3), got {getattr(image, 'shape', None)}")
        if bgr:
            image = image[:, :, ::-1]
        h, w = image.shape[:2]
        return cls(width=int(w), height=int(h), data=image)
