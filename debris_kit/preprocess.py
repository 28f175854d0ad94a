from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from .errors import ConfigurationError
from .types import PixelBuffer


class ScratchBuffer:
    """
    Caller-owned input tensor storage, reused across detection cycles.

    One instance per pipeline; the returned tensor is overwritten on the next
    cycle, so hand it to the engine before preprocessing another frame.
    """

    def __init__(self, input_size: Tuple[int, int]):
        w, h = input_size
        if w <= 0 or h <= 0:
            raise ConfigurationError(f"input_size must be positive, got {input_size}")
        self.input_size = (int(w), int(h))
        self.tensor = np.empty((1, 3, int(h), int(w)), dtype=np.float32)


def to_planar_tensor(
    pixels: PixelBuffer,
    input_size: Tuple[int, int],
    scratch: Optional[ScratchBuffer] = None,
) -> np.ndarray:
    """
    Convert an RGB pixel buffer into the engine's (1, 3, H, W) float32 input.

    Channels become contiguous planes in R, G, B order, each plane row-major in
    pixel-scan order, and every value is byte / 255.0. No mean subtraction or
    other normalisation is applied. `tensor.ravel()` gives the flat
    RRR...GGG...BBB... sequence.

    Resizing is the caller's job: a buffer that is not exactly `input_size`
    (width, height) raises ConfigurationError.
    """

    w, h = input_size
    if pixels.size != (w, h):
        raise ConfigurationError(
            f"Pixel buffer is {pixels.width}x{pixels.height}, model input expects {w}x{h}"
        )

    if scratch is not None:
        if scratch.input_size != (w, h):
            raise ConfigurationError(
                f"Scratch buffer sized {scratch.input_size}, model input expects {(w, h)}"
            )
        out = scratch.tensor
    else:
        out = np.empty((1, 3, h, w), dtype=np.float32)

    # HWC -> CHW
    np.divide(np.transpose(pixels.data, (2, 0, 1)), np.float32(255.0), out=out[0], dtype=np.float32)
    return out
