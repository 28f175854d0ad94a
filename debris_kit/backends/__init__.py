"""
Inference engine adapters for debris_kit.

Engines live in a separate module so the core (preprocess/decode/NMS) stays
lightweight and can be used without installing inference runtimes. Each engine
reads its input/output shapes once at construction and exposes a synchronous
`run(tensor) -> ndarray`.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence, Tuple

import numpy as np

from ..errors import EngineError


class InferenceEngine(Protocol):
    input_shape: Tuple[int, int, int, int]
    # Unknown (symbolic) output dims are None.
    output_shape: Tuple[Optional[int], ...]

    @property
    def input_size(self) -> Tuple[int, int]: ...

    def run(self, tensor: np.ndarray) -> np.ndarray: ...


def _is_static(d) -> bool:
    return not isinstance(d, bool) and isinstance(d, (int, np.integer)) and int(d) > 0


def static_input_shape(name: str, dims: Sequence) -> Tuple[int, int, int, int]:
    """
    Validate an NCHW input shape reported by a runtime; symbolic dims are rejected.
    """

    if len(dims) != 4 or not all(_is_static(d) for d in dims):
        raise EngineError(f"Input '{name}' must have a static NCHW shape, got {list(dims)}")
    n, c, h, w = (int(d) for d in dims)
    if n != 1 or c != 3:
        raise EngineError(f"Input '{name}' must be (1, 3, H, W), got {list(dims)}")
    return n, c, h, w


def output_dims(dims: Sequence) -> Tuple[Optional[int], ...]:
    return tuple(int(d) if _is_static(d) else None for d in dims)


__all__ = ["InferenceEngine", "static_input_shape", "output_dims"]
