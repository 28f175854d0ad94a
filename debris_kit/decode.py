from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import check_optional_positive_int, check_unit_interval
from .errors import ConfigurationError, NumericError, ShapeError
from .types import Box, Candidate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecoderConfig:
    conf_threshold: float = 0.5
    # Optional list of class IDs to keep; None keeps all.
    class_ids: Optional[Sequence[int]] = None
    max_candidates: Optional[int] = None

    def __post_init__(self) -> None:
        check_unit_interval("conf_threshold", self.conf_threshold)
        check_optional_positive_int("max_candidates", self.max_candidates)


def _attribute_rows(output: np.ndarray) -> np.ndarray:
    """
    Validate a raw detection tensor and return it as (4 + C, N) float32.
    """

    p = np.asarray(output)
    if p.ndim == 3:
        if p.shape[0] != 1:
            raise ShapeError(f"Batch > 1 is not supported (got shape {p.shape}). Pass one frame at a time.")
        p = p[0]
    if p.ndim != 2:
        raise ShapeError(f"Expected output shape (1, 4 + C, N), got {np.shape(output)}")

    n_attr, n_cand = p.shape
    if n_attr <= 4:
        raise ShapeError(f"Model output has no class rows (shape {np.shape(output)})")
    if n_cand == 0:
        raise ShapeError(f"Model output has no candidate columns (shape {np.shape(output)})")
    return p.astype(np.float32, copy=False)


def _check_scale(scale: Tuple[float, float]) -> Tuple[np.float32, np.float32]:
    sx, sy = scale
    if not (np.isfinite(sx) and np.isfinite(sy)):
        raise NumericError(f"scale factors must be finite, got {scale}")
    if sx <= 0 or sy <= 0:
        raise ConfigurationError(f"scale factors must be > 0, got {scale}")
    return np.float32(sx), np.float32(sy)


def decode_output(
    output: np.ndarray,
    conf_threshold: float,
    scale: Tuple[float, float] = (1.0, 1.0),
    class_ids: Optional[Sequence[int]] = None,
    max_candidates: Optional[int] = None,
) -> List[Candidate]:
    """
    Turn a raw (1, 4 + C, N) detection tensor into target-space candidates.

    Rows 0..3 are cx, cy, w, h in model-input pixels; rows 4.. are per-class
    scores. For every column the best class is the first maximum (lowest index
    wins ties). A column is emitted only if that score is strictly greater than
    `conf_threshold`. Boxes are converted to corner form and x/width are scaled
    by sx, y/height by sy.

    Columns with a non-finite best score or non-finite geometry are dropped, as
    are columns with negative width or height.
    """

    check_unit_interval("conf_threshold", conf_threshold)
    check_optional_positive_int("max_candidates", max_candidates)
    sx, sy = _check_scale(scale)
    p = _attribute_rows(output)
    n = p.shape[1]

    geometry = p[0:4, :]
    class_scores = p[4:, :]

    # Non-finite scores never win the per-column scan.
    masked = np.where(np.isfinite(class_scores), class_scores, np.float32(-np.inf))
    best_class = np.argmax(masked, axis=0)
    best_score = masked[best_class, np.arange(n)]

    finite = np.isfinite(best_score) & np.all(np.isfinite(geometry), axis=0)
    n_bad = int(n - np.count_nonzero(finite))
    if n_bad:
        logger.debug("Dropped %d candidate(s) with non-finite score or geometry", n_bad)

    keep = finite.copy()
    keep[finite] = best_score[finite] > np.float32(conf_threshold)
    keep[finite] &= (geometry[2, finite] >= 0) & (geometry[3, finite] >= 0)

    if class_ids is not None:
        keep &= np.isin(best_class, np.asarray(list(class_ids), dtype=np.int64))

    idx = np.flatnonzero(keep)
    if max_candidates is not None and idx.size > max_candidates:
        order = np.argsort(-best_score[idx], kind="stable")[:max_candidates]
        idx = np.sort(idx[order])

    if idx.size == 0:
        return []

    cx, cy, w_box, h_box = geometry[:, idx]
    with np.errstate(over="ignore", invalid="ignore"):
        x = (cx - w_box / np.float32(2.0)) * sx
        y = (cy - h_box / np.float32(2.0)) * sy
        w_scaled = w_box * sx
        h_scaled = h_box * sy
    scores = best_score[idx]
    classes = best_class[idx]

    # Finite raw values can still overflow float32 after conversion and scaling.
    ok = np.isfinite(x) & np.isfinite(y) & np.isfinite(w_scaled) & np.isfinite(h_scaled)
    n_overflow = int(idx.size - np.count_nonzero(ok))
    if n_overflow:
        logger.debug("Dropped %d candidate(s) whose scaled box is not finite", n_overflow)
        x, y, w_scaled, h_scaled = x[ok], y[ok], w_scaled[ok], h_scaled[ok]
        scores, classes = scores[ok], classes[ok]

    return [
        Candidate(
            box=Box(x=float(x[k]), y=float(y[k]), width=float(w_scaled[k]), height=float(h_scaled[k])),
            confidence=float(scores[k]),
            class_id=int(classes[k]),
        )
        for k in range(scores.size)
    ]


class OutputDecoder:
    """
    Decoder bound to a DecoderConfig, for per-frame use.
    """

    def __init__(self, cfg: DecoderConfig = DecoderConfig()):
        self.cfg = cfg

    def decode(self, output: np.ndarray, scale: Tuple[float, float] = (1.0, 1.0)) -> List[Candidate]:
        candidates = decode_output(
            output,
            self.cfg.conf_threshold,
            scale=scale,
            class_ids=self.cfg.class_ids,
            max_candidates=self.cfg.max_candidates,
        )
        logger.debug("Decoded %d candidate(s) above conf=%.3f", len(candidates), self.cfg.conf_threshold)
        return candidates
