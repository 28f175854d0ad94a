from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from .config import check_optional_positive_int, check_unit_interval
from .types import Box, Candidate, Detection


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.45
    class_aware: bool = False
    max_detections: Optional[int] = None

    def __post_init__(self) -> None:
        check_unit_interval("iou_threshold", self.iou_threshold)
        check_optional_positive_int("max_detections", self.max_detections)


def iou(a: Box, b: Box) -> float:
    """
    Intersection over union of two boxes. Two zero-area boxes give 0.0.
    """

    inter_w = max(0.0, min(a.x_max, b.x_max) - max(a.x, b.x))
    inter_h = max(0.0, min(a.y_max, b.y_max) - max(a.y, b.y))
    inter = inter_w * inter_h
    union = a.area + b.area - inter
    if union <= 0.0:
        return 0.0
    return inter / union


def iou_row(box: np.ndarray, boxes: np.ndarray) -> np.ndarray:
    """
    IoU of one xyxy box (4,) against many (M, 4). Zero unions map to 0.
    """

    xx1 = np.maximum(box[0], boxes[:, 0])
    yy1 = np.maximum(box[1], boxes[:, 1])
    xx2 = np.minimum(box[2], boxes[:, 2])
    yy2 = np.minimum(box[3], boxes[:, 3])

    inter = np.maximum(0.0, xx2 - xx1) * np.maximum(0.0, yy2 - yy1)
    area = (box[2] - box[0]) * (box[3] - box[1])
    areas = (boxes[:, 2] - boxes[:, 0]) * (boxes[:, 3] - boxes[:, 1])
    union = area + areas - inter
    out = np.zeros_like(inter)
    np.divide(inter, union, out=out, where=union > 0)
    return out


def nms_indices(
    boxes: np.ndarray,
    scores: np.ndarray,
    iou_threshold: float,
    max_detections: Optional[int] = None,
) -> np.ndarray:
    """
    Greedy NMS over xyxy boxes (N, 4) and scores (N,). Returns kept indices in
    descending score order; ties keep input order.

    `order` only ever holds live indices: after each kept box every index whose
    IoU with it exceeds `iou_threshold` is cut out, so nothing is re-scanned.
    """

    if boxes.shape[0] == 0:
        return np.empty((0,), dtype=np.int64)

    order = np.argsort(-scores, kind="stable")
    keep: List[int] = []

    while order.size > 0:
        i = order[0]
        keep.append(int(i))
        if max_detections is not None and len(keep) >= max_detections:
            break
        rest = order[1:]
        if rest.size == 0:
            break
        overlaps = iou_row(boxes[i], boxes[rest])
        order = rest[overlaps <= iou_threshold]

    return np.array(keep, dtype=np.int64)


def _as_arrays(candidates: Sequence[Candidate]):
    boxes = np.array([c.box.as_xyxy() for c in candidates], dtype=np.float64).reshape(-1, 4)
    scores = np.array([c.confidence for c in candidates], dtype=np.float64)
    return boxes, scores


def nms(
    candidates: Sequence[Candidate],
    iou_threshold: float = 0.45,
    *,
    class_aware: bool = False,
    max_detections: Optional[int] = None,
) -> List[Detection]:
    """
    Collapse overlapping candidates into final detections.

    Candidates are visited by descending confidence (stable for ties). A
    candidate is discarded when its IoU with an already-kept box is strictly
    greater than `iou_threshold`.

    Suppression is global across classes by default. With `class_aware=True`
    each class id (None counts as its own class) is suppressed separately and
    the survivors are merged by confidence.
    """

    cfg = NMSConfig(iou_threshold=iou_threshold, class_aware=class_aware, max_detections=max_detections)
    if not candidates:
        return []

    boxes, scores = _as_arrays(candidates)

    if not cfg.class_aware:
        keep = nms_indices(boxes, scores, cfg.iou_threshold, cfg.max_detections)
        return [Detection.from_candidate(candidates[i]) for i in keep]

    groups: Dict[Optional[int], List[int]] = {}
    for i, cand in enumerate(candidates):
        groups.setdefault(cand.class_id, []).append(i)

    kept: List[int] = []
    for members in groups.values():
        idx = np.array(members, dtype=np.int64)
        keep_local = nms_indices(boxes[idx], scores[idx], cfg.iou_threshold, cfg.max_detections)
        kept.extend(idx[keep_local].tolist())

    # Merge by confidence; equal scores fall back to input order.
    kept.sort()
    kept_arr = np.array(kept, dtype=np.int64)
    kept_arr = kept_arr[np.argsort(-scores[kept_arr], kind="stable")]
    if cfg.max_detections is not None:
        kept_arr = kept_arr[: cfg.max_detections]
    return [Detection.from_candidate(candidates[i]) for i in kept_arr]
