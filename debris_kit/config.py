from __future__ import annotations

import json
import math
import numbers
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .errors import ConfigurationError, NumericError


def check_unit_interval(name: str, value: float) -> float:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ConfigurationError(f"{name} must be a number")
    if not math.isfinite(value):
        raise NumericError(f"{name} must be finite, got {value}")
    if not (0.0 <= value <= 1.0):
        raise ConfigurationError(f"{name} must be within [0, 1], got {value}")
    return float(value)


def check_optional_positive_int(name: str, value: Optional[int]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise ConfigurationError(f"{name} must be an integer")
    if value < 1:
        raise ConfigurationError(f"{name} must be >= 1")
    return int(value)


@dataclass(frozen=True)
class DetectorConfig:
    """
    User-tunable detection options.

    Model input size and target-space scale factors are not part of this: they
    come from the loaded model and the target resolution.
    """

    conf_threshold: float = 0.5
    iou_threshold: float = 0.45
    # Global NMS across classes unless set.
    class_aware_nms: bool = False
    max_detections: Optional[int] = None
    # Cap on candidates entering NMS (highest confidence first).
    max_candidates: Optional[int] = None
    class_ids: Optional[Tuple[int, ...]] = None

    def __post_init__(self) -> None:
        # Normalised to plain Python scalars.
        object.__setattr__(self, "conf_threshold", check_unit_interval("conf_threshold", self.conf_threshold))
        object.__setattr__(self, "iou_threshold", check_unit_interval("iou_threshold", self.iou_threshold))
        object.__setattr__(self, "max_detections", check_optional_positive_int("max_detections", self.max_detections))
        object.__setattr__(self, "max_candidates", check_optional_positive_int("max_candidates", self.max_candidates))
        if self.class_ids is not None:
            ids = tuple(self.class_ids)
            if any(isinstance(c, bool) or not isinstance(c, numbers.Integral) or c < 0 for c in ids):
                raise ConfigurationError("class_ids must be non-negative integers")
            object.__setattr__(self, "class_ids", tuple(int(c) for c in ids))


_ALLOWED_KEYS = {
    "conf_threshold",
    "iou_threshold",
    "class_aware_nms",
    "max_detections",
    "max_candidates",
    "class_ids",
}


def detector_config_from_dict(payload: Dict[str, Any]) -> DetectorConfig:
    if not isinstance(payload, dict):
        raise ConfigurationError("Detector config must be a JSON object")
    unknown = sorted(set(payload.keys()) - _ALLOWED_KEYS)
    if unknown:
        raise ConfigurationError(f"Unknown detector config keys: {unknown}")

    class_aware = payload.get("class_aware_nms", False)
    if not isinstance(class_aware, bool):
        raise ConfigurationError("class_aware_nms must be a boolean")

    class_ids = payload.get("class_ids")
    if class_ids is not None:
        if not isinstance(class_ids, list):
            raise ConfigurationError("class_ids must be a list of integers")
        class_ids = tuple(class_ids)

    return DetectorConfig(
        conf_threshold=payload.get("conf_threshold", DetectorConfig.conf_threshold),
        iou_threshold=payload.get("iou_threshold", DetectorConfig.iou_threshold),
        class_aware_nms=class_aware,
        max_detections=payload.get("max_detections"),
        max_candidates=payload.get("max_candidates"),
        class_ids=class_ids,
    )


def load_detector_config(path: Path) -> DetectorConfig:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Detector config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid detector config JSON: {path}") from exc
    return detector_config_from_dict(payload)
