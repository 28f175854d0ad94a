from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .config import DetectorConfig, load_detector_config
from .errors import DetectionError
from .log import setup_logging
from .metadata import class_label, load_class_names
from .types import Detection

logger = logging.getLogger(__name__)


def parse_size(raw: str) -> Tuple[int, int]:
    """Parse "WIDTHxHEIGHT" into (width, height)."""

    parts = str(raw).lower().replace(" ", "").split("x")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise argparse.ArgumentTypeError(f"Expected WIDTHxHEIGHT, got {raw!r}")
    w, h = int(parts[0]), int(parts[1])
    if w <= 0 or h <= 0:
        raise argparse.ArgumentTypeError(f"Size must be positive, got {raw!r}")
    return w, h


def parse_ort_providers(raw: Optional[str]) -> Optional[List[str]]:
    if raw is None:
        return None
    # Copy/paste from shells can leave stray backticks/quotes.
    parts = [p.strip().strip("'\"`") for p in str(raw).split(",")]
    parts = [p for p in parts if p]
    return parts or None


def build_config(args: argparse.Namespace) -> DetectorConfig:
    cfg = load_detector_config(Path(args.config)) if args.config else DetectorConfig()
    overrides: Dict[str, object] = {}
    if args.conf is not None:
        overrides["conf_threshold"] = args.conf
    if args.iou is not None:
        overrides["iou_threshold"] = args.iou
    if args.class_aware_nms:
        overrides["class_aware_nms"] = True
    if args.max_det is not None:
        overrides["max_detections"] = args.max_det
    return dataclasses.replace(cfg, **overrides) if overrides else cfg


def format_detection(det: Detection, class_names: Optional[Dict[int, str]] = None) -> str:
    payload = det.to_dict()
    payload["label"] = class_label(class_names, det.class_id)
    return json.dumps(payload)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="debris-detect",
        description="Run the debris detector on one image and print detections as JSON lines.",
    )
    parser.add_argument("--model", required=True, help="Path to detector (.onnx/.torchscript).")
    parser.add_argument("--image", required=True, help="Path to input image.")
    parser.add_argument("--backend", default=None, help="Force backend: onnxruntime / torchscript.")
    parser.add_argument("--config", default=None, help="Detector config JSON (thresholds, NMS options).")
    parser.add_argument("--conf", type=float, default=None, help="Confidence threshold (overrides config).")
    parser.add_argument("--iou", type=float, default=None, help="IoU threshold for NMS (overrides config).")
    parser.add_argument("--class-aware-nms", action="store_true", help="Suppress overlaps per class instead of globally.")
    parser.add_argument("--max-det", type=int, default=None, help="Max detections to keep after NMS.")
    parser.add_argument(
        "--target-size",
        type=parse_size,
        default=None,
        help="Report boxes in WIDTHxHEIGHT pixels instead of the image's own size.",
    )
    parser.add_argument("--imgsz", type=int, default=640, help="TorchScript input size (square).")
    parser.add_argument("--metadata", default=None, help="Class metadata yaml (names mapping).")
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, WARNING, ...).")
    return parser


def read_image(path: str):
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for debris-detect. Install with `pip install opencv-python`.") from e

    image = cv2.imread(path)
    if image is None:
        raise FileNotFoundError(f"Could not read image at path: {path}")
    return image


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    from .pipeline import load_pipeline

    try:
        config = build_config(args)
        pipeline = load_pipeline(
            args.model,
            backend=args.backend,
            root=Path.cwd(),
            config=config,
            onnx_providers=parse_ort_providers(args.onnx_providers),
            torch_input_size=(args.imgsz, args.imgsz),
        )

        class_names: Dict[int, str] = {}
        if args.metadata:
            class_names = load_class_names(args.metadata)
        elif hasattr(pipeline.engine, "class_names"):
            class_names = pipeline.engine.class_names()

        image = read_image(args.image)
        detections = pipeline.detect_image(image, target_size=args.target_size)
    except (DetectionError, ImportError, OSError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    for det in detections:
        print(format_detection(det, class_names))
    logger.info("%d detection(s) in %s", len(detections), args.image)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
