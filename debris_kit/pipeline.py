from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from .backends import InferenceEngine
from .config import DetectorConfig
from .decode import DecoderConfig, OutputDecoder
from .errors import DetectionError, EngineError, ShapeError
from .nms import nms
from .preprocess import ScratchBuffer, to_planar_tensor
from .resize import fit_to_input, scale_factors
from .types import Candidate, Detection, PixelBuffer

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


# An ancestor holding any of these is taken as the place models live.
MODEL_ROOT_MARKERS: Tuple[str, ...] = ("models", "pyproject.toml", ".git")


def resolve_model_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Absolute path for a model file.

    Absolute paths pass through. With an explicit `root`, a relative path is
    joined onto it. With root="auto" (or None) the working directory and its
    ancestors are searched: the first one that already holds `path` wins,
    otherwise the nearest one carrying a `MODEL_ROOT_MARKERS` entry. The
    working directory is the fallback.
    """

    p = Path(path)
    if p.is_absolute():
        return p
    if root is not None and root != "auto":
        return (Path(root).resolve() / p).resolve()

    cwd = Path.cwd().resolve()
    ancestors = (cwd, *cwd.parents)
    for base in ancestors:
        if (base / p).exists():
            return (base / p).resolve()
    for base in ancestors:
        if any((base / m).exists() for m in MODEL_ROOT_MARKERS):
            logger.debug("Model %s not found yet; resolving against %s", p, base)
            return (base / p).resolve()
    return (cwd / p).resolve()


@dataclass(frozen=True)
class CycleTrace:
    """Intermediate results of the last cycle, kept for debugging."""

    n_candidates: int
    n_detections: int


class DetectionPipeline:
    """
    One detection cycle: preprocess -> engine.run -> decode -> NMS.

    The pipeline owns one ScratchBuffer for its lifetime; cycles are
    synchronous and must not overlap on the same instance. Any error aborts the
    cycle and propagates; nothing partial is returned.
    """

    def __init__(self, engine: InferenceEngine, config: DetectorConfig = DetectorConfig()):
        self.engine = engine
        self.config = config
        self.input_size: Tuple[int, int] = tuple(engine.input_size)  # type: ignore[assignment]
        self._check_output_shape(getattr(engine, "output_shape", None))

        self.scratch = ScratchBuffer(self.input_size)
        self.decoder = OutputDecoder(
            DecoderConfig(
                conf_threshold=config.conf_threshold,
                class_ids=config.class_ids,
                max_candidates=config.max_candidates,
            )
        )
        self.last_trace: Optional[CycleTrace] = None

    @staticmethod
    def _check_output_shape(shape) -> None:
        if shape is None:
            return
        shape = tuple(shape)
        if len(shape) == 3:
            shape = shape[1:]
        if len(shape) != 2:
            raise ShapeError(f"Engine output must be (1, 4 + C, N), got {shape}")
        n_attr = shape[0]
        if n_attr is not None and n_attr <= 4:
            raise ShapeError(f"Engine output has no class rows (shape {shape})")

    def preprocess(self, pixels: PixelBuffer) -> np.ndarray:
        return to_planar_tensor(pixels, self.input_size, self.scratch)

    def infer(self, tensor: np.ndarray) -> np.ndarray:
        try:
            return self.engine.run(tensor)
        except DetectionError:
            raise
        except Exception as e:
            raise EngineError(f"Inference failed: {e}") from e

    def decode(self, raw: np.ndarray, scale: Tuple[float, float] = (1.0, 1.0)) -> List[Candidate]:
        return self.decoder.decode(raw, scale)

    def suppress(self, candidates: Sequence[Candidate]) -> List[Detection]:
        return nms(
            candidates,
            self.config.iou_threshold,
            class_aware=self.config.class_aware_nms,
            max_detections=self.config.max_detections,
        )

    def postprocess(self, raw: np.ndarray, scale: Tuple[float, float] = (1.0, 1.0)) -> List[Detection]:
        candidates = self.decode(raw, scale)
        detections = self.suppress(candidates)
        self.last_trace = CycleTrace(n_candidates=len(candidates), n_detections=len(detections))
        logger.debug("Cycle: %d candidate(s) -> %d detection(s)", len(candidates), len(detections))
        return detections

    def detect(self, pixels: PixelBuffer, target_size: Optional[Tuple[int, int]] = None) -> List[Detection]:
        """
        Run one cycle on a frame that is already model-input sized.

        Boxes come back in `target_size` (width, height) pixels, or in model-input
        pixels when no target is given.
        """

        scale = (1.0, 1.0) if target_size is None else scale_factors(target_size, self.input_size)
        tensor = self.preprocess(pixels)
        raw = self.infer(tensor)
        return self.postprocess(raw, scale)

    def detect_image(self, image_bgr: np.ndarray, target_size: Optional[Tuple[int, int]] = None) -> List[Detection]:
        """
        Run one cycle on an OpenCV BGR frame of any size.

        The frame is stretched to the model input; boxes come back in the frame's
        own pixels unless `target_size` is given.
        """

        resized, frame_scale = fit_to_input(image_bgr, self.input_size)
        pixels = PixelBuffer.from_array(resized, bgr=True)
        if target_size is None:
            tensor = self.preprocess(pixels)
            return self.postprocess(self.infer(tensor), frame_scale)
        return self.detect(pixels, target_size)

    __call__ = detect


def load_pipeline(
    model_path: PathLike,
    *,
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    config: DetectorConfig = DetectorConfig(),
    onnx_providers: Optional[Sequence[str]] = None,
    onnx_input_name: Optional[str] = None,
    onnx_output_name: Optional[str] = None,
    torch_input_size: Tuple[int, int] = (640, 640),
    torch_device: str = "cpu",
    torch_half: bool = False,
    torch_output_index: int = 0,
) -> DetectionPipeline:
    """
    Create a pipeline for a model on disk.

        pipe = load_pipeline("models/debris.onnx")  # searched upward from the working directory

    Args:
        model_path: path to the model file; see resolve_model_path for relative paths
        backend: "onnxruntime" or "torchscript"; None infers it from the extension
        root: base directory for relative model paths ("auto" searches upward from the working directory)
    """

    resolved = resolve_model_path(model_path, root=root)
    chosen = backend
    if chosen is None:
        suffix = resolved.suffix.lower()
        if suffix == ".onnx":
            chosen = "onnxruntime"
        elif suffix in {".torchscript", ".ts", ".pt"}:
            chosen = "torchscript"
        else:
            raise ValueError(
                f"Could not infer backend from extension '{suffix}'. Pass backend=... explicitly."
            )

    chosen = chosen.lower()
    if chosen == "onnxruntime":
        from .backends.onnxruntime_engine import OnnxRuntimeEngine, OnnxRuntimeEngineConfig

        engine = OnnxRuntimeEngine(
            resolved,
            OnnxRuntimeEngineConfig(
                providers=onnx_providers,
                input_name=onnx_input_name,
                output_name=onnx_output_name,
            ),
        )
        return DetectionPipeline(engine, config)

    if chosen == "torchscript":
        from .backends.torchscript_engine import TorchScriptEngine, TorchScriptEngineConfig

        ts_engine = TorchScriptEngine(
            resolved,
            TorchScriptEngineConfig(
                input_size=torch_input_size,
                device=torch_device,
                half=torch_half,
                output_index=torch_output_index,
            ),
        )
        return DetectionPipeline(ts_engine, config)

    raise ValueError(f"Unsupported backend: {backend!r}")
