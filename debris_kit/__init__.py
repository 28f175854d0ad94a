"""
Real-time debris detection post-processing.

Turns an RGB frame into a planar model input, decodes the raw (1, 4 + C, N)
detection tensor into candidates, and removes overlapping boxes with greedy
NMS. Core functionality needs only NumPy; OpenCV is used for resizing and the
inference runtimes (onnxruntime, torch) are imported lazily by their engines.
"""

from .config import DetectorConfig, load_detector_config
from .decode import DecoderConfig, OutputDecoder, decode_output
from .errors import ConfigurationError, DetectionError, EngineError, NumericError, ShapeError
from .metadata import load_class_names
from .nms import NMSConfig, iou, nms
from .pipeline import DetectionPipeline, load_pipeline, resolve_model_path
from .preprocess import ScratchBuffer, to_planar_tensor
from .resize import fit_to_input, scale_factors
from .types import Box, Candidate, Detection, PixelBuffer
from .worker import DetectionResult, DetectionWorker

__all__ = [
    "Box",
    "Candidate",
    "Detection",
    "PixelBuffer",
    "DetectorConfig",
    "load_detector_config",
    "DecoderConfig",
    "OutputDecoder",
    "decode_output",
    "ConfigurationError",
    "DetectionError",
    "EngineError",
    "NumericError",
    "ShapeError",
    "load_class_names",
    "NMSConfig",
    "iou",
    "nms",
    "DetectionPipeline",
    "load_pipeline",
    "resolve_model_path",
    "ScratchBuffer",
    "to_planar_tensor",
    "fit_to_input",
    "scale_factors",
    "DetectionResult",
    "DetectionWorker",
]
