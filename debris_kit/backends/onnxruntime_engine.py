from __future__ import annotations

import ast
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np

from ..errors import ConfigurationError, EngineError
from . import output_dims, static_input_shape

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class OnnxRuntimeEngineConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (e.g., ["CUDAExecutionProvider", "CPUExecutionProvider"])
    - input_name/output_name: override auto-selected I/O names if needed
    """

    providers: Optional[Sequence[str]] = None
    input_name: Optional[str] = None
    output_name: Optional[str] = None
    intra_op_num_threads: int = 0


class OnnxRuntimeEngine:
    """
    ONNX Runtime engine for detection models exported with a fixed (1, 3, H, W) input.

    `model` is a path to an .onnx file or the raw model bytes. Input/output
    shapes are read from the session metadata once, here.
    """

    def __init__(self, model: Union[PathLike, bytes], cfg: OnnxRuntimeEngineConfig = OnnxRuntimeEngineConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX engine. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        self._ort = ort
        if isinstance(model, (bytes, bytearray)):
            self.model_path: Optional[Path] = None
            source = bytes(model)
        else:
            self.model_path = Path(model)
            if not self.model_path.exists():
                raise FileNotFoundError(str(self.model_path))
            source = str(self.model_path)

        sess_opts = ort.SessionOptions()
        if cfg.intra_op_num_threads > 0:
            sess_opts.intra_op_num_threads = int(cfg.intra_op_num_threads)
        providers = list(cfg.providers) if cfg.providers is not None else None
        try:
            self.session = ort.InferenceSession(source, sess_options=sess_opts, providers=providers)
        except Exception as e:
            raise EngineError(f"Failed to create ONNX Runtime session for {self.model_path or '<bytes>'}: {e}") from e

        inputs = {i.name: i for i in self.session.get_inputs()}
        outputs = {o.name: o for o in self.session.get_outputs()}
        if not inputs or not outputs:
            raise EngineError("ONNX model must have at least one input and one output.")
        self.input_name = cfg.input_name or next(iter(inputs))
        # If output_name not provided, pick first output.
        self.output_name = cfg.output_name or next(iter(outputs))
        if self.input_name not in inputs:
            raise EngineError(f"Model has no input named {self.input_name!r} (inputs: {sorted(inputs)})")
        if self.output_name not in outputs:
            raise EngineError(f"Model has no output named {self.output_name!r} (outputs: {sorted(outputs)})")

        self.input_shape = static_input_shape(self.input_name, inputs[self.input_name].shape)
        self.output_shape = output_dims(outputs[self.output_name].shape)

        logger.info(
            "ONNX Runtime session ready: input %s %s, output %s %s, providers %s",
            self.input_name,
            self.input_shape,
            self.output_name,
            self.output_shape,
            list(self.providers_in_use),
        )

    @property
    def input_size(self) -> Tuple[int, int]:
        _, _, h, w = self.input_shape
        return w, h

    @property
    def providers_in_use(self) -> Sequence[str]:
        # ORT returns providers in priority order for this session.
        return tuple(self.session.get_providers())

    @property
    def available_providers(self) -> Sequence[str]:
        return tuple(self._ort.get_available_providers())

    def class_names(self) -> Dict[int, str]:
        """
        Class names from the model's `names` custom metadata, if the exporter wrote one.
        """

        try:
            meta = self.session.get_modelmeta().custom_metadata_map or {}
        except Exception as e:
            logger.debug("Could not read ONNX model metadata: %s", e)
            return {}
        raw = meta.get("names")
        if not raw:
            return {}
        try:
            parsed = ast.literal_eval(raw)
        except (ValueError, SyntaxError):
            logger.warning("Ignoring unparsable 'names' metadata in model: %r", raw[:80])
            return {}
        if not isinstance(parsed, dict):
            return {}
        return {int(k): str(v) for k, v in parsed.items()}

    def run(self, tensor: np.ndarray) -> np.ndarray:
        if tuple(tensor.shape) != self.input_shape:
            raise ConfigurationError(f"Input tensor shape {tuple(tensor.shape)} does not match model input {self.input_shape}")
        try:
            outputs = self.session.run([self.output_name], {self.input_name: tensor})
        except Exception as e:
            raise EngineError(f"ONNX Runtime inference failed: {e}") from e
        return np.asarray(outputs[0])
