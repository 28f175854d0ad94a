from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple, Union

import numpy as np

from ..errors import ConfigurationError, EngineError
from . import output_dims

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class TorchScriptEngineConfig:
    """
    Configuration for TorchScript inference.

    - input_size: (width, height) the model was traced with; TorchScript carries no shape metadata
    - device: "cpu" or "cuda" (if available)
    - half: cast input to float16 (only if the model expects it)
    - output_index: if the model returns multiple outputs, select this index
    """

    input_size: Tuple[int, int] = (640, 640)
    device: str = "cpu"
    half: bool = False
    output_index: int = 0


class TorchScriptEngine:
    """
    TorchScript engine using `torch.jit.load`.

    The output shape is read once at construction by running a zero input.
    """

    def __init__(self, model_path: PathLike, cfg: TorchScriptEngineConfig = TorchScriptEngineConfig()):
        try:
            import torch  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("torch is required for the TorchScript engine. Install with `pip install torch`.") from e

        self._torch = torch
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        w, h = cfg.input_size
        if w <= 0 or h <= 0:
            raise ConfigurationError(f"input_size must be positive, got {cfg.input_size}")
        self.input_shape = (1, 3, int(h), int(w))

        self.device = torch.device(cfg.device)
        self.half = cfg.half
        self.output_index = cfg.output_index

        try:
            model = torch.jit.load(str(self.model_path), map_location=self.device)
        except Exception as e:
            raise EngineError(f"Failed to load TorchScript model {self.model_path}: {e}") from e
        model.eval()
        self.model = model

        sample = self.run(np.zeros(self.input_shape, dtype=np.float32))
        self.output_shape = output_dims(sample.shape)
        logger.info("TorchScript model ready: input %s, output %s, device %s", self.input_shape, self.output_shape, self.device)

    @property
    def input_size(self) -> Tuple[int, int]:
        _, _, h, w = self.input_shape
        return w, h

    def run(self, tensor: np.ndarray) -> np.ndarray:
        if tuple(tensor.shape) != self.input_shape:
            raise ConfigurationError(f"Input tensor shape {tuple(tensor.shape)} does not match model input {self.input_shape}")

        torch = self._torch
        x = torch.as_tensor(tensor, device=self.device)
        if self.half:
            x = x.half()
        else:
            x = x.float()
        x = x.contiguous()

        try:
            with torch.no_grad():
                y = self.model(x)
        except Exception as e:
            raise EngineError(f"TorchScript inference failed: {e}") from e

        if isinstance(y, (tuple, list)):
            if not 0 <= self.output_index < len(y):
                raise EngineError(f"output_index {self.output_index} out of range (num outputs={len(y)}).")
            y = y[self.output_index]

        if hasattr(y, "detach"):
            y = y.detach()
        return y.float().to("cpu").numpy()
