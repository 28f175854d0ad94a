"""
Error kinds raised by the detection pipeline.

Every error aborts the current detection cycle. Non-finite model values are the
one exception: they are filtered out by the decoder instead of raised.
"""

from __future__ import annotations


class DetectionError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(DetectionError, ValueError):
    """Pixel buffer, tensor or option does not match what the pipeline expects."""


class ShapeError(DetectionError, ValueError):
    """Model output is malformed (wrong rank, zero classes, zero candidates)."""


class EngineError(DetectionError, RuntimeError):
    """Inference engine could not be loaded or failed while running."""


class NumericError(DetectionError, ArithmeticError):
    """A caller-supplied value is NaN or infinite."""
