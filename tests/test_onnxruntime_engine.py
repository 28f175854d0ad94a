import sys
import tempfile
import types
import unittest
from pathlib import Path
from unittest import mock

import numpy as np

from debris_kit.backends.onnxruntime_engine import OnnxRuntimeEngine, OnnxRuntimeEngineConfig
from debris_kit.errors import ConfigurationError, EngineError
from debris_kit.pipeline import DetectionPipeline
from debris_kit.types import PixelBuffer


class _Arg:
    def __init__(self, name, shape):
        self.name = name
        self.shape = shape


class _Session:
    input_dims = [1, 3, 16, 32]
    output_dims = [1, 5, 3]
    names_meta = "{0: 'debris'}"
    raise_on_run = None

    def __init__(self, source, sess_options=None, providers=None):
        self.source = source
        self.providers = providers or ["CPUExecutionProvider"]
        self.fed = None

    def get_inputs(self):
        return [_Arg("images", list(self.input_dims))]

    def get_outputs(self):
        return [_Arg("output0", list(self.output_dims))]

    def get_providers(self):
        return list(self.providers)

    def get_modelmeta(self):
        return types.SimpleNamespace(custom_metadata_map={"names": self.names_meta})

    def run(self, output_names, feed):
        if self.raise_on_run is not None:
            raise self.raise_on_run
        self.fed = feed
        out = np.zeros((1, 5, 3), dtype=np.float32)
        out[:, :, 0] = [[8, 8, 4, 4, 0.9]]
        return [out]


def _fake_ort(session_cls=_Session):
    mod = types.ModuleType("onnxruntime")
    mod.SessionOptions = lambda: types.SimpleNamespace(intra_op_num_threads=0)
    mod.InferenceSession = session_cls
    mod.get_available_providers = lambda: ["CPUExecutionProvider"]
    return mod


class TestOnnxRuntimeEngine(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.model_path = Path(tmpdir.name) / "debris.onnx"
        self.model_path.write_bytes(b"onnx")

    def _engine(self, session_cls=_Session, cfg=OnnxRuntimeEngineConfig()):
        with mock.patch.dict(sys.modules, {"onnxruntime": _fake_ort(session_cls)}):
            return OnnxRuntimeEngine(self.model_path, cfg)

    def test_reads_shapes_once(self) -> None:
        engine = self._engine()
        self.assertEqual(engine.input_shape, (1, 3, 16, 32))
        self.assertEqual(engine.input_size, (32, 16))
        self.assertEqual(engine.output_shape, (1, 5, 3))
        self.assertEqual(engine.input_name, "images")
        self.assertEqual(engine.output_name, "output0")

    def test_symbolic_output_dims_become_none(self) -> None:
        class DynamicOut(_Session):
            output_dims = [1, 5, "anchors"]

        engine = self._engine(DynamicOut)
        self.assertEqual(engine.output_shape, (1, 5, None))

    def test_dynamic_input_rejected(self) -> None:
        class DynamicIn(_Session):
            input_dims = ["batch", 3, 16, 32]

        with self.assertRaises(EngineError):
            self._engine(DynamicIn)

    def test_missing_model_file(self) -> None:
        with mock.patch.dict(sys.modules, {"onnxruntime": _fake_ort()}):
            with self.assertRaises(FileNotFoundError):
                OnnxRuntimeEngine(self.model_path.with_name("missing.onnx"))

    def test_session_creation_failure(self) -> None:
        def broken(*args, **kwargs):
            raise RuntimeError("invalid protobuf")

        with self.assertRaises(EngineError):
            self._engine(broken)

    def test_unknown_output_name(self) -> None:
        with self.assertRaises(EngineError):
            self._engine(cfg=OnnxRuntimeEngineConfig(output_name="nope"))

    def test_run_checks_shape_and_wraps_errors(self) -> None:
        engine = self._engine()
        with self.assertRaises(ConfigurationError):
            engine.run(np.zeros((1, 3, 32, 32), dtype=np.float32))

        engine.session.raise_on_run = RuntimeError("CUDA failure")
        with self.assertRaises(EngineError):
            engine.run(np.zeros((1, 3, 16, 32), dtype=np.float32))

    def test_class_names_from_metadata(self) -> None:
        engine = self._engine()
        self.assertEqual(engine.class_names(), {0: "debris"})

    def test_unparsable_names_metadata(self) -> None:
        class BadMeta(_Session):
            names_meta = "{0: debris"

        self.assertEqual(self._engine(BadMeta).class_names(), {})

    def test_pipeline_end_to_end(self) -> None:
        engine = self._engine()
        pipe = DetectionPipeline(engine)
        pixels = PixelBuffer(width=32, height=16, data=np.zeros((16, 32, 3), dtype=np.uint8))
        dets = pipe.detect(pixels, target_size=(64, 32))
        self.assertEqual(len(dets), 1)
        self.assertAlmostEqual(dets[0].box.x, 12.0)
        self.assertAlmostEqual(dets[0].box.width, 8.0)
        self.assertIn("images", engine.session.fed)


if __name__ == "__main__":
    unittest.main()
