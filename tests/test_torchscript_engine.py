import importlib.util
import tempfile
import unittest
from pathlib import Path

import numpy as np

from debris_kit.errors import ConfigurationError
from debris_kit.pipeline import load_pipeline
from debris_kit.types import PixelBuffer


HAS_TORCH = importlib.util.find_spec("torch") is not None

if HAS_TORCH:
    import torch

    class Head(torch.nn.Module):
        # Four identical boxes centred at (8, 8); score = mean of the red plane.
        def forward(self, x):
            score = x[:, 0].mean().reshape(1, 1, 1).expand(1, 1, 4)
            geom = torch.tensor([8.0, 8.0, 4.0, 4.0]).reshape(1, 4, 1).expand(1, 4, 4)
            return torch.cat([geom, score], dim=1)


@unittest.skipUnless(HAS_TORCH, "torch not installed")
class TestTorchScriptEngine(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.model_path = Path(tmpdir.name) / "head.torchscript"
        torch.jit.script(Head()).save(str(self.model_path))

    def test_output_shape_and_detect(self) -> None:
        pipe = load_pipeline(self.model_path, root=None, torch_input_size=(16, 8))
        self.assertEqual(pipe.engine.input_shape, (1, 3, 8, 16))
        self.assertEqual(pipe.engine.output_shape, (1, 5, 4))

        white = PixelBuffer(width=16, height=8, data=np.full((8, 16, 3), 255, dtype=np.uint8))
        dets = pipe.detect(white)
        self.assertEqual(len(dets), 1)
        self.assertAlmostEqual(dets[0].box.x, 6.0)
        self.assertAlmostEqual(dets[0].confidence, 1.0, places=5)

        black = PixelBuffer(width=16, height=8, data=np.zeros((8, 16, 3), dtype=np.uint8))
        self.assertEqual(pipe.detect(black), [])

    def test_wrong_tensor_shape(self) -> None:
        pipe = load_pipeline(self.model_path, root=None, torch_input_size=(16, 8))
        with self.assertRaises(ConfigurationError):
            pipe.engine.run(np.zeros((1, 3, 16, 16), dtype=np.float32))


if __name__ == "__main__":
    unittest.main()
