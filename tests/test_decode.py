import unittest

import numpy as np

from debris_kit.decode import DecoderConfig, OutputDecoder, decode_output
from debris_kit.errors import ConfigurationError, NumericError, ShapeError


def _raw(boxes, scores) -> np.ndarray:
    """
    Build a (1, 4 + C, N) tensor from per-candidate boxes [(cx, cy, w, h)] and
    per-candidate class scores [[s0, s1, ...]].
    """

    geometry = np.asarray(boxes, dtype=np.float32).T
    class_scores = np.asarray(scores, dtype=np.float32).T
    return np.vstack([geometry, class_scores])[None, ...]


class TestDecodeOutput(unittest.TestCase):
    def test_single_candidate_class_three(self) -> None:
        raw = _raw([(100, 50, 20, 10)], [[0.1, 0.2, 0.3, 0.9, 0.05]])
        out = decode_output(raw, 0.5, scale=(2.0, 3.0))
        self.assertEqual(len(out), 1)
        cand = out[0]
        self.assertEqual(cand.class_id, 3)
        self.assertAlmostEqual(cand.confidence, 0.9, places=6)
        self.assertAlmostEqual(cand.box.x, (100 - 10) * 2.0)
        self.assertAlmostEqual(cand.box.y, (50 - 5) * 3.0)
        self.assertAlmostEqual(cand.box.width, 20 * 2.0)
        self.assertAlmostEqual(cand.box.height, 10 * 3.0)

    def test_scores_equal_to_threshold_are_dropped(self) -> None:
        raw = _raw([(10, 10, 4, 4), (20, 20, 4, 4)], [[0.5, 0.5], [0.5, 0.25]])
        self.assertEqual(decode_output(raw, 0.5), [])

    def test_just_above_threshold_is_kept(self) -> None:
        raw = _raw([(10, 10, 4, 4)], [[0.51]])
        self.assertEqual(len(decode_output(raw, 0.5)), 1)

    def test_ties_resolve_to_lowest_class(self) -> None:
        raw = _raw([(10, 10, 4, 4)], [[0.2, 0.8, 0.8, 0.8]])
        out = decode_output(raw, 0.5)
        self.assertEqual(out[0].class_id, 1)

    def test_center_round_trip(self) -> None:
        raw = _raw([(123.25, 77.5, 31.0, 12.5)], [[0.9]])
        cand = decode_output(raw, 0.5)[0]
        cx, cy = cand.box.center
        self.assertAlmostEqual(cx, 123.25, places=4)
        self.assertAlmostEqual(cy, 77.5, places=4)

    def test_accepts_unbatched_layout(self) -> None:
        raw = _raw([(10, 10, 4, 4)], [[0.9]])[0]
        self.assertEqual(len(decode_output(raw, 0.5)), 1)

    def test_preserves_column_order(self) -> None:
        raw = _raw([(10, 10, 4, 4), (50, 50, 4, 4), (90, 90, 4, 4)], [[0.6], [0.9], [0.7]])
        out = decode_output(raw, 0.5)
        self.assertEqual([round(c.confidence, 2) for c in out], [0.6, 0.9, 0.7])


class TestDecodeShapes(unittest.TestCase):
    def test_zero_classes_raises(self) -> None:
        raw = np.zeros((1, 4, 10), dtype=np.float32)
        with self.assertRaises(ShapeError):
            decode_output(raw, 0.5)

    def test_zero_candidates_raises(self) -> None:
        raw = np.zeros((1, 6, 0), dtype=np.float32)
        with self.assertRaises(ShapeError):
            decode_output(raw, 0.5)

    def test_batch_above_one_raises(self) -> None:
        raw = np.zeros((2, 6, 10), dtype=np.float32)
        with self.assertRaises(ShapeError):
            decode_output(raw, 0.5)

    def test_wrong_rank_raises(self) -> None:
        with self.assertRaises(ShapeError):
            decode_output(np.zeros((6,), dtype=np.float32), 0.5)

    def test_all_below_threshold_is_empty_not_error(self) -> None:
        raw = np.zeros((1, 6, 10), dtype=np.float32)
        self.assertEqual(decode_output(raw, 0.5), [])


class TestDecodeNonFinite(unittest.TestCase):
    def test_nan_score_is_dropped(self) -> None:
        raw = _raw([(10, 10, 4, 4), (50, 50, 4, 4)], [[np.nan], [0.9]])
        out = decode_output(raw, 0.5)
        self.assertEqual(len(out), 1)
        self.assertAlmostEqual(out[0].box.x, 48.0)

    def test_nan_class_skipped_in_scan(self) -> None:
        raw = _raw([(10, 10, 4, 4)], [[np.nan, 0.8]])
        out = decode_output(raw, 0.5)
        self.assertEqual(len(out), 1)
        self.assertEqual(out[0].class_id, 1)

    def test_infinite_score_is_dropped(self) -> None:
        raw = _raw([(10, 10, 4, 4)], [[np.inf]])
        self.assertEqual(decode_output(raw, 0.5), [])

    def test_non_finite_geometry_is_dropped(self) -> None:
        raw = _raw([(np.nan, 10, 4, 4), (10, 10, np.inf, 4)], [[0.9], [0.9]])
        self.assertEqual(decode_output(raw, 0.5), [])

    def test_negative_size_is_dropped(self) -> None:
        raw = _raw([(10, 10, -4, 4)], [[0.9]])
        self.assertEqual(decode_output(raw, 0.5), [])

    def test_box_overflowing_after_scaling_is_dropped(self) -> None:
        raw = _raw([(-3e38, 10, 3e38, 4), (10, 10, 4, 4)], [[0.9], [0.8]])
        out = decode_output(raw, 0.5, scale=(2.0, 1.0))
        self.assertEqual(len(out), 1)
        self.assertAlmostEqual(out[0].box.x, 16.0)
        self.assertAlmostEqual(out[0].confidence, 0.8, places=5)
        for c in out:
            self.assertTrue(np.isfinite(c.box.as_xyxy()).all())


class TestDecodeOptions(unittest.TestCase):
    def test_class_filter(self) -> None:
        raw = _raw([(10, 10, 4, 4), (50, 50, 4, 4)], [[0.9, 0.1], [0.1, 0.9]])
        out = decode_output(raw, 0.5, class_ids=[1])
        self.assertEqual([c.class_id for c in out], [1])

    def test_max_candidates_keeps_best(self) -> None:
        raw = _raw(
            [(10, 10, 4, 4), (20, 20, 4, 4), (30, 30, 4, 4), (40, 40, 4, 4)],
            [[0.6], [0.95], [0.7], [0.8]],
        )
        out = decode_output(raw, 0.5, max_candidates=2)
        self.assertEqual([round(c.confidence, 2) for c in out], [0.95, 0.8])

    def test_threshold_out_of_range(self) -> None:
        raw = _raw([(10, 10, 4, 4)], [[0.9]])
        with self.assertRaises(ConfigurationError):
            decode_output(raw, 1.5)
        with self.assertRaises(NumericError):
            decode_output(raw, float("nan"))

    def test_numpy_scalar_options_accepted(self) -> None:
        raw = _raw([(10, 10, 4, 4), (30, 30, 4, 4)], [[0.9], [0.7]])
        out = decode_output(raw, np.float32(0.5), max_candidates=np.int64(1))
        self.assertEqual(len(out), 1)
        self.assertAlmostEqual(out[0].confidence, 0.9, places=5)

    def test_non_positive_scale_rejected(self) -> None:
        raw = _raw([(10, 10, 4, 4)], [[0.9]])
        with self.assertRaises(ConfigurationError):
            decode_output(raw, 0.5, scale=(0.0, 1.0))

    def test_decoder_object_uses_config(self) -> None:
        raw = _raw([(10, 10, 4, 4), (50, 50, 4, 4)], [[0.65], [0.75]])
        decoder = OutputDecoder(DecoderConfig(conf_threshold=0.7))
        out = decoder.decode(raw, scale=(0.5, 0.5))
        self.assertEqual(len(out), 1)
        self.assertAlmostEqual(out[0].box.x, 24.0)
        self.assertAlmostEqual(out[0].box.width, 2.0)


if __name__ == "__main__":
    unittest.main()
