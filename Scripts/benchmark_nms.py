from __future__ import annotations

import argparse
import statistics
import time
from dataclasses import dataclass
from typing import List

import numpy as np

from debris_kit import decode_output, nms


@dataclass(frozen=True)
class TimingSummary:
    n: int
    mean_ms: float
    p50_ms: float
    p90_ms: float
    p95_ms: float


def _percentile(sorted_values: List[float], q: float) -> float:
    if not sorted_values:
        raise ValueError("No values provided.")
    if q < 0.0 or q > 100.0:
        raise ValueError("q must be in [0, 100].")
    if len(sorted_values) == 1:
        return float(sorted_values[0])
    # Linear interpolation between closest ranks.
    pos = (q / 100.0) * (len(sorted_values) - 1)
    lo = int(np.floor(pos))
    hi = int(np.ceil(pos))
    if lo == hi:
        return float(sorted_values[lo])
    t = pos - lo
    return float(sorted_values[lo] * (1.0 - t) + sorted_values[hi] * t)


def _summarize_ms(values_s: List[float]) -> TimingSummary:
    ms_sorted = sorted(v * 1000.0 for v in values_s)
    return TimingSummary(
        n=len(ms_sorted),
        mean_ms=float(statistics.fmean(ms_sorted)) if ms_sorted else 0.0,
        p50_ms=_percentile(ms_sorted, 50.0) if ms_sorted else 0.0,
        p90_ms=_percentile(ms_sorted, 90.0) if ms_sorted else 0.0,
        p95_ms=_percentile(ms_sorted, 95.0) if ms_sorted else 0.0,
    )


def _format_summary(label: str, s: TimingSummary) -> str:
    return (
        f"{label}: n={s.n} mean={s.mean_ms:.3f}ms p50={s.p50_ms:.3f}ms "
        f"p90={s.p90_ms:.3f}ms p95={s.p95_ms:.3f}ms"
    )


def synthetic_output(n_candidates: int, n_classes: int, imgsz: int, seed: int = 0) -> np.ndarray:
    """
    Random (1, 4 + C, N) raw output: cx, cy, w, h rows then class score rows.
    """

    rng = np.random.default_rng(seed)
    cxcy = rng.uniform(0, imgsz, size=(2, n_candidates))
    wh = rng.uniform(5, 80, size=(2, n_candidates))
    scores = rng.uniform(0.0, 1.0, size=(n_classes, n_candidates)) ** 4
    return np.concatenate([cxcy, wh, scores], axis=0)[None, ...].astype(np.float32)


def main() -> int:
    parser = argparse.ArgumentParser(description="Benchmark decode + NMS latency on synthetic raw model output.")
    parser.add_argument("--candidates", type=int, default=8400, help="Number of candidate columns (N).")
    parser.add_argument("--classes", type=int, default=1, help="Number of class rows (C).")
    parser.add_argument("--imgsz", type=int, default=640, help="Model input size used for synthetic geometry.")
    parser.add_argument("--conf", type=float, default=0.5, help="Confidence threshold.")
    parser.add_argument("--iou", type=float, default=0.45, help="IoU threshold for NMS.")
    parser.add_argument("--repeats", type=int, default=200, help="Number of timed runs.")
    parser.add_argument("--warmup", type=int, default=10, help="Untimed warmup runs.")
    args = parser.parse_args()

    if args.candidates < 1:
        raise ValueError("--candidates must be >= 1")
    if args.classes < 1:
        raise ValueError("--classes must be >= 1")
    if args.repeats < 1:
        raise ValueError("--repeats must be >= 1")
    if args.warmup < 0:
        raise ValueError("--warmup must be >= 0")

    raw = synthetic_output(int(args.candidates), int(args.classes), int(args.imgsz))

    t_decode: List[float] = []
    t_global: List[float] = []
    t_per_class: List[float] = []
    n_candidates = 0
    n_global = 0
    n_per_class = 0

    for i in range(int(args.warmup) + int(args.repeats)):
        t0 = time.perf_counter()
        candidates = decode_output(raw, float(args.conf))
        t1 = time.perf_counter()
        kept_global = nms(candidates, float(args.iou))
        t2 = time.perf_counter()
        kept_per_class = nms(candidates, float(args.iou), class_aware=True)
        t3 = time.perf_counter()

        if i < int(args.warmup):
            continue
        t_decode.append(t1 - t0)
        t_global.append(t2 - t1)
        t_per_class.append(t3 - t2)
        n_candidates = len(candidates)
        n_global = len(kept_global)
        n_per_class = len(kept_per_class)

    print(_format_summary("decode", _summarize_ms(t_decode)))
    print(_format_summary("nms_global", _summarize_ms(t_global)))
    print(_format_summary("nms_per_class", _summarize_ms(t_per_class)))
    print(f"candidates={n_candidates} kept_global={n_global} kept_per_class={n_per_class}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
