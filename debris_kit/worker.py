"""
Background detection loop fed by a frame producer.

The producer calls `submit()` for every captured frame; the worker thread only
ever processes the newest one. Frames that arrive while a cycle is running
replace the pending frame instead of queueing behind it, so latency stays
bounded under load. Results are published as one immutable object, so readers
never see a half-updated list. A failed cycle leaves the previous result in
place.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional, Tuple

from .pipeline import DetectionPipeline
from .resize import scale_factors
from .types import Detection, PixelBuffer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionResult:
    frame_id: int
    detections: Tuple[Detection, ...]
    elapsed_s: float


@dataclass(frozen=True)
class WorkerStats:
    submitted: int
    processed: int
    dropped: int
    cancelled: int
    failed: int


class DetectionWorker:
    def __init__(
        self,
        pipeline: DetectionPipeline,
        *,
        target_size: Optional[Tuple[int, int]] = None,
        cancel_superseded: bool = False,
        name: str = "debris-detector",
    ):
        """
        Args:
            pipeline: pipeline used by the worker thread only
            target_size: (width, height) of the space boxes are reported in
            cancel_superseded: skip decode/publish when a newer frame arrived
                during inference
        """

        self.pipeline = pipeline
        self.target_size = target_size
        self.cancel_superseded = cancel_superseded
        self.name = name

        self._cond = threading.Condition()
        self._pending: Optional[Tuple[int, PixelBuffer]] = None
        self._result: Optional[DetectionResult] = None
        self._finished_id = 0
        self._next_id = 0
        self._stop = False
        self._thread: Optional[threading.Thread] = None

        self._submitted = 0
        self._processed = 0
        self._dropped = 0
        self._cancelled = 0
        self._failed = 0
        self.last_error: Optional[BaseException] = None

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def start(self) -> "DetectionWorker":
        if self._thread is not None and self._thread.is_alive():
            return self
        with self._cond:
            self._stop = False
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.info("Detection worker %s started", self.name)
        return self

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._cond:
            self._stop = True
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Detection worker %s did not stop within %.1fs", self.name, timeout or 0.0)
            self._thread = None
        logger.info("Detection worker %s stopped", self.name)

    def __enter__(self) -> "DetectionWorker":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # ------------------------------------------------------------------ #
    # Producer / consumer API
    # ------------------------------------------------------------------ #
    def submit(self, pixels: PixelBuffer) -> int:
        """
        Hand the newest frame to the worker and return its frame id.
        """

        with self._cond:
            self._next_id += 1
            frame_id = self._next_id
            if self._pending is not None:
                self._dropped += 1
                logger.debug("Dropping stale frame %d in favour of %d", self._pending[0], frame_id)
            self._pending = (frame_id, pixels)
            self._submitted += 1
            self._cond.notify_all()
        return frame_id

    def latest(self) -> Optional[DetectionResult]:
        with self._cond:
            return self._result

    def wait_for(self, frame_id: int, timeout: Optional[float] = None) -> Optional[DetectionResult]:
        """
        Block until frame `frame_id` (or a newer one) has finished, successfully
        or not, and return the latest published result.
        """

        with self._cond:
            self._cond.wait_for(lambda: self._finished_id >= frame_id or self._stop, timeout)
            return self._result

    def stats(self) -> WorkerStats:
        with self._cond:
            return WorkerStats(
                submitted=self._submitted,
                processed=self._processed,
                dropped=self._dropped,
                cancelled=self._cancelled,
                failed=self._failed,
            )

    # ------------------------------------------------------------------ #
    # Worker thread
    # ------------------------------------------------------------------ #
    def _take(self) -> Optional[Tuple[int, PixelBuffer]]:
        with self._cond:
            self._cond.wait_for(lambda: self._pending is not None or self._stop)
            if self._stop:
                return None
            job, self._pending = self._pending, None
            return job

    def _superseded(self) -> bool:
        with self._cond:
            return self._pending is not None

    def _finish(self, frame_id: int, result: Optional[DetectionResult], error: Optional[BaseException]) -> None:
        with self._cond:
            if result is not None:
                self._result = result
                self._processed += 1
            elif error is not None:
                self.last_error = error
                self._failed += 1
            else:
                self._cancelled += 1
            self._finished_id = max(self._finished_id, frame_id)
            self._cond.notify_all()

    def _cycle(self, pixels: PixelBuffer) -> Optional[list]:
        pipe = self.pipeline
        scale = (1.0, 1.0) if self.target_size is None else scale_factors(self.target_size, pipe.input_size)
        raw = pipe.infer(pipe.preprocess(pixels))
        if self.cancel_superseded and self._superseded():
            return None
        return pipe.postprocess(raw, scale)

    def _run(self) -> None:
        while True:
            job = self._take()
            if job is None:
                return
            frame_id, pixels = job
            t0 = time.perf_counter()
            try:
                detections = self._cycle(pixels)
            except Exception as e:
                logger.warning("Detection cycle for frame %d failed: %s", frame_id, e, exc_info=True)
                self._finish(frame_id, None, e)
                continue

            if detections is None:
                logger.debug("Frame %d superseded during inference; result discarded", frame_id)
                self._finish(frame_id, None, None)
                continue

            result = DetectionResult(
                frame_id=frame_id,
                detections=tuple(detections),
                elapsed_s=time.perf_counter() - t0,
            )
            self._finish(frame_id, result, None)
