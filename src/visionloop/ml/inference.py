"""Inference pipeline: classify frames one at a time on a background worker.

Architecture:
    ImageSource -> worker thread -> ClassifierManager.lease() -> ResultSink

The worker pulls a frame, classifies it, publishes the result and signals
the source that it is ready for the next frame. There is never more than
one inference in flight, so results are published in submission order.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

from visionloop.ml.errors import FingerprintError
from visionloop.ml.fingerprint import fingerprint_image

if TYPE_CHECKING:
    from visionloop.ml.classifier import Recognition
    from visionloop.ml.classifier_manager import ClassifierManager
    from visionloop.ml.sink import ResultSink
    from visionloop.ml.sources import Frame, ImageSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InferenceResult:
    """Outcome of classifying one frame."""

    image_id: str
    recognitions: tuple[Recognition, ...]
    elapsed_ms: int
    image_width: int
    image_height: int
    input_width: int
    input_height: int
    fingerprint: str | None
    orientation: int


class InferencePipeline:
    """Runs the pull loop over an image source on a single worker thread."""

    def __init__(
        self,
        manager: ClassifierManager,
        source: ImageSource,
        sink: ResultSink,
        max_image_pixels: int | None = None,
    ) -> None:
        self._manager = manager
        self._source = source
        self._sink = sink
        self._max_image_pixels = max_image_pixels
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="inference")
        self._future: Future[None] | None = None

        self._processed: int = 0
        self._skipped: int = 0
        self._failed: int = 0
        self._counter_lock = threading.Lock()

    @property
    def source(self) -> ImageSource:
        return self._source

    def start(self) -> Future[None]:
        """Start pulling frames on the worker thread."""
        if self._future is not None:
            raise RuntimeError("Pipeline already started")
        self._future = self._executor.submit(self._run)
        return self._future

    def process_next(self, frame: Frame) -> InferenceResult | None:
        """Classify one frame and publish the result.

        Returns the published result, or None when the frame was skipped
        (no classifier configured) or failed. Readiness for the next frame
        is signalled on every path.
        """
        try:
            result = self._classify(frame)
            if result is None:
                self._count("skipped")
                return None
            self._sink.publish(result)
            self._count("processed")
            return result
        except Exception:
            logger.exception("Inference failed for image %s", frame.image_id)
            self._count("failed")
            return None
        finally:
            self._source.ready_for_next()

    def stop(self) -> None:
        """Close the source; frames already handed over are still processed."""
        self._source.close()

    def shutdown(self) -> None:
        """Stop the loop and wait for the worker to finish."""
        self.stop()
        self._executor.shutdown(wait=True)

    @property
    def running(self) -> bool:
        return self._future is not None and not self._future.done()

    @property
    def processed(self) -> int:
        with self._counter_lock:
            return self._processed

    @property
    def skipped(self) -> int:
        with self._counter_lock:
            return self._skipped

    @property
    def failed(self) -> int:
        with self._counter_lock:
            return self._failed

    # -- Internal -----------------------------------------------------------

    def _run(self) -> None:
        logger.info("Inference pipeline started")
        try:
            for frame in self._source:
                self.process_next(frame)
        except Exception:
            logger.exception("Image source failed; pipeline stopped")
        logger.info(
            "Inference pipeline stopped (processed=%d, skipped=%d, failed=%d)",
            self.processed,
            self.skipped,
            self.failed,
        )

    def _classify(self, frame: Frame) -> InferenceResult | None:
        if self._manager.current() is None:
            logger.debug("No classifier configured; skipping %s", frame.image_id)
            return None

        image = frame.load(self._max_image_pixels)

        with self._manager.lease() as handle:
            if handle is None:
                logger.debug("Classifier went away; skipping %s", frame.image_id)
                return None
            start = time.monotonic()
            recognitions = handle.recognize(image, frame.orientation)
            elapsed_ms = max(0, int((time.monotonic() - start) * 1000))
            input_width, input_height = handle.input_width, handle.input_height

        try:
            fingerprint: str | None = fingerprint_image(image)
        except FingerprintError:
            logger.warning("Cannot fingerprint image %s", frame.image_id, exc_info=True)
            fingerprint = None

        logger.info("Image %s: %s in %d ms (md5=%s)", frame.image_id, recognitions, elapsed_ms, fingerprint)
        return InferenceResult(
            image_id=frame.image_id,
            recognitions=tuple(recognitions),
            elapsed_ms=elapsed_ms,
            image_width=image.width,
            image_height=image.height,
            input_width=input_width,
            input_height=input_height,
            fingerprint=fingerprint,
            orientation=frame.orientation,
        )

    def _count(self, outcome: str) -> None:
        with self._counter_lock:
            if outcome == "processed":
                self._processed += 1
            elif outcome == "skipped":
                self._skipped += 1
            else:
                self._failed += 1
