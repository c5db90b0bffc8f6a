"""Result sinks: where inference results and user notices end up."""

from __future__ import annotations

import logging
from collections import deque
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    import asyncio

    from visionloop.ml.inference import InferenceResult

logger = logging.getLogger(__name__)


class ResultSink(Protocol):
    """Protocol for consumers of inference output."""

    def publish(self, result: InferenceResult) -> None:
        """Receive one inference result."""
        ...

    def notify(self, message: str) -> None:
        """Receive a user-visible notice."""
        ...


class InteractiveChannel:
    """Forwards results to a sink running on the interactive event loop.

    Calls return immediately from any thread; the target sink only ever runs
    on ``loop``, in the order the calls were made.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, sink: ResultSink) -> None:
        self._loop = loop
        self._sink = sink

    def publish(self, result: InferenceResult) -> None:
        self._loop.call_soon_threadsafe(self._sink.publish, result)

    def notify(self, message: str) -> None:
        self._loop.call_soon_threadsafe(self._sink.notify, message)


class ResultBoard:
    """Display-side sink holding the most recent results and notices."""

    def __init__(self, history: int = 50) -> None:
        self._results: deque[InferenceResult] = deque(maxlen=history)
        self._notices: deque[str] = deque(maxlen=history)
        self.published_count: int = 0
        self.notice_count: int = 0

    def publish(self, result: InferenceResult) -> None:
        self._results.append(result)
        self.published_count += 1
        logger.debug("Displaying result for %s (%d ms)", result.image_id, result.elapsed_ms)

    def notify(self, message: str) -> None:
        self._notices.append(message)
        self.notice_count += 1
        logger.warning("Notice: %s", message)

    @property
    def latest(self) -> InferenceResult | None:
        return self._results[-1] if self._results else None

    def results(self, limit: int | None = None) -> list[InferenceResult]:
        """Return retained results, oldest first, at most the last ``limit``."""
        items = list(self._results)
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    def notices(self) -> list[str]:
        return list(self._notices)
