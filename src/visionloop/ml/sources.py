"""Image sources feeding the inference pipeline.

Sources are pull-based with a single slot: the next frame is only handed out
after the pipeline called ``ready_for_next()`` for the previous one.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, cast

from PIL import Image

from visionloop.ml.preprocessing import decode_image

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Frame:
    """One image to classify, with its orientation hint in degrees."""

    image_id: str
    data: Image.Image | bytes | Path
    orientation: int = 0

    def load(self, max_pixels: int | None = None) -> Image.Image:
        """Return the frame as an RGB image, decoding bytes or files as needed.

        Raises:
            ValueError: If the data cannot be decoded.
            OSError: If the file cannot be read.
        """
        if isinstance(self.data, Image.Image):
            return self.data.convert("RGB") if self.data.mode != "RGB" else self.data
        if isinstance(self.data, Path):
            return decode_image(self.data.read_bytes(), max_pixels)
        return decode_image(self.data, max_pixels)


class ImageSource(Protocol):
    """Protocol for suppliers of frames."""

    def __iter__(self) -> Iterator[Frame]:
        """Yield frames until the source is exhausted or closed."""
        ...

    def ready_for_next(self) -> None:
        """Acknowledge the last frame and allow the next one."""
        ...

    def close(self) -> None:
        """Stop handing out frames."""
        ...


class DirectoryImageSource:
    """Yields every file of a directory once, in name order."""

    def __init__(self, directory: str | Path, orientation: int = 0) -> None:
        self._directory = Path(directory)
        self._orientation = orientation
        self._slot = threading.Semaphore(1)
        self._closed = threading.Event()
        self._ready_count = 0

    @property
    def ready_count(self) -> int:
        return self._ready_count

    def __iter__(self) -> Iterator[Frame]:
        paths = sorted(p for p in self._directory.iterdir() if p.is_file())
        logger.info("Found %d images in %s", len(paths), self._directory)
        for path in paths:
            self._slot.acquire()
            if self._closed.is_set():
                return
            yield Frame(image_id=path.name, data=path, orientation=self._orientation)

    def ready_for_next(self) -> None:
        self._ready_count += 1
        self._slot.release()

    def close(self) -> None:
        self._closed.set()
        self._slot.release()


_CLOSED = object()


class QueueImageSource:
    """Frames pushed by producers, one outstanding at a time."""

    def __init__(self) -> None:
        self._queue: queue.SimpleQueue[Frame | object] = queue.SimpleQueue()
        self._slot = threading.Semaphore(1)
        self._state_lock = threading.Lock()
        self._ready_count = 0
        self._closed = False

    @property
    def ready_count(self) -> int:
        return self._ready_count

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, frame: Frame, timeout: float | None = None) -> None:
        """Hand a frame to the pipeline, waiting for the slot to free up.

        Raises:
            queue.Full: If the slot is still busy after ``timeout`` seconds.
            RuntimeError: If the source is closed, including while waiting.
        """
        if self._closed:
            raise RuntimeError("Image source is closed")
        if not self._slot.acquire(timeout=timeout):
            raise queue.Full
        with self._state_lock:
            if self._closed:
                # Pass the wake-up on to the next blocked producer.
                self._slot.release()
                raise RuntimeError("Image source is closed")
            self._queue.put(frame)

    def __iter__(self) -> Iterator[Frame]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield cast(Frame, item)

    def ready_for_next(self) -> None:
        self._ready_count += 1
        self._slot.release()

    def close(self) -> None:
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_CLOSED)
        self._slot.release()
