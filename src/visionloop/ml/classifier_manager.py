"""Classifier manager: owns the single live classifier handle.

The manager is the only writer of the handle reference. Replacement happens
under a lock that the inference pipeline also holds while it recognizes, so
a reconfiguration requested mid-inference waits for that call to return.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING

from visionloop.ml.errors import (
    ClassifierConfigError,
    ClassifierCreationError,
    ConfigIncompatibilityError,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from visionloop.ml.classifier import Classifier, ClassifierConfig
    from visionloop.ml.sink import ResultSink

    ClassifierFactory = Callable[[ClassifierConfig], Classifier]

logger = logging.getLogger(__name__)

INCOMPATIBLE_NOTICE = "GPU does not support quantized models. Select another device or a float model."


class ClassifierManager:
    """Creates, replaces and releases the classifier handle."""

    def __init__(self, factory: ClassifierFactory, sink: ResultSink | None = None) -> None:
        self._factory = factory
        self._sink = sink
        self._lock = threading.RLock()
        self._handle: Classifier | None = None
        self._config: ClassifierConfig | None = None

    def reconfigure(self, config: ClassifierConfig) -> ClassifierConfigError | None:
        """Replace the live handle with one bound to ``config``.

        Errors are logged and returned, never raised: an incompatible
        device/model pair or a failed construction both leave the manager
        without a handle.
        """
        with self._lock:
            self._teardown()

            if not config.is_compatible:
                logger.info(
                    "Not creating classifier: device %s does not support model %s",
                    config.device,
                    config.model,
                )
                if self._sink is not None:
                    self._sink.notify(INCOMPATIBLE_NOTICE)
                return ConfigIncompatibilityError(INCOMPATIBLE_NOTICE)

            logger.info(
                "Creating classifier (model=%s, device=%s, num_threads=%d)",
                config.model,
                config.device,
                config.num_threads,
            )
            try:
                handle = self._factory(config)
            except Exception as exc:
                logger.exception("Failed to create classifier for %s", config.model)
                error = ClassifierCreationError(str(exc))
                error.__cause__ = exc
                return error

            self._config = config
            self._handle = handle
            logger.info("Classifier input size %dx%d", handle.input_width, handle.input_height)
            return None

    def current(self) -> Classifier | None:
        """Return the live handle, or None when no classifier is configured."""
        return self._handle

    @property
    def config(self) -> ClassifierConfig | None:
        return self._config

    def input_dimensions(self) -> tuple[int, int]:
        """Return (width, height) of the live handle's input.

        Raises:
            RuntimeError: If no classifier is configured.
        """
        handle = self._handle
        if handle is None:
            raise RuntimeError("No classifier is configured")
        return handle.input_width, handle.input_height

    @contextmanager
    def lease(self) -> Iterator[Classifier | None]:
        """Hold the handle for the duration of one inference call."""
        with self._lock:
            yield self._handle

    def shutdown(self) -> None:
        """Release the live handle, if any."""
        with self._lock:
            self._teardown()

    def _teardown(self) -> None:
        handle = self._handle
        if handle is None:
            return
        # Clear the reference first so readers never see a released handle.
        self._handle = None
        self._config = None
        logger.debug("Closing classifier")
        try:
            handle.release()
        except Exception:
            logger.exception("Failed to release classifier")
