"""Image classification handle: one live ONNX session per configuration.

A handle is bound to a (model, device, thread count) triple and owns its
session until ``release()`` is called.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from visionloop.ml.errors import ClassifierCreationError, InferenceError
from visionloop.ml.model_manager import Device, Model, get_spec
from visionloop.ml.preprocessing import center_crop_square, rotate, to_input_tensor

if TYPE_CHECKING:
    from onnxruntime import InferenceSession
    from PIL import Image

    from visionloop.config import Settings
    from visionloop.ml.model_manager import ModelSpec, ModelStore
    from visionloop.ml.preprocessing import Layout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassifierConfig:
    """Model, device and thread count a classifier handle is bound to."""

    model: Model
    device: Device
    num_threads: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "model", Model(self.model))
        object.__setattr__(self, "device", Device(self.device))
        if self.num_threads < 1:
            raise ValueError(f"num_threads must be positive, got {self.num_threads}")

    @classmethod
    def from_settings(cls, settings: Settings) -> ClassifierConfig:
        return cls(model=Model(settings.model), device=Device(settings.device), num_threads=settings.num_threads)

    @property
    def is_compatible(self) -> bool:
        """False when the device cannot run the model's numeric representation."""
        return not (self.device.accelerated and self.model.quantized)


@dataclass(frozen=True)
class Recognition:
    """A single classification prediction.

    ``location`` is an optional (left, top, right, bottom) box in input pixels.
    """

    label: str
    confidence: float
    location: tuple[float, float, float, float] | None = None


class Classifier(Protocol):
    """Protocol for a live classifier handle."""

    @property
    def input_width(self) -> int:
        """Width of the model input in pixels."""
        ...

    @property
    def input_height(self) -> int:
        """Height of the model input in pixels."""
        ...

    def recognize(self, image: Image.Image, orientation: int) -> list[Recognition]:
        """Classify an image and return ranked recognitions.

        Args:
            image: RGB image.
            orientation: Clockwise rotation in degrees to bring the image upright.

        Returns:
            Recognitions sorted by confidence (descending).
        """
        ...

    def release(self) -> None:
        """Free the resources held by the handle."""
        ...


class OnnxClassifier:
    """Classifier handle backed by an onnxruntime InferenceSession."""

    def __init__(
        self,
        session: InferenceSession,
        spec: ModelSpec,
        labels: list[str],
        config: ClassifierConfig,
        max_results: int = 3,
    ) -> None:
        self._session: InferenceSession | None = session
        self._spec = spec
        self._labels = labels
        self._max_results = max_results
        self.config = config

        model_input = session.get_inputs()[0]
        self._input_name: str = model_input.name
        self._layout, self._input_height, self._input_width = _parse_input_shape(model_input.shape)

    @classmethod
    def create(cls, config: ClassifierConfig, store: ModelStore, max_results: int = 3) -> OnnxClassifier:
        """Open a session for ``config`` and wrap it.

        Raises:
            ClassifierCreationError: If the model or labels cannot be loaded.
        """
        spec = get_spec(config.model)
        try:
            labels = store.load_labels(spec)
            session = store.open_session(config.model, config.device, config.num_threads)
            return cls(session, spec, labels, config, max_results=max_results)
        except Exception as exc:
            raise ClassifierCreationError(f"Cannot create classifier for {config.model}: {exc}") from exc

    @property
    def input_width(self) -> int:
        return self._input_width

    @property
    def input_height(self) -> int:
        return self._input_height

    def recognize(self, image: Image.Image, orientation: int) -> list[Recognition]:
        session = self._session
        if session is None:
            raise InferenceError("Classifier has been released")

        upright = center_crop_square(rotate(image, orientation))
        tensor = to_input_tensor(upright, self._input_width, self._input_height, self._spec, self._layout)
        outputs = session.run(None, {self._input_name: tensor})
        scores = np.asarray(outputs[0]).reshape(-1).astype(np.float32)
        if self._spec.quantized:
            scores = scores / 255.0
        return self._top_results(scores)

    def release(self) -> None:
        if self._session is None:
            logger.debug("Classifier for %s already released", self.config.model)
            return
        self._session = None
        logger.debug("Released classifier for %s", self.config.model)

    def _top_results(self, scores: np.ndarray) -> list[Recognition]:
        count = min(self._max_results, scores.size)
        order = np.argsort(scores)[::-1][:count]
        results: list[Recognition] = []
        for index in order:
            label = self._labels[index] if index < len(self._labels) else str(index)
            results.append(Recognition(label=label, confidence=float(scores[index])))
        return results


def _parse_input_shape(shape: list[object]) -> tuple[Layout, int, int]:
    """Return (layout, height, width) for a 4-d image input."""
    if len(shape) != 4:
        raise ValueError(f"Expected a 4-d image input, got shape {shape}")
    if shape[1] == 3:
        return "NCHW", int(shape[2]), int(shape[3])  # type: ignore[call-overload]
    return "NHWC", int(shape[1]), int(shape[2])  # type: ignore[call-overload]
