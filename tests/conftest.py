"""Shared fakes for classifier and sink tests."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import pytest
from PIL import Image

from visionloop.ml.classifier import ClassifierConfig, Recognition
from visionloop.ml.model_manager import Device, Model

if TYPE_CHECKING:
    from visionloop.ml.inference import InferenceResult


class FakeClassifier:
    """In-memory classifier handle that records its lifecycle."""

    def __init__(self, config: ClassifierConfig, width: int = 224, height: int = 224) -> None:
        self.config = config
        self.width = width
        self.height = height
        self.release_count = 0
        self.calls: list[tuple[Image.Image, int]] = []
        self.results: list[Recognition] = [Recognition(label=f"{config.model}-label", confidence=0.9)]
        self.fail_on: set[int] = set()
        self.entered = threading.Event()
        self.gate: threading.Event | None = None

    @property
    def input_width(self) -> int:
        return self.width

    @property
    def input_height(self) -> int:
        return self.height

    @property
    def released(self) -> bool:
        return self.release_count > 0

    def recognize(self, image: Image.Image, orientation: int) -> list[Recognition]:
        assert not self.released, "recognize() called on a released classifier"
        self.calls.append((image, orientation))
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if len(self.calls) in self.fail_on:
            raise RuntimeError("inference exploded")
        return list(self.results)

    def release(self) -> None:
        self.release_count += 1


class FakeFactory:
    """Classifier factory that keeps every handle it created."""

    def __init__(self) -> None:
        self.created: list[FakeClassifier] = []
        self.error: Exception | None = None

    def __call__(self, config: ClassifierConfig) -> FakeClassifier:
        if self.error is not None:
            raise self.error
        handle = FakeClassifier(config)
        self.created.append(handle)
        return handle

    @property
    def live(self) -> list[FakeClassifier]:
        return [h for h in self.created if not h.released]


class RecordingSink:
    """Synchronous sink remembering everything it received."""

    def __init__(self) -> None:
        self.results: list[InferenceResult] = []
        self.notices: list[str] = []

    def publish(self, result: InferenceResult) -> None:
        self.results.append(result)

    def notify(self, message: str) -> None:
        self.notices.append(message)


class CountingSource:
    """Image source stub that only counts readiness signals."""

    def __init__(self) -> None:
        self.ready_count = 0
        self.closed = False

    def __iter__(self):  # type: ignore[no-untyped-def]
        return iter(())

    def ready_for_next(self) -> None:
        self.ready_count += 1

    def close(self) -> None:
        self.closed = True


FLOAT_CPU = ClassifierConfig(model=Model.FLOAT_MOBILENET, device=Device.CPU, num_threads=1)
QUANT_GPU = ClassifierConfig(model=Model.QUANTIZED_EFFICIENTNET, device=Device.GPU, num_threads=1)


@pytest.fixture()
def factory() -> FakeFactory:
    return FakeFactory()


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def black_image() -> Image.Image:
    return Image.new("RGB", (4, 4), (0, 0, 0))
