"""Tests for the classifier manager."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest
from conftest import FLOAT_CPU, QUANT_GPU, FakeFactory, RecordingSink
from PIL import Image

from visionloop.ml.classifier import ClassifierConfig
from visionloop.ml.classifier_manager import INCOMPATIBLE_NOTICE, ClassifierManager
from visionloop.ml.errors import ClassifierCreationError, ConfigIncompatibilityError
from visionloop.ml.inference import InferencePipeline
from visionloop.ml.model_manager import Device, Model
from visionloop.ml.sources import Frame, QueueImageSource

# ---------------------------------------------------------------------------
# Reconfiguration
# ---------------------------------------------------------------------------


class TestReconfigure:
    def test_starts_without_classifier(self, factory: FakeFactory) -> None:
        mgr = ClassifierManager(factory)
        assert mgr.current() is None
        assert mgr.config is None

    @pytest.mark.parametrize("model", list(Model))
    @pytest.mark.parametrize("device", [Device.CPU, Device.NNAPI])
    def test_valid_config_installs_handle(self, factory: FakeFactory, model: Model, device: Device) -> None:
        mgr = ClassifierManager(factory)
        config = ClassifierConfig(model=model, device=device, num_threads=2)

        assert mgr.reconfigure(config) is None

        handle = mgr.current()
        assert handle is factory.created[-1]
        assert mgr.config == config
        assert mgr.input_dimensions() == (handle.input_width, handle.input_height)

    def test_float_model_on_gpu_is_accepted(self, factory: FakeFactory) -> None:
        mgr = ClassifierManager(factory)
        config = ClassifierConfig(model=Model.FLOAT_EFFICIENTNET, device=Device.GPU, num_threads=1)
        assert mgr.reconfigure(config) is None
        assert mgr.current() is not None

    def test_reconfigure_releases_previous_handle_once(self, factory: FakeFactory) -> None:
        mgr = ClassifierManager(factory)
        mgr.reconfigure(FLOAT_CPU)
        first = factory.created[0]

        mgr.reconfigure(ClassifierConfig(model=Model.QUANTIZED_MOBILENET, device=Device.CPU, num_threads=4))

        assert first.release_count == 1
        assert factory.live == [factory.created[1]]

    @pytest.mark.parametrize("model", [Model.QUANTIZED_MOBILENET, Model.QUANTIZED_EFFICIENTNET])
    def test_quantized_on_gpu_is_rejected(self, factory: FakeFactory, sink: RecordingSink, model: Model) -> None:
        mgr = ClassifierManager(factory, sink=sink)
        mgr.reconfigure(FLOAT_CPU)
        previous = factory.created[0]

        error = mgr.reconfigure(ClassifierConfig(model=model, device=Device.GPU, num_threads=1))

        assert isinstance(error, ConfigIncompatibilityError)
        assert mgr.current() is None
        assert mgr.config is None
        assert previous.release_count == 1
        assert len(factory.created) == 1
        assert factory.live == []
        assert sink.notices == [INCOMPATIBLE_NOTICE]

    def test_rejection_without_sink_does_not_fail(self, factory: FakeFactory) -> None:
        mgr = ClassifierManager(factory)
        assert isinstance(mgr.reconfigure(QUANT_GPU), ConfigIncompatibilityError)

    def test_creation_failure_is_reported_not_raised(self, factory: FakeFactory) -> None:
        mgr = ClassifierManager(factory)
        mgr.reconfigure(FLOAT_CPU)
        factory.error = FileNotFoundError("model file missing")

        error = mgr.reconfigure(ClassifierConfig(model=Model.FLOAT_EFFICIENTNET, device=Device.CPU))

        assert isinstance(error, ClassifierCreationError)
        assert isinstance(error.__cause__, FileNotFoundError)
        assert mgr.current() is None
        assert factory.created[0].release_count == 1

    def test_recovers_after_creation_failure(self, factory: FakeFactory) -> None:
        mgr = ClassifierManager(factory)
        factory.error = RuntimeError("boom")
        mgr.reconfigure(FLOAT_CPU)
        factory.error = None

        assert mgr.reconfigure(FLOAT_CPU) is None
        assert mgr.current() is factory.created[0]


class TestContract:
    def test_input_dimensions_without_handle_raises(self, factory: FakeFactory) -> None:
        mgr = ClassifierManager(factory)
        with pytest.raises(RuntimeError, match="No classifier"):
            mgr.input_dimensions()

    def test_lease_yields_current_handle(self, factory: FakeFactory) -> None:
        mgr = ClassifierManager(factory)
        with mgr.lease() as handle:
            assert handle is None
        mgr.reconfigure(FLOAT_CPU)
        with mgr.lease() as handle:
            assert handle is factory.created[0]

    def test_shutdown_releases_handle(self, factory: FakeFactory) -> None:
        mgr = ClassifierManager(factory)
        mgr.reconfigure(FLOAT_CPU)
        mgr.shutdown()
        mgr.shutdown()
        assert mgr.current() is None
        assert factory.created[0].release_count == 1

    def test_failing_release_does_not_escape_reconfigure(self, factory: FakeFactory) -> None:
        mgr = ClassifierManager(factory)
        mgr.reconfigure(FLOAT_CPU)
        broken = factory.created[0]
        broken.release = MagicMock(side_effect=RuntimeError("release failed"))  # type: ignore[method-assign]

        new_config = ClassifierConfig(model=Model.FLOAT_EFFICIENTNET, device=Device.CPU)
        assert mgr.reconfigure(new_config) is None

        broken.release.assert_called_once()
        assert mgr.current() is factory.created[1]
        assert mgr.config == new_config

    def test_num_threads_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="num_threads"):
            ClassifierConfig(model=Model.FLOAT_MOBILENET, device=Device.CPU, num_threads=0)

    def test_config_accepts_plain_strings(self) -> None:
        config = ClassifierConfig(model="float_mobilenet", device="cpu", num_threads=1)  # type: ignore[arg-type]
        assert config == FLOAT_CPU
        assert config.model is Model.FLOAT_MOBILENET


# ---------------------------------------------------------------------------
# Reconfiguration during inference
# ---------------------------------------------------------------------------


class TestInFlightReconfigure:
    def test_in_flight_call_finishes_on_old_handle(self, factory: FakeFactory, sink: RecordingSink) -> None:
        mgr = ClassifierManager(factory, sink=sink)
        mgr.reconfigure(FLOAT_CPU)
        old = factory.created[0]
        old.gate = threading.Event()

        pipeline = InferencePipeline(mgr, QueueImageSource(), sink)
        frame = Frame(image_id="frame-0", data=Image.new("RGB", (8, 8)))
        worker = threading.Thread(target=pipeline.process_next, args=(frame,))
        worker.start()
        assert old.entered.wait(timeout=5)

        new_config = ClassifierConfig(model=Model.FLOAT_EFFICIENTNET, device=Device.CPU, num_threads=2)
        reconfigurer = threading.Thread(target=mgr.reconfigure, args=(new_config,))
        reconfigurer.start()
        reconfigurer.join(timeout=0.2)

        # Still blocked behind the in-flight call.
        assert reconfigurer.is_alive()
        assert mgr.current() is old
        assert old.release_count == 0

        old.gate.set()
        worker.join(timeout=5)
        reconfigurer.join(timeout=5)

        assert not reconfigurer.is_alive()
        assert len(sink.results) == 1
        assert sink.results[0].recognitions[0].label == "float_mobilenet-label"
        assert old.release_count == 1
        assert mgr.current() is factory.created[1]
        assert mgr.config == new_config
        pipeline.shutdown()
