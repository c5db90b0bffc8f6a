"""Model registry and store: download model files and open ONNX sessions.

Models and their label files live in a HuggingFace repository. Sessions are
not cached here: each classifier handle owns the session it opened and drops
it on release.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

if TYPE_CHECKING:
    from visionloop.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class Model(StrEnum):
    FLOAT_MOBILENET = "float_mobilenet"
    QUANTIZED_MOBILENET = "quantized_mobilenet"
    FLOAT_EFFICIENTNET = "float_efficientnet"
    QUANTIZED_EFFICIENTNET = "quantized_efficientnet"

    @property
    def quantized(self) -> bool:
        return MODEL_REGISTRY[self].quantized


class Device(StrEnum):
    CPU = "cpu"
    NNAPI = "nnapi"
    GPU = "gpu"

    @property
    def accelerated(self) -> bool:
        """True for targets that cannot execute quantized graphs."""
        return self is Device.GPU


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single classification model."""

    model: Model
    filename: str
    labels_filename: str
    quantized: bool
    mean: float
    std: float


MODEL_REGISTRY: dict[Model, ModelSpec] = {
    Model.FLOAT_MOBILENET: ModelSpec(
        model=Model.FLOAT_MOBILENET,
        filename="mobilenet_v1_1.0_224.onnx",
        labels_filename="labels.txt",
        quantized=False,
        mean=127.5,
        std=127.5,
    ),
    Model.QUANTIZED_MOBILENET: ModelSpec(
        model=Model.QUANTIZED_MOBILENET,
        filename="mobilenet_v1_1.0_224_quant.onnx",
        labels_filename="labels.txt",
        quantized=True,
        mean=0.0,
        std=1.0,
    ),
    Model.FLOAT_EFFICIENTNET: ModelSpec(
        model=Model.FLOAT_EFFICIENTNET,
        filename="efficientnet-lite0-fp32.onnx",
        labels_filename="labels_without_background.txt",
        quantized=False,
        mean=127.0,
        std=128.0,
    ),
    Model.QUANTIZED_EFFICIENTNET: ModelSpec(
        model=Model.QUANTIZED_EFFICIENTNET,
        filename="efficientnet-lite0-int8.onnx",
        labels_filename="labels_without_background.txt",
        quantized=True,
        mean=0.0,
        std=1.0,
    ),
}


def get_spec(model: Model | str) -> ModelSpec:
    try:
        return MODEL_REGISTRY[Model(model)]
    except ValueError:
        raise KeyError(f"Unknown model: {model}") from None


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ModelStore:
    """Downloads model files and opens ONNX inference sessions for them."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._models_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._paths: dict[str, Path] = {}

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self, filename: str) -> Path:
        """Download a file from the models repository if not already present locally."""
        with self._lock:
            path = self._paths.get(filename)
        if path is not None and path.exists():
            return path

        downloaded = Path(
            hf_hub_download(
                repo_id=self._settings.models_repo,
                filename=filename,
                local_dir=str(self._models_dir),
            )
        )
        with self._lock:
            self._paths[filename] = downloaded
        logger.info("Downloaded %s to %s", filename, downloaded)
        return downloaded

    def load_labels(self, spec: ModelSpec) -> list[str]:
        """Return the labels of a model, one per output index."""
        path = self.ensure_downloaded(spec.labels_filename)
        lines = path.read_text(encoding="utf-8").splitlines()
        return [line.strip() for line in lines if line.strip()]

    def open_session(self, model: Model, device: Device, num_threads: int) -> InferenceSession:
        """Create a new InferenceSession bound to the given device and thread count."""
        spec = get_spec(model)
        model_path = self.ensure_downloaded(spec.filename)
        session = InferenceSession(
            str(model_path),
            sess_options=self.build_session_options(num_threads),
            providers=self.build_providers(device),
        )
        logger.info("Opened session for %s on %s (threads=%d)", model, device, num_threads)
        return session

    @staticmethod
    def build_providers(device: Device) -> list[str]:
        if device == Device.GPU:
            return ["CUDAExecutionProvider", "CPUExecutionProvider"]
        if device == Device.NNAPI:
            return ["NnapiExecutionProvider", "CPUExecutionProvider"]
        return ["CPUExecutionProvider"]

    @staticmethod
    def build_session_options(num_threads: int) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = num_threads
        opts.inter_op_num_threads = 1
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True
        return opts
