"""Pydantic request/response schemas for the visionloop API."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from visionloop.ml.inference import InferenceResult

ModelName = Literal["float_mobilenet", "quantized_mobilenet", "float_efficientnet", "quantized_efficientnet"]
DeviceName = Literal["cpu", "nnapi", "gpu"]


class RecognitionItem(BaseModel):
    """A single ranked label with its confidence score."""

    label: str
    confidence: float
    location: tuple[float, float, float, float] | None = Field(
        default=None, description="Optional (left, top, right, bottom) box in input pixels"
    )


class InferenceResultResponse(BaseModel):
    """One classified image."""

    image_id: str
    recognitions: list[RecognitionItem]
    elapsed_ms: int = Field(ge=0)
    frame_size: str = Field(description="Source image size as WIDTHxHEIGHT")
    crop_size: str = Field(description="Model input size as WIDTHxHEIGHT")
    fingerprint: str | None = Field(description="MD5 of the PNG-encoded image, lowercase hex")
    orientation: int

    @classmethod
    def from_result(cls, result: InferenceResult) -> InferenceResultResponse:
        return cls(
            image_id=result.image_id,
            recognitions=[
                RecognitionItem(label=r.label, confidence=r.confidence, location=r.location)
                for r in result.recognitions
            ],
            elapsed_ms=result.elapsed_ms,
            frame_size=f"{result.image_width}x{result.image_height}",
            crop_size=f"{result.input_width}x{result.input_height}",
            fingerprint=result.fingerprint,
            orientation=result.orientation,
        )


class ClassifierConfigRequest(BaseModel):
    """Requested classifier configuration."""

    model: ModelName
    device: DeviceName = "cpu"
    num_threads: int = Field(default=1, ge=1)


class ClassifierResponse(BaseModel):
    """Current classifier state."""

    active: bool
    model: str | None = None
    device: str | None = None
    num_threads: int | None = None
    input_width: int | None = None
    input_height: int | None = None


class FrameAccepted(BaseModel):
    """Acknowledgement for a pushed frame."""

    image_id: str
    status: str = "accepted"


class NoticesResponse(BaseModel):
    """User-visible notices, oldest first."""

    notices: list[str]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    device: str
    model: str | None
    classifier_ready: bool
    pipeline_running: bool
    processed: int
    skipped: int
    failed: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    quantized: bool
    status: str = Field(description="Model status: 'active', 'available', or 'unsupported'")


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
