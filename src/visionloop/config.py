"""Environment-based configuration for visionloop."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from VISIONLOOP_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="VISIONLOOP_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # Classifier selection
    model: Literal[
        "float_mobilenet",
        "quantized_mobilenet",
        "float_efficientnet",
        "quantized_efficientnet",
    ] = "quantized_efficientnet"
    device: Literal["cpu", "nnapi", "gpu"] = "cpu"
    num_threads: int = Field(default=1, ge=1)

    # Model storage
    models_repo: str = "visionloop/image-classification-models"
    models_dir: str = "models"

    # Image source (None = frames are pushed through the API)
    images_dir: str | None = None
    sensor_orientation: int = Field(default=0, multiple_of=90)

    # Results
    max_results: int = Field(default=3, ge=1)
    result_history: int = Field(default=50, ge=1)

    # Backpressure
    submit_timeout: float = Field(default=5.0, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
