"""Environment-based configuration for FruitLens."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from FRUITLENS_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FRUITLENS_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8082

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device ("cpu" restricts inference to CPU, the others add an accelerator provider)
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection. A local model_path overrides the registry download and is
    # required unless the registry repo for classifier_model is published. Labels
    # default to labels.txt beside model_path.
    classifier_model: str = "fruit_classifier_v1"
    model_path: str | None = None
    labels_path: str | None = None
    models_dir: str = "models"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)
    # None = wait for inference without a deadline
    inference_timeout: float | None = Field(default=None, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)

    # Output
    top_k: int = Field(default=5, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
