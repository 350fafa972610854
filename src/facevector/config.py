"""Environment-based configuration for FaceVector."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from FACEVECTOR_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FACEVECTOR_",
        case_sensitive=False,
        protected_namespaces=("settings_",),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8080

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection
    face_detection_model: str = "retinaface_resnet50"
    face_recognition_model: str = "arcface"
    accept_insightface_license: bool = False
    models_dir: str = "models"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)

    # GPU memory cap for the CUDA provider
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Detection post-processing
    confidence_threshold: float = Field(default=0.02, ge=0.0, le=1.0)
    top_k: int = Field(default=5000, ge=1)
    nms_threshold: float = Field(default=0.4, ge=0.0, le=1.0)
    keep_top_k: int = Field(default=750, ge=1)
    visibility_threshold: float = Field(default=0.6, ge=0.0, le=1.0)

    # Recognition
    embedding_dim: int = Field(default=512, ge=1)
    default_search_limit: int = Field(default=10, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
