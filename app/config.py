"""CivicSense application configuration using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

import torch
from pydantic_settings import BaseSettings


def _detect_device() -> str:
    """Auto-detect best available device (MPS > CUDA > CPU)."""
    if torch.backends.mps.is_available():
        return "mps"
    if torch.cuda.is_available():
        return "cuda"
    return "cpu"


class Settings(BaseSettings):
    """CivicSense application settings.

    All fields can be overridden via environment variables with
    the CIVICSENSE_ prefix (e.g., CIVICSENSE_BACKEND_URL).
    """

    backend_url: str = "http://localhost:5000"
    backend_timeout: float = 15.0

    classifier_model: str = "google/mobilenet_v2_1.0_224"
    classifier_device: str = _detect_device()
    classifier_top_k: int = 5
    classify_timeout: float = 20.0
    model_load_timeout: float = 120.0

    taxonomy_path: Path | None = None
    dedupe_matched_labels: bool = False
    block_when_model_unavailable: bool = False
    session_ttl: float = 3600.0

    geocoder_url: str = "https://nominatim.openstreetmap.org/reverse"
    geocoder_user_agent: str = "civicsense/0.1"
    geocoder_timeout: float = 10.0

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000"]
    behind_proxy: bool = False  # Set CIVICSENSE_BEHIND_PROXY=true in Docker

    model_config = {
        "env_prefix": "CIVICSENSE_",
        "env_file": ".env",
        "extra": "ignore",
        "protected_namespaces": (),
    }


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings (singleton)."""
    return Settings()
