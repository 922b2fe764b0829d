"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Cellora"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    # --- Inference service ---
    anthropic_api_key: str = ""  # server-side only
    extraction_model: str = "claude-haiku-4-5-20251001"
    extraction_max_tokens: int = 4096

    # --- Intake ---
    allowed_upload_types: list[str] = [
        "application/pdf",
        "image/jpeg",
        "image/png",
        "image/webp",
    ]
    max_upload_size_bytes: int = 20 * 1024 * 1024  # 20 MiB
    render_dpi: int = 150
    # Directory the JSON API may read `filePath` documents from; empty disables it
    local_intake_dir: str = ""

    # --- Extraction fan-out ---
    extraction_concurrency: int = 4
    extraction_timeout_s: float = 20.0
    extraction_max_retries: int = 2
    extraction_retry_backoff_s: float = 0.5
    pipeline_timeout_s: float = 60.0
    min_successful_pages: int = 1
    extraction_cache_size: int = 512  # 0 disables the cache

    # --- Report ---
    primary_concern_limit: int = 3
    currency: str = "KRW"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @model_validator(mode="after")
    def _check_timeouts(self) -> "Settings":
        if self.extraction_timeout_s >= self.pipeline_timeout_s:
            raise ValueError(
                "extraction_timeout_s must be shorter than pipeline_timeout_s "
                f"({self.extraction_timeout_s} >= {self.pipeline_timeout_s})"
            )
        if self.extraction_concurrency < 1:
            raise ValueError("extraction_concurrency must be at least 1")
        if self.min_successful_pages < 1:
            raise ValueError("min_successful_pages must be at least 1")
        if self.extraction_cache_size < 0:
            raise ValueError("extraction_cache_size must be >= 0")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
