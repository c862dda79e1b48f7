from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Application configuration loaded from environment variables or .env.

    Env prefix: APP_
    Example: APP_DEFAULT_CONTAINER_WIDTH=1200
    """

    # App
    app_name: str = Field(default="Justified Gallery API")
    app_version: str = Field(default="1.0.0")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Paths
    output_dir: Path = Field(default=Path("outputs"))

    # Layout defaults
    default_container_width: int = Field(default=800)
    default_max_row_height: int = Field(default=360)
    default_spacing: int = Field(default=10)

    # Limits
    max_frames: int = Field(default=5000)
    max_container_width: int = Field(default=20000)
    max_row_height_limit: int = Field(default=5000)
    max_canvas_pixels: int = Field(default=250_000_000)

    # Rate limiting
    rate_limit_requests: int = Field(default=120)
    rate_limit_window_seconds: int = Field(default=60)

    # Redis
    redis_url: Optional[str] = Field(default=None)
    redis_host: str = Field(default="localhost")
    redis_port: int = Field(default=6379)
    redis_db: int = Field(default=0)
    job_ttl_seconds: int = Field(default=1 * 60 * 60)  # 1h
    cleanup_interval_seconds: int = Field(default=600)  # 10 minutes

    # Celery
    celery_worker_pool: Optional[str] = Field(default=None)
    celery_worker_concurrency: Optional[int] = Field(default=None)

    # CORS
    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"])
    cors_allow_credentials: bool = Field(default=True)
    cors_allow_methods: List[str] = Field(default_factory=lambda: ["*"])
    cors_allow_headers: List[str] = Field(default_factory=lambda: ["*"])

    # Logging
    log_level: str = Field(default="INFO")
    log_to_file: bool = Field(default=False)
    log_file_path: Path = Field(default=Path("gallery.log"))
    log_max_bytes: int = Field(default=10 * 1024 * 1024)
    log_backup_count: int = Field(default=5)

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
