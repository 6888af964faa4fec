"""Configuration from environment (no hardcoded secrets)."""

from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service and worker settings from env."""

    model_config = SettingsConfigDict(env_prefix="FILEVAULT_", extra="ignore")

    # Storage
    storage_base_path: Path = Path("/tmp/files_manager")
    db_path: Path = Path("/data/filevault.db")
    db_timeout_seconds: float = 5.0

    # Cache (sessions and job queues)
    redis_url: str = "redis://localhost:6379/0"
    redis_timeout_seconds: float = 5.0
    session_ttl_seconds: int = 24 * 60 * 60

    # Listing
    page_size: int = 20

    # Jobs
    thumbnail_queue: str = "filevault:thumbnails"
    welcome_queue: str = "filevault:welcome"
    job_max_attempts: int = 3
    worker_concurrency: int = 2
    worker_poll_seconds: float = 0.5

    # SMTP (welcome mail); empty host = log only
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""

    # CORS: comma-separated string so pydantic-settings does not JSON-decode it
    cors_origins: str = "http://localhost:5000"

    @property
    def cors_origins_list(self) -> List[str]:
        """CORS origins as a list (split on comma)."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    rate_limit_enabled: bool = True

    # Server
    port: int = 5000

    # Logging (empty log_file = stderr only; level DEBUG|INFO|WARNING|ERROR)
    log_level: str = "INFO"
    log_file: str = ""


def get_settings() -> Settings:
    """Return application settings."""
    return Settings()
