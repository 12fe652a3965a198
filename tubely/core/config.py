from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SECRET = "change-me"


class Secrets(BaseSettings):
    """Secrets configuration, loaded from the environment or a secrets management service."""

    model_config = SettingsConfigDict(
        env_prefix="TUBELY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    jwt_secret: str = Field(default=DEFAULT_SECRET, description="Signing secret for JWT validation.")
    signing_secret: str = Field(
        default=DEFAULT_SECRET,
        description="HMAC secret for playback URLs issued by the local object store.",
    )


class Settings(BaseSettings):
    """Centralised runtime configuration for the Tubely API."""

    model_config = SettingsConfigDict(
        env_prefix="TUBELY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "Tubely API"
    environment: str = Field(default="development", description="Deployment environment label.")
    version: str = Field(default="0.1.0", description="API version for metadata and OpenAPI.")
    log_level: str = Field(default="info")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./tubely.db",
        description="SQLAlchemy compatible DSN.",
    )
    create_schema_on_startup: bool = Field(default=False, description="Create missing tables at startup (development only).")

    storage_backend: Literal["local", "s3"] = Field(default="local", description="Active object store.")
    local_storage_base_path: Path = Field(
        default_factory=lambda: Path("assets"),
        description="Root directory for the local object store.",
    )
    public_base_url: str = Field(
        default="http://localhost:8091",
        description="Externally reachable base URL used when signing local playback URLs.",
    )
    s3_bucket: str = Field(default="tubely-videos", description="Bucket receiving processed uploads.")
    s3_region: str = Field(default="us-east-1")
    s3_endpoint_url: Optional[str] = Field(default=None, description="Custom S3-compatible endpoint (MinIO, LocalStack).")

    accepted_media_type: str = Field(default="video/mp4", description="The only media type accepted for uploads.")
    max_upload_size_bytes: int = Field(default=1 << 30, description="Hard ceiling for upload bodies.")
    playback_url_ttl_seconds: int = Field(default=3600, description="Validity window of signed playback URLs.")

    ffmpeg_binary: str = Field(default="ffmpeg")
    ffprobe_binary: str = Field(default="ffprobe")
    media_tool_timeout_s: float = Field(default=300.0, description="Timeout applied to every ffmpeg/ffprobe run.")
    temp_dir: Optional[Path] = Field(default=None, description="Directory for staged uploads (system default when unset).")

    jwt_algorithm: str = Field(default="HS256", description="Algorithm used for JWT tokens.")
    jwt_issuer: Optional[str] = None
    jwt_audience: Optional[str] = None

    secrets: Secrets = Field(default_factory=Secrets, description="Holds sensitive configuration.")

    @property
    def environment_lower(self) -> str:
        return self.environment.lower()

    @property
    def storage_bucket(self) -> str:
        """Bucket name written into stored pointers for the active backend."""
        if self.storage_backend == "local":
            return "local"
        return self.s3_bucket


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "TUBELY_ENV": "TUBELY_ENVIRONMENT",
        "TUBELY_DB_URL": "TUBELY_DATABASE_URL",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value:
            os.environ[target] = value

    settings = Settings()
    secrets = settings.secrets

    if settings.environment_lower == "production":
        if secrets.jwt_secret == DEFAULT_SECRET:
            raise ValueError("Production environment must have a non-default JWT secret.")
        if settings.storage_backend == "local" and secrets.signing_secret == DEFAULT_SECRET:
            raise ValueError("Production environment must have a non-default signing secret.")

    return settings


__all__ = ["Settings", "Secrets", "get_settings"]
