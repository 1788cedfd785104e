"""Configuration management for the Code Bridge service.

This module provides a single flat Settings class loaded from the environment
and an optional .env file.

Usage:
    from codebridge.config import settings

    settings.api_port
    settings.max_execution_time
"""

import os
import tempfile
from typing import List, Literal, Optional

import structlog
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .languages import (
    LANGUAGES,
    LanguageConfig,
    get_language,
    get_supported_languages,
    is_supported_language,
    normalize_language,
)


def _default_workspace_root() -> str:
    return os.path.join(tempfile.gettempdir(), "code_bridge_temp")


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # API Configuration
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=3006, ge=1, le=65535)
    api_debug: bool = Field(default=False)
    api_reload: bool = Field(default=False)

    # Sandbox Configuration
    sandbox_runtime: Literal["docker", "nsjail", "local"] = Field(
        default="docker",
        description="How sandboxes are launched; 'local' has no isolation",
    )
    docker_binary: str = Field(default="docker", description="Path to docker CLI")
    docker_image_prefix: str = Field(
        default="codebridge-",
        description="Image name prefix; the language tag is appended",
    )
    nsjail_binary: str = Field(default="nsjail", description="Path to nsjail binary")
    sandbox_mount_path: str = Field(
        default="/code",
        description="In-sandbox path the workspace directory is mounted at",
    )
    workspace_root: str = Field(
        default_factory=_default_workspace_root,
        description="Root directory for per-connection workspaces",
    )
    enabled_languages: str = Field(
        default="python,cpp,java",
        description="Comma-separated language tags accepted for runs",
    )

    # Resource Limits - Execution
    max_execution_time: int = Field(default=60, ge=1, le=3600)
    max_memory_mb: int = Field(default=512, ge=64, le=8192)
    max_processes: int = Field(default=64, ge=1, le=4096)

    # Resource Limits - Output
    max_output_bytes: int = Field(default=1024 * 1024, ge=1024)
    output_read_chunk_size: int = Field(default=4096, ge=64, le=65536)
    tag_output_streams: bool = Field(
        default=False,
        description="Include the source stream (stdout/stderr) with each output chunk",
    )

    # Teardown
    kill_grace_seconds: float = Field(default=5.0, gt=0, le=60)

    # Health
    min_free_disk_mb: int = Field(
        default=100,
        ge=0,
        description="Below this much free space on the workspace root the service is unhealthy",
    )

    # Rate Limiting
    rate_limit_enabled: bool = Field(default=True)
    rate_limit_requests: int = Field(default=100, ge=1)
    rate_limit_window_seconds: int = Field(default=900, ge=1)

    # Logging Configuration
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    enable_access_logs: bool = Field(default=True)

    # Development Configuration
    enable_cors: bool = Field(default=True)
    cors_origins: List[str] = Field(default_factory=list)
    enable_docs: bool = Field(default=True)

    # ========================================================================
    # VALIDATORS
    # ========================================================================

    @field_validator("enabled_languages")
    @classmethod
    def validate_enabled_languages(cls, v: str) -> str:
        """Reject language tags with no registered configuration."""
        tags = [normalize_language(tag) for tag in v.split(",") if tag.strip()]
        unknown = [tag for tag in tags if tag not in LANGUAGES]
        if unknown:
            raise ValueError(
                f"Unknown languages {unknown}; known: {get_supported_languages()}"
            )
        if not tags:
            raise ValueError("At least one language must be enabled")
        return ",".join(tags)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and check the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @field_validator("sandbox_mount_path")
    @classmethod
    def validate_mount_path(cls, v: str) -> str:
        """The mount path must be absolute inside the sandbox."""
        if not v.startswith("/"):
            raise ValueError("sandbox_mount_path must be an absolute path")
        return v.rstrip("/") or "/"

    # ========================================================================
    # HELPER METHODS
    # ========================================================================

    def get_enabled_languages(self) -> List[str]:
        """Get the language allow-set as a list of tags."""
        return self.enabled_languages.split(",")

    def is_language_enabled(self, language: Optional[str]) -> bool:
        """Check a client-supplied tag against the allow-set."""
        return normalize_language(language) in self.get_enabled_languages()

    def get_configuration_summary(self) -> dict:
        """Non-sensitive configuration summary for startup logs and /status."""
        return {
            "sandbox_runtime": self.sandbox_runtime,
            "workspace_root": self.workspace_root,
            "enabled_languages": self.get_enabled_languages(),
            "max_execution_time": self.max_execution_time,
            "max_memory_mb": self.max_memory_mb,
            "max_output_bytes": self.max_output_bytes,
            "tag_output_streams": self.tag_output_streams,
            "rate_limit_enabled": self.rate_limit_enabled,
        }


# Global settings instance
settings = Settings()

if settings.sandbox_runtime == "local":
    structlog.get_logger("config").warning(
        "SANDBOX_RUNTIME=local runs submitted code without isolation; "
        "use it for development and tests only."
    )

__all__ = [
    "Settings",
    "settings",
    # Language configuration
    "LANGUAGES",
    "LanguageConfig",
    "get_language",
    "get_supported_languages",
    "is_supported_language",
    "normalize_language",
]
