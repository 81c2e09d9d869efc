"""Configuration settings for iot_cicd.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_REPO_URL = "https://github.com/iceguard/mxchip"
DEFAULT_WORKSPACE_LINK = Path("/tmp/iot-cicd")


def split_arguments(value: str) -> list[str]:
    """Split a comma-separated argument list.

    Empty items are dropped, so an empty string yields no arguments.

    Args:
        value: Comma-separated list, e.g. "--release,--upload".

    Returns:
        List of arguments.
    """
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the IOT_CICD_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="IOT_CICD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Listener
    host: str = Field(
        default="127.0.0.1",
        description="Address (interface) to listen on",
    )
    port: int = Field(
        default=8080,
        ge=0,
        le=65535,
        description="Port to listen on for requests",
    )
    tls_cert_file: Path | None = Field(
        default=None,
        description="TLS certificate file (TLS is enabled when both files are set)",
    )
    tls_key_file: Path | None = Field(
        default=None,
        description="TLS private key file",
    )

    # Endpoints
    build_path: str = Field(
        default="/build",
        description="Mount point of the build endpoint",
    )
    metrics_path: str = Field(
        default="/metrics",
        description="Mount point of the metrics endpoint (empty disables it)",
    )

    # Build
    repo_url: str = Field(
        default=DEFAULT_REPO_URL,
        description="Git URL to clone for the build process",
    )
    build_script: str = Field(
        default="Device/build.sh",
        description="Build script path, relative to the repository root",
    )
    build_args: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Arguments given to the build script",
    )
    master_args: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Arguments given to the build script when building master",
    )

    # Paths
    workspace_link: Path = Field(
        default=DEFAULT_WORKSPACE_LINK,
        description="Stable path the current checkout is published at",
    )
    tmp_dir: Path | None = Field(
        default=None,
        description="Parent directory for checkouts (uses system default if not set)",
    )

    # Operational modes
    serialize_builds: bool = Field(
        default=True,
        description="Serialize builds that share the published workspace path",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("build_args", "master_args", mode="before")
    @classmethod
    def _split_args(cls, value: Any) -> Any:
        if isinstance(value, str):
            return split_arguments(value)
        return value

    @field_validator("build_path", "metrics_path")
    @classmethod
    def _normalize_mount(cls, value: str, info: ValidationInfo) -> str:
        value = value.strip().rstrip("/")
        if not value and info.field_name == "build_path":
            raise ValueError("build_path must name a non-root mount point")
        if value and not value.startswith("/"):
            value = "/" + value
        return value

    @model_validator(mode="after")
    def _check_tls_pair(self) -> "Settings":
        if (self.tls_cert_file is None) != (self.tls_key_file is None):
            raise ValueError("tls_cert_file and tls_key_file must be set together")
        return self

    @property
    def tls_enabled(self) -> bool:
        """Whether the listener serves exclusively over TLS."""
        return self.tls_cert_file is not None and self.tls_key_file is not None


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json", "split_arguments"]
