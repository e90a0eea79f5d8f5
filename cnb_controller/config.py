"""Controller settings.

Values come from ``CNB_CTRL_*`` environment variables (or a ``.env`` file)
and fall back to per-user defaults under the home directory.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_DIR_NAME = "cnb-controller"


def _default_db_url() -> str:
    db_path = Path.home() / ".local" / "share" / APP_DIR_NAME / "db.sqlite"
    return f"sqlite:///{db_path}"


def _default_secrets_dir() -> Path:
    return Path.home() / ".config" / APP_DIR_NAME / "secrets"


class Settings(BaseSettings):
    """Settings for the stores, the reconciler and registry access.

    ``insecure_registries`` is read from the environment as a JSON list,
    e.g. ``CNB_CTRL_INSECURE_REGISTRIES='["localhost:5000"]'``.
    """

    model_config = SettingsConfigDict(
        env_prefix="CNB_CTRL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database URL of the CNBBuild and Knative Build stores",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    build_template: str = Field(
        default="buildpacks-cnb",
        min_length=1,
        description="Knative build template used for derived builds",
    )

    registry_timeout: float = Field(
        default=30.0,
        ge=1,
        description="Timeout in seconds for registry requests",
    )
    insecure_registries: list[str] = Field(
        default_factory=list,
        description="Registry hosts reached over plain HTTP",
    )
    secrets_dir: Path = Field(
        default_factory=_default_secrets_dir,
        description="Root directory of <namespace>/<service-account>/config.json "
        "registry credential files",
    )

    @field_validator("insecure_registries")
    @classmethod
    def _normalize_hosts(cls, hosts: list[str]) -> list[str]:
        # Accept "http://host:port/" as well as a bare "host:port"
        normalized = []
        for host in hosts:
            host = host.strip().removeprefix("http://").rstrip("/")
            if host:
                normalized.append(host)
        return normalized


def get_settings() -> Settings:
    """Load settings from the current environment."""
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render the effective settings as indented JSON."""
    return (settings or get_settings()).model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
