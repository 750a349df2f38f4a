"""Configuration models for cms-bridge.

A YAML file (with ``${ENV_VAR}`` references resolved from the environment
and ``.env``) is validated into pydantic models covering the source and
target platforms, the on-disk state layout, pacing and retry tuning.
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _http_url(value: str) -> str:
    if not value.startswith(("http://", "https://")):
        raise ValueError("URL must start with http:// or https://")
    return value.rstrip("/")


class PathConfig(BaseModel):
    """Where run state lives: audit CSVs, identity maps, media cache and error logs."""

    csv_dir: str = Field(
        default="csv", description="Directory for audit CSVs and JSON mapping files"
    )
    logs_dir: str = Field(default="logs", description="Directory for append-only error logs")
    error_log: str = Field(default="migration_errors.log", description="Item failure log name")
    image_error_log: str = Field(default="image_errors.log", description="Media failure log name")
    image_map_file: str = Field(default="image_map.json", description="Media cache file name")

    @property
    def csv_path(self) -> Path:
        return Path(self.csv_dir)

    @property
    def logs_path(self) -> Path:
        return Path(self.logs_dir)

    @property
    def error_log_path(self) -> Path:
        return self.logs_path / self.error_log

    @property
    def image_error_log_path(self) -> Path:
        return self.logs_path / self.image_error_log

    @property
    def image_map_path(self) -> Path:
        return self.csv_path / self.image_map_file


class StagesConfig(BaseModel):
    """Stages ``migrate all`` runs; a named stage runs regardless."""

    taxonomies: bool = True
    roles: bool = True
    users: bool = True
    companies: bool = True
    projects: bool = True


class SourceConfig(BaseModel):
    """JSON:API source site.

    Every credential is optional on its own; the credential broker skips
    strategies whose credentials are missing.
    """

    url: str = Field(..., description="Source site base URL")
    api_path: str = Field(default="/jsonapi", description="JSON:API prefix below the base URL")
    probe_path: str = Field(
        default="/",
        description="Lightweight endpoint (relative to the API prefix) used to verify credentials",
    )
    username: str | None = Field(default=None, description="Account name for Basic/OAuth/login")
    password: str | None = Field(default=None, description="Account password")
    oauth_client_id: str | None = Field(default=None, description="OAuth2 client id")
    oauth_client_secret: str | None = Field(default=None, description="OAuth2 client secret")
    session_cookie: str | None = Field(
        default=None, description="Pre-issued session cookie (skips the login round-trip)"
    )
    verify_ssl: bool = Field(default=True, description="Verify the source TLS certificate")
    force_ipv4: bool = Field(default=True, description="Resolve the source host over IPv4 only")
    timeout: int = Field(default=60, ge=1, le=600, description="Request timeout in seconds")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _http_url(v)

    @field_validator("api_path")
    @classmethod
    def validate_api_path(cls, v: str) -> str:
        """``jsonapi/`` -> ``/jsonapi``; blank means the API sits at the site root."""
        stripped = v.strip("/")
        return f"/{stripped}" if stripped else ""

    @property
    def api_url(self) -> str:
        return f"{self.url}{self.api_path}"


class TargetConfig(BaseModel):
    """Collection API target."""

    url: str = Field(..., description="Target platform base URL")
    static_token: str | None = Field(default=None, description="Static access token")
    email: str | None = Field(default=None, description="Login email (used without a token)")
    password: str | None = Field(default=None, description="Login password")
    verify_ssl: bool = Field(default=True, description="Verify the target TLS certificate")
    timeout: int = Field(default=60, ge=1, le=600, description="Request timeout in seconds")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _http_url(v)

    @model_validator(mode="after")
    def validate_credentials(self) -> "TargetConfig":
        if not self.static_token and not (self.email and self.password):
            raise ValueError("Target requires static_token or both email and password")
        return self


class PerformanceConfig(BaseModel):
    """Pacing and retry tuning."""

    page_limit: int = Field(
        default=50, ge=1, le=50, description="page[limit] sent on the first source page"
    )
    page_delay: float = Field(
        default=0.2, ge=0.0, le=30.0, description="Seconds to wait between source pages"
    )
    rate_limit: int = Field(default=10, ge=0, le=50, description="Requests per second limit")
    fetch_retry_attempts: int = Field(
        default=3, ge=1, le=10, description="Attempts per page fetch / target call"
    )
    fetch_backoff_min: float = Field(default=1.0, ge=0.0, le=60.0)
    fetch_backoff_max: float = Field(default=10.0, ge=0.0, le=300.0)
    media_retries: int = Field(
        default=2, ge=0, le=10, description="Retries after the first media transfer attempt"
    )
    media_backoff_step: float = Field(
        default=0.5, ge=0.0, le=30.0, description="Linear media backoff: step x attempt seconds"
    )


class LoggingConfig(BaseModel):
    """HTTP payload logging; levels and the log file come from the command line."""

    log_payloads: bool = Field(
        default=False, description="Log request/response payloads at DEBUG (secrets redacted)"
    )
    max_payload_size: int = Field(default=10000, ge=100, le=1000000)


class MigrationConfig(BaseSettings):
    """Root configuration; ``CMS_BRIDGE_<SECTION>__<FIELD>`` env vars fill unset fields."""

    model_config = SettingsConfigDict(
        env_prefix="CMS_BRIDGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    source: SourceConfig
    target: TargetConfig
    paths: PathConfig = Field(default_factory=PathConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    stages: StagesConfig = Field(default_factory=StagesConfig)

    # Directus folder ids keyed by asset kind (company_logos, users, ...)
    media_folders: dict[str, str] = Field(default_factory=dict)
    default_uploader: str | None = Field(
        default=None, description="Target user id recorded as uploader when the source has none"
    )
    role_ids: dict[str, str] = Field(
        default_factory=dict, description="Target role id per target role name"
    )


def load_config_from_yaml(config_path: str | Path) -> MigrationConfig:
    """Read, expand and validate a YAML configuration file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: For unparseable YAML, an empty file or an unset variable
        pydantic.ValidationError: If the values do not validate
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e

    if not data:
        raise ValueError(f"Empty configuration file: {path}")

    return MigrationConfig(**_expand_env_vars(data))


def _expand_env_vars(data: Any) -> Any:
    """Replace ``${VAR}`` references in every string value, recursively."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    if isinstance(data, str):
        return _ENV_REFERENCE.sub(_env_value, data)
    return data


def _env_value(match: re.Match[str]) -> str:
    name = match.group(1)
    value = os.environ.get(name)
    if value is None:
        raise ValueError(
            f"Environment variable '{name}' not found. Set it in your environment or .env file."
        )
    return value
