"""Configuration loading with environment variable substitution."""

import json
import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from flydrive.exceptions import ConfigError
from flydrive.utils.validation import validate_identifier

ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")


def substitute_env_vars(value: Any) -> Any:
    """Recursively substitute ${VAR_NAME} patterns with environment variables."""
    if isinstance(value, str):
        def replace(match: re.Match[str]) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigError(f"Environment variable {var_name} is not set")
            return env_value

        return ENV_VAR_PATTERN.sub(replace, value)
    elif isinstance(value, dict):
        return {k: substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [substitute_env_vars(v) for v in value]
    return value


class DiskConfig(BaseModel):
    """Configuration for one disk.

    Unknown drivers keep their extra settings, which are passed to the
    driver's constructor as keyword arguments.
    """

    model_config = ConfigDict(extra="allow")

    driver: str

    def options(self) -> dict[str, Any]:
        """Constructor keyword arguments for the driver."""
        return self.model_dump(exclude={"driver"}, exclude_none=True)


class LocalDiskConfig(DiskConfig):
    """Local filesystem disk."""

    model_config = ConfigDict(extra="forbid")

    driver: Literal["local"] = "local"
    root: str
    base_url: str
    signing_key: str | None = None
    signed_url_expiry: int = 900


class S3DiskConfig(DiskConfig):
    """S3-compatible disk."""

    model_config = ConfigDict(extra="forbid")

    driver: Literal["s3"] = "s3"
    bucket: str
    prefix: str = ""
    region: str | None = None
    endpoint_url: str | None = None  # For MinIO, R2, etc.
    access_key: str | None = None
    secret_key: str | None = None
    public_url: str | None = None
    signed_url_expiry: int = 900


class GCSDiskConfig(DiskConfig):
    """Google Cloud Storage disk."""

    model_config = ConfigDict(extra="forbid")

    driver: Literal["gcs"] = "gcs"
    bucket: str
    prefix: str = ""
    project: str | None = None
    key_filename: str | None = None
    credentials: dict[str, Any] | None = None
    public_url: str = "https://storage.googleapis.com"
    signed_url_expiry: int = 900


DISK_CONFIGS: dict[str, type[DiskConfig]] = {
    "local": LocalDiskConfig,
    "s3": S3DiskConfig,
    "gcs": GCSDiskConfig,
}


class StorageConfig(BaseModel):
    """Named disks and the default disk."""

    default: str = "local"
    disks: dict[str, DiskConfig] = Field(default_factory=dict)

    @field_validator("disks", mode="before")
    @classmethod
    def _parse_disks(cls, value: Any) -> Any:
        """Validate each disk against the model for its driver."""
        if not isinstance(value, dict):
            return value
        parsed: dict[str, DiskConfig] = {}
        for name, raw in value.items():
            validate_identifier(name, "disk name")
            if isinstance(raw, DiskConfig):
                parsed[name] = raw
                continue
            driver = raw.get("driver") if isinstance(raw, dict) else None
            model = DISK_CONFIGS.get(driver, DiskConfig)
            parsed[name] = model.model_validate(raw)
        return parsed

    @model_validator(mode="after")
    def _check_default(self) -> "StorageConfig":
        if self.disks and self.default not in self.disks:
            raise ValueError(
                f"Default disk '{self.default}' is not configured. "
                f"Available: {', '.join(sorted(self.disks))}"
            )
        return self

    @classmethod
    def from_file(cls, path: str | Path) -> "StorageConfig":
        """Load configuration from a YAML or JSON file."""
        path = Path(path)
        with path.open() as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StorageConfig":
        """Load configuration from a dictionary.

        Raises:
            ConfigError: If a variable is unset or the settings are invalid
        """
        data = substitute_env_vars(data)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid storage configuration: {e}", original=e) from e
