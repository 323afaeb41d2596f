"""Configuration loading and Pydantic models for multipartkit."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from multipartkit.models import DEFAULT_CONTENT_TYPE
from multipartkit.sigv4 import MAX_PRESIGNED_EXPIRES


class StoreConfig(BaseModel):
    """Object store connection configuration.

    Empty credentials fall back to the standard AWS credential chain.
    """

    backend: str = "s3"
    endpoint_url: str = ""
    region: str = "us-east-1"
    access_key_id: str = ""
    secret_access_key: str = ""
    use_path_style: bool = False


class UploadConfig(BaseModel):
    """Upload workflow parameters."""

    bucket: str = "test-bucket"
    key_prefix: str = "random-"
    content_type: str = DEFAULT_CONTENT_TYPE
    part_count: int = Field(default=2, ge=1, le=10000)
    signed_url_expiry_seconds: int = Field(default=900, ge=1, le=MAX_PRESIGNED_EXPIRES)
    concurrency: int = Field(default=4, ge=1)
    max_part_attempts: int = Field(default=3, ge=1)
    request_timeout_seconds: float = Field(default=60.0, gt=0)
    tags: dict[str, str] = Field(default_factory=lambda: {"key": "value"})
    strict_tags: bool = True

    @field_validator("tags", mode="before")
    @classmethod
    def _stringify_tags(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        return value


class LoggingConfig(BaseModel):
    """Log output configuration."""

    level: str = "INFO"
    format: str = "text"


class ObservabilityConfig(BaseModel):
    """Observability feature toggles."""

    metrics: bool = False


class MultipartKitConfig(BaseModel):
    """Top-level multipartkit configuration."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    upload: UploadConfig = Field(default_factory=UploadConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


def _parse_store(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the store section from YAML data into a dict for Pydantic."""
    if data is None:
        return {}
    return {
        "backend": data.get("backend", "s3"),
        "endpoint_url": data.get("endpoint_url") or "",
        "region": data.get("region", "us-east-1"),
        "access_key_id": data.get("access_key_id") or "",
        "secret_access_key": data.get("secret_access_key") or "",
        "use_path_style": data.get("use_path_style", False),
    }


def _parse_upload(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the upload section from YAML data.

    Only keys present in the file are forwarded so model defaults apply
    to the rest; ``tags: {}`` explicitly disables tagging.
    """
    if data is None:
        return {}
    known = UploadConfig.model_fields.keys()
    result = {name: value for name, value in data.items() if name in known}
    if "tags" in result and result["tags"] is None:
        result["tags"] = {}
    return result


def _parse_logging(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the logging section from YAML data."""
    if data is None:
        return {}
    return {
        "level": str(data.get("level", "INFO")).upper(),
        "format": data.get("format", "text"),
    }


def _parse_observability(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the observability section from YAML data."""
    if data is None:
        return {}
    return {"metrics": data.get("metrics", False)}


def load_config(path: Path) -> MultipartKitConfig:
    """Load a MultipartKitConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated MultipartKitConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        pydantic.ValidationError: If a value is out of range.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return MultipartKitConfig(
        store=StoreConfig(**_parse_store(raw.get("store"))),
        upload=UploadConfig(**_parse_upload(raw.get("upload"))),
        logging=LoggingConfig(**_parse_logging(raw.get("logging"))),
        observability=ObservabilityConfig(**_parse_observability(raw.get("observability"))),
    )
