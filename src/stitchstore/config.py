"""Configuration loading and Pydantic models for StitchStore."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class PartsConfig(BaseModel):
    """Part staging store configuration."""

    engine: str = "local"
    local_root: str = "./data/parts"
    memory_max_size_bytes: int = 0


class StorageConfig(BaseModel):
    """Destination storage backend configuration."""

    backend: str = "local"
    local_root: str = "./data/objects"
    local_web_server_url: str = ""
    memory_group: str = "group1"
    aws_bucket: str = ""
    aws_region: str = "us-east-1"
    aws_prefix: str = ""
    aws_endpoint_url: str = ""
    aws_use_path_style: bool = False
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""


class LocksConfig(BaseModel):
    """Per-upload lock manager configuration."""

    engine: str = "local"
    blocking: bool = True
    file_lock_dir: str = "./data/locks"
    file_timeout_seconds: float = 30.0


class CancelConfig(BaseModel):
    """Cancellation registry configuration."""

    engine: str = "memory"
    file_root: str = "./data/cancel"


class UploadsConfig(BaseModel):
    """Upload session lifecycle configuration."""

    ttl_seconds: int = 604800


class LoggingConfig(BaseModel):
    """Log output configuration."""

    level: str = "INFO"
    format: str = "text"


class ObservabilityConfig(BaseModel):
    """Metrics configuration."""

    metrics: bool = True


class StitchStoreConfig(BaseModel):
    """Top-level StitchStore configuration."""

    parts: PartsConfig = Field(default_factory=PartsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    locks: LocksConfig = Field(default_factory=LocksConfig)
    cancel: CancelConfig = Field(default_factory=CancelConfig)
    uploads: UploadsConfig = Field(default_factory=UploadsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


def _parse_parts(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the parts section from YAML data.

    Handles nested structure: parts.local.root_dir -> local_root
    """
    if data is None:
        return {}
    result: dict[str, Any] = {"engine": data.get("engine", "local")}

    local_section = data.get("local")
    if isinstance(local_section, dict):
        result["local_root"] = local_section.get("root_dir", "./data/parts")

    memory_section = data.get("memory")
    if isinstance(memory_section, dict):
        result["memory_max_size_bytes"] = memory_section.get("max_size_bytes", 0)

    return result


def _parse_storage(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the storage section from YAML data.

    Handles nested structure: storage.local.root_dir -> local_root, etc.
    """
    if data is None:
        return {}

    result: dict[str, Any] = {"backend": data.get("backend", "local")}

    local_section = data.get("local")
    if isinstance(local_section, dict):
        result["local_root"] = local_section.get("root_dir", "./data/objects")
        result["local_web_server_url"] = local_section.get("web_server_url", "")

    memory_section = data.get("memory")
    if isinstance(memory_section, dict):
        result["memory_group"] = memory_section.get("group", "group1")

    aws_section = data.get("aws")
    if isinstance(aws_section, dict):
        result["aws_bucket"] = aws_section.get("bucket", "")
        result["aws_region"] = aws_section.get("region", "us-east-1")
        result["aws_prefix"] = aws_section.get("prefix", "")
        result["aws_endpoint_url"] = aws_section.get("endpoint_url", "")
        result["aws_use_path_style"] = aws_section.get("use_path_style", False)
        result["aws_access_key_id"] = aws_section.get("access_key_id", "")
        result["aws_secret_access_key"] = aws_section.get("secret_access_key", "")

    return result


def _parse_locks(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the locks section from YAML data.

    Handles nested structure: locks.file.lock_dir -> file_lock_dir
    """
    if data is None:
        return {}
    result: dict[str, Any] = {
        "engine": data.get("engine", "local"),
        "blocking": data.get("blocking", True),
    }
    file_section = data.get("file")
    if isinstance(file_section, dict):
        result["file_lock_dir"] = file_section.get("lock_dir", "./data/locks")
        result["file_timeout_seconds"] = file_section.get("timeout_seconds", 30.0)
    return result


def _parse_cancel(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the cancel section from YAML data."""
    if data is None:
        return {}
    result: dict[str, Any] = {"engine": data.get("engine", "memory")}
    file_section = data.get("file")
    if isinstance(file_section, dict):
        result["file_root"] = file_section.get("root_dir", "./data/cancel")
    return result


def _parse_uploads(data: dict[str, Any] | None) -> dict[str, Any]:
    if data is None:
        return {}
    return {"ttl_seconds": data.get("ttl_seconds", 604800)}


def _parse_logging(data: dict[str, Any] | None) -> dict[str, Any]:
    if data is None:
        return {}
    return {
        "level": data.get("level", "INFO"),
        "format": data.get("format", "text"),
    }


def _parse_observability(data: dict[str, Any] | None) -> dict[str, Any]:
    if data is None:
        return {}
    return {"metrics": data.get("metrics", True)}


def load_config(path: Path) -> StitchStoreConfig:
    """Load a StitchStoreConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated StitchStoreConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return StitchStoreConfig(
        parts=PartsConfig(**_parse_parts(raw.get("parts"))),
        storage=StorageConfig(**_parse_storage(raw.get("storage"))),
        locks=LocksConfig(**_parse_locks(raw.get("locks"))),
        cancel=CancelConfig(**_parse_cancel(raw.get("cancel"))),
        uploads=UploadsConfig(**_parse_uploads(raw.get("uploads"))),
        logging=LoggingConfig(**_parse_logging(raw.get("logging"))),
        observability=ObservabilityConfig(**_parse_observability(raw.get("observability"))),
    )
