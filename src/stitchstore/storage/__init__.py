"""Storage backend adapters for StitchStore."""

from typing import TYPE_CHECKING

from stitchstore.storage.backend import (
    AppendChainBackend,
    BackendAdapter,
    DestinationHandle,
    RandomAccessBackend,
)

if TYPE_CHECKING:
    from stitchstore.config import StorageConfig

__all__ = [
    "AppendChainBackend",
    "BackendAdapter",
    "create_storage_backend",
    "DestinationHandle",
    "RandomAccessBackend",
]


def create_storage_backend(config: "StorageConfig") -> BackendAdapter:
    """Create a storage backend adapter based on configuration.

    Args:
        config: The storage configuration.

    Returns:
        A backend adapter; its ``supports_random_access`` flag decides the
        merge strategy.

    Raises:
        ValueError: If the backend is unknown or required config is missing.
    """
    backend = config.backend

    if backend == "local":
        from stitchstore.storage.local import LocalFileBackend

        return LocalFileBackend(config.local_root, web_server_url=config.local_web_server_url)

    elif backend == "memory":
        from stitchstore.storage.memory import MemoryAppendBackend

        return MemoryAppendBackend(group=config.memory_group)

    elif backend == "aws":
        from stitchstore.storage.aws import S3AppendBackend

        if not config.aws_bucket:
            raise ValueError("storage.aws.bucket is required when backend is 'aws'")
        return S3AppendBackend(
            bucket_name=config.aws_bucket,
            region=config.aws_region,
            prefix=config.aws_prefix,
            endpoint_url=config.aws_endpoint_url,
            use_path_style=config.aws_use_path_style,
            access_key_id=config.aws_access_key_id,
            secret_access_key=config.aws_secret_access_key,
        )

    else:
        raise ValueError(f"Unknown storage backend: {backend}")
