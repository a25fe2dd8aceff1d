"""Builds StitchStore components from configuration."""

import logging
from dataclasses import dataclass

from stitchstore import metrics
from stitchstore.cancel import create_cancel_registry
from stitchstore.config import StitchStoreConfig
from stitchstore.locks import create_lock_manager
from stitchstore.logging_config import configure_logging
from stitchstore.merge import MergeEngine
from stitchstore.parts import PartStore, create_part_store
from stitchstore.storage import BackendAdapter, create_storage_backend
from stitchstore.uploads import UploadSessionManager

logger = logging.getLogger(__name__)


@dataclass
class StitchStore:
    """A wired set of StitchStore components.

    Attributes:
        config: The configuration the components were built from.
        part_store: The part staging store.
        backend: The destination storage backend.
        engine: The merge engine.
        uploads: The upload session manager.
    """

    config: StitchStoreConfig
    part_store: PartStore
    backend: BackendAdapter
    engine: MergeEngine
    uploads: UploadSessionManager

    async def init(self) -> None:
        """Initialize the part store and the backend."""
        await self.part_store.init()
        await self.backend.init()

    async def close(self) -> None:
        """Release the backend and part store."""
        await self.backend.close()
        await self.part_store.close()


def build_stitchstore(config: StitchStoreConfig, setup_logging: bool = False) -> StitchStore:
    """Create every component described by ``config``.

    Components are not initialized; call ``init()`` on the result.

    Args:
        config: The StitchStore configuration.
        setup_logging: Also configure root logging from ``config.logging``.

    Returns:
        The wired components.
    """
    if setup_logging:
        configure_logging(level=config.logging.level, fmt=config.logging.format)
    if config.observability.metrics:
        metrics.init_metrics()

    part_store = create_part_store(config.parts)
    engine = MergeEngine(
        part_store,
        create_lock_manager(config.locks),
        create_cancel_registry(config.cancel),
    )
    store = StitchStore(
        config=config,
        part_store=part_store,
        backend=create_storage_backend(config.storage),
        engine=engine,
        uploads=UploadSessionManager(
            part_store, engine, upload_ttl_seconds=config.uploads.ttl_seconds
        ),
    )
    logger.info(
        "StitchStore built: parts=%s storage=%s locks=%s cancel=%s",
        config.parts.engine,
        config.storage.backend,
        config.locks.engine,
        config.cancel.engine,
    )
    return store
