"""Part stores for StitchStore."""

from typing import TYPE_CHECKING

from stitchstore.parts.store import PartStore
from stitchstore.parts.streams import (
    BytesPartStream,
    FilePartStream,
    IterablePartStream,
    PartStream,
    as_part_stream,
)

if TYPE_CHECKING:
    from stitchstore.config import PartsConfig

__all__ = [
    "BytesPartStream",
    "create_part_store",
    "FilePartStream",
    "IterablePartStream",
    "PartStore",
    "PartStream",
    "as_part_stream",
]


def create_part_store(config: "PartsConfig") -> PartStore:
    """Create a part store instance based on configuration.

    Args:
        config: The parts configuration.

    Returns:
        A part store implementing the PartStore protocol.

    Raises:
        ValueError: If the engine is unknown.
    """
    engine = config.engine

    if engine == "local":
        from stitchstore.parts.local import LocalPartStore

        return LocalPartStore(config.local_root)

    elif engine == "memory":
        from stitchstore.parts.memory import MemoryPartStore

        return MemoryPartStore(max_size_bytes=config.memory_max_size_bytes)

    else:
        raise ValueError(f"Unknown part store engine: {engine}")
