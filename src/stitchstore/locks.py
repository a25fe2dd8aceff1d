"""Per-upload mutual exclusion for StitchStore.

A merge holds the lock of its upload id for its whole duration, so at most
one merge per upload runs at a time. Locks for different upload ids are
independent.

Two implementations are provided:
    - LocalLockManager: ``asyncio.Lock`` per upload id, for a single process.
    - FileLockManager: ``fcntl.flock`` on one lock file per upload id, for
      several processes sharing a directory.
"""

import asyncio
import fcntl
import logging
import os
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, TypeVar

from stitchstore.errors import LockError, MergeInProgress

if TYPE_CHECKING:
    from stitchstore.config import LocksConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LockManager(Protocol):
    """Protocol for scoped, upload-keyed mutual exclusion."""

    def lock(self, upload_id: str) -> AbstractAsyncContextManager[None]:
        """Return an async context manager holding the upload's lock.

        The lock is released when the block exits, whether it returns,
        raises, or is cancelled.

        Raises:
            LockError: If the lock cannot be acquired.
        """
        ...

    async def with_lock(self, upload_id: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn()`` while holding the upload's lock."""
        ...


class LocalLockManager:
    """In-process lock manager built on ``asyncio.Lock``.

    Lock objects are created on first use and dropped once no task holds
    or waits for them, so finished uploads leave nothing behind.

    Attributes:
        blocking: If False, a second caller is rejected with MergeInProgress
            instead of waiting for the holder to finish.
    """

    def __init__(self, blocking: bool = True) -> None:
        self.blocking = blocking
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}

    def is_locked(self, upload_id: str) -> bool:
        lock = self._locks.get(upload_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def lock(self, upload_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(upload_id)
        if lock is None:
            lock = self._locks[upload_id] = asyncio.Lock()
        if not self.blocking and lock.locked():
            raise MergeInProgress(upload_id)

        self._refs[upload_id] = self._refs.get(upload_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refs[upload_id] -= 1
            if self._refs[upload_id] == 0:
                del self._refs[upload_id]
                self._locks.pop(upload_id, None)

    async def with_lock(self, upload_id: str, fn: Callable[[], Awaitable[T]]) -> T:
        async with self.lock(upload_id):
            return await fn()


class FileLockManager:
    """Cross-process lock manager using one ``flock``-ed file per upload.

    Acquisition polls a non-blocking exclusive lock until ``timeout_seconds``
    elapses. A timeout of 0 makes the manager non-blocking. Lock files are
    left in place after release; unlinking a file another process may be
    about to lock would let two holders in.

    Attributes:
        lock_dir: Directory holding the ``{upload_id}.lock`` files.
        timeout_seconds: How long to wait for a busy lock.
        poll_interval: Seconds between acquisition attempts.
    """

    def __init__(
        self,
        lock_dir: str | Path,
        timeout_seconds: float = 30.0,
        poll_interval: float = 0.05,
    ) -> None:
        self.lock_dir = Path(lock_dir)
        self.timeout_seconds = timeout_seconds
        self.poll_interval = poll_interval

    def _lock_path(self, upload_id: str) -> Path:
        return self.lock_dir / f"{upload_id}.lock"

    async def _acquire(self, fd: int, upload_id: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if self.timeout_seconds <= 0:
                    raise MergeInProgress(upload_id)
                if loop.time() >= deadline:
                    raise LockError(
                        f"Timed out after {self.timeout_seconds}s waiting for upload lock",
                        upload_id,
                    )
            except OSError as exc:
                raise LockError(f"Failed to acquire upload lock: {exc}", upload_id) from exc
            await asyncio.sleep(self.poll_interval)

    def _release(self, fd: int, upload_id: str, raise_errors: bool) -> None:
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        except OSError as exc:
            if raise_errors:
                raise LockError(f"Failed to release upload lock: {exc}", upload_id) from exc
            logger.warning("Failed to release lock for upload %s", upload_id, exc_info=True)

    @asynccontextmanager
    async def lock(self, upload_id: str) -> AsyncIterator[None]:
        path = self._lock_path(upload_id)
        try:
            self.lock_dir.mkdir(parents=True, exist_ok=True)
            fd = os.open(str(path), os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as exc:
            raise LockError(f"Cannot open lock file {path}: {exc}", upload_id) from exc

        try:
            await self._acquire(fd, upload_id)
            try:
                yield
            except BaseException:
                self._release(fd, upload_id, raise_errors=False)
                raise
            else:
                self._release(fd, upload_id, raise_errors=True)
        finally:
            os.close(fd)

    async def with_lock(self, upload_id: str, fn: Callable[[], Awaitable[T]]) -> T:
        async with self.lock(upload_id):
            return await fn()


def create_lock_manager(config: "LocksConfig") -> LockManager:
    """Create a lock manager instance based on configuration.

    Raises:
        ValueError: If the engine is unknown.
    """
    if config.engine == "local":
        return LocalLockManager(blocking=config.blocking)
    elif config.engine == "file":
        timeout = config.file_timeout_seconds if config.blocking else 0.0
        return FileLockManager(config.file_lock_dir, timeout_seconds=timeout)
    else:
        raise ValueError(f"Unknown lock engine: {config.engine}")
