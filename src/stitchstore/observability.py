"""Merge observability hooks for StitchStore.

The merge engine reports progress to a ``MergeObserver`` passed in at call
time. ``MergeObserver`` itself ignores every event; ``LoggingObserver``
(the default) logs each event and records Prometheus metrics when they
have been initialised.
"""

import logging

from stitchstore import metrics
from stitchstore.models import CompleteMultipart

logger = logging.getLogger(__name__)


class MergeObserver:
    """Receives merge lifecycle events. Override the hooks you need."""

    def on_merge_started(
        self, upload_id: str, object_name: str, strategy: str, part_count: int
    ) -> None:
        pass

    def on_part_merged(
        self, upload_id: str, part_number: int, part_size: int, strategy: str
    ) -> None:
        pass

    def on_cancelled(self, upload_id: str, parts_merged: int, strategy: str) -> None:
        pass

    def on_completed(
        self, upload_id: str, result: CompleteMultipart, strategy: str, duration_ms: float
    ) -> None:
        pass

    def on_failed(self, upload_id: str, error: BaseException, strategy: str) -> None:
        pass


class LoggingObserver(MergeObserver):
    """Logs merge events and updates the ``stitchstore_`` metrics.

    Attributes:
        logger: The logger events are written to.
    """

    def __init__(self, log: logging.Logger | None = None) -> None:
        self.logger = log or logger

    def on_merge_started(
        self, upload_id: str, object_name: str, strategy: str, part_count: int
    ) -> None:
        self.logger.info(
            "Merging %d parts of upload %s into %s",
            part_count, upload_id, object_name,
            extra={"upload_id": upload_id, "object_name": object_name, "strategy": strategy},
        )

    def on_part_merged(
        self, upload_id: str, part_number: int, part_size: int, strategy: str
    ) -> None:
        self.logger.debug(
            "Merged part %d (%d bytes) of upload %s",
            part_number, part_size, upload_id,
            extra={"upload_id": upload_id, "part_number": part_number, "strategy": strategy},
        )
        if metrics.parts_merged_total is not None:
            metrics.parts_merged_total.labels(strategy=strategy).inc()
        if metrics.bytes_merged_total is not None:
            metrics.bytes_merged_total.labels(strategy=strategy).inc(part_size)

    def on_cancelled(self, upload_id: str, parts_merged: int, strategy: str) -> None:
        self.logger.info(
            "Merge of upload %s cancelled after %d parts",
            upload_id, parts_merged,
            extra={"upload_id": upload_id, "strategy": strategy},
        )
        if metrics.merges_total is not None:
            metrics.merges_total.labels(strategy=strategy, outcome="cancelled").inc()

    def on_completed(
        self, upload_id: str, result: CompleteMultipart, strategy: str, duration_ms: float
    ) -> None:
        self.logger.info(
            "Merged upload %s into %s (%d bytes)",
            upload_id, result.full_path, result.size,
            extra={
                "upload_id": upload_id,
                "object_name": result.object_name,
                "strategy": strategy,
                "duration_ms": round(duration_ms, 2),
            },
        )
        if metrics.merges_total is not None:
            metrics.merges_total.labels(strategy=strategy, outcome="completed").inc()

    def on_failed(self, upload_id: str, error: BaseException, strategy: str) -> None:
        self.logger.error(
            "Merge of upload %s failed: %s",
            upload_id, error,
            extra={"upload_id": upload_id, "strategy": strategy},
        )
        if metrics.merges_total is not None:
            metrics.merges_total.labels(strategy=strategy, outcome="failed").inc()
