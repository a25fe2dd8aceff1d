"""Prometheus metrics definitions for StitchStore.

All metrics use the ``stitchstore_`` prefix for namespace isolation.

Crash-only design: counters reset to zero on restart.  Prometheus handles
gaps via ``rate()``.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# ---------------------------------------------------------------------------
# Merge counters  (labels: strategy, outcome)
# ---------------------------------------------------------------------------
merges_total: Counter | None = None
parts_merged_total: Counter | None = None
bytes_merged_total: Counter | None = None

# ---------------------------------------------------------------------------
# Part staging
# ---------------------------------------------------------------------------
parts_stored_total: Counter | None = None
uploads_in_progress: Gauge | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    This must be called once when metrics are enabled.  When metrics are
    disabled in config the module-level references stay ``None`` and no
    collectors are registered in the global registry.
    """
    global _initialized
    global merges_total, parts_merged_total, bytes_merged_total
    global parts_stored_total, uploads_in_progress

    if _initialized:
        return

    merges_total = Counter(
        "stitchstore_merges_total",
        "Total merges by strategy and outcome",
        ["strategy", "outcome"],
    )

    parts_merged_total = Counter(
        "stitchstore_parts_merged_total",
        "Total parts transferred into merged objects",
        ["strategy"],
    )

    bytes_merged_total = Counter(
        "stitchstore_bytes_merged_total",
        "Total bytes transferred into merged objects",
        ["strategy"],
    )

    parts_stored_total = Counter(
        "stitchstore_parts_stored_total",
        "Total parts staged in the part store",
    )

    uploads_in_progress = Gauge(
        "stitchstore_uploads_in_progress",
        "Number of multipart uploads initiated but not yet completed or aborted",
    )

    _initialized = True
