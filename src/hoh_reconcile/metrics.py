"""Prometheus metrics for the hub cluster controller."""

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Event routing
# =============================================================================

EVENTS_ENQUEUED = Counter(
    "hoh_events_enqueued_total",
    "Watch events admitted and turned into a reconcile key",
    ["kind"]
)

EVENTS_FILTERED = Counter(
    "hoh_events_filtered_total",
    "Watch events rejected by the admission predicate",
    ["kind"]
)

# =============================================================================
# Work queue
# =============================================================================

QUEUE_DEPTH = Gauge(
    "hoh_workqueue_depth",
    "Reconcile keys waiting in the work queue"
)

QUEUE_RETRIES = Counter(
    "hoh_workqueue_retries_total",
    "Keys re-added with rate-limited backoff"
)

# =============================================================================
# Reconciliation
# =============================================================================

RECONCILE_TOTAL = Counter(
    "hoh_reconcile_total",
    "Completed reconcile attempts",
    ["result"]
)

RECONCILE_DURATION = Histogram(
    "hoh_reconcile_duration_seconds",
    "Time spent in one sync of a cluster key",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
)

WORK_WRITES = Counter(
    "hoh_manifestwork_writes_total",
    "ManifestWork create and update calls issued",
    ["stage", "operation"]
)

# =============================================================================
# Ensure comparison cache
# =============================================================================

COMPARE_CACHE = Counter(
    "hoh_compare_cache_lookups_total",
    "Comparison cache lookups",
    ["result"]
)

COMPARE_CACHE_SIZE = Gauge(
    "hoh_compare_cache_entries",
    "Entries held in the comparison cache"
)
