"""
Prometheus metrics for the marketplace reconciliation back office.
"""

from prometheus_client import Counter, Histogram, Gauge


# ── Imports ──────────────────────────────────────────────────
import_rows_total = Counter(
    "import_rows_total",
    "Rows processed by marketplace file imports",
    ["canal", "outcome"],            # created, merged, error
)

import_duration_seconds = Histogram(
    "import_duration_seconds",
    "Time to import a report end-to-end",
    ["canal"],
    buckets=[1, 5, 10, 30, 60, 120, 300, 600],
)

import_failures_total = Counter(
    "import_failures_total",
    "Imports that finished with status erro",
    ["error_code"],
)

# ── CMV / SKU mapping ────────────────────────────────────────
cmv_items_total = Counter(
    "cmv_items_total",
    "Sold items visited by CMV attribution",
    ["outcome"],                      # costed, unmapped, skipped, error
)

# ── Reconciliation ───────────────────────────────────────────
reconciliation_transitions_total = Counter(
    "reconciliation_transitions_total",
    "Transaction status transitions",
    ["from_status", "to_status"],
)

# ── Marketplace integration ──────────────────────────────────
integration_calls_total = Counter(
    "integration_calls_total",
    "Marketplace API and webhook operations",
    ["provider", "operation", "status"],
)

integration_latency_seconds = Histogram(
    "integration_latency_seconds",
    "Latency of marketplace API calls",
    ["provider", "operation"],
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30],
)

# ── SKU mapping queue ────────────────────────────────────────
unmapped_skus = Gauge(
    "unmapped_skus",
    "Pending SKU mappings waiting for a human, as last listed",
    ["canal"],
)

# ── Worker ───────────────────────────────────────────────────
worker_jobs_active = Gauge(
    "worker_jobs_active",
    "Number of currently active worker jobs",
)
