"""
Prometheus metrics for the scanner.

Exposed by whatever process hosts the engine (the worker starts an HTTP
exporter; tests just read the registry).
"""

from prometheus_client import Counter, Histogram, Gauge

# ── Scan metrics ─────────────────────────────────────────────────────────────

trigger_scans_total = Counter(
    "oppscan_trigger_scans_total",
    "Trigger scans by outcome",
    ["status"],
)

trigger_scan_duration_seconds = Histogram(
    "oppscan_trigger_scan_duration_seconds",
    "Duration of a single trigger scan in seconds",
    buckets=(0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0),
)

catalog_scan_duration_seconds = Histogram(
    "oppscan_catalog_scan_duration_seconds",
    "Duration of a full catalog scan in seconds",
    buckets=(1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 900.0),
)

claims_matched_total = Counter(
    "oppscan_claims_matched_total",
    "Claims matched by trigger keywords",
)

# ── Opportunity metrics ──────────────────────────────────────────────────────

opportunity_writes_total = Counter(
    "oppscan_opportunity_writes_total",
    "Opportunity writes by action",
    ["action"],  # created | refreshed | skipped_actioned | failed
)

coverage_records_written_total = Counter(
    "oppscan_coverage_records_written_total",
    "Coverage records upserted by status",
    ["status"],
)

dedup_removed_total = Counter(
    "oppscan_dedup_removed_total",
    "Duplicate opportunities removed",
)

merge_reviews_total = Counter(
    "oppscan_merge_reviews_total",
    "Merge reviews opened for duplicates staff already acted on",
)

# ── Data quality ─────────────────────────────────────────────────────────────

pending_quality_issues = Gauge(
    "oppscan_pending_quality_issues",
    "Pending data-quality issues after the last gate run",
)
