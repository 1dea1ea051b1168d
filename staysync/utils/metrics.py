from prometheus_client import Counter, Histogram

sync_jobs_total = Counter(
    "staysync_ical_sync_jobs_total", "Calendar import jobs by final state", ["state"]
)
sync_records_total = Counter(
    "staysync_ical_sync_records_total", "Reconciled calendar records by outcome", ["outcome"]
)
aggregator_step_failures_total = Counter(
    "staysync_aggregator_step_failures_total",
    "Per-accommodation aggregation steps that fell back to an empty default",
    ["step"],
)
aggregation_latency_seconds = Histogram(
    "staysync_aggregation_latency_seconds", "Supplier data aggregation latency"
)
