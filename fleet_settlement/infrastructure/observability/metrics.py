"""Prometheus metrics for settlement computation, ingestion sources and payments"""

from prometheus_client import Counter, Histogram

# Settlement metrics
settlement_counter = Counter(
    "fleet_settlement_computations_total",
    "Driver-week settlement reads",
    ["outcome"],  # draft | frozen | no_data
)

accumulator_failure_counter = Counter(
    "fleet_accumulator_failures_total",
    "Commission/bonus accumulators that failed and contributed zero",
    ["accumulator"],  # extra_commission | referral_bonus | goal_reward
)

# Ingestion metrics
ingestion_source_failure_counter = Counter(
    "fleet_ingestion_source_failures_total",
    "Ingestion sources that failed or timed out",
    ["source"],
)

ingestion_source_latency_histogram = Histogram(
    "fleet_ingestion_source_latency_seconds",
    "Ingestion source fetch time",
    ["source"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Payment metrics
payment_commit_counter = Counter(
    "fleet_payment_commits_total",
    "Payment commit attempts",
    ["outcome"],  # committed | already_recorded | conflict | invalid | storage_failure | timeout
)

evidence_rollback_counter = Counter(
    "fleet_evidence_rollbacks_total",
    "Uploaded proofs deleted because the commit failed",
    ["result"],  # deleted | failed
)

evidence_operation_histogram = Histogram(
    "fleet_evidence_operation_seconds",
    "Evidence object store call time",
    ["operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_settlement(outcome: str) -> None:
    settlement_counter.labels(outcome=outcome).inc()


def record_payment_commit(outcome: str) -> None:
    payment_commit_counter.labels(outcome=outcome).inc()
