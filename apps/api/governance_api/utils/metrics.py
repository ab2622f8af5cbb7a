"""Prometheus metrics."""

from prometheus_client import Counter, Histogram

# Ledger metrics
ledger_appends = Counter(
    "governance_ledger_appends_total",
    "Total ledger events appended",
    ["category"],
)

ledger_append_conflicts = Counter(
    "governance_ledger_append_conflicts_total",
    "Ledger appends that lost a race on the chain tail and were retried",
)

integrity_checks = Counter(
    "governance_ledger_integrity_checks_total",
    "Ledger integrity verifications",
    ["status"],
)

integrity_check_duration = Histogram(
    "governance_ledger_integrity_check_duration_seconds",
    "Ledger integrity verification duration",
)

# Report metrics
report_runs_created = Counter(
    "governance_report_runs_created_total",
    "Report runs created",
    ["packet_type"],
)

report_drift_detected = Counter(
    "governance_report_drift_detected_total",
    "Report runs whose live payload no longer matches data_hash",
    ["severity"],
)

signatures_recorded = Counter(
    "governance_signatures_recorded_total",
    "Report signatures recorded",
    ["role"],
)

signature_conflicts = Counter(
    "governance_signature_conflicts_total",
    "Signature attempts rejected as duplicates",
)

# Print token metrics
print_token_verifications = Counter(
    "governance_print_token_verifications_total",
    "Print token verifications",
    ["result"],
)
