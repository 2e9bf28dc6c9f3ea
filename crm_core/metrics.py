from __future__ import annotations

from prometheus_client import Counter, Histogram, generate_latest


crm_entity_mutations_total = Counter(
    "crm_entity_mutations_total",
    "Total service-layer entity mutations",
    ["entity_type", "action"],
)

crm_audit_records_total = Counter(
    "crm_audit_records_total",
    "Total audit records written by action",
    ["entity_type", "action"],
)

crm_audit_write_failures_total = Counter(
    "crm_audit_write_failures_total",
    "Total audit writes that failed after the entity mutation",
    ["entity_type", "action"],
)

crm_custom_field_violations_total = Counter(
    "crm_custom_field_violations_total",
    "Total custom field validation failures",
    ["entity_type"],
)

db_transactions_total = Counter(
    "db_transactions_total",
    "Total coordinated transactions by outcome",
    ["outcome"],
)

db_transaction_duration_seconds = Histogram(
    "db_transaction_duration_seconds",
    "Coordinated transaction duration in seconds",
    ["outcome"],
)


def observe_entity_mutation(entity_type: str, action: str) -> None:
    crm_entity_mutations_total.labels(entity_type=entity_type, action=action).inc()


def observe_audit_record(entity_type: str, action: str) -> None:
    crm_audit_records_total.labels(entity_type=entity_type, action=action).inc()


def observe_audit_write_failure(entity_type: str, action: str) -> None:
    crm_audit_write_failures_total.labels(entity_type=entity_type, action=action).inc()


def observe_custom_field_violation(entity_type: str) -> None:
    crm_custom_field_violations_total.labels(entity_type=entity_type).inc()


def observe_transaction(outcome: str, duration: float) -> None:
    db_transactions_total.labels(outcome=outcome).inc()
    db_transaction_duration_seconds.labels(outcome=outcome).observe(duration)


def generate_metrics_payload() -> bytes:
    return generate_latest()
