"""metrics.py

Purpose: Prometheus metrics for decisions, guardrails and trace capture

Metrics are process-wide and registered once at import time.
"""

from prometheus_client import Counter, Histogram


DECISION_COUNTER = Counter(
    "decisioncore_decisions_total",
    "Total number of decisions",
    ["path", "outcome"],
)

DECISION_DURATION = Histogram(
    "decisioncore_decision_duration_seconds",
    "Decision duration in seconds",
    ["path"],
)

GUARDRAIL_FINDINGS = Counter(
    "decisioncore_guardrail_findings_total",
    "Guardrail findings by check and severity",
    ["check", "severity"],
)

OVERRIDE_COUNTER = Counter(
    "decisioncore_overrides_exercised_total",
    "Overrides exercised by risk class",
    ["risk_class"],
)

TRACE_CAPTURE_FAILURES = Counter(
    "decisioncore_trace_capture_failures_total",
    "Traces that could not be persisted after retries",
)

COLLABORATOR_DURATION = Histogram(
    "decisioncore_collaborator_call_duration_seconds",
    "Collaborator call duration in seconds",
    ["client", "operation", "status"],
)


def record_decision(path: str, outcome: str, duration: float) -> None:
    DECISION_COUNTER.labels(path=path, outcome=outcome).inc()
    DECISION_DURATION.labels(path=path).observe(duration)


def record_guardrail_finding(check: str, severity: str) -> None:
    GUARDRAIL_FINDINGS.labels(check=check, severity=severity).inc()


def record_override(risk_class: str) -> None:
    OVERRIDE_COUNTER.labels(risk_class=risk_class).inc()


def record_trace_capture_failure() -> None:
    TRACE_CAPTURE_FAILURES.inc()


def record_collaborator_call(client: str, operation: str, status: str, duration: float) -> None:
    COLLABORATOR_DURATION.labels(client=client, operation=operation, status=status).observe(duration)
