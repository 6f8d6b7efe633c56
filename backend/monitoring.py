from __future__ import annotations

"""Prometheus metrics for the saturation backend.

Process-wide metrics scraped by a Prometheus server via /metrics.
"""

from prometheus_client import Counter, Gauge


EVALUATIONS_TOTAL = Counter(
    "saturation_evaluations_total",
    "Evaluations submitted, by resulting alert level",
    ["alert_level"],
)

EVALUATION_REJECTIONS_TOTAL = Counter(
    "saturation_evaluation_rejections_total",
    "Submissions rejected before storage, by reason",
    ["reason"],
)

MEASURE_STATUS_UPDATES_TOTAL = Counter(
    "saturation_measure_status_updates_total",
    "Measure status update attempts, by outcome",
    ["outcome"],
)

LAST_TOTAL_SCORE = Gauge(
    "saturation_last_total_score",
    "Total score of the most recent evaluation",
)

LAST_EVALUATION_TIMESTAMP = Gauge(
    "saturation_last_evaluation_timestamp",
    "Unix timestamp of the most recent evaluation",
)


def record_evaluation(alert_level: str, total_score: int, timestamp: float) -> None:
    EVALUATIONS_TOTAL.labels(alert_level=alert_level).inc()
    LAST_TOTAL_SCORE.set(float(total_score))
    LAST_EVALUATION_TIMESTAMP.set(float(timestamp))


def record_rejection(reason: str) -> None:
    EVALUATION_REJECTIONS_TOTAL.labels(reason=reason).inc()


def record_measure_update(outcome: str) -> None:
    """`outcome` is one of applied, forbidden, not_found, unavailable."""

    MEASURE_STATUS_UPDATES_TOTAL.labels(outcome=outcome).inc()
