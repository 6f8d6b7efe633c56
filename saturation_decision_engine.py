"""Saturation decision engine.

This module wires the pure protocol steps into one call and produces:
- The score breakdown and the four-level alert classification.
- The ordered containment measures for the level.
- The re-evaluation obligation (a localized note and the interval until
  the next evaluation is due).
- Human-readable explanations of why the level was reached.

It also owns the final-decision table used by the post-activation
analysis: which decisions an analyst may record depends on the alert
level of the evaluation.

Rules (configurable via EngineConfig)
-------------------------------------
- Score each criterion from the scoring table and sum.
- Map the total onto GREEN / YELLOW / ORANGE / RED bands.
- A red critical-patient protocol forces at least ORANGE.
- ORANGE offers "maintain" or "escalate"; RED offers "maintain" or
  "de-escalate"; lower levels require no decision.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional, Tuple

from alerts import AlertLevel, AlertPolicy, classify
from saturation_errors import EvaluationResultsError
from saturation_explainability import build_alert_explanations
from saturation_measures import DEFAULT_MEASURE_CATALOG, Measure, MeasureCatalog, build_measures, select_measures
from saturation_scoring import DEFAULT_SCORING_TABLE, ScoreBreakdown, ScoringTable, score_snapshot
from saturation_snapshot import Snapshot


@dataclass(frozen=True)
class Reevaluation:
    """Re-evaluation obligation attached to an alert level."""

    interval: Optional[timedelta]
    note: str


REEVALUATION_POLICY: Dict[str, Reevaluation] = {
    "GREEN": Reevaluation(
        interval=None,
        note="Mantener monitoreo habitual. Reevaluar ante cambios en la demanda.",
    ),
    "YELLOW": Reevaluation(
        interval=timedelta(hours=6),
        note="Reevaluar en un plazo máximo de 6 horas o antes si aumenta la demanda.",
    ),
    "ORANGE": Reevaluation(
        interval=timedelta(hours=2),
        note="Reevaluar en 2 horas y registrar la decisión final de la activación.",
    ),
    "RED": Reevaluation(
        interval=timedelta(hours=1),
        note="Reevaluar cada hora mientras se mantenga la clave roja.",
    ),
}


@dataclass(frozen=True)
class EngineConfig:
    """Tables that drive the engine; all default to the built-in protocol."""

    scoring_table: ScoringTable = DEFAULT_SCORING_TABLE
    alert_policy: AlertPolicy = field(default_factory=AlertPolicy)
    catalog: MeasureCatalog = DEFAULT_MEASURE_CATALOG
    reevaluation: Mapping[str, Reevaluation] = field(default_factory=lambda: dict(REEVALUATION_POLICY))


@dataclass(frozen=True)
class EvaluationOutcome:
    breakdown: ScoreBreakdown
    alert_level: AlertLevel
    measures: Tuple[Measure, ...]
    reevaluation_note: str
    explanations: Tuple[str, ...]
    next_evaluation_due: Optional[datetime] = None


def next_evaluation_due(
    alert_level: str,
    timestamp: datetime,
    policy: Optional[Mapping[str, Reevaluation]] = None,
) -> Optional[datetime]:
    """When the next evaluation is due, or None if the level has no interval."""

    rule = (policy or REEVALUATION_POLICY).get(alert_level)
    if rule is None or rule.interval is None:
        return None
    return timestamp + rule.interval


def evaluate_snapshot(snapshot: Snapshot, config: Optional[EngineConfig] = None) -> EvaluationOutcome:
    """Score, classify and select measures for a validated snapshot.

    Stateless and deterministic: the same snapshot and config always give
    the same outcome.
    """

    if config is None:
        config = EngineConfig()

    breakdown = score_snapshot(snapshot, config.scoring_table)
    level = classify(breakdown, snapshot, config.alert_policy)
    measures = build_measures(select_measures(level, snapshot, config.catalog))

    rule = config.reevaluation.get(level)
    note = rule.note if rule is not None else ""

    explanations = build_alert_explanations(
        breakdown=breakdown,
        snapshot=snapshot,
        alert_level=level,
        policy=config.alert_policy,
    )

    return EvaluationOutcome(
        breakdown=breakdown,
        alert_level=level,
        measures=tuple(measures),
        reevaluation_note=note,
        explanations=tuple(explanations),
        next_evaluation_due=next_evaluation_due(level, snapshot.timestamp, config.reevaluation),
    )


# --------------------------- Final decisions ----------------------------


@dataclass(frozen=True)
class DecisionOption:
    key: str
    label: str
    target_level: AlertLevel


DECISION_OPTIONS: Dict[str, Tuple[DecisionOption, ...]] = {
    "ORANGE": (
        DecisionOption("maintain_orange", "Mantener clave naranja", "ORANGE"),
        DecisionOption("escalate_red", "Subir a clave roja", "RED"),
    ),
    "RED": (
        DecisionOption("maintain_red", "Mantener clave roja", "RED"),
        DecisionOption("deescalate_orange", "Bajar a clave naranja", "ORANGE"),
    ),
}


def allowed_decisions(alert_level: str) -> List[DecisionOption]:
    return list(DECISION_OPTIONS.get(alert_level, ()))


def find_decision(decision: str) -> Optional[DecisionOption]:
    """Look up a decision by key regardless of alert level."""

    for options in DECISION_OPTIONS.values():
        for option in options:
            if option.key == decision:
                return option
    return None


def decision_label(decision: Optional[str]) -> Optional[str]:
    if not decision:
        return None
    option = find_decision(decision)
    return option.label if option is not None else decision


def validate_decision(alert_level: str, decision: str) -> DecisionOption:
    """Return the option for `decision`, or raise if the level does not offer it."""

    for option in DECISION_OPTIONS.get(alert_level, ()):
        if option.key == decision:
            return option
    allowed = [o.key for o in DECISION_OPTIONS.get(alert_level, ())]
    if not allowed:
        raise EvaluationResultsError(f"no final decision applies to a {alert_level} alert")
    raise EvaluationResultsError(
        f"decision {decision!r} is not valid for a {alert_level} alert (allowed: {', '.join(allowed)})"
    )


def decision_target(alert_level: str, decision: str) -> AlertLevel:
    """Alert level in force after recording `decision`."""

    return validate_decision(alert_level, decision).target_level
