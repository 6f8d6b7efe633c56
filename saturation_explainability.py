"""Explainability utilities for saturation alerts.

Rather than reporting only a number, the evaluation explains which
criteria drove the score and whether an override raised the level:

    "Nivel de alerta Naranja alcanzado por:
     - Pacientes Hospitalizados: 3 puntos (32)
     - Pacientes ESI C2: 2 puntos (11)
     - Protocolo Paciente Crítico en Clave Roja fuerza al menos Naranja"

The functions here are pure and only read the breakdown, the snapshot and
the alert policy.
"""

from __future__ import annotations

from typing import List, Optional

from alerts import AlertPolicy, alert_rank, classify_score, protocol_floor
from saturation_labels import SNAPSHOT_FIELD_LABELS, alert_label, format_snapshot_value
from saturation_scoring import CRITERIA, ScoreBreakdown, resuscitation_count
from saturation_snapshot import Snapshot


def _criterion_value(snapshot: Snapshot, criterion: str) -> str:
    if criterion == "resuscitation_bay_patients":
        count = resuscitation_count(snapshot)
        return f"{count} en SAR" if snapshot.surge_active else str(count)
    return format_snapshot_value(criterion, getattr(snapshot, criterion))


def build_alert_explanations(
    *,
    breakdown: ScoreBreakdown,
    snapshot: Snapshot,
    alert_level: str,
    policy: Optional[AlertPolicy] = None,
) -> List[str]:
    """Return a header line followed by one line per contributing factor.

    Criteria are listed by points (highest first), ties in criterion
    order; criteria scoring 0 are omitted.
    """

    p = policy or AlertPolicy()

    contributing = [
        (criterion, breakdown.components.get(criterion, 0))
        for criterion in CRITERIA
        if breakdown.components.get(criterion, 0) > 0
    ]
    contributing.sort(key=lambda item: (-item[1], CRITERIA.index(item[0])))

    reasons: List[str] = []
    for criterion, points in contributing:
        unit = "punto" if points == 1 else "puntos"
        reasons.append(
            f"{SNAPSHOT_FIELD_LABELS[criterion]}: {points} {unit} ({_criterion_value(snapshot, criterion)})"
        )

    band_level = classify_score(breakdown.total_score, p.bands)
    floor = protocol_floor(snapshot, p)
    if floor is not None and alert_rank(floor) > alert_rank(band_level):
        reasons.append(
            f"{SNAPSHOT_FIELD_LABELS['critical_patient_protocol']} en "
            f"{format_snapshot_value('critical_patient_protocol', snapshot.critical_patient_protocol)} "
            f"fuerza al menos {alert_label(floor)} (puntaje por sí solo: {alert_label(band_level)})"
        )

    if not reasons:
        reasons.append("Todos los criterios se encuentran en rangos habituales.")

    header = (
        f"Nivel de alerta {alert_label(alert_level)} alcanzado con "
        f"{breakdown.total_score} puntos por:"
    )
    return [header] + reasons
