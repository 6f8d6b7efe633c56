"""Saturation scoring engine.

Each criterion of a validated snapshot contributes points through a
monotonic step table keyed by patient-count thresholds. The tables are
data: `DEFAULT_SCORING_TABLE` holds the built-in values and
`load_scoring_table` reads a replacement from JSON, so the protocol can be
revised without touching the algorithm.

JSON shape
----------
{
  "hospitalized_patients": [[0, 0], [10, 1], ...],
  "esi_c2_patients": [[0, 0], ...],
  "waiting_72_hours_patients": [[0, 0], ...],
  "resuscitation_bay_patients": {
      "reduced_capacity": [[0, 0], ...],
      "full_capacity": [[0, 0], ...]
  },
  "critical_patient_protocol": {"none": 0, "yellow": 2, "red": 4}
}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from saturation_snapshot import CRITICAL_PROTOCOLS, SCENARIOS, Snapshot


CRITERIA = (
    "hospitalized_patients",
    "esi_c2_patients",
    "resuscitation_bay_patients",
    "critical_patient_protocol",
    "waiting_72_hours_patients",
)


@dataclass(frozen=True)
class StepTable:
    """Monotonic step function from a patient count to points.

    `steps` are (threshold, points) pairs with strictly increasing
    thresholds and non-decreasing points. A count scores the points of
    the highest threshold it reaches; counts below the first threshold
    score 0.
    """

    steps: Tuple[Tuple[int, int], ...]

    def __post_init__(self) -> None:
        steps = tuple((int(t), int(p)) for t, p in self.steps)
        if not steps:
            raise ValueError("step table needs at least one step")
        for (t0, p0), (t1, p1) in zip(steps, steps[1:]):
            if t1 <= t0:
                raise ValueError(f"thresholds must be strictly increasing: {t0} then {t1}")
            if p1 < p0:
                raise ValueError(f"points must not decrease: {p0} then {p1}")
        if any(p < 0 for _, p in steps):
            raise ValueError("points must be non-negative")
        object.__setattr__(self, "steps", steps)

    def points_for(self, count: int) -> int:
        points = 0
        for threshold, step_points in self.steps:
            if count < threshold:
                break
            points = step_points
        return points


@dataclass(frozen=True)
class ScoringTable:
    hospitalized_patients: StepTable
    esi_c2_patients: StepTable
    waiting_72_hours_patients: StepTable
    resuscitation_bay_patients: Mapping[str, StepTable]
    critical_patient_protocol: Mapping[str, int]

    def __post_init__(self) -> None:
        missing = [s for s in SCENARIOS if s not in self.resuscitation_bay_patients]
        if missing:
            raise ValueError(f"resuscitation bay table missing scenarios: {missing}")
        missing = [p for p in CRITICAL_PROTOCOLS if p not in self.critical_patient_protocol]
        if missing:
            raise ValueError(f"critical protocol points missing for: {missing}")
        if any(int(v) < 0 for v in self.critical_patient_protocol.values()):
            raise ValueError("critical protocol points must be non-negative")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScoringTable":
        def _steps(raw: Sequence[Sequence[int]]) -> StepTable:
            return StepTable(tuple((int(t), int(p)) for t, p in raw))

        return cls(
            hospitalized_patients=_steps(data["hospitalized_patients"]),
            esi_c2_patients=_steps(data["esi_c2_patients"]),
            waiting_72_hours_patients=_steps(data["waiting_72_hours_patients"]),
            resuscitation_bay_patients={
                scenario: _steps(raw) for scenario, raw in data["resuscitation_bay_patients"].items()
            },
            critical_patient_protocol={
                str(k): int(v) for k, v in data["critical_patient_protocol"].items()
            },
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hospitalized_patients": [list(s) for s in self.hospitalized_patients.steps],
            "esi_c2_patients": [list(s) for s in self.esi_c2_patients.steps],
            "waiting_72_hours_patients": [list(s) for s in self.waiting_72_hours_patients.steps],
            "resuscitation_bay_patients": {
                scenario: [list(s) for s in table.steps]
                for scenario, table in self.resuscitation_bay_patients.items()
            },
            "critical_patient_protocol": dict(self.critical_patient_protocol),
        }


# Provisional values pending confirmation against the clinical protocol.
DEFAULT_SCORING_TABLE = ScoringTable.from_dict(
    {
        "hospitalized_patients": [[0, 0], [10, 1], [20, 2], [30, 3], [40, 4]],
        "esi_c2_patients": [[0, 0], [5, 1], [10, 2], [15, 3]],
        "waiting_72_hours_patients": [[0, 0], [1, 1], [3, 2], [5, 3]],
        "resuscitation_bay_patients": {
            "reduced_capacity": [[0, 0], [2, 1], [4, 2], [6, 3]],
            "full_capacity": [[0, 0], [3, 1], [6, 2], [8, 3]],
        },
        "critical_patient_protocol": {"none": 0, "yellow": 2, "red": 4},
    }
)


def load_scoring_table(path: Path | str) -> ScoringTable:
    """Load a scoring table from a JSON file.

    Raises ValueError when the file is not valid JSON or the table is
    malformed; FileNotFoundError propagates.
    """

    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid scoring table JSON: {path}: {exc}") from exc
    try:
        return ScoringTable.from_dict(data)
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Malformed scoring table: {path}: {exc}") from exc


@dataclass(frozen=True)
class ScoreBreakdown:
    """Points per criterion plus their sum."""

    components: Mapping[str, int] = field(default_factory=dict)
    total_score: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"components": dict(self.components), "total_score": self.total_score}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScoreBreakdown":
        components = {str(k): int(v) for k, v in (data.get("components") or {}).items()}
        return cls(components=components, total_score=int(data.get("total_score", sum(components.values()))))


def resuscitation_count(snapshot: Snapshot) -> int:
    """Count used for the resuscitation criterion (surge count under SAR)."""

    return snapshot.surge_patients if snapshot.surge_active else snapshot.resuscitation_bay_patients


def score_snapshot(snapshot: Snapshot, table: Optional[ScoringTable] = None) -> ScoreBreakdown:
    """Score a validated snapshot. Pure and total."""

    t = table or DEFAULT_SCORING_TABLE

    components: Dict[str, int] = {
        "hospitalized_patients": t.hospitalized_patients.points_for(snapshot.hospitalized_patients),
        "esi_c2_patients": t.esi_c2_patients.points_for(snapshot.esi_c2_patients),
        "resuscitation_bay_patients": t.resuscitation_bay_patients[snapshot.scenario].points_for(
            resuscitation_count(snapshot)
        ),
        "critical_patient_protocol": int(t.critical_patient_protocol[snapshot.critical_patient_protocol]),
        "waiting_72_hours_patients": t.waiting_72_hours_patients.points_for(snapshot.waiting_72_hours_patients),
    }

    return ScoreBreakdown(components=components, total_score=sum(components.values()))
