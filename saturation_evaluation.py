"""Persisted evaluation shape and its analysis record.

An `Evaluation` is created once by the evaluation session; afterwards only
its measures' statuses and its `evaluation_results` change.
`evaluation_results` is stored as a JSON object. `EvaluationResults`
types the known keys and carries every other key through untouched, so a
partial update (for example setting only the final decision) never drops
fields written by someone else.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence

from saturation_measures import Measure
from saturation_scoring import ScoreBreakdown
from saturation_snapshot import CLINICAL_TIMEZONE, Snapshot, to_clinical_time


PROTOCOL_TYPE = "medico_quirurgico"

Role = Literal["admin", "editor", "viewer"]


@dataclass(frozen=True)
class Principal:
    """Authenticated caller; only the role matters to the protocol."""

    user_id: str
    role: str = "viewer"

    @property
    def can_edit(self) -> bool:
        return self.role in ("admin", "editor")


KNOWN_RESULT_KEYS = (
    "re_evaluation_time",
    "analysis_text",
    "final_decision",
    "next_evaluation_timestamp",
)


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


@dataclass(frozen=True)
class EvaluationResults:
    re_evaluation_time: Optional[str] = None
    analysis_text: Optional[str] = None
    final_decision: Optional[str] = None
    next_evaluation_timestamp: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "EvaluationResults":
        data = dict(data or {})
        known = {key: data.pop(key, None) for key in KNOWN_RESULT_KEYS}
        return cls(
            re_evaluation_time=_iso(known["re_evaluation_time"]),
            analysis_text=known["analysis_text"],
            final_decision=known["final_decision"],
            next_evaluation_timestamp=_iso(known["next_evaluation_timestamp"]),
            extra=data,
        )

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "EvaluationResults":
        if not raw:
            return cls()
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("evaluation_results must be a JSON object")
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        for key in KNOWN_RESULT_KEYS:
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, sort_keys=True)

    def merged(self, **updates: Any) -> "EvaluationResults":
        """Return a copy with only the given keys replaced.

        Unknown keys land in `extra`; everything not named is preserved.
        """

        known: Dict[str, Any] = {}
        extra = dict(self.extra)
        for key, value in updates.items():
            if key in KNOWN_RESULT_KEYS:
                if key in ("re_evaluation_time", "next_evaluation_timestamp"):
                    value = _iso(value)
                known[key] = value
            else:
                extra[key] = value
        return replace(self, extra=extra, **known)

    def missing_for_decision(self) -> List[str]:
        """Keys that must be set before the analysis can be saved."""

        return [
            key
            for key in ("re_evaluation_time", "final_decision", "next_evaluation_timestamp")
            if not getattr(self, key)
        ]


@dataclass(frozen=True)
class Evaluation:
    snapshot: Snapshot
    score_breakdown: ScoreBreakdown
    alert_level: str
    measures: Sequence[Measure]
    timestamp: datetime
    evaluation_results: EvaluationResults = field(default_factory=EvaluationResults)
    reevaluation_note: Optional[str] = None
    protocol_type: str = PROTOCOL_TYPE
    id: Optional[int] = None

    @property
    def total_score(self) -> int:
        return self.score_breakdown.total_score

    @property
    def evaluator_name(self) -> str:
        return self.snapshot.evaluator_name

    def measure(self, measure_id: int) -> Optional[Measure]:
        for m in self.measures:
            if m.id == measure_id:
                return m
        return None

    def with_measure(self, updated: Measure) -> "Evaluation":
        """Replace the measure with the same id, keeping list order."""

        measures = tuple(updated if m.id == updated.id else m for m in self.measures)
        return replace(self, measures=measures)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "protocol_type": self.protocol_type,
            "timestamp": self.timestamp.isoformat(),
            "snapshot": self.snapshot.to_dict(),
            "score_breakdown": self.score_breakdown.to_dict(),
            "total_score": self.total_score,
            "alert_level": self.alert_level,
            "measures": [m.to_dict() for m in self.measures],
            "evaluation_results": self.evaluation_results.to_dict(),
            "reevaluation_note": self.reevaluation_note,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], tz_name: str = CLINICAL_TIMEZONE) -> "Evaluation":
        results = data.get("evaluation_results")
        if isinstance(results, str):
            evaluation_results = EvaluationResults.from_json(results)
        else:
            evaluation_results = EvaluationResults.from_dict(results)
        return cls(
            id=data.get("id"),
            protocol_type=data.get("protocol_type") or PROTOCOL_TYPE,
            timestamp=to_clinical_time(data["timestamp"], tz_name),
            snapshot=Snapshot.from_dict(data["snapshot"], tz_name),
            score_breakdown=ScoreBreakdown.from_dict(data.get("score_breakdown") or {}),
            alert_level=data["alert_level"],
            measures=tuple(Measure.from_dict(m) for m in data.get("measures") or ()),
            evaluation_results=evaluation_results,
            reevaluation_note=data.get("reevaluation_note"),
        )
