"""Evaluation input snapshot: form parsing, validation and surge helpers.

A snapshot captures the emergency-department occupancy indicators a
clinician enters at one point in time:

- scenario: resuscitation bay capacity ("reduced_capacity" or
  "full_capacity").
- hospitalized_patients: patients admitted and waiting in the ED.
- esi_c2_patients: ESI category 2 patients (in care and waiting).
- resuscitation_bay_patients: patients in the resuscitation bay.
- critical_patient_protocol: "none", "yellow" or "red".
- waiting_72_hours_patients: patients waiting 72h+ for a ward bed.
- surge_active / surge_patients: acute resuscitation-bay oversaturation
  (SAR) and the resuscitation + supernumerary patient count.

Input flows through two stages. `parse_snapshot_form` turns raw form
values into a `SnapshotDraft` (blank fields stay None) and rejects values
that are not non-negative integers. `validate_snapshot` then applies the
protocol's completeness and surge rules and returns a frozen `Snapshot`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Mapping, Optional
from zoneinfo import ZoneInfo

from saturation_errors import SnapshotParseError, SnapshotValidationError


Scenario = Literal["reduced_capacity", "full_capacity"]
CriticalProtocol = Literal["none", "yellow", "red"]

SCENARIOS = ("reduced_capacity", "full_capacity")
CRITICAL_PROTOCOLS = ("none", "yellow", "red")

CLINICAL_TIMEZONE = "America/Santiago"

# Minimum SAR patient count per scenario.
SURGE_THRESHOLDS: Dict[str, int] = {
    "reduced_capacity": 6,
    "full_capacity": 8,
}

COUNT_FIELDS = (
    "hospitalized_patients",
    "esi_c2_patients",
    "resuscitation_bay_patients",
    "waiting_72_hours_patients",
    "surge_patients",
)

MISSING_FIELDS_MESSAGE = "missing required fields"

_SCENARIO_NAMES = {
    "reduced_capacity": "reduced capacity",
    "full_capacity": "full capacity",
}


def surge_threshold(scenario: str) -> int:
    return SURGE_THRESHOLDS[scenario]


def to_clinical_time(value: datetime | str, tz_name: str = CLINICAL_TIMEZONE) -> datetime:
    """Normalize an instant to the clinical timezone.

    Naive datetimes and ISO strings without an offset are taken as UTC,
    which is how clients transmit timestamps.
    """

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(ZoneInfo(tz_name))


@dataclass(frozen=True)
class SnapshotDraft:
    """Editable snapshot as held by a form; None means the field is blank."""

    scenario: Optional[str] = None
    hospitalized_patients: Optional[int] = None
    esi_c2_patients: Optional[int] = None
    resuscitation_bay_patients: Optional[int] = None
    critical_patient_protocol: Optional[str] = "none"
    waiting_72_hours_patients: Optional[int] = None
    surge_active: bool = False
    surge_patients: Optional[int] = None
    evaluator_name: str = ""
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class Snapshot:
    """Validated snapshot; the input of the scoring engine."""

    scenario: Scenario
    hospitalized_patients: int
    esi_c2_patients: int
    resuscitation_bay_patients: int
    critical_patient_protocol: CriticalProtocol
    waiting_72_hours_patients: int
    surge_active: bool
    surge_patients: int
    evaluator_name: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], tz_name: str = CLINICAL_TIMEZONE) -> "Snapshot":
        return cls(
            scenario=data["scenario"],
            hospitalized_patients=int(data.get("hospitalized_patients") or 0),
            esi_c2_patients=int(data.get("esi_c2_patients") or 0),
            resuscitation_bay_patients=int(data.get("resuscitation_bay_patients") or 0),
            critical_patient_protocol=data.get("critical_patient_protocol") or "none",
            waiting_72_hours_patients=int(data.get("waiting_72_hours_patients") or 0),
            surge_active=bool(data.get("surge_active", False)),
            surge_patients=int(data.get("surge_patients") or 0),
            evaluator_name=str(data.get("evaluator_name") or ""),
            timestamp=to_clinical_time(data["timestamp"], tz_name),
        )

    def to_draft(self) -> SnapshotDraft:
        """Project back into editable form fields."""

        return SnapshotDraft(
            scenario=self.scenario,
            hospitalized_patients=self.hospitalized_patients,
            esi_c2_patients=self.esi_c2_patients,
            resuscitation_bay_patients=self.resuscitation_bay_patients,
            critical_patient_protocol=self.critical_patient_protocol,
            waiting_72_hours_patients=self.waiting_72_hours_patients,
            surge_active=self.surge_active,
            surge_patients=self.surge_patients,
            evaluator_name=self.evaluator_name,
            timestamp=None,
        )


# ------------------------------ Parsing ---------------------------------


def _parse_count(field: str, value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise SnapshotParseError(field, value)
    if isinstance(value, int):
        count = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise SnapshotParseError(field, value)
        count = int(value)
    else:
        text = str(value).strip()
        if text == "":
            return None
        try:
            count = int(text)
        except ValueError:
            raise SnapshotParseError(field, value) from None
    if count < 0:
        raise SnapshotParseError(field, value)
    return count


def _parse_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on", "si", "sí"}
    return bool(value)


def parse_snapshot_form(fields: Mapping[str, Any]) -> SnapshotDraft:
    """Parse raw form values into a draft.

    Unknown keys are ignored. Raises SnapshotParseError for values that
    are present but not non-negative integers.
    """

    counts = {name: _parse_count(name, fields.get(name)) for name in COUNT_FIELDS}

    scenario = fields.get("scenario") or None
    protocol = fields.get("critical_patient_protocol")
    protocol = "none" if protocol is None else (str(protocol).strip() or None)

    raw_ts = fields.get("timestamp")
    timestamp: Optional[datetime] = None
    if isinstance(raw_ts, datetime):
        timestamp = raw_ts
    elif isinstance(raw_ts, str) and raw_ts.strip():
        try:
            timestamp = to_clinical_time(raw_ts)
        except ValueError:
            raise SnapshotParseError("timestamp", raw_ts) from None

    return SnapshotDraft(
        scenario=scenario,
        critical_patient_protocol=protocol,
        surge_active=_parse_flag(fields.get("surge_active", False)),
        evaluator_name=str(fields.get("evaluator_name") or ""),
        timestamp=timestamp,
        **counts,
    )


# ----------------------------- Validation -------------------------------


def validate_snapshot(
    draft: SnapshotDraft,
    *,
    tz_name: str = CLINICAL_TIMEZONE,
    now: Optional[datetime] = None,
) -> Snapshot:
    """Apply the completeness and surge rules; first failure wins.

    1. Required fields present (scenario, hospitalized, ESI C2, waiting
       72h, critical protocol, evaluator name).
    2. Without SAR, the resuscitation bay count must be present.
    3. With SAR, the surge count must be present and reach the scenario
       threshold.
    """

    missing = [
        name
        for name in (
            "scenario",
            "hospitalized_patients",
            "esi_c2_patients",
            "critical_patient_protocol",
            "waiting_72_hours_patients",
        )
        if getattr(draft, name) is None
    ]
    if not draft.evaluator_name.strip():
        missing.append("evaluator_name")
    if missing:
        raise SnapshotValidationError(MISSING_FIELDS_MESSAGE, missing)

    if draft.scenario not in SCENARIOS:
        raise SnapshotValidationError(f"unknown scenario {draft.scenario!r}", ["scenario"])
    if draft.critical_patient_protocol not in CRITICAL_PROTOCOLS:
        raise SnapshotValidationError(
            f"unknown critical patient protocol {draft.critical_patient_protocol!r}",
            ["critical_patient_protocol"],
        )

    if not draft.surge_active and draft.resuscitation_bay_patients is None:
        raise SnapshotValidationError(MISSING_FIELDS_MESSAGE, ["resuscitation_bay_patients"])

    if draft.surge_active:
        threshold = surge_threshold(draft.scenario)
        if draft.surge_patients is None or draft.surge_patients < threshold:
            raise SnapshotValidationError(
                f"surge patients must be ≥ {threshold} for {_SCENARIO_NAMES[draft.scenario]}",
                ["surge_patients"],
            )

    timestamp = draft.timestamp or now or datetime.now(timezone.utc)

    return Snapshot(
        scenario=draft.scenario,  # type: ignore[arg-type]
        hospitalized_patients=int(draft.hospitalized_patients),  # type: ignore[arg-type]
        esi_c2_patients=int(draft.esi_c2_patients),  # type: ignore[arg-type]
        resuscitation_bay_patients=0 if draft.surge_active else int(draft.resuscitation_bay_patients),  # type: ignore[arg-type]
        critical_patient_protocol=draft.critical_patient_protocol,  # type: ignore[arg-type]
        waiting_72_hours_patients=int(draft.waiting_72_hours_patients),  # type: ignore[arg-type]
        surge_active=bool(draft.surge_active),
        surge_patients=int(draft.surge_patients) if draft.surge_active else 0,  # type: ignore[arg-type]
        evaluator_name=draft.evaluator_name.strip(),
        timestamp=to_clinical_time(timestamp, tz_name),
    )


def autofill_surge(draft: SnapshotDraft) -> SnapshotDraft:
    """Switch SAR on/off from the resuscitation bay count.

    Once the bay count reaches the scenario threshold SAR is activated and
    the surge count is prefilled with the bay count; below the threshold
    SAR is deactivated and the surge count reset to 0. Drafts without a
    scenario or bay count are returned unchanged.
    """

    if draft.scenario not in SCENARIOS or draft.resuscitation_bay_patients is None:
        return draft

    bay = draft.resuscitation_bay_patients
    if bay >= surge_threshold(draft.scenario):
        return replace(draft, surge_active=True, surge_patients=bay)
    return replace(draft, surge_active=False, surge_patients=0)
