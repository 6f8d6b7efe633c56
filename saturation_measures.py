"""Containment measures: selection per alert level and display ordering.

Every alert level maps to an ordered list of measure rules. A rule may be
conditioned on the snapshot (for example the SAR support measure only
applies while surge is active). The order of the selected list fixes each
measure's `original_order_index`, which never changes afterwards and
breaks ties when measures are re-sorted by status.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Literal, Mapping, Optional, Sequence, Tuple

from alerts import ALERT_LEVELS
from saturation_snapshot import Snapshot


MeasureStatus = Literal["not_applied", "in_process", "applied"]

MEASURE_STATUSES = ("not_applied", "in_process", "applied")

# Display priority: pending work first.
STATUS_PRIORITY: Dict[str, int] = {
    "not_applied": 0,
    "in_process": 1,
    "applied": 2,
}


@dataclass(frozen=True)
class Measure:
    """One containment action attached to an evaluation.

    Only `status` changes after creation; use `with_status`.
    """

    description: str
    original_order_index: int
    status: MeasureStatus = "not_applied"
    id: Optional[int] = None

    def with_status(self, status: MeasureStatus) -> "Measure":
        return replace(self, status=status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "status": self.status,
            "original_order_index": self.original_order_index,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Measure":
        return cls(
            id=data.get("id"),
            description=str(data["description"]),
            status=data.get("status") or "not_applied",
            original_order_index=int(data["original_order_index"]),
        )


# --------------------------- Rule catalog -------------------------------


SNAPSHOT_CONDITIONS: Dict[str, Callable[[Snapshot], bool]] = {
    "surge_active": lambda s: s.surge_active,
    "critical_protocol_active": lambda s: s.critical_patient_protocol != "none",
    "long_waiting_patients": lambda s: s.waiting_72_hours_patients > 0,
}


@dataclass(frozen=True)
class MeasureRule:
    key: str
    description: str
    condition: Optional[str] = None

    def __post_init__(self) -> None:
        if self.condition is not None and self.condition not in SNAPSHOT_CONDITIONS:
            raise ValueError(f"unknown measure condition {self.condition!r}")

    def applies_to(self, snapshot: Snapshot) -> bool:
        if self.condition is None:
            return True
        return SNAPSHOT_CONDITIONS[self.condition](snapshot)


@dataclass(frozen=True)
class MeasureCatalog:
    """Measure rules and the ordered rule keys of each alert level."""

    rules: Mapping[str, MeasureRule]
    levels: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for level, keys in self.levels.items():
            if level not in ALERT_LEVELS:
                raise ValueError(f"unknown alert level {level!r}")
            unknown = [k for k in keys if k not in self.rules]
            if unknown:
                raise ValueError(f"{level} references unknown measures: {unknown}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MeasureCatalog":
        rules = {
            key: MeasureRule(key=key, description=raw["description"], condition=raw.get("condition"))
            for key, raw in data["rules"].items()
        }
        levels = {level: tuple(keys) for level, keys in data.get("levels", {}).items()}
        return cls(rules=rules, levels=levels)

    def candidates(self, alert_level: str) -> List[MeasureRule]:
        return [self.rules[k] for k in self.levels.get(alert_level, ())]


_RULES = [
    MeasureRule(
        "notify_shift_lead",
        "Informar al jefe de turno de la Unidad de Emergencia y al gestor de camas.",
    ),
    MeasureRule(
        "expedite_discharges",
        "Agilizar altas y traslados de pacientes con indicación de hospitalización.",
    ),
    MeasureRule(
        "prioritize_waiting_room",
        "Revisar pacientes en espera de atención y priorizar según categorización ESI.",
    ),
    MeasureRule(
        "manage_long_waits",
        "Gestionar cama prioritaria para pacientes con más de 72 horas de espera de hospitalización.",
        condition="long_waiting_patients",
    ),
    MeasureRule(
        "activate_orange_key",
        "Activar clave naranja y comunicar a la Subdirección Médica.",
    ),
    MeasureRule(
        "open_contingency_beds",
        "Habilitar camillas y box de contingencia para pacientes hospitalizados.",
    ),
    MeasureRule(
        "reinforce_staff",
        "Solicitar refuerzo de personal médico y de enfermería.",
    ),
    MeasureRule(
        "surge_support",
        "Activar apoyo al reanimador por Sobresaturación Aguda de Reanimador (SAR).",
        condition="surge_active",
    ),
    MeasureRule(
        "critical_bed_coordination",
        "Coordinar con el equipo de paciente crítico la priorización de camas UPC.",
        condition="critical_protocol_active",
    ),
    MeasureRule(
        "activate_red_key",
        "Activar clave roja y convocar al comité de crisis hospitalaria.",
    ),
    MeasureRule(
        "suspend_electives",
        "Suspender hospitalizaciones y cirugías electivas.",
    ),
    MeasureRule(
        "network_referrals",
        "Gestionar derivaciones de pacientes a la red asistencial.",
    ),
]

DEFAULT_MEASURE_CATALOG = MeasureCatalog(
    rules={rule.key: rule for rule in _RULES},
    levels={
        "GREEN": (),
        "YELLOW": (
            "notify_shift_lead",
            "expedite_discharges",
            "prioritize_waiting_room",
            "manage_long_waits",
        ),
        "ORANGE": (
            "activate_orange_key",
            "notify_shift_lead",
            "expedite_discharges",
            "open_contingency_beds",
            "reinforce_staff",
            "surge_support",
            "critical_bed_coordination",
            "manage_long_waits",
        ),
        "RED": (
            "activate_red_key",
            "open_contingency_beds",
            "reinforce_staff",
            "surge_support",
            "critical_bed_coordination",
            "suspend_electives",
            "network_referrals",
            "expedite_discharges",
            "manage_long_waits",
            "notify_shift_lead",
        ),
    },
)


# ---------------------------- Selection ---------------------------------


def select_measures(
    alert_level: str,
    snapshot: Snapshot,
    catalog: Optional[MeasureCatalog] = None,
) -> List[str]:
    """Return the ordered, deduplicated measure descriptions for a level."""

    c = catalog or DEFAULT_MEASURE_CATALOG

    seen_keys = set()
    seen_text = set()
    selected: List[str] = []
    for rule in c.candidates(alert_level):
        if rule.key in seen_keys or rule.description in seen_text:
            continue
        if not rule.applies_to(snapshot):
            continue
        seen_keys.add(rule.key)
        seen_text.add(rule.description)
        selected.append(rule.description)
    return selected


def build_measures(descriptions: Sequence[str]) -> List[Measure]:
    """Create the initial measure batch of a new evaluation."""

    return [
        Measure(description=text, original_order_index=index, status="not_applied")
        for index, text in enumerate(descriptions)
    ]


def measure_sort_key(measure: Measure) -> Tuple[int, int]:
    return (STATUS_PRIORITY.get(measure.status, 0), measure.original_order_index)


def sort_measures(measures: Iterable[Measure]) -> List[Measure]:
    """Display order: status priority, then original order."""

    return sorted(measures, key=measure_sort_key)
