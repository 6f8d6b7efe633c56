"""Localized (es-CL) labels for clinical-facing text."""

from __future__ import annotations

import re
from typing import Any, Dict


ALERT_LEVEL_LABELS: Dict[str, str] = {
    "GREEN": "Verde",
    "YELLOW": "Amarilla",
    "ORANGE": "Naranja",
    "RED": "Roja",
}

SNAPSHOT_FIELD_LABELS: Dict[str, str] = {
    "scenario": "Escenario",
    "hospitalized_patients": "Pacientes Hospitalizados",
    "esi_c2_patients": "Pacientes ESI C2",
    "resuscitation_bay_patients": "Pacientes en Reanimador",
    "critical_patient_protocol": "Protocolo Paciente Crítico",
    "waiting_72_hours_patients": "Pacientes en Espera > 72h",
    "surge_active": "SAR Activo",
    "surge_patients": "Pacientes en SAR",
}

# Order in which snapshot fields are listed in summaries and reports.
SNAPSHOT_FIELD_ORDER = tuple(SNAPSHOT_FIELD_LABELS)

SCENARIO_LABELS: Dict[str, str] = {
    "reduced_capacity": "Capacidad Reducida",
    "full_capacity": "Capacidad Completa",
}

CRITICAL_PROTOCOL_LABELS: Dict[str, str] = {
    "none": "No Activado",
    "yellow": "Clave Amarilla",
    "red": "Clave Roja",
}

MEASURE_STATUS_LABELS: Dict[str, str] = {
    "not_applied": "No Aplicada",
    "in_process": "En Proceso",
    "applied": "Aplicada",
}

PROTOCOL_TYPE_LABELS: Dict[str, str] = {
    "medico_quirurgico": "Médico Quirúrgico",
}

DATETIME_FORMAT = "%d/%m/%Y %H:%M:%S"
TIME_FORMAT = "%d/%m/%Y %H:%M"

NOT_APPLICABLE = "No aplica"


def alert_label(level: str) -> str:
    return ALERT_LEVEL_LABELS.get(level, level)


def format_snapshot_value(key: str, value: Any, *, surge_active: bool = False) -> str:
    """Human-readable value of a snapshot field."""

    if key == "resuscitation_bay_patients" and surge_active:
        return "SAR activo"
    if key == "scenario":
        return SCENARIO_LABELS.get(value, str(value))
    if key == "critical_patient_protocol":
        return CRITICAL_PROTOCOL_LABELS.get(value or "none", CRITICAL_PROTOCOL_LABELS["none"])
    if key == "surge_active":
        return "Sí" if value else "No"
    if value is None:
        return NOT_APPLICABLE
    return str(value)


# Authorization refusals; the English reason stays the stable key.
FORBIDDEN_REASON_LABELS: Dict[str, str] = {
    "only measures of the last two activated alert keys are editable": (
        "Solo se pueden editar las medidas de las últimas 2 claves activadas"
    ),
    "viewers cannot modify measures": "Su perfil no permite modificar medidas",
    "viewers cannot submit evaluations": "Su perfil no permite registrar evaluaciones",
    "viewers cannot modify evaluations": "Su perfil no permite modificar evaluaciones",
}

_EDIT_WINDOW_PATTERN = re.compile(r"only measures of the last (\d+) activated alert keys are editable")


def forbidden_message(reason: str) -> str:
    if reason in FORBIDDEN_REASON_LABELS:
        return FORBIDDEN_REASON_LABELS[reason]
    match = _EDIT_WINDOW_PATTERN.fullmatch(reason)
    if match:
        return f"Solo se pueden editar las medidas de las últimas {match.group(1)} claves activadas"
    return reason
