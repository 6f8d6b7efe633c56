"""Shareable summaries and the activation report.

Everything here is a deterministic rendering of one `Evaluation`:

- `build_share_message`: the short text sent to the on-call group. It
  lists the snapshot and never the analysis fields.
- `build_result_text`: the calculator's clipboard text.
- `build_report_sections`: the ordered sections of the activation
  report, consumed by `render_report_html` (handed to an external PDF
  renderer) and `render_report_text` (plain-text download).

Measures are always listed in display order (`sort_measures`).
"""

from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Literal, Optional, Protocol, Sequence, Tuple

from saturation_decision_engine import decision_label
from saturation_errors import CollaboratorUnavailable, EvaluationResultsError
from saturation_evaluation import Evaluation, EvaluationResults
from saturation_labels import (
    DATETIME_FORMAT,
    MEASURE_STATUS_LABELS,
    NOT_APPLICABLE,
    PROTOCOL_TYPE_LABELS,
    SNAPSHOT_FIELD_LABELS,
    SNAPSHOT_FIELD_ORDER,
    TIME_FORMAT,
    alert_label,
    format_snapshot_value,
)
from saturation_measures import Measure, sort_measures
from saturation_snapshot import CLINICAL_TIMEZONE, to_clinical_time


REPORT_TITLE = "Informe de Gestión de Clave de Saturación"
SHARE_HEADER = "*Evaluación de Saturación Hospitalaria*"
NOT_RECORDED = "No registrado"
NO_MEASURES = "No hay medidas registradas."

# Keys of the structured analysis form used when no free text was saved.
DEFAULT_ANALYSIS_TEMPLATE = """1. Gestión de Pacientes:
  * Movimientos Efectivos Realizados: {effective_movements}
  * Movimientos Potenciales Adicionales Identificados: {potential_additional_movements}

2. Dificultades y Facilitadores:
  * Principales Dificultades en la Implementación: {main_difficulties}
  * Factores que Facilitaron la Gestión: {facilitating_factors}

3. Comentarios y Recomendaciones Adicionales: {additional_comments}"""

_TEMPLATE_KEYS = (
    "effective_movements",
    "potential_additional_movements",
    "main_difficulties",
    "facilitating_factors",
    "additional_comments",
)


def _fmt(value: datetime | str | None, fmt: str = DATETIME_FORMAT, tz_name: str = CLINICAL_TIMEZONE) -> Optional[str]:
    if value is None or value == "":
        return None
    try:
        return to_clinical_time(value, tz_name).strftime(fmt)
    except (AttributeError, TypeError, ValueError):
        # Stored results are free-form; show what was saved.
        return str(value)


def _snapshot_lines(evaluation: Evaluation) -> List[Tuple[str, str]]:
    data = evaluation.snapshot.to_dict()
    surge = evaluation.snapshot.surge_active
    return [
        (SNAPSHOT_FIELD_LABELS[key], format_snapshot_value(key, data[key], surge_active=surge))
        for key in SNAPSHOT_FIELD_ORDER
    ]


# ------------------------------ Share text ------------------------------


def build_share_message(evaluation: Evaluation, tz_name: str = CLINICAL_TIMEZONE) -> str:
    protocol = PROTOCOL_TYPE_LABELS.get(evaluation.protocol_type, evaluation.protocol_type)
    lines = [
        SHARE_HEADER,
        f"Fecha: {_fmt(evaluation.timestamp, tz_name=tz_name)}",
        f"Tipo de Protocolo: {protocol}",
        f"Nivel de Alerta: {alert_label(evaluation.alert_level)}",
        f"Puntaje: {evaluation.total_score}",
        f"Evaluador: {evaluation.evaluator_name}",
        "",
        "*Detalles de la Evaluación*",
    ]
    lines.extend(f"{label}: {value}" for label, value in _snapshot_lines(evaluation))
    return "\n".join(lines) + "\n"


_CLIPBOARD_STATUS = {
    "applied": "(Aplicada)",
    "in_process": "(En proceso)",
    "not_applied": "(No aplicada)",
}


def build_result_text(evaluation: Evaluation) -> str:
    measures = sort_measures(evaluation.measures)
    if measures:
        measures_text = "\n".join(
            f"- {m.description} {_CLIPBOARD_STATUS.get(m.status, '')}".rstrip() for m in measures
        )
    else:
        measures_text = "Sin medidas específicas."

    text = (
        "Resultados del Protocolo de Saturación:\n"
        f"- Nivel de Alerta: {alert_label(evaluation.alert_level)}\n"
        f"- Puntaje Total: {evaluation.total_score}\n\n"
        f"Medidas a Aplicar:\n{measures_text}"
    )
    if evaluation.reevaluation_note:
        text += f"\n\nNota: {evaluation.reevaluation_note}"
    return text


# ------------------------------- Report ---------------------------------


SectionKind = Literal["fields", "measures", "analysis", "decision"]


@dataclass(frozen=True)
class ReportSection:
    title: str
    kind: SectionKind
    fields: Tuple[Tuple[str, str], ...] = ()
    measures: Tuple[Measure, ...] = ()
    text: str = ""


def analysis_text(results: EvaluationResults) -> str:
    """Saved analysis, or the structured template filled from its keys."""

    if isinstance(results.analysis_text, str):
        return results.analysis_text
    values = {key: results.extra.get(key) or "" for key in _TEMPLATE_KEYS}
    return DEFAULT_ANALYSIS_TEMPLATE.format(**values)


def build_report_sections(evaluation: Evaluation, tz_name: str = CLINICAL_TIMEZONE) -> List[ReportSection]:
    results = evaluation.evaluation_results

    general = ReportSection(
        title="1. Datos Generales de la Activación",
        kind="fields",
        fields=(
            ("Fecha y Hora de Activación", _fmt(evaluation.timestamp, tz_name=tz_name) or ""),
            ("Nombre del evaluador(a)", evaluation.evaluator_name),
            ("Nivel de Alerta Alcanzado", alert_label(evaluation.alert_level)),
            ("Puntaje Total Obtenido", str(evaluation.total_score)),
        ),
    )
    criteria = ReportSection(
        title="2. Criterios de Activación",
        kind="fields",
        fields=tuple(_snapshot_lines(evaluation)),
    )
    measures = ReportSection(
        title="3. Medidas del Protocolo Implementadas",
        kind="measures",
        measures=tuple(sort_measures(evaluation.measures)),
    )
    analysis = ReportSection(
        title="4. Resultados y Análisis",
        kind="analysis",
        fields=(
            ("Hora de Reevaluación", _fmt(results.re_evaluation_time, TIME_FORMAT, tz_name) or NOT_RECORDED),
        ),
        text=analysis_text(results),
    )
    decision = ReportSection(
        title="5. Decisión Final",
        kind="decision",
        fields=(
            ("Decisión", decision_label(results.final_decision) or NOT_APPLICABLE),
            (
                "Horario y fecha de próxima evaluación",
                _fmt(results.next_evaluation_timestamp, tz_name=tz_name) or NOT_APPLICABLE,
            ),
        ),
    )
    return [general, criteria, measures, analysis, decision]


def _measure_line(measure: Measure) -> str:
    return f"{measure.description} (Estado: {MEASURE_STATUS_LABELS.get(measure.status, measure.status)})"


def render_report_text(sections: Sequence[ReportSection]) -> str:
    parts: List[str] = []
    for section in sections:
        parts.append(f"\n--- {section.title} ---\n\n")
        if section.kind == "measures":
            if section.measures:
                parts.extend(f"- {_measure_line(m)}\n" for m in section.measures)
            else:
                parts.append(NO_MEASURES + "\n")
        elif section.kind == "analysis":
            parts.extend(f"{label}: {value}\n" for label, value in section.fields)
            parts.append(f"Análisis de la Gestión:\n{section.text}\n")
        else:
            parts.extend(f"{label}: {value}\n" for label, value in section.fields)
    return "".join(parts)


def _e(value: Any) -> str:
    return html.escape(str(value)) if value is not None else ""


_CSS = """
body { font-family: Arial, Helvetica, sans-serif; margin: 24px; color: #222; }
h1 { font-size: 1.4em; border-bottom: 2px solid #444; padding-bottom: 6px; }
h2 { font-size: 1.1em; margin-top: 20px; }
table { border-collapse: collapse; width: 100%; }
td { padding: 4px 8px; vertical-align: top; border-bottom: 1px solid #e0e0e0; }
td.label { font-weight: bold; width: 45%; }
li.applied { color: #2e7d32; }
li.in_process { color: #8d6e00; }
pre { white-space: pre-wrap; font-family: inherit; }
"""


def _render_section_html(section: ReportSection) -> str:
    out = [f"<h2>{_e(section.title)}</h2>"]
    if section.kind == "measures":
        if section.measures:
            out.append("<ul>")
            out.extend(f'<li class="{_e(m.status)}">{_e(_measure_line(m))}</li>' for m in section.measures)
            out.append("</ul>")
        else:
            out.append(f"<p>{_e(NO_MEASURES)}</p>")
        return "\n".join(out)

    if section.fields:
        out.append("<table>")
        out.extend(
            f'<tr><td class="label">{_e(label)}</td><td>{_e(value)}</td></tr>' for label, value in section.fields
        )
        out.append("</table>")
    if section.kind == "analysis":
        out.append("<p><strong>Análisis de la Gestión:</strong></p>")
        out.append(f"<pre>{_e(section.text)}</pre>")
    return "\n".join(out)


def render_report_html(evaluation: Evaluation, tz_name: str = CLINICAL_TIMEZONE) -> str:
    """Self-contained HTML document for the PDF renderer."""

    body = "\n".join(_render_section_html(s) for s in build_report_sections(evaluation, tz_name))
    return (
        "<!DOCTYPE html>\n"
        '<html lang="es">\n<head>\n<meta charset="utf-8">\n'
        f"<title>{_e(REPORT_TITLE)}</title>\n<style>{_CSS}</style>\n</head>\n<body>\n"
        f"<h1>{_e(REPORT_TITLE)}</h1>\n{body}\n</body>\n</html>\n"
    )


# ------------------------------- Export ---------------------------------


class ReportRenderer(Protocol):
    def render(self, html_document: str) -> bytes: ...


def report_filename(evaluation: Evaluation, tz_name: str = CLINICAL_TIMEZONE) -> str:
    stamp = to_clinical_time(evaluation.timestamp, tz_name).strftime("%Y%m%d_%H%M%S")
    return f"Informe_Evaluacion_{stamp}.pdf"


def ensure_exportable(evaluation: Evaluation) -> None:
    results = evaluation.evaluation_results
    missing = [
        key for key in ("final_decision", "next_evaluation_timestamp") if not getattr(results, key)
    ]
    if missing:
        raise EvaluationResultsError(
            f"save the analysis before exporting the report (missing: {', '.join(missing)})"
        )


def export_report(
    evaluation: Evaluation,
    renderer: ReportRenderer,
    tz_name: str = CLINICAL_TIMEZONE,
) -> Tuple[str, bytes]:
    """Render the report through `renderer`; returns (filename, content)."""

    ensure_exportable(evaluation)
    document = render_report_html(evaluation, tz_name)
    try:
        content = renderer.render(document)
    except CollaboratorUnavailable:
        raise
    except Exception as exc:
        raise CollaboratorUnavailable("report renderer failed", cause=exc) from exc
    return report_filename(evaluation, tz_name), content
