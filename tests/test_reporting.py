"""Tests for shareable summaries and the activation report."""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from saturation_errors import CollaboratorUnavailable, EvaluationResultsError
from saturation_evaluation import EvaluationResults
from saturation_reporting import (
    DEFAULT_ANALYSIS_TEMPLATE,
    NOT_RECORDED,
    REPORT_TITLE,
    SHARE_HEADER,
    analysis_text,
    build_report_sections,
    build_result_text,
    build_share_message,
    export_report,
    render_report_html,
    render_report_text,
    report_filename,
)


class FakeRenderer:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.documents = []

    def render(self, html_document: str) -> bytes:
        self.documents.append(html_document)
        if self.fail:
            raise RuntimeError("renderer crashed")
        return b"%PDF-1.4 fake"


@pytest.fixture
def orange(submit_at):
    return submit_at("ORANGE")


@pytest.fixture
def analysed(session, orange, editor, base_time):
    return session.save_analysis(
        orange.id,
        editor,
        re_evaluation_time=base_time + timedelta(hours=1),
        analysis_text="Se habilitaron camillas de contingencia.",
        final_decision="escalate_red",
        next_evaluation_timestamp=base_time + timedelta(hours=2),
    )


class TestShareMessage:
    def test_lines(self, orange, tz_name) -> None:
        lines = build_share_message(orange, tz_name).splitlines()
        assert lines[0] == SHARE_HEADER
        assert lines[1] == "Fecha: 10/06/2024 12:00:00"
        assert lines[2] == "Tipo de Protocolo: Médico Quirúrgico"
        assert lines[3] == "Nivel de Alerta: Naranja"
        assert lines[4] == "Puntaje: 9"
        assert lines[5] == "Evaluador: Dra. Rojas"
        assert lines[6] == ""
        assert lines[7] == "*Detalles de la Evaluación*"
        assert "Escenario: Capacidad Reducida" in lines
        assert "Protocolo Paciente Crítico: No Activado" in lines
        assert "SAR Activo: No" in lines

    def test_surge_hides_bay_count(self, submit_at, tz_name) -> None:
        evaluation = submit_at("RED", surge_active=True, surge_patients=7)
        message = build_share_message(evaluation, tz_name)
        assert "Pacientes en Reanimador: SAR activo" in message
        assert "Pacientes en SAR: 7" in message

    def test_never_includes_analysis(self, analysed, tz_name) -> None:
        message = build_share_message(analysed, tz_name)
        assert "camillas de contingencia" not in message
        assert "Subir a clave roja" not in message


class TestResultText:
    def test_lists_sorted_measures_with_status(self, orange) -> None:
        first = orange.measures[0]
        evaluation = orange.with_measure(first.with_status("applied"))
        text = build_result_text(evaluation)
        assert text.startswith("Resultados del Protocolo de Saturación:\n- Nivel de Alerta: Naranja\n- Puntaje Total: 9")
        assert text.rstrip().endswith(f"Nota: {orange.reevaluation_note}")
        measure_lines = [line for line in text.splitlines() if line.startswith("- ") and "(" in line]
        assert measure_lines[-1] == f"- {first.description} (Aplicada)"

    def test_green_without_measures(self, submit_at) -> None:
        text = build_result_text(submit_at("GREEN"))
        assert "Sin medidas específicas." in text


class TestReportSections:
    def test_five_sections_in_order(self, orange, tz_name) -> None:
        sections = build_report_sections(orange, tz_name)
        assert [s.title for s in sections] == [
            "1. Datos Generales de la Activación",
            "2. Criterios de Activación",
            "3. Medidas del Protocolo Implementadas",
            "4. Resultados y Análisis",
            "5. Decisión Final",
        ]
        assert [s.kind for s in sections] == ["fields", "fields", "measures", "analysis", "decision"]

    def test_unset_analysis_fields(self, orange, tz_name) -> None:
        sections = build_report_sections(orange, tz_name)
        assert sections[3].fields == (("Hora de Reevaluación", NOT_RECORDED),)
        assert dict(sections[4].fields) == {
            "Decisión": "No aplica",
            "Horario y fecha de próxima evaluación": "No aplica",
        }

    def test_saved_analysis(self, analysed, tz_name) -> None:
        sections = build_report_sections(analysed, tz_name)
        assert sections[3].fields == (("Hora de Reevaluación", "10/06/2024 13:00"),)
        assert sections[3].text == "Se habilitaron camillas de contingencia."
        assert dict(sections[4].fields) == {
            "Decisión": "Subir a clave roja",
            "Horario y fecha de próxima evaluación": "10/06/2024 14:00:00",
        }

    def test_free_form_times_shown_as_saved(self, analysed, tz_name) -> None:
        results = replace(analysed.evaluation_results, re_evaluation_time="14:30", next_evaluation_timestamp="mañana")
        sections = build_report_sections(replace(analysed, evaluation_results=results), tz_name)
        assert sections[3].fields == (("Hora de Reevaluación", "14:30"),)
        assert dict(sections[4].fields)["Horario y fecha de próxima evaluación"] == "mañana"

    def test_measures_in_display_order(self, orange, tz_name) -> None:
        evaluation = orange.with_measure(orange.measures[0].with_status("applied"))
        measures = build_report_sections(evaluation, tz_name)[2].measures
        assert measures[-1].id == orange.measures[0].id

    def test_template_used_without_free_text(self) -> None:
        results = EvaluationResults(extra={"main_difficulties": "Sin camas UPC"})
        text = analysis_text(results)
        assert text.startswith("1. Gestión de Pacientes:")
        assert "Principales Dificultades en la Implementación: Sin camas UPC" in text
        assert analysis_text(EvaluationResults()) == DEFAULT_ANALYSIS_TEMPLATE.format(
            effective_movements="",
            potential_additional_movements="",
            main_difficulties="",
            facilitating_factors="",
            additional_comments="",
        )


class TestRenderReport:
    def test_text(self, analysed, tz_name) -> None:
        text = render_report_text(build_report_sections(analysed, tz_name))
        assert "\n--- 1. Datos Generales de la Activación ---\n\n" in text
        assert "Nivel de Alerta Alcanzado: Naranja\n" in text
        assert "(Estado: No Aplicada)" in text
        assert "Análisis de la Gestión:\nSe habilitaron camillas de contingencia.\n" in text

    def test_html_escapes_user_text(self, submit_at, tz_name) -> None:
        evaluation = submit_at("ORANGE", evaluator_name="<b>Dr. X</b>")
        document = render_report_html(evaluation, tz_name)
        assert document.startswith("<!DOCTYPE html>")
        assert f"<h1>{REPORT_TITLE}</h1>" in document
        assert "&lt;b&gt;Dr. X&lt;/b&gt;" in document
        assert "<b>Dr. X</b>" not in document

    def test_filename(self, orange, tz_name) -> None:
        assert report_filename(orange, tz_name) == "Informe_Evaluacion_20240610_120000.pdf"


class TestExportReport:
    def test_requires_saved_decision(self, orange, tz_name) -> None:
        renderer = FakeRenderer()
        with pytest.raises(EvaluationResultsError):
            export_report(orange, renderer, tz_name)
        assert renderer.documents == []

    def test_renders_through_collaborator(self, analysed, tz_name) -> None:
        renderer = FakeRenderer()
        filename, content = export_report(analysed, renderer, tz_name)
        assert filename == "Informe_Evaluacion_20240610_120000.pdf"
        assert content.startswith(b"%PDF")
        assert "Subir a clave roja" in renderer.documents[0]

    def test_renderer_failure_is_unavailable(self, analysed, tz_name) -> None:
        with pytest.raises(CollaboratorUnavailable) as exc_info:
            export_report(analysed, FakeRenderer(fail=True), tz_name)
        assert isinstance(exc_info.value.cause, RuntimeError)

    def test_partial_results_not_exportable(self, analysed, tz_name) -> None:
        partial = replace(analysed, evaluation_results=replace(analysed.evaluation_results, next_evaluation_timestamp=None))
        with pytest.raises(EvaluationResultsError, match="next_evaluation_timestamp"):
            export_report(partial, FakeRenderer(), tz_name)
