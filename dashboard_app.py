"""Streamlit front-end for the saturation protocol.

Three views share one `WorkingState` kept in `st.session_state`:
- Calculator: enter the snapshot, get alert level, measures and notes.
- History: browse stored evaluations, update measure statuses, save the
  post-activation analysis and download the report.
- Statistics: alert distribution, SAR activity and daily trends.

Run with:
    streamlit run dashboard_app.py
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

import pandas as pd
import streamlit as st

from backend.config import get_settings
from backend.evaluation_service import build_engine_config
from backend.evaluation_store import SQLiteEvaluationStore
from evaluation_session import EvaluationSession, WorkingState, with_draft
from measure_status import MeasureStatusService, RecentElevatedAlertsPolicy
from saturation_decision_engine import allowed_decisions
from saturation_errors import ForbiddenError, SaturationError
from saturation_evaluation import Evaluation, Principal
from saturation_labels import (
    CRITICAL_PROTOCOL_LABELS,
    MEASURE_STATUS_LABELS,
    SCENARIO_LABELS,
    alert_label,
    forbidden_message,
)
from saturation_measures import MEASURE_STATUSES, sort_measures
from saturation_reporting import (
    build_report_sections,
    build_result_text,
    build_share_message,
    render_report_text,
    report_filename,
)
from saturation_snapshot import autofill_surge, surge_threshold
from saturation_statistics import (
    alert_level_distribution,
    criterion_daily_average,
    evaluations_frame,
    filter_period,
    forecast_daily_scores,
    surge_statistics,
)


st.set_page_config(
    page_title="Protocolo de Saturación",
    layout="wide",
)

ALERT_EMOJI = {"GREEN": "🟢", "YELLOW": "🟡", "ORANGE": "🟠", "RED": "🔴"}


def error_message(exc: SaturationError) -> str:
    if isinstance(exc, ForbiddenError):
        return forbidden_message(exc.reason)
    return str(exc)


@st.cache_resource
def get_store() -> SQLiteEvaluationStore:
    settings = get_settings()
    return SQLiteEvaluationStore(settings.db_path, settings.clinical_timezone)


def get_state() -> WorkingState:
    if "working_state" not in st.session_state:
        st.session_state["working_state"] = WorkingState()
    return st.session_state["working_state"]


def get_session() -> EvaluationSession:
    settings = get_settings()
    return EvaluationSession(
        get_store(),
        get_state(),
        build_engine_config(settings),
        tz_name=settings.clinical_timezone,
        history_limit=settings.history_limit,
    )


def render_measures(evaluation: Evaluation, principal: Principal, key_prefix: str) -> None:
    settings = get_settings()
    service = MeasureStatusService(
        get_store(),
        RecentElevatedAlertsPolicy(get_store(), window=settings.edit_window),
        get_state(),
    )
    for measure in sort_measures(evaluation.measures):
        col1, col2 = st.columns([3, 1])
        with col1:
            st.markdown(f"- {measure.description}")
        with col2:
            choice = st.selectbox(
                "Estado",
                MEASURE_STATUSES,
                index=MEASURE_STATUSES.index(measure.status),
                format_func=lambda s: MEASURE_STATUS_LABELS[s],
                key=f"{key_prefix}-{evaluation.id}-{measure.id}",
                label_visibility="collapsed",
            )
        if choice != measure.status and evaluation.id is not None and measure.id is not None:
            try:
                service.set_status(evaluation.id, measure.id, choice, principal)
                st.rerun()
            except SaturationError as exc:
                st.error(error_message(exc))


def render_calculator(principal: Principal) -> None:
    state = get_state()
    session = get_session()

    st.markdown("### Protocolo de Saturación Médico/Quirúrgico")
    if st.button("Cargar última evaluación"):
        session.refresh_history(limit=1)
        prefill = session.load_most_recent()
        if prefill is not None:
            state.draft = prefill

    draft = state.draft
    scenario = st.radio(
        "Situación del Reanimador",
        list(SCENARIO_LABELS),
        index=list(SCENARIO_LABELS).index(draft.scenario) if draft.scenario else 0,
        format_func=lambda s: SCENARIO_LABELS[s],
        horizontal=True,
    )
    hospitalized = st.number_input("Número de pacientes hospitalizados", min_value=0, value=draft.hospitalized_patients)
    esi_c2 = st.number_input("Número total de ESI C2 (en atención y en espera)", min_value=0, value=draft.esi_c2_patients)
    bay = st.number_input("Pacientes en reanimador", min_value=0, value=draft.resuscitation_bay_patients)
    protocol = st.selectbox(
        "Protocolo paciente crítico",
        list(CRITICAL_PROTOCOL_LABELS),
        index=list(CRITICAL_PROTOCOL_LABELS).index(draft.critical_patient_protocol or "none"),
        format_func=lambda p: CRITICAL_PROTOCOL_LABELS[p],
    )
    waiting = st.number_input("Pacientes con más de 72 horas de espera", min_value=0, value=draft.waiting_72_hours_patients)

    draft = autofill_surge(
        with_draft(
            state,
            scenario=scenario,
            hospitalized_patients=hospitalized,
            esi_c2_patients=esi_c2,
            resuscitation_bay_patients=bay,
            critical_patient_protocol=protocol,
            waiting_72_hours_patients=waiting,
        )
    )
    surge_active = st.checkbox("SAR activo", value=draft.surge_active)
    surge_patients = None
    if surge_active:
        surge_patients = st.number_input(
            f"Pacientes en SAR (mínimo {surge_threshold(scenario)})",
            min_value=0,
            value=draft.surge_patients or 0,
        )
    evaluator = st.text_input("Nombre del evaluador(a)", value=draft.evaluator_name, autocomplete="off")

    with_draft(state, surge_active=surge_active, surge_patients=surge_patients, evaluator_name=evaluator)

    col1, col2 = st.columns(2)
    with col1:
        if st.button("Calcular", type="primary"):
            try:
                session.submit(state.draft, principal)
            except SaturationError as exc:
                st.error(error_message(exc))
    with col2:
        if st.button("Limpiar"):
            session.reset_working_state()
            st.rerun()

    result = state.result
    if result is None:
        return

    st.markdown("---")
    st.markdown(f"#### Nivel de Alerta: {ALERT_EMOJI.get(result.alert_level, '')} {alert_label(result.alert_level)}")
    st.metric("Puntaje Total", result.total_score)
    for line in state.explanations:
        st.markdown(f"- {line}")
    if result.measures:
        st.markdown("##### Medidas a Aplicar")
        render_measures(result, principal, "calc")
    if result.reevaluation_note:
        st.info(result.reevaluation_note)
    st.code(build_result_text(result), language=None)


def render_history(principal: Principal) -> None:
    state = get_state()
    session = get_session()
    settings = get_settings()

    col1, col2 = st.columns(2)
    with col1:
        start = st.date_input("Desde", value=None)
    with col2:
        end = st.date_input("Hasta", value=None)

    tz = ZoneInfo(settings.clinical_timezone)
    lo = datetime.combine(start, time.min, tzinfo=tz) if isinstance(start, date) else None
    hi = datetime.combine(end, time.max, tzinfo=tz) if isinstance(end, date) else None
    try:
        session.refresh_history(lo, hi, limit=settings.history_limit)
    except SaturationError as exc:
        st.error(error_message(exc))
        return

    st.caption(f"{state.total_count} evaluaciones")
    if not state.evaluations:
        st.info("No hay evaluaciones registradas en el período.")
        return

    table = pd.DataFrame(
        [
            {
                "id": e.id,
                "Fecha": e.timestamp.strftime("%d/%m/%Y %H:%M"),
                "Nivel": alert_label(e.alert_level),
                "Puntaje": e.total_score,
                "Evaluador": e.evaluator_name,
            }
            for e in state.evaluations
        ]
    )
    st.dataframe(table, hide_index=True, use_container_width=True)

    selected_id = st.selectbox("Ver evaluación", [e.id for e in state.evaluations])
    if selected_id is None:
        return
    evaluation = session.select(int(selected_id))

    st.markdown(f"#### {ALERT_EMOJI.get(evaluation.alert_level, '')} {alert_label(evaluation.alert_level)} ({evaluation.total_score})")
    share_tab, measures_tab, analysis_tab = st.tabs(["Resumen", "Medidas", "Análisis e informe"])

    with share_tab:
        st.code(build_share_message(evaluation, settings.clinical_timezone), language=None)

    with measures_tab:
        render_measures(evaluation, principal, "hist")

    with analysis_tab:
        options = allowed_decisions(evaluation.alert_level)
        if not options:
            st.info("Este nivel de alerta no requiere decisión final.")
        else:
            results = evaluation.evaluation_results
            reeval = st.time_input("Hora de reevaluación", value=None)
            analysis = st.text_area("Análisis de la Gestión", value=results.analysis_text or "")
            decision = st.radio("Decisión final", [o.key for o in options], format_func=lambda k: next(o.label for o in options if o.key == k))
            next_date = st.date_input("Fecha próxima evaluación", value=evaluation.timestamp.date())
            next_time = st.time_input("Hora próxima evaluación", value=(evaluation.timestamp + timedelta(hours=2)).time())
            if st.button("Guardar análisis"):
                tz = evaluation.timestamp.tzinfo
                try:
                    session.save_analysis(
                        evaluation.id,  # type: ignore[arg-type]
                        principal,
                        re_evaluation_time=datetime.combine(evaluation.timestamp.date(), reeval, tzinfo=tz) if reeval else None,
                        analysis_text=analysis,
                        final_decision=decision,
                        next_evaluation_timestamp=datetime.combine(next_date, next_time, tzinfo=tz),
                    )
                    st.success("Análisis guardado.")
                except SaturationError as exc:
                    st.error(error_message(exc))

        report_text = render_report_text(build_report_sections(evaluation, settings.clinical_timezone))
        st.download_button(
            "Descargar informe",
            data=report_text.encode("utf-8"),
            file_name=report_filename(evaluation, settings.clinical_timezone).replace(".pdf", ".txt"),
            disabled=not (evaluation.evaluation_results.final_decision and evaluation.evaluation_results.next_evaluation_timestamp),
        )


def render_statistics() -> None:
    settings = get_settings()
    df = evaluations_frame(get_store().all_evaluations(), settings.clinical_timezone)
    if df.empty:
        st.info("Aún no hay evaluaciones para analizar.")
        return

    col1, col2 = st.columns(2)
    with col1:
        start = st.date_input("Desde", value=df["reporting_day"].min(), key="stats-start")
    with col2:
        end = st.date_input("Hasta", value=df["reporting_day"].max(), key="stats-end")
    df = filter_period(df, start, end)

    grouped = st.checkbox("Agrupar contención / intervención")
    distribution = alert_level_distribution(df, group_containment=grouped, group_intervention=grouped)
    st.bar_chart(pd.Series({k: v["count"] for k, v in distribution.items()}))

    surge = surge_statistics(df)
    c1, c2 = st.columns(2)
    c1.metric("Activaciones SAR", surge["activations"])
    c2.metric("Promedio pacientes en SAR", f"{surge['average_surge_patients']:.1f}")

    slot = st.radio("Turno", ["both", "day", "night"], format_func={"both": "General", "day": "Diurno", "night": "Nocturno"}.get, horizontal=True)
    trend = pd.DataFrame(
        {
            c: criterion_daily_average(df, c, None if slot == "both" else slot)  # type: ignore[arg-type]
            for c in ("hospitalized_patients", "esi_c2_patients", "waiting_72_hours_patients", "total_score")
        }
    )
    st.line_chart(trend)

    if df["reporting_day"].nunique() >= 2:
        st.markdown("##### Predicción de puntaje (7 días)")
        st.line_chart(forecast_daily_scores(df, 7).set_index("reporting_day"))


def main() -> None:
    st.title("Protocolo de Saturación de Urgencia")

    st.sidebar.header("Usuario")
    user_id = st.sidebar.text_input("Identificador", value="usuario", autocomplete="off")
    role = st.sidebar.selectbox("Rol", ["editor", "admin", "viewer"])
    principal = Principal(user_id=user_id, role=role)

    calc_tab, history_tab, stats_tab = st.tabs(["Calculadora", "Historial", "Estadísticas"])
    with calc_tab:
        render_calculator(principal)
    with history_tab:
        render_history(principal)
    with stats_tab:
        render_statistics()


if __name__ == "__main__":
    main()
