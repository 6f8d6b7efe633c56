from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from zoneinfo import ZoneInfo

import numpy as np
import pandas as pd

from backend.actions_store import ActionLog
from backend.config import Settings
from backend.evaluation_store import SQLiteEvaluationStore
from backend.monitoring import record_evaluation, record_measure_update, record_rejection
from evaluation_session import EvaluationSession, WorkingState
from measure_status import MeasureStatusService, RecentElevatedAlertsPolicy
from saturation_decision_engine import EngineConfig, allowed_decisions, next_evaluation_due
from saturation_errors import (
    CollaboratorUnavailable,
    ForbiddenError,
    NotFoundError,
    SnapshotParseError,
    SnapshotValidationError,
)
from saturation_evaluation import Evaluation, Principal
from saturation_labels import alert_label
from saturation_measures import sort_measures
from saturation_reporting import (
    REPORT_TITLE,
    build_report_sections,
    build_result_text,
    build_share_message,
    ensure_exportable,
    render_report_html,
    render_report_text,
    report_filename,
)
from saturation_scoring import DEFAULT_SCORING_TABLE, load_scoring_table
from saturation_statistics import (
    STAT_CRITERIA,
    alert_level_distribution,
    critical_protocol_distribution,
    criterion_average,
    criterion_daily_average,
    evaluations_frame,
    filter_period,
    forecast_daily_scores,
    surge_statistics,
)


SERVICE_VERSION = "0.1.0"


def _to_builtin(obj: Any) -> Any:
    """Convert numpy/pandas/date objects into JSON-friendly builtins."""

    if obj is None:
        return None

    if isinstance(obj, (str, int, float, bool)):
        return obj

    if isinstance(obj, (np.integer,)):
        return int(obj)
    if isinstance(obj, (np.floating,)):
        return float(obj)
    if isinstance(obj, (np.bool_,)):
        return bool(obj)

    if isinstance(obj, (pd.Timestamp, datetime, date)):
        # ISO 8601
        return obj.isoformat()

    if isinstance(obj, (Path,)):
        return str(obj)

    if isinstance(obj, (list, tuple)):
        return [_to_builtin(x) for x in obj]

    if isinstance(obj, dict):
        return {str(k): _to_builtin(v) for k, v in obj.items()}

    if isinstance(obj, pd.DataFrame):
        return [_to_builtin(r) for r in obj.to_dict(orient="records")]
    if isinstance(obj, pd.Series):
        return {_to_builtin(k): _to_builtin(v) for k, v in obj.items()}

    if hasattr(obj, "to_dict") and callable(getattr(obj, "to_dict")):
        return _to_builtin(obj.to_dict())

    return str(obj)


def build_engine_config(settings: Settings) -> EngineConfig:
    """Engine tables, with the scoring table optionally loaded from JSON."""

    table = DEFAULT_SCORING_TABLE
    if settings.scoring_table_path:
        table = load_scoring_table(settings.scoring_table_path)
    return EngineConfig(scoring_table=table)


def evaluation_payload(evaluation: Evaluation) -> Dict[str, Any]:
    """Evaluation as served to clients: measures in display order, labels added."""

    data = evaluation.to_dict()
    data["measures"] = [m.to_dict() for m in sort_measures(evaluation.measures)]
    data["alert_label"] = alert_label(evaluation.alert_level)
    data["evaluator_name"] = evaluation.evaluator_name
    data["decision_options"] = [
        {"key": o.key, "label": o.label, "target_level": o.target_level}
        for o in allowed_decisions(evaluation.alert_level)
    ]
    return _to_builtin(data)


@dataclass
class SaturationService:
    settings: Settings
    store: SQLiteEvaluationStore
    actions: ActionLog
    engine: EngineConfig

    @classmethod
    def from_settings(cls, settings: Settings, store: Optional[SQLiteEvaluationStore] = None) -> "SaturationService":
        return cls(
            settings=settings,
            store=store or SQLiteEvaluationStore(settings.db_path, settings.clinical_timezone),
            actions=ActionLog(store.path if store is not None else settings.db_path),
            engine=build_engine_config(settings),
        )

    # Each request works on its own WorkingState; storage is shared.
    def session(self, state: Optional[WorkingState] = None) -> EvaluationSession:
        return EvaluationSession(
            self.store,
            state,
            self.engine,
            tz_name=self.settings.clinical_timezone,
            history_limit=self.settings.history_limit,
        )

    def _day_bounds(self, start: Optional[date], end: Optional[date]) -> tuple:
        tz = ZoneInfo(self.settings.clinical_timezone)
        lo = datetime.combine(start, time.min, tzinfo=tz) if start is not None else None
        hi = datetime.combine(end, time.max, tzinfo=tz) if end is not None else None
        return lo, hi

    # -- calculator --

    def calculate(self, fields: Mapping[str, Any], principal: Principal) -> Dict[str, Any]:
        session = self.session()
        try:
            evaluation = session.submit_form(fields, principal)
        except (SnapshotParseError, SnapshotValidationError):
            record_rejection("validation")
            raise
        except ForbiddenError:
            record_rejection("forbidden")
            raise

        record_evaluation(evaluation.alert_level, evaluation.total_score, evaluation.timestamp.timestamp())
        due = next_evaluation_due(evaluation.alert_level, evaluation.timestamp, self.engine.reevaluation)
        return {
            "evaluation": evaluation_payload(evaluation),
            "explanations": list(session.state.explanations),
            "reevaluation_note": evaluation.reevaluation_note,
            "next_evaluation_due": _to_builtin(due),
            "result_text": build_result_text(evaluation),
        }

    def latest_prefill(self) -> Dict[str, Any]:
        session = self.session()
        session.refresh_history(limit=1)
        draft = session.load_most_recent()
        if draft is None:
            return {"prefill": None}
        prefill = asdict(draft)
        prefill.pop("timestamp", None)
        return {"prefill": _to_builtin(prefill)}

    # -- history --

    def list_history(
        self,
        *,
        start: Optional[date] = None,
        end: Optional[date] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        lo, hi = self._day_bounds(start, end)
        session = self.session()
        page = session.refresh_history(lo, hi, skip=skip, limit=limit)
        return {
            "evaluations": [evaluation_payload(e) for e in page.items],
            "total_count": page.total_count,
            "skip": skip,
            "limit": limit or self.settings.history_limit,
        }

    def get_evaluation(self, evaluation_id: int) -> Dict[str, Any]:
        return evaluation_payload(self.session().select(evaluation_id))

    def save_analysis(self, evaluation_id: int, principal: Principal, updates: Mapping[str, Any]) -> Dict[str, Any]:
        updated = self.session().save_analysis(evaluation_id, principal, **dict(updates))
        self.actions.log_action(
            "analysis_saved",
            "api",
            {"evaluation_id": evaluation_id, "user_id": principal.user_id, "keys": sorted(updates)},
        )
        return evaluation_payload(updated)

    def update_timestamp(self, evaluation_id: int, principal: Principal, timestamp: datetime) -> Dict[str, Any]:
        updated = self.session().update_timestamp(evaluation_id, principal, timestamp)
        self.actions.log_action(
            "timestamp_updated",
            "api",
            {"evaluation_id": evaluation_id, "user_id": principal.user_id, "timestamp": timestamp},
        )
        return evaluation_payload(updated)

    def delete_evaluation(self, evaluation_id: int, principal: Principal) -> None:
        self.session().delete_evaluation(evaluation_id, principal)
        self.actions.log_action(
            "evaluation_deleted",
            "api",
            {"evaluation_id": evaluation_id, "user_id": principal.user_id},
        )

    # -- measures --

    def set_measure_status(
        self,
        evaluation_id: int,
        measure_id: int,
        status: str,
        principal: Principal,
    ) -> Dict[str, Any]:
        state = WorkingState()
        service = MeasureStatusService(
            self.store,
            RecentElevatedAlertsPolicy(self.store, window=self.settings.edit_window),
            state,
            audit=lambda outcome, payload: self.actions.log_action(f"measure_status_{outcome}", "api", payload),
        )
        try:
            measure = service.set_status(evaluation_id, measure_id, status, principal)
        except ForbiddenError:
            record_measure_update("forbidden")
            raise
        except NotFoundError:
            record_measure_update("not_found")
            raise
        except CollaboratorUnavailable:
            record_measure_update("unavailable")
            raise
        record_measure_update("applied")

        evaluation = self.store.get_evaluation(evaluation_id)
        return {"measure": measure.to_dict(), "evaluation": evaluation_payload(evaluation)}

    def editable_evaluation_ids(self) -> Dict[str, Any]:
        return {
            "window": self.settings.edit_window,
            "evaluation_ids": self.store.recent_elevated_ids(self.settings.edit_window),
        }

    # -- summaries and report --

    def share_message(self, evaluation_id: int) -> Dict[str, Any]:
        evaluation = self.store.get_evaluation(evaluation_id)
        return {"message": build_share_message(evaluation, self.settings.clinical_timezone)}

    def report(self, evaluation_id: int) -> Dict[str, Any]:
        evaluation = self.store.get_evaluation(evaluation_id)
        sections = build_report_sections(evaluation, self.settings.clinical_timezone)
        return {
            "title": REPORT_TITLE,
            "filename": report_filename(evaluation, self.settings.clinical_timezone),
            "exportable": bool(evaluation.evaluation_results.final_decision)
            and bool(evaluation.evaluation_results.next_evaluation_timestamp),
            "sections": [
                {
                    "title": s.title,
                    "kind": s.kind,
                    "fields": [{"label": label, "value": value} for label, value in s.fields],
                    "measures": [m.to_dict() for m in s.measures],
                    "text": s.text,
                }
                for s in sections
            ],
            "text": render_report_text(sections),
        }

    def report_html(self, evaluation_id: int) -> str:
        evaluation = self.store.get_evaluation(evaluation_id)
        ensure_exportable(evaluation)
        return render_report_html(evaluation, self.settings.clinical_timezone)

    # -- statistics --

    def statistics(
        self,
        *,
        start: Optional[date] = None,
        end: Optional[date] = None,
        group_containment: bool = False,
        group_intervention: bool = False,
        slot: Optional[str] = None,
        horizon_days: int = 7,
    ) -> Dict[str, Any]:
        df = evaluations_frame(self.store.all_evaluations(), self.settings.clinical_timezone)
        df = filter_period(df, start, end)

        criteria: Dict[str, Any] = {}
        for criterion in STAT_CRITERIA:
            criteria[criterion] = {
                "daily_average": criterion_daily_average(df, criterion, slot),  # type: ignore[arg-type]
                "average": criterion_average(df, criterion, slot),  # type: ignore[arg-type]
            }

        forecast: Any = None
        if not df.empty and df["reporting_day"].nunique() >= 2:
            forecast = forecast_daily_scores(df, horizon_days)

        return _to_builtin(
            {
                "evaluation_count": int(df.shape[0]),
                "alert_levels": alert_level_distribution(
                    df,
                    group_containment=group_containment,
                    group_intervention=group_intervention,
                ),
                "surge": surge_statistics(df),
                "critical_protocol": critical_protocol_distribution(df),
                "criteria": criteria,
                "forecast": forecast,
            }
        )
