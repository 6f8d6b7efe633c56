from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Optional, Union

import logging

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from backend.config import Settings, get_settings
from backend.evaluation_service import SaturationService
from backend.evaluation_store import SQLiteEvaluationStore
from saturation_errors import (
    CollaboratorUnavailable,
    EvaluationResultsError,
    ForbiddenError,
    NotFoundError,
    SnapshotParseError,
    SnapshotValidationError,
)
from saturation_evaluation import Principal
from saturation_labels import forbidden_message
from saturation_measures import MeasureStatus


FormValue = Optional[Union[int, str]]


class CalculateBody(BaseModel):
    scenario: Optional[str] = None
    hospitalized_patients: FormValue = None
    esi_c2_patients: FormValue = None
    resuscitation_bay_patients: FormValue = None
    critical_patient_protocol: Optional[str] = "none"
    waiting_72_hours_patients: FormValue = None
    surge_active: bool = False
    surge_patients: FormValue = None
    evaluator_name: str = ""
    timestamp: Optional[datetime] = None


class AnalysisBody(BaseModel):
    """Partial update of the analysis; unknown keys are stored as-is."""

    model_config = ConfigDict(extra="allow")

    re_evaluation_time: Optional[datetime] = None
    analysis_text: Optional[str] = None
    final_decision: Optional[str] = None
    next_evaluation_timestamp: Optional[datetime] = None


class TimestampBody(BaseModel):
    timestamp: datetime


class MeasureStatusBody(BaseModel):
    status: MeasureStatus


logger = logging.getLogger("saturation_backend")


def get_principal(
    user_id: str = Header("anonymous", alias="X-Principal-Id"),
    role: str = Header("viewer", alias="X-Principal-Role"),
) -> Principal:
    """Caller identity as forwarded by the authenticating proxy."""

    role = role.strip().lower()
    return Principal(user_id=user_id, role=role if role in ("admin", "editor", "viewer") else "viewer")


def _error(status_code: int, code: str, detail: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, "code": code, **extra})


def create_app(settings: Optional[Settings] = None, store: Optional[SQLiteEvaluationStore] = None) -> FastAPI:
    settings = settings or get_settings()
    service = SaturationService.from_settings(settings, store)

    for name in ("saturation", "saturation_backend"):
        logging.getLogger(name).setLevel(settings.log_level.upper())

    app = FastAPI(title=settings.app_name, version="0.1.0", debug=settings.debug)
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ------------------------- Error mapping -------------------------

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # pragma: no cover - safety net
        """Catch-all handler to avoid leaking internal errors in responses."""

        logger.exception("Unhandled exception during request", extra={"path": str(request.url)})
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "path": str(request.url)},
        )

    @app.exception_handler(SnapshotParseError)
    async def parse_error_handler(request: Request, exc: SnapshotParseError) -> JSONResponse:
        return _error(422, "parse_error", str(exc), fields=[exc.field])

    @app.exception_handler(SnapshotValidationError)
    async def validation_error_handler(request: Request, exc: SnapshotValidationError) -> JSONResponse:
        logger.info("snapshot_rejected", extra={"path": str(request.url), "fields": list(exc.fields)})
        return _error(422, "validation_error", exc.message, fields=list(exc.fields))

    @app.exception_handler(EvaluationResultsError)
    async def results_error_handler(request: Request, exc: EvaluationResultsError) -> JSONResponse:
        return _error(422, "evaluation_results_error", str(exc))

    @app.exception_handler(ForbiddenError)
    async def forbidden_handler(request: Request, exc: ForbiddenError) -> JSONResponse:
        logger.info("request_forbidden", extra={"path": str(request.url), "reason": exc.reason})
        return _error(403, "forbidden", exc.reason, message=forbidden_message(exc.reason))

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(404, "not_found", str(exc))

    @app.exception_handler(CollaboratorUnavailable)
    async def unavailable_handler(request: Request, exc: CollaboratorUnavailable) -> JSONResponse:
        logger.warning("collaborator_unavailable", extra={"path": str(request.url), "error": repr(exc.cause)})
        return _error(503, "collaborator_unavailable", str(exc))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return _error(422, "invalid_value", str(exc))

    # --------------------------- Service ------------------------------

    @app.get("/", response_class=HTMLResponse)
    def root() -> str:
        return (
            f"<h2>{settings.app_name}</h2>"
            "<ul>"
            "<li><a href='/docs'>API docs</a></li>"
            "<li><a href='/api/evaluations'>Evaluation history</a></li>"
            "<li><a href='/health'>Health</a></li>"
            "</ul>"
        )

    @app.get("/favicon.ico")
    def favicon() -> Response:
        return Response(status_code=204)

    @app.get("/health")
    def health() -> Dict[str, Any]:
        """Lightweight liveness check."""

        return {"status": "ok", "environment": settings.environment}

    @app.get("/health/ready")
    def health_ready() -> Dict[str, Any]:
        """Readiness: the evaluation store can be opened and queried."""

        try:
            service.store.recent_elevated_ids(1)
        except CollaboratorUnavailable as exc:
            return {"status": "error", "error": str(exc)}
        return {"status": "ok", "db_path": str(service.store.path)}

    @app.get("/metrics")
    def metrics() -> Response:
        """Expose Prometheus metrics from the process-wide registry."""

        data = generate_latest()
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    # ------------------------- Evaluations ----------------------------

    @app.post("/api/evaluations", status_code=201)
    def api_calculate(body: CalculateBody, principal: Principal = Depends(get_principal)) -> Dict[str, Any]:
        result = service.calculate(body.model_dump(), principal)
        logger.info(
            "evaluation_created",
            extra={
                "evaluation_id": result["evaluation"]["id"],
                "alert_level": result["evaluation"]["alert_level"],
                "user_id": principal.user_id,
            },
        )
        return result

    @app.get("/api/evaluations")
    def api_history(
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        skip: int = Query(0, ge=0),
        limit: Optional[int] = Query(None, ge=1, le=500),
    ) -> Dict[str, Any]:
        return service.list_history(start=start_date, end=end_date, skip=skip, limit=limit)

    @app.get("/api/evaluations/latest/prefill")
    def api_latest_prefill() -> Dict[str, Any]:
        return service.latest_prefill()

    @app.get("/api/evaluations/{evaluation_id}")
    def api_evaluation(evaluation_id: int) -> Dict[str, Any]:
        return service.get_evaluation(evaluation_id)

    @app.patch("/api/evaluations/{evaluation_id}/results")
    def api_save_analysis(
        evaluation_id: int,
        body: AnalysisBody,
        principal: Principal = Depends(get_principal),
    ) -> Dict[str, Any]:
        return service.save_analysis(evaluation_id, principal, body.model_dump(exclude_unset=True))

    @app.patch("/api/evaluations/{evaluation_id}/timestamp")
    def api_update_timestamp(
        evaluation_id: int,
        body: TimestampBody,
        principal: Principal = Depends(get_principal),
    ) -> Dict[str, Any]:
        return service.update_timestamp(evaluation_id, principal, body.timestamp)

    @app.delete("/api/evaluations/{evaluation_id}", status_code=204)
    def api_delete(evaluation_id: int, principal: Principal = Depends(get_principal)) -> Response:
        service.delete_evaluation(evaluation_id, principal)
        return Response(status_code=204)

    # --------------------------- Measures -----------------------------

    @app.patch("/api/evaluations/{evaluation_id}/measures/{measure_id}")
    def api_measure_status(
        evaluation_id: int,
        measure_id: int,
        body: MeasureStatusBody,
        principal: Principal = Depends(get_principal),
    ) -> Dict[str, Any]:
        return service.set_measure_status(evaluation_id, measure_id, body.status, principal)

    @app.get("/api/measures/editable")
    def api_editable() -> Dict[str, Any]:
        return service.editable_evaluation_ids()

    # ---------------------- Summaries and report ----------------------

    @app.get("/api/evaluations/{evaluation_id}/share")
    def api_share(evaluation_id: int) -> Dict[str, Any]:
        return service.share_message(evaluation_id)

    @app.get("/api/evaluations/{evaluation_id}/report")
    def api_report(evaluation_id: int) -> Dict[str, Any]:
        return service.report(evaluation_id)

    @app.get("/api/evaluations/{evaluation_id}/report.html", response_class=HTMLResponse)
    def api_report_html(evaluation_id: int) -> HTMLResponse:
        return HTMLResponse(content=service.report_html(evaluation_id))

    # ------------------------- Statistics -----------------------------

    @app.get("/api/statistics")
    def api_statistics(
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        group_containment: bool = False,
        group_intervention: bool = False,
        slot: Optional[str] = Query(None, pattern="^(day|night)$"),
        horizon_days: int = Query(7, ge=1, le=30),
    ) -> Dict[str, Any]:
        return service.statistics(
            start=start_date,
            end=end_date,
            group_containment=group_containment,
            group_intervention=group_intervention,
            slot=slot,
            horizon_days=horizon_days,
        )

    @app.get("/api/actions")
    def api_actions(limit: int = Query(50, ge=1, le=500)) -> Dict[str, Any]:
        """Recent audit log entries."""

        return {"actions": service.actions.get_recent_actions(limit=limit)}

    return app


app = create_app()
