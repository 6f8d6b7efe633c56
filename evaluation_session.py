"""Evaluation session: submission, history views and analysis updates.

The session is the only component that creates evaluations in storage.
It keeps every in-memory view (calculator result, history list, history
detail) in a `WorkingState` that is passed in explicitly, so a Streamlit
session, an API request or a test can each own one.

Storage is the source of truth: after any confirmed write the session
replaces its copies with the storage's returned value.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, List, Optional, Protocol, Sequence, Tuple

from saturation_decision_engine import EngineConfig, evaluate_snapshot, validate_decision
from saturation_errors import (
    CollaboratorUnavailable,
    EvaluationResultsError,
    ForbiddenError,
    NotFoundError,
    SnapshotParseError,
    SnapshotValidationError,
)
from saturation_evaluation import Evaluation, EvaluationResults, Principal
from saturation_measures import Measure
from saturation_snapshot import (
    CLINICAL_TIMEZONE,
    SnapshotDraft,
    parse_snapshot_form,
    to_clinical_time,
    validate_snapshot,
)


logger = logging.getLogger("saturation")

DEFAULT_HISTORY_LIMIT = 30

VIEWER_SUBMIT_REASON = "viewers cannot submit evaluations"
VIEWER_EDIT_REASON = "viewers cannot modify evaluations"

TIMESTAMP_RESULT_KEYS = ("re_evaluation_time", "next_evaluation_timestamp")


@dataclass(frozen=True)
class EvaluationPage:
    items: List[Evaluation]
    total_count: int


class EvaluationStorage(Protocol):
    """Persistence collaborator.

    Implementations raise NotFoundError for unknown ids and
    CollaboratorUnavailable when the backing store cannot be reached.
    """

    def create_evaluation(self, evaluation: Evaluation) -> Evaluation: ...

    def get_evaluation(self, evaluation_id: int) -> Evaluation: ...

    def list_evaluations(
        self,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        skip: int = 0,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> EvaluationPage: ...

    def update_evaluation_results(self, evaluation_id: int, results: EvaluationResults) -> Evaluation: ...

    def update_timestamp(self, evaluation_id: int, timestamp: datetime) -> Evaluation: ...

    def delete_evaluation(self, evaluation_id: int) -> None: ...

    def update_measure_status(self, evaluation_id: int, measure_id: int, status: str) -> Measure: ...

    def recent_elevated_ids(self, window: int) -> List[int]: ...


# ---------------------------- Working state -----------------------------


def _replace_in(evaluations: Sequence[Evaluation], evaluation: Evaluation) -> List[Evaluation]:
    return [evaluation if e.id == evaluation.id else e for e in evaluations]


def _measure_updated(evaluation: Optional[Evaluation], evaluation_id: int, measure: Measure) -> Optional[Evaluation]:
    if evaluation is None or evaluation.id != evaluation_id:
        return evaluation
    return evaluation.with_measure(measure)


@dataclass
class WorkingState:
    """In-memory copies shown to the user.

    Each mutator computes all new values before assigning any of them.
    """

    draft: SnapshotDraft = field(default_factory=SnapshotDraft)
    result: Optional[Evaluation] = None
    explanations: Tuple[str, ...] = ()
    evaluations: List[Evaluation] = field(default_factory=list)
    total_count: int = 0
    selected: Optional[Evaluation] = None
    error: Optional[str] = None

    def views(self) -> List[Evaluation]:
        """Every copy currently held, calculator first."""

        held = [self.result, self.selected] + list(self.evaluations)
        return [e for e in held if e is not None]

    def replace_evaluation(self, evaluation: Evaluation) -> None:
        result = evaluation if self.result is not None and self.result.id == evaluation.id else self.result
        selected = evaluation if self.selected is not None and self.selected.id == evaluation.id else self.selected
        evaluations = _replace_in(self.evaluations, evaluation)

        self.result, self.selected, self.evaluations = result, selected, evaluations

    def apply_measure_update(self, evaluation_id: int, measure: Measure) -> None:
        result = _measure_updated(self.result, evaluation_id, measure)
        selected = _measure_updated(self.selected, evaluation_id, measure)
        evaluations = [
            e.with_measure(measure) if e.id == evaluation_id else e for e in self.evaluations
        ]

        self.result, self.selected, self.evaluations = result, selected, evaluations

    def remove_evaluation(self, evaluation_id: int) -> None:
        result = None if self.result is not None and self.result.id == evaluation_id else self.result
        selected = None if self.selected is not None and self.selected.id == evaluation_id else self.selected
        evaluations = [e for e in self.evaluations if e.id != evaluation_id]
        total = self.total_count - (len(self.evaluations) - len(evaluations))

        self.result, self.selected, self.evaluations, self.total_count = result, selected, evaluations, max(total, 0)

    def push_result(self, evaluation: Evaluation, explanations: Sequence[str] = ()) -> None:
        evaluations = [evaluation] + [e for e in self.evaluations if e.id != evaluation.id]

        self.result = evaluation
        self.explanations = tuple(explanations)
        self.evaluations = evaluations
        self.total_count += 1
        self.error = None

    def clear(self) -> None:
        """Forget the calculator draft and result; history views stay."""

        self.draft = SnapshotDraft()
        self.result = None
        self.explanations = ()
        self.error = None


# ------------------------------- Session --------------------------------


class EvaluationSession:
    def __init__(
        self,
        storage: EvaluationStorage,
        state: Optional[WorkingState] = None,
        config: Optional[EngineConfig] = None,
        *,
        tz_name: str = CLINICAL_TIMEZONE,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self.storage = storage
        self.state = state if state is not None else WorkingState()
        self.config = config or EngineConfig()
        self.tz_name = tz_name
        self.history_limit = history_limit

    # -- calculator --

    def submit(self, draft: SnapshotDraft, principal: Principal, *, now: Optional[datetime] = None) -> Evaluation:
        """Validate, evaluate and persist a snapshot.

        On validation failure `state.error` carries the message and storage
        is not touched. When storage fails the draft and previous result
        are kept so the user can retry.
        """

        if not principal.can_edit:
            raise ForbiddenError(VIEWER_SUBMIT_REASON)

        self.state.draft = draft
        try:
            snapshot = validate_snapshot(draft, tz_name=self.tz_name, now=now)
        except SnapshotValidationError as exc:
            self.state.error = exc.message
            raise

        outcome = evaluate_snapshot(snapshot, self.config)
        evaluation = Evaluation(
            snapshot=snapshot,
            score_breakdown=outcome.breakdown,
            alert_level=outcome.alert_level,
            measures=outcome.measures,
            timestamp=snapshot.timestamp,
            reevaluation_note=outcome.reevaluation_note,
        )

        try:
            confirmed = self.storage.create_evaluation(evaluation)
        except CollaboratorUnavailable as exc:
            self.state.error = str(exc)
            raise

        self.state.push_result(confirmed, outcome.explanations)
        logger.info(
            "evaluation_submitted",
            extra={
                "evaluation_id": confirmed.id,
                "alert_level": confirmed.alert_level,
                "total_score": confirmed.total_score,
            },
        )
        return confirmed

    def submit_form(self, fields: Any, principal: Principal, *, now: Optional[datetime] = None) -> Evaluation:
        """Parse raw form values, then submit."""

        try:
            draft = parse_snapshot_form(fields)
        except SnapshotParseError as exc:
            self.state.error = str(exc)
            raise
        return self.submit(draft, principal, now=now)

    def reset_working_state(self) -> None:
        self.state.clear()

    def load_most_recent(self, evaluations: Optional[Sequence[Evaluation]] = None) -> Optional[SnapshotDraft]:
        """Form prefill from the newest evaluation's snapshot.

        Uses the given list, or the history copy when omitted. Does not
        modify the working state.
        """

        pool = list(evaluations) if evaluations is not None else list(self.state.evaluations)
        if not pool:
            return None
        newest = max(pool, key=lambda e: e.timestamp)
        return newest.snapshot.to_draft()

    # -- history --

    def refresh_history(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        *,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> EvaluationPage:
        page = self.storage.list_evaluations(
            start=start,
            end=end,
            skip=skip,
            limit=limit or self.history_limit,
        )
        self.state.evaluations = list(page.items)
        self.state.total_count = page.total_count
        return page

    def select(self, evaluation_id: int) -> Evaluation:
        try:
            evaluation = self.storage.get_evaluation(evaluation_id)
        except NotFoundError:
            self.state.remove_evaluation(evaluation_id)
            raise
        self.state.selected = evaluation
        self.state.replace_evaluation(evaluation)
        return evaluation

    def reload(self, evaluation_id: int) -> Optional[Evaluation]:
        """Refresh every copy of one evaluation from storage.

        Returns None (and drops the copies) when it no longer exists.
        """

        try:
            evaluation = self.storage.get_evaluation(evaluation_id)
        except NotFoundError:
            self.state.remove_evaluation(evaluation_id)
            return None
        self.state.replace_evaluation(evaluation)
        return evaluation

    # -- analysis and edits --

    def save_analysis(self, evaluation_id: int, principal: Principal, **updates: Any) -> Evaluation:
        """Merge analysis fields into the stored results.

        The final decision must be one the evaluation's alert level offers,
        and re-evaluation time, final decision and next evaluation
        timestamp must all be set once merged. Keys not named are kept.
        """

        if not principal.can_edit:
            raise ForbiddenError(VIEWER_EDIT_REASON)

        for key in TIMESTAMP_RESULT_KEYS:
            if updates.get(key) not in (None, ""):
                try:
                    updates[key] = to_clinical_time(updates[key], self.tz_name)
                except (AttributeError, TypeError, ValueError) as exc:
                    raise EvaluationResultsError(f"{key} must be an ISO date and time (got {updates[key]!r})") from exc

        try:
            current = self.storage.get_evaluation(evaluation_id)
        except NotFoundError:
            self.state.remove_evaluation(evaluation_id)
            raise
        merged = current.evaluation_results.merged(**updates)

        missing = merged.missing_for_decision()
        if missing:
            raise EvaluationResultsError(f"missing required fields: {', '.join(missing)}")
        validate_decision(current.alert_level, merged.final_decision or "")

        try:
            updated = self.storage.update_evaluation_results(evaluation_id, merged)
        except NotFoundError:
            self.state.remove_evaluation(evaluation_id)
            raise

        self.state.replace_evaluation(updated)
        logger.info(
            "evaluation_analysis_saved",
            extra={"evaluation_id": evaluation_id, "final_decision": merged.final_decision},
        )
        return updated

    def update_timestamp(self, evaluation_id: int, principal: Principal, timestamp: datetime | str) -> Evaluation:
        if not principal.can_edit:
            raise ForbiddenError(VIEWER_EDIT_REASON)

        ts = to_clinical_time(timestamp, self.tz_name)
        try:
            updated = self.storage.update_timestamp(evaluation_id, ts)
        except NotFoundError:
            self.state.remove_evaluation(evaluation_id)
            raise

        self.state.replace_evaluation(updated)
        evaluations = sorted(self.state.evaluations, key=lambda e: e.timestamp, reverse=True)
        self.state.evaluations = evaluations
        return updated

    def delete_evaluation(self, evaluation_id: int, principal: Principal) -> None:
        if not principal.can_edit:
            raise ForbiddenError(VIEWER_EDIT_REASON)

        try:
            self.storage.delete_evaluation(evaluation_id)
        except NotFoundError:
            self.state.remove_evaluation(evaluation_id)
            raise
        self.state.remove_evaluation(evaluation_id)
        logger.info("evaluation_deleted", extra={"evaluation_id": evaluation_id})


def with_draft(state: WorkingState, **changes: Any) -> SnapshotDraft:
    """Apply form edits to the state's draft and return it."""

    state.draft = replace(state.draft, **changes)
    return state.draft
