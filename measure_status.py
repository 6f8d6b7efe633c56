"""Measure status updates and the edit-window rule.

Statuses form a free graph: any of not_applied, in_process and applied
may be set from any other. Whether a principal may change a measure at
all is decided by an `EditWindowPolicy`; the default only allows the
measures of the most recent activated alert keys (ORANGE/RED
evaluations) to be edited.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Protocol

from evaluation_session import EvaluationStorage, WorkingState
from saturation_errors import CollaboratorUnavailable, ForbiddenError, NotFoundError
from saturation_evaluation import Principal
from saturation_measures import MEASURE_STATUSES, Measure


logger = logging.getLogger("saturation")

EDIT_WINDOW_REASON = "only measures of the last two activated alert keys are editable"
VIEWER_REASON = "viewers cannot modify measures"


def transition(measure: Measure, new_status: str) -> Measure:
    if new_status not in MEASURE_STATUSES:
        raise ValueError(f"unknown measure status {new_status!r}")
    return measure.with_status(new_status)  # type: ignore[arg-type]


def edit_window_reason(window: int) -> str:
    if window == 2:
        return EDIT_WINDOW_REASON
    return f"only measures of the last {window} activated alert keys are editable"


class EditWindowPolicy(Protocol):
    def check_measure_edit(self, evaluation_id: int, principal: Principal) -> None:
        """Raise ForbiddenError or NotFoundError if the edit is not allowed."""


class RecentElevatedAlertsPolicy:
    """Allow edits on the `window` most recent ORANGE/RED evaluations."""

    def __init__(self, storage: EvaluationStorage, window: int = 2) -> None:
        if window < 1:
            raise ValueError("edit window must be at least 1")
        self.storage = storage
        self.window = window

    def check_measure_edit(self, evaluation_id: int, principal: Principal) -> None:
        if not principal.can_edit:
            raise ForbiddenError(VIEWER_REASON)

        # Raises NotFoundError when the evaluation is gone.
        self.storage.get_evaluation(evaluation_id)

        if evaluation_id not in self.storage.recent_elevated_ids(self.window):
            raise ForbiddenError(edit_window_reason(self.window))


AuditHook = Callable[[str, Dict[str, Any]], Any]


class MeasureStatusService:
    """Apply a status change and bring every in-memory copy in line."""

    def __init__(
        self,
        storage: EvaluationStorage,
        policy: EditWindowPolicy,
        state: Optional[WorkingState] = None,
        audit: Optional[AuditHook] = None,
    ) -> None:
        self.storage = storage
        self.policy = policy
        self.state = state if state is not None else WorkingState()
        self.audit = audit

    def _refresh(self, evaluation_id: int) -> None:
        try:
            evaluation = self.storage.get_evaluation(evaluation_id)
        except NotFoundError:
            self.state.remove_evaluation(evaluation_id)
            return
        self.state.replace_evaluation(evaluation)

    def _record(self, outcome: str, payload: Dict[str, Any]) -> None:
        if self.audit is None:
            return
        self.audit(outcome, payload)

    def set_status(
        self,
        evaluation_id: int,
        measure_id: int,
        new_status: str,
        principal: Principal,
    ) -> Measure:
        """Persist a new status for one measure.

        Forbidden and storage failures leave every copy unchanged.
        NotFound refreshes the copies of the evaluation from storage
        before propagating.
        """

        if new_status not in MEASURE_STATUSES:
            raise ValueError(f"unknown measure status {new_status!r}")

        payload: Dict[str, Any] = {
            "evaluation_id": evaluation_id,
            "measure_id": measure_id,
            "status": new_status,
            "user_id": principal.user_id,
        }

        try:
            self.policy.check_measure_edit(evaluation_id, principal)
            updated = self.storage.update_measure_status(evaluation_id, measure_id, new_status)
        except ForbiddenError as exc:
            logger.info("measure_status_forbidden", extra={**payload, "reason": exc.reason})
            try:
                self._record("forbidden", payload)
            except CollaboratorUnavailable:
                # The refusal is what the caller must see.
                logger.warning("measure_status_audit_unavailable", extra=payload)
            raise
        except NotFoundError:
            logger.warning("measure_status_not_found", extra=payload)
            self._refresh(evaluation_id)
            raise
        except CollaboratorUnavailable:
            logger.warning("measure_status_storage_unavailable", extra=payload)
            raise

        self.state.apply_measure_update(evaluation_id, updated)
        self._record("applied", payload)
        logger.info("measure_status_updated", extra=payload)
        return updated
