"""Tests for measure status updates under the edit-window rule."""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

import pytest

from measure_status import (
    EDIT_WINDOW_REASON,
    VIEWER_REASON,
    MeasureStatusService,
    RecentElevatedAlertsPolicy,
    edit_window_reason,
)
from saturation_errors import CollaboratorUnavailable, ForbiddenError, NotFoundError
from saturation_measures import sort_measures


@pytest.fixture
def audit_log() -> List[Tuple[str, Dict[str, Any]]]:
    return []


@pytest.fixture
def service(storage, state, audit_log) -> MeasureStatusService:
    return MeasureStatusService(
        storage,
        RecentElevatedAlertsPolicy(storage, window=2),
        state,
        audit=lambda outcome, payload: audit_log.append((outcome, payload)),
    )


class TestSetStatus:
    def test_applied_measure_reorders_and_updates_views(self, session, state, service, storage, submit_at, editor) -> None:
        evaluation = submit_at("ORANGE")
        session.select(evaluation.id)
        m0, m1, m2 = evaluation.measures[:3]

        updated = service.set_status(evaluation.id, m1.id, "applied", editor)

        assert updated.status == "applied"
        for view in (state.result, state.selected, state.evaluations[0]):
            assert view.measure(m1.id).status == "applied"
        ordered = sort_measures(state.result.measures[:3])
        assert [m.id for m in ordered] == [m0.id, m2.id, m1.id]
        assert storage.get_evaluation(evaluation.id).measure(m1.id).status == "applied"

    def test_free_transitions(self, service, submit_at, editor) -> None:
        evaluation = submit_at("RED")
        measure_id = evaluation.measures[0].id
        for status in ("applied", "in_process", "not_applied", "applied"):
            assert service.set_status(evaluation.id, measure_id, status, editor).status == status

    def test_audit_records_applied(self, service, submit_at, editor, audit_log) -> None:
        evaluation = submit_at("ORANGE")
        service.set_status(evaluation.id, evaluation.measures[0].id, "in_process", editor)
        assert audit_log[-1][0] == "applied"
        assert audit_log[-1][1]["user_id"] == editor.user_id

    def test_unknown_status_rejected(self, service, submit_at, editor, storage) -> None:
        evaluation = submit_at("ORANGE")
        with pytest.raises(ValueError):
            service.set_status(evaluation.id, evaluation.measures[0].id, "done", editor)


class TestEditWindow:
    def test_third_most_recent_elevated_is_forbidden(self, service, state, storage, submit_at, editor, audit_log) -> None:
        oldest = submit_at("ORANGE", hours=0)
        submit_at("GREEN", hours=1)
        submit_at("RED", hours=2)
        submit_at("YELLOW", hours=3)
        submit_at("ORANGE", hours=4)
        measure = oldest.measures[0]

        with pytest.raises(ForbiddenError) as exc_info:
            service.set_status(oldest.id, measure.id, "applied", editor)

        assert exc_info.value.reason == EDIT_WINDOW_REASON
        assert storage.get_evaluation(oldest.id).measure(measure.id).status == "not_applied"
        held = next(e for e in state.evaluations if e.id == oldest.id)
        assert held.measure(measure.id).status == "not_applied"
        assert audit_log[-1][0] == "forbidden"

    def test_refusal_survives_audit_failure(self, storage, state, submit_at, editor) -> None:
        def broken_audit(outcome: str, payload: Dict[str, Any]) -> None:
            raise CollaboratorUnavailable("could not write audit log")

        service = MeasureStatusService(storage, RecentElevatedAlertsPolicy(storage, window=2), state, audit=broken_audit)
        oldest = submit_at("ORANGE", hours=0)
        submit_at("RED", hours=1)
        submit_at("ORANGE", hours=2)

        with pytest.raises(ForbiddenError) as exc_info:
            service.set_status(oldest.id, oldest.measures[0].id, "applied", editor)
        assert exc_info.value.reason == EDIT_WINDOW_REASON

    def test_two_most_recent_elevated_are_editable(self, service, submit_at, editor) -> None:
        submit_at("ORANGE", hours=0)
        second = submit_at("RED", hours=2)
        newest = submit_at("ORANGE", hours=4)
        for evaluation in (second, newest):
            measure = evaluation.measures[0]
            assert service.set_status(evaluation.id, measure.id, "applied", editor).status == "applied"

    def test_recency_uses_timestamp_not_creation_order(self, service, submit_at, editor) -> None:
        late = submit_at("ORANGE", hours=10)
        early = submit_at("ORANGE", hours=5)
        submit_at("RED", hours=6)

        with pytest.raises(ForbiddenError):
            service.set_status(early.id, early.measures[0].id, "applied", editor)
        assert service.set_status(late.id, late.measures[0].id, "applied", editor).status == "applied"

    def test_viewer_forbidden(self, service, submit_at, viewer) -> None:
        evaluation = submit_at("ORANGE")
        with pytest.raises(ForbiddenError) as exc_info:
            service.set_status(evaluation.id, evaluation.measures[0].id, "applied", viewer)
        assert exc_info.value.reason == VIEWER_REASON

    def test_reason_for_other_windows(self) -> None:
        assert edit_window_reason(2) == EDIT_WINDOW_REASON
        assert "last 3 activated" in edit_window_reason(3)

    def test_window_must_be_positive(self, storage) -> None:
        with pytest.raises(ValueError):
            RecentElevatedAlertsPolicy(storage, window=0)


class TestFailures:
    def test_deleted_evaluation_refreshes_views(self, service, state, storage, submit_at, editor) -> None:
        evaluation = submit_at("ORANGE")
        storage.forget(evaluation.id)

        with pytest.raises(NotFoundError):
            service.set_status(evaluation.id, evaluation.measures[0].id, "applied", editor)

        assert state.result is None
        assert state.evaluations == []

    def test_missing_measure_refreshes_from_storage(self, service, state, storage, submit_at, editor) -> None:
        evaluation = submit_at("ORANGE")
        with pytest.raises(NotFoundError):
            service.set_status(evaluation.id, 999, "applied", editor)
        assert state.result == storage.get_evaluation(evaluation.id)

    def test_storage_unavailable_leaves_views(self, service, state, storage, submit_at, editor) -> None:
        evaluation = submit_at("ORANGE")
        before = state.result
        storage.unavailable = True

        with pytest.raises(CollaboratorUnavailable):
            service.set_status(evaluation.id, evaluation.measures[0].id, "applied", editor)

        assert state.result is before
