"""In-memory evaluation storage for testing."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

from alerts import ELEVATED_LEVELS
from evaluation_session import EvaluationPage
from saturation_errors import CollaboratorUnavailable, NotFoundError
from saturation_evaluation import Evaluation, EvaluationResults
from saturation_measures import Measure


class FakeEvaluationStorage:
    """Dict-backed storage with the same ordering rules as the SQLite store.

    Set `unavailable = True` to make every call raise CollaboratorUnavailable.
    `calls` records the method names in call order.
    """

    def __init__(self) -> None:
        self._evaluations: Dict[int, Evaluation] = {}
        self._next_evaluation_id = 1
        self._next_measure_id = 1
        self.unavailable = False
        self.calls: List[str] = []

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if self.unavailable:
            raise CollaboratorUnavailable()

    def _get(self, evaluation_id: int) -> Evaluation:
        try:
            return self._evaluations[evaluation_id]
        except KeyError:
            raise NotFoundError("evaluation", evaluation_id) from None

    def _newest_first(self) -> List[Evaluation]:
        return sorted(self._evaluations.values(), key=lambda e: (e.timestamp, e.id), reverse=True)

    # Test helper: remove behind the session's back.
    def forget(self, evaluation_id: int) -> None:
        self._evaluations.pop(evaluation_id, None)

    def create_evaluation(self, evaluation: Evaluation) -> Evaluation:
        self._enter("create_evaluation")
        measures = []
        for m in evaluation.measures:
            measures.append(replace(m, id=self._next_measure_id))
            self._next_measure_id += 1
        stored = replace(evaluation, id=self._next_evaluation_id, measures=tuple(measures))
        self._evaluations[stored.id] = stored
        self._next_evaluation_id += 1
        return stored

    def get_evaluation(self, evaluation_id: int) -> Evaluation:
        self._enter("get_evaluation")
        return self._get(evaluation_id)

    def list_evaluations(
        self,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 30,
    ) -> EvaluationPage:
        self._enter("list_evaluations")
        rows = [
            e
            for e in self._newest_first()
            if (start is None or e.timestamp >= start) and (end is None or e.timestamp <= end)
        ]
        return EvaluationPage(items=rows[skip : skip + limit], total_count=len(rows))

    def update_evaluation_results(self, evaluation_id: int, results: EvaluationResults) -> Evaluation:
        self._enter("update_evaluation_results")
        updated = replace(self._get(evaluation_id), evaluation_results=results)
        self._evaluations[evaluation_id] = updated
        return updated

    def update_timestamp(self, evaluation_id: int, timestamp: datetime) -> Evaluation:
        self._enter("update_timestamp")
        current = self._get(evaluation_id)
        updated = replace(current, timestamp=timestamp, snapshot=replace(current.snapshot, timestamp=timestamp))
        self._evaluations[evaluation_id] = updated
        return updated

    def delete_evaluation(self, evaluation_id: int) -> None:
        self._enter("delete_evaluation")
        self._get(evaluation_id)
        del self._evaluations[evaluation_id]

    def update_measure_status(self, evaluation_id: int, measure_id: int, status: str) -> Measure:
        self._enter("update_measure_status")
        evaluation = self._get(evaluation_id)
        measure = evaluation.measure(measure_id)
        if measure is None:
            raise NotFoundError("measure", measure_id)
        updated = measure.with_status(status)  # type: ignore[arg-type]
        self._evaluations[evaluation_id] = evaluation.with_measure(updated)
        return updated

    def recent_elevated_ids(self, window: int) -> List[int]:
        self._enter("recent_elevated_ids")
        elevated = [e.id for e in self._newest_first() if e.alert_level in ELEVATED_LEVELS]
        return [int(i) for i in elevated[:window]]
