"""Shared fixtures for saturation protocol tests."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict
from zoneinfo import ZoneInfo

import pytest

from backend.evaluation_store import SQLiteEvaluationStore
from evaluation_session import EvaluationSession, WorkingState
from saturation_decision_engine import EngineConfig
from saturation_evaluation import Principal
from saturation_snapshot import Snapshot, SnapshotDraft, validate_snapshot
from tests.fakes.fake_snapshots import LEVEL_FIELDS
from tests.fakes.fake_storage import FakeEvaluationStorage


TZ = "America/Santiago"


@pytest.fixture
def tz_name() -> str:
    return TZ


@pytest.fixture
def base_time() -> datetime:
    """A weekday midday in the clinical timezone."""
    return datetime(2024, 6, 10, 12, 0, tzinfo=ZoneInfo(TZ))


@pytest.fixture
def make_draft() -> Callable[..., SnapshotDraft]:
    def _make(level: str = "GREEN", **overrides: Any) -> SnapshotDraft:
        fields: Dict[str, Any] = {
            "scenario": "reduced_capacity",
            "evaluator_name": "Dra. Rojas",
            **LEVEL_FIELDS[level],
        }
        fields.update(overrides)
        return SnapshotDraft(**fields)

    return _make


@pytest.fixture
def make_snapshot(make_draft, base_time) -> Callable[..., Snapshot]:
    def _make(level: str = "GREEN", **overrides: Any) -> Snapshot:
        return validate_snapshot(make_draft(level, **overrides), tz_name=TZ, now=base_time)

    return _make


@pytest.fixture
def editor() -> Principal:
    return Principal(user_id="enf-01", role="editor")


@pytest.fixture
def viewer() -> Principal:
    return Principal(user_id="obs-01", role="viewer")


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def storage() -> FakeEvaluationStorage:
    return FakeEvaluationStorage()


@pytest.fixture
def state() -> WorkingState:
    return WorkingState()


@pytest.fixture
def session(storage, state, engine_config) -> EvaluationSession:
    return EvaluationSession(storage, state, engine_config, tz_name=TZ)


@pytest.fixture
def submit_at(session, make_draft, editor, base_time) -> Callable[..., Any]:
    """Submit an evaluation of `level` `hours` after the base time."""

    def _submit(level: str, hours: float = 0, **overrides: Any):
        return session.submit(make_draft(level, **overrides), editor, now=base_time + timedelta(hours=hours))

    return _submit


@pytest.fixture
def sqlite_store(tmp_path) -> SQLiteEvaluationStore:
    return SQLiteEvaluationStore(tmp_path / "saturation.db", TZ)
