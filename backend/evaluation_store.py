from __future__ import annotations

"""SQLite-backed storage for evaluations and their measures.

This is the persistence collaborator of the evaluation session. Timestamps
are stored as fixed-width UTC ISO strings so that text ordering matches
time ordering; snapshots, score breakdowns and analysis results are JSON.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence
import json
import logging
import sqlite3

from alerts import ELEVATED_LEVELS
from evaluation_session import DEFAULT_HISTORY_LIMIT, EvaluationPage
from saturation_errors import CollaboratorUnavailable, NotFoundError
from saturation_evaluation import Evaluation, EvaluationResults
from saturation_measures import MEASURE_STATUSES, Measure
from saturation_scoring import ScoreBreakdown
from saturation_snapshot import CLINICAL_TIMEZONE, Snapshot, to_clinical_time


logger = logging.getLogger("saturation_backend")

_UTC_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def _utc_text(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).strftime(_UTC_FORMAT)


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS evaluations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        protocol_type TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        evaluator_name TEXT NOT NULL,
        input_data TEXT NOT NULL,
        score_breakdown TEXT NOT NULL,
        total_score INTEGER NOT NULL,
        alert_level TEXT NOT NULL,
        reevaluation_note TEXT,
        evaluation_results TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS measures (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        evaluation_id INTEGER NOT NULL REFERENCES evaluations(id) ON DELETE CASCADE,
        description TEXT NOT NULL,
        status TEXT NOT NULL,
        original_order_index INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_evaluations_timestamp ON evaluations(timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_measures_evaluation ON measures(evaluation_id)",
)

_EVALUATION_COLUMNS = """
    id,
    protocol_type,
    timestamp,
    input_data,
    score_breakdown,
    alert_level,
    reevaluation_note,
    evaluation_results
"""


class SQLiteEvaluationStore:
    def __init__(self, db_path: str | Path, tz_name: str = CLINICAL_TIMEZONE) -> None:
        self.path = Path(db_path).resolve()
        self.tz_name = tz_name
        self._initialized = False

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(self.path)
        except sqlite3.Error as exc:
            raise CollaboratorUnavailable(cause=exc) from exc
        try:
            for statement in _SCHEMA:
                conn.execute(statement)
            conn.commit()
        except sqlite3.Error as exc:
            raise CollaboratorUnavailable("could not initialize storage", cause=exc) from exc
        finally:
            conn.close()

        self._initialized = True

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        self._ensure_initialized()
        try:
            conn = sqlite3.connect(self.path)
        except sqlite3.Error as exc:
            raise CollaboratorUnavailable(cause=exc) from exc
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            logger.exception("sqlite_error", extra={"db_path": str(self.path)})
            raise CollaboratorUnavailable("storage failure", cause=exc) from exc
        finally:
            conn.close()

    # -- row mapping --

    def _measures_for(self, conn: sqlite3.Connection, ids: Sequence[int]) -> Dict[int, List[Measure]]:
        grouped: Dict[int, List[Measure]] = {i: [] for i in ids}
        if not ids:
            return grouped
        placeholders = ",".join("?" for _ in ids)
        cur = conn.execute(
            f"""
            SELECT id, evaluation_id, description, status, original_order_index
            FROM measures
            WHERE evaluation_id IN ({placeholders})
            ORDER BY evaluation_id, original_order_index
            """,
            tuple(ids),
        )
        for measure_id, evaluation_id, description, status, order_index in cur.fetchall():
            grouped[evaluation_id].append(
                Measure(
                    id=measure_id,
                    description=description,
                    status=status,
                    original_order_index=order_index,
                )
            )
        return grouped

    def _to_evaluation(self, row: Sequence[Any], measures: List[Measure]) -> Evaluation:
        (
            evaluation_id,
            protocol_type,
            timestamp,
            input_data,
            score_breakdown,
            alert_level,
            reevaluation_note,
            evaluation_results,
        ) = row
        return Evaluation(
            id=evaluation_id,
            protocol_type=protocol_type,
            timestamp=to_clinical_time(timestamp, self.tz_name),
            snapshot=Snapshot.from_dict(json.loads(input_data), self.tz_name),
            score_breakdown=ScoreBreakdown.from_dict(json.loads(score_breakdown)),
            alert_level=alert_level,
            measures=tuple(measures),
            evaluation_results=EvaluationResults.from_json(evaluation_results),
            reevaluation_note=reevaluation_note,
        )

    def _load(self, conn: sqlite3.Connection, evaluation_id: int) -> Evaluation:
        row = conn.execute(
            f"SELECT {_EVALUATION_COLUMNS} FROM evaluations WHERE id = ?",
            (int(evaluation_id),),
        ).fetchone()
        if row is None:
            raise NotFoundError("evaluation", evaluation_id)
        measures = self._measures_for(conn, [row[0]])
        return self._to_evaluation(row, measures[row[0]])

    # -- storage contract --

    def create_evaluation(self, evaluation: Evaluation) -> Evaluation:
        """Insert the evaluation and its measures in one transaction."""

        with self._connection() as conn:
            cur = conn.execute(
                """
                INSERT INTO evaluations (
                    protocol_type,
                    timestamp,
                    evaluator_name,
                    input_data,
                    score_breakdown,
                    total_score,
                    alert_level,
                    reevaluation_note,
                    evaluation_results
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    evaluation.protocol_type,
                    _utc_text(evaluation.timestamp),
                    evaluation.evaluator_name,
                    json.dumps(evaluation.snapshot.to_dict(), ensure_ascii=False),
                    json.dumps(evaluation.score_breakdown.to_dict(), ensure_ascii=False),
                    int(evaluation.total_score),
                    evaluation.alert_level,
                    evaluation.reevaluation_note,
                    evaluation.evaluation_results.to_json(),
                ),
            )
            evaluation_id = int(cur.lastrowid)
            conn.executemany(
                """
                INSERT INTO measures (evaluation_id, description, status, original_order_index)
                VALUES (?, ?, ?, ?)
                """,
                [
                    (evaluation_id, m.description, m.status, int(m.original_order_index))
                    for m in evaluation.measures
                ],
            )
            created = self._load(conn, evaluation_id)

        logger.info(
            "evaluation_stored",
            extra={"evaluation_id": evaluation_id, "alert_level": evaluation.alert_level},
        )
        return created

    def get_evaluation(self, evaluation_id: int) -> Evaluation:
        with self._connection() as conn:
            return self._load(conn, evaluation_id)

    def list_evaluations(
        self,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        skip: int = 0,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> EvaluationPage:
        """Newest first; `start`/`end` bound the timestamp inclusively."""

        clauses: List[str] = []
        params: List[Any] = []
        if start is not None:
            clauses.append("timestamp >= ?")
            params.append(_utc_text(start))
        if end is not None:
            clauses.append("timestamp <= ?")
            params.append(_utc_text(end))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._connection() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM evaluations {where}", tuple(params)).fetchone()[0]
            rows = conn.execute(
                f"""
                SELECT {_EVALUATION_COLUMNS}
                FROM evaluations
                {where}
                ORDER BY timestamp DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                tuple(params) + (int(limit), int(skip)),
            ).fetchall()
            measures = self._measures_for(conn, [r[0] for r in rows])

        items = [self._to_evaluation(r, measures[r[0]]) for r in rows]
        return EvaluationPage(items=items, total_count=int(total))

    def update_evaluation_results(self, evaluation_id: int, results: EvaluationResults) -> Evaluation:
        with self._connection() as conn:
            cur = conn.execute(
                "UPDATE evaluations SET evaluation_results = ? WHERE id = ?",
                (results.to_json(), int(evaluation_id)),
            )
            if cur.rowcount == 0:
                raise NotFoundError("evaluation", evaluation_id)
            return self._load(conn, evaluation_id)

    def update_timestamp(self, evaluation_id: int, timestamp: datetime) -> Evaluation:
        """Move an evaluation in time; the stored snapshot follows."""

        with self._connection() as conn:
            row = conn.execute(
                "SELECT input_data FROM evaluations WHERE id = ?",
                (int(evaluation_id),),
            ).fetchone()
            if row is None:
                raise NotFoundError("evaluation", evaluation_id)
            input_data = json.loads(row[0])
            input_data["timestamp"] = to_clinical_time(timestamp, self.tz_name).isoformat()
            conn.execute(
                "UPDATE evaluations SET timestamp = ?, input_data = ? WHERE id = ?",
                (_utc_text(timestamp), json.dumps(input_data, ensure_ascii=False), int(evaluation_id)),
            )
            return self._load(conn, evaluation_id)

    def delete_evaluation(self, evaluation_id: int) -> None:
        with self._connection() as conn:
            cur = conn.execute("DELETE FROM evaluations WHERE id = ?", (int(evaluation_id),))
            if cur.rowcount == 0:
                raise NotFoundError("evaluation", evaluation_id)

    def update_measure_status(self, evaluation_id: int, measure_id: int, status: str) -> Measure:
        if status not in MEASURE_STATUSES:
            raise ValueError(f"unknown measure status {status!r}")

        with self._connection() as conn:
            cur = conn.execute(
                "UPDATE measures SET status = ? WHERE id = ? AND evaluation_id = ?",
                (status, int(measure_id), int(evaluation_id)),
            )
            if cur.rowcount == 0:
                raise NotFoundError("measure", measure_id)
            row = conn.execute(
                "SELECT id, description, status, original_order_index FROM measures WHERE id = ?",
                (int(measure_id),),
            ).fetchone()

        row_id, description, new_status, order_index = row
        return Measure(id=row_id, description=description, status=new_status, original_order_index=order_index)

    def recent_elevated_ids(self, window: int) -> List[int]:
        """Ids of the `window` most recent ORANGE/RED evaluations."""

        placeholders = ",".join("?" for _ in ELEVATED_LEVELS)
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT id FROM evaluations
                WHERE alert_level IN ({placeholders})
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
                """,
                tuple(ELEVATED_LEVELS) + (int(window),),
            ).fetchall()
        return [int(r[0]) for r in rows]

    def all_evaluations(self) -> List[Evaluation]:
        """Every stored evaluation, oldest first (statistics input)."""

        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT {_EVALUATION_COLUMNS} FROM evaluations ORDER BY timestamp ASC, id ASC"
            ).fetchall()
            measures = self._measures_for(conn, [r[0] for r in rows])
        return [self._to_evaluation(r, measures[r[0]]) for r in rows]
