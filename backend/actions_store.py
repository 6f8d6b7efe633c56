from __future__ import annotations

"""SQLite-backed audit trail of user actions.

Records measure status changes (applied and refused), analysis saves and
history edits, with the acting user and the affected ids.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List
import json
import sqlite3

from saturation_errors import CollaboratorUnavailable


class ActionLog:
    def __init__(self, db_path: str | Path) -> None:
        self.path = Path(db_path).resolve()
        self._initialized = False

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path)
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS actions_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    created_at TEXT NOT NULL,
                    action_type TEXT NOT NULL,
                    source TEXT NOT NULL,
                    payload TEXT
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

        self._initialized = True

    def log_action(self, action_type: str, source: str, payload: Dict[str, Any] | None = None) -> int:
        """Persist a single action and return its ID."""

        try:
            self._ensure_initialized()
            conn = sqlite3.connect(self.path)
            try:
                created_at = datetime.now(timezone.utc).isoformat()
                payload_json = json.dumps(payload or {}, ensure_ascii=False, default=str)
                cur = conn.execute(
                    """
                    INSERT INTO actions_log (created_at, action_type, source, payload)
                    VALUES (?, ?, ?, ?)
                    """,
                    (created_at, action_type, source, payload_json),
                )
                conn.commit()
                return int(cur.lastrowid)
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise CollaboratorUnavailable("could not write audit log", cause=exc) from exc

    def get_recent_actions(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Return recent actions, newest first."""

        try:
            self._ensure_initialized()
            conn = sqlite3.connect(self.path)
            try:
                cur = conn.execute(
                    """
                    SELECT id, created_at, action_type, source, payload
                    FROM actions_log
                    ORDER BY id DESC
                    LIMIT ?
                    """,
                    (int(limit),),
                )
                rows = cur.fetchall()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise CollaboratorUnavailable("could not read audit log", cause=exc) from exc

        results: List[Dict[str, Any]] = []
        for row in rows:
            row_id, created_at, action_type, source, payload_json = row
            try:
                payload = json.loads(payload_json) if payload_json else {}
            except json.JSONDecodeError:
                payload = {"_raw": payload_json}
            results.append(
                {
                    "id": row_id,
                    "created_at": created_at,
                    "action_type": action_type,
                    "source": source,
                    "payload": payload,
                }
            )

        return results
