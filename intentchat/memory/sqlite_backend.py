# ==============================
# SQLite Session Store
# ==============================
"""
SQLite backend for durable chat sessions.

Tables:
- schema_version
- sessions
- turns

Notes:
- Idempotent schema creation on init; integer schema version with forward
  migrations (v2 adds sessions.system_prompt).
- Every write commits before returning, with synchronous=FULL.
- Any sqlite failure is raised as SessionStoreError; a turn the user believes
  was saved is never silently lost.
"""

from __future__ import annotations

import json
import sqlite3
import time
from typing import Any, List, Optional

from intentchat.contracts.errors import SessionStoreError
from intentchat.contracts.resolution_schema import parse_resolution
from intentchat.contracts.session_schema import Role, SessionSummary, Turn
from intentchat.memory.base import SessionStore

LATEST_VERSION = 2


def _dumps(x: Any) -> str:
    return json.dumps(x, ensure_ascii=False)


class SQLiteSessionStore(SessionStore):
    def __init__(self, *, db_path: str, initialize: bool = True) -> None:
        self.db_path = db_path
        if initialize:
            self._init_db()

    def _connect(self) -> sqlite3.Connection:
        try:
            con = sqlite3.connect(self.db_path, check_same_thread=False)
            con.row_factory = sqlite3.Row
            con.execute("PRAGMA journal_mode=WAL;")
            con.execute("PRAGMA synchronous=FULL;")
        except sqlite3.Error as exc:
            raise SessionStoreError(f"cannot open session store at {self.db_path}: {exc}") from exc
        return con

    def _init_db(self) -> None:
        try:
            with self._connect() as con:
                con.execute(
                    """
                    CREATE TABLE IF NOT EXISTS schema_version (
                      id INTEGER PRIMARY KEY CHECK (id = 1),
                      version INTEGER NOT NULL
                    )
                    """
                )
                row = con.execute("SELECT version FROM schema_version WHERE id=1").fetchone()

                # v1 schema
                con.execute(
                    """
                    CREATE TABLE IF NOT EXISTS sessions (
                      session_id TEXT PRIMARY KEY,
                      created_at REAL NOT NULL
                    )
                    """
                )
                con.execute(
                    """
                    CREATE TABLE IF NOT EXISTS turns (
                      seq INTEGER PRIMARY KEY AUTOINCREMENT,
                      turn_id TEXT NOT NULL UNIQUE,
                      session_id TEXT NOT NULL,
                      role TEXT NOT NULL,
                      text TEXT NOT NULL,
                      resolution_json TEXT,
                      ts REAL NOT NULL
                    )
                    """
                )
                con.execute("CREATE INDEX IF NOT EXISTS idx_turns_session_seq ON turns(session_id, seq)")

                if row is None:
                    con.execute("INSERT INTO schema_version (id, version) VALUES (1, 1)")
                    version = 1
                else:
                    version = int(row["version"])
                if version < LATEST_VERSION:
                    self._migrate(con, from_version=version, to_version=LATEST_VERSION)
                con.commit()
        except sqlite3.Error as exc:
            raise SessionStoreError(f"session schema init failed: {exc}") from exc

    def _migrate(self, con: sqlite3.Connection, *, from_version: int, to_version: int) -> None:
        if from_version < 2 <= to_version:
            cols = {r["name"] for r in con.execute("PRAGMA table_info(sessions)").fetchall()}
            if "system_prompt" not in cols:
                con.execute("ALTER TABLE sessions ADD COLUMN system_prompt TEXT")
        con.execute("UPDATE schema_version SET version=? WHERE id=1", (to_version,))

    def ensure_schema(self) -> None:
        self._init_db()

    def get_schema_version(self) -> int:
        with self._connect() as con:
            try:
                cur = con.execute("SELECT version FROM schema_version WHERE id=1")
            except sqlite3.OperationalError:
                return 0
            row = cur.fetchone()
            return int(row["version"]) if row else 0

    # ------------------------------
    # Turns
    # ------------------------------

    def append(self, turn: Turn) -> None:
        resolution = turn.resolution_used.model_dump(mode="json") if turn.resolution_used is not None else None
        try:
            with self._connect() as con:
                con.execute(
                    "INSERT OR IGNORE INTO sessions (session_id, created_at) VALUES (?, ?)",
                    (turn.session_id, float(turn.timestamp)),
                )
                con.execute(
                    """
                    INSERT INTO turns (turn_id, session_id, role, text, resolution_json, ts)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        turn.turn_id,
                        turn.session_id,
                        turn.role.value,
                        turn.text,
                        _dumps(resolution) if resolution is not None else None,
                        float(turn.timestamp),
                    ),
                )
                con.commit()
        except sqlite3.Error as exc:
            raise SessionStoreError(f"append failed for session {turn.session_id}: {exc}") from exc

    def load(self, session_id: str) -> List[Turn]:
        try:
            with self._connect() as con:
                rows = con.execute(
                    "SELECT * FROM turns WHERE session_id=? ORDER BY seq ASC",
                    (session_id,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise SessionStoreError(f"load failed for session {session_id}: {exc}") from exc
        return [self._row_to_turn(r) for r in rows]

    def _row_to_turn(self, r: sqlite3.Row) -> Turn:
        resolution = None
        if r["resolution_json"]:
            resolution = parse_resolution(json.loads(r["resolution_json"]))
        return Turn(
            turn_id=r["turn_id"],
            session_id=r["session_id"],
            role=Role(r["role"]),
            text=r["text"],
            resolution_used=resolution,
            timestamp=float(r["ts"]),
        )

    def _last_row(self, con: sqlite3.Connection, session_id: str) -> Optional[sqlite3.Row]:
        return con.execute(
            "SELECT * FROM turns WHERE session_id=? ORDER BY seq DESC LIMIT 1",
            (session_id,),
        ).fetchone()

    def edit_last(self, session_id: str, new_text: str) -> Optional[Turn]:
        try:
            with self._connect() as con:
                row = self._last_row(con, session_id)
                if row is None:
                    return None
                con.execute("UPDATE turns SET text=? WHERE seq=?", (new_text, row["seq"]))
                con.commit()
        except sqlite3.Error as exc:
            raise SessionStoreError(f"edit_last failed for session {session_id}: {exc}") from exc
        return self._row_to_turn(row).model_copy(update={"text": new_text})

    def delete_last(self, session_id: str, *, role: Optional[Role] = None) -> Optional[Turn]:
        try:
            with self._connect() as con:
                row = self._last_row(con, session_id)
                if row is None or (role is not None and row["role"] != Role(role).value):
                    return None
                con.execute("DELETE FROM turns WHERE seq=?", (row["seq"],))
                con.commit()
        except sqlite3.Error as exc:
            raise SessionStoreError(f"delete_last failed for session {session_id}: {exc}") from exc
        return self._row_to_turn(row)

    def delete_turn(self, session_id: str, turn_id: str) -> Optional[Turn]:
        try:
            with self._connect() as con:
                row = con.execute(
                    "SELECT * FROM turns WHERE session_id=? AND turn_id=?",
                    (session_id, turn_id),
                ).fetchone()
                if row is None:
                    return None
                con.execute("DELETE FROM turns WHERE seq=?", (row["seq"],))
                con.commit()
        except sqlite3.Error as exc:
            raise SessionStoreError(f"delete_turn failed for session {session_id}: {exc}") from exc
        return self._row_to_turn(row)

    # ------------------------------
    # Sessions
    # ------------------------------

    def list_sessions(self, *, limit: int = 50, offset: int = 0) -> List[SessionSummary]:
        try:
            with self._connect() as con:
                rows = con.execute(
                    """
                    SELECT s.session_id, s.created_at, s.system_prompt, COUNT(t.seq) AS turn_count
                    FROM sessions s LEFT JOIN turns t ON t.session_id = s.session_id
                    GROUP BY s.session_id
                    ORDER BY s.created_at DESC, s.session_id ASC
                    LIMIT ? OFFSET ?
                    """,
                    (int(limit), int(offset)),
                ).fetchall()
        except sqlite3.Error as exc:
            raise SessionStoreError(f"list_sessions failed: {exc}") from exc
        return [
            SessionSummary(
                session_id=r["session_id"],
                created_at=float(r["created_at"]),
                turn_count=int(r["turn_count"]),
                system_prompt=r["system_prompt"],
            )
            for r in rows
        ]

    def get_system_prompt(self, session_id: str) -> Optional[str]:
        try:
            with self._connect() as con:
                row = con.execute("SELECT system_prompt FROM sessions WHERE session_id=?", (session_id,)).fetchone()
        except sqlite3.Error as exc:
            raise SessionStoreError(f"get_system_prompt failed for session {session_id}: {exc}") from exc
        return row["system_prompt"] if row else None

    def set_system_prompt(self, session_id: str, prompt: str) -> None:
        try:
            with self._connect() as con:
                con.execute(
                    """
                    INSERT INTO sessions (session_id, created_at, system_prompt) VALUES (?, ?, ?)
                    ON CONFLICT(session_id) DO UPDATE SET system_prompt=excluded.system_prompt
                    """,
                    (session_id, time.time(), prompt),
                )
                con.commit()
        except sqlite3.Error as exc:
            raise SessionStoreError(f"set_system_prompt failed for session {session_id}: {exc}") from exc
