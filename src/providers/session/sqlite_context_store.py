"""SQLite-backed persistent context store.

Dict-like store for exported processing contexts (the plain dicts produced
by ``PhaseManager.export_context_state``), so a batch interrupted by a
process restart can be resumed with ``import_context_state``.  Uses sync
``sqlite3``; each operation touches one small JSON blob.

An in-memory cache avoids repeated deserialisation for hot sessions.
Stale contexts (older than ``max_age_hours``) are pruned on
:meth:`initialize`.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator, MutableMapping
from pathlib import Path
from typing import Any

import structlog

from src.utils.logging import get_logger

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS {table} (
    session_id TEXT PRIMARY KEY,
    state_json TEXT    NOT NULL,
    created_at TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    updated_at TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""

_CREATE_INDEX_SQL = "CREATE INDEX IF NOT EXISTS idx_{table}_updated ON {table}(updated_at);"

_UPSERT_SQL = """\
INSERT INTO {table} (session_id, state_json)
VALUES (?, ?)
ON CONFLICT(session_id)
DO UPDATE SET state_json = excluded.state_json,
              updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now');
"""

_SELECT_SQL = "SELECT state_json FROM {table} WHERE session_id = ?;"
_DELETE_SQL = "DELETE FROM {table} WHERE session_id = ?;"
_EXISTS_SQL = "SELECT 1 FROM {table} WHERE session_id = ? LIMIT 1;"
_ALL_IDS_SQL = "SELECT session_id FROM {table};"
_COUNT_SQL = "SELECT COUNT(*) FROM {table};"

_PRUNE_SQL = """\
DELETE FROM {table}
WHERE updated_at < strftime('%Y-%m-%dT%H:%M:%fZ', 'now', ?);
"""

ContextState = dict[str, Any]


class SQLiteContextStore(MutableMapping[str, ContextState]):
    """Dict-like store of exported context states backed by SQLite.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.
    table_name:
        Table name to use.
    max_age_hours:
        Contexts not updated for this long are pruned on :meth:`initialize`.
        Set to ``0`` to disable pruning.
    """

    def __init__(
        self,
        db_path: str | Path,
        table_name: str = "contexts",
        max_age_hours: int = 72,
    ) -> None:
        self._db_path = Path(db_path)
        self._table = table_name
        self._max_age_hours = max_age_hours
        self._cache: dict[str, ContextState] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Create the table and index, and prune stale contexts.

        Must be called once before use.
        """
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.execute(_CREATE_TABLE_SQL.format(table=self._table))
            conn.execute(_CREATE_INDEX_SQL.format(table=self._table))
            conn.commit()
        finally:
            conn.close()

        if self._max_age_hours > 0:
            self.prune(self._max_age_hours)

        self._logger.info(
            "context_store_initialized",
            db_path=str(self._db_path),
            table=self._table,
            existing_contexts=len(self),
        )

    def prune(self, max_age_hours: float) -> int:
        """Delete contexts not updated within *max_age_hours*; return the count."""
        conn = self._connect()
        try:
            cursor = conn.execute(
                _PRUNE_SQL.format(table=self._table),
                (f"-{max_age_hours} hours",),
            )
            conn.commit()
            pruned = cursor.rowcount
        finally:
            conn.close()

        if pruned:
            self._cache.clear()
            self._logger.info(
                "contexts_pruned",
                table=self._table,
                pruned=pruned,
                max_age_hours=max_age_hours,
            )
        return pruned

    # ------------------------------------------------------------------
    # MutableMapping interface
    # ------------------------------------------------------------------

    def __setitem__(self, session_id: str, state: ContextState) -> None:
        """Write to both in-memory cache and SQLite."""
        state_json = json.dumps(state)
        self._cache[session_id] = state
        conn = self._connect()
        try:
            conn.execute(_UPSERT_SQL.format(table=self._table), (session_id, state_json))
            conn.commit()
        finally:
            conn.close()

    def __getitem__(self, session_id: str) -> ContextState:
        """Read from cache first, then SQLite.  Raises KeyError if missing."""
        if session_id in self._cache:
            return self._cache[session_id]

        state = self._load_from_db(session_id)
        if state is None:
            raise KeyError(session_id)

        self._cache[session_id] = state
        return state

    def __delitem__(self, session_id: str) -> None:
        """Remove from both cache and SQLite.  Raises KeyError if missing."""
        if session_id not in self:
            raise KeyError(session_id)
        self._cache.pop(session_id, None)
        conn = self._connect()
        try:
            conn.execute(_DELETE_SQL.format(table=self._table), (session_id,))
            conn.commit()
        finally:
            conn.close()

    def __contains__(self, session_id: object) -> bool:
        if session_id in self._cache:
            return True
        if not isinstance(session_id, str):
            return False
        conn = self._connect()
        try:
            cursor = conn.execute(_EXISTS_SQL.format(table=self._table), (session_id,))
            return cursor.fetchone() is not None
        finally:
            conn.close()

    def __iter__(self) -> Iterator[str]:
        conn = self._connect()
        try:
            cursor = conn.execute(_ALL_IDS_SQL.format(table=self._table))
            return iter([row[0] for row in cursor.fetchall()])
        finally:
            conn.close()

    def __len__(self) -> int:
        conn = self._connect()
        try:
            cursor = conn.execute(_COUNT_SQL.format(table=self._table))
            row = cursor.fetchone()
            return row[0] if row else 0
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        """Open a new SQLite connection with WAL mode for concurrency."""
        conn = sqlite3.connect(str(self._db_path))
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _load_from_db(self, session_id: str) -> ContextState | None:
        conn = self._connect()
        try:
            cursor = conn.execute(_SELECT_SQL.format(table=self._table), (session_id,))
            row = cursor.fetchone()
        finally:
            conn.close()

        if row is None:
            return None

        try:
            return json.loads(row[0])
        except json.JSONDecodeError as exc:
            self._logger.warning(
                "context_deserialize_failed",
                session_id=session_id,
                error=str(exc)[:200],
            )
            return None

    def get_provider_name(self) -> str:
        return f"sqlite_context_store:{self._table}"
