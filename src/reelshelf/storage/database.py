"""Async SQLite store holding the library entries and the edit-session journal."""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite
import structlog

from reelshelf.errors import InvalidSessionState, PersistenceFailed, StoreUnavailable
from reelshelf.storage.models import EditContext, EditStatus, Entry

log = structlog.get_logger(__name__)

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS entry (
    id INTEGER PRIMARY KEY,
    title TEXT NOT NULL,
    locator TEXT NOT NULL,
    position INTEGER NOT NULL CHECK(position >= 0),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS edit_session (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    opened_at TEXT NOT NULL,
    closed_at TEXT,
    status TEXT NOT NULL CHECK(status IN ('open', 'committed', 'discarded')),
    edit_count INTEGER NOT NULL DEFAULT 0
);
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class LibraryStore:
    """Durable library store backed by SQLite."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._conn: aiosqlite.Connection | None = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            msg = "Library store not connected. Call connect() first."
            raise StoreUnavailable(msg)
        return self._conn

    async def connect(self) -> None:
        self._conn = await aiosqlite.connect(self.path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.executescript(_SCHEMA)
        # Sessions left open by a previous process can never be committed.
        cur = await self._conn.execute(
            "UPDATE edit_session SET status = 'discarded', closed_at = ? WHERE status = 'open'",
            (_now_iso(),),
        )
        await self._conn.commit()
        if cur.rowcount:
            log.info("stale_edit_sessions_discarded", count=cur.rowcount)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    # -- entries --------------------------------------------------------------

    async def load(self) -> list[Entry]:
        try:
            cur = await self.conn.execute("SELECT * FROM entry ORDER BY position, id")
            rows = await cur.fetchall()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"could not read library: {exc}") from exc
        return [self._row_to_entry(r) for r in rows]

    async def count_entries(self) -> int:
        try:
            cur = await self.conn.execute("SELECT COUNT(*) FROM entry")
            row = await cur.fetchone()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"could not count entries: {exc}") from exc
        return row[0]

    # -- edit sessions --------------------------------------------------------

    async def begin_edit_session(self) -> EditContext:
        try:
            cur = await self.conn.execute(
                "INSERT INTO edit_session (opened_at, status) VALUES (?, 'open') RETURNING *",
                (_now_iso(),),
            )
            row = await cur.fetchone()
            await self.conn.commit()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"could not open edit session: {exc}") from exc
        return EditContext(
            session_id=row["id"],
            opened_at=datetime.fromisoformat(row["opened_at"]),
        )

    async def commit(self, context: EditContext, overlay: Sequence[Entry]) -> None:
        """Replace the stored library with *overlay* and close *context*.

        The journal row flips from ``open`` to ``committed`` in the same
        transaction that rewrites the entries, so a session is committed at
        most once even across processes.
        """
        if not context.is_open:
            msg = f"edit session {context.session_id} is already {context.status}"
            raise InvalidSessionState(msg)
        if self._conn is None:
            msg = "library store is not connected"
            raise PersistenceFailed(msg)

        try:
            cur = await self.conn.execute(
                """
                UPDATE edit_session SET status = 'committed', closed_at = ?, edit_count = ?
                WHERE id = ? AND status = 'open'
                """,
                (_now_iso(), len(context.edits), context.session_id),
            )
            if cur.rowcount != 1:
                msg = f"edit session {context.session_id} is no longer open in the store"
                raise PersistenceFailed(msg)
            await self.conn.execute("DELETE FROM entry")
            now = _now_iso()
            await self.conn.executemany(
                "INSERT INTO entry (id, title, locator, position, updated_at) VALUES (?, ?, ?, ?, ?)",
                [(e.id, e.title, e.locator, e.position, now) for e in overlay],
            )
            context.sealed = True
            await self.conn.commit()
        except sqlite3.Error as exc:
            context.sealed = False
            await self._rollback()
            raise PersistenceFailed(f"commit failed: {exc}") from exc
        except (PersistenceFailed, asyncio.CancelledError):
            context.sealed = False
            await self._rollback()
            raise

        context.status = EditStatus.COMMITTED
        log.info("edit_session_committed", session_id=context.session_id, entries=len(overlay))

    async def discard(self, context: EditContext) -> None:
        """Close *context* without touching the entries."""
        if context.status is EditStatus.OPEN:
            context.status = EditStatus.DISCARDED
        await self.conn.execute(
            "UPDATE edit_session SET status = 'discarded', closed_at = ? WHERE id = ? AND status = 'open'",
            (_now_iso(), context.session_id),
        )
        await self.conn.commit()

    async def list_edit_sessions(self, *, limit: int = 20) -> list[dict]:
        cur = await self.conn.execute(
            "SELECT * FROM edit_session ORDER BY id DESC LIMIT ?", (limit,)
        )
        rows = await cur.fetchall()
        return [dict(r) for r in rows]

    async def _rollback(self) -> None:
        try:
            await self.conn.rollback()
        except sqlite3.Error as exc:
            log.warning("rollback_failed", error=str(exc))

    # -- row → model helpers --------------------------------------------------

    @staticmethod
    def _row_to_entry(row: aiosqlite.Row) -> Entry:
        return Entry(
            id=row["id"],
            title=row["title"],
            locator=row["locator"],
            position=row["position"],
        )
