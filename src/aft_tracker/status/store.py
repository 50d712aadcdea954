"""SQLite storage for AFT requests, their audit log, and the actor directory.

One database file backs all three collaborators so that a status change
and its audit entry can be committed in a single transaction. Each public
call opens a short-lived connection; multi-statement writes go through
:meth:`TrackingStore.transaction`.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping

from .models import AuditEntry, AuditKind, TransferRequest, utc_now

# Columns update_request() may touch. Status is excluded: it only changes
# through StoreTransaction.set_status.
UPDATABLE_REQUEST_FIELDS: frozenset[str] = frozenset(
    {
        "requestor_name",
        "assignee_id",
        "classification",
        "variant",
        "approved_at",
        "completed_at",
    }
)


class StoreError(Exception):
    """Raised when the tracking store is missing rows or cannot be written."""


def _ts(value: datetime) -> str:
    """Serialize a datetime as fixed-width UTC ISO 8601 so text order is time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _db_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return _ts(value)
    return value


def _load_request(row: sqlite3.Row) -> TransferRequest:
    try:
        return TransferRequest.from_row(row)
    except ValueError as exc:
        raise StoreError(f"Corrupt request row: {exc}") from exc


def _load_audit(row: sqlite3.Row) -> AuditEntry:
    # ValueError also covers unknown kinds and malformed changes JSON.
    try:
        return AuditEntry.from_row(row)
    except ValueError as exc:
        raise StoreError(f"Corrupt audit entry: {exc}") from exc


_AUDIT_SELECT = """
    SELECT
        al.id, al.request_id, al.actor_id, al.kind, al.action, al.old_status,
        al.new_status, al.changes, al.notes, al.created_at,
        CASE WHEN a.id IS NULL THEN NULL
             ELSE TRIM(a.first_name || ' ' || a.last_name) END AS actor_name,
        a.role AS actor_role
    FROM audit_log al
    LEFT JOIN actors a ON al.actor_id = a.id
"""


class StoreTransaction:
    """Write operations bound to one open SQLite transaction."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get_status(self, request_id: int) -> str | None:
        row = self._conn.execute(
            "SELECT status FROM requests WHERE id = ?", (request_id,)
        ).fetchone()
        return str(row["status"]) if row is not None else None

    def insert_request(
        self,
        *,
        request_number: str,
        requestor_id: int,
        variant: str,
        status: str,
        at: datetime,
        requestor_name: str | None = None,
        assignee_id: int | None = None,
        classification: str | None = None,
    ) -> int:
        try:
            cursor = self._conn.execute(
                """
                INSERT INTO requests(
                    request_number, requestor_id, requestor_name, assignee_id,
                    variant, classification, status, created_at, updated_at
                )
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    request_number,
                    requestor_id,
                    requestor_name,
                    assignee_id,
                    variant,
                    classification,
                    status,
                    _ts(at),
                    _ts(at),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise StoreError(f"Request number {request_number} already exists") from exc
        return int(cursor.lastrowid)

    def insert_audit(
        self,
        *,
        request_id: int,
        actor_id: int,
        kind: AuditKind,
        action: str,
        at: datetime,
        old_status: str | None = None,
        new_status: str | None = None,
        changes: Mapping[str, Any] | None = None,
        notes: str | None = None,
    ) -> int:
        cursor = self._conn.execute(
            """
            INSERT INTO audit_log(
                request_id, actor_id, kind, action, old_status, new_status,
                changes, notes, created_at
            )
            VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                request_id,
                actor_id,
                str(kind),
                action,
                old_status or None,
                new_status or None,
                json.dumps(dict(changes), sort_keys=True) if changes else None,
                notes or None,
                _ts(at),
            ),
        )
        return int(cursor.lastrowid)

    def set_status(
        self,
        request_id: int,
        new_status: str,
        *,
        expected_status: str,
        at: datetime,
        extra: Mapping[str, datetime] | None = None,
    ) -> bool:
        """Compare-and-set the status column.

        Returns False when the stored status no longer equals
        *expected_status* (or the row is gone); nothing is written then.
        """
        assignments = ["status = ?", "updated_at = ?"]
        params: list[Any] = [new_status, _ts(at)]
        for column, value in (extra or {}).items():
            if column not in UPDATABLE_REQUEST_FIELDS:
                raise StoreError(f"Column {column} cannot be updated")
            assignments.append(f"{column} = ?")
            params.append(_db_value(value))
        params.extend([request_id, expected_status])
        cursor = self._conn.execute(
            f"UPDATE requests SET {', '.join(assignments)} WHERE id = ? AND status = ?",
            params,
        )
        return cursor.rowcount == 1

    def touch(self, request_id: int, at: datetime) -> bool:
        cursor = self._conn.execute(
            "UPDATE requests SET updated_at = ? WHERE id = ?",
            (_ts(at), request_id),
        )
        return cursor.rowcount == 1


class TrackingStore:
    """SQLite-backed request store, audit log store, and actor directory."""

    def __init__(self, db_path: Path, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.db_path = Path(db_path)
        self._clock = clock
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_db(self) -> None:
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS actors (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    first_name TEXT NOT NULL,
                    last_name TEXT NOT NULL,
                    role TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS requests (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    request_number TEXT UNIQUE NOT NULL,
                    requestor_id INTEGER NOT NULL,
                    requestor_name TEXT,
                    assignee_id INTEGER,
                    variant TEXT NOT NULL,
                    classification TEXT,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    approved_at TEXT,
                    completed_at TEXT
                );

                CREATE TABLE IF NOT EXISTS audit_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    request_id INTEGER NOT NULL REFERENCES requests(id),
                    actor_id INTEGER NOT NULL,
                    kind TEXT NOT NULL,
                    action TEXT NOT NULL,
                    old_status TEXT,
                    new_status TEXT,
                    changes TEXT,
                    notes TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_audit_log_request
                    ON audit_log(request_id, created_at, id);
                CREATE INDEX IF NOT EXISTS idx_requests_status ON requests(status);
                CREATE INDEX IF NOT EXISTS idx_requests_updated_at ON requests(updated_at);
                """
            )
            conn.commit()
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """Run writes in one ``BEGIN IMMEDIATE`` transaction.

        Commits on normal exit; rolls back and re-raises on any exception.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield StoreTransaction(conn)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ── Request store ─────────────────────────────────────────

    def get_request(self, request_id: int) -> TransferRequest | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM requests WHERE id = ?", (request_id,)
            ).fetchone()
        finally:
            conn.close()
        return _load_request(row) if row is not None else None

    def update_request(self, request_id: int, fields: Mapping[str, Any]) -> None:
        """Update non-status columns of a request and bump ``updated_at``."""
        unknown = set(fields) - UPDATABLE_REQUEST_FIELDS
        if unknown:
            raise StoreError(f"Cannot update request columns: {', '.join(sorted(unknown))}")

        assignments = [f"{column} = ?" for column in fields]
        params = [_db_value(value) for value in fields.values()]
        assignments.append("updated_at = ?")
        params.append(_ts(self._clock()))
        params.append(request_id)

        conn = self._connect()
        try:
            cursor = conn.execute(
                f"UPDATE requests SET {', '.join(assignments)} WHERE id = ?",
                params,
            )
            conn.commit()
        finally:
            conn.close()
        if cursor.rowcount == 0:
            raise StoreError(f"Request {request_id} not found")

    def list_requests(
        self,
        *,
        status: str | None = None,
        requestor_id: int | None = None,
        assignee_id: int | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        """Request summary rows with audit counts, newest activity first.

        ``deviated_from`` is the old status of the latest status change
        into the request's current status.
        """
        conditions: list[str] = []
        params: list[Any] = []
        if status:
            conditions.append("r.status = ?")
            params.append(status)
        if requestor_id is not None:
            conditions.append("r.requestor_id = ?")
            params.append(requestor_id)
        if assignee_id is not None:
            conditions.append("r.assignee_id = ?")
            params.append(assignee_id)

        query = """
            SELECT
                r.id, r.request_number, r.requestor_id, r.requestor_name,
                r.assignee_id, r.variant, r.classification, r.status,
                r.created_at, r.updated_at,
                COUNT(al.id) AS audit_count,
                MAX(al.created_at) AS last_activity,
                (
                    SELECT t.old_status FROM audit_log t
                    WHERE t.request_id = r.id
                      AND t.kind = 'status_change'
                      AND t.new_status = r.status
                    ORDER BY t.created_at DESC, t.id DESC
                    LIMIT 1
                ) AS deviated_from
            FROM requests r
            LEFT JOIN audit_log al ON r.id = al.request_id
        """
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " GROUP BY r.id ORDER BY r.updated_at DESC, r.id DESC"
        if limit is not None or offset:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit if limit is not None else -1, offset or 0])

        conn = self._connect()
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [dict(row) for row in rows]

    def count_by_status(self) -> dict[str, int]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS total FROM requests GROUP BY status"
            ).fetchall()
        finally:
            conn.close()
        return {str(row["status"]): int(row["total"]) for row in rows}

    # ── Audit log store ───────────────────────────────────────

    def insert_audit(
        self,
        *,
        request_id: int,
        actor_id: int,
        kind: AuditKind,
        action: str,
        at: datetime,
        old_status: str | None = None,
        new_status: str | None = None,
        changes: Mapping[str, Any] | None = None,
        notes: str | None = None,
    ) -> AuditEntry:
        with self.transaction() as txn:
            entry_id = txn.insert_audit(
                request_id=request_id,
                actor_id=actor_id,
                kind=kind,
                action=action,
                at=at,
                old_status=old_status,
                new_status=new_status,
                changes=changes,
                notes=notes,
            )
        entry = self.get_audit(entry_id)
        if entry is None:
            raise StoreError(f"Audit entry {entry_id} vanished after insert")
        return entry

    def get_audit(self, entry_id: int) -> AuditEntry | None:
        conn = self._connect()
        try:
            row = conn.execute(_AUDIT_SELECT + " WHERE al.id = ?", (entry_id,)).fetchone()
        finally:
            conn.close()
        return _load_audit(row) if row is not None else None

    def list_audit(self, request_id: int) -> list[AuditEntry]:
        """All audit entries of a request, oldest first (ties by id)."""
        conn = self._connect()
        try:
            rows = conn.execute(
                _AUDIT_SELECT
                + " WHERE al.request_id = ? ORDER BY al.created_at ASC, al.id ASC",
                (request_id,),
            ).fetchall()
        finally:
            conn.close()
        return [_load_audit(row) for row in rows]

    # ── Actor directory ───────────────────────────────────────

    def add_actor(self, first_name: str, last_name: str, role: str | None = None) -> int:
        conn = self._connect()
        try:
            cursor = conn.execute(
                "INSERT INTO actors(first_name, last_name, role, created_at) VALUES(?, ?, ?, ?)",
                (first_name, last_name, role, _ts(self._clock())),
            )
            conn.commit()
        finally:
            conn.close()
        return int(cursor.lastrowid)

    def display_name(self, actor_id: int) -> str | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT first_name, last_name FROM actors WHERE id = ?", (actor_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return f"{row['first_name']} {row['last_name']}".strip() or None
