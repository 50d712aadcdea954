"""Canonical status models for the AFT request lifecycle.

Defines the lifecycle data types: Status, Variant, AuditKind and StepState
enums, the persisted TransferRequest and AuditEntry records, and the
read-time projections (TimelineStep, Progress, TimelineResult).
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any


class Status(StrEnum):
    """Every status an AFT request can hold."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    PENDING_DAO = "pending_dao"
    PENDING_APPROVER = "pending_approver"
    PENDING_CPSO = "pending_cpso"
    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING_DTA = "pending_dta"
    ACTIVE_TRANSFER = "active_transfer"
    PENDING_SME = "pending_sme"
    PENDING_MEDIA_CUSTODIAN = "pending_media_custodian"
    COMPLETED = "completed"
    DISPOSED = "disposed"
    CANCELLED = "cancelled"


class Variant(StrEnum):
    """Request variants; each selects one status-flow template."""

    STANDARD = "standard"
    HIGH_TO_LOW = "high_to_low"


class AuditKind(StrEnum):
    """Tag distinguishing the three kinds of audit log entry."""

    CREATED = "created"
    STATUS_CHANGE = "status_change"
    ACTIVITY = "activity"


class StepState(StrEnum):
    """Classification of one timeline step."""

    COMPLETED = "completed"
    CURRENT = "current"
    PENDING = "pending"
    SKIPPED = "skipped"
    ERROR = "error"


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO 8601 string; naive values are taken as UTC."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def require_datetime(row: sqlite3.Row, column: str) -> datetime:
    """Parse a mandatory timestamp column.

    Raises:
        ValueError: If the stored value is missing or not ISO 8601.
    """
    parsed = parse_datetime(row[column])
    if parsed is None:
        raise ValueError(f"Row {row['id']} has an unreadable {column}: {row[column]!r}")
    return parsed


@dataclass
class TransferRequest:
    """One AFT request row.

    ``status`` and ``variant`` are kept as raw strings so that rows written
    by other tools with unknown values can still be loaded and reported.
    """

    id: int
    request_number: str
    requestor_id: int
    status: str
    variant: str
    created_at: datetime
    updated_at: datetime
    requestor_name: str | None = None
    assignee_id: int | None = None
    classification: str | None = None
    approved_at: datetime | None = None
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "request_number": self.request_number,
            "requestor_id": self.requestor_id,
            "requestor_name": self.requestor_name,
            "assignee_id": self.assignee_id,
            "variant": self.variant,
            "classification": self.classification,
            "status": self.status,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "approved_at": to_iso(self.approved_at),
            "completed_at": to_iso(self.completed_at),
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> TransferRequest:
        return cls(
            id=int(row["id"]),
            request_number=str(row["request_number"]),
            requestor_id=int(row["requestor_id"]),
            requestor_name=row["requestor_name"],
            assignee_id=int(row["assignee_id"]) if row["assignee_id"] is not None else None,
            variant=str(row["variant"]),
            classification=row["classification"],
            status=str(row["status"]),
            created_at=require_datetime(row, "created_at"),
            updated_at=require_datetime(row, "updated_at"),
            approved_at=parse_datetime(row["approved_at"]),
            completed_at=parse_datetime(row["completed_at"]),
        )


@dataclass(frozen=True)
class AuditEntry:
    """Immutable record of a status change or a general activity.

    ``actor_name`` and ``actor_role`` are not stored on the entry; they are
    joined from the actor directory when the log is read.
    """

    id: int
    request_id: int
    actor_id: int
    kind: AuditKind
    action: str
    created_at: datetime
    old_status: str | None = None
    new_status: str | None = None
    changes: dict[str, Any] | None = None
    notes: str | None = None
    actor_name: str | None = None
    actor_role: str | None = None

    @property
    def is_transition(self) -> bool:
        return self.kind == AuditKind.STATUS_CHANGE and bool(self.new_status)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "actor_id": self.actor_id,
            "kind": str(self.kind),
            "action": self.action,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "changes": self.changes,
            "notes": self.notes,
            "created_at": to_iso(self.created_at),
            "actor_name": self.actor_name,
            "actor_role": self.actor_role,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> AuditEntry:
        keys = row.keys()
        changes_raw = row["changes"]
        return cls(
            id=int(row["id"]),
            request_id=int(row["request_id"]),
            actor_id=int(row["actor_id"]),
            kind=AuditKind(row["kind"]),
            action=str(row["action"]),
            created_at=require_datetime(row, "created_at"),
            old_status=row["old_status"],
            new_status=row["new_status"],
            changes=json.loads(changes_raw) if changes_raw else None,
            notes=row["notes"],
            actor_name=row["actor_name"] if "actor_name" in keys else None,
            actor_role=row["actor_role"] if "actor_role" in keys else None,
        )


@dataclass(frozen=True)
class Progress:
    """Step counts and percent complete derived from the current status."""

    current_step: int
    total_steps: int
    percent: int
    is_terminal: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "percent": self.percent,
            "is_terminal": self.is_terminal,
        }


@dataclass(frozen=True)
class TimelineStep:
    """Read-time projection of one status in a request's flow."""

    status: str
    title: str
    description: str
    state: StepState
    assigned_to: str
    timestamp: datetime | None = None
    notes: str | None = None
    duration_hours: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.status,
            "title": self.title,
            "description": self.description,
            "status": str(self.state),
            "timestamp": to_iso(self.timestamp),
            "assigned_to": self.assigned_to,
            "notes": self.notes,
            "duration_hours": self.duration_hours,
        }


@dataclass
class TimelineResult:
    """Fully classified timeline for one request."""

    request_id: int
    current_status: str
    progress: Progress
    steps: list[TimelineStep] = field(default_factory=list)
    audit_entries: list[AuditEntry] = field(default_factory=list)
    estimated_completion: datetime | None = None
    actual_completion: datetime | None = None

    def step_for(self, status: str) -> TimelineStep | None:
        for step in self.steps:
            if step.status == status:
                return step
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "current_status": self.current_status,
            "progress": self.progress.to_dict(),
            "timeline_steps": [step.to_dict() for step in self.steps],
            "audit_entries": [entry.to_dict() for entry in self.audit_entries],
            "estimated_completion": to_iso(self.estimated_completion),
            "actual_completion": to_iso(self.actual_completion),
        }
