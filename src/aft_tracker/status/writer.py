"""Audit entry writer: the single entry point for request state changes.

Creates requests, records general activity, and performs status
transitions. Every mutation of a request row happens here, together with
the audit entry that records it, inside one store transaction.

Transition pipeline (order matters):
    1. coerce the target status
    2. read the current status (NOT_FOUND if the request is missing)
    3. check the caller's expected status (CONFLICT on mismatch)
    4. skip no-op transitions (NO_CHANGE)
    5. compare-and-set the status, stamp approved_at / completed_at
    6. append the status_change audit entry
    Steps 5 and 6 commit together or not at all.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any, Callable, Mapping

from .flows import coerce_status, resolve_variant
from .models import AuditEntry, AuditKind, Status, TransferRequest, utc_now
from .store import StoreError, TrackingStore

logger = logging.getLogger(__name__)

ACTION_CREATED = "request_created"
ACTION_STATUS_CHANGE = "status_change"

# Request timestamp columns stamped when a status is entered.
_STATUS_TIMESTAMPS: dict[Status, str] = {
    Status.APPROVED: "approved_at",
    Status.COMPLETED: "completed_at",
}


class TransitionOutcome(StrEnum):
    """Result of :meth:`AuditWriter.transition_status`.

    Only APPLIED is truthy, so callers that need a plain success flag can
    test the outcome directly.
    """

    APPLIED = "applied"
    NOT_FOUND = "not_found"
    NO_CHANGE = "no_change"
    CONFLICT = "conflict"
    INVALID_STATUS = "invalid_status"
    STORAGE_ERROR = "storage_error"

    def __bool__(self) -> bool:
        return self is TransitionOutcome.APPLIED


def _generate_request_number(at: datetime) -> str:
    return f"AFT-{at:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


class AuditWriter:
    """Writes requests and audit entries through a :class:`TrackingStore`."""

    def __init__(
        self,
        store: TrackingStore,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._clock = clock

    def create_request(
        self,
        requestor_id: int,
        *,
        variant: str | None = None,
        request_number: str | None = None,
        requestor_name: str | None = None,
        assignee_id: int | None = None,
        classification: str | None = None,
        notes: str | None = None,
    ) -> TransferRequest:
        """Insert a draft request together with its creation audit entry.

        Raises:
            StoreError: If the request number is already taken.
        """
        resolved_variant = resolve_variant(variant)
        now = self._clock()
        number = request_number or _generate_request_number(now)

        with self._store.transaction() as txn:
            request_id = txn.insert_request(
                request_number=number,
                requestor_id=requestor_id,
                requestor_name=requestor_name,
                assignee_id=assignee_id,
                variant=str(resolved_variant),
                classification=classification,
                status=str(Status.DRAFT),
                at=now,
            )
            txn.insert_audit(
                request_id=request_id,
                actor_id=requestor_id,
                kind=AuditKind.CREATED,
                action=ACTION_CREATED,
                new_status=str(Status.DRAFT),
                changes={"variant": str(resolved_variant), "request_number": number},
                notes=notes,
                at=now,
            )

        logger.info("Created request %s (%s, %s)", request_id, number, resolved_variant)
        request = self._store.get_request(request_id)
        if request is None:
            raise StoreError(f"Request {request_id} vanished after insert")
        return request

    def append_activity(
        self,
        request_id: int,
        actor_id: int,
        action: str,
        old_status: str | None = None,
        new_status: str | None = None,
        changes: Mapping[str, Any] | None = None,
        notes: str | None = None,
    ) -> AuditEntry:
        """Record one audit entry and bump the request's ``updated_at``.

        Entries carrying a *new_status* are tagged as status changes; all
        others as general activity (scans, drive issuance, ...). The
        request's status column is never touched here.

        Raises:
            StoreError: If the request does not exist.
        """
        kind = AuditKind.STATUS_CHANGE if new_status else AuditKind.ACTIVITY
        now = self._clock()

        with self._store.transaction() as txn:
            if not txn.touch(request_id, now):
                raise StoreError(f"Request {request_id} not found")
            entry_id = txn.insert_audit(
                request_id=request_id,
                actor_id=actor_id,
                kind=kind,
                action=action,
                old_status=old_status,
                new_status=new_status,
                changes=changes,
                notes=notes,
                at=now,
            )

        entry = self._store.get_audit(entry_id)
        if entry is None:
            raise StoreError(f"Audit entry {entry_id} vanished after insert")
        return entry

    def transition_status(
        self,
        request_id: int,
        actor_id: int,
        new_status: str,
        notes: str | None = None,
        *,
        expected_status: str | None = None,
    ) -> TransitionOutcome:
        """Move a request to *new_status* and record the change.

        When *expected_status* is given the transition only applies if the
        request is still in that status. Independently of it, the write is
        a compare-and-set against the status read in step 2, so a
        concurrent transition is reported as CONFLICT instead of being
        silently overwritten.

        Storage errors are logged and reported as STORAGE_ERROR; the
        request's status is unchanged in that case.
        """
        target = coerce_status(new_status)
        if target is None:
            logger.warning(
                "Rejected transition of request %s to unknown status %r",
                request_id,
                new_status,
            )
            return TransitionOutcome.INVALID_STATUS

        try:
            request = self._store.get_request(request_id)
            if request is None:
                return TransitionOutcome.NOT_FOUND

            old_status = request.status
            if expected_status is not None and expected_status != old_status:
                logger.info(
                    "Transition of request %s to %s expected %s but found %s",
                    request_id,
                    target,
                    expected_status,
                    old_status,
                )
                return TransitionOutcome.CONFLICT
            if old_status == target:
                return TransitionOutcome.NO_CHANGE

            now = self._clock()
            stamps = {_STATUS_TIMESTAMPS[target]: now} if target in _STATUS_TIMESTAMPS else {}

            with self._store.transaction() as txn:
                if not txn.set_status(
                    request_id,
                    str(target),
                    expected_status=old_status,
                    at=now,
                    extra=stamps,
                ):
                    logger.info(
                        "Request %s changed status concurrently; %s -> %s not applied",
                        request_id,
                        old_status,
                        target,
                    )
                    return TransitionOutcome.CONFLICT
                txn.insert_audit(
                    request_id=request_id,
                    actor_id=actor_id,
                    kind=AuditKind.STATUS_CHANGE,
                    action=ACTION_STATUS_CHANGE,
                    old_status=old_status,
                    new_status=str(target),
                    changes={"from": old_status, "to": str(target)},
                    notes=notes,
                    at=now,
                )
        except (sqlite3.Error, StoreError):
            logger.exception("Failed to update status of request %s", request_id)
            return TransitionOutcome.STORAGE_ERROR

        logger.info("Request %s: %s -> %s by actor %s", request_id, old_status, target, actor_id)
        return TransitionOutcome.APPLIED
