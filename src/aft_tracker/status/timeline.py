"""Timeline reconstruction from a request and its audit log.

Replays the append-only audit history of one request against the
expected status flow for its variant and classifies every stage as
completed, current, pending, skipped or error.

Algorithm (see :func:`build_timeline`):
    1. Map each status to its representative audit entry. The creation
       entry stands for ``draft``; later status changes map to their new
       status, last write wins.
    2. Resolve the flow, locating the deviation point from history when
       the request was rejected or cancelled, and append the nominal
       statuses the deviation cut off.
    3. Classify each step by position relative to the current status,
       then apply the terminal override for deviations.
    4. Attach timestamp, actor, notes and stage duration per step.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Sequence

from .flows import (
    AVERAGE_STAGE_HOURS,
    DEFAULT_ASSIGNEES,
    STATUS_DESCRIPTIONS,
    is_deviation,
    remaining_statuses,
    resolve_flow,
    status_label,
)
from .models import (
    AuditEntry,
    AuditKind,
    Status,
    StepState,
    TimelineResult,
    TimelineStep,
    TransferRequest,
    utc_now,
)
from .progress import compute_progress
from .store import TrackingStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

SECONDS_PER_HOUR = 3600.0


def origin_entry(entries: Sequence[AuditEntry]) -> AuditEntry | None:
    """Return the entry recording the request's creation.

    Logs written before creation entries were tagged have none; for those
    the chronologically first entry is taken as the origin.
    """
    for entry in entries:
        if entry.kind == AuditKind.CREATED:
            return entry
    if entries:
        logger.debug(
            "No creation entry for request %s; using first entry %s as origin",
            entries[0].request_id,
            entries[0].id,
        )
        return entries[0]
    return None


def map_status_entries(entries: Sequence[AuditEntry]) -> dict[str, AuditEntry]:
    """Map each reached status to its representative audit entry."""
    mapping: dict[str, AuditEntry] = {}
    origin = origin_entry(entries)
    if origin is not None:
        mapping[Status.DRAFT.value] = origin
    for entry in entries:
        if entry is origin:
            continue
        if entry.is_transition:
            mapping[str(entry.new_status)] = entry
    return mapping


def deviation_source(entries: Sequence[AuditEntry], status: str) -> str | None:
    """Nominal status the request held before it deviated into *status*.

    Chains of deviations (rejected, then cancelled) are followed back to
    the status where the request left the nominal flow.
    """
    target = status
    for entry in reversed(entries):
        if not entry.is_transition or entry.new_status != target:
            continue
        if entry.old_status and is_deviation(entry.old_status):
            target = entry.old_status
            continue
        return entry.old_status
    return None


def stage_duration_hours(
    entry: AuditEntry,
    entries: Sequence[AuditEntry],
    *,
    is_current: bool,
    now: datetime,
) -> float | None:
    """Hours spent in the stage that *entry* opened.

    Measured to the next status change anywhere in the history; a stage
    still open (the request's current status) is measured up to *now*.
    """
    try:
        position = next(i for i, candidate in enumerate(entries) if candidate is entry)
    except StopIteration:
        return None

    for later in entries[position + 1 :]:
        if later.kind == AuditKind.STATUS_CHANGE:
            return (later.created_at - entry.created_at).total_seconds() / SECONDS_PER_HOUR

    if is_current:
        return (now - entry.created_at).total_seconds() / SECONDS_PER_HOUR
    return None


def classify_step(index: int, current_index: int, status: str, current_status: str) -> StepState:
    """Classify the step at *index* given the position of the current status."""
    if index < current_index:
        state = StepState.COMPLETED
    elif index == current_index:
        state = StepState.CURRENT
    else:
        state = StepState.PENDING

    if is_deviation(current_status):
        if status == current_status:
            state = StepState.ERROR
        elif index > current_index:
            state = StepState.SKIPPED
    return state


def estimate_completion(
    flow: Sequence[str], current_status: str, now: datetime
) -> datetime | None:
    """Project completion from average stage durations, from the current stage on."""
    if current_status not in flow:
        return None
    index = list(flow).index(current_status)
    hours = sum(AVERAGE_STAGE_HOURS.get(status, 0) for status in flow[index:])
    return now + timedelta(hours=hours)


def build_timeline(
    request: TransferRequest,
    entries: Sequence[AuditEntry],
    *,
    now: datetime,
    strict: bool = False,
) -> TimelineResult:
    """Reconstruct the classified timeline of *request* from *entries*.

    *entries* must be in ascending creation order. The result depends on
    the stored state and *now* only.
    """
    current_status = request.status
    deviated_from = (
        deviation_source(entries, current_status) if is_deviation(current_status) else None
    )

    flow = resolve_flow(
        request.variant, current_status, deviated_from=deviated_from, strict=strict
    )
    statuses = (
        *flow,
        *remaining_statuses(request.variant, current_status, deviated_from=deviated_from),
    )
    current_index = flow.index(current_status) if current_status in flow else -1
    status_entries = map_status_entries(entries)

    steps: list[TimelineStep] = []
    for index, raw_status in enumerate(statuses):
        status = str(raw_status)
        entry = status_entries.get(status)
        duration = None
        if entry is not None:
            duration = stage_duration_hours(
                entry, entries, is_current=status == current_status, now=now
            )
        steps.append(
            TimelineStep(
                status=status,
                title=status_label(status),
                description=STATUS_DESCRIPTIONS.get(status, "Status update"),
                state=classify_step(index, current_index, status, current_status),
                assigned_to=(entry.actor_name if entry and entry.actor_name else None)
                or DEFAULT_ASSIGNEES.get(status, "System"),
                timestamp=entry.created_at if entry is not None else None,
                notes=entry.notes if entry is not None else None,
                duration_hours=duration,
            )
        )

    return TimelineResult(
        request_id=request.id,
        current_status=current_status,
        progress=compute_progress(
            request.variant, current_status, deviated_from=deviated_from, strict=strict
        ),
        steps=steps,
        audit_entries=list(entries),
        estimated_completion=estimate_completion(flow, current_status, now),
        actual_completion=request.completed_at,
    )


class TimelineEngine:
    """Reads requests and audit history from a store and builds timelines."""

    def __init__(
        self,
        store: TrackingStore,
        *,
        clock: Clock = utc_now,
        strict: bool = False,
    ) -> None:
        self._store = store
        self._clock = clock
        self._strict = strict

    def get_timeline(self, request_id: int) -> TimelineResult | None:
        """Return the timeline for *request_id*, or None if it does not exist."""
        request = self._store.get_request(request_id)
        if request is None:
            logger.debug("Timeline requested for unknown request %s", request_id)
            return None
        entries = self._store.list_audit(request_id)
        return build_timeline(request, entries, now=self._clock(), strict=self._strict)
