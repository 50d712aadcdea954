"""Bulk request listings annotated with progress."""

from __future__ import annotations

from typing import Any

from .flows import is_deviation
from .models import Status
from .progress import compute_progress
from .store import TrackingStore
from .timeline import deviation_source


def list_with_progress(
    store: TrackingStore,
    *,
    status: str | None = None,
    requestor_id: int | None = None,
    assignee_id: int | None = None,
    limit: int | None = None,
    offset: int | None = None,
    strict: bool = False,
) -> list[dict[str, Any]]:
    """Return request summaries, most recently updated first.

    Each row carries the summary columns plus ``audit_count``,
    ``last_activity`` and the progress annotation: ``timeline_progress``
    (percent), ``total_steps``, ``current_step`` and ``is_terminal``.
    """
    rows = store.list_requests(
        status=status,
        requestor_id=requestor_id,
        assignee_id=assignee_id,
        limit=limit,
        offset=offset,
    )

    results: list[dict[str, Any]] = []
    for row in rows:
        deviated_from = row.pop("deviated_from", None)
        if not is_deviation(row["status"]):
            deviated_from = None
        elif deviated_from and is_deviation(deviated_from):
            # Deviation chain; only the full history knows where it began.
            deviated_from = deviation_source(store.list_audit(row["id"]), row["status"])
        progress = compute_progress(
            row["variant"],
            row["status"],
            deviated_from=deviated_from,
            strict=strict,
        )
        results.append(
            {
                **row,
                "timeline_progress": progress.percent,
                "total_steps": progress.total_steps,
                "current_step": progress.current_step,
                "is_terminal": progress.is_terminal,
            }
        )
    return results


def status_summary(store: TrackingStore) -> dict[str, int]:
    """Count requests per status. Every known status is present, zero or not.

    Unknown statuses found in the store are reported under their raw value.
    """
    summary = {status.value: 0 for status in Status}
    for status, total in store.count_by_status().items():
        summary[status] = summary.get(status, 0) + total
    return summary
