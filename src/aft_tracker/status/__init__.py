"""Canonical status engine for the AFT request lifecycle.

Public API surface -- all consumers import from this package.
"""

from .flows import (
    AVERAGE_STAGE_HOURS,
    DEFAULT_ASSIGNEES,
    DEVIATION_ANCHORS,
    FLOW_TEMPLATES,
    HIGH_TO_LOW_FLOW,
    STANDARD_FLOW,
    STATUS_DESCRIPTIONS,
    STATUS_LABELS,
    TERMINAL_DEVIATIONS,
    TERMINAL_STATUSES,
    VARIANT_ALIASES,
    UnresolvedStatusError,
    coerce_status,
    is_deviation,
    is_terminal,
    remaining_statuses,
    resolve_flow,
    resolve_variant,
    status_label,
)
from .listing import list_with_progress, status_summary
from .models import (
    AuditEntry,
    AuditKind,
    Progress,
    Status,
    StepState,
    TimelineResult,
    TimelineStep,
    TransferRequest,
    Variant,
    utc_now,
)
from .progress import compute_progress
from .store import StoreError, StoreTransaction, TrackingStore
from .timeline import TimelineEngine, build_timeline
from .writer import AuditWriter, TransitionOutcome

__all__ = [
    "AVERAGE_STAGE_HOURS",
    "AuditEntry",
    "AuditKind",
    "AuditWriter",
    "DEFAULT_ASSIGNEES",
    "DEVIATION_ANCHORS",
    "FLOW_TEMPLATES",
    "HIGH_TO_LOW_FLOW",
    "Progress",
    "STANDARD_FLOW",
    "STATUS_DESCRIPTIONS",
    "STATUS_LABELS",
    "Status",
    "StepState",
    "StoreError",
    "StoreTransaction",
    "TERMINAL_DEVIATIONS",
    "TERMINAL_STATUSES",
    "TimelineEngine",
    "TimelineResult",
    "TimelineStep",
    "TrackingStore",
    "TransferRequest",
    "TransitionOutcome",
    "UnresolvedStatusError",
    "VARIANT_ALIASES",
    "Variant",
    "build_timeline",
    "coerce_status",
    "compute_progress",
    "is_deviation",
    "is_terminal",
    "list_with_progress",
    "remaining_statuses",
    "resolve_flow",
    "resolve_variant",
    "status_label",
    "status_summary",
    "utc_now",
]
