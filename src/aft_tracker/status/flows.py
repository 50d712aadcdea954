"""Status-flow templates, terminal sets, variant aliases and flow resolution.

Each request variant has one canonical, duplicate-free ordering of
statuses. Terminal deviations (rejected, cancelled) truncate that ordering
at the point where the deviation happened; locating that point is the
only non-trivial part of the registry and is done by
:func:`_deviation_point`.
"""

from __future__ import annotations

import logging

from .models import Status, Variant

logger = logging.getLogger(__name__)

StatusFlow = tuple[Status, ...]

STANDARD_FLOW: StatusFlow = (
    Status.DRAFT,
    Status.SUBMITTED,
    Status.PENDING_DAO,
    Status.PENDING_APPROVER,
    Status.APPROVED,
    Status.PENDING_DTA,
    Status.ACTIVE_TRANSFER,
    Status.PENDING_SME,
    Status.PENDING_MEDIA_CUSTODIAN,
    Status.COMPLETED,
    Status.DISPOSED,
)

HIGH_TO_LOW_FLOW: StatusFlow = (
    Status.DRAFT,
    Status.SUBMITTED,
    Status.PENDING_DAO,
    Status.PENDING_APPROVER,
    Status.PENDING_CPSO,
    Status.APPROVED,
    Status.PENDING_DTA,
    Status.ACTIVE_TRANSFER,
    Status.PENDING_SME,
    Status.PENDING_MEDIA_CUSTODIAN,
    Status.COMPLETED,
    Status.DISPOSED,
)

FLOW_TEMPLATES: dict[Variant, StatusFlow] = {
    Variant.STANDARD: STANDARD_FLOW,
    Variant.HIGH_TO_LOW: HIGH_TO_LOW_FLOW,
}

# Every template is an ordered subset of this one.
SUPERSET_FLOW: StatusFlow = HIGH_TO_LOW_FLOW

TERMINAL_STATUSES: frozenset[str] = frozenset(
    {"completed", "disposed", "rejected", "cancelled"}
)

TERMINAL_DEVIATIONS: frozenset[str] = frozenset({"rejected", "cancelled"})

# Nominal status a deviation stands in for when history does not say where
# the request left the flow. Cancellation has no fixed place.
DEVIATION_ANCHORS: dict[str, Status] = {"rejected": Status.APPROVED}

VARIANT_ALIASES: dict[str, str] = {
    "": "standard",
    "low-to-high": "standard",
    "low_to_high": "standard",
    "high-to-low": "high_to_low",
    "elevated": "high_to_low",
}

STATUS_LABELS: dict[str, str] = {
    "draft": "Draft",
    "submitted": "Submitted",
    "pending_dao": "Pending DAO Review",
    "pending_approver": "Pending ISSM Review",
    "pending_cpso": "Pending CPSO Review",
    "approved": "Approved",
    "rejected": "Rejected",
    "pending_dta": "Pending DTA Assignment",
    "active_transfer": "Transfer in Progress",
    "pending_sme": "Pending SME Review",
    "pending_media_custodian": "Pending Media Disposition",
    "completed": "Completed",
    "disposed": "Media Disposed",
    "cancelled": "Cancelled",
}

STATUS_DESCRIPTIONS: dict[str, str] = {
    "draft": "Request is being prepared by the requestor",
    "submitted": "Request has been submitted for review",
    "pending_dao": "Awaiting review by Designated Authorizing Official",
    "pending_approver": "Awaiting security review by ISSM",
    "pending_cpso": "Awaiting contractor security review",
    "approved": "Request has been approved for transfer",
    "rejected": "Request has been rejected",
    "pending_dta": "Awaiting Data Transfer Agent assignment",
    "active_transfer": "Data transfer is in progress",
    "pending_sme": "Awaiting Subject Matter Expert review and signature",
    "pending_media_custodian": "Awaiting media disposition",
    "completed": "Transfer completed successfully",
    "disposed": "Media has been properly disposed",
    "cancelled": "Request has been cancelled",
}

DEFAULT_ASSIGNEES: dict[str, str] = {
    "draft": "Requestor",
    "submitted": "System",
    "pending_dao": "DAO Team",
    "pending_approver": "ISSM Team",
    "pending_cpso": "CPSO Team",
    "approved": "System",
    "pending_dta": "DTA Team",
    "active_transfer": "Assigned DTA",
    "pending_sme": "SME Team",
    "pending_media_custodian": "Media Custodian",
    "completed": "System",
    "disposed": "Media Custodian",
}

# Average hours a request spends in each stage.
AVERAGE_STAGE_HOURS: dict[str, float] = {
    "draft": 24,
    "submitted": 2,
    "pending_dao": 48,
    "pending_approver": 72,
    "pending_cpso": 48,
    "approved": 1,
    "pending_dta": 24,
    "active_transfer": 168,
    "pending_sme": 48,
    "pending_media_custodian": 72,
    "completed": 0,
    "disposed": 0,
}


class UnresolvedStatusError(ValueError):
    """Raised in strict mode when a status is absent from its flow."""


def resolve_variant(raw: str | None) -> Variant:
    """Resolve a raw variant name or alias. Unknown values fall back to standard."""
    normalized = (raw or "").strip().lower()
    normalized = VARIANT_ALIASES.get(normalized, normalized)
    try:
        return Variant(normalized)
    except ValueError:
        logger.debug("Unknown variant %r, using standard flow", raw)
        return Variant.STANDARD


def coerce_status(raw: str | None) -> Status | None:
    """Return the Status for *raw*, or None if it is not a known status."""
    if raw is None:
        return None
    try:
        return Status(raw.strip().lower())
    except ValueError:
        return None


def is_terminal(status: str) -> bool:
    """Check if a status has no further nominal progress."""
    return status in TERMINAL_STATUSES


def is_deviation(status: str) -> bool:
    """Check if a status truncates the nominal flow (rejected or cancelled)."""
    return status in TERMINAL_DEVIATIONS


def template_for(variant: str | None) -> StatusFlow:
    return FLOW_TEMPLATES[resolve_variant(variant)]


def status_label(status: str) -> str:
    return STATUS_LABELS.get(status, status)


def _cut_at(template: StatusFlow, anchor: str, *, inclusive: bool) -> int | None:
    """Count the template statuses that come before (or with) *anchor*.

    The anchor is looked up in the template itself first and then in
    SUPERSET_FLOW, so a status that only exists in another variant still
    yields a position. Returns None if the anchor is in neither.
    """
    if anchor in template:
        index = template.index(Status(anchor))
        return index + 1 if inclusive else index
    if anchor in SUPERSET_FLOW:
        index = SUPERSET_FLOW.index(Status(anchor))
        ahead = set(SUPERSET_FLOW[: index + 1 if inclusive else index])
        return sum(1 for status in template if status in ahead)
    return None


def _deviation_point(
    template: StatusFlow,
    deviation: str,
    deviated_from: str | None,
) -> tuple[int, Status | None]:
    """Locate where *deviation* leaves *template*.

    Returns ``(cut, replaced)``: the deviation is placed after
    ``template[:cut]`` and stands in for ``replaced`` (None when it is
    appended after the whole template).

    Precedence: the status the request left (from history), then the
    static DEVIATION_ANCHORS entry, then the end of the template. A
    *deviated_from* that is itself a deviation carries no position and is
    ignored; callers resolve deviation chains from history first.
    """
    if deviated_from and is_deviation(deviated_from):
        logger.debug(
            "Ignoring deviation source %r for %s; it is not a nominal status",
            deviated_from,
            deviation,
        )
        deviated_from = None
    if deviated_from:
        cut = _cut_at(template, deviated_from, inclusive=True)
        if cut is not None:
            replaced = template[cut] if cut < len(template) else None
            return cut, replaced

    anchor = DEVIATION_ANCHORS.get(deviation)
    if anchor is not None:
        cut = _cut_at(template, anchor, inclusive=False)
        if cut is not None:
            replaced = anchor if anchor in template else None
            return cut, replaced

    return len(template), None


def resolve_flow(
    variant: str | None,
    current_status: str,
    *,
    deviated_from: str | None = None,
    strict: bool = False,
) -> tuple[str, ...]:
    """Return the ordered flow of statuses that applies to a request.

    - Nominal statuses: the variant's template, unchanged.
    - Terminal deviations: the template statuses before the deviation
      point, followed by the deviation status itself.
    - Unknown statuses: the full template, with a data-quality warning
      (or UnresolvedStatusError when *strict*).
    """
    template = template_for(variant)

    if is_deviation(current_status):
        cut, _replaced = _deviation_point(template, current_status, deviated_from)
        return (*template[:cut], Status(current_status))

    if current_status not in template:
        if strict:
            raise UnresolvedStatusError(
                f"Status {current_status!r} is not part of the "
                f"{resolve_variant(variant)} flow"
            )
        logger.warning(
            "Status %r is not part of the %s flow; progress degrades to zero",
            current_status,
            resolve_variant(variant),
        )
    return template


def remaining_statuses(
    variant: str | None,
    current_status: str,
    *,
    deviated_from: str | None = None,
) -> tuple[Status, ...]:
    """Nominal statuses a terminal deviation cut off, in template order.

    Empty for any status that is not a terminal deviation.
    """
    if not is_deviation(current_status):
        return ()
    template = template_for(variant)
    cut, replaced = _deviation_point(template, current_status, deviated_from)
    return tuple(status for status in template[cut:] if status != replaced)
