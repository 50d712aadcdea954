"""Progress calculation from the current status alone.

Cheap enough to run for every row of a bulk list query: no history is
read and nothing is written.
"""

from __future__ import annotations

import math

from .flows import is_terminal, resolve_flow
from .models import Progress


def percent_complete(index: int, total_steps: int) -> int:
    """Percent of *total_steps* reached at zero-based *index*, rounded half up."""
    if index < 0 or total_steps <= 0:
        return 0
    return math.floor((index + 1) / total_steps * 100 + 0.5)


def compute_progress(
    variant: str | None,
    status: str,
    *,
    deviated_from: str | None = None,
    strict: bool = False,
) -> Progress:
    """Derive step counts and percent complete for a request.

    ``current_step`` is 0 and ``percent`` is 0 when *status* is not part
    of the resolved flow.
    """
    flow = resolve_flow(variant, status, deviated_from=deviated_from, strict=strict)
    index = flow.index(status) if status in flow else -1
    return Progress(
        current_step=index + 1,
        total_steps=len(flow),
        percent=percent_complete(index, len(flow)),
        is_terminal=is_terminal(status),
    )
