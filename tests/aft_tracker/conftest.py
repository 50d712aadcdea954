"""Shared fixtures for the aft_tracker test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Sequence

import pytest

from aft_tracker.status import AuditWriter, TimelineEngine, TrackingStore, TransferRequest

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class ManualClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store(tmp_path: Path, clock: ManualClock) -> TrackingStore:
    return TrackingStore(tmp_path / "aft.db", clock=clock)


@pytest.fixture
def writer(store: TrackingStore, clock: ManualClock) -> AuditWriter:
    return AuditWriter(store, clock=clock)


@pytest.fixture
def engine(store: TrackingStore, clock: ManualClock) -> TimelineEngine:
    return TimelineEngine(store, clock=clock)


@pytest.fixture
def actors(store: TrackingStore) -> dict[str, int]:
    """Actor IDs keyed by role."""
    return {
        "requestor": store.add_actor("Dana", "Reyes", "requestor"),
        "dao": store.add_actor("Sam", "Okafor", "dao"),
        "approver": store.add_actor("Lee", "Park", "approver"),
        "dta": store.add_actor("Jo", "Meyer", "dta"),
    }


@pytest.fixture
def advance_through(
    writer: AuditWriter, clock: ManualClock
) -> Callable[..., None]:
    """Apply a sequence of transitions one hour apart."""

    def _advance(request_id: int, statuses: Sequence[str], actor_id: int, hours: float = 1) -> None:
        for status in statuses:
            clock.advance(hours=hours)
            outcome = writer.transition_status(request_id, actor_id, status)
            assert outcome, f"transition to {status} returned {outcome}"

    return _advance


@pytest.fixture
def draft_request(writer: AuditWriter, actors: dict[str, int]) -> TransferRequest:
    return writer.create_request(
        actors["requestor"],
        variant="standard",
        request_number="AFT-20260302-TEST01",
        requestor_name="Dana Reyes",
    )
