"""Tests for the SQLite tracking store."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from aft_tracker.status.models import AuditKind
from aft_tracker.status.store import StoreError, TrackingStore

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _insert_request(store: TrackingStore, number: str, *, requestor_id: int = 1, at=T0, **kwargs) -> int:
    with store.transaction() as txn:
        return txn.insert_request(
            request_number=number,
            requestor_id=requestor_id,
            variant=kwargs.pop("variant", "standard"),
            status=kwargs.pop("status", "draft"),
            at=at,
            **kwargs,
        )


class TestSchema:
    def test_creates_database_and_parent_dirs(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "aft.db"
        TrackingStore(db_path)
        assert db_path.exists()

    def test_reopening_is_idempotent(self, tmp_path):
        db_path = tmp_path / "aft.db"
        store = TrackingStore(db_path)
        request_id = _insert_request(store, "AFT-1")
        reopened = TrackingStore(db_path)
        assert reopened.get_request(request_id) is not None


class TestRequests:
    def test_get_missing_request(self, store):
        assert store.get_request(999999) is None

    def test_round_trip(self, store):
        request_id = _insert_request(
            store, "AFT-1", requestor_name="Dana Reyes", classification="SECRET", assignee_id=4
        )
        request = store.get_request(request_id)
        assert request.request_number == "AFT-1"
        assert request.status == "draft"
        assert request.variant == "standard"
        assert request.classification == "SECRET"
        assert request.assignee_id == 4
        assert request.created_at == T0
        assert request.approved_at is None

    def test_duplicate_request_number(self, store):
        _insert_request(store, "AFT-1")
        with pytest.raises(StoreError, match="AFT-1"):
            _insert_request(store, "AFT-1")

    def test_update_request_bumps_updated_at(self, store, clock):
        request_id = _insert_request(store, "AFT-1")
        clock.advance(hours=6)
        store.update_request(request_id, {"classification": "CUI", "assignee_id": 9})
        request = store.get_request(request_id)
        assert request.classification == "CUI"
        assert request.assignee_id == 9
        assert request.created_at == T0
        assert request.updated_at == clock.now

    def test_update_request_refuses_status(self, store):
        request_id = _insert_request(store, "AFT-1")
        with pytest.raises(StoreError, match="status"):
            store.update_request(request_id, {"status": "approved"})
        assert store.get_request(request_id).status == "draft"

    def test_update_missing_request(self, store):
        with pytest.raises(StoreError, match="not found"):
            store.update_request(42, {"classification": "CUI"})

    def test_transaction_rolls_back_on_error(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction() as txn:
                txn.insert_request(
                    request_number="AFT-1", requestor_id=1, variant="standard", status="draft", at=T0
                )
                raise RuntimeError("boom")
        assert store.list_requests() == []

    def test_set_status_is_compare_and_set(self, store):
        request_id = _insert_request(store, "AFT-1")
        with store.transaction() as txn:
            assert txn.set_status(request_id, "submitted", expected_status="draft", at=T0)
        with store.transaction() as txn:
            assert not txn.set_status(request_id, "cancelled", expected_status="draft", at=T0)
        assert store.get_request(request_id).status == "submitted"

    def test_set_status_rejects_unknown_stamp_column(self, store):
        request_id = _insert_request(store, "AFT-1")
        with pytest.raises(StoreError):
            with store.transaction() as txn:
                txn.set_status(
                    request_id, "approved", expected_status="draft", at=T0, extra={"status": T0}
                )
        assert store.get_request(request_id).status == "draft"


class TestListRequests:
    def test_filters_and_orders_by_updated_at(self, store):
        first = _insert_request(store, "AFT-1", requestor_id=1, at=T0)
        second = _insert_request(store, "AFT-2", requestor_id=2, at=T0 + timedelta(hours=1))
        third = _insert_request(store, "AFT-3", requestor_id=1, at=T0 + timedelta(hours=2), status="submitted")

        assert [row["id"] for row in store.list_requests()] == [third, second, first]
        assert [row["id"] for row in store.list_requests(requestor_id=1)] == [third, first]
        assert [row["id"] for row in store.list_requests(status="draft")] == [second, first]

    def test_pagination(self, store):
        ids = [_insert_request(store, f"AFT-{n}", at=T0 + timedelta(minutes=n)) for n in range(5)]
        newest_first = list(reversed(ids))
        assert [row["id"] for row in store.list_requests(limit=2)] == newest_first[:2]
        assert [row["id"] for row in store.list_requests(limit=2, offset=2)] == newest_first[2:4]
        assert [row["id"] for row in store.list_requests(offset=3)] == newest_first[3:]

    def test_audit_aggregates(self, store):
        request_id = _insert_request(store, "AFT-1")
        store.insert_audit(
            request_id=request_id, actor_id=1, kind=AuditKind.CREATED, action="request_created",
            new_status="draft", at=T0,
        )
        store.insert_audit(
            request_id=request_id, actor_id=1, kind=AuditKind.ACTIVITY, action="scan_recorded",
            at=T0 + timedelta(hours=3),
        )
        (row,) = store.list_requests()
        assert row["audit_count"] == 2
        assert row["last_activity"].startswith("2026-03-02T12:00:00")

    def test_deviated_from_is_source_of_latest_entry_into_status(self, store):
        request_id = _insert_request(store, "AFT-1", status="rejected")
        store.insert_audit(
            request_id=request_id, actor_id=1, kind=AuditKind.STATUS_CHANGE, action="status_change",
            old_status="submitted", new_status="rejected", at=T0,
        )
        store.insert_audit(
            request_id=request_id, actor_id=1, kind=AuditKind.STATUS_CHANGE, action="status_change",
            old_status="pending_dao", new_status="rejected", at=T0 + timedelta(hours=1),
        )
        (row,) = store.list_requests()
        assert row["deviated_from"] == "pending_dao"

    def test_count_by_status(self, store):
        _insert_request(store, "AFT-1")
        _insert_request(store, "AFT-2")
        _insert_request(store, "AFT-3", status="approved")
        assert store.count_by_status() == {"draft": 2, "approved": 1}


class TestAuditLog:
    def test_entries_ordered_by_time_then_id(self, store):
        request_id = _insert_request(store, "AFT-1")
        late = store.insert_audit(
            request_id=request_id, actor_id=1, kind=AuditKind.ACTIVITY, action="late",
            at=T0 + timedelta(hours=2),
        )
        early = store.insert_audit(
            request_id=request_id, actor_id=1, kind=AuditKind.ACTIVITY, action="early", at=T0,
        )
        tie = store.insert_audit(
            request_id=request_id, actor_id=1, kind=AuditKind.ACTIVITY, action="tie", at=T0,
        )
        assert [entry.id for entry in store.list_audit(request_id)] == [early.id, tie.id, late.id]

    def test_changes_round_trip_as_mapping(self, store):
        request_id = _insert_request(store, "AFT-1")
        entry = store.insert_audit(
            request_id=request_id, actor_id=1, kind=AuditKind.ACTIVITY, action="drive_issued",
            changes={"drive": "USB-0042", "count": 2}, notes="issued at desk", at=T0,
        )
        assert entry.changes == {"drive": "USB-0042", "count": 2}
        assert entry.notes == "issued at desk"
        assert entry.kind == AuditKind.ACTIVITY
        assert entry.is_transition is False

    def test_actor_name_joined_when_known(self, store):
        actor_id = store.add_actor("Sam", "Okafor", "dao")
        request_id = _insert_request(store, "AFT-1")
        known = store.insert_audit(
            request_id=request_id, actor_id=actor_id, kind=AuditKind.ACTIVITY, action="a", at=T0,
        )
        unknown = store.insert_audit(
            request_id=request_id, actor_id=777, kind=AuditKind.ACTIVITY, action="b", at=T0,
        )
        assert (known.actor_name, known.actor_role) == ("Sam Okafor", "dao")
        assert unknown.actor_name is None

    def test_audit_requires_existing_request(self, store):
        with pytest.raises(sqlite3.IntegrityError):
            store.insert_audit(
                request_id=404, actor_id=1, kind=AuditKind.ACTIVITY, action="orphan", at=T0,
            )


class TestActors:
    def test_display_name(self, store):
        actor_id = store.add_actor("Lee", "Park")
        assert store.display_name(actor_id) == "Lee Park"
        assert store.display_name(999) is None


class TestCorruptRows:
    def _corrupt(self, store, sql: str, *params) -> None:
        conn = sqlite3.connect(store.db_path)
        try:
            conn.execute(sql, params)
            conn.commit()
        finally:
            conn.close()

    def test_unreadable_request_timestamp_is_reported(self, store):
        request_id = _insert_request(store, "AFT-1")
        self._corrupt(store, "UPDATE requests SET created_at = 'yesterday' WHERE id = ?", request_id)
        with pytest.raises(StoreError, match="created_at"):
            store.get_request(request_id)

    def test_unreadable_audit_timestamp_is_reported(self, store):
        request_id = _insert_request(store, "AFT-1")
        entry = store.insert_audit(
            request_id=request_id, actor_id=1, kind=AuditKind.ACTIVITY, action="a", at=T0,
        )
        self._corrupt(store, "UPDATE audit_log SET created_at = '' WHERE id = ?", entry.id)
        with pytest.raises(StoreError, match="created_at"):
            store.list_audit(request_id)

    def test_unknown_audit_kind_is_reported(self, store):
        request_id = _insert_request(store, "AFT-1")
        entry = store.insert_audit(
            request_id=request_id, actor_id=1, kind=AuditKind.ACTIVITY, action="a", at=T0,
        )
        self._corrupt(store, "UPDATE audit_log SET kind = 'mystery' WHERE id = ?", entry.id)
        with pytest.raises(StoreError):
            store.get_audit(entry.id)


class TestActorClock:
    def test_actor_created_at_uses_store_clock(self, store, clock):
        actor_id = store.add_actor("Lee", "Park")
        conn = sqlite3.connect(store.db_path)
        try:
            (created_at,) = conn.execute(
                "SELECT created_at FROM actors WHERE id = ?", (actor_id,)
            ).fetchone()
        finally:
            conn.close()
        assert created_at == clock.now.isoformat(timespec="microseconds")
