"""Tests for the SQLite record store contract."""

import sqlite3
import time
from datetime import datetime, timedelta, timezone

import pytest

from shiptrack.config import settings
from shiptrack.models.notification import QueuedNotification
from shiptrack.models.shipment import OriginMessageRef, Shipment, ShipmentEvent
from shiptrack.storage import database

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _shipment(tracking_id: str = "AWB-TESTAAAAA", **overrides) -> Shipment:
    values = dict(
        tracking_id=tracking_id,
        sender_name="B",
        receiver_name="A",
        receiver_phone="+1555",
        receiver_country="US",
        created_at=T0,
        last_transition_at=T0,
    )
    values.update(overrides)
    return Shipment(**values)


def _event(status: str = "PENDING") -> ShipmentEvent:
    return ShipmentEvent(status=status, location="Origin", timestamp=T0)


class TestShipments:
    def test_create_and_load_roundtrip(self, db) -> None:
        origin = OriginMessageRef(message_id="wamid.1", sender_handle="1555")
        database.create_shipment_with_event(_shipment(origin=origin), _event())

        loaded = database.get_shipment("AWB-TESTAAAAA")

        assert loaded.origin == origin
        assert loaded.created_at == T0
        assert loaded.events == [_event()]

    def test_duplicate_id_raises_conflict_and_writes_nothing(self, db) -> None:
        database.create_shipment_with_event(_shipment(), _event())

        with pytest.raises(database.TrackingIdConflict):
            database.create_shipment_with_event(_shipment(receiver_name="Other"), _event())

        loaded = database.get_shipment("AWB-TESTAAAAA")
        assert loaded.receiver_name == "A"
        assert len(loaded.events) == 1

    def test_half_origin_rejected_by_schema(self, db) -> None:
        with database.get_connection() as conn:
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    """
                    INSERT INTO shipments (tracking_id, status, origin_message_id, created_at, last_transition_at)
                    VALUES ('AWB-HALF', 'PENDING', 'wamid.1', 'x', 'x')
                    """
                )

    def test_conditional_update_requires_expected_status(self, db) -> None:
        database.create_shipment_with_event(_shipment(), _event())

        applied = database.update_shipment_with_event(
            "AWB-TESTAAAAA", expected_status="IN_TRANSIT", new_status="DELIVERED", event=_event("DELIVERED")
        )

        assert not applied
        loaded = database.get_shipment("AWB-TESTAAAAA")
        assert loaded.status == "PENDING"
        assert len(loaded.events) == 1

    def test_archive_update_nulls_party_fields(self, db) -> None:
        database.create_shipment_with_event(_shipment(), _event())

        assert database.update_shipment_with_event(
            "AWB-TESTAAAAA", "PENDING", "DELIVERED", _event("DELIVERED"), archive=True
        )

        loaded = database.get_shipment("AWB-TESTAAAAA")
        assert loaded.is_archived
        assert loaded.receiver_name is None
        assert loaded.receiver_phone is None

    def test_failed_event_insert_rolls_back_status(self, db, monkeypatch) -> None:
        database.create_shipment_with_event(_shipment(), _event())

        def broken(conn, tracking_id, event):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(database, "_insert_event", broken)

        with pytest.raises(database.StoreUnavailable):
            database.update_shipment_with_event("AWB-TESTAAAAA", "PENDING", "IN_TRANSIT", _event("IN_TRANSIT"))

        assert database.get_shipment("AWB-TESTAAAAA").status == "PENDING"

    def test_cascade_delete_removes_queue_entries(self, db) -> None:
        origin = OriginMessageRef(message_id="wamid.1", sender_handle="1555")
        database.create_shipment_with_event(_shipment(origin=origin), _event())
        database.enqueue_notification(
            QueuedNotification(
                tracking_id="AWB-TESTAAAAA", status="IN_TRANSIT", origin=origin, payload="hi", last_attempt_at=T0
            )
        )

        assert database.delete_shipment_cascade("AWB-TESTAAAAA")
        assert database.list_notifications() == []

    def test_list_older_than(self, db) -> None:
        database.create_shipment_with_event(_shipment("AWB-OLD", created_at=T0 - timedelta(days=10)), _event())
        database.create_shipment_with_event(_shipment("AWB-NEW"), _event())

        assert database.list_older_than(T0 - timedelta(days=7)) == ["AWB-OLD"]

    def test_guarded_insert_returns_live_duplicate(self, db) -> None:
        database.create_shipment_with_event(_shipment(), _event())

        existing = database.create_shipment_unless_duplicate(_shipment("AWB-TESTBBBBB"), _event())

        assert existing == "AWB-TESTAAAAA"
        assert database.get_shipment("AWB-TESTBBBBB") is None

    def test_guarded_insert_ignores_archived(self, db) -> None:
        database.create_shipment_with_event(_shipment(), _event())
        database.update_shipment_with_event("AWB-TESTAAAAA", "PENDING", "DELIVERED", _event("DELIVERED"), archive=True)

        assert database.create_shipment_unless_duplicate(_shipment("AWB-TESTBBBBB"), _event()) is None
        assert database.get_shipment("AWB-TESTBBBBB") is not None

    def test_due_for_advance(self, db) -> None:
        due = T0 + timedelta(hours=1)
        database.create_shipment_with_event(
            _shipment("AWB-DUE", status="IN_TRANSIT", out_for_delivery_at=due), _event("IN_TRANSIT")
        )
        database.create_shipment_with_event(
            _shipment("AWB-LATER", status="IN_TRANSIT", out_for_delivery_at=due + timedelta(hours=1)),
            _event("IN_TRANSIT"),
        )
        database.create_shipment_with_event(_shipment("AWB-UNSCHEDULED", status="IN_TRANSIT"), _event("IN_TRANSIT"))

        assert [s.tracking_id for s in database.list_due_for_advance("IN_TRANSIT", due)] == ["AWB-DUE"]
        assert database.list_due_for_advance("OUT_FOR_DELIVERY", due) == []

    def test_daily_stats(self, db) -> None:
        database.create_shipment_with_event(_shipment("AWB-OLD", created_at=T0 - timedelta(days=2)), _event())
        database.create_shipment_with_event(_shipment("AWB-NEW"), _event())
        database.update_shipment_with_event("AWB-NEW", "PENDING", "DELIVERED", _event("DELIVERED"), archive=True)

        assert database.count_daily_stats(T0 - timedelta(hours=24)) == (1, 1)

    def test_locked_store_fails_within_timeout(self, db, monkeypatch) -> None:
        database.create_shipment_with_event(_shipment(), _event())
        monkeypatch.setattr(settings, "db_timeout_seconds", 0.2)

        with database.transaction():
            started = time.monotonic()
            with pytest.raises(database.StoreUnavailable):
                database.update_shipment_with_event("AWB-TESTAAAAA", "PENDING", "IN_TRANSIT", _event("IN_TRANSIT"))
            elapsed = time.monotonic() - started

        assert elapsed < 2
        assert database.get_shipment("AWB-TESTAAAAA").status == "PENDING"

    def test_unreachable_store_raises_store_unavailable(self, tmp_path, monkeypatch) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        monkeypatch.setattr(settings, "data_dir", str(blocker / "nested"))

        with pytest.raises(database.StoreUnavailable):
            database.get_shipment("AWB-TESTAAAAA")


class TestNotificationQueue:
    def test_one_entry_per_tracking_id_and_status(self, db) -> None:
        origin = OriginMessageRef(message_id="wamid.1", sender_handle="1555")
        entry = QueuedNotification(
            tracking_id="AWB-TESTAAAAA", status="IN_TRANSIT", origin=origin, payload="hi", last_attempt_at=T0
        )

        assert database.enqueue_notification(entry)
        assert not database.enqueue_notification(entry)
        assert len(database.list_notifications()) == 1

    def test_record_failed_attempt_is_conditional(self, db) -> None:
        origin = OriginMessageRef(message_id="wamid.1", sender_handle="1555")
        entry = QueuedNotification(
            tracking_id="AWB-TESTAAAAA", status="IN_TRANSIT", origin=origin, payload="hi", last_attempt_at=T0
        )
        database.enqueue_notification(entry)

        assert database.record_failed_attempt(entry)
        assert not database.record_failed_attempt(entry)
        assert database.get_notification("AWB-TESTAAAAA", "IN_TRANSIT").retry_count == 1
