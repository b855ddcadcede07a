import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from shiptrack.config import settings
from shiptrack.models.notification import QueuedNotification
from shiptrack.models.shipment import PARTY_FIELDS, OriginMessageRef, Shipment, ShipmentEvent

SCHEMA = """
CREATE TABLE IF NOT EXISTS shipments (
    tracking_id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    is_archived INTEGER NOT NULL DEFAULT 0,
    sender_name TEXT,
    sender_country TEXT,
    receiver_name TEXT,
    receiver_address TEXT,
    receiver_country TEXT,
    receiver_phone TEXT,
    receiver_email TEXT,
    origin_message_id TEXT,
    origin_sender_handle TEXT,
    created_at TEXT NOT NULL,
    last_transition_at TEXT NOT NULL,
    out_for_delivery_at TEXT,
    expected_delivery_at TEXT,
    CHECK ((origin_message_id IS NULL) = (origin_sender_handle IS NULL))
);
CREATE INDEX IF NOT EXISTS idx_shipments_status_created
    ON shipments (status, created_at);
CREATE INDEX IF NOT EXISTS idx_shipments_manifest
    ON shipments (receiver_phone, receiver_name, sender_name, receiver_country);

CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tracking_id TEXT NOT NULL REFERENCES shipments (tracking_id) ON DELETE CASCADE,
    status TEXT NOT NULL,
    location TEXT NOT NULL,
    notes TEXT,
    timestamp TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_events_tracking_id ON events (tracking_id);

CREATE TABLE IF NOT EXISTS notification_queue (
    tracking_id TEXT NOT NULL,
    status TEXT NOT NULL,
    recipient_handle TEXT NOT NULL,
    reply_to_message_id TEXT NOT NULL,
    payload TEXT NOT NULL,
    retry_count INTEGER NOT NULL DEFAULT 0,
    last_attempt_at TEXT NOT NULL,
    PRIMARY KEY (tracking_id, status)
);
"""

SHIPMENT_COLUMNS = (
    "tracking_id",
    "status",
    "is_archived",
    *PARTY_FIELDS,
    "origin_message_id",
    "origin_sender_handle",
    "created_at",
    "last_transition_at",
    "out_for_delivery_at",
    "expected_delivery_at",
)


class StoreUnavailable(Exception):
    """The record store could not be reached or stayed locked past the timeout."""


class TrackingIdConflict(Exception):
    """A shipment with the same tracking id already exists."""


def get_db_path() -> Path:
    return Path(settings.data_dir) / "shiptrack.db"


def init_db() -> None:
    """Initialize database with required tables."""
    with get_connection() as conn:
        conn.executescript(SCHEMA)


@contextmanager
def get_connection():
    """Get a database connection.

    Connections run in autocommit mode; multi-statement writes go through
    `transaction()`. Operational failures surface as `StoreUnavailable`.
    """
    db_path = get_db_path()
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(db_path, timeout=settings.db_timeout_seconds, isolation_level=None)
    except (OSError, sqlite3.Error) as e:
        raise StoreUnavailable(str(e)) from e
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        yield conn
    except sqlite3.IntegrityError:
        raise
    except sqlite3.DatabaseError as e:
        raise StoreUnavailable(str(e)) from e
    finally:
        conn.close()


@contextmanager
def transaction():
    """Run the enclosed statements as one atomic write.

    BEGIN IMMEDIATE takes the write lock up front, so concurrent writers from
    other connections wait (up to the busy timeout) instead of interleaving.
    """
    with get_connection() as conn:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")


def ping() -> None:
    with get_connection() as conn:
        conn.execute("SELECT 1").fetchone()


def _ts(value: datetime) -> str:
    # Fixed-width UTC timestamps keep string comparison in SQL chronological
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value is not None else None


def _row_to_shipment(row: sqlite3.Row, events: list[ShipmentEvent] | None = None) -> Shipment:
    origin = None
    if row["origin_message_id"] is not None:
        origin = OriginMessageRef(
            message_id=row["origin_message_id"],
            sender_handle=row["origin_sender_handle"],
        )
    return Shipment(
        tracking_id=row["tracking_id"],
        status=row["status"],
        is_archived=bool(row["is_archived"]),
        origin=origin,
        created_at=datetime.fromisoformat(row["created_at"]),
        last_transition_at=datetime.fromisoformat(row["last_transition_at"]),
        out_for_delivery_at=_parse_ts(row["out_for_delivery_at"]),
        expected_delivery_at=_parse_ts(row["expected_delivery_at"]),
        events=events or [],
        **{field: row[field] for field in PARTY_FIELDS},
    )


def _row_to_event(row: sqlite3.Row) -> ShipmentEvent:
    return ShipmentEvent(
        status=row["status"],
        location=row["location"],
        notes=row["notes"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
    )


def _insert_event(conn: sqlite3.Connection, tracking_id: str, event: ShipmentEvent) -> None:
    conn.execute(
        "INSERT INTO events (tracking_id, status, location, notes, timestamp) VALUES (?, ?, ?, ?, ?)",
        (tracking_id, event.status, event.location, event.notes, _ts(event.timestamp)),
    )


def _delete_cascade(conn: sqlite3.Connection, tracking_id: str) -> bool:
    conn.execute("DELETE FROM events WHERE tracking_id = ?", (tracking_id,))
    conn.execute("DELETE FROM notification_queue WHERE tracking_id = ?", (tracking_id,))
    cursor = conn.execute("DELETE FROM shipments WHERE tracking_id = ?", (tracking_id,))
    return cursor.rowcount > 0


# Shipments


def get_shipment(tracking_id: str) -> Shipment | None:
    """Load a shipment with its full event log."""
    with get_connection() as conn:
        row = conn.execute("SELECT * FROM shipments WHERE tracking_id = ?", (tracking_id,)).fetchone()
        if row is None:
            return None
        event_rows = conn.execute(
            "SELECT * FROM events WHERE tracking_id = ? ORDER BY id", (tracking_id,)
        ).fetchall()
        return _row_to_shipment(row, [_row_to_event(r) for r in event_rows])


def list_shipments() -> list[Shipment]:
    """Load all shipments, newest first, without their event logs."""
    with get_connection() as conn:
        rows = conn.execute("SELECT * FROM shipments ORDER BY created_at DESC").fetchall()
        return [_row_to_shipment(row) for row in rows]


def count_by_status() -> dict[str, int]:
    with get_connection() as conn:
        rows = conn.execute("SELECT status, COUNT(*) AS n FROM shipments GROUP BY status").fetchall()
        return {row["status"]: row["n"] for row in rows}


def _insert_shipment(conn: sqlite3.Connection, shipment: Shipment, event: ShipmentEvent) -> None:
    origin = shipment.origin
    values = {
        "tracking_id": shipment.tracking_id,
        "status": shipment.status,
        "is_archived": int(shipment.is_archived),
        **{field: getattr(shipment, field) for field in PARTY_FIELDS},
        "origin_message_id": origin.message_id if origin else None,
        "origin_sender_handle": origin.sender_handle if origin else None,
        "created_at": _ts(shipment.created_at),
        "last_transition_at": _ts(shipment.last_transition_at),
        "out_for_delivery_at": _ts(shipment.out_for_delivery_at) if shipment.out_for_delivery_at else None,
        "expected_delivery_at": _ts(shipment.expected_delivery_at) if shipment.expected_delivery_at else None,
    }
    placeholders = ", ".join("?" for _ in SHIPMENT_COLUMNS)
    conn.execute(
        f"INSERT INTO shipments ({', '.join(SHIPMENT_COLUMNS)}) VALUES ({placeholders})",
        tuple(values[column] for column in SHIPMENT_COLUMNS),
    )
    _insert_event(conn, shipment.tracking_id, event)


def create_shipment_with_event(shipment: Shipment, event: ShipmentEvent) -> None:
    """Insert a shipment together with its first event."""
    try:
        with transaction() as conn:
            _insert_shipment(conn, shipment, event)
    except sqlite3.IntegrityError as e:
        raise TrackingIdConflict(shipment.tracking_id) from e


def create_shipment_unless_duplicate(shipment: Shipment, event: ShipmentEvent) -> str | None:
    """Insert a shipment unless a live one with the same manifest exists.

    The duplicate lookup and the insert share one write transaction, so two
    concurrent deliveries of the same manifest create exactly one shipment.
    Returns the existing tracking id, or None if the shipment was inserted.
    """
    try:
        with transaction() as conn:
            existing = _find_exact(
                conn, shipment.receiver_phone, shipment.receiver_name, shipment.sender_name, shipment.receiver_country
            )
            if existing is not None:
                return existing
            _insert_shipment(conn, shipment, event)
    except sqlite3.IntegrityError as e:
        raise TrackingIdConflict(shipment.tracking_id) from e
    return None


def update_shipment_with_event(
    tracking_id: str,
    expected_status: str,
    new_status: str,
    event: ShipmentEvent,
    archive: bool = False,
) -> bool:
    """Move a shipment from `expected_status` to `new_status` and log the event.

    Nothing is written unless the stored status still equals `expected_status`;
    returns False in that case. With `archive`, the party fields are nulled in
    the same write.
    """
    assignments = ["status = ?", "last_transition_at = ?"]
    if archive:
        assignments.append("is_archived = 1")
        assignments.extend(f"{field} = NULL" for field in PARTY_FIELDS)

    with transaction() as conn:
        cursor = conn.execute(
            f"UPDATE shipments SET {', '.join(assignments)} WHERE tracking_id = ? AND status = ?",
            (new_status, _ts(event.timestamp), tracking_id, expected_status),
        )
        if cursor.rowcount == 0:
            return False
        _insert_event(conn, tracking_id, event)
    return True


def delete_shipment_cascade(tracking_id: str) -> bool:
    """Delete a shipment, its events and its queued notifications."""
    with transaction() as conn:
        return _delete_cascade(conn, tracking_id)


def delete_archived() -> int:
    """Delete every archived shipment with its events and queued notifications."""
    archived = "SELECT tracking_id FROM shipments WHERE is_archived = 1"
    with transaction() as conn:
        conn.execute(f"DELETE FROM events WHERE tracking_id IN ({archived})")
        conn.execute(f"DELETE FROM notification_queue WHERE tracking_id IN ({archived})")
        cursor = conn.execute("DELETE FROM shipments WHERE is_archived = 1")
        return cursor.rowcount


def _find_exact(conn: sqlite3.Connection, *key: str | None) -> str | None:
    row = conn.execute(
        """
        SELECT tracking_id FROM shipments
        WHERE receiver_phone = ? AND receiver_name = ? AND sender_name = ? AND receiver_country = ?
          AND is_archived = 0
        ORDER BY created_at
        LIMIT 1
        """,
        key,
    ).fetchone()
    return row["tracking_id"] if row else None


def find_exact(receiver_phone: str, receiver_name: str, sender_name: str, receiver_country: str) -> str | None:
    """Return the tracking id of a live shipment matching all four fields literally."""
    with get_connection() as conn:
        return _find_exact(conn, receiver_phone, receiver_name, sender_name, receiver_country)


def list_older_than(cutoff: datetime) -> list[str]:
    """Tracking ids of shipments created before `cutoff`, whatever their status."""
    with get_connection() as conn:
        rows = conn.execute(
            "SELECT tracking_id FROM shipments WHERE created_at < ? ORDER BY created_at", (_ts(cutoff),)
        ).fetchall()
        return [row["tracking_id"] for row in rows]


def list_pending_created_before(cutoff: datetime) -> list[Shipment]:
    """PENDING shipments created before `cutoff`, without their event logs."""
    with get_connection() as conn:
        rows = conn.execute(
            "SELECT * FROM shipments WHERE status = 'PENDING' AND created_at < ? ORDER BY created_at",
            (_ts(cutoff),),
        ).fetchall()
        return [_row_to_shipment(row) for row in rows]


DUE_COLUMNS = {
    "IN_TRANSIT": "out_for_delivery_at",
    "OUT_FOR_DELIVERY": "expected_delivery_at",
}


def list_due_for_advance(status: str, now: datetime) -> list[Shipment]:
    """Shipments in `status` whose scheduled time for the next stage has passed."""
    column = DUE_COLUMNS[status]
    with get_connection() as conn:
        rows = conn.execute(
            f"SELECT * FROM shipments WHERE status = ? AND {column} <= ? ORDER BY {column}",
            (status, _ts(now)),
        ).fetchall()
        return [_row_to_shipment(row) for row in rows]


def count_daily_stats(since: datetime) -> tuple[int, int]:
    """Shipments created, and shipments delivered, since `since`."""
    with get_connection() as conn:
        created = conn.execute("SELECT COUNT(*) FROM shipments WHERE created_at >= ?", (_ts(since),)).fetchone()[0]
        delivered = conn.execute(
            "SELECT COUNT(*) FROM shipments WHERE status = 'DELIVERED' AND last_transition_at >= ?",
            (_ts(since),),
        ).fetchone()[0]
        return created, delivered


# Notification queue


def _row_to_notification(row: sqlite3.Row) -> QueuedNotification:
    return QueuedNotification(
        tracking_id=row["tracking_id"],
        status=row["status"],
        origin=OriginMessageRef(
            message_id=row["reply_to_message_id"],
            sender_handle=row["recipient_handle"],
        ),
        payload=row["payload"],
        retry_count=row["retry_count"],
        last_attempt_at=datetime.fromisoformat(row["last_attempt_at"]),
    )


def enqueue_notification(notification: QueuedNotification) -> bool:
    """Queue a notification; returns False if one is already queued for the same key."""
    with transaction() as conn:
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO notification_queue
                (tracking_id, status, recipient_handle, reply_to_message_id, payload, retry_count, last_attempt_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                notification.tracking_id,
                notification.status,
                notification.origin.sender_handle,
                notification.origin.message_id,
                notification.payload,
                notification.retry_count,
                _ts(notification.last_attempt_at),
            ),
        )
        return cursor.rowcount > 0


def get_notification(tracking_id: str, status: str) -> QueuedNotification | None:
    with get_connection() as conn:
        row = conn.execute(
            "SELECT * FROM notification_queue WHERE tracking_id = ? AND status = ?", (tracking_id, status)
        ).fetchone()
        return _row_to_notification(row) if row else None


def list_notifications() -> list[QueuedNotification]:
    with get_connection() as conn:
        rows = conn.execute("SELECT * FROM notification_queue ORDER BY last_attempt_at").fetchall()
        return [_row_to_notification(row) for row in rows]


def load_due_notifications(cutoff: datetime, max_retries: int) -> list[QueuedNotification]:
    """Entries last attempted before `cutoff` that still have retries left."""
    with get_connection() as conn:
        rows = conn.execute(
            """
            SELECT * FROM notification_queue
            WHERE retry_count < ? AND last_attempt_at < ?
            ORDER BY last_attempt_at
            """,
            (max_retries, _ts(cutoff)),
        ).fetchall()
        return [_row_to_notification(row) for row in rows]


def claim_notification(notification: QueuedNotification, attempt_at: datetime) -> bool:
    """Stamp a new attempt on an entry, only if nobody else touched it since it was read."""
    with transaction() as conn:
        cursor = conn.execute(
            """
            UPDATE notification_queue SET last_attempt_at = ?
            WHERE tracking_id = ? AND status = ? AND retry_count = ? AND last_attempt_at = ?
            """,
            (
                _ts(attempt_at),
                notification.tracking_id,
                notification.status,
                notification.retry_count,
                _ts(notification.last_attempt_at),
            ),
        )
        return cursor.rowcount > 0


def record_failed_attempt(notification: QueuedNotification) -> bool:
    with transaction() as conn:
        cursor = conn.execute(
            """
            UPDATE notification_queue SET retry_count = retry_count + 1
            WHERE tracking_id = ? AND status = ? AND retry_count = ?
            """,
            (notification.tracking_id, notification.status, notification.retry_count),
        )
        return cursor.rowcount > 0


def delete_notification(tracking_id: str, status: str) -> bool:
    with transaction() as conn:
        cursor = conn.execute(
            "DELETE FROM notification_queue WHERE tracking_id = ? AND status = ?", (tracking_id, status)
        )
        return cursor.rowcount > 0


def delete_exhausted_notifications(max_retries: int) -> int:
    """Drop entries that used up their retries."""
    with transaction() as conn:
        cursor = conn.execute("DELETE FROM notification_queue WHERE retry_count >= ?", (max_retries,))
        return cursor.rowcount
