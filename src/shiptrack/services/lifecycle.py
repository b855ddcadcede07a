"""Shipment lifecycle: creation, status transitions, self-healing and deletion.

Every state change is a single conditional write in the record store: the
update only applies if the stored status still equals the status this process
read. That is the only mutual exclusion; there are no in-process locks, so the
functions here are safe to call concurrently from requests, scheduler jobs
and cron triggers.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel

from shiptrack.config import settings
from shiptrack.models.shipment import Manifest, OriginMessageRef, Shipment, ShipmentEvent
from shiptrack.services import dedup, notifications
from shiptrack.services.schedule import calculate_schedule
from shiptrack.storage import database

logger = logging.getLogger(__name__)

# No 0/O or 1/I, so ids survive being read aloud or retyped
TRACKING_ID_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
MAX_ID_ATTEMPTS = 5
MAX_WRITE_ATTEMPTS = 3

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "PENDING": frozenset({"IN_TRANSIT", "OUT_FOR_DELIVERY", "DELIVERED", "CANCELED"}),
    "IN_TRANSIT": frozenset({"OUT_FOR_DELIVERY", "DELIVERED", "CANCELED"}),
    "OUT_FOR_DELIVERY": frozenset({"DELIVERED", "CANCELED"}),
    "DELIVERED": frozenset(),
    "CANCELED": frozenset(),
}

AUTO_INTAKE_NOTES = "Automatic status sync: Package in transit"

# Scheduled stages: (from, to, event location when the record has none, notes)
AUTO_ADVANCE_STAGES = (
    ("IN_TRANSIT", "OUT_FOR_DELIVERY", "Destination Hub", "Automatic status sync: Out for delivery"),
    ("OUT_FOR_DELIVERY", "DELIVERED", "Destination", "Automatic status sync: Delivered"),
)


class Outcome(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"


class IntakeResult(BaseModel):
    tracking_id: str
    duplicate: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current: str, new: str) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


def generate_tracking_id() -> str:
    """Generate a tracking id such as AWB-K7QX3M9PA."""
    body = "".join(secrets.choice(TRACKING_ID_ALPHABET) for _ in range(settings.tracking_id_length))
    return f"{settings.tracking_id_prefix}-{body}"


def _intake_location(manifest: Manifest) -> str:
    return manifest.sender_country or "Origin Center"


def _new_shipment(
    manifest: Manifest, origin: OriginMessageRef | None, status: str, now: datetime
) -> tuple[Shipment, ShipmentEvent]:
    schedule = calculate_schedule(now, manifest.sender_country)
    shipment = Shipment(
        tracking_id=generate_tracking_id(),
        status=status,
        origin=origin,
        created_at=now,
        last_transition_at=now,
        out_for_delivery_at=schedule.out_for_delivery_at,
        expected_delivery_at=schedule.delivery_at,
        **manifest.model_dump(),
    )
    event = ShipmentEvent(status=status, location=_intake_location(manifest), timestamp=now, notes="Shipment created")
    return shipment, event


def _store_new(
    manifest: Manifest,
    origin: OriginMessageRef | None,
    status: str,
    now: datetime,
    check_duplicates: bool,
) -> IntakeResult:
    for attempt in range(1, MAX_ID_ATTEMPTS + 1):
        shipment, event = _new_shipment(manifest, origin, status, now)
        try:
            if check_duplicates:
                existing = dedup.create_unless_duplicate(shipment, event)
                if existing is not None:
                    return IntakeResult(tracking_id=existing, duplicate=True)
            else:
                database.create_shipment_with_event(shipment, event)
        except database.TrackingIdConflict:
            logger.warning(f"Tracking id {shipment.tracking_id} already taken (attempt {attempt}), regenerating")
            continue
        logger.info(f"Created shipment {shipment.tracking_id} in {status}")
        return IntakeResult(tracking_id=shipment.tracking_id)

    raise database.TrackingIdConflict(f"No free tracking id after {MAX_ID_ATTEMPTS} attempts")


def create(
    manifest: Manifest,
    origin: OriginMessageRef | None = None,
    *,
    operator: bool = False,
    now: datetime | None = None,
) -> str:
    """Create a shipment and its first event in one write; returns the tracking id.

    Operator-created shipments skip intake and start IN_TRANSIT. A tracking id
    collision is resolved by drawing a new id. The delivery schedule is fixed
    at creation from the sender country's business hours.
    """
    status = "IN_TRANSIT" if operator else "PENDING"
    return _store_new(manifest, origin, status, now or _utcnow(), check_duplicates=False).tracking_id


def ingest(manifest: Manifest, origin: OriginMessageRef | None = None, now: datetime | None = None) -> IntakeResult:
    """Create a shipment from a bot manifest unless it duplicates a live one."""
    existing = dedup.find_duplicate(manifest)
    if existing:
        logger.info(f"Manifest matches existing shipment {existing}")
        return IntakeResult(tracking_id=existing, duplicate=True)

    result = _store_new(manifest, origin, "PENDING", now or _utcnow(), check_duplicates=True)
    if result.duplicate:
        logger.info(f"Manifest matches concurrently created shipment {result.tracking_id}")
    return result


def get_tracking(tracking_id: str) -> Shipment | None:
    return database.get_shipment(tracking_id)


def dashboard() -> dict:
    """Admin overview: every shipment plus a count per status."""
    counts = database.count_by_status()
    shipments = database.list_shipments()
    return {
        "shipments": shipments,
        "stats": {
            "total": len(shipments),
            "pending": counts.get("PENDING", 0),
            "in_transit": counts.get("IN_TRANSIT", 0),
            "out_for_delivery": counts.get("OUT_FOR_DELIVERY", 0),
            "delivered": counts.get("DELIVERED", 0),
            "canceled": counts.get("CANCELED", 0),
        },
    }


async def transition(
    tracking_id: str,
    new_status: str,
    location: str,
    notes: str | None = None,
    *,
    now: datetime | None = None,
) -> Outcome:
    """Move a shipment to `new_status`, appending an event.

    Moving to DELIVERED archives the shipment and scrubs its party fields in
    the same write. If another writer changes the status between our read and
    our write, the shipment is re-read and the edge re-validated against the
    new status. Store failures propagate; notification failures never do.
    """
    now = now or _utcnow()

    for _ in range(MAX_WRITE_ATTEMPTS):
        shipment = database.get_shipment(tracking_id)
        if shipment is None:
            return Outcome.NOT_FOUND
        if not can_transition(shipment.status, new_status):
            logger.info(f"Rejected transition of {tracking_id}: {shipment.status} -> {new_status}")
            return Outcome.INVALID_TRANSITION

        event = ShipmentEvent(status=new_status, location=location, timestamp=now, notes=notes)
        applied = database.update_shipment_with_event(
            tracking_id,
            expected_status=shipment.status,
            new_status=new_status,
            event=event,
            archive=new_status == "DELIVERED",
        )
        if applied:
            logger.info(f"Shipment {tracking_id}: {shipment.status} -> {new_status}")
            await notifications.notify(shipment.origin, tracking_id, new_status, now=now)
            return Outcome.OK

        logger.info(f"Shipment {tracking_id} changed concurrently, re-reading")

    return Outcome.INVALID_TRANSITION


async def mark_delivered(tracking_id: str, *, now: datetime | None = None) -> Outcome:
    return await transition(tracking_id, "DELIVERED", "Destination", "Delivered to recipient", now=now)


async def cancel(
    tracking_id: str,
    location: str = "Origin",
    notes: str | None = "Shipment canceled",
    *,
    now: datetime | None = None,
) -> Outcome:
    return await transition(tracking_id, "CANCELED", location, notes, now=now)


async def self_heal(now: datetime | None = None) -> int:
    """Move shipments stuck in PENDING past the intake window to IN_TRANSIT.

    Each shipment is updated only if it is still PENDING at write time, and the
    notification goes out only for writes this call actually made, so repeated
    or overlapping runs neither duplicate events nor double-notify. Returns the
    number of shipments moved.
    """
    now = now or _utcnow()
    cutoff = now - timedelta(minutes=settings.intake_window_minutes)
    healed = 0

    for shipment in database.list_pending_created_before(cutoff):
        event = ShipmentEvent(
            status="IN_TRANSIT",
            location=shipment.sender_country or "Origin Center",
            timestamp=now,
            notes=AUTO_INTAKE_NOTES,
        )
        if not database.update_shipment_with_event(
            shipment.tracking_id, expected_status="PENDING", new_status="IN_TRANSIT", event=event
        ):
            continue

        healed += 1
        logger.info(f"Self-heal moved {shipment.tracking_id} to IN_TRANSIT")
        await notifications.notify(shipment.origin, shipment.tracking_id, "IN_TRANSIT", now=now)

    return healed


async def advance_due(now: datetime | None = None) -> int:
    """Move shipments along their delivery schedule.

    IN_TRANSIT shipments past their out-for-delivery time move to
    OUT_FOR_DELIVERY, then OUT_FOR_DELIVERY shipments past their delivery time
    move to DELIVERED, which archives them. Stages run in order, so a shipment
    overdue for both advances twice in one run. Writes are conditional on the
    observed status and only the winning writer notifies. Returns the number of
    transitions applied.
    """
    now = now or _utcnow()
    advanced = 0

    for current, target, default_location, notes in AUTO_ADVANCE_STAGES:
        for shipment in database.list_due_for_advance(current, now):
            event = ShipmentEvent(
                status=target,
                location=shipment.receiver_country or default_location,
                timestamp=now,
                notes=notes,
            )
            if not database.update_shipment_with_event(
                shipment.tracking_id,
                expected_status=current,
                new_status=target,
                event=event,
                archive=target == "DELIVERED",
            ):
                continue

            advanced += 1
            logger.info(f"Scheduled advance moved {shipment.tracking_id} to {target}")
            await notifications.notify(shipment.origin, shipment.tracking_id, target, now=now)

    return advanced


def delete(tracking_id: str) -> Outcome:
    if not database.delete_shipment_cascade(tracking_id):
        return Outcome.NOT_FOUND
    logger.info(f"Deleted shipment {tracking_id}")
    return Outcome.OK


def bulk_delete_archived() -> int:
    deleted = database.delete_archived()
    logger.info(f"Deleted {deleted} archived shipment(s)")
    return deleted


def prune_older_than(window: timedelta | None = None, *, now: datetime | None = None) -> int:
    """Delete shipments created more than `window` ago, regardless of status.

    Each shipment is removed in its own transaction, so an interrupted run
    keeps what it already deleted.
    """
    now = now or _utcnow()
    window = window if window is not None else timedelta(days=settings.retention_days)
    pruned = 0

    for tracking_id in database.list_older_than(now - window):
        if database.delete_shipment_cascade(tracking_id):
            pruned += 1

    return pruned
