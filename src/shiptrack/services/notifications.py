"""Status-change notifications back to the chat a shipment came from.

Delivery is at-least-once with a bounded number of retries. A failed send is
written to the notification queue and re-driven by `process_retries`, which
the maintenance driver runs periodically. The retry policy is a fixed delay
(`retry_backoff_minutes`) with a hard cap (`max_notification_retries`); there
is no exponential growth and no jitter.
"""

import logging
from datetime import datetime, timedelta, timezone

from shiptrack.config import settings
from shiptrack.models.notification import QueuedNotification
from shiptrack.models.shipment import OriginMessageRef
from shiptrack.services import whatsapp
from shiptrack.storage import database

logger = logging.getLogger(__name__)

STATUS_TEMPLATES: dict[str, str] = {
    "IN_TRANSIT": (
        "📦 *Status Update*\n\n"
        "Your package is now in transit!\n\n"
        "Tracking ID: *{tracking_id}*\n"
        "Status: IN_TRANSIT\n\n"
        "You'll receive another update when it's out for delivery."
    ),
    "OUT_FOR_DELIVERY": (
        "🚚 *Out for Delivery*\n\n"
        "Your package is on its way to you!\n\n"
        "Tracking ID: *{tracking_id}*\n"
        "Expected delivery: Today"
    ),
    "DELIVERED": (
        "✅ *Package Delivered*\n\n"
        "Your package has been successfully delivered!\n\n"
        "Tracking ID: *{tracking_id}*\n\n"
        "Thank you for using our service!"
    ),
}


def render(tracking_id: str, status: str) -> str | None:
    """Render the message for a status, or None if the status has no template."""
    template = STATUS_TEMPLATES.get(status)
    if template is None:
        return None
    return template.format(tracking_id=tracking_id)


async def _deliver(origin: OriginMessageRef, text: str) -> bool:
    try:
        return await whatsapp.send_text(origin.sender_handle, origin.message_id, text)
    except Exception as e:
        logger.exception(f"Notification sink raised: {e}")
        return False


async def notify(
    origin: OriginMessageRef | None,
    tracking_id: str,
    status: str,
    now: datetime | None = None,
) -> bool:
    """Tell the originating chat about a status change.

    Returns True if the message was delivered right away. Never raises: a
    failed send is queued for retry, and a failure to queue is only logged.
    """
    if origin is None:
        return False

    message = render(tracking_id, status)
    if message is None:
        return False

    if await _deliver(origin, message):
        logger.info(f"Notification sent for {tracking_id}: {status}")
        return True

    logger.warning(f"Notification for {tracking_id} ({status}) failed, queueing for retry")
    try:
        database.enqueue_notification(
            QueuedNotification(
                tracking_id=tracking_id,
                status=status,
                origin=origin,
                payload=message,
                retry_count=0,
                last_attempt_at=now or datetime.now(timezone.utc),
            )
        )
    except Exception as e:
        logger.error(f"Queueing notification for {tracking_id} failed: {e}")
    return False


async def process_retries(now: datetime | None = None) -> int:
    """Re-attempt queued notifications whose backoff has elapsed.

    Entries that already used all their retries are dropped first. Each due
    entry is claimed with a conditional update before sending, so two
    overlapping runs never send the same entry twice. Returns the number of
    queue entries touched (delivered, failed again or abandoned).
    """
    now = now or datetime.now(timezone.utc)
    max_retries = settings.max_notification_retries

    abandoned = database.delete_exhausted_notifications(max_retries)
    if abandoned:
        logger.warning(f"Abandoned {abandoned} notification(s) after {max_retries} retries")

    cutoff = now - timedelta(minutes=settings.retry_backoff_minutes)
    delivered = 0
    failed = 0

    for entry in database.load_due_notifications(cutoff, max_retries):
        if not database.claim_notification(entry, now):
            # Another run got here first
            continue

        if await _deliver(entry.origin, entry.payload):
            database.delete_notification(entry.tracking_id, entry.status)
            delivered += 1
            logger.info(f"Retried notification delivered for {entry.tracking_id}: {entry.status}")
        else:
            database.record_failed_attempt(entry)
            failed += 1
            logger.warning(
                f"Retry {entry.retry_count + 1}/{max_retries} failed for {entry.tracking_id}: {entry.status}"
            )

    logger.info(f"Notification retries: delivered={delivered} failed={failed} abandoned={abandoned}")
    return delivered + failed + abandoned


DAILY_REPORT_TEMPLATE = (
    "📊 *DAILY REPORT* (Last 24h)\n\n"
    "📦 *New Shipments:* {created}\n"
    "✅ *Delivered:* {delivered}"
)


async def send_daily_report(now: datetime | None = None) -> bool:
    """Send the last 24 hours' created and delivered counts to the admin phone.

    Best effort: the report is not queued for retry. Returns True if it was sent.
    """
    if not settings.admin_phone:
        logger.info("No admin phone configured, skipping daily report")
        return False

    now = now or datetime.now(timezone.utc)
    created, delivered = database.count_daily_stats(now - timedelta(hours=24))
    message = DAILY_REPORT_TEMPLATE.format(created=created, delivered=delivered)

    try:
        sent = await whatsapp.send_text(settings.admin_phone, None, message)
    except Exception as e:
        logger.exception(f"Daily report failed: {e}")
        return False
    if sent:
        logger.info(f"Daily report sent: created={created} delivered={delivered}")
    else:
        logger.warning("Daily report could not be delivered")
    return sent
