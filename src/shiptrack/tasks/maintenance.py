"""Time-driven maintenance entry points.

Each cycle is independent and idempotent, and may overlap with itself; the
conditional writes in the lifecycle and notification services keep
overlapping runs from applying a transition or sending a message twice.
"""

import logging
from datetime import datetime

from shiptrack.services import lifecycle, notifications

logger = logging.getLogger(__name__)


async def run_self_heal(now: datetime | None = None) -> int:
    """Advance shipments that have sat in PENDING past the intake window."""
    healed = await lifecycle.self_heal(now)
    logger.info(f"Self-heal cycle complete: {healed} shipment(s) moved to IN_TRANSIT")
    return healed


async def run_advance_cycle(now: datetime | None = None) -> int:
    """Move shipments whose out-for-delivery or delivery time has passed."""
    advanced = await lifecycle.advance_due(now)
    logger.info(f"Advance cycle complete: {advanced} scheduled transition(s) applied")
    return advanced


async def run_retry_cycle(now: datetime | None = None) -> int:
    """Re-drive the notification queue."""
    touched = await notifications.process_retries(now)
    logger.info(f"Retry cycle complete: {touched} queued notification(s) processed")
    return touched


async def run_prune_cycle(now: datetime | None = None) -> int:
    """Delete shipments older than the retention window."""
    pruned = lifecycle.prune_older_than(now=now)
    logger.info(f"Prune cycle complete: {pruned} shipment(s) deleted")
    return pruned


async def run_daily_report(now: datetime | None = None) -> int:
    """Send the daily operations summary; returns 1 if it went out."""
    return int(await notifications.send_daily_report(now))
