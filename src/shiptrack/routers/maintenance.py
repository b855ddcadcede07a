from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from shiptrack.auth import verify_cron
from shiptrack.tasks import maintenance

router = APIRouter(dependencies=[Depends(verify_cron)])


def _report(message: str, affected: int) -> dict:
    return {
        "success": True,
        "message": message,
        "affected": affected,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/self-heal")
async def self_heal():
    """Advance shipments stuck in PENDING."""
    return _report("Self-heal cycle completed.", await maintenance.run_self_heal())


@router.get("/retry-notifications")
async def retry_notifications():
    """Re-drive the notification retry queue."""
    return _report("Notification retry queue processed.", await maintenance.run_retry_cycle())


@router.get("/prune")
async def prune():
    """Delete shipments older than the retention window."""
    return _report("Database maintenance completed.", await maintenance.run_prune_cycle())


@router.get("/advance")
async def advance():
    """Apply due out-for-delivery and delivery transitions."""
    return _report("Scheduled status updates applied.", await maintenance.run_advance_cycle())


@router.get("/daily-report")
async def daily_report():
    """Send the daily operations summary to the admin phone."""
    return _report("Daily report processed.", await maintenance.run_daily_report())
