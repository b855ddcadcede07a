import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from shiptrack.config import settings
from shiptrack.tasks.maintenance import (
    run_advance_cycle,
    run_daily_report,
    run_prune_cycle,
    run_retry_cycle,
    run_self_heal,
)

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def self_heal_job():
    """Job to move stale PENDING shipments to IN_TRANSIT."""
    try:
        await run_self_heal()
    except Exception as e:
        logger.error(f"Self-heal failed: {e}")


async def advance_job():
    """Job to move shipments along their delivery schedule."""
    try:
        await run_advance_cycle()
    except Exception as e:
        logger.error(f"Scheduled advance failed: {e}")


async def retry_notifications_job():
    """Job to retry queued notifications."""
    try:
        await run_retry_cycle()
    except Exception as e:
        logger.error(f"Notification retry failed: {e}")


async def prune_job():
    """Job to delete shipments past the retention window."""
    try:
        await run_prune_cycle()
    except Exception as e:
        logger.error(f"Pruning failed: {e}")


async def daily_report_job():
    try:
        await run_daily_report()
    except Exception as e:
        logger.error(f"Daily report failed: {e}")


def start_scheduler():
    """Start the background scheduler."""
    jobs = [
        (self_heal_job, IntervalTrigger(minutes=settings.self_heal_interval_minutes), "self_heal",
         "Advance stale pending shipments"),
        (advance_job, IntervalTrigger(minutes=settings.pulse_interval_minutes), "advance",
         "Advance scheduled deliveries"),
        (retry_notifications_job, IntervalTrigger(minutes=settings.retry_interval_minutes), "retry_notifications",
         "Retry queued notifications"),
        (prune_job, CronTrigger(hour=settings.prune_hour, minute=0), "prune", "Prune old shipments"),
        (daily_report_job, CronTrigger(hour=settings.report_hour, minute=0), "daily_report", "Daily stats report"),
    ]
    for func, trigger, job_id, name in jobs:
        scheduler.add_job(
            func,
            trigger=trigger,
            id=job_id,
            name=name,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
    scheduler.start()
    logger.info("Scheduler started")


def shutdown_scheduler():
    """Shutdown the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
    logger.info("Scheduler shutdown")
