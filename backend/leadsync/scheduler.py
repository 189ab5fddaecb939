"""APScheduler configuration for the periodic sheet sync."""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
import logging

from leadsync.config import settings
from leadsync.services.sync_orchestrator import sync_orchestrator

logger = logging.getLogger(__name__)

# Create scheduler instance
scheduler = AsyncIOScheduler()

SYNC_JOB_ID = 'leads_sheet_sync'


async def run_scheduled_sync():
    """
    Sync every tenant that has a sheet URL.
    Called by APScheduler; paused or busy tenants are skipped.
    """
    logger.info("Running scheduled lead sync...")
    try:
        counts = await sync_orchestrator.sync_all_tenants()
        logger.info(f"Scheduled lead sync done: {counts}")
    except Exception as e:
        logger.error(f"Error in scheduled lead sync: {e}")


def start_scheduler():
    """
    Initialize and start the APScheduler.

    Jobs:
    - Lead sheet sync: LEADS_SYNC_CRON (every 10 minutes by default)
    """
    if scheduler.running:
        logger.info("Scheduler already running")
        return

    scheduler.add_job(
        run_scheduled_sync,
        trigger=CronTrigger.from_crontab(settings.LEADS_SYNC_CRON),
        id=SYNC_JOB_ID,
        name='Lead Sheet Sync',
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )
    logger.info(f"Scheduled: Lead Sheet Sync ({settings.LEADS_SYNC_CRON})")

    scheduler.start()
    logger.info("APScheduler started")

    for job in scheduler.get_jobs():
        logger.info(f"   • {job.name}: Next run at {job.next_run_time}")


def stop_scheduler():
    """Stop the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
