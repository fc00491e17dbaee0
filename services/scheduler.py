#Description: Background scheduler running the price snapshot refresh periodically.
from apscheduler.schedulers.background import BackgroundScheduler

from utils.logging import logger
from utils.config import settings
from models.db import init_db
from services.price_snapshots import PriceSnapshotService

_scheduler: BackgroundScheduler | None = None

def snapshot_job():
    try:
        report = PriceSnapshotService.instance().refresh()
        logger.info(f"Snapshot refresh: {report.refreshed} refreshed, {report.failed} failed in {report.elapsed_ms}ms")
    except Exception as e:
        logger.exception(f"Snapshot job failed: {e}")

def start_scheduler():
    """Process entry point: creates any missing tables, then schedules the snapshot refresh."""
    global _scheduler
    if _scheduler:
        return _scheduler
    init_db()
    _scheduler = BackgroundScheduler(timezone="UTC")
    _scheduler.add_job(snapshot_job, "interval", seconds=settings.SNAPSHOT_INTERVAL_SECONDS, id="snapshot_job", max_instances=1, coalesce=True)
    _scheduler.start()
    logger.info("Scheduler started.")
    return _scheduler

def get_scheduler():
    return _scheduler

def stop_scheduler():
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped.")
    _scheduler = None
