from celery import Celery
from celery.schedules import crontab
import asyncio
import logging
from typing import Optional

from hub_offload.core.config import settings
from hub_offload.core.logging_config import configure_logging
from hub_offload.db.session import SessionLocal
from hub_offload.services.device_registry import DeviceRegistry
from hub_offload.services.pipeline import build_pipeline

configure_logging()
logger = logging.getLogger(__name__)


# Initialize Celery
celery_app = Celery(
    'hub_offload_worker',
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL
)

# Celery configuration
celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone=settings.TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,  # 1 hour max
    worker_concurrency=1,  # one portal session at a time
)

# Celery beat schedule (cron jobs)
celery_app.conf.beat_schedule = {
    'scrape-daily-usage': {
        'task': 'hub_offload.worker.scrape_daily_usage',
        'schedule': crontab(hour=2, minute=0),
    },
    'scrape-tracked-devices': {
        'task': 'hub_offload.worker.scrape_tracked_devices',
        'schedule': crontab(hour=3, minute=0),
    },
}


def run_device_job(nas_id: str, start_date: Optional[str] = None, end_date: Optional[str] = None) -> dict:
    """One device run against the configured database"""
    db = SessionLocal()
    try:
        runner = build_pipeline(db, DeviceRegistry.from_db(db))
        summary = asyncio.run(runner.run_device(nas_id, start_date, end_date))
        return summary.to_dict()
    finally:
        db.close()


def run_tracked_devices_job(start_date: Optional[str] = None, end_date: Optional[str] = None) -> dict:
    """Every active tracked device, one after another"""
    db = SessionLocal()
    try:
        registry = DeviceRegistry.from_db(db)
        if not len(registry):
            logger.warning("⚠️  No tracked devices configured, nothing to scrape")
        runner = build_pipeline(db, registry)
        fleet = asyncio.run(runner.run_tracked_devices(start_date, end_date))
        return fleet.to_dict()
    finally:
        db.close()


def run_daily_usage_job() -> dict:
    """Fleet-wide Data Usage Timeline"""
    db = SessionLocal()
    try:
        runner = build_pipeline(db)
        summary = asyncio.run(runner.run_aggregate())
        return summary.to_dict()
    finally:
        db.close()


@celery_app.task(name='hub_offload.worker.scrape_device')
def scrape_device(nas_id: str, start_date: Optional[str] = None, end_date: Optional[str] = None):
    """
    Scrape one device's NASID Daily report
    Fatal errors propagate so Celery records the task as failed
    """
    logger.info(f"🤖 scrape_device task for {nas_id}")
    return run_device_job(nas_id, start_date, end_date)


@celery_app.task(name='hub_offload.worker.scrape_tracked_devices')
def scrape_tracked_devices(start_date: Optional[str] = None, end_date: Optional[str] = None):
    logger.info("🤖 scrape_tracked_devices task")
    return run_tracked_devices_job(start_date, end_date)


@celery_app.task(name='hub_offload.worker.scrape_daily_usage')
def scrape_daily_usage():
    logger.info("🤖 scrape_daily_usage task")
    return run_daily_usage_job()
