"""
Cron endpoints: an external scheduler hits these to start a pipeline run
"""
from fastapi import APIRouter, HTTPException, Header, BackgroundTasks
from datetime import datetime
import logging
from typing import Callable, Optional

from pydantic import BaseModel

from hub_offload.core.config import settings
from hub_offload.core.exceptions import PipelineInputError
from hub_offload.services.pipeline import DeviceRunRequest, validate_date_range
from hub_offload import worker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


class ScrapeDeviceRequest(BaseModel):
    nas_id: str
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class DateRangeRequest(BaseModel):
    start_date: Optional[str] = None
    end_date: Optional[str] = None


def check_cron_secret(x_cron_secret: Optional[str], authorization: Optional[str]) -> None:
    """Open when CRON_SECRET is unset; otherwise X-Cron-Secret or Bearer token must match"""
    cron_secret = settings.CRON_SECRET
    if not cron_secret:
        return
    if x_cron_secret == cron_secret or authorization == f"Bearer {cron_secret}":
        return
    raise HTTPException(status_code=401, detail="Unauthorized")


def run_in_background(job: Callable, *args):
    """
    Background task wrapper. Failures are already audited by the pipeline;
    here they only need to reach the logs.
    """
    try:
        result = job(*args)
        logger.info(f"✅ {job.__name__} finished: {result}")
    except Exception:
        logger.exception(f"❌ {job.__name__} failed")


def _started(message: str, **extra) -> dict:
    return {
        "status": "scrape_started",
        "message": message,
        "timestamp": datetime.now().isoformat(),
        **extra,
    }


@router.post("/scrape-device")
async def scrape_device(
    request: ScrapeDeviceRequest,
    background_tasks: BackgroundTasks,
    x_cron_secret: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
):
    """
    Scrape one device's NASID Daily report
    Returns immediately while the scrape runs in background
    """
    check_cron_secret(x_cron_secret, authorization)

    try:
        run = DeviceRunRequest.build(request.nas_id, request.start_date, request.end_date)
    except PipelineInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    background_tasks.add_task(run_in_background, worker.run_device_job, run.nas_id, run.start_date, run.end_date)

    return _started(
        f"Scrape for {run.nas_id} started in background. Check logs for progress.",
        nas_id=run.nas_id,
        start_date=run.start_date,
        end_date=run.end_date,
    )


@router.post("/scrape-tracked")
async def scrape_tracked(
    background_tasks: BackgroundTasks,
    request: Optional[DateRangeRequest] = None,
    x_cron_secret: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
):
    """Scrape every tracked device, one after another"""
    check_cron_secret(x_cron_secret, authorization)

    request = request or DateRangeRequest()
    try:
        start, end = validate_date_range(request.start_date, request.end_date)
    except PipelineInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    background_tasks.add_task(run_in_background, worker.run_tracked_devices_job, start, end)

    return _started("Tracked device scrape started in background.", start_date=start, end_date=end)


@router.post("/scrape-daily-usage")
async def scrape_daily_usage(
    background_tasks: BackgroundTasks,
    x_cron_secret: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
):
    """Scrape the fleet-wide Data Usage Timeline"""
    check_cron_secret(x_cron_secret, authorization)

    background_tasks.add_task(run_in_background, worker.run_daily_usage_job)

    return _started("Daily usage scrape started in background.")
