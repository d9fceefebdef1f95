"""
PipelineRunner: scrape → parse → reconcile → audit

One browser per run, strictly sequential steps. Fatal errors are audited (one
failed scrape_log entry) and re-raised; row-level problems come back in the
summary's `errors`.
"""
import asyncio
import json
import logging
import math
import os
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from hub_offload.core.config import settings
from hub_offload.core.exceptions import (
    EmptyExportError,
    PersistenceError,
    PipelineInputError,
    SchemaError,
)
from hub_offload.parser.device_csv import parse_device_csv
from hub_offload.parser.offload_csv import parse_offload_csv
from hub_offload.parser.types import AggregateRecord, ParseResult
from hub_offload.scraper.hub_scraper import HubOffloadScraper
from hub_offload.services.device_registry import DeviceRegistry
from hub_offload.services.offload_store import SqlAlchemyOffloadStore
from hub_offload.services.reconciliation import (
    REPORT_AGGREGATE,
    REPORT_DEVICE,
    ReconciliationEngine,
)

logger = logging.getLogger(__name__)

DateLike = Union[str, date, None]


def _as_date(value: DateLike, name: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as e:
        raise PipelineInputError(f"{name} must be an ISO date (YYYY-MM-DD), got {value!r}") from e


def validate_date_range(start_date: DateLike, end_date: DateLike) -> Tuple[Optional[str], Optional[str]]:
    """
    Both dates or neither, ISO format, start <= end

    Returns:
        (start, end) as ISO strings, or (None, None)
    """
    start = _as_date(start_date, "start_date")
    end = _as_date(end_date, "end_date")

    if (start is None) != (end is None):
        raise PipelineInputError("start_date and end_date must both be provided or both omitted")
    if start is None:
        return None, None
    if start > end:
        raise PipelineInputError(f"start_date {start} is after end_date {end}")
    return start.isoformat(), end.isoformat()


@dataclass(frozen=True)
class DeviceRunRequest:
    nas_id: str
    start_date: Optional[str] = None
    end_date: Optional[str] = None

    @classmethod
    def build(cls, nas_id: str, start_date: DateLike = None, end_date: DateLike = None) -> "DeviceRunRequest":
        nas_id = (nas_id or "").strip()
        if not nas_id:
            raise PipelineInputError("NAS ID is required")
        start, end = validate_date_range(start_date, end_date)
        return cls(nas_id=nas_id, start_date=start, end_date=end)


@dataclass
class DeviceRunSummary:
    success: bool
    nas_id: str
    total_processed: int = 0
    total_upserted: int = 0
    total_changed: int = 0
    errors: List[dict] = field(default_factory=list)  # parse row errors, then store errors
    filename: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "nas_id": self.nas_id,
            "total_processed": self.total_processed,
            "total_upserted": self.total_upserted,
            "total_changed": self.total_changed,
            "errors": list(self.errors),
            "filename": self.filename,
        }


@dataclass
class AggregateRunSummary:
    success: bool
    total_parsed: int = 0
    inserted: int = 0
    updated: int = 0
    upserted: int = 0
    filename: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "total_parsed": self.total_parsed,
            "inserted": self.inserted,
            "updated": self.updated,
            "upserted": self.upserted,
            "filename": self.filename,
        }


@dataclass
class FleetRunSummary:
    results: List[DeviceRunSummary] = field(default_factory=list)
    failures: List[dict] = field(default_factory=list)  # {nas_id, error}

    @property
    def total_devices(self) -> int:
        return len(self.results) + len(self.failures)

    def to_dict(self) -> dict:
        return {
            "total_devices": self.total_devices,
            "successful": len(self.results),
            "failed": len(self.failures),
            "results": [r.to_dict() for r in self.results],
            "failures": list(self.failures),
        }


@dataclass
class PipelineConfig:
    registry: DeviceRegistry = field(default_factory=DeviceRegistry)
    inter_device_delay_seconds: float = field(default_factory=lambda: settings.INTER_DEVICE_DELAY_SECONDS)


class PipelineRunner:
    """Orchestrates one run per device (or one aggregate run)"""

    def __init__(
        self,
        engine: ReconciliationEngine,
        scraper_factory: Callable = HubOffloadScraper,
        config: Optional[PipelineConfig] = None,
    ):
        self.engine = engine
        self.scraper_factory = scraper_factory
        self.config = config or PipelineConfig()

    async def run_device(
        self,
        nas_id: str,
        start_date: DateLike = None,
        end_date: DateLike = None,
    ) -> DeviceRunSummary:
        """
        Scrape, parse and reconcile one device's NASID Daily export

        Raises:
            PipelineInputError: invalid NAS ID or date range (nothing launched, nothing audited)
            AuthenticationError, NavigationError, ExportTimeoutError, SchemaError,
            EmptyExportError: fatal stage failure, audited before re-raising
        """
        request = DeviceRunRequest.build(nas_id, start_date, end_date)
        logger.info(f"🚀 Device run for {request.nas_id}")

        filename = None
        try:
            async with self.scraper_factory() as scraper:
                export = await scraper.fetch_device_export(
                    request.nas_id,
                    start_date=request.start_date,
                    end_date=request.end_date,
                )
            filename = export.filename
            parsed = parse_device_csv(export.content)
            self._require_rows(parsed, filename)
        except Exception as e:
            logger.error(f"❌ Device run for {request.nas_id} failed: {type(e).__name__}: {e}")
            self.engine.record_failure(REPORT_DEVICE, e, nas_id=request.nas_id, source_filename=filename)
            raise

        reconciliation = self.engine.reconcile_devices(parsed.data, nas_id=request.nas_id, source_filename=filename)
        self._mark_scraped(request.nas_id)

        summary = DeviceRunSummary(
            success=True,
            nas_id=request.nas_id,
            total_processed=reconciliation.total_processed,
            total_upserted=reconciliation.total_upserted,
            total_changed=reconciliation.total_changed,
            errors=[e.to_dict() for e in parsed.errors] + [e.to_dict() for e in reconciliation.errors],
            filename=filename,
        )
        logger.info(
            f"✅ Device run for {request.nas_id} done: processed={summary.total_processed} "
            f"upserted={summary.total_upserted} changed={summary.total_changed} errors={len(summary.errors)}"
        )
        return summary

    async def run_aggregate(self) -> AggregateRunSummary:
        """
        Scrape, parse and reconcile the Data Usage Timeline export

        Raises:
            AuthenticationError, NavigationError, ExportTimeoutError, EmptyExportError,
            PersistenceError: fatal stage failure, audited before re-raising
        """
        logger.info("🚀 Aggregate run")

        filename = None
        try:
            async with self.scraper_factory() as scraper:
                export = await scraper.fetch_aggregate_export()
            filename = export.filename
            parsed = parse_offload_csv(export.content)
            self._require_rows(parsed, filename)
        except Exception as e:
            logger.error(f"❌ Aggregate run failed: {type(e).__name__}: {e}")
            self.engine.record_failure(REPORT_AGGREGATE, e, source_filename=filename)
            raise

        return self._reconcile_aggregate(parsed.data, filename)

    async def run_tracked_devices(self, start_date: DateLike = None, end_date: DateLike = None) -> FleetRunSummary:
        """
        Run every registered device in turn, pausing between devices

        A device whose run fails is recorded in `failures`; later devices still run.
        """
        start, end = validate_date_range(start_date, end_date)
        devices = list(self.config.registry)
        fleet = FleetRunSummary()

        logger.info(f"🚀 Starting tracked device scrape: {len(devices)} devices")

        for index, device in enumerate(devices):
            if index > 0 and self.config.inter_device_delay_seconds > 0:
                logger.info(f"⏳ Waiting {self.config.inter_device_delay_seconds}s before next device...")
                await asyncio.sleep(self.config.inter_device_delay_seconds)

            logger.info(f"📱 [{index + 1}/{len(devices)}] {device.nas_id} {device.name or ''}".rstrip())
            try:
                fleet.results.append(await self.run_device(device.nas_id, start, end))
            except Exception as e:
                logger.error(f"❌ {device.nas_id} failed: {e}")
                fleet.failures.append({"nas_id": device.nas_id, "error": str(e) or type(e).__name__})

        logger.info(
            f"📊 Tracked device scrape done: {len(fleet.results)} succeeded, {len(fleet.failures)} failed"
        )
        return fleet

    def run_export_file(self, path: str, report: str = REPORT_AGGREGATE):
        """
        Reconcile an export already on disk (manual back-fill)

        `.csv` / `.txt` go through the matching parser; `.json` holds a list of
        {"day", "gigabytes"} objects and is only valid for the aggregate report.
        """
        if report not in (REPORT_AGGREGATE, REPORT_DEVICE):
            raise PipelineInputError(f"Unknown report {report!r}")

        filename = os.path.basename(path)
        ext = os.path.splitext(path)[1].lower()
        if ext not in (".csv", ".txt", ".json") or (ext == ".json" and report == REPORT_DEVICE):
            raise PipelineInputError(f"Unsupported file type for {report} report: {ext or path}")

        logger.info(f"📂 Uploading {filename} as {report} export")

        try:
            with open(path, "r", encoding="utf-8-sig") as f:
                raw = f.read()

            if ext == ".json":
                records = _aggregate_records_from_json(raw)
                if not records:
                    raise EmptyExportError(f"{filename} contains no rows")
                parsed = None
            elif report == REPORT_AGGREGATE:
                parsed = parse_offload_csv(raw)
                self._require_rows(parsed, filename)
                records = parsed.data
            else:
                parsed = parse_device_csv(raw)
                self._require_rows(parsed, filename)
        except Exception as e:
            logger.error(f"❌ Upload of {filename} failed: {type(e).__name__}: {e}")
            self.engine.record_failure(report, e, source_filename=filename)
            raise

        if report == REPORT_AGGREGATE:
            return self._reconcile_aggregate(records, filename)

        reconciliation = self.engine.reconcile_devices(parsed.data, source_filename=filename)
        return DeviceRunSummary(
            success=True,
            nas_id=",".join(sorted({r.nas_id for r in parsed.data})),
            total_processed=reconciliation.total_processed,
            total_upserted=reconciliation.total_upserted,
            total_changed=reconciliation.total_changed,
            errors=[e.to_dict() for e in parsed.errors] + [e.to_dict() for e in reconciliation.errors],
            filename=filename,
        )

    def _reconcile_aggregate(self, records, filename: Optional[str]) -> AggregateRunSummary:
        counts = self.engine.reconcile_daily(records, source_filename=filename)
        logger.info(
            f"✅ Aggregate OK: parsed={counts.total_parsed}, inserted={counts.inserted}, "
            f"updated={counts.updated} (wrote={counts.upserted})"
        )
        return AggregateRunSummary(
            success=True,
            total_parsed=counts.total_parsed,
            inserted=counts.inserted,
            updated=counts.updated,
            upserted=counts.upserted,
            filename=filename,
        )

    @staticmethod
    def _require_rows(parsed: ParseResult, filename: Optional[str]) -> None:
        if parsed.valid_rows == 0:
            raise EmptyExportError(
                f"No valid rows in {filename or 'export'} "
                f"({parsed.total_rows} rows examined, {parsed.error_rows} rejected)"
            )

    def _mark_scraped(self, nas_id: str) -> None:
        if nas_id not in self.config.registry:
            return
        try:
            self.config.registry.mark_scraped(nas_id)
        except PersistenceError as e:
            logger.error(f"❌ Could not update last_scraped for {nas_id}: {e}")


def _aggregate_records_from_json(raw: str) -> List[AggregateRecord]:
    try:
        items = json.loads(raw)
    except json.JSONDecodeError as e:
        raise SchemaError(f"Invalid JSON: {e}") from e
    if not isinstance(items, list):
        raise SchemaError("JSON export must be a list of {day, gigabytes} objects")

    records = []
    for index, item in enumerate(items):
        try:
            gigabytes = float(item["gigabytes"])
            if not math.isfinite(gigabytes) or gigabytes < 0:
                raise ValueError(f"gigabytes must be finite and non-negative, got {gigabytes}")
            records.append(AggregateRecord(day=date.fromisoformat(str(item["day"])), gigabytes=gigabytes))
        except (KeyError, TypeError, ValueError) as e:
            raise SchemaError(f"Invalid record at index {index}: {e}") from e
    return records


def build_pipeline(db: Session, registry: Optional[DeviceRegistry] = None) -> PipelineRunner:
    """Runner wired to the SQLAlchemy store for one session"""
    engine = ReconciliationEngine(SqlAlchemyOffloadStore(db))
    config = PipelineConfig(registry=registry if registry is not None else DeviceRegistry.from_settings())
    return PipelineRunner(engine, config=config)
