"""
Reconciliation of parsed export rows into the persisted store

Only rows that are new or actually changed are written, so re-running the same
export is a no-op. Every invocation appends exactly one audit log entry.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence

from hub_offload.core.exceptions import PersistenceError
from hub_offload.parser.types import AggregateRecord, DeviceRecord
from hub_offload.services.offload_store import (
    DEVICE_METRIC_FIELDS,
    AuditLogEntry,
    DeviceKey,
    OffloadStore,
)

logger = logging.getLogger(__name__)

# Absorbs float noise from NUMERIC round-trips without masking real changes
GIGABYTE_EPSILON = 1e-4

REPORT_AGGREGATE = "aggregate"
REPORT_DEVICE = "device"


def nearly_equal(a: float, b: float, eps: float = GIGABYTE_EPSILON) -> bool:
    return abs(float(a) - float(b)) <= eps


@dataclass
class DailyDiff:
    """Classification of an aggregate batch against what is already stored"""
    to_write: List[AggregateRecord] = field(default_factory=list)
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0


def diff_daily(records: Sequence[AggregateRecord], existing: Dict[date, float]) -> DailyDiff:
    """
    Split records into insert / update / unchanged

    Repeated days collapse to their last occurrence so the batched upsert never
    touches the same key twice.
    """
    latest: Dict[date, AggregateRecord] = {}
    for record in records:
        latest.pop(record.day, None)
        latest[record.day] = record

    diff = DailyDiff()
    for record in latest.values():
        have = existing.get(record.day)
        if have is None:
            diff.to_write.append(record)
            diff.inserted += 1
        elif not nearly_equal(have, record.gigabytes):
            diff.to_write.append(record)
            diff.updated += 1
        else:
            diff.unchanged += 1
    return diff


@dataclass(frozen=True)
class DailyUpsertCounts:
    inserted: int
    updated: int
    upserted: int  # inserted + updated, rows actually written
    total_parsed: int


@dataclass(frozen=True)
class ReconciliationError:
    key: str
    error: str

    def to_dict(self) -> dict:
        return {"key": self.key, "error": self.error}


@dataclass
class ReconciliationResult:
    total_processed: int = 0
    total_upserted: int = 0  # rows actually written
    total_changed: int = 0  # subset of upserted that were updates
    errors: List[ReconciliationError] = field(default_factory=list)


def device_key_label(key: DeviceKey) -> str:
    transaction_date, nas_id = key
    return f"{transaction_date.isoformat()}/{nas_id}"


class ReconciliationEngine:
    """Diff-based idempotent upsert for both export schemas"""

    def __init__(self, store: OffloadStore):
        self.store = store

    def reconcile_daily(
        self,
        records: Sequence[AggregateRecord],
        source_filename: Optional[str] = None,
    ) -> DailyUpsertCounts:
        """
        Upsert only new or changed daily aggregate rows

        One batched read for the days in the batch, one batched upsert for the
        rows that differ. The write is all-or-nothing, so a store failure is
        re-raised after the failed run has been audited.

        Raises:
            PersistenceError: the batched read or upsert failed
        """
        records = list(records)
        try:
            existing = self.store.batch_get_daily([r.day for r in records])
            diff = diff_daily(records, existing)
            if diff.to_write:
                self.store.batch_upsert_daily(diff.to_write)
        except PersistenceError as e:
            logger.error(f"❌ Daily upsert failed: {e}")
            self._audit(AuditLogEntry(
                report=REPORT_AGGREGATE,
                source_filename=source_filename,
                rows_parsed=len(records),
                rows_upserted=0,
                rows_changed=0,
                success=False,
                error_text=str(e),
            ))
            raise

        counts = DailyUpsertCounts(
            inserted=diff.inserted,
            updated=diff.updated,
            upserted=len(diff.to_write),
            total_parsed=len(records),
        )
        logger.info(
            f"✅ Daily upsert: parsed={counts.total_parsed} inserted={counts.inserted} "
            f"updated={counts.updated} unchanged={diff.unchanged}"
        )
        self._audit(AuditLogEntry(
            report=REPORT_AGGREGATE,
            source_filename=source_filename,
            rows_parsed=counts.total_parsed,
            rows_upserted=counts.upserted,
            rows_changed=counts.updated,
            success=True,
        ))
        return counts

    def reconcile_devices(
        self,
        records: Sequence[DeviceRecord],
        nas_id: Optional[str] = None,
        source_filename: Optional[str] = None,
    ) -> ReconciliationResult:
        """
        Insert, update or skip each device row independently

        Rows are compared field by field with exact equality. A store failure on
        one row is recorded in `errors` and the remaining rows are still processed.
        """
        records = list(records)
        result = ReconciliationResult(total_processed=len(records))

        logger.info(f"🔄 Reconciling {len(records)} device rows (NAS ID: {nas_id or 'mixed'})")

        for record in records:
            try:
                written, changed = self._reconcile_device_row(record)
            except PersistenceError as e:
                logger.error(f"❌ Error upserting record for {device_key_label(record.key)}: {e}")
                result.errors.append(ReconciliationError(key=device_key_label(record.key), error=str(e)))
                continue
            if written:
                result.total_upserted += 1
            if changed:
                result.total_changed += 1

        logger.info(
            f"✅ Device upsert: processed={result.total_processed} upserted={result.total_upserted} "
            f"changed={result.total_changed} errors={len(result.errors)}"
        )
        self._audit(AuditLogEntry(
            report=REPORT_DEVICE,
            nas_id=nas_id,
            source_filename=source_filename,
            rows_parsed=result.total_processed,
            rows_upserted=result.total_upserted,
            rows_changed=result.total_changed,
            success=True,
        ))
        return result

    def _reconcile_device_row(self, record: DeviceRecord):
        """Returns (written, changed)"""
        existing = self.store.batch_get_devices([record.key]).get(record.key)

        if existing is None:
            self.store.insert_device(record)
            logger.debug(f"✅ Inserted {device_key_label(record.key)}")
            return True, False

        incoming = {name: getattr(record, name) for name in DEVICE_METRIC_FIELDS}
        if all(existing[name] == incoming[name] for name in DEVICE_METRIC_FIELDS):
            logger.debug(f"⏭️  No changes for {device_key_label(record.key)}")
            return False, False

        self.store.update_device(record.key, incoming)
        logger.debug(f"🔄 Updated {device_key_label(record.key)}")
        return True, True

    def record_failure(
        self,
        report: str,
        error: BaseException,
        nas_id: Optional[str] = None,
        source_filename: Optional[str] = None,
        rows_parsed: int = 0,
    ) -> None:
        """Audit a run that failed before reaching reconciliation"""
        self._audit(AuditLogEntry(
            report=report,
            nas_id=nas_id,
            source_filename=source_filename,
            rows_parsed=rows_parsed,
            rows_upserted=0,
            rows_changed=0,
            success=False,
            error_text=str(error) or type(error).__name__,
        ))

    def _audit(self, entry: AuditLogEntry) -> None:
        try:
            self.store.append_audit(entry)
        except PersistenceError as e:
            logger.error(f"❌ Failed to log scrape operation: {e}")
        else:
            logger.info(f"📝 Scrape operation logged (success={entry.success})")
