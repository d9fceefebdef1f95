"""
Persisted store used by the ReconciliationEngine

OffloadStore is the contract: batched reads, a batched upsert for the daily
aggregate, single-row insert/update for device rows, and an append-only audit log.
SqlAlchemyOffloadStore implements it on top of the ORM models.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, Optional, Sequence, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from hub_offload.core.exceptions import PersistenceError
from hub_offload.models.offload import DeviceOffloadDaily, OffloadDaily, ScrapeLog
from hub_offload.parser.types import AggregateRecord, DeviceRecord

logger = logging.getLogger(__name__)

DeviceKey = Tuple[date, str]

DEVICE_METRIC_FIELDS = ("total_sessions", "count_of_users", "rejects", "total_gbs")


@dataclass(frozen=True)
class AuditLogEntry:
    """One pipeline run's outcome. Appended once, never modified."""
    report: str  # aggregate, device
    rows_parsed: int
    rows_upserted: int
    rows_changed: int
    success: bool
    source_filename: Optional[str] = None
    error_text: Optional[str] = None
    nas_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class OffloadStore(ABC):
    """Store contract consumed by the ReconciliationEngine"""

    @abstractmethod
    def batch_get_daily(self, days: Sequence[date]) -> Dict[date, float]:
        """Existing gigabytes for the given days (missing days are absent)"""

    @abstractmethod
    def batch_upsert_daily(self, records: Sequence[AggregateRecord]) -> int:
        """Insert-or-update every record keyed by day in one batch; returns rows sent"""

    @abstractmethod
    def batch_get_devices(self, keys: Sequence[DeviceKey]) -> Dict[DeviceKey, Dict[str, float]]:
        """Existing metric fields for the given (transaction_date, nas_id) keys"""

    @abstractmethod
    def insert_device(self, record: DeviceRecord) -> None:
        """Insert a new device row"""

    @abstractmethod
    def update_device(self, key: DeviceKey, fields: Dict[str, float]) -> None:
        """Overwrite metric fields of an existing device row"""

    @abstractmethod
    def append_audit(self, entry: AuditLogEntry) -> None:
        """Append one audit log entry"""


class SqlAlchemyOffloadStore(OffloadStore):
    """OffloadStore backed by a SQLAlchemy session (PostgreSQL in production)"""

    def __init__(self, db: Session):
        self.db = db

    def batch_get_daily(self, days: Sequence[date]) -> Dict[date, float]:
        if not days:
            return {}
        try:
            rows = (
                self.db.query(OffloadDaily.day, OffloadDaily.gigabytes)
                .filter(OffloadDaily.day.in_(list(set(days))))
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Database select error: {e}") from e
        return {row.day: float(row.gigabytes) for row in rows}

    def batch_upsert_daily(self, records: Sequence[AggregateRecord]) -> int:
        if not records:
            return 0

        values = [{"day": r.day, "gigabytes": r.gigabytes} for r in records]
        dialect = self.db.get_bind().dialect.name

        try:
            if dialect in ("postgresql", "sqlite"):
                if dialect == "postgresql":
                    from sqlalchemy.dialects.postgresql import insert
                else:
                    from sqlalchemy.dialects.sqlite import insert

                stmt = insert(OffloadDaily).values(values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[OffloadDaily.day],
                    set_={"gigabytes": stmt.excluded.gigabytes, "updated_at": func.now()},
                )
                self.db.execute(stmt)
            else:
                for value in values:
                    self.db.merge(OffloadDaily(**value))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Database upsert error: {e}") from e

        logger.info(f"💾 Upserted {len(values)} offload_daily rows ({dialect})")
        return len(values)

    def batch_get_devices(self, keys: Sequence[DeviceKey]) -> Dict[DeviceKey, Dict[str, float]]:
        if not keys:
            return {}

        conditions = [
            and_(
                DeviceOffloadDaily.transaction_date == transaction_date,
                DeviceOffloadDaily.nas_id == nas_id,
            )
            for transaction_date, nas_id in keys
        ]
        try:
            rows = self.db.query(DeviceOffloadDaily).filter(or_(*conditions)).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Database select error: {e}") from e

        return {
            (row.transaction_date, row.nas_id): {
                "total_sessions": row.total_sessions,
                "count_of_users": row.count_of_users,
                "rejects": row.rejects,
                "total_gbs": float(row.total_gbs),  # Numeric comes back as Decimal
            }
            for row in rows
        }

    def insert_device(self, record: DeviceRecord) -> None:
        row = DeviceOffloadDaily(
            transaction_date=record.transaction_date,
            nas_id=record.nas_id,
            total_sessions=record.total_sessions,
            count_of_users=record.count_of_users,
            rejects=record.rejects,
            total_gbs=record.total_gbs,
        )
        try:
            self.db.add(row)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Database insert error: {e}") from e

    def update_device(self, key: DeviceKey, fields: Dict[str, float]) -> None:
        transaction_date, nas_id = key
        try:
            updated = (
                self.db.query(DeviceOffloadDaily)
                .filter(
                    DeviceOffloadDaily.transaction_date == transaction_date,
                    DeviceOffloadDaily.nas_id == nas_id,
                )
                .update({**fields, "updated_at": func.now()}, synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Database update error: {e}") from e

        if not updated:
            raise PersistenceError(f"Database update error: no row for {transaction_date} / {nas_id}")

    def append_audit(self, entry: AuditLogEntry) -> None:
        row = ScrapeLog(
            report=entry.report,
            nas_id=entry.nas_id,
            source_filename=entry.source_filename,
            rows_parsed=entry.rows_parsed,
            rows_upserted=entry.rows_upserted,
            rows_changed=entry.rows_changed,
            success=entry.success,
            error_text=entry.error_text,
            created_at=entry.timestamp,
        )
        try:
            self.db.add(row)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to write scrape log: {e}") from e
