"""
Offload Usage Models
Daily fleet-wide offload, per-device daily offload, and the scrape audit log
"""
from sqlalchemy import (
    Boolean, CheckConstraint, Column, Date, DateTime, Index, Integer, Numeric, String, Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func
from hub_offload.db.session import Base


class OffloadDaily(Base):
    """One row per calendar day: total offload across all devices (Data Usage Timeline)"""
    __tablename__ = "offload_daily"

    day = Column(Date, primary_key=True)
    gigabytes = Column(Numeric(16, 6, asdecimal=False), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("gigabytes >= 0", name="offload_daily_gigabytes_check"),
    )


class DeviceOffloadDaily(Base):
    """One row per (transaction_date, nas_id) from the NASID Daily report"""
    __tablename__ = "device_offload_daily"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_date = Column(Date, nullable=False)
    nas_id = Column(String(64), nullable=False)

    total_sessions = Column(Integer, nullable=False, default=0)
    count_of_users = Column(Integer, nullable=False, default=0)
    rejects = Column(Integer, nullable=False, default=0)
    total_gbs = Column(Numeric(16, 6, asdecimal=False), nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("transaction_date", "nas_id", name="uq_device_offload_daily_date_nas"),
        Index("idx_device_offload_daily_nas_id", "nas_id"),
        Index("idx_device_offload_daily_transaction_date", "transaction_date"),
    )


class ScrapeLog(Base):
    """Append-only audit trail: exactly one row per pipeline run"""
    __tablename__ = "scrape_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report = Column(String(20), nullable=False)  # aggregate, device
    nas_id = Column(String(64))  # device runs only

    source_filename = Column(Text)
    rows_parsed = Column(Integer, nullable=False, default=0)
    rows_upserted = Column(Integer, nullable=False, default=0)
    rows_changed = Column(Integer, nullable=False, default=0)
    success = Column(Boolean, nullable=False)
    error_text = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("report IN ('aggregate','device')", name="scrape_log_report_check"),
        Index("idx_scrape_log_created_at", "created_at"),
    )
