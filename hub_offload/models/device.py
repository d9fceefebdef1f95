from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func
from hub_offload.db.session import Base


class TrackedDevice(Base):
    """Devices on the daily scrape list"""
    __tablename__ = "tracked_devices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    nas_id = Column(String(64), unique=True, nullable=False, index=True)
    device_name = Column(String(200))
    priority = Column(String(20))  # high, normal, low
    notes = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)

    added_to_tracked_at = Column(DateTime(timezone=True), server_default=func.now())
    last_scraped = Column(DateTime(timezone=True))
