"""
Explicit registry of tracked devices

Passed into the PipelineRunner instead of living as module-level state. When
loaded with `from_db`, add/remove/mark_scraped also write through to the
tracked_devices table.
"""
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hub_offload.core.config import settings
from hub_offload.core.exceptions import PersistenceError, PipelineInputError
from hub_offload.models.device import TrackedDevice

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegisteredDevice:
    nas_id: str
    name: Optional[str] = None
    priority: Optional[str] = None
    notes: Optional[str] = None
    last_scraped: Optional[datetime] = None


class DeviceRegistry:
    """Ordered set of devices the tracked-devices loop visits"""

    def __init__(self, devices: Iterable[RegisteredDevice] = (), db: Optional[Session] = None):
        self._devices: Dict[str, RegisteredDevice] = {}
        self.db = db
        for device in devices:
            self._devices[device.nas_id] = device

    @classmethod
    def from_ids(cls, nas_ids: Iterable[str]) -> "DeviceRegistry":
        return cls(RegisteredDevice(nas_id=n.strip()) for n in nas_ids if n and n.strip())

    @classmethod
    def from_settings(cls) -> "DeviceRegistry":
        return cls.from_ids(settings.TRACKED_DEVICES)

    @classmethod
    def from_db(cls, db: Session) -> "DeviceRegistry":
        """
        Active rows of tracked_devices, highest priority first

        An empty table is seeded from TRACKED_DEVICES.
        """
        try:
            known = db.query(TrackedDevice).count()
            rows = db.query(TrackedDevice).filter(TrackedDevice.is_active.is_(True)).all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load tracked devices: {e}") from e

        # Removed devices stay as inactive rows, so only a never-used table is seeded
        if known == 0 and settings.TRACKED_DEVICES:
            logger.info(f"🌱 Seeding tracked_devices with {len(settings.TRACKED_DEVICES)} devices from settings")
            registry = cls(db=db)
            for nas_id in settings.TRACKED_DEVICES:
                registry.add(nas_id)
            return registry

        rank = {"high": 0, "normal": 1, "low": 2}
        rows.sort(key=lambda r: (rank.get(r.priority or "normal", 1), r.id))
        devices = [
            RegisteredDevice(
                nas_id=row.nas_id,
                name=row.device_name,
                priority=row.priority,
                notes=row.notes,
                last_scraped=row.last_scraped,
            )
            for row in rows
        ]
        logger.info(f"📋 Loaded {len(devices)} tracked devices")
        return cls(devices, db=db)

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[RegisteredDevice]:
        return iter(list(self._devices.values()))

    def __contains__(self, nas_id: str) -> bool:
        return nas_id in self._devices

    def get(self, nas_id: str) -> Optional[RegisteredDevice]:
        return self._devices.get(nas_id)

    @property
    def nas_ids(self) -> List[str]:
        return list(self._devices)

    def add(
        self,
        nas_id: str,
        name: Optional[str] = None,
        priority: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> RegisteredDevice:
        """Add a device; adding one that is already tracked returns the existing entry"""
        nas_id = (nas_id or "").strip()
        if not nas_id:
            raise PipelineInputError("NAS ID is required")

        if nas_id in self._devices:
            logger.info(f"ℹ️  {nas_id} is already tracked")
            return self._devices[nas_id]

        device = RegisteredDevice(nas_id=nas_id, name=name, priority=priority, notes=notes)
        if self.db is not None:
            self._write(lambda: self._upsert_row(device))
        self._devices[nas_id] = device
        logger.info(f"➕ Tracking {nas_id}")
        return device

    def remove(self, nas_id: str) -> bool:
        """Stop tracking a device. Returns False when it was not tracked."""
        if nas_id not in self._devices:
            return False

        if self.db is not None:
            self._write(lambda: self.db.query(TrackedDevice)
                        .filter(TrackedDevice.nas_id == nas_id)
                        .update({"is_active": False}, synchronize_session=False))
        del self._devices[nas_id]
        logger.info(f"➖ Stopped tracking {nas_id}")
        return True

    def mark_scraped(self, nas_id: str, when: Optional[datetime] = None) -> None:
        device = self._devices.get(nas_id)
        if device is None:
            return

        when = when or datetime.now(timezone.utc)
        if self.db is not None:
            self._write(lambda: self.db.query(TrackedDevice)
                        .filter(TrackedDevice.nas_id == nas_id)
                        .update({"last_scraped": when}, synchronize_session=False))
        self._devices[nas_id] = replace(device, last_scraped=when)

    def _upsert_row(self, device: RegisteredDevice) -> None:
        row = self.db.query(TrackedDevice).filter(TrackedDevice.nas_id == device.nas_id).first()
        if row is None:
            self.db.add(TrackedDevice(
                nas_id=device.nas_id,
                device_name=device.name,
                priority=device.priority,
                notes=device.notes,
                is_active=True,
            ))
        else:
            row.is_active = True
            row.device_name = device.name or row.device_name
            row.priority = device.priority or row.priority
            row.notes = device.notes or row.notes

    def _write(self, operation) -> None:
        try:
            operation()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Tracked devices write failed: {e}") from e
