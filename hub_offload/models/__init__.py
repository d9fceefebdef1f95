from hub_offload.models.offload import OffloadDaily, DeviceOffloadDaily, ScrapeLog
from hub_offload.models.device import TrackedDevice

__all__ = ["OffloadDaily", "DeviceOffloadDaily", "ScrapeLog", "TrackedDevice"]
