from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # App
    APP_NAME: str = "HUB Offload Tracker"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str

    # Redis (Celery broker + result backend)
    REDIS_URL: str = "redis://localhost:6379"

    # Timezone used to stamp captured exports
    TIMEZONE: str = "UTC"

    # Okta single sign-on in front of the HUB portal
    OKTA_START_URL: Optional[str] = None
    OKTA_EMAIL: Optional[str] = None
    OKTA_PASSWORD: Optional[str] = None

    # Browser automation
    SCRAPER_USER_AGENT: str = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36"
    SCRAPER_HEADLESS: bool = True
    SCRAPER_TIMEOUT: int = 30000  # milliseconds, default per-action timeout
    IFRAME_TIMEOUT: int = 30000  # milliseconds, report iframe must attach within this
    STEP_SETTLE_MS: int = 1000  # pause after menu navigation
    DATE_PICKER_SETTLE_MS: int = 2000  # pause while the date picker re-renders
    ARROWDOWN_PRESSES: int = 11  # Data Usage Timeline needs these to render the tile

    # Export capture
    PRE_CLICK_DELAY_MS: int = 1000  # give the export modal time to bind its handler
    EXPORT_POLL_INTERVAL_MS: int = 100
    EXPORT_TIMEOUT_MS: int = 10000
    DOWNLOAD_DIR: Optional[str] = None  # keep a copy of every export when set

    # Device loop
    INTER_DEVICE_DELAY_SECONDS: float = 5.0
    TRACKED_DEVICES: List[str] = []  # seed list when the tracked_devices table is empty

    # Cron Jobs
    CRON_SECRET: Optional[str] = None  # Secret token to protect cron endpoints

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
