"""
One browser per pipeline run

HubOffloadScraper owns the Playwright browser and context, signs in through a
HubPortalSession, and hands the ready report frame to the ExportCaptureEngine.
"""
import logging
from typing import Optional

from playwright.async_api import Browser, BrowserContext, Page, async_playwright

from hub_offload.core.config import settings
from hub_offload.scraper.export_capture import ExportCaptureEngine, RawExportFile
from hub_offload.scraper.hub_session import (
    DATA_USAGE_TIMELINE,
    NASID_DAILY,
    HubPortalSession,
    ReportTarget,
)

logger = logging.getLogger(__name__)


class HubOffloadScraper:
    """Scraper for the Single Digits HUB reporting portal"""

    def __init__(self, page: Optional[Page] = None):
        # A page can be injected (tests); otherwise one is created on enter
        self.page = page
        self.playwright = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None

    async def __aenter__(self):
        """Async context manager entry"""
        if self.page is not None:
            return self

        logger.info("🌐 Starting Playwright...")
        self.playwright = await async_playwright().start()
        try:
            logger.info("🚀 Launching browser...")
            self.browser = await self.playwright.chromium.launch(
                headless=settings.SCRAPER_HEADLESS,
                args=[
                    "--disable-blink-features=AutomationControlled",
                    "--no-sandbox",
                    "--disable-dev-shm-usage",  # Docker
                ],
            )
            self.context = await self.browser.new_context(
                user_agent=settings.SCRAPER_USER_AGENT,
                viewport={"width": 1920, "height": 1080},
                locale="en-US",
                accept_downloads=True,
            )
            self.page = await self.context.new_page()
            self.page.set_default_timeout(settings.SCRAPER_TIMEOUT)
        except Exception as e:
            logger.error(f"❌ BROWSER LAUNCH FAILED: {type(e).__name__}: {e}")
            await self._close()
            raise

        logger.info("✅ Browser launched successfully")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self._close()

    async def _close(self):
        if self.context:
            await self.context.close()
        if self.browser:
            await self.browser.close()
        if self.playwright:
            await self.playwright.stop()
        self.context = self.browser = self.playwright = None

    async def fetch_export(
        self,
        target: ReportTarget,
        nas_id: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> RawExportFile:
        """
        Sign in, open the report and capture its export

        Raises:
            AuthenticationError, NavigationError, ExportTimeoutError
        """
        session = HubPortalSession(self.page)
        frame = await session.reach_report(target, nas_id=nas_id, start_date=start_date, end_date=end_date)

        engine = ExportCaptureEngine(session.report_page)
        return await engine.export(frame, target.export_tile, select_csv=target.select_csv)

    async def fetch_device_export(
        self,
        nas_id: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> RawExportFile:
        logger.info(f"🎯 Fetching NASID Daily export for {nas_id}")
        return await self.fetch_export(NASID_DAILY, nas_id=nas_id, start_date=start_date, end_date=end_date)

    async def fetch_aggregate_export(self) -> RawExportFile:
        logger.info("📈 Fetching Data Usage Timeline export")
        return await self.fetch_export(DATA_USAGE_TIMELINE)
