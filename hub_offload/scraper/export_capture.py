"""
Export capture for the HUB report iframe

The portal serves exports as an attachment HTTP response instead of a native
download, so the engine registers a response observer, triggers the download
button, and polls the observer's slot until a matching response shows up or the
bounded wait runs out.
"""
import asyncio
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional
from urllib.parse import unquote

import pytz
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Frame, Page
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from hub_offload.core.config import settings
from hub_offload.core.exceptions import ExportTimeoutError
from hub_offload.scraper.fallback import (
    Strategy,
    StrategyFailed,
    click_strategy,
    dispatch_click_strategy,
    run_fallback_chain,
)

logger = logging.getLogger(__name__)

DEFAULT_FILENAME = "download.csv"
DOWNLOAD_BUTTON = "#qr-export-modal-download"
DOWNLOAD_MENU_ITEM = "Download data"
FORMAT_COMBOBOX = "Format combobox"

_FILENAME_STAR_RE = re.compile(r"filename\*\s*=\s*(?:[\w-]+)?'[^']*'([^;]+)", re.IGNORECASE)
_FILENAME_QUOTED_RE = re.compile(r'filename\s*=\s*"(.+?)"', re.IGNORECASE)
_FILENAME_BARE_RE = re.compile(r"filename\s*=\s*([^;\s]+)", re.IGNORECASE)

JS_CLICK_DOWNLOAD = """
(selector) => {
    const button = document.querySelector(selector);
    if (!button) return false;
    button.click();
    return true;
}
"""


@dataclass(frozen=True)
class RawExportFile:
    """Captured export. Lives for one run only, never persisted."""
    filename: str
    content: str
    url: Optional[str] = None
    captured_at: datetime = field(default_factory=lambda: datetime.now(pytz.timezone(settings.TIMEZONE)))


def is_export_response(response) -> bool:
    """200, attachment disposition, CSV or text content type"""
    if response.status != 200:
        return False
    headers = response.headers
    disposition = headers.get("content-disposition", "").lower()
    content_type = headers.get("content-type", "").lower()
    return "attachment" in disposition and ("csv" in content_type or "text" in content_type)


def filename_from_disposition(disposition: Optional[str], default: str = DEFAULT_FILENAME) -> str:
    if not disposition:
        return default

    match = _FILENAME_STAR_RE.search(disposition)
    if match:
        return unquote(match.group(1).strip().strip('"'))

    match = _FILENAME_QUOTED_RE.search(disposition) or _FILENAME_BARE_RE.search(disposition)
    if match:
        return match.group(1).strip()

    return default


def decode_export(body: bytes) -> str:
    return body.decode("utf-8-sig")


class ResponseSlot:
    """
    Completion slot for the export response

    Registered before the trigger, filled at most once by the first response the
    matcher accepts, awaited with a bounded poll.
    """

    def __init__(self, matcher: Callable = is_export_response):
        self.matcher = matcher
        self.response = None
        self.filename: Optional[str] = None

    @property
    def filled(self) -> bool:
        return self.response is not None

    def observe(self, response) -> None:
        """`page.on("response")` callback"""
        if self.filled:
            return
        try:
            matched = self.matcher(response)
        except PlaywrightError as e:
            logger.warning(f"⚠️  Error inspecting response: {e}")
            return
        if matched:
            self.response = response
            self.filename = filename_from_disposition(response.headers.get("content-disposition"))
            logger.info(f"✅ Correct file detected: {self.filename}")

    async def wait(self, timeout_ms: int, poll_interval_ms: int):
        """
        Poll until the slot is filled

        Raises:
            ExportTimeoutError: nothing matched within timeout_ms
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000
        while not self.filled:
            if loop.time() >= deadline:
                raise ExportTimeoutError(timeout_ms)
            await asyncio.sleep(poll_interval_ms / 1000)
        return self.response


class ExportCaptureEngine:
    """Drives one export action in an authenticated report page"""

    def __init__(
        self,
        page: Page,
        timeout_ms: Optional[int] = None,
        poll_interval_ms: Optional[int] = None,
        pre_click_delay_ms: Optional[int] = None,
        download_dir: Optional[str] = None,
        action_timeout: Optional[int] = None,
    ):
        self.page = page
        self.timeout_ms = timeout_ms if timeout_ms is not None else settings.EXPORT_TIMEOUT_MS
        self.poll_interval_ms = poll_interval_ms if poll_interval_ms is not None else settings.EXPORT_POLL_INTERVAL_MS
        self.pre_click_delay_ms = pre_click_delay_ms if pre_click_delay_ms is not None else settings.PRE_CLICK_DELAY_MS
        self.download_dir = download_dir if download_dir is not None else settings.DOWNLOAD_DIR
        self.action_timeout = action_timeout if action_timeout is not None else settings.SCRAPER_TIMEOUT

    async def export(self, frame: Frame, tile_name: str, select_csv: bool = False) -> RawExportFile:
        """Open the tile's export dialog and capture the resulting file"""
        await self.open_export_dialog(frame, tile_name, select_csv)
        return await self.capture(frame)

    async def open_export_dialog(self, frame: Frame, tile_name: str, select_csv: bool = False) -> None:
        logger.info(f"📤 Opening export menu for '{tile_name}'...")
        timeout = self.action_timeout

        def tile():
            return frame.get_by_role("button", name=tile_name)

        def menu_item():
            return frame.get_by_role("menuitem", name=DOWNLOAD_MENU_ITEM)

        await self._click_step(f"Open '{tile_name}' menu", tile, timeout)
        await self._click_step("Download data", menu_item, timeout)

        if select_csv:
            def format_box():
                return frame.get_by_role("combobox", name=FORMAT_COMBOBOX).locator("div").nth(1)

            def csv_option():
                return frame.get_by_role("option", name="CSV")

            await self._click_step("Open format list", format_box, timeout)
            await self._click_step("Select CSV", csv_option, timeout)

    @staticmethod
    async def _click_step(step: str, locator: Callable, timeout: int) -> None:
        """Role click, then dispatched click; NavigationError when both miss"""
        result = await run_fallback_chain(step, [
            click_strategy("role", locator, timeout),
            dispatch_click_strategy("dispatch", locator, timeout),
        ])
        result.raise_for_failure()

    async def capture(self, frame: Frame) -> RawExportFile:
        """
        Register the observer, trigger the download, wait for the response

        Returns:
            RawExportFile with the decoded body

        Raises:
            NavigationError: every trigger method failed
            ExportTimeoutError: no matching response within the bounded wait
        """
        slot = ResponseSlot()
        observer = slot.observe

        logger.info(f"⏳ Waiting {self.pre_click_delay_ms}ms before download click...")
        await self.page.wait_for_timeout(self.pre_click_delay_ms)

        self.page.on("response", observer)
        try:
            result = await run_fallback_chain("Download click", self.trigger_strategies(frame))
            result.raise_for_failure()

            logger.info("⏳ Polling for export response...")
            response = await slot.wait(self.timeout_ms, self.poll_interval_ms)
        finally:
            self.page.remove_listener("response", observer)

        content = await self.read_body(response)
        export = RawExportFile(filename=slot.filename or DEFAULT_FILENAME, content=content, url=response.url)
        logger.info(f"📥 Captured {export.filename} ({len(content)} chars)")

        if self.download_dir:
            self.save(export)
        return export

    def trigger_strategies(self, frame: Frame):
        """Programmatic click, then scroll + click, then focus + Enter"""
        def button():
            return frame.locator(DOWNLOAD_BUTTON)

        async def scripted_click():
            return await frame.evaluate(JS_CLICK_DOWNLOAD, DOWNLOAD_BUTTON)

        async def scroll_and_click():
            await button().scroll_into_view_if_needed(timeout=self.action_timeout)
            await button().click(timeout=self.action_timeout)

        async def keyboard_activate():
            if await button().count() == 0:
                raise StrategyFailed("download button not found")
            await button().focus(timeout=self.action_timeout)
            await self.page.keyboard.press("Enter")

        return [
            Strategy("javascript click", scripted_click),
            Strategy("scroll and click", scroll_and_click),
            Strategy("keyboard", keyboard_activate),
        ]

    async def read_body(self, response) -> str:
        """Buffered body first; authenticated re-fetch of the URL if that fails"""
        try:
            body = await response.body()
            logger.info("📥 File content read from captured response")
        except PlaywrightError as e:
            logger.warning(f"⚠️  Could not read captured response body, refetching: {e}")
            body = await self._refetch(response.url)
        return decode_export(body)

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_fixed(1),
        retry=retry_if_exception_type(PlaywrightError),
        reraise=True,
    )
    async def _refetch(self, url: str) -> bytes:
        # page.request shares the browser context's cookies
        response = await self.page.request.get(url)
        logger.info(f"📥 File content fetched via network request ({response.status})")
        return await response.body()

    def save(self, export: RawExportFile) -> str:
        os.makedirs(self.download_dir, exist_ok=True)
        path = os.path.join(self.download_dir, os.path.basename(export.filename))
        with open(path, "w", encoding="utf-8") as f:
            f.write(export.content)
        logger.info(f"💾 File saved: {path}")
        return path
