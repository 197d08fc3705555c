"""
Browser automation strategy (async Playwright Chromium).

The slowest but most resilient path: load the watch page in headless Chromium,
open the transcript panel through ranked DOM probes and read the rendered
segment rows.

The browser, context and page are released on every exit path. The strategy
enforces its own deadline slightly inside the orchestrator's budget, so a
timed-out attempt tears down its own browser process.
"""

import asyncio
import os
from typing import List, Optional

from playwright.async_api import async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from dom_probes import (
    CONSENT_SELECTORS,
    PLAYER_SELECTOR,
    click_first_visible,
    expand_description_probe,
    extract_segment_rows,
    open_transcript_probe,
    rows_to_raw_segments,
    segment_locator_probe,
)
from extraction_config import ExtractionConfig, get_extraction_config
from log_events import EventLogger
from logging_setup import get_logger
from transcript_errors import (
    BrowserLaunchError,
    ElementNotFoundError,
    NetworkError,
    StrategyTimeoutError,
    classify_exception,
)
from transcript_models import ExtractionStrategy, RawSegment
from user_agent_manager import UserAgentManager
from video_identifier import watch_url

logger = get_logger(__name__)

LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"]
LAUNCH_TIMEOUT_MS = 20000
PLAYER_WAIT_TIMEOUT_MS = 10000
CONSENT_SETTLE_TIMEOUT_MS = 5000
VIEWPORT = {"width": 1280, "height": 800}
BLOCKED_RESOURCE_TYPES = {"image", "media", "font"}

# Seconds kept back from the strategy budget so cleanup finishes inside it
DEADLINE_MARGIN_S = 1.0
# Share of the strategy budget navigation may use at most
NAVIGATION_BUDGET_SHARE = 0.6


async def _block_heavy_resources(route):
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


def _first_line(error: BaseException) -> str:
    text = str(error)
    return text.splitlines()[0][:200] if text else type(error).__name__


def _write_text(path: str, content: str) -> None:
    with open(path, "w", encoding="utf-8") as handle:
        handle.write(content)


class BrowserAutomationStrategy(ExtractionStrategy):
    """Coroutine strategy; awaited directly on the orchestrator's loop."""

    name = "browser_automation"

    def __init__(self, config: Optional[ExtractionConfig] = None, events: Optional[EventLogger] = None,
                 playwright_factory=async_playwright):
        self.config = config or get_extraction_config()
        self.events = events or EventLogger(logger)
        self.playwright_factory = playwright_factory
        self.user_agents = UserAgentManager(self.config.preferred_language)

    @property
    def timeout_seconds(self) -> float:
        return self.config.browser_automation_timeout

    @property
    def navigation_timeout_ms(self) -> int:
        budget_cap = self.timeout_seconds * NAVIGATION_BUDGET_SHARE
        return int(min(self.config.browser_navigation_timeout, budget_cap) * 1000)

    async def extract(self, video_id: str) -> List[RawSegment]:
        deadline = max(1.0, self.timeout_seconds - DEADLINE_MARGIN_S)
        try:
            return await asyncio.wait_for(self._capture(video_id), timeout=deadline)
        except asyncio.TimeoutError as e:
            self.events.warning("browser_deadline_exceeded", video_id=video_id, deadline_s=deadline)
            raise StrategyTimeoutError(f"browser automation exceeded {deadline:.0f}s") from e
        except PlaywrightError as e:
            raise classify_exception(e) from e

    async def _capture(self, video_id: str) -> List[RawSegment]:
        async with self.playwright_factory() as playwright:
            browser = context = page = None
            try:
                browser = await self._launch(playwright)
                context = await browser.new_context(
                    user_agent=self.user_agents.get_user_agent(),
                    locale=self.config.preferred_language,
                    viewport=VIEWPORT,
                )
                page = await context.new_page()
                await page.route("**/*", _block_heavy_resources)

                await self._navigate(page, video_id)
                await self._accept_consent(page, video_id)
                await self._wait_for_player(page, video_id)
                return await self._read_transcript(page, video_id)
            finally:
                await self._close_all(video_id, page, context, browser)

    async def _launch(self, playwright):
        launch_kwargs = {
            "headless": self.config.browser_headless,
            "args": LAUNCH_ARGS,
            "timeout": LAUNCH_TIMEOUT_MS,
        }
        if self.config.chromium_executable_path:
            launch_kwargs["executable_path"] = self.config.chromium_executable_path

        try:
            browser = await playwright.chromium.launch(**launch_kwargs)
        except PlaywrightError as e:
            self.events.warning("browser_launch_failed", detail=_first_line(e))
            raise BrowserLaunchError(f"chromium launch failed: {_first_line(e)}") from e

        self.events.evt("browser_launched", headless=self.config.browser_headless)
        return browser

    async def _navigate(self, page, video_id: str) -> None:
        nav_ms = self.navigation_timeout_ms
        try:
            await page.goto(watch_url(video_id), wait_until="domcontentloaded", timeout=nav_ms)
        except PlaywrightTimeoutError as e:
            await self._capture_diagnostics(page, "navigation", video_id)
            raise StrategyTimeoutError(f"navigation exceeded {nav_ms}ms") from e
        except PlaywrightError as e:
            raise NetworkError(f"navigation failed: {_first_line(e)}") from e

    async def _accept_consent(self, page, video_id: str) -> None:
        selector = await click_first_visible(page, CONSENT_SELECTORS, self.events, "consent")
        if not selector:
            return
        self.events.evt("browser_consent_accepted", video_id=video_id, selector=selector)
        try:
            await page.wait_for_load_state("domcontentloaded", timeout=CONSENT_SETTLE_TIMEOUT_MS)
        except PlaywrightError as e:
            self.events.evt("browser_consent_settle_failed", video_id=video_id, detail=_first_line(e))

    async def _wait_for_player(self, page, video_id: str) -> None:
        try:
            await page.wait_for_selector(PLAYER_SELECTOR, timeout=PLAYER_WAIT_TIMEOUT_MS)
        except PlaywrightError as e:
            await self._capture_diagnostics(page, "player-not-found", video_id)
            raise ElementNotFoundError(f"video player not found: {_first_line(e)}") from e

    async def _read_transcript(self, page, video_id: str) -> List[RawSegment]:
        expanded = await expand_description_probe(self.events).run(page)
        if not expanded.matched:
            logger.debug(f"Description not expanded for {video_id}; continuing")

        opened = await open_transcript_probe(self.events).run(page)
        if not opened.matched:
            await self._capture_diagnostics(page, "transcript-button", video_id)
            raise ElementNotFoundError("transcript panel could not be opened")

        located = await segment_locator_probe(self.events).run(page)
        if not located.matched:
            await self._capture_diagnostics(page, "segments-not-found", video_id)
            raise ElementNotFoundError("transcript segments not found")

        rows = await extract_segment_rows(page, located.detail)
        segments, dropped = rows_to_raw_segments(rows)
        self.events.evt("browser_segments_extracted", video_id=video_id, rows=len(rows),
                        segments=len(segments), dropped=dropped, selector=located.detail)

        if not segments:
            await self._capture_diagnostics(page, "segments-unparseable", video_id)
            raise ElementNotFoundError(f"no readable segments among {len(rows)} rows")
        return segments

    async def _close_all(self, video_id: str, *resources) -> None:
        """Close page, context and browser in that order, logging close failures."""
        for resource in resources:
            if resource is None:
                continue
            try:
                await resource.close()
            except PlaywrightError as e:
                self.events.evt("browser_cleanup_error", video_id=video_id,
                                resource=type(resource).__name__, detail=_first_line(e))
        self.events.evt("browser_closed", video_id=video_id)

    async def _capture_diagnostics(self, page, stage: str, video_id: str) -> None:
        """Best-effort screenshot and page source for offline debugging of UI drift."""
        directory = self.config.diagnostics_dir
        if not directory or page is None:
            return

        base = os.path.join(directory, f"{stage}-{video_id}")
        try:
            await asyncio.to_thread(os.makedirs, directory, exist_ok=True)
            await page.screenshot(path=f"{base}.png", full_page=True)
            content = await page.content()
            await asyncio.to_thread(_write_text, f"{base}.html", content)
            self.events.evt("browser_diagnostics_saved", video_id=video_id, stage=stage, path=base)
        except (PlaywrightError, OSError) as e:
            logger.debug(f"Diagnostics capture failed for {stage}: {e}")
