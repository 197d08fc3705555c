"""
Ranked capability probes for the watch-page transcript UI.

Each UI interaction (expand the description, open the transcript panel,
locate segment rows) is an ordered list of independent detection steps:
selector lists first, then visible-text matching, then structural heuristics
and finally a keyboard fallback. Steps are tried in order and the first one
that reports a match wins.

The page argument is an async Playwright Page; tests pass a fake with the same
methods.
"""

from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from playwright.async_api import Error as PlaywrightError

from log_events import EventLogger
from logging_setup import get_logger
from segment_normalizer import parse_timestamp
from transcript_models import RawSegment

logger = get_logger(__name__)

CLICK_TIMEOUT_MS = 3000
PANEL_CONFIRM_TIMEOUT_MS = 5000
SEGMENT_WAIT_TIMEOUT_MS = 5000
SETTLE_MS = 300

CONSENT_SELECTORS = [
    'button:has-text("Accept all")',
    'button:has-text("I agree")',
    'button[aria-label*="accept" i]',
    'tp-yt-paper-button:has-text("Accept")',
    '[role="button"]:has-text("Accept")',
]

PLAYER_SELECTOR = '.html5-video-container, #movie_player'

EXPAND_SELECTORS = [
    'tp-yt-paper-button#expand',
    'ytd-text-inline-expander tp-yt-paper-button',
    'ytd-watch-metadata tp-yt-paper-button#expand',
    'button#expand',
    'button[aria-label="Show more"]',
    'yt-formatted-string#expand',
]

TRANSCRIPT_BUTTON_SELECTORS = [
    'ytd-video-description-transcript-section-renderer button',
    'button[aria-label="Show transcript"]',
    'ytd-button-renderer button[aria-label="Show transcript"]',
    'button:has-text("Show transcript")',
    'tp-yt-paper-button:has-text("Show transcript")',
    'button[aria-label*="transcript" i]',
]

MORE_ACTIONS_SELECTORS = [
    'button[aria-label="More actions"]',
    'yt-button-shape[aria-label="More actions"] button',
    'tp-yt-paper-button[aria-label="More actions"]',
    '#button-shape button[aria-haspopup="menu"]',
]

OVERFLOW_TRANSCRIPT_SELECTORS = [
    'tp-yt-paper-item:has-text("Show transcript")',
    'ytd-menu-service-item-renderer:has-text("Show transcript")',
    '[role="menuitem"]:has-text("Show transcript")',
]

SETTINGS_BUTTON_SELECTOR = 'button.ytp-button.ytp-settings-button'
SETTINGS_MENU_ITEM_SELECTOR = '.ytp-menuitem'
TRANSCRIPT_SHORTCUT = "Control+J"

TRANSCRIPT_PANEL_SELECTOR = (
    'ytd-transcript-search-panel-renderer, ytd-transcript-renderer, '
    'ytd-engagement-panel-section-list-renderer[target-id*="transcript"]'
)

SEGMENT_SELECTORS = [
    'ytd-transcript-segment-renderer',
    'transcript-segment-view-model',
    'div.segment.style-scope.ytd-transcript-segment-renderer',
    '.ytd-transcript-segment-renderer',
    '.transcript-segment',
]

TIMESTAMP_SUBSELECTORS = [
    '.segment-timestamp',
    '.ytwTranscriptSegmentViewModelTimestamp',
    'div[class*="timestamp"]',
    '[start-time]',
    'div:first-child div',
]

TEXT_SUBSELECTORS = [
    '.segment-text',
    'span.yt-core-attributed-string',
    'yt-formatted-string',
    'span:not([class*="timestamp"])',
]

_CLICK_BY_TEXT_JS = """
({ scope, needle, exact }) => {
  const wanted = needle.toLowerCase();
  for (const el of document.querySelectorAll(scope)) {
    const text = (el.textContent || '').trim().toLowerCase();
    if (!text) continue;
    if (exact ? text === wanted : text.includes(wanted)) {
      el.click();
      return true;
    }
  }
  return false;
}
"""

_DISCOVER_SEGMENTS_JS = """
() => {
  const panels = document.querySelectorAll('ytd-engagement-panel-section-list-renderer');
  for (const panel of panels) {
    const title = panel.querySelector('h2#title yt-formatted-string');
    if (!title || !(title.textContent || '').includes('Transcript')) continue;
    const selectors = [];
    for (const el of panel.querySelectorAll('*')) {
      const tag = el.tagName.toLowerCase();
      const cls = typeof el.className === 'string' ? el.className.trim() : '';
      if (tag.includes('segment') || cls.includes('segment')) {
        const id = el.id ? `#${el.id}` : '';
        const classes = cls ? '.' + cls.split(/\\s+/).join('.') : '';
        selectors.push(`${tag}${id}${classes}`);
      }
    }
    return { isTranscriptPanel: true, possibleSelectors: selectors };
  }
  return { isTranscriptPanel: false, possibleSelectors: [] };
}
"""

_EXTRACT_ROWS_JS = """
({ container, timestampSelectors, textSelectors }) => {
  const pick = (root, selectors) => {
    for (const selector of selectors) {
      const el = root.querySelector(selector);
      if (el && (el.textContent || '').trim()) return el;
    }
    return null;
  };
  return Array.from(document.querySelectorAll(container)).map((row) => {
    const stampEl = pick(row, timestampSelectors);
    const textEl = pick(row, textSelectors) || row;
    const timestamp = stampEl ? stampEl.textContent.trim() : '';
    let text = (textEl.textContent || '').trim();
    if (textEl === row && timestamp) {
      text = text.replace(timestamp, '').trim();
    }
    return { timestamp, text };
  });
}
"""

ProbeStep = Tuple[str, Callable[[Any], Awaitable[Optional[str]]]]


@dataclass
class ProbeResult:
    """Outcome of a ranked probe: which step matched and what it matched on."""
    probe: str
    step: Optional[str] = None
    detail: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.step is not None


class RankedProbe:
    """
    Ordered detection steps composed with short-circuit evaluation.

    A step returns a truthy detail string (usually the selector used) on
    success and None otherwise. Playwright errors inside a step count as that
    step failing; the next step is then tried.
    """

    def __init__(self, name: str, steps: Sequence[ProbeStep], events: Optional[EventLogger] = None):
        self.name = name
        self.steps = list(steps)
        self.events = events or EventLogger(logger)

    async def run(self, page) -> ProbeResult:
        for step_name, step in self.steps:
            try:
                detail = await step(page)
            except PlaywrightError as e:
                self.events.evt("browser_probe_step_failed", probe=self.name, step=step_name,
                                detail=_first_line(e))
                continue

            if detail:
                self.events.evt("browser_probe_matched", probe=self.name, step=step_name, selector=detail)
                return ProbeResult(self.name, step_name, detail)

        self.events.evt("browser_probe_exhausted", probe=self.name, steps=len(self.steps))
        return ProbeResult(self.name)


def _first_line(error: BaseException) -> str:
    text = str(error)
    return text.splitlines()[0][:200] if text else type(error).__name__


# --- Step primitives ---

async def click_first_visible(page, selectors: Sequence[str], events: Optional[EventLogger] = None,
                              probe: str = "") -> Optional[str]:
    """Click the first visible match among `selectors`; return that selector."""
    for selector in selectors:
        try:
            element = page.locator(selector).first
            if not await element.is_visible():
                continue
            await element.click(timeout=CLICK_TIMEOUT_MS)
            await page.wait_for_timeout(SETTLE_MS)
            return selector
        except PlaywrightError as e:
            if events:
                events.evt("browser_selector_failed", probe=probe, selector=selector, detail=_first_line(e))
            continue
    return None


async def click_by_text(page, scope: str, needle: str, exact: bool = False) -> Optional[str]:
    """Click the first element under `scope` whose visible text matches `needle`."""
    clicked = await page.evaluate(_CLICK_BY_TEXT_JS, {"scope": scope, "needle": needle, "exact": exact})
    if clicked:
        await page.wait_for_timeout(SETTLE_MS)
        return f"text={needle}"
    return None


async def transcript_panel_visible(page) -> bool:
    """Wait briefly for the transcript panel to be visible."""
    try:
        await page.wait_for_selector(TRANSCRIPT_PANEL_SELECTOR, state="visible", timeout=PANEL_CONFIRM_TIMEOUT_MS)
    except PlaywrightError:
        return False
    return True


async def _confirmed(page, detail: Optional[str]) -> Optional[str]:
    if detail and await transcript_panel_visible(page):
        return detail
    return None


# --- Expand description ---

async def _expand_by_text(page) -> Optional[str]:
    for needle in ("...more", "more", "show more"):
        detail = await click_by_text(page, "tp-yt-paper-button, button, #expand", needle, exact=True)
        if detail:
            return detail
    return None


def expand_description_probe(events: Optional[EventLogger] = None) -> RankedProbe:
    return RankedProbe("expand_description", [
        ("selector", partial(click_first_visible, selectors=EXPAND_SELECTORS, events=events,
                             probe="expand_description")),
        ("text", _expand_by_text),
    ], events)


# --- Open transcript panel ---

async def _open_via_selectors(page, events: Optional[EventLogger] = None) -> Optional[str]:
    detail = await click_first_visible(page, TRANSCRIPT_BUTTON_SELECTORS, events, "open_transcript")
    return await _confirmed(page, detail)


async def _open_via_button_text(page) -> Optional[str]:
    detail = await click_by_text(page, "button", "transcript")
    return await _confirmed(page, detail)


async def _open_via_overflow_menu(page, events: Optional[EventLogger] = None) -> Optional[str]:
    if not await click_first_visible(page, MORE_ACTIONS_SELECTORS, events, "more_actions"):
        return None
    detail = await click_first_visible(page, OVERFLOW_TRANSCRIPT_SELECTORS, events, "more_actions")
    return await _confirmed(page, detail)


async def _open_via_settings_menu(page, events: Optional[EventLogger] = None) -> Optional[str]:
    if not await click_first_visible(page, [SETTINGS_BUTTON_SELECTOR], events, "settings_menu"):
        return None
    detail = await click_by_text(page, SETTINGS_MENU_ITEM_SELECTOR, "transcript")
    return await _confirmed(page, detail)


async def _open_via_shortcut(page) -> Optional[str]:
    # Unconfirmed; the segment probe decides whether it worked
    await page.keyboard.press(TRANSCRIPT_SHORTCUT)
    await page.wait_for_timeout(1000)
    return f"key={TRANSCRIPT_SHORTCUT}"


def open_transcript_probe(events: Optional[EventLogger] = None) -> RankedProbe:
    return RankedProbe("open_transcript", [
        ("selector", partial(_open_via_selectors, events=events)),
        ("button_text", _open_via_button_text),
        ("overflow_menu", partial(_open_via_overflow_menu, events=events)),
        ("settings_menu", partial(_open_via_settings_menu, events=events)),
        ("keyboard_shortcut", _open_via_shortcut),
    ], events)


# --- Locate segments ---

async def _segments_by_selector(page, events: Optional[EventLogger] = None) -> Optional[str]:
    try:
        await page.wait_for_selector(", ".join(SEGMENT_SELECTORS), timeout=SEGMENT_WAIT_TIMEOUT_MS)
    except PlaywrightError as e:
        if events:
            events.evt("browser_segment_wait_failed", detail=_first_line(e))

    for selector in SEGMENT_SELECTORS:
        if await page.query_selector(selector):
            return selector
    return None


async def _segments_by_structure(page, events: Optional[EventLogger] = None) -> Optional[str]:
    panel = await page.evaluate(_DISCOVER_SEGMENTS_JS)
    if not panel or not panel.get("isTranscriptPanel"):
        return None

    candidates = panel.get("possibleSelectors") or []
    if not candidates:
        return None

    selector = candidates[0]
    if events:
        events.warning("browser_heuristic_selector_used", selector=selector, candidates=len(candidates))
    return selector


def segment_locator_probe(events: Optional[EventLogger] = None) -> RankedProbe:
    return RankedProbe("locate_segments", [
        ("selector", partial(_segments_by_selector, events=events)),
        ("structural_discovery", partial(_segments_by_structure, events=events)),
    ], events)


# --- Extraction ---

async def extract_segment_rows(page, container_selector: str) -> List[Dict[str, str]]:
    """Read {timestamp, text} for every segment container."""
    rows = await page.evaluate(_EXTRACT_ROWS_JS, {
        "container": container_selector,
        "timestampSelectors": TIMESTAMP_SUBSELECTORS,
        "textSelectors": TEXT_SUBSELECTORS,
    })
    return rows or []


def rows_to_raw_segments(rows: Sequence[Dict[str, str]]) -> Tuple[List[RawSegment], int]:
    """
    Convert scraped rows to raw segments.

    Rows whose timestamp is not MM:SS or HH:MM:SS are dropped.

    Returns:
        (segments, dropped_count)
    """
    segments = []
    dropped = 0
    for row in rows:
        try:
            start = parse_timestamp(row.get("timestamp") or "")
        except ValueError:
            dropped += 1
            continue
        segments.append(RawSegment(text=row.get("text") or "", start=start))
    return segments, dropped
