"""
Direct scrape strategy: watch page -> caption track manifest -> timed-text XML.

This module implements the cheapest extraction path:
- Fetch the public watch page with a realistic browser identity.
- Isolate the embedded "captionTracks" JSON array by bracket matching.
- Pick the preferred-language track (manual captions before ASR).
- Fetch the track's timed-text XML and parse <text> elements with a tolerant regex.
- Tenacity retry with exponential backoff and jitter for transport errors,
  urllib3 Retry for 429/5xx responses.
- Sensitive URL parameters are masked in logs.
"""

import html
import json
import re
from typing import Optional, Dict, List, Any
from urllib.parse import urlencode, urlparse, urlunparse, parse_qs

import requests
from tenacity import retry, stop_after_attempt, wait_exponential_jitter, retry_if_exception_type
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from extraction_config import ExtractionConfig, get_extraction_config
from log_events import EventLogger
from logging_setup import get_logger
from transcript_errors import NetworkError, NotFoundError, ParseError
from transcript_models import ExtractionStrategy, RawSegment
from user_agent_manager import UserAgentManager
from video_identifier import watch_url

# --- Configuration ---
TRANSPORT_RETRY_ATTEMPTS = 2
TRANSPORT_BACKOFF_MIN = 0.5
TRANSPORT_BACKOFF_MAX = 2.0
CAPTION_TRACKS_KEYS = ('"captionTracks":', '\\"captionTracks\\":')
CONSENT_MARKERS = ("before you continue to youtube", "consent.youtube.com")

_TEXT_ELEMENT_RE = re.compile(r"<text\b([^>]*)>(.*?)</text>", re.DOTALL | re.IGNORECASE)
_ATTRIBUTE_RE = re.compile(r"""(\w+)\s*=\s*(?:"([^"]*)"|'([^']*)')""")
_INNER_TAG_RE = re.compile(r"<[^>]+>")

logger = get_logger(__name__)


# --- Helper Functions ---

def _mask_url_for_logging(url: str) -> str:
    """Mask sensitive query parameters in URLs for logging."""
    try:
        parsed = urlparse(url)
        if not parsed.query:
            return url
        params = parse_qs(parsed.query, keep_blank_values=True)
        sensitive_params = {'key', 'token', 'auth', 'session', 'sig', 'signature', 'ei', 'expire', 'sparams'}
        masked_params = {
            key: ['***MASKED***'] * len(values) if key.lower() in sensitive_params else values
            for key, values in params.items()
        }
        masked_query = urlencode(masked_params, doseq=True)
        return urlunparse(parsed._replace(query=masked_query))
    except ValueError:
        return f"{url.split('?')[0]}?***MASKED_QUERY***" if '?' in url else url


class TimeoutHTTPAdapter(HTTPAdapter):
    """HTTPAdapter that applies a default timeout to requests sent without one."""

    def __init__(self, *args, timeout: Optional[float] = None, **kwargs):
        self.timeout = timeout
        super().__init__(*args, **kwargs)

    def send(self, request, **kwargs):
        if kwargs.get("timeout") is None:
            kwargs["timeout"] = self.timeout
        return super().send(request, **kwargs)


def create_http_session(config: ExtractionConfig, headers: Optional[Dict[str, str]] = None) -> requests.Session:
    """
    Create a requests session with 429/5xx retries and a bounded timeout on
    every request, including those issued by third-party clients.
    """
    session = requests.Session()
    retry_strategy = Retry(
        total=config.http_retry_attempts,
        backoff_factor=0.6,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET"],
    )
    adapter = TimeoutHTTPAdapter(max_retries=retry_strategy, timeout=config.http_request_timeout)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    if headers:
        session.headers.update(headers)
    return session


def _create_scrape_session(config: ExtractionConfig, user_agents: UserAgentManager) -> requests.Session:
    """Create an HTTP session for watch-page and timed-text requests."""
    return create_http_session(config, user_agents.get_transcript_headers(additional_headers={"Accept": "*/*"}))


@retry(
    stop=stop_after_attempt(TRANSPORT_RETRY_ATTEMPTS),
    wait=wait_exponential_jitter(initial=TRANSPORT_BACKOFF_MIN, max=TRANSPORT_BACKOFF_MAX),
    retry=retry_if_exception_type((requests.exceptions.ConnectionError, requests.exceptions.Timeout)),
    before_sleep=lambda s: logger.info(f"Request failed, retrying in {s.next_action.sleep:.2f}s..."),
    reraise=True,
)
def _execute_request(session: requests.Session, url: str, video_id: str, timeout: float) -> requests.Response:
    """Execute an HTTP GET with a watch-page referer and explicit timeout."""
    headers = {"Referer": watch_url(video_id)}
    return session.get(url, headers=headers, timeout=timeout)


# --- Parsing ---

def _find_array_end(text: str, start: int) -> int:
    """
    Return the index just past the JSON array opening at `start`, or -1.

    Brackets inside string literals are ignored, and backslash escapes inside
    strings are honored.
    """
    depth = 0
    in_string = False
    escaped = False

    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
            if depth == 0:
                return index + 1

    return -1


def _unescape_inline_json(text: str) -> str:
    """Undo the escaping applied when JSON is embedded in a JS string literal."""
    return text.replace('\\"', '"').replace("\\u0026", "&").replace("\\/", "/")


def _decode_array(text: str, array_start: int) -> Optional[Any]:
    array_end = _find_array_end(text, array_start)
    if array_end == -1:
        return None
    try:
        return json.loads(text[array_start:array_end])
    except json.JSONDecodeError:
        return None


def extract_caption_tracks(page_html: str) -> List[Dict[str, Any]]:
    """
    Pull the caption track manifest out of a watch page.

    Raises:
        NotFoundError: the page carries no caption manifest
        ParseError: the manifest is present but cannot be isolated or decoded
    """
    for key in CAPTION_TRACKS_KEYS:
        key_index = page_html.find(key)
        if key_index != -1:
            array_start = key_index + len(key)
            break
    else:
        raise NotFoundError("no caption tracks on watch page")

    while array_start < len(page_html) and page_html[array_start].isspace():
        array_start += 1

    if array_start >= len(page_html) or page_html[array_start] != "[":
        raise ParseError("captionTracks is not followed by a JSON array")

    tracks = _decode_array(page_html, array_start)
    if tracks is None:
        tracks = _decode_array(_unescape_inline_json(page_html[array_start:]), 0)
    if tracks is None:
        raise ParseError("caption manifest could not be isolated or decoded")

    if not isinstance(tracks, list):
        raise ParseError("caption manifest is not a list")
    return [track for track in tracks if isinstance(track, dict)]


def _track_name(track: Dict[str, Any]) -> str:
    name = track.get("name") or {}
    if isinstance(name, str):
        return name
    if not isinstance(name, dict):
        raise ParseError(f"track name has unexpected type {type(name).__name__}")
    if isinstance(name.get("simpleText"), str) and name["simpleText"]:
        return name["simpleText"]
    runs = name.get("runs") or []
    if not isinstance(runs, list):
        raise ParseError("track name runs is not a list")
    return "".join(
        run["text"] for run in runs
        if isinstance(run, dict) and isinstance(run.get("text"), str)
    )


def _prefer_manual(tracks: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Official tracks (kind is not 'asr') before auto-generated ones."""
    if not tracks:
        return None
    official = next((t for t in tracks if t.get("kind") != "asr"), None)
    return official or tracks[0]


def pick_caption_track(tracks: List[Dict[str, Any]], preferred_language: str = "en") -> Optional[Dict[str, Any]]:
    """
    Pick the best track: preferred language, then English, then any en-*
    variant, then the first track.

    Raises:
        ParseError: a track consulted by name carries a malformed name
    """
    if not tracks:
        return None

    exact = [t for t in tracks if t.get("languageCode") == preferred_language]
    choice = _prefer_manual(exact)
    if choice:
        return choice

    english = [
        t for t in tracks
        if t.get("languageCode") == "en" or _track_name(t).startswith("English")
    ]
    choice = _prefer_manual(english)
    if choice:
        return choice

    variants = [t for t in tracks if str(t.get("languageCode", "")).startswith("en-")]
    choice = _prefer_manual(variants)
    if choice:
        return choice

    return tracks[0]


def _float_attr(attributes: Dict[str, str], name: str) -> Optional[float]:
    value = attributes.get(name)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def parse_timedtext_xml(xml_text: str) -> List[RawSegment]:
    """
    Parse <text start=".." dur="..">..</text> elements.

    The document is not parsed strictly; attribute order is free and `dur`
    is optional. Elements without a numeric start are skipped.

    Raises:
        ParseError: no text elements were found
    """
    segments = []
    for attribute_blob, payload in _TEXT_ELEMENT_RE.findall(xml_text or ""):
        attributes = {
            name.lower(): double or single
            for name, double, single in _ATTRIBUTE_RE.findall(attribute_blob)
        }
        start = _float_attr(attributes, "start")
        if start is None:
            continue
        text = html.unescape(_INNER_TAG_RE.sub("", payload))
        segments.append(RawSegment(text=text, start=start, duration=_float_attr(attributes, "dur")))

    if not segments:
        raise ParseError("no <text> elements in timed-text document")
    return segments


# --- Strategy ---

class DirectScrapeStrategy(ExtractionStrategy):
    """Watch-page scrape; blocking, run on a worker thread by the orchestrator."""

    name = "direct_scrape"

    def __init__(self, config: Optional[ExtractionConfig] = None, events: Optional[EventLogger] = None,
                 session: Optional[requests.Session] = None, user_agents: Optional[UserAgentManager] = None):
        self.config = config or get_extraction_config()
        self.events = events or EventLogger(logger)
        self.user_agents = user_agents or UserAgentManager(self.config.preferred_language)
        self._session = session

    @property
    def timeout_seconds(self) -> float:
        return self.config.direct_scrape_timeout

    def extract(self, video_id: str) -> List[RawSegment]:
        session = self._session or _create_scrape_session(self.config, self.user_agents)
        try:
            page_html = self._fetch_watch_page(session, video_id)
            tracks = extract_caption_tracks(page_html)
            self.events.evt("direct_scrape_tracks_found", video_id=video_id, count=len(tracks),
                            languages=[t.get("languageCode") for t in tracks][:10])

            track = pick_caption_track(tracks, self.config.preferred_language)
            if track is None:
                raise NotFoundError("caption manifest is empty")

            base_url = track.get("baseUrl")
            if not base_url:
                raise NotFoundError(f"track {track.get('languageCode')!r} has no baseUrl")
            if not isinstance(base_url, str):
                raise ParseError(f"track baseUrl has unexpected type {type(base_url).__name__}")
            if base_url.startswith("/"):
                base_url = "https://www.youtube.com" + base_url

            self.events.evt("direct_scrape_track_picked", video_id=video_id,
                            lang=track.get("languageCode"), kind=track.get("kind", "manual"))

            xml_text = self._fetch_track(session, video_id, base_url)
            segments = parse_timedtext_xml(xml_text)
            self.events.evt("direct_scrape_parsed", video_id=video_id, segments=len(segments))
            return segments
        finally:
            if self._session is None:
                session.close()

    def _fetch_watch_page(self, session: requests.Session, video_id: str) -> str:
        url = watch_url(video_id, language=self.config.preferred_language)
        resp = self._get(session, url, video_id, "watch page")

        if resp.status_code == 404:
            raise NotFoundError(f"watch page not found for {video_id}")
        if not resp.ok:
            raise NetworkError(f"watch page status={resp.status_code}")

        body = resp.text or ""
        lowered = body[:20000].lower()
        final_url = str(getattr(resp, "url", "") or "")
        if "consent.youtube.com" in final_url or any(marker in lowered for marker in CONSENT_MARKERS):
            self.events.warning("direct_scrape_consent_wall", video_id=video_id)
            raise NetworkError("blocked by consent wall")

        return body

    def _fetch_track(self, session: requests.Session, video_id: str, url: str) -> str:
        resp = self._get(session, url, video_id, "timed-text track")
        if not resp.ok:
            raise NetworkError(f"timed-text status={resp.status_code}")
        if not resp.text:
            raise ParseError("timed-text response was empty")
        return resp.text

    def _get(self, session: requests.Session, url: str, video_id: str, label: str) -> requests.Response:
        masked = _mask_url_for_logging(url)
        try:
            resp = _execute_request(session, url, video_id, self.config.http_request_timeout)
        except requests.exceptions.RequestException as e:
            self.events.evt("direct_scrape_request_failed", video_id=video_id, url=masked,
                            detail=f"{type(e).__name__}: {e}"[:200])
            raise NetworkError(f"{label} request failed: {type(e).__name__}") from e

        logger.debug(f"GET {masked} -> {resp.status_code}")
        return resp
