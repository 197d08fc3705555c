"""
Remote extraction service strategy (Apify actor over its HTTP API).

The actor is run synchronously and its dataset items are returned in the same
response. Dataset schemas differ between actors and actor versions, so
adapt_service_items() absorbs the variance before anything reaches the shared
segment normalizer.
"""

from typing import Any, Dict, Iterable, List, Optional

import httpx

from extraction_config import ExtractionConfig, get_extraction_config
from log_events import EventLogger
from logging_setup import get_logger
from segment_normalizer import parse_timestamp
from transcript_errors import AuthError, ConfigurationError, NotFoundError, ServiceError
from transcript_models import ExtractionStrategy, RawSegment
from video_identifier import watch_url

logger = get_logger(__name__)

# Item keys that may hold the segment array, in lookup order
SEGMENT_ARRAY_KEYS = ("transcript", "data", "segments", "captions", "subtitles")
TEXT_BLOB_KEYS = ("transcriptText", "text")
TEXT_KEYS = ("text", "snippet", "caption", "content")
MILLISECOND_KEYS = ("offset", "startMs", "tStartMs", "offsetMs")
SECOND_KEYS = ("start", "startSeconds", "startTime")
DURATION_MS_KEYS = ("durationMs", "dDurationMs")
DURATION_KEYS = ("duration", "dur")
ITEM_URL_KEYS = ("url", "videoUrl", "inputUrl")

# Spacing applied to caption lines that carry no timing
UNTIMED_LINE_SPACING_SECONDS = 5.0


# --- Adapter ---

def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _entry_text(entry: Dict[str, Any]) -> Optional[str]:
    for key in TEXT_KEYS:
        value = entry.get(key)
        if isinstance(value, str):
            return value
    return None


def _entry_start(entry: Dict[str, Any]) -> Optional[float]:
    for key in MILLISECOND_KEYS:
        value = _number(entry.get(key))
        if value is not None:
            return value / 1000.0

    for key in SECOND_KEYS:
        raw = entry.get(key)
        value = _number(raw)
        if value is not None:
            return value
        if isinstance(raw, str):
            try:
                return parse_timestamp(raw)
            except ValueError:
                continue
    return None


def _entry_duration(entry: Dict[str, Any]) -> Optional[float]:
    for key in DURATION_MS_KEYS:
        value = _number(entry.get(key))
        if value is not None:
            return value / 1000.0
    for key in DURATION_KEYS:
        value = _number(entry.get(key))
        if value is not None:
            return value
    return None


def _looks_like_segment(entry: Any) -> bool:
    if not isinstance(entry, dict) or _entry_text(entry) is None:
        return False
    if any(isinstance(entry.get(key), list) for key in SEGMENT_ARRAY_KEYS):
        return False
    return any(key in entry for key in MILLISECOND_KEYS + SECOND_KEYS)


def _segments_from_entries(entries: Iterable[Any]) -> List[RawSegment]:
    segments = []
    for index, entry in enumerate(entries):
        untimed_start = index * UNTIMED_LINE_SPACING_SECONDS
        if isinstance(entry, str):
            segments.append(RawSegment(text=entry, start=untimed_start))
        elif isinstance(entry, dict):
            text = _entry_text(entry)
            if text is None:
                continue
            start = _entry_start(entry)
            segments.append(RawSegment(
                text=text,
                start=untimed_start if start is None else start,
                duration=_entry_duration(entry),
            ))
    return segments


def _segments_from_text(blob: str) -> List[RawSegment]:
    lines = [line.strip() for line in blob.splitlines()]
    lines = [line for line in lines if line]
    return [
        RawSegment(text=line, start=index * UNTIMED_LINE_SPACING_SECONDS)
        for index, line in enumerate(lines)
    ]


def _segments_from_item(item: Dict[str, Any]) -> List[RawSegment]:
    for key in SEGMENT_ARRAY_KEYS:
        value = item.get(key)
        if isinstance(value, list) and value:
            segments = _segments_from_entries(value)
            if segments:
                return segments
        elif isinstance(value, str) and value.strip():
            return _segments_from_text(value)

    for key in TEXT_BLOB_KEYS:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return _segments_from_text(value)

    return []


def _select_item(items: List[Dict[str, Any]], video_id: str) -> Optional[Dict[str, Any]]:
    for item in items:
        if item.get("videoId") == video_id or item.get("id") == video_id:
            return item
        for key in ITEM_URL_KEYS:
            url = item.get(key)
            if isinstance(url, str) and video_id in url:
                return item
    return items[0] if items else None


def adapt_service_items(items: Any, video_id: str) -> List[RawSegment]:
    """
    Convert remote dataset items into raw segments.

    Accepts a list of per-video items (segment arrays under several keys, or a
    plain-text transcript blob) or a flat list of segment dicts.

    Raises:
        NotFoundError: nothing usable in the payload
    """
    if isinstance(items, dict):
        items = [items]
    if not isinstance(items, list) or not items:
        raise NotFoundError("remote service returned no items")

    if all(_looks_like_segment(entry) for entry in items):
        segments = _segments_from_entries(items)
    else:
        item = _select_item([entry for entry in items if isinstance(entry, dict)], video_id)
        segments = _segments_from_item(item) if item else []

    if not segments:
        raise NotFoundError("remote service items contained no transcript")
    return segments


# --- Strategy ---

class RemoteExtractionStrategy(ExtractionStrategy):
    """Coroutine strategy; awaited directly on the orchestrator's loop."""

    name = "remote_service"

    def __init__(self, config: Optional[ExtractionConfig] = None, events: Optional[EventLogger] = None):
        self.config = config or get_extraction_config()
        self.events = events or EventLogger(logger)

    @property
    def timeout_seconds(self) -> float:
        return self.config.remote_service_timeout

    def _endpoint(self) -> str:
        actor = self.config.apify_actor_id.replace("/", "~")
        return f"{self.config.apify_base_url.rstrip('/')}/v2/acts/{actor}/run-sync-get-dataset-items"

    def _payload(self, video_id: str) -> Dict[str, Any]:
        url = watch_url(video_id)
        return {
            "videoUrl": url,
            "videoUrls": [url],
            "subtitlesLanguage": self.config.preferred_language,
        }

    async def extract(self, video_id: str) -> List[RawSegment]:
        token = self.config.apify_token
        if not token:
            raise ConfigurationError("APIFY_API_TOKEN is not configured")

        timeout_s = float(self.timeout_seconds)
        params = {"timeout": max(1, int(timeout_s))}
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}

        self.events.evt("remote_service_request", video_id=video_id, actor=self.config.apify_actor_id)

        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(timeout_s),
                headers=headers,
                follow_redirects=True,
            ) as client:
                response = await client.post(self._endpoint(), params=params, json=self._payload(video_id))
        except httpx.TimeoutException as e:
            self.events.warning("remote_service_timeout", video_id=video_id, timeout_s=timeout_s)
            raise ServiceError(f"remote service timed out after {timeout_s:.0f}s") from e
        except httpx.HTTPError as e:
            raise ServiceError(f"remote service transport error: {type(e).__name__}") from e

        self._check_status(response, video_id)

        try:
            items = response.json()
        except ValueError as e:
            raise ServiceError("remote service returned a non-JSON body") from e

        segments = adapt_service_items(items, video_id)
        self.events.evt("remote_service_adapted", video_id=video_id, segments=len(segments))
        return segments

    def _check_status(self, response: httpx.Response, video_id: str) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return

        self.events.warning("remote_service_http_error", video_id=video_id, status_code=status)

        if status in (401, 403):
            raise AuthError(f"remote service rejected credentials (status={status})")
        if status == 404:
            raise ServiceError("remote actor not found (status=404)")
        if status == 402:
            raise ServiceError("remote service quota exhausted (status=402)")
        if status == 429:
            raise ServiceError("remote service rate limited (status=429)")
        raise ServiceError(f"remote service failed (status={status})")
