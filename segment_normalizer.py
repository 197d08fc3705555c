"""
Segment normalization.

Every strategy hands its raw output to normalize_segments(), which produces
the canonical, sorted TranscriptSegment list returned to callers.
"""

import html
import math
import re
from typing import Iterable, List

from transcript_errors import EmptyResultError
from transcript_models import RawSegment, TranscriptSegment

_WHITESPACE_RE = re.compile(r"\s+")
_TIMESTAMP_RE = re.compile(r"^(?:(\d+):)?(\d{1,2}):(\d{2})(?:\.\d+)?$")


def format_timestamp(seconds: float) -> str:
    """
    Render seconds as M:SS below one hour and H:MM:SS at or above.

    >>> format_timestamp(65.0)
    '1:05'
    >>> format_timestamp(3723)
    '1:02:03'
    """
    total = int(max(0.0, seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def parse_timestamp(label: str) -> float:
    """
    Convert an MM:SS or HH:MM:SS label to seconds.

    Raises:
        ValueError: if the label is not a timestamp
    """
    if label is None:
        raise ValueError("timestamp is None")

    match = _TIMESTAMP_RE.match(label.strip())
    if not match:
        raise ValueError(f"not a timestamp: {label!r}")

    hours, minutes, seconds = match.groups()
    if hours is not None and int(minutes) >= 60:
        raise ValueError(f"minutes out of range: {label!r}")
    if int(seconds) >= 60:
        raise ValueError(f"seconds out of range: {label!r}")

    return float(int(hours or 0) * 3600 + int(minutes) * 60 + int(seconds))


def clean_text(text: str) -> str:
    """Decode residual HTML entities and collapse whitespace."""
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", html.unescape(text)).strip()


def _safe_start(start) -> float:
    try:
        value = float(start)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


def normalize_segments(raw: Iterable[RawSegment]) -> List[TranscriptSegment]:
    """
    Convert raw strategy output into canonical segments.

    Blank segments are dropped; if every segment is blank the result counts as
    a failed extraction. Sorting is stable so equal starts keep source order.

    Raises:
        EmptyResultError: on empty input or all-blank text
    """
    raw_list = list(raw or [])
    if not raw_list:
        raise EmptyResultError("strategy returned no segments")

    segments = []
    for item in raw_list:
        text = clean_text(item.text)
        if not text:
            continue
        start = _safe_start(item.start)
        duration = item.duration
        if duration is not None:
            duration = _safe_start(duration)
        segments.append(TranscriptSegment(
            text=text,
            start_seconds=start,
            start_label=format_timestamp(start),
            duration_seconds=duration,
        ))

    if not segments:
        raise EmptyResultError(f"all {len(raw_list)} segments had empty text")

    segments.sort(key=lambda segment: segment.start_seconds)
    return segments
