"""
Video identifier normalization.

Turns a raw user-supplied reference (bare ID, watch URL, share link, embed,
shorts or live link) into the canonical 11-character video ID.
"""

import re
from typing import Optional

from transcript_errors import InvalidIdentifier

VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")

_ID = r"([A-Za-z0-9_-]{11})"
_HOST = r"(?:https?://)?(?:(?:www|m|music)\.)?youtube(?:-nocookie)?\.com"

# Tried in order, first match wins
URL_PATTERNS = [
    ("watch", re.compile(_HOST + r"/watch\?(?:[^#]*&)?v=" + _ID + r"(?![A-Za-z0-9_-])")),
    ("embed", re.compile(_HOST + r"/embed/" + _ID + r"(?![A-Za-z0-9_-])")),
    ("legacy", re.compile(_HOST + r"/v/" + _ID + r"(?![A-Za-z0-9_-])")),
    ("short_link", re.compile(r"(?:https?://)?(?:www\.)?youtu\.be/" + _ID + r"(?![A-Za-z0-9_-])")),
    ("shorts", re.compile(_HOST + r"/shorts/" + _ID + r"(?![A-Za-z0-9_-])")),
    ("live", re.compile(_HOST + r"/live/" + _ID + r"(?![A-Za-z0-9_-])")),
]


def is_valid_video_id(value: Optional[str]) -> bool:
    """True if `value` is already a canonical 11-character ID."""
    return bool(value) and VIDEO_ID_RE.match(value) is not None


def normalize_video_id(raw: Optional[str]) -> str:
    """
    Resolve a raw URL or ID string to a canonical video ID.

    Raises:
        InvalidIdentifier: if no known shape matches
    """
    if raw is None:
        raise InvalidIdentifier("empty video reference")

    candidate = raw.strip()
    if not candidate:
        raise InvalidIdentifier("empty video reference")

    if is_valid_video_id(candidate):
        return candidate

    for _shape, pattern in URL_PATTERNS:
        match = pattern.match(candidate)
        if match:
            return match.group(1)

    raise InvalidIdentifier(f"unrecognized video reference: {candidate[:100]!r}")


def watch_url(video_id: str, language: Optional[str] = None) -> str:
    """Public watch-page URL for a canonical ID."""
    url = f"https://www.youtube.com/watch?v={video_id}"
    if language:
        url += f"&hl={language}"
    return url
