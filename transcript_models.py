"""Data models for transcript extraction."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from transcript_errors import ErrorKind


@dataclass
class RawSegment:
    """A strategy-specific, not-yet-normalized caption unit."""
    text: str
    start: float
    duration: Optional[float] = None


@dataclass(frozen=True)
class TranscriptSegment:
    """One canonical caption unit returned to callers."""
    text: str
    start_seconds: float
    start_label: str
    duration_seconds: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "start": self.start_seconds,
            "start_label": self.start_label,
            "duration": self.duration_seconds,
        }


@dataclass
class ExtractionAttempt:
    """One strategy's outcome; logged on success and reported on exhaustion."""
    strategy_name: str
    succeeded: bool
    error: Optional[ErrorKind] = None
    duration_ms: int = 0
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["error"] = self.error.value if self.error else None
        return data


class ExtractionStrategy(ABC):
    """
    One independent way of obtaining raw segments for a video.

    `extract` may be a plain method (run on a worker thread) or a coroutine
    (awaited on the event loop). It returns raw segments or raises a
    TranscriptError subclass.
    """

    name: str = "strategy"

    @property
    @abstractmethod
    def timeout_seconds(self) -> float:
        """Budget the orchestrator allows this strategy."""

    @abstractmethod
    def extract(self, video_id: str) -> List[RawSegment]:
        """Return raw segments for `video_id`."""
