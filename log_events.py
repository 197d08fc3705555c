"""
Event helpers for structured JSON logging.

Strategies receive an EventLogger as a collaborator instead of writing to a
hidden global, so tests can inject a mock and capture the events emitted.
"""

import logging
import time
from typing import Optional

from transcript_errors import ErrorKind, TranscriptError


class EventLogger:
    """
    Emits structured events through a standard logger.

    Example:
        events = EventLogger(get_logger("transcripts"))
        events.evt("strategy_start", strategy="direct_scrape")
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("transcripts")

    def evt(self, event: str, level: int = logging.INFO, **fields) -> None:
        """
        Emit a structured event with consistent field naming.

        Args:
            event: The event type/name
            level: Logging level for the record
            **fields: Additional fields to include in the event
        """
        event_data = {"event": event}
        event_data.update(fields)
        self.logger.log(level, "", extra=event_data)

    def warning(self, event: str, **fields) -> None:
        self.evt(event, level=logging.WARNING, **fields)

    def stage(self, stage: str, **context_fields) -> "StageTimer":
        """Create a StageTimer bound to this logger."""
        return StageTimer(stage, events=self, **context_fields)


class StageTimer:
    """
    Context manager for automatic stage timing with structured logging.

    Emits stage_start on entry and stage_result on exit with the duration in
    milliseconds. Exceptions are recorded and never suppressed.

    Example:
        with StageTimer("browser_automation", events=events) as timer:
            run_strategy()
        timer.duration_ms
    """

    def __init__(self, stage: str, events: Optional[EventLogger] = None, **context_fields):
        self.stage = stage
        self.events = events or EventLogger()
        self.context_fields = context_fields
        self.start_time: Optional[float] = None
        self.duration_ms: int = 0

    def __enter__(self):
        self.start_time = time.monotonic()
        self.events.evt("stage_start", stage=self.stage, **self.context_fields)
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.duration_ms = self.elapsed_ms()

        event_fields = {
            "stage": self.stage,
            "outcome": "success" if exc_type is None else "error",
            "dur_ms": self.duration_ms,
            **self.context_fields,
        }
        if exc_type is not None:
            event_fields["detail"] = f"{exc_type.__name__}: {exc_value}"[:200]
            if isinstance(exc_value, TranscriptError):
                event_fields["error_kind"] = exc_value.kind.value

        self.events.evt("stage_result", **event_fields)
        return False

    def elapsed_ms(self) -> int:
        if self.start_time is None:
            return 0
        return int((time.monotonic() - self.start_time) * 1000)


def classify_error_type(exception: BaseException) -> ErrorKind:
    """
    Classify an unexpected exception by its message.

    Used for exceptions that escaped a strategy without being converted to a
    TranscriptError; classified errors keep their own kind.
    """
    if isinstance(exception, TranscriptError):
        return exception.kind

    exception_str = str(exception).lower()

    if any(term in exception_str for term in ["unauthorized", "forbidden", "token", "credential"]):
        return ErrorKind.AUTH_ERROR

    if "timeout" in exception_str or "timed out" in exception_str:
        return ErrorKind.TIMEOUT

    if any(term in exception_str for term in ["connection", "network", "dns", "ssl"]):
        return ErrorKind.NETWORK_ERROR

    if any(term in exception_str for term in ["json", "parse", "decode", "unexpected"]):
        return ErrorKind.PARSE_ERROR

    return ErrorKind.SERVICE_ERROR
