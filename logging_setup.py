"""
Core logging infrastructure for the transcript extraction pipeline.

Provides single-line JSON logging with correlation context that follows
asyncio tasks and worker threads, rate limiting, and third-party library
noise suppression.
"""

import contextvars
import json
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Dict, Optional, Set
from collections import defaultdict


# Correlation context for the extraction currently running in this task/thread
_extraction_ctx: contextvars.ContextVar = contextvars.ContextVar("extraction_ctx", default=None)

_CONTEXT_FIELDS = ("video_id", "strategy")


def set_extraction_ctx(video_id: str = None, strategy: str = None) -> None:
    """
    Set correlation context for log records emitted by the current task.

    Args:
        video_id: Canonical video identifier being extracted
        strategy: Name of the extraction strategy currently running
    """
    context = dict(_extraction_ctx.get() or {})
    if video_id is not None:
        context['video_id'] = video_id
    if strategy is not None:
        context['strategy'] = strategy
    _extraction_ctx.set(context)


def clear_extraction_ctx() -> None:
    """Clear correlation context."""
    _extraction_ctx.set({})


def get_extraction_ctx() -> Dict[str, str]:
    """Get a copy of the current correlation context."""
    return dict(_extraction_ctx.get() or {})


class JsonFormatter(logging.Formatter):
    """
    JSON formatter with standardized field order and context injection.

    Produces single-line JSON with stable schema:
    ts, lvl, video_id, strategy, event, outcome, dur_ms, detail
    """

    ORDERED_FIELDS = ('event', 'outcome', 'dur_ms', 'detail')
    OPTIONAL_FIELDS = ('attempt', 'error_kind', 'selector')

    STANDARD_ATTRS = {
        'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
        'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
        'thread', 'threadName', 'processName', 'process', 'exc_info',
        'exc_text', 'stack_info', 'taskName', 'message', 'asctime',
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as single-line JSON."""
        try:
            dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
            timestamp = dt.strftime('%Y-%m-%dT%H:%M:%S') + f'.{int(dt.microsecond / 1000):03d}Z'

            log_data = {
                'ts': timestamp,
                'lvl': record.levelname,
            }

            context = get_extraction_ctx()
            for field in _CONTEXT_FIELDS:
                value = getattr(record, field, None) or context.get(field)
                if value is not None:
                    log_data[field] = value

            for field in self.ORDERED_FIELDS + self.OPTIONAL_FIELDS:
                value = getattr(record, field, None)
                if value is not None:
                    log_data[field] = value

            skip = self.STANDARD_ATTRS | set(log_data) | set(_CONTEXT_FIELDS)
            for attr_name, attr_value in record.__dict__.items():
                if attr_name.startswith('_') or attr_name in skip:
                    continue
                if attr_value is not None:
                    log_data[attr_name] = attr_value

            if 'detail' not in log_data and record.getMessage():
                log_data['detail'] = record.getMessage()

            if record.exc_info and record.exc_info[0] is not None:
                log_data['exc_type'] = record.exc_info[0].__name__

            return json.dumps(log_data, separators=(',', ':'), ensure_ascii=False, default=str)

        except Exception:
            now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            return json.dumps({'ts': now, 'lvl': record.levelname, 'detail': str(record.msg)})


class RateLimitFilter(logging.Filter):
    """
    Rate limiting filter to prevent log spam.

    Limits messages to `per_key` per key per sliding window and emits a
    single suppression marker when the limit is first exceeded.
    """

    def __init__(self, per_key: int = 5, window_sec: int = 60):
        super().__init__()
        self.per_key = per_key
        self.window_sec = window_sec
        self.counts: Dict[str, list] = defaultdict(list)
        self.suppressed: Set[str] = set()
        self._lock = threading.Lock()

    def _get_message_key(self, record: logging.LogRecord) -> str:
        """Key on level, event name and the first 100 chars of the message."""
        event = getattr(record, 'event', '') or ''
        message = record.getMessage()[:100]
        return f"{record.levelname}:{event}:{message}"

    def _cleanup_old_entries(self, key: str, now: float) -> None:
        cutoff = now - self.window_sec
        self.counts[key] = [ts for ts in self.counts[key] if ts > cutoff]

    def filter(self, record: logging.LogRecord) -> bool:
        key = self._get_message_key(record)
        now = time.time()

        with self._lock:
            self._cleanup_old_entries(key, now)

            if len(self.counts[key]) < self.per_key:
                self.counts[key].append(now)
                self.suppressed.discard(key)
                return True

            if key not in self.suppressed:
                self.suppressed.add(key)
                record.msg = f"{record.getMessage()} [suppressed]"
                record.args = ()
                return True

            return False


def configure_logging(log_level: str = "INFO", use_json: bool = True) -> logging.Logger:
    """
    Configure application logging with JSON formatting and noise suppression.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        use_json: Whether to use JSON formatting (True) or basic formatting (False)

    Returns:
        Configured root logger
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    handler = logging.StreamHandler()
    if use_json:
        handler.setFormatter(JsonFormatter())
        handler.addFilter(RateLimitFilter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

    root_logger.addHandler(handler)
    _suppress_library_noise()

    return root_logger


def _suppress_library_noise() -> None:
    """Suppress verbose logging from third-party libraries."""
    library_levels = {
        'playwright': logging.WARNING,
        'urllib3': logging.WARNING,
        'asyncio': logging.WARNING,
        'httpx': logging.WARNING,
        'httpcore': logging.WARNING,
    }

    for library, level in library_levels.items():
        logging.getLogger(library).setLevel(level)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a logger instance (defaults to the root logger)."""
    return logging.getLogger(name)
