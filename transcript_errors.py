"""
Failure taxonomy for transcript extraction.

Every strategy converts its internal faults into one of the TranscriptError
subclasses below so the orchestrator can record a meaningful ErrorKind per
attempt. Only InvalidIdentifier and TranscriptUnavailable ever reach callers.
"""

import asyncio
import concurrent.futures
from enum import Enum
from typing import List, Optional, TYPE_CHECKING

import httpx
import requests
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

if TYPE_CHECKING:
    from transcript_models import ExtractionAttempt


class ErrorKind(str, Enum):
    """Classification recorded for each failed extraction attempt."""
    INVALID_IDENTIFIER = "invalid_identifier"
    NETWORK_ERROR = "network_error"
    NOT_FOUND = "not_found"
    PARSE_ERROR = "parse_error"
    AUTH_ERROR = "auth_error"
    SERVICE_ERROR = "service_error"
    BROWSER_LAUNCH_ERROR = "browser_launch_error"
    ELEMENT_NOT_FOUND = "element_not_found"
    TIMEOUT = "timeout"
    EMPTY_RESULT = "empty_result"
    CONFIGURATION_ERROR = "configuration_error"


class TranscriptError(Exception):
    """Base class for classified extraction failures."""

    kind: ErrorKind = ErrorKind.SERVICE_ERROR

    def __init__(self, message: str = "", kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    def __str__(self) -> str:
        return self.message or self.kind.value


class InvalidIdentifier(TranscriptError):
    kind = ErrorKind.INVALID_IDENTIFIER


class NetworkError(TranscriptError):
    kind = ErrorKind.NETWORK_ERROR


class NotFoundError(TranscriptError):
    """The platform has no captions, or no usable caption track."""
    kind = ErrorKind.NOT_FOUND


class ParseError(TranscriptError):
    """A response did not have the expected shape."""
    kind = ErrorKind.PARSE_ERROR


class AuthError(TranscriptError):
    kind = ErrorKind.AUTH_ERROR


class ServiceError(TranscriptError):
    kind = ErrorKind.SERVICE_ERROR


class BrowserLaunchError(TranscriptError):
    kind = ErrorKind.BROWSER_LAUNCH_ERROR


class ElementNotFoundError(TranscriptError):
    kind = ErrorKind.ELEMENT_NOT_FOUND


class StrategyTimeoutError(TranscriptError):
    kind = ErrorKind.TIMEOUT


class EmptyResultError(TranscriptError):
    kind = ErrorKind.EMPTY_RESULT


class ConfigurationError(TranscriptError):
    """A strategy is missing configuration (e.g. credentials) and was skipped."""
    kind = ErrorKind.CONFIGURATION_ERROR


class TranscriptUnavailable(TranscriptError):
    """
    Every strategy failed for a video.

    `attempts` carries one ExtractionAttempt per strategy tried, for operators.
    `user_message` is what end users should see.
    """

    kind = ErrorKind.NOT_FOUND
    user_message = "Transcript unavailable for this video."

    def __init__(self, video_id: str, attempts: List["ExtractionAttempt"]):
        self.video_id = video_id
        self.attempts = list(attempts)
        super().__init__(f"No transcript for {video_id}: {self.summary()}")

    def summary(self) -> str:
        """Operator-facing `strategy=kind` list."""
        if not self.attempts:
            return "no strategies attempted"
        return ", ".join(
            f"{a.strategy_name}={a.error.value if a.error else 'ok'}" for a in self.attempts
        )


def classify_exception(exc: BaseException) -> TranscriptError:
    """
    Map a raw library exception to a classified TranscriptError.

    Already-classified errors pass through unchanged.
    """
    if isinstance(exc, TranscriptError):
        return exc

    if isinstance(exc, (asyncio.TimeoutError, concurrent.futures.TimeoutError, TimeoutError)):
        return StrategyTimeoutError(str(exc) or "timed out")

    if isinstance(exc, requests.exceptions.Timeout):
        return NetworkError(f"request timed out: {exc}")
    if isinstance(exc, requests.exceptions.RequestException):
        return NetworkError(str(exc))

    if isinstance(exc, httpx.TimeoutException):
        return ServiceError(f"service timed out: {exc}")
    if isinstance(exc, httpx.HTTPError):
        return ServiceError(str(exc))

    if isinstance(exc, PlaywrightTimeoutError):
        first_line = str(exc).splitlines()[0] if str(exc) else "playwright timeout"
        return StrategyTimeoutError(first_line)
    if isinstance(exc, PlaywrightError):
        return ElementNotFoundError(str(exc).splitlines()[0] if str(exc) else "playwright error")

    if isinstance(exc, (ValueError, KeyError, TypeError)):
        return ParseError(f"{type(exc).__name__}: {exc}")

    return ServiceError(f"{type(exc).__name__}: {exc}")
