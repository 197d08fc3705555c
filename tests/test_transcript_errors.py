"""
Unit tests for transcript_errors.py

Error kinds per class, the aggregate TranscriptUnavailable report and
classify_exception's mapping of raw library exceptions.
"""

import asyncio
import unittest

import httpx
import requests
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from transcript_errors import (
    AuthError,
    ElementNotFoundError,
    ErrorKind,
    NetworkError,
    NotFoundError,
    ParseError,
    ServiceError,
    StrategyTimeoutError,
    TranscriptError,
    TranscriptUnavailable,
    classify_exception,
)
from transcript_models import ExtractionAttempt


class TestErrorKinds(unittest.TestCase):

    def test_class_kinds(self):
        self.assertEqual(NotFoundError().kind, ErrorKind.NOT_FOUND)
        self.assertEqual(AuthError().kind, ErrorKind.AUTH_ERROR)
        self.assertEqual(StrategyTimeoutError().kind, ErrorKind.TIMEOUT)
        self.assertEqual(TranscriptError().kind, ErrorKind.SERVICE_ERROR)

    def test_kind_override(self):
        self.assertEqual(TranscriptError("x", kind=ErrorKind.PARSE_ERROR).kind, ErrorKind.PARSE_ERROR)

    def test_str_falls_back_to_kind(self):
        self.assertEqual(str(NetworkError()), "network_error")
        self.assertEqual(str(NetworkError("reset")), "reset")


class TestTranscriptUnavailable(unittest.TestCase):

    def test_summary_lists_every_attempt(self):
        attempts = [
            ExtractionAttempt("direct_scrape", False, ErrorKind.NOT_FOUND, 120),
            ExtractionAttempt("browser_automation", False, ErrorKind.TIMEOUT, 44000),
        ]
        failure = TranscriptUnavailable("jNQXAC9IVRw", attempts)

        self.assertEqual(failure.summary(), "direct_scrape=not_found, browser_automation=timeout")
        self.assertIn("jNQXAC9IVRw", str(failure))
        self.assertEqual(failure.user_message, "Transcript unavailable for this video.")
        self.assertIsNot(failure.attempts, attempts)

    def test_no_attempts(self):
        self.assertEqual(TranscriptUnavailable("jNQXAC9IVRw", []).summary(), "no strategies attempted")

    def test_attempt_to_dict(self):
        data = ExtractionAttempt("remote_service", False, ErrorKind.AUTH_ERROR, 80, "401").to_dict()
        self.assertEqual(data, {
            "strategy_name": "remote_service",
            "succeeded": False,
            "error": "auth_error",
            "duration_ms": 80,
            "detail": "401",
        })


class TestClassifyException(unittest.TestCase):

    def test_mapping(self):
        request = httpx.Request("POST", "https://api.apify.com/v2/acts/x/run-sync-get-dataset-items")
        cases = [
            (asyncio.TimeoutError(), StrategyTimeoutError),
            (requests.exceptions.ConnectTimeout("slow"), NetworkError),
            (requests.exceptions.ConnectionError("reset"), NetworkError),
            (httpx.ReadTimeout("slow", request=request), ServiceError),
            (httpx.ConnectError("refused", request=request), ServiceError),
            (PlaywrightTimeoutError("Timeout 3000ms exceeded"), StrategyTimeoutError),
            (PlaywrightError("Element is not attached to the DOM\n=== logs ==="), ElementNotFoundError),
            (KeyError("captionTracks"), ParseError),
            (RuntimeError("weird"), ServiceError),
        ]
        for exception, expected in cases:
            with self.subTest(exception=type(exception).__name__):
                self.assertIsInstance(classify_exception(exception), expected)

    def test_classified_error_passes_through(self):
        error = NotFoundError("none")
        self.assertIs(classify_exception(error), error)

    def test_playwright_message_trimmed_to_first_line(self):
        classified = classify_exception(PlaywrightError("Element is not attached\n=== logs ==="))
        self.assertEqual(str(classified), "Element is not attached")


if __name__ == '__main__':
    unittest.main()
