"""
Unit tests for transcript_api_service.py

The library client is replaced by a Mock; only the mapping from library
results and errors onto RawSegment / TranscriptError is exercised.
"""

import unittest
from types import SimpleNamespace
from unittest.mock import Mock, patch

import requests
from requests.adapters import HTTPAdapter
from youtube_transcript_api._errors import (
    CouldNotRetrieveTranscript,
    IpBlocked,
    TranscriptsDisabled,
    VideoUnavailable,
)

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from extraction_config import ExtractionConfig
from transcript_api_service import TranscriptApiStrategy
from transcript_errors import ErrorKind, NetworkError, NotFoundError, ParseError, TranscriptError
from transcript_models import RawSegment

VIDEO_ID = "jNQXAC9IVRw"


class TestTranscriptApiStrategy(unittest.TestCase):

    def setUp(self):
        self.api = Mock()
        self.events = Mock()
        self.strategy = TranscriptApiStrategy(config=ExtractionConfig(), events=self.events, api=self.api)

    def test_snippets_become_raw_segments(self):
        self.api.fetch.return_value = [
            SimpleNamespace(text="All right", start=0.0, duration=3.2),
            SimpleNamespace(text="so here we are", start=3.2, duration=4.8),
        ]

        segments = self.strategy.extract(VIDEO_ID)

        self.assertEqual(segments, [
            RawSegment(text="All right", start=0.0, duration=3.2),
            RawSegment(text="so here we are", start=3.2, duration=4.8),
        ])
        self.api.fetch.assert_called_once_with(VIDEO_ID, languages=["en"])
        self.events.evt.assert_called_with("transcript_api_fetched", video_id=VIDEO_ID,
                                           segments=2, language=None)

    def test_non_english_preference_keeps_english_fallback(self):
        strategy = TranscriptApiStrategy(config=ExtractionConfig(preferred_language="de"),
                                         events=self.events, api=self.api)
        self.api.fetch.return_value = []
        strategy.extract(VIDEO_ID)
        self.api.fetch.assert_called_once_with(VIDEO_ID, languages=["de", "en"])

    def test_disabled_transcripts_are_not_found(self):
        self.api.fetch.side_effect = TranscriptsDisabled(VIDEO_ID)
        with self.assertRaises(NotFoundError) as ctx:
            self.strategy.extract(VIDEO_ID)
        self.assertEqual(ctx.exception.kind, ErrorKind.NOT_FOUND)

    def test_unavailable_video_is_not_found(self):
        self.api.fetch.side_effect = VideoUnavailable(VIDEO_ID)
        with self.assertRaises(NotFoundError):
            self.strategy.extract(VIDEO_ID)

    def test_ip_block_is_network_error(self):
        self.api.fetch.side_effect = IpBlocked(VIDEO_ID)
        with self.assertRaises(NetworkError):
            self.strategy.extract(VIDEO_ID)
        self.assertEqual(self.events.warning.call_args[0][0], "transcript_api_blocked")

    def test_transport_error_is_network_error(self):
        self.api.fetch.side_effect = requests.exceptions.ConnectionError("reset")
        with self.assertRaises(NetworkError):
            self.strategy.extract(VIDEO_ID)

    def test_other_library_error_is_parse_error(self):
        self.api.fetch.side_effect = CouldNotRetrieveTranscript(VIDEO_ID)
        with self.assertRaises(ParseError):
            self.strategy.extract(VIDEO_ID)

    def test_timeout_property(self):
        config = ExtractionConfig(transcript_api_timeout=7)
        self.assertEqual(TranscriptApiStrategy(config=config, api=self.api).timeout_seconds, 7)


class TestLibraryHttpClient(unittest.TestCase):

    def test_every_library_request_carries_timeout(self):
        config = ExtractionConfig(http_request_timeout=7)
        timeouts = []

        def refuse(adapter, request, **kwargs):
            timeouts.append(kwargs.get("timeout"))
            raise requests.exceptions.ConnectionError("connection refused")

        with patch.object(HTTPAdapter, "send", autospec=True, side_effect=refuse):
            with self.assertRaises(TranscriptError):
                TranscriptApiStrategy(config=config, events=Mock()).extract(VIDEO_ID)

        self.assertTrue(timeouts)
        self.assertEqual(set(timeouts), {7})


if __name__ == '__main__':
    unittest.main()
