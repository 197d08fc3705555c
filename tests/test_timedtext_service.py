"""
Unit tests for timedtext_service.py (direct scrape strategy)

HTTP is mocked at the session level; no network access.
"""

import json
import unittest
from unittest.mock import Mock, patch

import requests
from requests.adapters import HTTPAdapter

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from extraction_config import ExtractionConfig
from timedtext_service import (
    DirectScrapeStrategy,
    TimeoutHTTPAdapter,
    _mask_url_for_logging,
    create_http_session,
    extract_caption_tracks,
    parse_timedtext_xml,
    pick_caption_track,
)
from transcript_errors import ErrorKind, NetworkError, NotFoundError, ParseError

VIDEO_ID = "jNQXAC9IVRw"
TRACK_URL = "https://www.youtube.com/api/timedtext?v=jNQXAC9IVRw&lang=en&sig=SECRET"

TIMEDTEXT_XML = (
    '<?xml version="1.0" encoding="utf-8" ?><transcript>'
    '<text start="0" dur="3.2">All right, so here we are</text>'
    '<text start="3.2" dur="4.8">in front of the &amp;#39;elephants&amp;#39;</text>'
    '<text start="8.0" dur="4.1">the cool thing about these guys</text>'
    '</transcript>'
)


def make_watch_page(tracks):
    player = {"captions": {"playerCaptionsTracklistRenderer": {"captionTracks": tracks, "audioTracks": []}}}
    return (
        "<html><head><title>Me at the zoo</title></head><body>"
        f"<script>var ytInitialPlayerResponse = {json.dumps(player)};</script>"
        "</body></html>"
    )


def make_response(text="", status_code=200, url="https://www.youtube.com/watch?v=jNQXAC9IVRw"):
    response = Mock()
    response.text = text
    response.status_code = status_code
    response.ok = 200 <= status_code < 400
    response.url = url
    return response


ENGLISH_TRACK = {"baseUrl": TRACK_URL, "languageCode": "en", "name": {"simpleText": "English"}}


class TestExtractCaptionTracks(unittest.TestCase):

    def test_manifest_extracted(self):
        tracks = extract_caption_tracks(make_watch_page([ENGLISH_TRACK]))
        self.assertEqual(len(tracks), 1)
        self.assertEqual(tracks[0]["baseUrl"], TRACK_URL)

    def test_brackets_inside_strings_ignored(self):
        track = dict(ENGLISH_TRACK, name={"simpleText": "English [CC] ]]"})
        tracks = extract_caption_tracks(make_watch_page([track, {"languageCode": "de", "baseUrl": "x"}]))
        self.assertEqual(len(tracks), 2)
        self.assertEqual(tracks[0]["name"]["simpleText"], "English [CC] ]]")

    def test_missing_key_is_not_found(self):
        with self.assertRaises(NotFoundError):
            extract_caption_tracks("<html><script>var ytInitialPlayerResponse = {};</script></html>")

    def test_unterminated_array_is_parse_error(self):
        page = '<script>{"captionTracks":[{"baseUrl":"https://x","languageCode":"en"}'
        with self.assertRaises(ParseError) as ctx:
            extract_caption_tracks(page)
        self.assertEqual(ctx.exception.kind, ErrorKind.PARSE_ERROR)

    def test_key_without_array_is_parse_error(self):
        with self.assertRaises(ParseError):
            extract_caption_tracks('<script>{"captionTracks": null}</script>')

    def test_invalid_json_is_parse_error(self):
        with self.assertRaises(ParseError):
            extract_caption_tracks('<script>{"captionTracks":[{baseUrl: nope}]}</script>')

    def test_escaped_inline_manifest(self):
        page = (
            '<script>var data = "{\\"captionTracks\\":[{\\"baseUrl\\":\\"https://x/api?a=1\\u0026b=2\\",'
            '\\"languageCode\\":\\"en\\"}]}";</script>'
        )
        tracks = extract_caption_tracks(page)
        self.assertEqual(tracks[0]["baseUrl"], "https://x/api?a=1&b=2")
        self.assertEqual(tracks[0]["languageCode"], "en")


class TestPickCaptionTrack(unittest.TestCase):

    def test_prefers_manual_over_asr(self):
        tracks = [
            {"languageCode": "en", "kind": "asr", "baseUrl": "asr"},
            {"languageCode": "en", "baseUrl": "manual"},
        ]
        self.assertEqual(pick_caption_track(tracks)["baseUrl"], "manual")

    def test_falls_back_to_asr_when_only_option(self):
        tracks = [{"languageCode": "en", "kind": "asr", "baseUrl": "asr"}]
        self.assertEqual(pick_caption_track(tracks)["baseUrl"], "asr")

    def test_english_by_name(self):
        tracks = [
            {"languageCode": "fr", "baseUrl": "fr"},
            {"languageCode": "xx", "name": {"runs": [{"text": "English (auto-generated)"}]}, "baseUrl": "named"},
        ]
        self.assertEqual(pick_caption_track(tracks)["baseUrl"], "named")

    def test_english_variant(self):
        tracks = [{"languageCode": "fr", "baseUrl": "fr"}, {"languageCode": "en-GB", "baseUrl": "gb"}]
        self.assertEqual(pick_caption_track(tracks)["baseUrl"], "gb")

    def test_first_track_when_no_english(self):
        tracks = [{"languageCode": "fr", "baseUrl": "fr"}, {"languageCode": "de", "baseUrl": "de"}]
        self.assertEqual(pick_caption_track(tracks)["baseUrl"], "fr")

    def test_preferred_language_wins(self):
        tracks = [{"languageCode": "en", "baseUrl": "en"}, {"languageCode": "de", "baseUrl": "de"}]
        self.assertEqual(pick_caption_track(tracks, "de")["baseUrl"], "de")

    def test_empty(self):
        self.assertIsNone(pick_caption_track([]))

    def test_name_from_runs(self):
        tracks = [
            {"languageCode": "fr", "name": {"simpleText": "French"}},
            {"languageCode": "xx", "name": {"runs": [{"text": "English "}, {"text": "(auto)"}, 5]}},
        ]
        self.assertEqual(pick_caption_track(tracks)["languageCode"], "xx")

    def test_malformed_name_is_parse_error(self):
        tracks = [{"languageCode": "fr", "name": ["English"]}]
        with self.assertRaises(ParseError):
            pick_caption_track(tracks)


class TestParseTimedtextXml(unittest.TestCase):

    def test_parses_segments(self):
        segments = parse_timedtext_xml(TIMEDTEXT_XML)
        self.assertEqual([s.start for s in segments], [0.0, 3.2, 8.0])
        self.assertEqual([s.duration for s in segments], [3.2, 4.8, 4.1])
        # One level of escaping is removed here, the normalizer removes the rest
        self.assertEqual(segments[1].text, "in front of the &#39;elephants&#39;")

    def test_tolerant_of_attribute_order_missing_dur_and_newlines(self):
        xml = (
            "<transcript><text dur='1.5' start='2.5'>multi\nline</text>"
            '<text start="4">no <font color="#fff">duration</font></text>'
            '<text>no start</text></transcript>'
        )
        segments = parse_timedtext_xml(xml)
        self.assertEqual(len(segments), 2)
        self.assertEqual(segments[0].start, 2.5)
        self.assertEqual(segments[0].duration, 1.5)
        self.assertEqual(segments[0].text, "multi\nline")
        self.assertIsNone(segments[1].duration)
        self.assertEqual(segments[1].text, "no duration")

    def test_no_elements_is_parse_error(self):
        with self.assertRaises(ParseError):
            parse_timedtext_xml("<transcript></transcript>")
        with self.assertRaises(ParseError):
            parse_timedtext_xml("")


class TestMaskUrl(unittest.TestCase):

    def test_masks_sensitive_params(self):
        masked = _mask_url_for_logging(TRACK_URL)
        self.assertNotIn("SECRET", masked)
        self.assertIn("lang=en", masked)

    def test_url_without_query_unchanged(self):
        self.assertEqual(_mask_url_for_logging("https://www.youtube.com/"), "https://www.youtube.com/")


class TestDirectScrapeStrategy(unittest.TestCase):

    def setUp(self):
        self.config = ExtractionConfig()
        self.events = Mock()
        self.session = Mock()
        self.strategy = DirectScrapeStrategy(config=self.config, events=self.events, session=self.session)

    def test_happy_path(self):
        self.session.get.side_effect = [
            make_response(make_watch_page([ENGLISH_TRACK])),
            make_response(TIMEDTEXT_XML, url=TRACK_URL),
        ]

        segments = self.strategy.extract(VIDEO_ID)

        self.assertEqual(len(segments), 3)
        first_call, second_call = self.session.get.call_args_list
        self.assertEqual(first_call[0][0], f"https://www.youtube.com/watch?v={VIDEO_ID}&hl=en")
        self.assertEqual(first_call[1]["timeout"], self.config.http_request_timeout)
        self.assertEqual(second_call[0][0], TRACK_URL)
        # Injected session is owned by the caller
        self.session.close.assert_not_called()

    def test_page_without_captions_is_not_found(self):
        self.session.get.return_value = make_response("<html><script>var x = {};</script></html>")
        with self.assertRaises(NotFoundError):
            self.strategy.extract(VIDEO_ID)

    def test_empty_manifest_is_not_found(self):
        self.session.get.return_value = make_response(make_watch_page([]))
        with self.assertRaises(NotFoundError):
            self.strategy.extract(VIDEO_ID)

    def test_track_without_base_url_is_not_found(self):
        self.session.get.return_value = make_response(make_watch_page([{"languageCode": "en"}]))
        with self.assertRaises(NotFoundError):
            self.strategy.extract(VIDEO_ID)

    def test_watch_page_404_is_not_found(self):
        self.session.get.return_value = make_response("", status_code=404)
        with self.assertRaises(NotFoundError):
            self.strategy.extract(VIDEO_ID)

    def test_watch_page_500_is_network_error(self):
        self.session.get.return_value = make_response("", status_code=503)
        with self.assertRaises(NetworkError):
            self.strategy.extract(VIDEO_ID)

    def test_consent_wall_is_network_error(self):
        self.session.get.return_value = make_response(
            "<html><body>Before you continue to YouTube</body></html>")
        with self.assertRaises(NetworkError):
            self.strategy.extract(VIDEO_ID)
        events = [c[0][0] for c in self.events.warning.call_args_list]
        self.assertIn("direct_scrape_consent_wall", events)

    def test_transport_error_is_network_error(self):
        self.session.get.side_effect = requests.exceptions.ConnectionError("connection refused")
        with self.assertRaises(NetworkError) as ctx:
            self.strategy.extract(VIDEO_ID)
        self.assertEqual(ctx.exception.kind, ErrorKind.NETWORK_ERROR)
        # tenacity retried the transport failure once
        self.assertEqual(self.session.get.call_count, 2)

    def test_track_fetch_failure_is_network_error(self):
        self.session.get.side_effect = [
            make_response(make_watch_page([ENGLISH_TRACK])),
            make_response("", status_code=500, url=TRACK_URL),
        ]
        with self.assertRaises(NetworkError):
            self.strategy.extract(VIDEO_ID)

    def test_empty_timedtext_is_parse_error(self):
        self.session.get.side_effect = [
            make_response(make_watch_page([ENGLISH_TRACK])),
            make_response("<transcript></transcript>", url=TRACK_URL),
        ]
        with self.assertRaises(ParseError):
            self.strategy.extract(VIDEO_ID)

    def test_relative_base_url_made_absolute(self):
        track = dict(ENGLISH_TRACK, baseUrl="/api/timedtext?v=jNQXAC9IVRw&lang=en")
        self.session.get.side_effect = [
            make_response(make_watch_page([track])),
            make_response(TIMEDTEXT_XML),
        ]
        self.strategy.extract(VIDEO_ID)
        self.assertEqual(self.session.get.call_args_list[1][0][0],
                         "https://www.youtube.com/api/timedtext?v=jNQXAC9IVRw&lang=en")

    def test_timeout_property(self):
        self.assertEqual(self.strategy.timeout_seconds, self.config.direct_scrape_timeout)

    def test_non_string_base_url_is_parse_error(self):
        track = dict(ENGLISH_TRACK, baseUrl=["https://www.youtube.com/api/timedtext"])
        self.session.get.return_value = make_response(make_watch_page([track]))
        with self.assertRaises(ParseError):
            self.strategy.extract(VIDEO_ID)

    def test_malformed_track_name_is_parse_error(self):
        track = {"baseUrl": TRACK_URL, "languageCode": "fr", "name": 42}
        self.session.get.return_value = make_response(make_watch_page([track]))
        with self.assertRaises(ParseError):
            self.strategy.extract(VIDEO_ID)

    def test_watch_page_requested_in_preferred_language(self):
        strategy = DirectScrapeStrategy(config=ExtractionConfig(preferred_language="de"),
                                        events=self.events, session=self.session)
        track = dict(ENGLISH_TRACK, languageCode="de")
        self.session.get.side_effect = [
            make_response(make_watch_page([track])),
            make_response(TIMEDTEXT_XML, url=TRACK_URL),
        ]

        strategy.extract(VIDEO_ID)

        self.assertEqual(self.session.get.call_args_list[0][0][0],
                         f"https://www.youtube.com/watch?v={VIDEO_ID}&hl=de")


class TestCreateHttpSession(unittest.TestCase):

    def setUp(self):
        self.config = ExtractionConfig(http_request_timeout=9, http_retry_attempts=3)
        self.session = create_http_session(self.config, {"Accept-Language": "de,en;q=0.8"})

    def tearDown(self):
        self.session.close()

    def test_adapter_mounted_with_retry_and_timeout(self):
        for url in ["https://www.youtube.com/watch", "http://www.youtube.com/watch"]:
            with self.subTest(url=url):
                adapter = self.session.get_adapter(url)
                self.assertIsInstance(adapter, TimeoutHTTPAdapter)
                self.assertEqual(adapter.timeout, 9)
                self.assertEqual(adapter.max_retries.total, 3)
        self.assertEqual(self.session.headers["Accept-Language"], "de,en;q=0.8")

    def test_request_without_timeout_gets_default(self):
        timeouts = []

        def record(adapter, request, **kwargs):
            timeouts.append(kwargs.get("timeout"))
            raise requests.exceptions.ConnectionError("refused")

        with patch.object(HTTPAdapter, "send", autospec=True, side_effect=record):
            with self.assertRaises(requests.exceptions.ConnectionError):
                self.session.get("https://www.youtube.com/watch?v=jNQXAC9IVRw")
            with self.assertRaises(requests.exceptions.ConnectionError):
                self.session.get("https://www.youtube.com/watch?v=jNQXAC9IVRw", timeout=3)

        self.assertEqual(timeouts, [9, 3])


if __name__ == '__main__':
    unittest.main()
