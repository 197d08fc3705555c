"""
Transcript library strategy backed by youtube-transcript-api.

Free and fast, so it runs after the direct scrape and before the paid remote
service. Library errors are mapped onto the extraction error taxonomy.
"""

from typing import List, Optional

import requests
from youtube_transcript_api import YouTubeTranscriptApi
from youtube_transcript_api._errors import (
    TranscriptsDisabled,
    NoTranscriptFound,
    VideoUnavailable,
    VideoUnplayable,
    InvalidVideoId,
    AgeRestricted,
    IpBlocked,
    RequestBlocked,
    YouTubeRequestFailed,
    CouldNotRetrieveTranscript,
    YouTubeTranscriptApiException,
)

from extraction_config import ExtractionConfig, get_extraction_config
from log_events import EventLogger
from logging_setup import get_logger
from timedtext_service import create_http_session
from transcript_errors import NetworkError, NotFoundError, ParseError
from transcript_models import ExtractionStrategy, RawSegment
from user_agent_manager import UserAgentManager

logger = get_logger(__name__)

# Library errors meaning "this video has no usable captions"
NOT_FOUND_ERRORS = (
    TranscriptsDisabled,
    NoTranscriptFound,
    VideoUnavailable,
    VideoUnplayable,
    InvalidVideoId,
    AgeRestricted,
)

# Library errors meaning "we were blocked or the request failed"
BLOCKED_ERRORS = (
    IpBlocked,
    RequestBlocked,
    YouTubeRequestFailed,
)


class TranscriptApiStrategy(ExtractionStrategy):
    """Blocking; run on a worker thread by the orchestrator."""

    name = "transcript_api"

    def __init__(self, config: Optional[ExtractionConfig] = None, events: Optional[EventLogger] = None,
                 api: Optional[YouTubeTranscriptApi] = None):
        self.config = config or get_extraction_config()
        self.events = events or EventLogger(logger)
        self._api = api

    @property
    def timeout_seconds(self) -> float:
        return self.config.transcript_api_timeout

    def _languages(self) -> List[str]:
        languages = [self.config.preferred_language]
        if "en" not in languages:
            languages.append("en")
        return languages

    def _build_api(self) -> YouTubeTranscriptApi:
        headers = UserAgentManager(self.config.preferred_language).get_transcript_headers()
        session = create_http_session(self.config, headers)
        return YouTubeTranscriptApi(http_client=session)

    def extract(self, video_id: str) -> List[RawSegment]:
        api = self._api or self._build_api()
        languages = self._languages()

        try:
            fetched = api.fetch(video_id, languages=languages)
            segments = [
                RawSegment(text=snippet.text, start=snippet.start, duration=snippet.duration)
                for snippet in fetched
            ]
        except NOT_FOUND_ERRORS as e:
            self.events.evt("transcript_api_not_found", video_id=video_id, error_type=type(e).__name__)
            raise NotFoundError(f"{type(e).__name__}") from e
        except BLOCKED_ERRORS as e:
            self.events.warning("transcript_api_blocked", video_id=video_id, error_type=type(e).__name__)
            raise NetworkError(f"{type(e).__name__}") from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"transcript request failed: {type(e).__name__}") from e
        except (CouldNotRetrieveTranscript, YouTubeTranscriptApiException) as e:
            raise ParseError(f"{type(e).__name__}: {str(e).splitlines()[0] if str(e) else ''}"[:200]) from e

        self.events.evt("transcript_api_fetched", video_id=video_id, segments=len(segments),
                        language=getattr(fetched, "language_code", None))
        return segments
