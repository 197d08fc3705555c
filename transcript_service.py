"""
Transcript extraction orchestrator.

Runs the extraction strategies strictly in priority order, each under its own
timeout, and returns the first non-empty normalized result:

1. Direct scrape (watch page + timed-text XML)
2. Transcript library (youtube-transcript-api)
3. Remote extraction service (Apify actor)
4. Browser automation (Playwright)

If every strategy fails the caller gets TranscriptUnavailable carrying one
ExtractionAttempt per strategy tried.
"""

import asyncio
import concurrent.futures
import contextvars
import inspect
import time
from typing import Dict, List, Optional, Sequence, Tuple

from browser_transcript_service import BrowserAutomationStrategy
from extraction_config import ExtractionConfig, get_extraction_config
from log_events import EventLogger, classify_error_type
from logging_setup import get_logger, set_extraction_ctx
from remote_extraction_service import RemoteExtractionStrategy
from segment_normalizer import normalize_segments
from timedtext_service import DirectScrapeStrategy
from transcript_api_service import TranscriptApiStrategy
from transcript_errors import (
    ErrorKind,
    StrategyTimeoutError,
    TranscriptError,
    TranscriptUnavailable,
)
from transcript_models import ExtractionAttempt, ExtractionStrategy, TranscriptSegment
from video_identifier import normalize_video_id

logger = get_logger(__name__)


def build_default_strategies(config: ExtractionConfig, events: EventLogger) -> List[ExtractionStrategy]:
    """Enabled strategies, cheapest first."""
    chain = [
        (config.enable_direct_scrape, DirectScrapeStrategy),
        (config.enable_transcript_api, TranscriptApiStrategy),
        (config.enable_remote_service, RemoteExtractionStrategy),
        (config.enable_browser_automation, BrowserAutomationStrategy),
    ]
    return [strategy_class(config=config, events=events) for enabled, strategy_class in chain if enabled]


class TranscriptService:
    """
    Sequences extraction strategies for one video at a time.

    Holds no per-video state, so one instance may serve concurrent callers.
    """

    def __init__(self, config: Optional[ExtractionConfig] = None,
                 strategies: Optional[Sequence[ExtractionStrategy]] = None,
                 events: Optional[EventLogger] = None):
        self.config = config or get_extraction_config()
        self.events = events or EventLogger(logger)
        if strategies is None:
            strategies = build_default_strategies(self.config, self.events)
        self.strategies = list(strategies)

    def extract(self, raw_video_ref: str) -> List[TranscriptSegment]:
        """
        Synchronous entry point.

        Raises:
            InvalidIdentifier: the reference is not a recognizable video
            TranscriptUnavailable: every strategy failed
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(self.extract_async(raw_video_ref))

        # Called from inside a running loop: run on a helper thread with its own loop
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as executor:
            future = executor.submit(asyncio.run, self.extract_async(raw_video_ref))
            return future.result()

    async def extract_async(self, raw_video_ref: str) -> List[TranscriptSegment]:
        video_id = normalize_video_id(raw_video_ref)
        set_extraction_ctx(video_id=video_id)

        started = time.monotonic()
        attempts: List[ExtractionAttempt] = []
        self.events.evt("extraction_start", video_id=video_id,
                        strategies=[strategy.name for strategy in self.strategies])

        for strategy in self.strategies:
            attempt, segments = await self._attempt(strategy, video_id)
            attempts.append(attempt)
            if segments:
                self.events.evt("extraction_success", video_id=video_id, strategy=strategy.name,
                                segments=len(segments), attempt=len(attempts),
                                attempts=[a.to_dict() for a in attempts],
                                dur_ms=int((time.monotonic() - started) * 1000))
                return segments

        failure = TranscriptUnavailable(video_id, attempts)
        self.events.warning("extraction_exhausted", video_id=video_id, outcome="error",
                            dur_ms=int((time.monotonic() - started) * 1000), detail=failure.summary())
        raise failure

    async def _attempt(self, strategy: ExtractionStrategy,
                       video_id: str) -> Tuple[ExtractionAttempt, Optional[List[TranscriptSegment]]]:
        set_extraction_ctx(strategy=strategy.name)
        timer = self.events.stage(strategy.name, video_id=video_id)

        try:
            with timer:
                raw_segments = await self._run_with_timeout(strategy, video_id)
                segments = normalize_segments(raw_segments)
        except TranscriptError as e:
            self.events.evt("strategy_failed", video_id=video_id, strategy=strategy.name,
                            error_kind=e.kind.value, detail=str(e)[:200])
            return ExtractionAttempt(strategy.name, False, e.kind, timer.duration_ms, str(e)[:200]), None
        except Exception as e:
            # A strategy let a raw exception escape; record it and keep going
            detail = f"{type(e).__name__}: {e}"[:200]
            self.events.warning("strategy_unclassified_error", video_id=video_id, strategy=strategy.name,
                                suspected_kind=classify_error_type(e).value, detail=detail)
            return ExtractionAttempt(strategy.name, False, ErrorKind.SERVICE_ERROR, timer.duration_ms, detail), None

        return ExtractionAttempt(strategy.name, True, None, timer.duration_ms), segments

    async def _run_with_timeout(self, strategy: ExtractionStrategy, video_id: str):
        timeout = float(strategy.timeout_seconds)

        if inspect.iscoroutinefunction(strategy.extract):
            try:
                return await asyncio.wait_for(strategy.extract(video_id), timeout=timeout)
            except asyncio.TimeoutError as e:
                raise StrategyTimeoutError(f"{strategy.name} exceeded {timeout:.0f}s") from e

        # Blocking strategy: per-call worker, abandoned on timeout
        loop = asyncio.get_running_loop()
        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"strategy-{strategy.name}")
        context = contextvars.copy_context()
        try:
            future = loop.run_in_executor(executor, context.run, strategy.extract, video_id)
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise StrategyTimeoutError(f"{strategy.name} exceeded {timeout:.0f}s") from e
        finally:
            executor.shutdown(wait=False)


def extract_transcript(raw_video_ref: str,
                       timeouts: Optional[Dict[str, int]] = None,
                       credentials: Optional[Dict[str, str]] = None,
                       config: Optional[ExtractionConfig] = None) -> List[TranscriptSegment]:
    """
    Extract a transcript for a URL or video ID.

    Args:
        raw_video_ref: watch/share/embed/shorts URL or bare 11-character ID
        timeouts: per-call budget overrides, e.g. {"browser_automation": 30}
        credentials: per-call credentials, e.g. {"apify_token": "..."}
        config: base configuration (defaults to the environment)

    Returns:
        Non-empty list of TranscriptSegment ordered by start time

    Raises:
        InvalidIdentifier: the reference is not a recognizable video
        TranscriptUnavailable: every strategy failed; show `user_message` to end users
    """
    effective = (config or get_extraction_config()).with_overrides(timeouts=timeouts, credentials=credentials)
    return TranscriptService(config=effective).extract(raw_video_ref)
