#!/usr/bin/env python3
"""
Extraction Configuration Management for the Transcript Pipeline

Centralizes timeouts, strategy feature flags, credentials and browser options.
Settings are loaded from environment variables (and a local .env file) with
sensible defaults and validation.
"""

import os
from dataclasses import dataclass, field, replace
from typing import Optional, Dict, Any

from dotenv import load_dotenv

from logging_setup import get_logger

logger = get_logger(__name__)

DEFAULT_APIFY_ACTOR_ID = "pintostudio~youtube-transcript-scraper"
DEFAULT_APIFY_BASE_URL = "https://api.apify.com"

# Keys accepted in the `timeouts` override mapping, by strategy name
TIMEOUT_FIELDS = {
    "direct_scrape": "direct_scrape_timeout",
    "transcript_api": "transcript_api_timeout",
    "remote_service": "remote_service_timeout",
    "browser_automation": "browser_automation_timeout",
    "browser_navigation": "browser_navigation_timeout",
    "http_request": "http_request_timeout",
}


@dataclass
class ExtractionConfig:
    """Configuration for the transcript extraction strategies."""

    # Per-strategy budgets (seconds)
    direct_scrape_timeout: int = 15
    transcript_api_timeout: int = 15
    remote_service_timeout: int = 15
    browser_automation_timeout: int = 45
    browser_navigation_timeout: int = 20

    # HTTP settings shared by the HTTP strategies
    http_request_timeout: int = 10
    http_retry_attempts: int = 2
    preferred_language: str = "en"

    # Strategy feature flags
    enable_direct_scrape: bool = True
    enable_transcript_api: bool = True
    enable_remote_service: bool = True
    enable_browser_automation: bool = True

    # Remote extraction service
    apify_token: Optional[str] = field(default=None, repr=False)
    apify_actor_id: str = DEFAULT_APIFY_ACTOR_ID
    apify_base_url: str = DEFAULT_APIFY_BASE_URL

    # Browser automation
    browser_headless: bool = True
    chromium_executable_path: Optional[str] = None
    diagnostics_dir: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'ExtractionConfig':
        """Load configuration from environment variables with validation."""
        load_dotenv()

        config = cls(
            direct_scrape_timeout=cls._parse_int_env("DIRECT_SCRAPE_TIMEOUT", 15, min_val=3, max_val=60),
            transcript_api_timeout=cls._parse_int_env("TRANSCRIPT_API_TIMEOUT", 15, min_val=3, max_val=60),
            remote_service_timeout=cls._parse_int_env("REMOTE_SERVICE_TIMEOUT", 15, min_val=5, max_val=120),
            browser_automation_timeout=cls._parse_int_env("BROWSER_AUTOMATION_TIMEOUT", 45, min_val=20, max_val=180),
            browser_navigation_timeout=cls._parse_int_env("BROWSER_NAVIGATION_TIMEOUT", 20, min_val=5, max_val=120),

            http_request_timeout=cls._parse_int_env("HTTP_REQUEST_TIMEOUT", 10, min_val=2, max_val=60),
            http_retry_attempts=cls._parse_int_env("HTTP_RETRY_ATTEMPTS", 2, min_val=1, max_val=5),
            preferred_language=os.getenv("PREFERRED_LANGUAGE", "en").strip() or "en",

            enable_direct_scrape=cls._parse_bool_env("ENABLE_DIRECT_SCRAPE", True),
            enable_transcript_api=cls._parse_bool_env("ENABLE_TRANSCRIPT_API", True),
            enable_remote_service=cls._parse_bool_env("ENABLE_REMOTE_SERVICE", True),
            enable_browser_automation=cls._parse_bool_env("ENABLE_BROWSER_AUTOMATION", True),

            apify_token=os.getenv("APIFY_API_TOKEN") or None,
            apify_actor_id=os.getenv("APIFY_ACTOR_ID", DEFAULT_APIFY_ACTOR_ID),
            apify_base_url=os.getenv("APIFY_BASE_URL", DEFAULT_APIFY_BASE_URL).rstrip("/"),

            browser_headless=cls._parse_bool_env("BROWSER_HEADLESS", True),
            chromium_executable_path=os.getenv("CHROMIUM_EXECUTABLE_PATH") or None,
            diagnostics_dir=os.getenv("TRANSCRIPT_DIAGNOSTICS_DIR") or None,
        )

        config.validate()
        config._log_config()
        return config

    @staticmethod
    def _parse_bool_env(env_var: str, default: bool) -> bool:
        """Parse boolean environment variable."""
        value = os.getenv(env_var, str(default).lower())
        return value.strip().lower() in ("1", "true", "yes", "on")

    @staticmethod
    def _parse_int_env(env_var: str, default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
        """Parse integer environment variable, clamping to [min_val, max_val]."""
        raw = os.getenv(env_var)
        if raw is None or raw.strip() == "":
            return default

        try:
            value = int(raw)
        except (ValueError, TypeError):
            logger.error(f"Invalid value for {env_var}: {raw!r}, using default {default}")
            return default

        if min_val is not None and value < min_val:
            logger.warning(f"{env_var}={value} is below minimum {min_val}, using {min_val}")
            return min_val

        if max_val is not None and value > max_val:
            logger.warning(f"{env_var}={value} is above maximum {max_val}, using {max_val}")
            return max_val

        return value

    def validate(self) -> None:
        """Log warnings for problematic timeout combinations."""
        warnings = []

        if self.browser_navigation_timeout >= self.browser_automation_timeout:
            warnings.append(
                f"Browser navigation timeout ({self.browser_navigation_timeout}s) should be less than "
                f"the browser automation budget ({self.browser_automation_timeout}s)"
            )

        cheap_budgets = (self.direct_scrape_timeout, self.transcript_api_timeout, self.remote_service_timeout)
        if self.browser_automation_timeout <= max(cheap_budgets):
            warnings.append(
                f"Browser automation budget ({self.browser_automation_timeout}s) should exceed the "
                f"HTTP strategy budgets ({max(cheap_budgets)}s)"
            )

        if self.http_request_timeout > self.direct_scrape_timeout:
            warnings.append(
                f"HTTP request timeout ({self.http_request_timeout}s) exceeds the direct scrape "
                f"budget ({self.direct_scrape_timeout}s)"
            )

        if not self.enabled_strategies():
            warnings.append("All extraction strategies are disabled - every extraction will fail")

        for warning in warnings:
            logger.warning(f"Configuration warning: {warning}")

    def _log_config(self) -> None:
        """Log current configuration for debugging deployments."""
        logger.info("Extraction configuration loaded:")
        logger.info(
            f"  Timeouts: direct={self.direct_scrape_timeout}s, transcript_api={self.transcript_api_timeout}s, "
            f"remote={self.remote_service_timeout}s, browser={self.browser_automation_timeout}s, "
            f"navigation={self.browser_navigation_timeout}s"
        )
        logger.info(f"  Strategies: {', '.join(self.enabled_strategies()) or 'none'}")
        logger.info(f"  Remote service: actor={self.apify_actor_id}, token={'set' if self.apify_token else 'missing'}")

    def enabled_strategies(self) -> list:
        """Names of enabled strategies in priority order."""
        flags = [
            ("direct_scrape", self.enable_direct_scrape),
            ("transcript_api", self.enable_transcript_api),
            ("remote_service", self.enable_remote_service),
            ("browser_automation", self.enable_browser_automation),
        ]
        return [name for name, enabled in flags if enabled]

    def with_overrides(self, timeouts: Optional[Dict[str, int]] = None,
                       credentials: Optional[Dict[str, str]] = None) -> 'ExtractionConfig':
        """
        Return a copy with per-call overrides applied.

        Args:
            timeouts: strategy name -> seconds, e.g. {"browser_automation": 30}
            credentials: e.g. {"apify_token": "..."}
        """
        changes: Dict[str, Any] = {}

        for key, seconds in (timeouts or {}).items():
            field_name = TIMEOUT_FIELDS.get(key)
            if field_name is None:
                raise ValueError(f"Unknown timeout key: {key!r}")
            if seconds is None or seconds <= 0:
                raise ValueError(f"Timeout for {key!r} must be positive, got {seconds!r}")
            changes[field_name] = seconds

        if credentials:
            token = credentials.get("apify_token")
            if token:
                changes["apify_token"] = token

        return replace(self, **changes) if changes else self

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a dictionary with credentials masked."""
        return {
            "timeouts": {name: getattr(self, attr) for name, attr in TIMEOUT_FIELDS.items()},
            "strategies": self.enabled_strategies(),
            "preferred_language": self.preferred_language,
            "remote_service": {
                "actor_id": self.apify_actor_id,
                "base_url": self.apify_base_url,
                "token_configured": bool(self.apify_token),
            },
            "browser": {
                "headless": self.browser_headless,
                "executable_path": self.chromium_executable_path,
                "diagnostics_dir": self.diagnostics_dir,
            },
        }


# Global configuration instance
_extraction_config: Optional[ExtractionConfig] = None


def get_extraction_config() -> ExtractionConfig:
    """Get the process-wide configuration, loading it on first use."""
    global _extraction_config
    if _extraction_config is None:
        _extraction_config = ExtractionConfig.from_env()
    return _extraction_config


def reload_extraction_config() -> ExtractionConfig:
    """Reload configuration from environment variables."""
    global _extraction_config
    _extraction_config = ExtractionConfig.from_env()
    return _extraction_config
