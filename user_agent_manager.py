"""
UserAgentManager - User-Agent and language headers for transcript requests

The watch-page scrape and the browser context must present the same realistic
desktop browser identity, otherwise the platform serves a reduced page without
caption metadata.
"""

import logging
from typing import Dict, Optional


class UserAgentManager:
    """
    Supplies User-Agent strings and request headers shared by the HTTP and
    browser strategies.
    """

    USER_AGENT_CONFIG = {
        "default": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/127.0.0.0 Safari/537.36",
        "fallback": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36",
        "firefox": "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:109.0) Gecko/20100101 Firefox/119.0",
        "edge": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/127.0.0.0 Safari/537.36 Edg/127.0.0.0",
    }

    def __init__(self, preferred_language: str = "en"):
        self.preferred_language = preferred_language or "en"
        self.default_user_agent = self.USER_AGENT_CONFIG["default"]

    def get_user_agent(self, request_type: str = "default") -> str:
        """
        Get the User-Agent string for a request type.

        Unknown types and strings that fail validation fall back to the default.
        """
        user_agent = self.USER_AGENT_CONFIG.get(request_type, self.default_user_agent)
        if not self.validate_user_agent(user_agent):
            logging.warning(f"Invalid User-Agent for type '{request_type}', using default")
            user_agent = self.default_user_agent
        return user_agent

    def accept_language(self) -> str:
        """Accept-Language value favoring the preferred language, then English."""
        lang = self.preferred_language
        base = lang.split("-")[0]
        if base == "en":
            return "en-US,en;q=0.9"
        if lang != base:
            return f"{lang},{base};q=0.9,en;q=0.8"
        return f"{lang},en;q=0.8"

    def get_transcript_headers(self, request_type: str = "default",
                               additional_headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """
        Headers for watch-page and caption-track requests.

        Args:
            request_type: Which User-Agent to use
            additional_headers: Extra headers, allowed to override the defaults

        Returns:
            dict with User-Agent and Accept-Language
        """
        headers = {
            "User-Agent": self.get_user_agent(request_type),
            "Accept-Language": self.accept_language(),
        }
        if additional_headers:
            headers.update(additional_headers)
        return headers

    @staticmethod
    def validate_user_agent(user_agent: str) -> bool:
        """
        Check that a User-Agent string looks like a real desktop browser.

        Returns:
            bool: True if it carries both a browser and an OS indicator
        """
        if not user_agent or len(user_agent) < 50:
            return False

        browser_indicators = ["Mozilla", "AppleWebKit", "Chrome", "Safari", "Firefox", "Edge"]
        os_indicators = ["Windows", "Macintosh", "Linux", "X11"]

        has_browser_indicator = any(indicator in user_agent for indicator in browser_indicators)
        has_os_indicator = any(indicator in user_agent for indicator in os_indicators)
        return has_browser_indicator and has_os_indicator
