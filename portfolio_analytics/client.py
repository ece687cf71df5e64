"""
Python tracking client for the page-view and click endpoints.

Mirrors what the browser tracker does before any network call: admin paths
and bot user agents are never sent, and the same path is not reported twice
within the debounce window. Failures are logged; tracking never raises into
the host application.
"""

import logging
from typing import Any, Dict, Optional

import requests

from .bots import is_bot
from .dedup import PageViewDebouncer

logger = logging.getLogger(__name__)

ELEMENT_TEXT_LENGTH = 30


def describe_element(tag: Optional[str], text: Optional[str] = None, class_name: Optional[str] = None) -> str:
    """
    Short identifier for a clicked element.

    Buttons and links include their text (``BUTTON:Send``); otherwise the tag
    name, falling back to the first CSS class.
    """
    element = (tag or "").upper() or "unknown"
    if element in ("BUTTON", "A") and text:
        snippet = text.strip()[:ELEMENT_TEXT_LENGTH]
        if snippet:
            return f"{element}:{snippet}"
    if element == "unknown" and class_name:
        classes = class_name.split()
        return classes[0] if classes else "unknown"
    return element


class TrackerClient:
    def __init__(self, base_url: str, user_agent: Optional[str], admin_path_prefix: str = "/admin",
                 timeout: float = 3.0, session: Optional[requests.Session] = None,
                 debouncer: Optional[PageViewDebouncer] = None):
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.admin_path_prefix = admin_path_prefix
        self.timeout = timeout
        self.session = session or requests.Session()
        self.debouncer = debouncer or PageViewDebouncer()

    def _skip(self, path: str) -> bool:
        if self.admin_path_prefix and path.startswith(self.admin_path_prefix):
            logger.debug(f"Not tracking admin path {path}")
            return True
        if is_bot(self.user_agent):
            logger.debug(f"Not tracking bot user agent {self.user_agent!r}")
            return True
        return False

    def _post(self, endpoint: str, payload: Dict[str, Any]) -> bool:
        headers = {"Content-Type": "application/json"}
        if self.user_agent:
            headers["User-Agent"] = self.user_agent
        try:
            response = self.session.post(
                f"{self.base_url}{endpoint}", json=payload, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.warning(f"Tracking call to {endpoint} failed: {e}")
            return False

        if not response.ok:
            logger.warning(f"Tracking call to {endpoint} returned HTTP {response.status_code}")
            return False
        return True

    def track_page_view(self, path: str, referrer: Optional[str] = None) -> bool:
        """Returns True only when the server accepted the event."""
        if self._skip(path):
            return False
        if not self.debouncer.should_send(path):
            logger.debug(f"Skipping duplicate page view of {path}")
            return False

        return self._post("/api/track/page-view", {
            "path": path,
            "referrer": referrer,
            "userAgent": self.user_agent,
        })

    def track_click(self, path: str, element: str, x: float, y: float) -> bool:
        if self._skip(path):
            return False
        return self._post("/api/track/click", {"path": path, "element": element, "x": x, "y": y})
