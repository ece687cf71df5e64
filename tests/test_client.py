"""
Tests for the Python tracking client.
"""

from unittest.mock import Mock

import pytest
import requests

from conftest import BROWSER_UA
from portfolio_analytics.client import TrackerClient, describe_element
from portfolio_analytics.dedup import PageViewDebouncer


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def session():
    session = Mock()
    response = Mock()
    response.ok = True
    response.status_code = 200
    session.post.return_value = response
    return session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(session, clock):
    return TrackerClient("https://site.example/", BROWSER_UA, session=session,
                         debouncer=PageViewDebouncer(clock=clock))


class TestTrackerClient:

    def test_page_view_payload(self, tracker, session):
        assert tracker.track_page_view("/blog", referrer="https://news.example") is True

        args, kwargs = session.post.call_args
        assert args[0] == "https://site.example/api/track/page-view"
        assert kwargs["json"] == {"path": "/blog", "referrer": "https://news.example", "userAgent": BROWSER_UA}
        assert kwargs["headers"]["User-Agent"] == BROWSER_UA
        assert kwargs["timeout"] == 3.0

    def test_duplicate_page_view_not_sent(self, tracker, session, clock):
        tracker.track_page_view("/")
        clock.now += 1
        assert tracker.track_page_view("/") is False
        clock.now += 2
        assert tracker.track_page_view("/") is True
        assert session.post.call_count == 2

    def test_admin_paths_not_sent(self, tracker, session):
        assert tracker.track_page_view("/admin") is False
        assert tracker.track_click("/admin/analytics", "A", 1, 1) is False
        session.post.assert_not_called()

    def test_bot_user_agent_not_sent(self, session):
        tracker = TrackerClient("https://site.example", "Googlebot/2.1", session=session)
        assert tracker.track_page_view("/") is False
        assert tracker.track_click("/", "A", 1, 1) is False
        session.post.assert_not_called()

    def test_click_payload(self, tracker, session):
        assert tracker.track_click("/", "BUTTON:Send", 10, 20) is True
        args, kwargs = session.post.call_args
        assert args[0] == "https://site.example/api/track/click"
        assert kwargs["json"] == {"path": "/", "element": "BUTTON:Send", "x": 10, "y": 20}

    def test_failures_never_raise(self, tracker, session):
        session.post.side_effect = requests.ConnectionError("offline")
        assert tracker.track_click("/", "A", 1, 1) is False

        session.post.side_effect = None
        session.post.return_value.ok = False
        session.post.return_value.status_code = 429
        assert tracker.track_page_view("/contact") is False


class TestDescribeElement:

    def test_button_and_link_include_text(self):
        assert describe_element("button", "  Send message  ") == "BUTTON:Send message"
        assert describe_element("A", "x" * 50) == "A:" + "x" * 30

    def test_plain_tag(self):
        assert describe_element("div", "ignored") == "DIV"

    def test_class_fallback(self):
        assert describe_element(None, class_name="hero-card wide") == "hero-card"
        assert describe_element("", class_name="") == "unknown"
