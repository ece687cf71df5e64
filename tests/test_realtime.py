"""
Tests for realtime fan-out, dashboard merge state and the SSE stream.
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from conftest import visitor_headers
from portfolio_analytics.realtime import (
    CLICK_EVENTS,
    CONNECTED,
    DISCONNECTED,
    PAGE_VIEWS,
    RealtimeAnalytics,
    RealtimeChannel,
    sse_events,
)

NOW = datetime(2024, 3, 10, 15, 0, tzinfo=timezone.utc)


def base_snapshot():
    return {
        "totalPageViews": 10,
        "uniqueVisitors": 4,
        "totalClicks": 2,
        "pageViewsPerPage": [{"path": "/", "count": 6}, {"path": "/blog", "count": 4}],
        "recentClicks": [{"id": "c1", "path": "/", "element": "A", "x": 1, "y": 1, "created_at": None}],
        "mostClickedElements": [{"element": "A", "count": 2}],
        "topIPPrefixes": [],
        "chartData": [{"date": f"2024-03-{day:02d}", "views": 1} for day in range(4, 11)],
        "visitorLocations": [],
    }


class TestRealtimeChannel:

    def test_publish_reaches_subscribers_of_that_table(self):
        channel = RealtimeChannel()
        views, clicks = [], []
        channel.subscribe(PAGE_VIEWS, views.append)
        channel.subscribe(CLICK_EVENTS, clicks.append)

        delivered = channel.publish(PAGE_VIEWS, {"path": "/"})

        assert delivered == 1
        assert views == [{"path": "/"}]
        assert clicks == []

    def test_failing_subscriber_is_skipped(self):
        channel = RealtimeChannel()
        received = []
        channel.subscribe(PAGE_VIEWS, Mock(side_effect=RuntimeError("boom")))
        channel.subscribe(PAGE_VIEWS, received.append)

        assert channel.publish(PAGE_VIEWS, {"path": "/"}) == 1
        assert received == [{"path": "/"}]

    def test_unsubscribe_and_status(self):
        channel = RealtimeChannel()
        statuses = []
        subscription = channel.subscribe(PAGE_VIEWS, lambda row: None, statuses.append)
        subscription.unsubscribe()

        assert statuses == [CONNECTED, DISCONNECTED]
        assert channel.subscriber_count() == 0

    def test_close_disconnects_everyone(self):
        channel = RealtimeChannel()
        statuses = []
        channel.subscribe(PAGE_VIEWS, lambda row: None, statuses.append)
        channel.subscribe(CLICK_EVENTS, lambda row: None, statuses.append)
        channel.close()

        assert statuses.count(DISCONNECTED) == 2
        assert channel.subscriber_count() == 0

    def test_unknown_table(self):
        with pytest.raises(ValueError):
            RealtimeChannel().subscribe("comments", lambda row: None)


class TestRealtimeAnalytics:

    @pytest.fixture
    def realtime(self):
        realtime = RealtimeAnalytics(clock=lambda: NOW)
        realtime.refresh(base_snapshot())
        return realtime

    def test_connection_state_follows_channel(self):
        channel = RealtimeChannel()
        realtime = RealtimeAnalytics(clock=lambda: NOW)
        assert not realtime.connected

        realtime.connect(channel)
        assert realtime.connected
        assert channel.subscriber_count() == 2

        channel.close()
        assert not realtime.connected

    def test_page_view_merge(self, realtime):
        for _ in range(3):
            realtime.handle_page_view({"path": "/blog", "created_at": NOW.isoformat()})

        snapshot = realtime.current_snapshot()
        assert snapshot["totalPageViews"] == 13
        assert snapshot["pageViewsPerPage"][0] == {"path": "/blog", "count": 7}
        assert snapshot["chartData"][-1] == {"date": "2024-03-10", "views": 4}
        assert len(snapshot["chartData"]) == 7
        assert realtime.new_page_views == 3
        assert realtime.last_update == NOW

    def test_page_view_for_new_day_appends_and_trims(self, realtime):
        tomorrow = NOW + timedelta(days=1)
        realtime.handle_page_view({"path": "/", "created_at": tomorrow.isoformat()})

        chart = realtime.current_snapshot()["chartData"]
        assert len(chart) == 7
        assert chart[0]["date"] == "2024-03-05"
        assert chart[-1] == {"date": "2024-03-11", "views": 1}

    def test_click_merge(self):
        realtime = RealtimeAnalytics(clock=lambda: NOW, recent_clicks_limit=2)
        realtime.refresh(base_snapshot())

        realtime.handle_click({"id": "c2", "path": "/", "element": "B", "x": 5, "y": 6, "created_at": None})
        realtime.handle_click({"id": "c3", "path": "/", "element": "B", "x": 5, "y": 6, "created_at": None})

        snapshot = realtime.current_snapshot()
        assert [click["id"] for click in snapshot["recentClicks"]] == ["c3", "c2"]
        assert snapshot["mostClickedElements"] == [{"element": "A", "count": 2}, {"element": "B", "count": 2}]
        assert snapshot["totalClicks"] == 4
        assert realtime.new_clicks == 2

    def test_refresh_resets_counters(self, realtime):
        realtime.handle_page_view({"path": "/"})
        realtime.handle_click({"element": "A"})

        realtime.refresh(base_snapshot())

        assert realtime.new_page_views == 0
        assert realtime.new_clicks == 0
        assert realtime.current_snapshot()["totalPageViews"] == 10

    def test_push_without_snapshot_only_counts(self):
        realtime = RealtimeAnalytics(clock=lambda: NOW)
        realtime.handle_page_view({"path": "/"})
        assert realtime.new_page_views == 1
        assert realtime.current_snapshot() is None

    def test_caller_callbacks(self):
        on_view = Mock()
        realtime = RealtimeAnalytics(on_page_view=on_view, clock=lambda: NOW)
        realtime.handle_page_view({"path": "/"})
        on_view.assert_called_once_with({"path": "/"})

    def test_staleness(self):
        now = [NOW]
        realtime = RealtimeAnalytics(clock=lambda: now[0])
        assert realtime.is_stale(60)
        realtime.refresh(base_snapshot())
        assert not realtime.is_stale(60)
        now[0] += timedelta(seconds=61)
        assert realtime.is_stale(60)


class TestEventStream:

    def test_stream_emits_inserts_then_unsubscribes(self):
        channel = RealtimeChannel()
        stream = sse_events(channel, keepalive_seconds=0.01, max_events=1)

        assert next(stream) == ": connected\n\n"
        assert channel.subscriber_count() == 2

        channel.publish(CLICK_EVENTS, {"element": "A"})
        chunk = next(stream)
        assert chunk.startswith("event: click_events\n")
        assert json.loads(chunk.split("data: ", 1)[1]) == {"element": "A"}

        with pytest.raises(StopIteration):
            next(stream)
        assert channel.subscriber_count() == 0

    def test_keepalive_when_idle(self):
        channel = RealtimeChannel()
        stream = sse_events(channel, keepalive_seconds=0.01)
        next(stream)
        assert next(stream) == ": keepalive\n\n"
        stream.close()
        assert channel.subscriber_count() == 0

    def test_stream_endpoint_requires_admin(self, client):
        assert client.get("/api/admin/analytics/stream").status_code == 401

    def test_stream_endpoint_content_type(self, client, admin_headers):
        response = client.get("/api/admin/analytics/stream", headers=admin_headers)
        assert response.status_code == 200
        assert response.mimetype == "text/event-stream"
        assert response.headers["Cache-Control"] == "no-cache"
        response.close()


class TestLiveEndpoint:

    def test_live_snapshot_merges_pushes_until_refresh(self, client, admin_headers, geolocator):
        first = client.get("/api/admin/analytics/live", headers=admin_headers).get_json()
        assert first["snapshot"]["totalPageViews"] == 0
        assert first["realtime"]["connected"] is True

        client.post("/api/track/page-view", json={"path": "/"}, headers=visitor_headers())

        second = client.get("/api/admin/analytics/live", headers=admin_headers).get_json()
        assert second["realtime"]["newPageViews"] == 1
        assert second["snapshot"]["totalPageViews"] == 1

        refreshed = client.get("/api/admin/analytics/live?refresh=1", headers=admin_headers).get_json()
        assert refreshed["realtime"]["newPageViews"] == 0
        assert refreshed["snapshot"]["totalPageViews"] == 1
