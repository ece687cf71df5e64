"""
Realtime fan-out of newly inserted event rows.

RealtimeChannel is an in-process publish/subscribe hub with one logical
channel per event table. RealtimeAnalytics is the dashboard-side consumer: it
keeps the last pulled aggregate snapshot and folds pushed rows into it without
re-querying the store. Between full refreshes the snapshot is eventually
consistent, not authoritative. Reconnection is left to the transport (the
SSE client reconnects on its own); nothing here retries.
"""

import copy
import json
import logging
import queue
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

PAGE_VIEWS = "page_views"
CLICK_EVENTS = "click_events"
TABLES = (PAGE_VIEWS, CLICK_EVENTS)

CONNECTED = "connected"
DISCONNECTED = "disconnected"

Row = Dict[str, Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Subscription:
    """Handle returned by RealtimeChannel.subscribe."""

    def __init__(self, channel: "RealtimeChannel", table: str,
                 callback: Callable[[Row], None],
                 on_status: Optional[Callable[[str], None]] = None):
        self.channel = channel
        self.table = table
        self.callback = callback
        self.on_status = on_status
        self.status = DISCONNECTED

    def _set_status(self, status: str) -> None:
        self.status = status
        if self.on_status is not None:
            try:
                self.on_status(status)
            except Exception as e:
                logger.warning(f"Realtime status callback failed for {self.table}: {e}")

    def unsubscribe(self) -> None:
        self.channel._remove(self)
        self._set_status(DISCONNECTED)


class RealtimeChannel:
    """Pushes inserted rows to every subscriber of the row's table."""

    def __init__(self):
        self._subscribers: Dict[str, List[Subscription]] = {table: [] for table in TABLES}
        self._lock = threading.Lock()

    def subscribe(self, table: str, callback: Callable[[Row], None],
                  on_status: Optional[Callable[[str], None]] = None) -> Subscription:
        if table not in self._subscribers:
            raise ValueError(f"Unknown realtime table: {table}")
        subscription = Subscription(self, table, callback, on_status)
        with self._lock:
            self._subscribers[table].append(subscription)
        subscription._set_status(CONNECTED)
        logger.debug(f"Realtime subscriber added for {table}")
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.table, [])
            if subscription in subscribers:
                subscribers.remove(subscription)

    def publish(self, table: str, row: Row) -> int:
        """Deliver ``row``; returns the number of subscribers reached."""
        with self._lock:
            subscribers = list(self._subscribers.get(table, []))

        delivered = 0
        for subscription in subscribers:
            try:
                subscription.callback(row)
                delivered += 1
            except Exception as e:
                logger.warning(f"Realtime subscriber for {table} failed: {e}")
        return delivered

    def subscriber_count(self, table: Optional[str] = None) -> int:
        with self._lock:
            if table is not None:
                return len(self._subscribers.get(table, []))
            return sum(len(subs) for subs in self._subscribers.values())

    def close(self) -> None:
        with self._lock:
            subscribers = [sub for subs in self._subscribers.values() for sub in subs]
            for subs in self._subscribers.values():
                subs.clear()
        for subscription in subscribers:
            subscription._set_status(DISCONNECTED)


def _row_date(row: Row, fallback: datetime) -> str:
    created_at = row.get("created_at")
    if isinstance(created_at, str):
        try:
            created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
        except ValueError:
            created_at = None
    if not isinstance(created_at, datetime):
        created_at = fallback
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at.astimezone(timezone.utc).date().isoformat()


def _bump_counts(entries: List[Dict[str, Any]], key: str, value: Any) -> List[Dict[str, Any]]:
    counts: Dict[Any, int] = {}
    for entry in entries:
        counts[entry[key]] = entry["count"]
    counts[value] = counts.get(value, 0) + 1
    merged = [{key: k, "count": v} for k, v in counts.items()]
    merged.sort(key=lambda item: item["count"], reverse=True)
    return merged


class RealtimeAnalytics:
    """Dashboard state: pulled snapshot plus incrementally merged pushes."""

    def __init__(self, on_page_view: Optional[Callable[[Row], None]] = None,
                 on_click: Optional[Callable[[Row], None]] = None,
                 clock: Callable[[], datetime] = _utcnow,
                 recent_clicks_limit: int = 100, top_elements: int = 10, chart_days: int = 7):
        self.on_page_view = on_page_view
        self.on_click = on_click
        self.clock = clock
        self.recent_clicks_limit = recent_clicks_limit
        self.top_elements = top_elements
        self.chart_days = chart_days

        self.snapshot: Optional[Dict[str, Any]] = None
        self.refreshed_at: Optional[datetime] = None
        self.new_page_views = 0
        self.new_clicks = 0
        self.last_update: Optional[datetime] = None

        self._subscriptions: List[Subscription] = []
        self._status: Dict[str, str] = {}
        self._lock = threading.RLock()

    # -- connection -------------------------------------------------------

    def connect(self, channel: RealtimeChannel) -> None:
        if self._subscriptions:
            return
        self._subscriptions = [
            channel.subscribe(PAGE_VIEWS, self.handle_page_view, self._status_listener(PAGE_VIEWS)),
            channel.subscribe(CLICK_EVENTS, self.handle_click, self._status_listener(CLICK_EVENTS)),
        ]

    def disconnect(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.unsubscribe()

    def _status_listener(self, table: str) -> Callable[[str], None]:
        def _listener(status: str) -> None:
            with self._lock:
                self._status[table] = status
            if status == CONNECTED:
                logger.info(f"Realtime connected to {table} channel")
            else:
                logger.warning(f"Realtime disconnected from {table} channel")
        return _listener

    @property
    def connected(self) -> bool:
        with self._lock:
            return all(self._status.get(table) == CONNECTED for table in TABLES)

    # -- pull -------------------------------------------------------------

    def refresh(self, snapshot: Dict[str, Any]) -> None:
        """Replace the snapshot wholesale; it already reflects pushed rows."""
        with self._lock:
            self.snapshot = copy.deepcopy(snapshot)
            self.refreshed_at = self.clock()
            self.new_page_views = 0
            self.new_clicks = 0

    def is_stale(self, max_age_seconds: float) -> bool:
        with self._lock:
            if self.snapshot is None or self.refreshed_at is None:
                return True
            return (self.clock() - self.refreshed_at).total_seconds() >= max_age_seconds

    # -- push -------------------------------------------------------------

    def handle_page_view(self, row: Row) -> None:
        now = self.clock()
        with self._lock:
            self.new_page_views += 1
            self.last_update = now
            if self.snapshot is not None:
                self._merge_page_view(row, now)
        if self.on_page_view is not None:
            self.on_page_view(row)

    def handle_click(self, row: Row) -> None:
        now = self.clock()
        with self._lock:
            self.new_clicks += 1
            self.last_update = now
            if self.snapshot is not None:
                self._merge_click(row)
        if self.on_click is not None:
            self.on_click(row)

    def _merge_page_view(self, row: Row, now: datetime) -> None:
        snapshot = self.snapshot
        snapshot["totalPageViews"] = snapshot.get("totalPageViews", 0) + 1
        snapshot["pageViewsPerPage"] = _bump_counts(snapshot.get("pageViewsPerPage", []), "path", row.get("path"))

        day = _row_date(row, now)
        chart = [dict(point) for point in snapshot.get("chartData", [])]
        for point in chart:
            if point["date"] == day:
                point["views"] += 1
                break
        else:
            chart.append({"date": day, "views": 1})
            chart.sort(key=lambda point: point["date"])
            chart = chart[-self.chart_days:]
        snapshot["chartData"] = chart

    def _merge_click(self, row: Row) -> None:
        snapshot = self.snapshot
        click = {key: row.get(key) for key in ("id", "path", "element", "x", "y", "created_at")}
        recent = [click] + list(snapshot.get("recentClicks", []))
        snapshot["recentClicks"] = recent[:self.recent_clicks_limit]
        snapshot["mostClickedElements"] = _bump_counts(
            snapshot.get("mostClickedElements", []), "element", row.get("element")
        )[:self.top_elements]
        snapshot["totalClicks"] = snapshot.get("totalClicks", 0) + 1

    # -- views ------------------------------------------------------------

    def state(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "connected": self.connected,
                "newPageViews": self.new_page_views,
                "newClicks": self.new_clicks,
                "lastUpdate": self.last_update.isoformat() if self.last_update else None,
                "refreshedAt": self.refreshed_at.isoformat() if self.refreshed_at else None,
            }

    def current_snapshot(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self.snapshot) if self.snapshot is not None else None


def format_sse(data: Any, event: Optional[str] = None) -> str:
    message = f"data: {json.dumps(data, default=str)}\n\n"
    if event:
        message = f"event: {event}\n{message}"
    return message


def sse_events(channel: RealtimeChannel, keepalive_seconds: float = 15.0,
               max_events: Optional[int] = None) -> Iterator[str]:
    """
    Server-Sent Events for inserts on both tables.

    Subscribes on first iteration and unsubscribes when the consumer goes
    away. A comment line is sent whenever nothing arrived for
    ``keepalive_seconds`` so proxies keep the connection open.
    """
    events: "queue.Queue[Tuple[str, Row]]" = queue.Queue()

    def _enqueue(table: str) -> Callable[[Row], None]:
        return lambda row: events.put((table, row))

    subscriptions = [channel.subscribe(table, _enqueue(table)) for table in TABLES]
    sent = 0
    try:
        yield ": connected\n\n"
        while max_events is None or sent < max_events:
            try:
                table, row = events.get(timeout=keepalive_seconds)
            except queue.Empty:
                yield ": keepalive\n\n"
                continue
            yield format_sse(row, event=table)
            sent += 1
    finally:
        for subscription in subscriptions:
            subscription.unsubscribe()
