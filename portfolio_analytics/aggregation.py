"""
Aggregation and reporting over the event tables.

Every metric is computed independently. A failing query degrades that one
metric to its empty value (logged) instead of failing the whole snapshot.
"""

import functools
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from .models import ClickEvent, PageView
from .privacy import UNKNOWN_IP
from .store import EventStore

logger = logging.getLogger(__name__)

TOP_N = 10
CHART_DAYS = 7
RECENT_CLICKS_LIMIT = 100
LOCATION_SAMPLE_LIMIT = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def top_counts(values: Iterable[Any], key: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    Count occurrences and sort descending.

    Ties keep the order in which values were first seen. ``None`` values are
    ignored.
    """
    counts: Dict[Any, int] = {}
    for value in values:
        if value is None:
            continue
        counts[value] = counts.get(value, 0) + 1
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    if limit is not None:
        ranked = ranked[:limit]
    return [{key: value, "count": count} for value, count in ranked]


def ip_prefix(ip_address: Optional[str]) -> Optional[str]:
    """``a.b.c.0`` -> ``a.b``; None for unknown or non-IPv4 values."""
    if not ip_address or ip_address == UNKNOWN_IP or ":" in ip_address:
        return None
    parts = ip_address.split(".")
    if len(parts) != 4:
        return None
    return f"{parts[0]}.{parts[1]}"


def fill_daily_series(counts: Mapping[str, int], today: date, days: int = CHART_DAYS) -> List[Dict[str, Any]]:
    """``days`` consecutive dates ending at ``today``, oldest first, zero-filled."""
    series = []
    for offset in range(days - 1, -1, -1):
        day = (today - timedelta(days=offset)).isoformat()
        series.append({"date": day, "views": counts.get(day, 0)})
    return series


def day_bounds(day: date):
    """UTC ``[start, end)`` for a calendar date."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _bounded(stmt, column, start: Optional[datetime], end: Optional[datetime]):
    if start is not None:
        stmt = stmt.where(column >= start)
    if end is not None:
        stmt = stmt.where(column < end)
    return stmt


def degrade_to(default_factory: Callable[[], Any]):
    """Turn a store failure inside a metric into its empty value."""
    def decorator(func_):
        @functools.wraps(func_)
        def wrapper(self, *args, **kwargs):
            try:
                return func_(self, *args, **kwargs)
            except SQLAlchemyError as e:
                logger.warning(f"Metric {func_.__name__} unavailable: {e}")
                return default_factory()
        return wrapper
    return decorator


@dataclass
class AggregateSnapshot:
    total_page_views: int = 0
    unique_visitors: int = 0
    total_clicks: int = 0
    page_views_per_page: List[Dict[str, Any]] = field(default_factory=list)
    recent_clicks: List[Dict[str, Any]] = field(default_factory=list)
    most_clicked_elements: List[Dict[str, Any]] = field(default_factory=list)
    top_ip_prefixes: List[Dict[str, Any]] = field(default_factory=list)
    chart_data: List[Dict[str, Any]] = field(default_factory=list)
    visitor_locations: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalPageViews": self.total_page_views,
            "uniqueVisitors": self.unique_visitors,
            "totalClicks": self.total_clicks,
            "pageViewsPerPage": self.page_views_per_page,
            "recentClicks": self.recent_clicks,
            "mostClickedElements": self.most_clicked_elements,
            "topIPPrefixes": self.top_ip_prefixes,
            "chartData": self.chart_data,
            "visitorLocations": self.visitor_locations,
        }


@dataclass
class DailyReport:
    day: date
    total_page_views: int = 0
    unique_visitors: int = 0
    total_clicks: int = 0
    top_pages: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "totalPageViews": self.total_page_views,
            "uniqueVisitors": self.unique_visitors,
            "totalClicks": self.total_clicks,
            "topPages": self.top_pages,
        }


class AnalyticsAggregator:
    """Reporting reads over the (privileged) reporting store."""

    def __init__(self, store: EventStore, clock: Callable[[], datetime] = _utcnow,
                 recent_clicks_limit: int = RECENT_CLICKS_LIMIT):
        self.store = store
        self.clock = clock
        self.recent_clicks_limit = recent_clicks_limit

    @property
    def is_configured(self) -> bool:
        return self.store.is_configured

    def today(self) -> date:
        return _as_utc(self.clock()).date()

    # -- counts -----------------------------------------------------------

    @degrade_to(int)
    def total_page_views(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> int:
        with self.store.session() as db:
            stmt = _bounded(select(func.count()).select_from(PageView), PageView.created_at, start, end)
            return db.execute(stmt).scalar_one()

    @degrade_to(int)
    def total_clicks(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> int:
        with self.store.session() as db:
            stmt = _bounded(select(func.count()).select_from(ClickEvent), ClickEvent.created_at, start, end)
            return db.execute(stmt).scalar_one()

    @degrade_to(int)
    def unique_visitors(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> int:
        with self.store.session() as db:
            stmt = (
                select(func.count(func.distinct(PageView.ip_hash)))
                .where(PageView.ip_hash.isnot(None))
                .where(PageView.ip_hash != UNKNOWN_IP)
            )
            stmt = _bounded(stmt, PageView.created_at, start, end)
            return db.execute(stmt).scalar_one()

    # -- rankings ---------------------------------------------------------

    @degrade_to(list)
    def page_views_per_page(self, start: Optional[datetime] = None, end: Optional[datetime] = None,
                            limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self.store.session() as db:
            stmt = _bounded(select(PageView.path), PageView.created_at, start, end)
            stmt = stmt.order_by(PageView.created_at.desc())
            paths = db.execute(stmt).scalars().all()
        return top_counts(paths, "path", limit)

    @degrade_to(list)
    def most_clicked_elements(self, limit: int = TOP_N) -> List[Dict[str, Any]]:
        with self.store.session() as db:
            elements = db.execute(select(ClickEvent.element)).scalars().all()
        return top_counts(elements, "element", limit)

    @degrade_to(list)
    def top_ip_prefixes(self, limit: int = TOP_N) -> List[Dict[str, Any]]:
        with self.store.session() as db:
            stmt = select(PageView.ip_address).where(PageView.ip_address.isnot(None))
            addresses = db.execute(stmt).scalars().all()
        ranked = top_counts((ip_prefix(address) for address in addresses), "prefix", limit)
        for entry in ranked:
            entry["prefix"] = f"{entry['prefix']}.x.x"
        return ranked

    # -- series and samples -----------------------------------------------

    @degrade_to(list)
    def chart_data(self, days: int = CHART_DAYS) -> List[Dict[str, Any]]:
        today = self.today()
        start, _ = day_bounds(today - timedelta(days=days - 1))
        with self.store.session() as db:
            stmt = select(PageView.created_at).where(PageView.created_at >= start)
            timestamps = db.execute(stmt).scalars().all()
        counts = Counter(_as_utc(ts).date().isoformat() for ts in timestamps)
        return fill_daily_series(counts, today, days)

    @degrade_to(list)
    def recent_clicks(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        limit = limit or self.recent_clicks_limit
        with self.store.session() as db:
            stmt = select(ClickEvent).order_by(ClickEvent.created_at.desc()).limit(limit)
            return [click.to_dict() for click in db.execute(stmt).scalars().all()]

    @degrade_to(list)
    def visitor_locations(self) -> List[Dict[str, Any]]:
        """Located page views grouped by place, most visits first."""
        with self.store.session() as db:
            visits = func.count().label("visits")
            stmt = (
                select(PageView.country, PageView.country_code, PageView.city,
                       PageView.latitude, PageView.longitude, visits)
                .where(PageView.latitude.isnot(None))
                .where(PageView.longitude.isnot(None))
                .group_by(PageView.country, PageView.country_code, PageView.city,
                          PageView.latitude, PageView.longitude)
                .order_by(visits.desc())
            )
            rows = db.execute(stmt).all()
        return [
            {
                "country": row.country,
                "country_code": row.country_code,
                "city": row.city,
                "latitude": row.latitude,
                "longitude": row.longitude,
                "count": row.visits,
            }
            for row in rows
        ]

    def geolocation_debug(self) -> Dict[str, Any]:
        """Geolocation coverage, for diagnosing the enricher."""
        located = self._located_page_views()
        sample: List[Dict[str, Any]] = []
        error = None
        try:
            with self.store.session() as db:
                stmt = (
                    select(PageView.country, PageView.country_code, PageView.city,
                           PageView.latitude, PageView.longitude)
                    .order_by(PageView.created_at.desc())
                    .limit(LOCATION_SAMPLE_LIMIT)
                )
                sample = [dict(row._mapping) for row in db.execute(stmt).all()]
        except SQLAlchemyError as e:
            logger.warning(f"Geolocation sample unavailable: {e}")
            error = {"message": str(getattr(e, "orig", None) or e)}

        return {
            "totalPageViews": self.total_page_views(),
            "pageViewsWithGeolocation": located,
            "sampleData": sample,
            "error": error,
        }

    @degrade_to(int)
    def _located_page_views(self) -> int:
        with self.store.session() as db:
            stmt = select(func.count()).select_from(PageView).where(PageView.latitude.isnot(None))
            return db.execute(stmt).scalar_one()

    # -- composites -------------------------------------------------------

    def snapshot(self) -> AggregateSnapshot:
        return AggregateSnapshot(
            total_page_views=self.total_page_views(),
            unique_visitors=self.unique_visitors(),
            total_clicks=self.total_clicks(),
            page_views_per_page=self.page_views_per_page(),
            recent_clicks=self.recent_clicks(),
            most_clicked_elements=self.most_clicked_elements(),
            top_ip_prefixes=self.top_ip_prefixes(),
            chart_data=self.chart_data(),
            visitor_locations=self.visitor_locations(),
        )

    def daily_report(self, day: Optional[date] = None) -> DailyReport:
        day = day or self.today()
        start, end = day_bounds(day)
        return DailyReport(
            day=day,
            total_page_views=self.total_page_views(start, end),
            unique_visitors=self.unique_visitors(start, end),
            total_clicks=self.total_clicks(start, end),
            top_pages=self.page_views_per_page(start, end, limit=TOP_N),
        )
