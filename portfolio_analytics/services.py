"""
Per-application service container, stored on ``app.extensions``.
"""

from dataclasses import dataclass

from flask import current_app

from .aggregation import AnalyticsAggregator
from .config import Settings
from .ingestion import TrackingPipeline
from .notifications import TelegramNotifier
from .rate_limit import RateLimiter
from .realtime import RealtimeAnalytics, RealtimeChannel
from .store import EventStore

EXTENSION_KEY = "portfolio_analytics"


@dataclass
class Services:
    settings: Settings
    store: EventStore
    reporting_store: EventStore
    page_view_limiter: RateLimiter
    click_limiter: RateLimiter
    channel: RealtimeChannel
    pipeline: TrackingPipeline
    aggregator: AnalyticsAggregator
    realtime: RealtimeAnalytics
    notifier: TelegramNotifier

    def shutdown(self) -> None:
        self.page_view_limiter.reset()
        self.click_limiter.reset()
        self.realtime.disconnect()
        self.channel.close()


def get_services() -> Services:
    return current_app.extensions[EXTENSION_KEY]
