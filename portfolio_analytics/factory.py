"""
Flask application factory for the analytics service.
"""

import logging
from datetime import timedelta
from typing import Optional

from flask import Flask
from flask_cors import CORS

from .aggregation import AnalyticsAggregator
from .auth import auth_bp
from .config import Settings, get_settings
from .db import make_engine
from .geolocation import Geolocator
from .ingestion import TrackingPipeline
from .notifications import TelegramNotifier
from .rate_limit import RateLimiter
from .realtime import RealtimeAnalytics, RealtimeChannel
from .routes import admin_bp, health_bp, notifications_bp, track_bp
from .services import EXTENSION_KEY, Services
from .store import EventStore

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, config_override=None):
    """Create and configure Flask application."""
    settings = settings or get_settings()

    app = Flask(__name__)
    app.json.sort_keys = False
    app.config.update(
        SECRET_KEY=settings.secret_key,
        DEBUG=settings.is_development,
        PERMANENT_SESSION_LIFETIME=timedelta(days=7),
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        SESSION_COOKIE_SECURE=not settings.is_development,
    )
    if config_override:
        app.config.update(config_override)

    setup_logging(app)

    origins = [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()] or "*"
    CORS(app, resources={r"/api/track/*": {"origins": origins}})

    services = build_services(settings)
    app.extensions[EXTENSION_KEY] = services

    if settings.auto_create_tables:
        stores = [services.store]
        if services.reporting_store is not services.store:
            stores.append(services.reporting_store)
        for store in stores:
            if not store.is_configured:
                continue
            try:
                store.create_tables()
            except Exception as e:
                logger.error(f"Failed to create tables: {e}")

    if not services.store.is_configured:
        logger.warning("DATABASE_URL is not set; tracking endpoints will return configuration errors")

    app.register_blueprint(track_bp, url_prefix="/api/track")
    app.register_blueprint(auth_bp, url_prefix="/api/admin")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(notifications_bp, url_prefix="/api/notifications")
    app.register_blueprint(health_bp)

    app.logger.info("Analytics service initialized")
    return app


def build_services(settings: Settings) -> Services:
    """Wire the stores, limiters, pipeline and reporting components."""
    engine = make_engine(settings.database_url)
    store = EventStore(engine)
    if settings.reporting_database_url == settings.database_url:
        reporting_store = store
    else:
        reporting_store = EventStore(make_engine(settings.reporting_database_url))

    page_view_limiter = RateLimiter(settings.page_view_rate_limit, settings.rate_limit_window_seconds, name="page-view")
    click_limiter = RateLimiter(settings.click_rate_limit, settings.rate_limit_window_seconds, name="click")
    channel = RealtimeChannel()

    pipeline = TrackingPipeline(
        settings,
        store,
        page_view_limiter,
        click_limiter,
        geolocator=Geolocator(settings.geolocation_url, timeout=settings.geolocation_timeout),
        channel=channel,
    )
    aggregator = AnalyticsAggregator(reporting_store, recent_clicks_limit=settings.recent_clicks_limit)
    realtime = RealtimeAnalytics(recent_clicks_limit=settings.recent_clicks_limit)
    realtime.connect(channel)

    notifier = TelegramNotifier(
        settings.telegram_bot_token,
        settings.telegram_chat_id,
        timeout=settings.notification_timeout,
    )

    return Services(
        settings=settings,
        store=store,
        reporting_store=reporting_store,
        page_view_limiter=page_view_limiter,
        click_limiter=click_limiter,
        channel=channel,
        pipeline=pipeline,
        aggregator=aggregator,
        realtime=realtime,
        notifier=notifier,
    )


def setup_logging(app):
    """Set up application logging."""

    log_level = logging.DEBUG if app.config.get("DEBUG", False) else logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler()
        ]
    )

    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    app.logger.info(f"Logging configured at level: {logging.getLevelName(log_level)}")
