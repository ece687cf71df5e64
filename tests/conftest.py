"""
Pytest configuration and fixtures.
"""

from unittest.mock import Mock

import pytest

from portfolio_analytics.config import Settings
from portfolio_analytics.factory import create_app
from portfolio_analytics.services import EXTENSION_KEY

BROWSER_UA = "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) AppleWebKit/605.1.15 Safari/605.1.15"
ADMIN_TOKEN = "test-admin-token"


def make_settings(**overrides):
    """Settings isolated from the host environment and any .env file."""
    values = dict(
        database_url="sqlite://",
        admin_database_url="",
        ip_hash_salt="test-salt",
        cron_secret=None,
        telegram_bot_token=None,
        telegram_chat_id=None,
        admin_email="admin@example.com",
        admin_password="correct horse",
        admin_token=ADMIN_TOKEN,
        secret_key="test-secret-key",
        environment="production",
        site_url="https://example.com",
        cors_origins="*",
        auto_create_tables=True,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def app(settings):
    """Create test Flask application."""
    app = create_app(settings, {"TESTING": True, "SESSION_COOKIE_SECURE": False})
    yield app
    app.extensions[EXTENSION_KEY].shutdown()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions[EXTENSION_KEY]


@pytest.fixture
def geolocator(services):
    """Replace the network-backed geolocator with a mock that finds nothing."""
    mock = Mock()
    mock.lookup.return_value = None
    services.pipeline.geolocator = mock
    return mock


@pytest.fixture
def notifier(services):
    mock = Mock()
    mock.send.return_value = True
    services.notifier = mock
    return mock


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": ADMIN_TOKEN}


def visitor_headers(ip="203.0.113.42", user_agent=BROWSER_UA):
    return {"X-Forwarded-For": ip, "User-Agent": user_agent}
