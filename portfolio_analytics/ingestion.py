"""
Ingestion pipeline behind the tracking endpoints.

Each request runs the same fixed sequence: identity, rate limit, validation,
admin-path skip, bot skip, store check, privacy transform, then (page views
only) dedup and geolocation, and finally the insert and realtime publish.
Policy skips come back as a successful TrackingOutcome; everything that must
reach the caller as a non-2xx is raised as an AnalyticsError.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import ValidationError

from .bots import is_bot
from .config import Settings
from .dedup import is_recent_duplicate
from .errors import ConfigurationError, RateLimited, ValidationFailed
from .geolocation import Geolocator
from .privacy import anonymize_ip, hash_ip
from .rate_limit import RateLimiter, client_identity
from .realtime import CLICK_EVENTS, PAGE_VIEWS, RealtimeChannel
from .schemas import ClickPayload, PageViewPayload
from .store import EventStore

logger = logging.getLogger(__name__)

SKIP_ADMIN = "admin"
SKIP_BOT = "bot"
SKIP_DUPLICATE = "duplicate"

FIELD_MESSAGES = {
    "path": "Invalid path",
    "element": "Invalid element",
    "x": "Invalid coordinates",
    "y": "Invalid coordinates",
}


@dataclass
class TrackingOutcome:
    """Result of a tracking call that did not fail."""
    success: bool = True
    id: Optional[str] = None
    skipped: bool = False
    reason: Optional[str] = None
    row: Optional[Dict[str, Any]] = field(default=None, repr=False)

    @classmethod
    def skip(cls, reason: str) -> "TrackingOutcome":
        return cls(skipped=True, reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        if self.skipped:
            return {"success": True, "skipped": True, "reason": self.reason}
        return {"success": True, "id": self.id}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validation_message(error: ValidationError) -> str:
    for detail in error.errors():
        loc = detail.get("loc") or ()
        if loc and loc[0] in FIELD_MESSAGES:
            return FIELD_MESSAGES[loc[0]]
    return "Invalid request body"


def _parse(model, body):
    if not isinstance(body, dict):
        raise ValidationFailed("Invalid request body")
    try:
        return model.model_validate(body)
    except ValidationError as e:
        fields = [".".join(str(part) for part in detail["loc"]) for detail in e.errors()]
        raise ValidationFailed(_validation_message(e), details={"fields": fields})


class TrackingPipeline:
    """Validates, filters, anonymizes, enriches and persists tracking events."""

    def __init__(self, settings: Settings, store: EventStore,
                 page_view_limiter: RateLimiter, click_limiter: RateLimiter,
                 geolocator: Optional[Geolocator] = None,
                 channel: Optional[RealtimeChannel] = None,
                 clock: Callable[[], datetime] = _utcnow):
        self.settings = settings
        self.store = store
        self.page_view_limiter = page_view_limiter
        self.click_limiter = click_limiter
        self.geolocator = geolocator
        self.channel = channel
        self.clock = clock

    def _is_admin_path(self, path: str) -> bool:
        prefix = self.settings.admin_path_prefix
        return bool(prefix) and path.startswith(prefix)

    def _require_store(self) -> None:
        if not self.store.is_configured:
            logger.error("Tracking store is not configured: DATABASE_URL is empty")
            raise ConfigurationError()

    def _publish(self, table: str, row: Dict[str, Any]) -> None:
        if self.channel is not None:
            self.channel.publish(table, row)

    def track_page_view(self, body: Any, headers: Mapping[str, str]) -> TrackingOutcome:
        identity = client_identity(headers)
        if not self.page_view_limiter.check(identity):
            logger.info(f"Page view rate limit exceeded for {anonymize_ip(identity)}")
            raise RateLimited()

        payload = _parse(PageViewPayload, body)
        user_agent = payload.user_agent or headers.get("User-Agent")

        if self._is_admin_path(payload.path):
            logger.debug(f"Skipping admin path {payload.path}")
            return TrackingOutcome.skip(SKIP_ADMIN)

        if is_bot(user_agent):
            logger.debug(f"Skipping bot page view: {user_agent!r}")
            return TrackingOutcome.skip(SKIP_BOT)

        self._require_store()

        ip_address = anonymize_ip(identity)
        ip_hash = hash_ip(identity, self.settings.ip_hash_salt)
        now = self.clock()

        if is_recent_duplicate(self.store, ip_hash, payload.path, now, self.settings.dedup_window_seconds):
            logger.debug(f"Skipping duplicate page view of {payload.path}")
            return TrackingOutcome.skip(SKIP_DUPLICATE)

        location_fields: Dict[str, Any] = {}
        if self.geolocator is not None:
            location = self.geolocator.lookup(identity)
            if location is not None:
                location_fields = location.row_fields()

        row = self.store.insert_page_view(
            path=payload.path,
            referrer=payload.referrer or None,
            user_agent=user_agent,
            ip_address=ip_address,
            ip_hash=ip_hash,
            created_at=now,
            **location_fields,
        )
        self._publish(PAGE_VIEWS, row)
        return TrackingOutcome(id=row["id"], row=row)

    def track_click(self, body: Any, headers: Mapping[str, str]) -> TrackingOutcome:
        identity = client_identity(headers)
        if not self.click_limiter.check(identity):
            logger.info(f"Click rate limit exceeded for {anonymize_ip(identity)}")
            raise RateLimited()

        payload = _parse(ClickPayload, body)
        user_agent = headers.get("User-Agent")

        if self._is_admin_path(payload.path):
            logger.debug(f"Skipping admin path {payload.path}")
            return TrackingOutcome.skip(SKIP_ADMIN)

        if is_bot(user_agent):
            logger.debug(f"Skipping bot click: {user_agent!r}")
            return TrackingOutcome.skip(SKIP_BOT)

        self._require_store()

        row = self.store.insert_click(
            path=payload.path,
            element=payload.element,
            x=float(payload.x),
            y=float(payload.y),
            ip_address=anonymize_ip(identity),
            ip_hash=hash_ip(identity, self.settings.ip_hash_salt),
            created_at=self.clock(),
        )
        self._publish(CLICK_EVENTS, row)
        return TrackingOutcome(id=row["id"], row=row)
