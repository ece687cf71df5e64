import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, Index, String, Text

from .db import Base


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value):
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class PageView(Base):
    __tablename__ = "page_views"

    id = Column(String(36), primary_key=True, default=_new_id)
    path = Column(Text, nullable=False)
    referrer = Column(Text, nullable=True)
    user_agent = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)   # anonymized, never the raw IP
    ip_hash = Column(String(32), nullable=True)
    country = Column(String(128), nullable=True)
    country_code = Column(String(8), nullable=True)
    city = Column(String(128), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "path": self.path,
            "referrer": self.referrer,
            "user_agent": self.user_agent,
            "ip_address": self.ip_address,
            "ip_hash": self.ip_hash,
            "country": self.country,
            "country_code": self.country_code,
            "city": self.city,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "created_at": _iso(self.created_at),
        }


class ClickEvent(Base):
    __tablename__ = "click_events"

    id = Column(String(36), primary_key=True, default=_new_id)
    path = Column(Text, nullable=False)
    element = Column(String(255), nullable=False)
    x = Column(Float, nullable=False)
    y = Column(Float, nullable=False)
    ip_address = Column(String(64), nullable=True)
    ip_hash = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "path": self.path,
            "element": self.element,
            "x": self.x,
            "y": self.y,
            "ip_address": self.ip_address,
            "ip_hash": self.ip_hash,
            "created_at": _iso(self.created_at),
        }


# Server-side dedup lookup
Index("idx_page_views_dedup", PageView.ip_hash, PageView.path, PageView.created_at)
Index("idx_click_events_element", ClickEvent.element)
