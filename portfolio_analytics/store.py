"""
Event store: the insert/query surface over the page_views and click_events tables.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from .db import Base, make_session_factory
from .errors import StoreError
from .models import ClickEvent, PageView

logger = logging.getLogger(__name__)

MISSING_TABLE_CODES = {"42P01"}
PERMISSION_DENIED_CODES = {"42501"}
DUPLICATE_KEY_CODES = {"23505"}

STORE_MESSAGES = {
    StoreError.MISSING_TABLE: "Table does not exist. Run the database schema.",
    StoreError.PERMISSION_DENIED: "Permission denied. Check database grants allow inserts.",
    StoreError.DUPLICATE_KEY: "Duplicate entry",
    StoreError.CONNECTION: "Database connection failed",
}


def _error_code(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    for attr in ("pgcode", "sqlstate"):
        code = getattr(orig, attr, None)
        if code:
            return str(code)
    return None


def classify_store_error(exc: BaseException, fallback_message: str = "Failed to store event") -> StoreError:
    """Map a driver/ORM exception onto the StoreError taxonomy."""
    code = _error_code(exc)
    text = str(getattr(exc, "orig", None) or exc)
    lowered = text.lower()

    if code in MISSING_TABLE_CODES or "does not exist" in lowered or "no such table" in lowered:
        kind = StoreError.MISSING_TABLE
    elif code in PERMISSION_DENIED_CODES or "permission denied" in lowered or "readonly database" in lowered:
        kind = StoreError.PERMISSION_DENIED
    elif code in DUPLICATE_KEY_CODES or isinstance(exc, IntegrityError):
        kind = StoreError.DUPLICATE_KEY
    elif isinstance(exc, OperationalError):
        kind = StoreError.CONNECTION
    else:
        kind = StoreError.UNKNOWN

    message = STORE_MESSAGES.get(kind, fallback_message)
    return StoreError(kind, message, details={"message": text, "code": code})


class EventStore:
    """Thin wrapper over a SQLAlchemy engine holding the two event tables."""

    def __init__(self, engine: Optional[Engine]):
        self.engine = engine
        self.session_factory = make_session_factory(engine)

    @property
    def is_configured(self) -> bool:
        return self.session_factory is not None

    def create_tables(self) -> None:
        if self.engine is None:
            raise RuntimeError("Store is not configured")
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self):
        if self.session_factory is None:
            raise RuntimeError("Store is not configured")
        db = self.session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _insert(self, row, fallback_message: str) -> Dict[str, Any]:
        try:
            with self.session() as db:
                db.add(row)
                db.commit()
                return row.to_dict()
        except SQLAlchemyError as e:
            error = classify_store_error(e, fallback_message)
            logger.error(
                f"Failed to insert into {row.__tablename__}: kind={error.kind} "
                f"code={error.details.get('code')} message={error.details.get('message')}"
            )
            raise error from e

    def insert_page_view(self, **fields) -> Dict[str, Any]:
        return self._insert(PageView(**fields), "Failed to track page view")

    def insert_click(self, **fields) -> Dict[str, Any]:
        return self._insert(ClickEvent(**fields), "Failed to track click")

    def has_recent_page_view(self, ip_hash: str, path: str, since: datetime) -> bool:
        """True if a row with the same visitor and path exists at or after ``since``."""
        try:
            with self.session() as db:
                stmt = (
                    select(PageView.id)
                    .where(PageView.ip_hash == ip_hash)
                    .where(PageView.path == path)
                    .where(PageView.created_at >= since)
                    .limit(1)
                )
                return db.execute(stmt).first() is not None
        except SQLAlchemyError as e:
            error = classify_store_error(e, "Failed to track page view")
            logger.error(f"Duplicate lookup failed: kind={error.kind} message={error.details.get('message')}")
            raise error from e

    def table_status(self) -> Dict[str, Dict[str, Any]]:
        """Reachability and row count for each event table."""
        status = {}
        for model in (PageView, ClickEvent):
            try:
                with self.session() as db:
                    count = db.execute(select(func.count()).select_from(model)).scalar_one()
                status[model.__tablename__] = {"exists": True, "count": count, "error": None}
            except SQLAlchemyError as e:
                error = classify_store_error(e)
                status[model.__tablename__] = {
                    "exists": error.kind != StoreError.MISSING_TABLE,
                    "count": 0,
                    "error": {"kind": error.kind, **error.details},
                }
        return status
