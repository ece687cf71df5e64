"""
Error taxonomy for the tracking and reporting endpoints.

Only validation, throttling, configuration and persistence failures surface
to callers as non-2xx responses. Policy skips (bots, admin paths, duplicates)
are not errors and never raise.
"""

from typing import Any, Dict, Optional


class AnalyticsError(Exception):
    """Base error carrying a user-facing message and HTTP status."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self, include_details: bool = False) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if include_details and self.details:
            body["details"] = self.details
        return body


class ValidationFailed(AnalyticsError):
    status_code = 400


class RateLimited(AnalyticsError):
    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded"):
        super().__init__(message)


class ConfigurationError(AnalyticsError):
    status_code = 500

    def __init__(self, message: str = "Server configuration error"):
        super().__init__(message)


class StoreError(AnalyticsError):
    """Persistence failure classified by its underlying cause."""

    status_code = 500

    MISSING_TABLE = "missing_table"
    PERMISSION_DENIED = "permission_denied"
    DUPLICATE_KEY = "duplicate_key"
    CONNECTION = "connection"
    UNKNOWN = "unknown"

    def __init__(self, kind: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)
        self.kind = kind
