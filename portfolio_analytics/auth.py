"""
Admin access: a signed Flask session set by logging in, or a shared token.
"""

import functools
import hmac
import logging
from typing import Optional

from flask import Blueprint, jsonify, request, session
from pydantic import ValidationError

from .schemas import AdminLoginPayload
from .services import get_services

logger = logging.getLogger(__name__)

SESSION_KEY = "admin_authenticated"

auth_bp = Blueprint("admin_auth", __name__)


def _matches(given: Optional[str], expected: Optional[str]) -> bool:
    if not given or not expected:
        return False
    return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


def _token_ok() -> bool:
    """Shared token via ``?token=`` or the X-Admin-Token header."""
    expected = get_services().settings.admin_token
    given = request.args.get("token") or request.headers.get("X-Admin-Token")
    return _matches(given, expected)


def is_admin() -> bool:
    return bool(session.get(SESSION_KEY)) or _token_ok()


def require_admin(view):
    """Reject the request with 401 unless the caller is an admin."""
    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        if not is_admin():
            return jsonify({"error": "Unauthorized"}), 401
        return view(*args, **kwargs)
    return wrapper


@auth_bp.post("/auth")
def login():
    settings = get_services().settings
    try:
        payload = AdminLoginPayload.model_validate(request.get_json(silent=True) or {})
    except ValidationError:
        return jsonify({"error": "Invalid credentials"}), 401

    if not (settings.admin_email and settings.admin_password):
        logger.error("Admin login attempted but ADMIN_EMAIL/ADMIN_PASSWORD are not set")
        return jsonify({"error": "Invalid credentials"}), 401

    if _matches(payload.email, settings.admin_email) and _matches(payload.password, settings.admin_password):
        session.permanent = True
        session[SESSION_KEY] = True
        logger.info("Admin logged in")
        return jsonify({"success": True})

    logger.warning("Admin login failed")
    return jsonify({"error": "Invalid credentials"}), 401


@auth_bp.get("/auth")
def status():
    if is_admin():
        return jsonify({"authenticated": True})
    return jsonify({"authenticated": False}), 401


@auth_bp.delete("/auth")
def logout():
    session.pop(SESSION_KEY, None)
    return jsonify({"success": True})
