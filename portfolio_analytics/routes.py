"""
HTTP surface: tracking, admin reporting and notification endpoints.
"""

import hmac
import logging

from flask import Blueprint, Response, jsonify, request, stream_with_context
from pydantic import ValidationError

from .auth import require_admin
from .errors import AnalyticsError, ConfigurationError
from .notifications import format_comment_notification, format_daily_report
from .realtime import sse_events
from .schemas import CommentNotificationPayload
from .services import get_services

logger = logging.getLogger(__name__)

track_bp = Blueprint("track", __name__)
admin_bp = Blueprint("admin", __name__)
notifications_bp = Blueprint("notifications", __name__)
health_bp = Blueprint("health", __name__)

SSE_KEEPALIVE_SECONDS = 15.0


def handle_analytics_error(error: AnalyticsError):
    include_details = get_services().settings.is_development
    return jsonify(error.to_dict(include_details)), error.status_code


def handle_internal_error(error):
    logger.error(f"Internal server error: {error}")
    return jsonify({"error": "Internal server error"}), 500


for _bp in (track_bp, admin_bp, notifications_bp):
    _bp.register_error_handler(AnalyticsError, handle_analytics_error)
    _bp.register_error_handler(500, handle_internal_error)


# -- tracking ---------------------------------------------------------------

@track_bp.post("/page-view")
def track_page_view():
    outcome = get_services().pipeline.track_page_view(request.get_json(silent=True), request.headers)
    return jsonify(outcome.to_dict())


@track_bp.post("/click")
def track_click():
    outcome = get_services().pipeline.track_click(request.get_json(silent=True), request.headers)
    return jsonify(outcome.to_dict())


@track_bp.get("/health")
def track_health():
    """Store configuration and per-table reachability."""
    services = get_services()
    if not services.store.is_configured:
        return jsonify({"configured": False, "tables": {}, "error": "DATABASE_URL is not set"}), 503

    tables = services.store.table_status()
    healthy = all(table["error"] is None for table in tables.values())
    return jsonify({"configured": True, "tables": tables}), 200 if healthy else 503


# -- admin reporting ----------------------------------------------------------

def _aggregator():
    aggregator = get_services().aggregator
    if not aggregator.is_configured:
        logger.error("Reporting store is not configured: ADMIN_DATABASE_URL and DATABASE_URL are empty")
        raise ConfigurationError()
    return aggregator


@admin_bp.get("/analytics")
@require_admin
def analytics():
    snapshot = _aggregator().snapshot().to_dict()
    get_services().realtime.refresh(snapshot)
    return jsonify(snapshot)


@admin_bp.get("/analytics/debug")
@require_admin
def analytics_debug():
    return jsonify({
        "success": True,
        "debug": _aggregator().geolocation_debug(),
        "instructions": {
            "ifNoData": "Visit the site from a public address to generate located page views",
            "ifColumnsMissing": "Run `portfolio-analytics init-db` against the store",
        },
    })


@admin_bp.get("/analytics/live")
@require_admin
def analytics_live():
    services = get_services()
    realtime = services.realtime
    force = request.args.get("refresh") in ("1", "true")
    if force or realtime.is_stale(services.settings.dashboard_refresh_seconds):
        realtime.refresh(_aggregator().snapshot().to_dict())
    return jsonify({"snapshot": realtime.current_snapshot(), "realtime": realtime.state()})


@admin_bp.get("/analytics/stream")
@require_admin
def analytics_stream():
    channel = get_services().channel
    return Response(
        stream_with_context(sse_events(channel, SSE_KEEPALIVE_SECONDS)),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# -- notifications ----------------------------------------------------------

def _cron_authorized(secret: str) -> bool:
    given = request.headers.get("Authorization", "")
    return hmac.compare_digest(given.encode("utf-8"), f"Bearer {secret}".encode("utf-8"))


@notifications_bp.post("/daily-report")
def daily_report():
    services = get_services()
    secret = services.settings.cron_secret
    if secret and not _cron_authorized(secret):
        return jsonify({
            "error": "Unauthorized",
            "hint": "CRON_SECRET is set. Include Authorization header: Bearer <CRON_SECRET>",
        }), 401

    report = _aggregator().daily_report()
    sent = services.notifier.send(format_daily_report(report))
    if sent:
        message = "Daily report sent successfully to Telegram"
    else:
        message = "Report generated but Telegram notification failed (check TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID)"
    logger.info(f"Daily report for {report.day.isoformat()} built, telegramSent={sent}")

    return jsonify({
        "success": True,
        "telegramSent": sent,
        "message": message,
        "data": report.to_dict(),
    })


@notifications_bp.post("/comment")
def comment_notification():
    services = get_services()
    try:
        payload = CommentNotificationPayload.model_validate(request.get_json(silent=True) or {})
    except ValidationError:
        return jsonify({"error": "Missing required fields"}), 400

    try:
        message = format_comment_notification(
            payload.author_name,
            payload.author_email,
            payload.content,
            payload.post_slug,
            payload.post_title,
            site_url=services.settings.site_url,
        )
        sent = services.notifier.send(message)
    except Exception as e:
        logger.error(f"Comment notification failed: {e}")
        return jsonify({"success": False, "error": "Failed to send notification"})

    if not sent:
        logger.warning("Comment notification was not delivered")
        return jsonify({"success": False, "warning": "Comment created but notification failed"})

    return jsonify({"success": True, "message": "Notification sent successfully"})


# -- liveness ---------------------------------------------------------------

@health_bp.get("/healthz")
def healthz():
    return jsonify({"status": "ok"})
