"""
Telegram notifications: the daily analytics digest and new-comment alerts.

Sending is best-effort. Every failure is logged and reported as ``False``;
nothing here raises into the caller.

The comment endpoint sends synchronously so it can report delivery.
``enqueue_comment_notification`` is the fire-and-forget hook for a host
application that creates comments itself and must not wait on Telegram.
"""

import html
import logging
import threading
from datetime import date
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

import requests

from .aggregation import DailyReport

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"
COMMENT_PREVIEW_LENGTH = 200
REPORT_TOP_PAGES = 5


class TelegramNotifier:
    """Posts messages to a single Telegram chat via the Bot API."""

    def __init__(self, bot_token: Optional[str], chat_id: Optional[str], timeout: float = 5.0,
                 session: Optional[requests.Session] = None):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def is_configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    def send(self, text: str, parse_mode: str = "HTML", disable_preview: bool = False) -> bool:
        if not self.is_configured:
            logger.warning("Telegram notification skipped: TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID missing")
            return False

        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": parse_mode,
            "disable_web_page_preview": disable_preview,
        }
        try:
            response = self.session.post(
                TELEGRAM_API_URL.format(token=self.bot_token),
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"Telegram send failed: {e}")
            return False

        if not response.ok:
            try:
                error = response.json()
            except ValueError:
                error = response.text
            logger.warning(f"Telegram API returned HTTP {response.status_code}: {error}")
            return False

        logger.debug("Telegram message sent")
        return True


def format_long_date(day: date) -> str:
    """``date(2024, 1, 28)`` -> ``January 28, 2024``."""
    return f"{day:%B} {day.day}, {day.year}"


def format_daily_report(report: DailyReport) -> str:
    lines = [
        "📊 <b>Daily Analytics Report</b>",
        f"📅 {format_long_date(report.day)}",
        "",
        f"👁️ <b>Page Views:</b> {report.total_page_views:,}",
        f"👥 <b>Unique Visitors:</b> {report.unique_visitors:,}",
        f"🖱️ <b>Total Clicks:</b> {report.total_clicks:,}",
        "",
    ]

    top_pages = report.top_pages[:REPORT_TOP_PAGES]
    if top_pages:
        lines.append("<b>Top Pages:</b>")
        for rank, page in enumerate(top_pages, start=1):
            lines.append(f"{rank}. {html.escape(page['path'])}: {page['count']} views")
        lines.append("")

    return "\n".join(lines)


def format_comment_notification(author_name: str, author_email: str, content: str, post_slug: str,
                                post_title: Optional[str] = None, site_url: str = "") -> str:
    preview = content[:COMMENT_PREVIEW_LENGTH]
    if len(content) > COMMENT_PREVIEW_LENGTH:
        preview += "..."

    link = f"{site_url.rstrip('/')}/blog/{quote(post_slug)}"
    return "\n".join([
        "💬 <b>New Comment Received</b>",
        "",
        f"👤 <b>Author:</b> {html.escape(author_name)}",
        f"📧 <b>Email:</b> {html.escape(author_email)}",
        f"📝 <b>Post:</b> {html.escape(post_title or post_slug)}",
        "",
        "<b>Comment:</b>",
        html.escape(preview),
        "",
        f'🔗 <a href="{html.escape(link, quote=True)}">View Comment</a>',
    ])


def dispatch_in_background(func: Callable[..., Any], *args, **kwargs) -> threading.Thread:
    """Run ``func`` on a daemon thread; exceptions are logged, never raised."""
    def _run():
        try:
            func(*args, **kwargs)
        except Exception as e:
            logger.error(f"Background task {getattr(func, '__name__', func)} failed: {e}")

    thread = threading.Thread(target=_run)
    thread.daemon = True
    thread.start()
    return thread


def enqueue_comment_notification(notifier: TelegramNotifier, comment: Dict[str, Any],
                                 site_url: str = "") -> Optional[threading.Thread]:
    """
    Fire-and-forget hook for a newly created comment.

    ``comment`` carries authorName, authorEmail, content, postSlug and an
    optional postTitle. Formatting and sending both happen off the caller's
    thread, so a slow or failing channel never delays comment creation.
    """
    try:
        def _send():
            message = format_comment_notification(
                comment["authorName"],
                comment["authorEmail"],
                comment["content"],
                comment["postSlug"],
                comment.get("postTitle"),
                site_url=site_url,
            )
            if not notifier.send(message):
                logger.warning("Comment notification was not delivered")

        return dispatch_in_background(_send)
    except Exception as e:
        logger.error(f"Failed to enqueue comment notification: {e}")
        return None
