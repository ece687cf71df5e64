"""
Command line entry point: schema setup and the daily digest.

    portfolio-analytics init-db
    portfolio-analytics daily-report [--date YYYY-MM-DD] [--dry-run]
"""

import argparse
import logging
import sys
from datetime import date

from dotenv import load_dotenv

from .aggregation import AnalyticsAggregator
from .config import Settings
from .db import make_engine
from .notifications import TelegramNotifier, format_daily_report
from .store import EventStore

logger = logging.getLogger(__name__)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date '{value}', expected YYYY-MM-DD")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="portfolio-analytics", description="Portfolio analytics maintenance")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create the page_views and click_events tables")

    report = subparsers.add_parser("daily-report", help="Build and send the daily analytics digest")
    report.add_argument("--date", type=_parse_date, help="UTC day to report on (default: today)")
    report.add_argument("--dry-run", action="store_true", help="Print the message instead of sending it")
    return parser


def init_db(settings: Settings) -> int:
    store = EventStore(make_engine(settings.database_url))
    if not store.is_configured:
        logger.error("DATABASE_URL is not set")
        return 1
    store.create_tables()
    print("Tables created: page_views, click_events")
    return 0


def daily_report(settings: Settings, day=None, dry_run: bool = False) -> int:
    store = EventStore(make_engine(settings.reporting_database_url))
    if not store.is_configured:
        logger.error("Neither ADMIN_DATABASE_URL nor DATABASE_URL is set")
        return 1

    report = AnalyticsAggregator(store).daily_report(day)
    message = format_daily_report(report)

    if dry_run:
        print(message)
        return 0

    notifier = TelegramNotifier(settings.telegram_bot_token, settings.telegram_chat_id,
                                timeout=settings.notification_timeout)
    if not notifier.send(message):
        logger.error("Daily report could not be sent to Telegram")
        return 1
    print(f"Daily report for {report.day.isoformat()} sent")
    return 0


def main(argv=None, settings: Settings = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if settings is None:
        load_dotenv(".env")
        settings = Settings()

    if args.command == "init-db":
        return init_db(settings)
    return daily_report(settings, args.date, args.dry_run)


if __name__ == "__main__":
    sys.exit(main())
