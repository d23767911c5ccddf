import argparse
import json
from datetime import datetime, timezone

from dateutil import parser as date_parser
from loguru import logger

from app.core.config import get_settings
from app.db import init_db, session_scope
from app.services.notifications import NullNotificationSink
from app.services.settlement_service import SettlementService


def _parse_as_of(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = date_parser.isoparse(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Settle every ACTIVE auction whose window has closed")
    parser.add_argument(
        "--as-of",
        default=None,
        metavar="ISO8601",
        help="Treat this instant as now when selecting expired auctions (default: current time)",
    )
    parser.add_argument("--json", action="store_true", help="Print the settled ids as a JSON array")
    args = parser.parse_args(argv)
    try:
        args.as_of = _parse_as_of(args.as_of)
    except (ValueError, OverflowError):
        parser.error(f"invalid --as-of value: {args.as_of!r} (expected ISO 8601)")
    return args


def main() -> None:
    args = parse_args()
    settings = get_settings()
    init_db()

    with session_scope() as session:
        service = SettlementService(session, settings=settings, notifier=NullNotificationSink())
        settled = service.settle_expired(args.as_of)

    logger.info("Settled {} expired auctions", len(settled))
    if args.json:
        print(json.dumps(settled))
    else:
        for auction_id in settled:
            print(auction_id)


if __name__ == "__main__":
    main()
