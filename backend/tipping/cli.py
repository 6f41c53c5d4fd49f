"""Operator commands for the monthly payout cycle.

Examples:
    python -m tipping.cli calculate --restaurant 3 --month 2024-01
    python -m tipping.cli generate --restaurant 3 --month 2024-01
    python -m tipping.cli process --restaurant 3 --dry-run
    python -m tipping.cli retry 17 18
    python -m tipping.cli run-monthly
    python -m tipping.cli notify-upcoming --date 2024-01-28
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date

from tipping.core.exceptions import TippingError
from tipping.db.session import SessionLocal
from tipping.schemas.payout import calculation_to_dict
from tipping.services.payout_calculator import PayoutCalculator
from tipping.services.payout_notifications import PayoutNotifier
from tipping.services.payout_processor import PayoutProcessor
from tipping.services.payout_service import PayoutService, previous_month

logger = logging.getLogger("tipping.cli")


def _print(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_calculate(db, args):
    calculation = PayoutCalculator(db).calculate_monthly_payouts(args.restaurant, args.month)
    return calculation_to_dict(calculation)


def cmd_generate(db, args):
    return PayoutService(db).calculate_and_generate(args.restaurant, args.month).to_dict()


def cmd_process(db, args):
    result = asyncio.run(PayoutProcessor(db).process_payouts(restaurant_id=args.restaurant, dry_run=args.dry_run))
    return result.to_dict()


def cmd_retry(db, args):
    result = asyncio.run(PayoutProcessor(db).retry_failed_payouts(args.payout_ids, dry_run=args.dry_run))
    return result.to_dict()


def cmd_run_monthly(db, args):
    month = args.month or previous_month()
    generation = PayoutService(db).generate_for_all_restaurants(month)
    if args.skip_processing:
        return {"month": month, "generation": generation}
    processing = asyncio.run(PayoutProcessor(db).process_payouts(dry_run=args.dry_run))
    return {"month": month, "generation": generation, "processing": processing.to_dict()}


def cmd_notify_upcoming(db, args):
    today = date.fromisoformat(args.date) if args.date else None
    return asyncio.run(PayoutNotifier(db).process_upcoming(today))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tipping-payouts", description="Monthly tip payout operations")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("calculate", help="Preview a restaurant's payouts for a month")
    p.add_argument("--restaurant", type=int, required=True)
    p.add_argument("--month", required=True, help="YYYY-MM")
    p.set_defaults(func=cmd_calculate)

    p = sub.add_parser("generate", help="Create pending payout records for a month")
    p.add_argument("--restaurant", type=int, required=True)
    p.add_argument("--month", required=True, help="YYYY-MM")
    p.set_defaults(func=cmd_generate)

    p = sub.add_parser("process", help="Disburse pending payouts")
    p.add_argument("--restaurant", type=int, help="Limit to one restaurant")
    p.add_argument("--dry-run", action="store_true")
    p.set_defaults(func=cmd_process)

    p = sub.add_parser("retry", help="Retry failed payouts")
    p.add_argument("payout_ids", type=int, nargs="+")
    p.add_argument("--dry-run", action="store_true")
    p.set_defaults(func=cmd_retry)

    p = sub.add_parser("run-monthly", help="Generate and disburse for every active restaurant")
    p.add_argument("--month", help="YYYY-MM, defaults to the previous month")
    p.add_argument("--dry-run", action="store_true")
    p.add_argument("--skip-processing", action="store_true", help="Only generate records")
    p.set_defaults(func=cmd_run_monthly)

    p = sub.add_parser("notify-upcoming", help="Send upcoming payout notices due today")
    p.add_argument("--date", help="YYYY-MM-DD, defaults to today")
    p.set_defaults(func=cmd_notify_upcoming)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    db = SessionLocal()
    try:
        _print(args.func(db, args))
    except TippingError as e:
        logger.error(f"{args.command} failed: {e}")
        _print({"success": False, "error": type(e).__name__, "detail": str(e)})
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
