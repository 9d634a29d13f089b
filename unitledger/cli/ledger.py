"""CLI entry point for ledger operations.

Usage:
    unitledger init-db
    unitledger outstanding U1 --track hoa_dues
    unitledger pay U1 120231 --track hoa_dues --txn TX-1 --output tx1.json
    unitledger reverse U1 tx1.json
    unitledger bill hoa_dues 2025 0 --charge U1=120231 --charge U2=98000
    unitledger bill-water 2025 0 --consumption U1=12.5 --consumption U2=0
    unitledger credit U1 --pool shared
    unitledger adjust-credit U1 -5000 --track hoa_dues --note "Refund"

Exit Codes:
    0 - Success
    1 - Rejected: a ledger error, printed as {"error": {"code", "message"}}
    2 - Usage error

Logging:
    LOG_LEVEL (default INFO) to both stdout and the configured log file.
    Command output (JSON) goes to stdout.
"""

import argparse
import json
import logging
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Sequence

from unitledger.config import Settings, load_settings
from unitledger.errors import LedgerError, error_response
from unitledger.schemas.client_config import Track
from unitledger.schemas.ledger import DistributionResult, PaymentPolicy, PeriodKey
from unitledger.services.db import build_engine, create_session_factory, create_tables
from unitledger.services.ledger_service import LedgerService
from unitledger.services.logging import setup_ledger_logging
from unitledger.services.retry import call_with_store_retry

logger = logging.getLogger(__name__)


def _period_key(value: str, track: Track) -> PeriodKey:
    """Parse a "YYYY-MM" target (0-based fiscal month)."""
    try:
        year, month = value.split("-")
        return PeriodKey(fiscal_year=int(year), fiscal_month=int(month), track=track)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid period {value!r}, expected YYYY-MM") from e


def _charge(value: str) -> tuple[str, int]:
    """Parse a "UNIT=AMOUNT" billing charge."""
    unit_id, sep, amount = value.partition("=")
    if not sep or not unit_id:
        raise argparse.ArgumentTypeError(f"Invalid charge {value!r}, expected UNIT=AMOUNT")
    try:
        return unit_id, int(amount)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid amount in {value!r}") from e


def _consumption(value: str) -> tuple[str, Decimal]:
    """Parse a "UNIT=M3" meter consumption."""
    unit_id, sep, cubic_meters = value.partition("=")
    if not sep or not unit_id:
        raise argparse.ArgumentTypeError(f"Invalid consumption {value!r}, expected UNIT=M3")
    try:
        return unit_id, Decimal(cubic_meters)
    except InvalidOperation as e:
        raise argparse.ArgumentTypeError(f"Invalid consumption in {value!r}") from e

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="unitledger", description="Unit billing and credit ledger")
    parser.add_argument("--env-file", default=None, help="Read settings from this .env file")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None, help="Operation date (YYYY-MM-DD)")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create ledger tables")

    outstanding = commands.add_parser("outstanding", help="Show what a unit owes on a track")
    outstanding.add_argument("unit_id")
    outstanding.add_argument("--track", type=Track, default=Track.HOA_DUES)

    pay = commands.add_parser("pay", help="Apply a cash payment")
    pay.add_argument("unit_id")
    pay.add_argument("amount", type=int, help="Cash amount in minor currency units")
    pay.add_argument("--track", type=Track, default=Track.HOA_DUES)
    pay.add_argument("--txn", required=True, help="Originating transaction id")
    pay.add_argument("--target", action="append", default=[], help="Target period YYYY-MM (repeatable)")
    pay.add_argument("--use-credit", action="store_true", help="Cover shortfall from existing credit")
    pay.add_argument("--preview", action="store_true", help="Show the distribution without writing")
    pay.add_argument("--output", type=Path, default=None, help="Write the DistributionResult JSON here")

    reverse = commands.add_parser("reverse", help="Reverse a stored distribution")
    reverse.add_argument("unit_id")
    reverse.add_argument("result_file", type=Path, help="DistributionResult JSON written by 'pay'")
    reverse.add_argument("--track", type=Track, default=None)
    reverse.add_argument("--allow-already-reversed", action="store_true")

    bill = commands.add_parser("bill", help="Run billing for one fiscal month")
    bill.add_argument("track", type=Track)
    bill.add_argument("fiscal_year", type=int)
    bill.add_argument("fiscal_month", type=int)
    bill.add_argument("--charge", type=_charge, action="append", required=True, help="UNIT=AMOUNT (repeatable)")

    bill_water = commands.add_parser("bill-water", help="Run water billing from meter consumption")
    bill_water.add_argument("fiscal_year", type=int)
    bill_water.add_argument("fiscal_month", type=int)
    bill_water.add_argument(
        "--consumption", type=_consumption, action="append", required=True, help="UNIT=M3 (repeatable)"
    )

    credit = commands.add_parser("credit", help="Show credit balance and history")
    credit.add_argument("unit_id")
    credit.add_argument("--pool", default="shared")
    credit.add_argument("--limit", type=int, default=10)

    adjust = commands.add_parser("adjust-credit", help="Administrative credit adjustment")
    adjust.add_argument("unit_id")
    adjust.add_argument("delta", type=int)
    adjust.add_argument("--track", type=Track, default=Track.HOA_DUES)
    adjust.add_argument("--note", required=True)
    adjust.add_argument("--actor", default=None)

    return parser


def _emit(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def execute(args: argparse.Namespace, settings: Settings) -> Any:
    """Run one parsed command and return its JSON-ready output."""
    engine = build_engine(settings.database_url, echo=settings.database_echo)
    if args.command == "init-db":
        create_tables(engine)
        return {"status": "ok", "database_url": settings.database_url}

    ledger = LedgerService.from_settings(settings, create_session_factory(engine))

    if args.command == "outstanding":
        summary = ledger.compute_outstanding(args.unit_id, args.track, args.as_of)
        return {**summary.model_dump(mode="json"), "total_owed": summary.total_owed, "net_owed": summary.net_owed}

    if args.command == "pay":
        targets = [_period_key(t, args.track) for t in args.target] or None
        policy = PaymentPolicy(use_credit_to_cover_shortfall=args.use_credit)
        if args.preview:
            result = ledger.preview_payment(
                args.unit_id, args.track, args.amount, args.txn, args.as_of, targets, policy
            )
        else:
            result = call_with_store_retry(
                lambda: ledger.apply_payment(
                    args.unit_id, args.track, args.amount, args.txn, args.as_of, targets, policy
                ),
                settings,
            )
        payload = result.model_dump(mode="json")
        if args.output is not None and not args.preview:
            args.output.write_text(json.dumps(payload, indent=2))
        return payload

    if args.command == "reverse":
        stored = DistributionResult.model_validate_json(args.result_file.read_text())
        track = args.track or (stored.tracks[0] if stored.tracks else Track.HOA_DUES)
        reversal = call_with_store_retry(
            lambda: ledger.reverse_payment(
                args.unit_id, track, stored, args.as_of, allow_already_reversed=args.allow_already_reversed
            ),
            settings,
        )
        return reversal.model_dump(mode="json")

    if args.command == "bill":
        run = ledger.run_billing(args.track, args.fiscal_year, args.fiscal_month, dict(args.charge), args.as_of)
        return run.model_dump(mode="json")

    if args.command == "bill-water":
        run = ledger.run_water_billing(args.fiscal_year, args.fiscal_month, dict(args.consumption), args.as_of)
        return run.model_dump(mode="json")

    if args.command == "credit":
        account = ledger.get_credit_account(args.unit_id, args.pool)
        history = ledger.get_credit_history(args.unit_id, args.pool, args.limit)
        return {
            "unit_id": args.unit_id,
            "pool_id": args.pool,
            "balance": account.balance,
            "history": [m.model_dump(mode="json") for m in history],
        }

    if args.command == "adjust-credit":
        movement = call_with_store_retry(
            lambda: ledger.adjust_credit_manually(args.unit_id, args.track, args.delta, args.note, args.actor),
            settings,
        )
        return movement.model_dump(mode="json")

    raise ValueError(f"Unknown command {args.command}")


def main(argv: Sequence[str] | None = None) -> int:
    """
    Main entry point for the ledger CLI.

    Returns:
        Exit code: 0 for success, 1 for a rejected operation
    """
    args = build_parser().parse_args(argv)
    settings = load_settings(args.env_file)
    setup_ledger_logging(settings.log_file)

    try:
        _emit(execute(args, settings))
        return 0
    except LedgerError as e:
        logger.warning("%s rejected: %s", args.command, e.message)
        print(json.dumps(error_response(e)), file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 1


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
