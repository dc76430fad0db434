"""
Central Kitchen Ledger maintenance CLI.

Command-line entry point for database setup and the periodic stock and
billing housekeeping jobs.

Usage Examples:
    # Create the database and tables
    central-kitchen init-db

    # Drop and recreate every table (discards all data)
    central-kitchen reset-db --yes

    # Audit cached ingredient totals against their lots (exit 1 on mismatch)
    central-kitchen verify-stock

    # Ingredient and finished lots expiring within 3 days
    central-kitchen expiring --days 3

    # Ingredients below their warning threshold
    central-kitchen low-stock

    # Flag expired finished lots / overdue invoices
    central-kitchen mark-expired
    central-kitchen refresh-overdue
"""

import argparse
import logging
import sys

from src.services import batch_ledger_service, invoice_service
from src.services.database import initialize_app_database, reset_database
from src.services.exceptions import ServiceError
from src.utils.config import get_config
from src.utils.constants import APP_NAME, APP_VERSION, DEFAULT_EXPIRING_WITHIN_DAYS


def init_db_cmd() -> int:
    """Create the database and verify its tables."""
    config = get_config()
    print(f"Initializing database: {config.database_url}")
    initialize_app_database()
    print("Database ready")
    return 0


def reset_db_cmd(confirmed: bool) -> int:
    """Drop and recreate every table after explicit confirmation."""
    if not confirmed:
        print("ERROR: reset-db discards all lots, orders and invoices; rerun with --yes")
        return 1
    reset_database(confirm=True)
    print("Database reset")
    return 0


def verify_stock_cmd() -> int:
    """Report ingredients whose cached total disagrees with their lots."""
    mismatches = batch_ledger_service.verify_ingredient_totals()
    if not mismatches:
        print("All ingredient totals match their active lots")
        return 0

    print(f"ERROR: {len(mismatches)} ingredient total(s) disagree with their lots:")
    for row in mismatches:
        print(
            f"  {row['ingredient_name']}: cached {row['cached_total']}, "
            f"lots {row['lot_total']} (difference {row['difference']})"
        )
    return 1


def expiring_cmd(days: int) -> int:
    """List ingredient and finished lots expiring within the window."""
    ingredient_lots = batch_ledger_service.get_expiring_ingredient_lots(days)
    finished_lots = batch_ledger_service.get_expiring_finished_lots(days)

    print(f"Ingredient lots expiring within {days} day(s): {len(ingredient_lots)}")
    for lot in ingredient_lots:
        flag = " (EXPIRED)" if lot["is_expired"] else ""
        print(
            f"  {lot['lot_code']}  {lot.get('ingredient_name', '')}  "
            f"{lot['current_quantity']}  expires {lot['expiry_date']}{flag}"
        )

    print(f"Finished lots expiring within {days} day(s): {len(finished_lots)}")
    for lot in finished_lots:
        print(f"  {lot['code']}  {lot['current_quantity']} unit(s)  expires {lot['expires_at']}")
    return 0


def low_stock_cmd() -> int:
    """List ingredients under their warning threshold."""
    ingredients = batch_ledger_service.get_low_stock_ingredients()
    print(f"Ingredients below warning threshold: {len(ingredients)}")
    for ingredient in ingredients:
        print(
            f"  {ingredient['name']}: {ingredient['total_quantity']} {ingredient['unit']} "
            f"(threshold {ingredient['warning_threshold']})"
        )
    return 0


def mark_expired_cmd() -> int:
    """Flag active finished lots past expiry as expired."""
    result = batch_ledger_service.mark_expired_finished_lots()
    print(f"Marked {result['count']} finished lot(s) expired")
    for code in result["codes"]:
        print(f"  {code}")
    return 0


def refresh_overdue_cmd() -> int:
    """Flag unpaid invoices past their due date as overdue."""
    result = invoice_service.refresh_overdue_invoices()
    print(f"Marked {result['count']} invoice(s) overdue")
    for number in result["invoice_numbers"]:
        print(f"  {number}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one subcommand per job."""
    parser = argparse.ArgumentParser(
        prog="central-kitchen",
        description="Central Kitchen Ledger maintenance commands",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log service operations at DEBUG level"
    )
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {APP_VERSION}")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("init-db", help="Create the database and tables")
    reset_parser = subparsers.add_parser("reset-db", help="Drop and recreate every table")
    reset_parser.add_argument(
        "--yes", action="store_true", help="Confirm that all data should be discarded"
    )
    subparsers.add_parser(
        "verify-stock", help="Audit cached ingredient totals (exit 1 on mismatch)"
    )
    expiring_parser = subparsers.add_parser("expiring", help="List lots expiring soon")
    expiring_parser.add_argument(
        "--days",
        type=int,
        default=DEFAULT_EXPIRING_WITHIN_DAYS,
        help=f"Window in days (default: {DEFAULT_EXPIRING_WITHIN_DAYS})",
    )
    subparsers.add_parser("low-stock", help="List ingredients below their warning threshold")
    subparsers.add_parser("mark-expired", help="Flag expired finished lots")
    subparsers.add_parser("refresh-overdue", help="Flag overdue invoices")
    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 1

    if args.command == "init-db":
        return init_db_cmd()
    if args.command == "reset-db":
        return reset_db_cmd(args.yes)

    try:
        if args.command == "verify-stock":
            return verify_stock_cmd()
        elif args.command == "expiring":
            if args.days < 0:
                print("ERROR: --days must not be negative")
                return 1
            return expiring_cmd(args.days)
        elif args.command == "low-stock":
            return low_stock_cmd()
        elif args.command == "mark-expired":
            return mark_expired_cmd()
        elif args.command == "refresh-overdue":
            return refresh_overdue_cmd()
        else:
            print(f"Unknown command: {args.command}")
            return 1
    except ServiceError as e:
        print(f"ERROR: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
