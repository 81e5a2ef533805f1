#!/usr/bin/env python3
"""
Operations utilities - CLI tools for ledger and approval administration.
"""

import argparse
import sys
from pathlib import Path

import dotenv

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from reddog.core.db import init_db, health_check
from reddog.core.errors import ReddogError
from reddog.core.service import build_services
from reddog.util.logging import logger


def init_db_command(args):
    """Create the database schema."""
    init_db(args.db)
    if not health_check(args.db):
        print("❌ Database initialized but health check failed")
        return 1
    print(f"✅ Database ready at {args.db or 'DB_PATH'}")
    return 0


def create_account_command(args):
    services = build_services(args.db, schedule_sweep=False)
    account = services.ledger.create_account(args.account_id, args.email, args.name, args.plan)
    print(f"✅ Created account {account.account_id} on {account.plan} plan")
    print(f"   Balance: {account.balance} credits")
    return 0


def add_credits_command(args):
    services = build_services(args.db, schedule_sweep=False)
    credits = args.credits
    if args.package is not None:
        credits = services.ledger.credits_for_package(args.package)
    if credits is None:
        print("❌ Provide --credits or --package")
        return 1

    result = services.ledger.credit(args.account_id, credits, args.source)
    print(f"✅ Added {result.added} credits to {args.account_id}")
    print(f"   New balance: {result.new_balance}")
    return 0


def balance_command(args):
    services = build_services(args.db, schedule_sweep=False)
    info = services.ledger.get_balance(args.account_id)
    print(f"💳 {args.account_id}: {info.balance} credits ({info.plan}, {info.status})")

    alert = services.ledger.check_low_balance(args.account_id)
    if alert.alert:
        print(f"⚠️  Balance below {alert.threshold} credits")
    return 0


def summary_command(args):
    services = build_services(args.db, schedule_sweep=False)
    summary = services.ledger.summary(args.account_id, args.limit)
    account = summary.account
    print(f"📊 Billing summary for {account.account_id} ({account.email})")
    print(f"   Plan: {account.plan}   Status: {account.status}   Balance: {account.balance}")

    if not summary.transactions:
        print("   Transactions: None")
        return 0

    print(f"   Last {len(summary.transactions)} transactions:")
    for t in summary.transactions:
        label = t.source if t.amount > 0 else t.operation
        print(f"     {t.created_at:%Y-%m-%d %H:%M}  {t.amount:+6d}  {label:<16} -> {t.balance_after}")
    return 0


def sweep_command(args):
    """One-off expiry sweep over the overdue pending rows in the approvals audit table."""
    services = build_services(args.db, schedule_sweep=False)
    expired = services.registry.sweep_expired()
    print(f"🧹 Expired {expired} approval request(s)")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(
        description="Red Dog Operations CLI Utilities",
        prog="python scripts/ops_util.py"
    )
    parser.add_argument("--db", default=None, help="Database path (default: DB_PATH)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = subparsers.add_parser("init-db", help="Create database tables")
    init_parser.set_defaults(func=init_db_command)

    create_parser = subparsers.add_parser("create-account", help="Provision an account")
    create_parser.add_argument("account_id")
    create_parser.add_argument("email")
    create_parser.add_argument("--name", default="")
    create_parser.add_argument("--plan", default="starter", help="starter|professional|enterprise")
    create_parser.set_defaults(func=create_account_command)

    add_parser = subparsers.add_parser("add-credits", help="Record a confirmed payment")
    add_parser.add_argument("account_id")
    add_parser.add_argument("--credits", type=int)
    add_parser.add_argument("--package", type=int, help="USD package: 100, 500, 1000 or 5000")
    add_parser.add_argument("--source", default="admin")
    add_parser.set_defaults(func=add_credits_command)

    balance_parser = subparsers.add_parser("balance", help="Show an account balance")
    balance_parser.add_argument("account_id")
    balance_parser.set_defaults(func=balance_command)

    summary_parser = subparsers.add_parser("summary", help="Show billing summary")
    summary_parser.add_argument("account_id")
    summary_parser.add_argument("--limit", type=int, default=20)
    summary_parser.set_defaults(func=summary_command)

    sweep_parser = subparsers.add_parser("sweep", help="Expire overdue approval requests")
    sweep_parser.set_defaults(func=sweep_command)

    return parser


def main(argv=None):
    """Main CLI entry point for operations utilities."""
    dotenv.load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except (ReddogError, ValueError) as e:
        print(f"❌ {args.command} failed: {e}")
        logger.error(f"CLI {args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
