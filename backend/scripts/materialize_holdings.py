#!/usr/bin/env python
"""Materialize daily holdings for one account or all active accounts.

Replays each account's trade ledger (or walks back from provider data for
linked accounts) and upserts the resulting snapshot rows.

Usage:
    python -m scripts.materialize_holdings
    python -m scripts.materialize_holdings --account "Brokerage"
    python -m scripts.materialize_holdings --account "Brokerage" --strategy forward
    python -m scripts.materialize_holdings --as-of 2024-12-31
"""

import argparse
import logging
import sys
from datetime import date

from database import get_session_local, init_db
from logging_config import setup_logging
from models import Account
from services.holding_materializer import MaterializationStrategy
from services.holding_sync_service import HoldingSyncService

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Materialize daily holdings from the trade ledger"
    )
    parser.add_argument(
        "--account",
        help="Account name (default: every active account)",
    )
    parser.add_argument(
        "--strategy",
        choices=[s.value for s in MaterializationStrategy],
        help="Override the account's default strategy (requires --account)",
    )
    parser.add_argument(
        "--as-of",
        type=date.fromisoformat,
        help="Last day to materialize, YYYY-MM-DD (default: today)",
    )
    args = parser.parse_args(argv)
    if args.strategy and not args.account:
        parser.error("--strategy requires --account")
    return args


def materialize(account_name=None, strategy=None, as_of=None) -> int:
    """Run the materialization and print a summary. Returns an exit code."""
    init_db()
    SessionLocal = get_session_local()
    db = SessionLocal()
    sync_service = HoldingSyncService()

    try:
        if account_name is None:
            result = sync_service.sync_all(db, as_of=as_of)
            print(
                f"Synced {result.accounts_synced} accounts, "
                f"{result.holdings_written} holdings written"
            )
            for error in result.errors:
                print(f"  Error: {error}")
            return 1 if result.errors else 0

        account = db.query(Account).filter(Account.name == account_name).first()
        if account is None:
            print(f"Account not found: {account_name}")
            return 1

        result = sync_service.sync_account(db, account.id, strategy=strategy, as_of=as_of)
        print(f"{account.name} ({result.strategy.value}):")
        print(f"  Holdings calculated:     {len(result.holdings)}")
        print(f"  Rows with cost basis:    {result.rows_with_cost_basis}")
        print(f"  Rows without cost basis: {result.rows_without_cost_basis}")
        print(f"  Provider rows skipped:   {result.rows_skipped_provider}")
        print(f"  Rows purged:             {result.rows_purged}")
        if result.exchange_rate_fallbacks:
            print(f"  Exchange rate fallbacks: {result.exchange_rate_fallbacks}")
        return 0

    except Exception as e:
        print(f"Error: {e}")
        raise
    finally:
        db.close()


def main(argv=None) -> int:
    setup_logging()
    args = parse_args(argv)
    return materialize(args.account, args.strategy, args.as_of)


if __name__ == "__main__":
    sys.exit(main())
