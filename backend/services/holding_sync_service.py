"""Account-level holdings sync: one materialization per account, committed atomically."""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Iterator, Optional

from sqlalchemy.orm import Session

from models import Account
from services.holding_materializer import (
    HoldingMaterializer,
    MaterializationResult,
    MaterializationStrategy,
)

logger = logging.getLogger(__name__)


class MaterializationInProgressError(Exception):
    """Another materialization for the same account is still running."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Holdings materialization already running for account {account_id}")


@dataclass
class SyncAllResult:
    """Summary of a run over every active account."""

    accounts_synced: int = 0
    holdings_written: int = 0
    errors: list[str] = field(default_factory=list)


_registry_lock = threading.Lock()
_account_locks: dict[str, threading.Lock] = {}


@contextmanager
def account_lock(account_id: str) -> Iterator[None]:
    """Hold the per-account materialization lock, failing fast if it is taken.

    Two overlapping runs could interleave their cost-basis and
    no-cost-basis upserts, so runs for one account are serialized.
    Different accounts never contend.

    Raises:
        MaterializationInProgressError: If the account is already locked
    """
    with _registry_lock:
        lock = _account_locks.setdefault(account_id, threading.Lock())

    if not lock.acquire(blocking=False):
        raise MaterializationInProgressError(account_id)
    try:
        yield
    finally:
        lock.release()


class HoldingSyncService:
    """Entry point for scheduled jobs, the API and the CLI."""

    @staticmethod
    def default_strategy(account: Account) -> MaterializationStrategy:
        """Linked accounts are anchored on provider data; manual ones replay trades."""
        if account.is_linked:
            return MaterializationStrategy.REVERSE
        return MaterializationStrategy.FORWARD

    def sync_account(
        self,
        db: Session,
        account_id: str,
        strategy: Optional[MaterializationStrategy] = None,
        as_of: Optional[date] = None,
    ) -> MaterializationResult:
        """Materialize one account's holdings and commit.

        On any failure the session is rolled back, so the previously stored
        snapshot set is left untouched, and the error is re-raised. Failed
        runs are not retried here; calling this again recomputes everything
        from scratch.

        Raises:
            ValueError: If the account does not exist
            MaterializationInProgressError: If a run for this account is in flight
        """
        account = db.query(Account).filter(Account.id == account_id).first()
        if account is None:
            raise ValueError(f"Account {account_id} not found")

        strategy = MaterializationStrategy(strategy) if strategy else self.default_strategy(account)

        with account_lock(account_id):
            try:
                result = HoldingMaterializer(
                    db, account, strategy=strategy, as_of=as_of
                ).materialize_holdings()
                db.commit()
            except Exception:
                db.rollback()
                logger.exception(
                    "Holdings materialization failed for account %s (%s)",
                    account_id, strategy.value,
                )
                raise

        logger.info(
            "Materialized account %s (%s): %d holdings, %d purged",
            account_id, strategy.value, len(result.holdings), result.rows_purged,
        )
        return result

    def sync_all(self, db: Session, as_of: Optional[date] = None) -> SyncAllResult:
        """Materialize every active account, continuing past per-account failures."""
        result = SyncAllResult()
        account_ids = [
            row[0]
            for row in db.query(Account.id)
            .filter(Account.is_active.is_(True))
            .order_by(Account.name)
            .all()
        ]

        for account_id in account_ids:
            try:
                account_result = self.sync_account(db, account_id, as_of=as_of)
            except MaterializationInProgressError as e:
                logger.warning("%s; skipping", e)
                result.errors.append(str(e))
                continue
            except Exception as e:
                result.errors.append(f"Account {account_id}: {e}")
                continue

            result.accounts_synced += 1
            result.holdings_written += (
                account_result.rows_with_cost_basis + account_result.rows_without_cost_basis
            )

        return result
