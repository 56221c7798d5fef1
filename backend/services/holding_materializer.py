"""Holding materializer: turns calculated holdings into stored snapshot rows.

"Materializes" holdings (similar to a database materialized view, but done
at the application level) into one row per account/security/date/currency
that can be queried and joined like any other table.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from config import settings
from models import HOLDING_KEY_COLUMNS, Account, Holding, generate_uuid
from models.utils import utcnow
from services.cost_basis_reconciler import CostBasisSource, reconcile
from services.exchange_rate_service import ExchangeRateService
from services.holding_calculator import ForwardCalculator, HoldingCandidate, ReverseCalculator
from services.portfolio_cache import PortfolioCache

logger = logging.getLogger(__name__)

# Columns written for every row; cost basis columns are only added for rows
# that carry a freshly reconciled value.
BASE_COLUMNS = ("qty", "price", "amount", "updated_at")
COST_BASIS_COLUMNS = ("cost_basis", "cost_basis_source")


class MaterializationStrategy(str, Enum):
    """How the holdings history is reconstructed."""

    FORWARD = "forward"  # Replay trades from the account start date
    REVERSE = "reverse"  # Walk back from the provider-reported present


@dataclass
class MaterializationResult:
    """Summary of one materialization run."""

    strategy: MaterializationStrategy
    holdings: list[HoldingCandidate] = field(default_factory=list)
    rows_with_cost_basis: int = 0
    rows_without_cost_basis: int = 0
    rows_skipped_provider: int = 0
    rows_purged: int = 0
    exchange_rate_fallbacks: int = 0


class HoldingMaterializer:
    """Calculates an account's holdings history and persists it idempotently.

    Nothing is written until the full candidate list has been computed.
    Writes happen inside the caller's transaction and are flushed, not
    committed; persistence errors propagate unchanged so the caller can
    roll back.

    Args:
        db: Database session
        account: The account to materialize
        strategy: Forward (trade replay) or reverse (walk back from provider data)
        exchange_rate_service: Injected for tests; a fresh one per run otherwise
        as_of: Last day to calculate (defaults to today)
    """

    def __init__(
        self,
        db: Session,
        account: Account,
        strategy: MaterializationStrategy = MaterializationStrategy.FORWARD,
        exchange_rate_service: Optional[ExchangeRateService] = None,
        as_of: Optional[date] = None,
    ):
        self.db = db
        self.account = account
        self.strategy = MaterializationStrategy(strategy)
        self.exchange_rate_service = exchange_rate_service or ExchangeRateService(db)
        self.as_of = as_of or date.today()
        self.portfolio_cache = PortfolioCache(
            db,
            account,
            exchange_rate_service=self.exchange_rate_service,
            use_holdings=self.strategy is MaterializationStrategy.REVERSE,
        )
        self._provider_security_ids: Optional[set[str]] = None

    def materialize_holdings(self) -> MaterializationResult:
        """Calculate, persist and (forward only) purge stale rows."""
        result = MaterializationResult(strategy=self.strategy)
        result.holdings = self._calculator().calculate()

        logger.info(
            "Persisting %d %s holdings for account %s",
            len(result.holdings), self.strategy.value, self.account.id,
        )
        self._persist_holdings(result)

        if self.strategy is MaterializationStrategy.FORWARD:
            result.rows_purged = self._purge_stale_holdings()
            result.rows_purged += self._cleanup_calculated_holdings_for_provider_securities()

        result.exchange_rate_fallbacks = self.exchange_rate_service.fallback_count
        if result.exchange_rate_fallbacks:
            logger.warning(
                "Account %s: %d price/trade conversions used the fallback exchange rate (%s)",
                self.account.id,
                result.exchange_rate_fallbacks,
                ", ".join(f"{f}->{t}" for f, t in sorted(self.exchange_rate_service.fallbacks)),
            )

        self.db.flush()
        self.db.expire_all()
        return result

    def _calculator(self):
        if self.strategy is MaterializationStrategy.REVERSE:
            return ReverseCalculator(self.account, self.portfolio_cache, end_date=self.as_of)
        return ForwardCalculator(self.account, self.portfolio_cache, end_date=self.as_of)

    def _persist_holdings(self, result: MaterializationResult) -> None:
        """Split candidates by reconciled cost basis and bulk-upsert each set.

        Set 1 (new cost basis to store) writes quantity, price, amount and
        cost basis together. Set 2 leaves the cost basis columns out of the
        statement entirely, so a run that cannot compute a cost basis never
        erases one recorded earlier (e.g. by a provider).
        """
        if not result.holdings:
            return

        now = utcnow()
        existing_holdings = self._load_existing_holdings_map()
        skip_security_ids = (
            self._provider_sourced_security_ids()
            if self.strategy is MaterializationStrategy.FORWARD
            else set()
        )

        with_cost_basis: list[dict] = []
        without_cost_basis: list[dict] = []

        for holding in result.holdings:
            if holding.security_id in skip_security_ids:
                result.rows_skipped_provider += 1
                continue

            existing = existing_holdings.get(self._holding_key(holding))
            if existing is not None and existing.provider_name is not None:
                logger.debug(
                    "Skipping provider-sourced holding id=%s security_id=%s date=%s",
                    existing.id, existing.security_id, existing.date,
                )
                result.rows_skipped_provider += 1
                continue

            base_attrs = {
                "id": generate_uuid(),
                "account_id": self.account.id,
                "security_id": holding.security_id,
                "date": holding.date,
                "currency": holding.currency,
                "qty": holding.qty,
                "price": holding.price,
                "amount": holding.amount,
                "created_at": now,
                "updated_at": now,
            }

            if existing is not None and existing.cost_basis_locked:
                without_cost_basis.append(base_attrs)
                continue

            decision = reconcile(
                existing,
                self._quantize_cost_basis(holding.cost_basis),
                CostBasisSource.CALCULATED,
            )
            if decision.should_write and decision.value is not None:
                with_cost_basis.append({
                    **base_attrs,
                    "cost_basis": decision.value,
                    "cost_basis_source": decision.source.to_stored(),
                })
            else:
                without_cost_basis.append(base_attrs)

        self._upsert(with_cost_basis, BASE_COLUMNS + COST_BASIS_COLUMNS)
        self._upsert(without_cost_basis, BASE_COLUMNS)

        result.rows_with_cost_basis = len(with_cost_basis)
        result.rows_without_cost_basis = len(without_cost_basis)
        logger.info(
            "Account %s: upserted %d holdings with cost basis, %d without, skipped %d provider rows",
            self.account.id,
            result.rows_with_cost_basis,
            result.rows_without_cost_basis,
            result.rows_skipped_provider,
        )

    def _upsert(self, rows: list[dict], update_columns: tuple[str, ...]) -> None:
        """Insert rows, updating only ``update_columns`` when the key already exists."""
        if not rows:
            return

        insert = pg_insert if self.db.get_bind().dialect.name == "postgresql" else sqlite_insert
        batch_size = settings.MATERIALIZE_BATCH_SIZE
        for start in range(0, len(rows), batch_size):
            stmt = insert(Holding).values(rows[start:start + batch_size])
            stmt = stmt.on_conflict_do_update(
                index_elements=list(HOLDING_KEY_COLUMNS),
                set_={column: getattr(stmt.excluded, column) for column in update_columns},
            )
            self.db.execute(stmt)

    def _load_existing_holdings_map(self) -> dict[tuple, Holding]:
        """Stored rows that can change the outcome of reconciliation.

        Locked rows, rows with a recorded cost basis source and
        provider-owned rows. Any other stored row behaves exactly like a
        missing one.
        """
        rows = (
            self.db.query(Holding)
            .filter(
                Holding.account_id == self.account.id,
                or_(
                    Holding.cost_basis_locked.is_(True),
                    Holding.cost_basis_source.isnot(None),
                    Holding.provider_name.isnot(None),
                ),
            )
            .all()
        )
        return {self._holding_key(h): h for h in rows}

    def _provider_sourced_security_ids(self) -> set[str]:
        """Securities for which the provider, not the ledger, is authoritative."""
        if self._provider_security_ids is None:
            rows = (
                self.db.query(Holding.security_id)
                .filter(
                    Holding.account_id == self.account.id,
                    Holding.provider_name.isnot(None),
                )
                .distinct()
                .all()
            )
            self._provider_security_ids = {row[0] for row in rows}
        return self._provider_security_ids

    def _purge_stale_holdings(self) -> int:
        """Delete calculated rows outside the account's date range or ledger.

        Provider-owned rows are never purged.
        """
        portfolio_security_ids = self.portfolio_cache.securities_in_portfolio()
        query = self.db.query(Holding).filter(
            Holding.account_id == self.account.id,
            Holding.provider_name.is_(None),
        )

        if not portfolio_security_ids:
            deleted = query.delete(synchronize_session=False)
            logger.info(
                "Cleared %d holdings for account %s (no securities in trade history)",
                deleted, self.account.id,
            )
            return deleted

        deleted = query.filter(
            or_(
                Holding.date < self.portfolio_cache.start_date,
                Holding.security_id.notin_(sorted(portfolio_security_ids)),
            )
        ).delete(synchronize_session=False)
        if deleted:
            logger.info("Purged %d stale holdings for account %s", deleted, self.account.id)
        return deleted

    def _cleanup_calculated_holdings_for_provider_securities(self) -> int:
        """Remove calculated rows for securities the provider now reports.

        Prevents duplicate series when a manually tracked account gets
        linked to a provider.
        """
        provider_security_ids = self._provider_sourced_security_ids()
        if not provider_security_ids:
            return 0

        deleted = (
            self.db.query(Holding)
            .filter(
                Holding.account_id == self.account.id,
                Holding.provider_name.is_(None),
                Holding.security_id.in_(sorted(provider_security_ids)),
            )
            .delete(synchronize_session=False)
        )
        if deleted:
            logger.info(
                "Cleaned up %d calculated holdings for provider-sourced securities in account %s",
                deleted, self.account.id,
            )
        return deleted

    def _holding_key(self, holding) -> tuple:
        return (
            holding.account_id or self.account.id,
            holding.security_id,
            holding.date,
            holding.currency,
        )

    @staticmethod
    def _quantize_cost_basis(value: Optional[Decimal]) -> Optional[Decimal]:
        """Round a per-unit cost basis to the stored scale.

        Keeps recomputed values comparable with what is already stored, so
        an unchanged history reconciles to a no-op.
        """
        if value is None:
            return None
        return value.quantize(Decimal(1).scaleb(-settings.COST_BASIS_SCALE))
