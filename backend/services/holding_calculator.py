"""Day-by-day holdings calculators (forward trade replay and reverse walk-back)."""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from models import Account, Trade
from services.holding_gapfill import gapfill_holdings
from services.portfolio_cache import PortfolioCache

logger = logging.getLogger(__name__)


class LedgerInconsistencyError(ValueError):
    """The trade ledger drives a position into an impossible state.

    Raised instead of clamping or skipping, since a silently "repaired"
    ledger would produce wrong financial figures.
    """

    def __init__(self, security_id: str, on_date: date, qty: Decimal):
        self.security_id = security_id
        self.on_date = on_date
        self.qty = qty
        super().__init__(
            f"Quantity for security {security_id} drops to {qty} on {on_date}; "
            "the trade ledger sells more than was bought"
        )


@dataclass
class HoldingCandidate:
    """A calculated holding snapshot, not yet persisted."""

    account_id: str
    security_id: str
    date: date
    qty: Decimal
    price: Decimal
    amount: Decimal
    currency: str
    cost_basis: Optional[Decimal] = None


@dataclass
class CostAccumulator:
    """Running buy totals for one security (weighted average of buys).

    Sells never reduce the totals, so the average cost of the remaining
    position is unchanged by a partial sale.
    """

    total_cost: Decimal = Decimal("0")
    total_qty: Decimal = Decimal("0")

    def add_buy(self, qty: Decimal, unit_cost: Decimal) -> None:
        self.total_cost += unit_cost * qty
        self.total_qty += qty

    @property
    def average(self) -> Optional[Decimal]:
        if self.total_qty == 0:
            return None
        return self.total_cost / self.total_qty


def apply_trades(
    portfolio: dict[str, Decimal],
    trades: list[Trade],
    direction: int = 1,
) -> dict[str, Decimal]:
    """Return a new portfolio with each trade's signed quantity applied.

    ``direction=-1`` undoes the trades (walking backwards in time).
    """
    new_quantities = dict(portfolio)
    for trade in trades:
        qty_change = Decimal(str(trade.qty)) * direction
        new_quantities[trade.security_id] = (
            new_quantities.get(trade.security_id, Decimal("0")) + qty_change
        )
    return new_quantities


class ForwardCalculator:
    """Replays the ledger from the account start date up to ``end_date``.

    Quantities start at zero for every security in the ledger so that a
    closed position reaches exactly zero instead of disappearing. Buys feed
    a per-security cost accumulator that is local to each ``calculate()``
    call.
    """

    def __init__(
        self,
        account: Account,
        portfolio_cache: PortfolioCache,
        end_date: Optional[date] = None,
    ):
        self.account = account
        self.portfolio_cache = portfolio_cache
        self.end_date = end_date or date.today()

    def calculate(self) -> list[HoldingCandidate]:
        cost_basis_tracker: dict[str, CostAccumulator] = defaultdict(CostAccumulator)
        current_portfolio = self._starting_portfolio()
        holdings: list[HoldingCandidate] = []

        current = self.portfolio_cache.start_date
        while current <= self.end_date:
            trades = self.portfolio_cache.trades_for(current)
            self._update_cost_basis_tracker(cost_basis_tracker, trades)
            current_portfolio = apply_trades(current_portfolio, trades)
            self._check_quantities(current_portfolio, current)
            holdings.extend(self._build_holdings(current_portfolio, current, cost_basis_tracker))
            current += timedelta(days=1)

        logger.debug(
            "Forward calculation for account %s: %d raw holdings through %s",
            self.account.id, len(holdings), self.end_date,
        )
        return gapfill_holdings(holdings)

    def _starting_portfolio(self) -> dict[str, Decimal]:
        return {
            security_id: Decimal("0")
            for security_id in sorted(self.portfolio_cache.securities_in_portfolio())
        }

    def _update_cost_basis_tracker(
        self,
        tracker: dict[str, CostAccumulator],
        trades: list[Trade],
    ) -> None:
        """Add the day's buys (qty > 0) to the weighted-average tracker."""
        for trade in trades:
            if not trade.is_buy:
                continue
            unit_cost = self.portfolio_cache.trade_cost_in_account_currency(trade)
            tracker[trade.security_id].add_buy(Decimal(str(trade.qty)), unit_cost)

    @staticmethod
    def _check_quantities(portfolio: dict[str, Decimal], on_date: date) -> None:
        for security_id, qty in portfolio.items():
            if qty < 0:
                raise LedgerInconsistencyError(security_id, on_date, qty)

    def _build_holdings(
        self,
        portfolio: dict[str, Decimal],
        on_date: date,
        tracker: dict[str, CostAccumulator],
    ) -> list[HoldingCandidate]:
        holdings = []
        for security_id, qty in portfolio.items():
            price = self.portfolio_cache.price_for(security_id, on_date)
            if price is None:
                continue

            accumulator = tracker.get(security_id)
            holdings.append(HoldingCandidate(
                account_id=self.account.id,
                security_id=security_id,
                date=on_date,
                qty=qty,
                price=price.price,
                amount=qty * price.price,
                currency=price.currency,
                cost_basis=accumulator.average if accumulator else None,
            ))
        return holdings


class ReverseCalculator:
    """Reconstructs history around a known provider-reported portfolio.

    The anchor is the latest provider snapshot dated on or before
    ``end_date`` (``end_date`` itself when there is none). Days after the
    anchor are replayed forward from it; the anchor day and everything
    before it are emitted walking backwards, undoing each day's trades
    after its snapshot is emitted. Securities the provider did not report
    start at zero. No cost basis is derived in this mode.
    """

    def __init__(
        self,
        account: Account,
        portfolio_cache: PortfolioCache,
        end_date: Optional[date] = None,
    ):
        self.account = account
        self.portfolio_cache = portfolio_cache
        self.end_date = end_date or date.today()

    def calculate(self) -> list[HoldingCandidate]:
        snapshot = self.portfolio_cache.provider_snapshot(on_or_before=self.end_date)
        anchor_date = snapshot.snapshot_date or self.end_date
        anchor_portfolio = self._starting_portfolio(snapshot.quantities)
        holdings: list[HoldingCandidate] = []

        current_portfolio = anchor_portfolio
        current = anchor_date + timedelta(days=1)
        while current <= self.end_date:
            current_portfolio = apply_trades(
                current_portfolio, self.portfolio_cache.trades_for(current)
            )
            holdings.extend(self._build_holdings(current_portfolio, current, None))
            current += timedelta(days=1)

        current_portfolio = anchor_portfolio
        current = anchor_date
        while current >= self.portfolio_cache.start_date:
            # The provider reported the anchor day, so prefer its prices there
            price_source = "holding" if current == anchor_date else None
            holdings.extend(self._build_holdings(current_portfolio, current, price_source))
            current_portfolio = apply_trades(
                current_portfolio, self.portfolio_cache.trades_for(current), direction=-1
            )
            current -= timedelta(days=1)

        logger.debug(
            "Reverse calculation for account %s: %d raw holdings anchored on %s",
            self.account.id, len(holdings), anchor_date,
        )
        return gapfill_holdings(holdings)

    def _starting_portfolio(self, reported: dict[str, Decimal]) -> dict[str, Decimal]:
        portfolio = {
            security_id: Decimal("0")
            for security_id in sorted(self.portfolio_cache.securities_in_portfolio())
        }
        portfolio.update(reported)
        return portfolio

    def _build_holdings(
        self,
        portfolio: dict[str, Decimal],
        on_date: date,
        price_source: Optional[str],
    ) -> list[HoldingCandidate]:
        holdings = []
        for security_id, qty in portfolio.items():
            price = self.portfolio_cache.price_for(security_id, on_date, source=price_source)
            if price is None:
                continue

            holdings.append(HoldingCandidate(
                account_id=self.account.id,
                security_id=security_id,
                date=on_date,
                qty=qty,
                price=price.price,
                amount=qty * price.price,
                currency=price.currency,
            ))
        return holdings
