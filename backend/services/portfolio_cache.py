"""In-memory view of one account's ledger and prices for a holdings calculation."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from models import Account, Holding, SecurityPrice, Trade
from services.exchange_rate_service import ExchangeRateService

logger = logging.getLogger(__name__)

# Lower number wins when several sources price the same security on the same day.
PRICE_SOURCE_PRIORITY = {
    "db": 1,
    "trade": 2,
    "holding": 3,
}


@dataclass
class PriceCandidate:
    """A raw price observation before currency conversion."""

    price: Decimal
    currency: str
    source: str

    @property
    def priority(self) -> int:
        return PRICE_SOURCE_PRIORITY[self.source]


@dataclass
class PricePoint:
    """Price of a security on a day, expressed in the account currency."""

    security_id: str
    price_date: date
    price: Decimal
    currency: str
    source: str
    used_fallback_rate: bool = False


@dataclass
class ProviderSnapshot:
    """Quantities a provider reported for one day."""

    snapshot_date: Optional[date]
    quantities: dict[str, Decimal] = field(default_factory=dict)


class PortfolioCache:
    """Loads an account's trades and prices once and answers lookups from memory.

    Args:
        db: Database session
        account: The account being calculated
        exchange_rate_service: Used to express prices and trade costs in the
            account currency. A fresh one is created when omitted.
        use_holdings: Also treat provider-reported holdings as a price
            source and a source of securities (reverse mode).
    """

    def __init__(
        self,
        db: Session,
        account: Account,
        exchange_rate_service: Optional[ExchangeRateService] = None,
        use_holdings: bool = False,
    ):
        self.db = db
        self.account = account
        self.exchange_rate_service = exchange_rate_service or ExchangeRateService(db)
        self.use_holdings = use_holdings

        self._trades_by_date: dict[date, list[Trade]] = defaultdict(list)
        self._prices: dict[tuple[str, date], list[PriceCandidate]] = defaultdict(list)
        self._security_ids: set[str] = set()
        self._provider_holdings: list[Holding] = []
        self._start_date: Optional[date] = None
        self._loaded = False

    @property
    def start_date(self) -> date:
        self._load()
        return self._start_date

    def trades_for(self, on_date: date) -> list[Trade]:
        """Trades dated ``on_date``, in insertion order."""
        self._load()
        return list(self._trades_by_date.get(on_date, []))

    def securities_in_portfolio(self) -> set[str]:
        """Every security that ever appears in the ledger (plus provider holdings when enabled)."""
        self._load()
        return set(self._security_ids)

    def price_for(
        self,
        security_id: str,
        on_date: date,
        source: Optional[str] = None,
    ) -> Optional[PricePoint]:
        """Best price for a security on a day, converted to the account currency.

        Args:
            security_id: The security to price
            on_date: Calendar day
            source: Restrict to one source ("db", "trade", "holding"). When
                that source has nothing for the day, the other sources are
                used instead.

        Returns:
            PricePoint, or None when no source has a price for that day
        """
        self._load()
        candidates = self._prices.get((security_id, on_date))
        if not candidates:
            return None

        if source is not None:
            preferred = [c for c in candidates if c.source == source]
            if preferred:
                candidates = preferred

        best = min(candidates, key=lambda c: c.priority)
        converted = self.exchange_rate_service.convert(
            best.price, best.currency, self.account.currency, on_date
        )
        return PricePoint(
            security_id=security_id,
            price_date=on_date,
            price=converted.amount,
            currency=converted.currency,
            source=best.source,
            used_fallback_rate=converted.used_fallback,
        )

    def trade_cost_in_account_currency(self, trade: Trade) -> Decimal:
        """Per-unit trade price converted to the account currency on the trade date."""
        converted = self.exchange_rate_service.convert(
            Decimal(str(trade.price)), trade.currency, self.account.currency, trade.trade_date
        )
        return converted.amount

    def provider_snapshot(self, on_or_before: Optional[date] = None) -> ProviderSnapshot:
        """Most recent provider-reported portfolio, optionally no later than a date.

        Only rows in the account currency count. The snapshot holds every
        security reported on the latest such day; securities the provider
        did not report that day are absent.
        """
        self._load()
        rows = [
            h for h in self._provider_holdings
            if h.currency == self.account.currency
            and (on_or_before is None or h.date <= on_or_before)
        ]
        if not rows:
            return ProviderSnapshot(snapshot_date=None)

        snapshot_date = max(h.date for h in rows)
        return ProviderSnapshot(
            snapshot_date=snapshot_date,
            quantities={
                h.security_id: Decimal(str(h.qty)) for h in rows if h.date == snapshot_date
            },
        )

    def _load(self) -> None:
        if self._loaded:
            return

        trades = (
            self.db.query(Trade)
            .filter(Trade.account_id == self.account.id)
            .order_by(Trade.trade_date.asc(), Trade.created_at.asc())
            .all()
        )
        for trade in trades:
            self._trades_by_date[trade.trade_date].append(trade)
            self._security_ids.add(trade.security_id)
            self._prices[(trade.security_id, trade.trade_date)].append(
                PriceCandidate(
                    price=Decimal(str(trade.price)),
                    currency=trade.currency,
                    source="trade",
                )
            )

        if trades:
            self._start_date = trades[0].trade_date - timedelta(days=1)
        else:
            self._start_date = date.today() - timedelta(days=1)

        if self.use_holdings:
            self._provider_holdings = (
                self.db.query(Holding)
                .filter(
                    Holding.account_id == self.account.id,
                    Holding.provider_name.isnot(None),
                )
                .all()
            )
            for holding in self._provider_holdings:
                self._security_ids.add(holding.security_id)
                self._prices[(holding.security_id, holding.date)].append(
                    PriceCandidate(
                        price=Decimal(str(holding.price)),
                        currency=holding.currency,
                        source="holding",
                    )
                )

        if self._security_ids:
            stored_prices = (
                self.db.query(SecurityPrice)
                .filter(
                    SecurityPrice.security_id.in_(sorted(self._security_ids)),
                    SecurityPrice.price_date >= self._start_date,
                )
                .all()
            )
            for row in stored_prices:
                self._prices[(row.security_id, row.price_date)].append(
                    PriceCandidate(
                        price=Decimal(str(row.price)),
                        currency=row.currency,
                        source="db",
                    )
                )

        self._loaded = True
        logger.debug(
            "Loaded %d trades, %d securities, %d priced security-days for account %s",
            len(trades), len(self._security_ids), len(self._prices), self.account.id,
        )
