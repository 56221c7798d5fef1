"""Service for reading holdings and applying user cost basis edits."""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import Account, Holding, Trade
from services.cost_basis_reconciler import CostBasisSource
from services.exchange_rate_service import ExchangeRateService

logger = logging.getLogger(__name__)


class HoldingService:
    """Queries over materialized holdings plus user-initiated cost basis changes."""

    @staticmethod
    def current_holdings(db: Session, account: Account) -> list[Holding]:
        """Latest holding per security in the account currency, excluding closed positions."""
        latest_dates = (
            db.query(
                Holding.security_id.label("security_id"),
                func.max(Holding.date).label("max_date"),
            )
            .filter(
                Holding.account_id == account.id,
                Holding.currency == account.currency,
            )
            .group_by(Holding.security_id)
            .subquery()
        )
        return (
            db.query(Holding)
            .join(
                latest_dates,
                (Holding.security_id == latest_dates.c.security_id)
                & (Holding.date == latest_dates.c.max_date),
            )
            .filter(
                Holding.account_id == account.id,
                Holding.currency == account.currency,
                Holding.qty != 0,
            )
            .order_by(Holding.security_id)
            .all()
        )

    @staticmethod
    def holdings_on(db: Session, account_id: str, on_date: date) -> list[Holding]:
        """All stored holdings for an account on one day."""
        return (
            db.query(Holding)
            .filter(Holding.account_id == account_id, Holding.date == on_date)
            .order_by(Holding.security_id, Holding.currency)
            .all()
        )

    @staticmethod
    def history(db: Session, account_id: str, security_id: str) -> list[Holding]:
        """Chronological series for one security in an account."""
        return (
            db.query(Holding)
            .filter(Holding.account_id == account_id, Holding.security_id == security_id)
            .order_by(Holding.date.asc(), Holding.currency.asc())
            .all()
        )

    @staticmethod
    def set_manual_cost_basis(db: Session, holding: Holding, value: Decimal) -> Holding:
        """Store a user-entered per-unit cost basis and lock it.

        Zero is accepted (gifted or inherited shares); negative values are not.

        Raises:
            ValueError: If value is negative
        """
        if value < 0:
            raise ValueError("Cost basis cannot be negative")

        holding.cost_basis = value
        holding.cost_basis_source = CostBasisSource.MANUAL.to_stored()
        holding.cost_basis_locked = True
        db.flush()
        logger.info(
            "Manual cost basis %s set on holding %s (security %s, %s)",
            value, holding.id, holding.security_id, holding.date,
        )
        return holding

    @staticmethod
    def unlock_cost_basis(db: Session, holding: Holding, reset: bool = False) -> Holding:
        """Clear the lock on a holding's cost basis.

        A manual value still outranks every automated source after
        unlocking. Pass ``reset=True`` to also clear the value and source so
        the next materialization can recompute it.
        """
        holding.cost_basis_locked = False
        if reset:
            holding.cost_basis = None
            holding.cost_basis_source = None
        db.flush()
        logger.info("Cost basis unlocked on holding %s (reset=%s)", holding.id, reset)
        return holding

    @staticmethod
    def avg_cost(
        db: Session,
        holding: Holding,
        exchange_rate_service: Optional[ExchangeRateService] = None,
    ) -> Optional[Decimal]:
        """Average cost per unit, or None when it cannot be determined.

        Uses the stored cost basis when it is positive (providers sometimes
        report 0 for "unknown"). Otherwise falls back to the weighted average
        of buy trades up to the holding's date, converted to the holding's
        currency.
        """
        if holding.cost_basis is not None and holding.cost_basis > 0:
            return Decimal(str(holding.cost_basis))

        buys = (
            db.query(Trade)
            .filter(
                Trade.account_id == holding.account_id,
                Trade.security_id == holding.security_id,
                Trade.qty > 0,
                Trade.trade_date <= holding.date,
            )
            .all()
        )
        if not buys:
            return None

        rates = exchange_rate_service or ExchangeRateService(db)
        total_cost = Decimal("0")
        total_qty = Decimal("0")
        for trade in buys:
            qty = Decimal(str(trade.qty))
            converted = rates.convert(
                Decimal(str(trade.price)), trade.currency, holding.currency, trade.trade_date
            )
            total_cost += converted.amount * qty
            total_qty += qty

        if total_qty == 0:
            return None
        return total_cost / total_qty
