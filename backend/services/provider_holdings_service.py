"""Import of provider-reported holdings into the snapshot table."""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from models import Account, Holding
from services.cost_basis_reconciler import CostBasisSource, reconcile

logger = logging.getLogger(__name__)


class ProviderHoldingsService:
    """Writes holdings reported by an external provider (brokerage/aggregator sync)."""

    @staticmethod
    def import_holding(
        db: Session,
        account: Account,
        security_id: str,
        holding_date: date,
        qty: Decimal,
        price: Decimal,
        currency: str,
        provider_name: str,
        cost_basis: Optional[Decimal] = None,
        amount: Optional[Decimal] = None,
    ) -> Holding:
        """Create or update the provider's holding for (security, date, currency).

        Quantity, price and amount always take the provider's values. The
        cost basis goes through reconciliation with source ``provider``, so
        a locked, manual or calculated value is never overwritten and a
        reported 0 is treated as unknown.

        Args:
            db: Database session
            account: Account the holding belongs to
            security_id: Security reported
            holding_date: Day the provider reported the position for
            qty: Reported quantity
            price: Reported per-unit price in ``currency``
            currency: Currency of price/amount
            provider_name: Name of the reporting provider
            cost_basis: Reported per-unit cost basis, if any
            amount: Reported market value; defaults to qty * price

        Returns:
            The Holding record (flushed but not committed)

        Raises:
            ValueError: If provider_name is empty
        """
        if not provider_name:
            raise ValueError("provider_name is required")

        currency = currency.upper()
        holding = (
            db.query(Holding)
            .filter(
                Holding.account_id == account.id,
                Holding.security_id == security_id,
                Holding.date == holding_date,
                Holding.currency == currency,
            )
            .first()
        )

        decision = reconcile(holding, cost_basis, CostBasisSource.PROVIDER)

        if holding is None:
            holding = Holding(
                account_id=account.id,
                security_id=security_id,
                date=holding_date,
                currency=currency,
            )
            db.add(holding)
        elif holding.provider_name and holding.provider_name != provider_name:
            logger.warning(
                "Cross-provider holding collision for account=%s security=%s date=%s: "
                "owned by %s, reported by %s; keeping existing row",
                account.id, security_id, holding_date, holding.provider_name, provider_name,
            )
            return holding

        holding.qty = qty
        holding.price = price
        holding.amount = amount if amount is not None else qty * price
        holding.provider_name = provider_name

        if decision.should_write:
            holding.cost_basis = decision.value
            holding.cost_basis_source = decision.source.to_stored() if decision.source else None

        db.flush()
        logger.debug(
            "Imported %s holding security=%s date=%s qty=%s (cost basis written: %s)",
            provider_name, security_id, holding_date, qty, decision.should_write,
        )
        return holding
