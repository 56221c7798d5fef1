"""Test fixtures and sample data."""
import pytest
from datetime import date
from decimal import Decimal

from models import Account, ExchangeRate, Holding, Security, SecurityPrice, Trade
from sqlalchemy.orm import Session


def get_or_create_security(db: Session, ticker: str, name: str | None = None) -> Security:
    """Get or create a Security record for the given ticker.

    This is a helper function (not a fixture) for tests that need to create
    multiple securities with different tickers.
    """
    security = db.query(Security).filter_by(ticker=ticker).first()
    if not security:
        security = Security(ticker=ticker, name=name or ticker)
        db.add(security)
        db.flush()
    return security


def add_trade(
    db: Session,
    account: Account,
    security: Security,
    trade_date: date,
    qty: str,
    price: str,
    currency: str | None = None,
) -> Trade:
    """Record a trade; positive qty is a buy, negative a sell."""
    trade = Trade(
        account_id=account.id,
        security_id=security.id,
        trade_date=trade_date,
        qty=Decimal(qty),
        price=Decimal(price),
        currency=currency or account.currency,
    )
    db.add(trade)
    db.flush()
    return trade


def add_price(
    db: Session,
    security: Security,
    price_date: date,
    price: str,
    currency: str = "USD",
) -> SecurityPrice:
    """Store a market price for a security on a day."""
    row = SecurityPrice(
        security_id=security.id,
        price_date=price_date,
        price=Decimal(price),
        currency=currency,
        source="test",
    )
    db.add(row)
    db.flush()
    return row


def add_exchange_rate(
    db: Session,
    from_currency: str,
    to_currency: str,
    rate_date: date,
    rate: str,
) -> ExchangeRate:
    """Store a rate where 1 from_currency = rate to_currency."""
    row = ExchangeRate(
        from_currency=from_currency,
        to_currency=to_currency,
        rate_date=rate_date,
        rate=Decimal(rate),
    )
    db.add(row)
    db.flush()
    return row


def add_holding(
    db: Session,
    account: Account,
    security: Security,
    holding_date: date,
    qty: str = "10",
    price: str = "100",
    currency: str | None = None,
    **kwargs,
) -> Holding:
    """Insert a holding row directly (bypassing the materializer)."""
    qty_value = Decimal(qty)
    price_value = Decimal(price)
    holding = Holding(
        account_id=account.id,
        security_id=security.id,
        date=holding_date,
        currency=currency or account.currency,
        qty=qty_value,
        price=price_value,
        amount=qty_value * price_value,
        **kwargs,
    )
    db.add(holding)
    db.flush()
    return holding


@pytest.fixture
def account(db: Session) -> Account:
    """Create a manually tracked USD account."""
    acc = Account(
        name="Test Account",
        currency="USD",
        is_active=True,
    )
    db.add(acc)
    db.commit()
    db.refresh(acc)
    return acc


@pytest.fixture
def linked_account(db: Session) -> Account:
    """Create an account linked to a data provider."""
    acc = Account(
        provider_name="SnapTrade",
        external_id="ext_123",
        name="Linked Account",
        currency="USD",
        is_active=True,
    )
    db.add(acc)
    db.commit()
    db.refresh(acc)
    return acc


@pytest.fixture
def security(db: Session) -> Security:
    """Create a test security."""
    sec = Security(
        ticker="AAPL",
        name="Apple Inc.",
    )
    db.add(sec)
    db.commit()
    db.refresh(sec)
    return sec
