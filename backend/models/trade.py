"""Trade model - the buy/sell ledger that holdings are replayed from."""

from decimal import Decimal

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class Trade(Base):
    """A single buy or sell of a security in an account.

    ``qty`` is signed: positive for buys, negative for sells. ``price`` is
    per unit, denominated in ``currency`` (which may differ from the
    account currency).
    """

    __tablename__ = "trades"
    __table_args__ = (
        Index("ix_trades_account_date", "account_id", "trade_date"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    security_id = Column(
        String(36), ForeignKey("securities.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    trade_date = Column(Date, nullable=False)
    qty = Column(Numeric(18, 8), nullable=False)
    price = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    currency = Column(String(3), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    account = relationship("Account", back_populates="trades")
    security = relationship("Security", back_populates="trades")

    @property
    def is_buy(self) -> bool:
        return self.qty > 0
