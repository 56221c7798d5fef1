"""Holding model - one materialized snapshot of a security in an account on a day."""

from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow

# Columns that identify a snapshot; bulk upserts conflict on these.
HOLDING_KEY_COLUMNS = ("account_id", "security_id", "date", "currency")


class Holding(Base):
    """Quantity, price and cost basis of a security held on a given date.

    Rows are written by the materializer (calculated from trades) or by a
    provider import (``provider_name`` set). ``cost_basis`` is per unit.
    ``cost_basis_source`` NULL means the cost basis is unknown. While
    ``cost_basis_locked`` is set, no automated process touches
    ``cost_basis`` or ``cost_basis_source``.
    """

    __tablename__ = "holdings"
    __table_args__ = (
        UniqueConstraint(*HOLDING_KEY_COLUMNS, name="uix_holding_account_security_date_currency"),
        CheckConstraint(
            "cost_basis_source IN ('manual', 'calculated', 'provider')",
            name="ck_holding_cost_basis_source",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    security_id = Column(
        String(36), ForeignKey("securities.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    date = Column(Date, nullable=False, index=True)
    currency = Column(String(3), nullable=False)
    qty = Column(Numeric(18, 8), nullable=False, default=Decimal("0"))
    price = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    amount = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    cost_basis = Column(Numeric(18, 6), nullable=True)
    cost_basis_source = Column(String, nullable=True)  # "manual" / "calculated" / "provider"
    cost_basis_locked = Column(Boolean, default=False, nullable=False)
    provider_name = Column(String, nullable=True)  # Set on rows reported by a provider
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    account = relationship("Account", back_populates="holdings")
    security = relationship("Security", back_populates="holdings")

    @property
    def is_provider_sourced(self) -> bool:
        return self.provider_name is not None

    @property
    def cost_basis_known(self) -> bool:
        """True when a positive cost basis with a recorded source is stored."""
        return (
            self.cost_basis is not None
            and self.cost_basis > 0
            and self.cost_basis_source is not None
        )
