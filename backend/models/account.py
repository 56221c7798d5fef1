"""Account model - an investment account whose holdings are materialized."""

from sqlalchemy import Boolean, Column, DateTime, String, UniqueConstraint
from sqlalchemy.orm import relationship

from config import settings
from database import Base
from models.utils import generate_uuid, utcnow


class Account(Base):
    """An investment account.

    Manually tracked accounts only have a trade ledger. Linked accounts
    (``provider_name`` set) additionally receive holdings reported by an
    external data provider; provider_name + external_id identifies them.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint(
            "provider_name", "external_id", name="uix_provider_external_id"
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String, nullable=False)
    currency = Column(String(3), nullable=False, default=lambda: settings.DEFAULT_CURRENCY)
    provider_name = Column(String, nullable=True)  # e.g., "SnapTrade"; None for manual accounts
    external_id = Column(String, nullable=True)  # Provider's account ID
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    trades = relationship(
        "Trade", back_populates="account", cascade="all, delete-orphan", passive_deletes=True
    )
    holdings = relationship(
        "Holding", back_populates="account", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def is_linked(self) -> bool:
        """True when holdings for this account also arrive from a provider."""
        return bool(self.provider_name)
