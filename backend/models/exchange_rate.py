"""ExchangeRate model - daily currency conversion rates."""

from sqlalchemy import Column, Date, DateTime, Numeric, String, UniqueConstraint

from database import Base
from models.utils import generate_uuid, utcnow


class ExchangeRate(Base):
    """Conversion rate for one currency pair on one day.

    Convention: 1 ``from_currency`` = ``rate`` ``to_currency``.
    """

    __tablename__ = "exchange_rates"
    __table_args__ = (
        UniqueConstraint(
            "from_currency", "to_currency", "rate_date",
            name="uix_exchange_rate_pair_date",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    from_currency = Column(String(3), nullable=False)
    to_currency = Column(String(3), nullable=False)
    rate_date = Column(Date, nullable=False, index=True)
    rate = Column(Numeric(18, 8), nullable=False)
    created_at = Column(DateTime, default=utcnow)
