"""SecurityPrice model - stored daily prices from the market data feed."""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class SecurityPrice(Base):
    """Closing price of a security on one calendar day."""

    __tablename__ = "security_prices"
    __table_args__ = (
        UniqueConstraint("security_id", "price_date", name="uix_security_price_date"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    security_id = Column(
        String(36), ForeignKey("securities.id", ondelete="CASCADE"), nullable=False, index=True
    )
    price_date = Column(Date, nullable=False)
    price = Column(Numeric(18, 6), nullable=False)
    currency = Column(String(3), nullable=False)
    source = Column(String, nullable=True)  # e.g., "yahoo"
    created_at = Column(DateTime, default=utcnow)

    security = relationship("Security", back_populates="prices")
