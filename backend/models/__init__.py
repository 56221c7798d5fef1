"""SQLAlchemy ORM models."""

from .account import Account
from .exchange_rate import ExchangeRate
from .holding import HOLDING_KEY_COLUMNS, Holding
from .security import Security
from .security_price import SecurityPrice
from .trade import Trade
from .utils import generate_uuid

__all__ = ["Account", "ExchangeRate", "HOLDING_KEY_COLUMNS", "Holding", "Security", "SecurityPrice", "Trade", "generate_uuid"]
