"""Exchange rate lookups with a documented 1:1 fallback.

Rate convention (same as the ``exchange_rates`` table):

    1 from_currency = rate × to_currency

Lookup order for a (from, to, date) request:
1. Same currency, rate is exactly 1
2. Stored rate for that exact date
3. Most recent stored rate before that date
4. Inverse of the reverse pair (exact date, then most recent earlier)
5. ``settings.EXCHANGE_RATE_FALLBACK`` (1 by default), flagged as a fallback

Fallbacks are never silent: each conversion reports ``used_fallback`` and
the service keeps a per-pair count that callers can log or audit.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from config import settings
from models import ExchangeRate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateResult:
    """A resolved exchange rate."""

    from_currency: str
    to_currency: str
    rate: Decimal
    rate_date: Optional[date]  # Date of the stored rate used; None for identity/fallback
    used_fallback: bool = False


@dataclass(frozen=True)
class ConversionResult:
    """An amount converted between currencies."""

    amount: Decimal
    currency: str
    rate: Decimal
    used_fallback: bool = False


class ExchangeRateService:
    """Resolves and caches exchange rates for one unit of work.

    Instances are cheap and meant to live for a single materialization run;
    the cache is never shared between runs or accounts.
    """

    def __init__(self, db: Session, fallback_rate: Optional[Decimal] = None):
        self.db = db
        self.fallback_rate = (
            fallback_rate if fallback_rate is not None else settings.EXCHANGE_RATE_FALLBACK
        )
        self._cache: dict[tuple[str, str, date], RateResult] = {}
        self._pair_rates: dict[tuple[str, str], list[tuple[date, Decimal]]] = {}
        self.fallbacks: Counter[tuple[str, str]] = Counter()

    @property
    def fallback_count(self) -> int:
        """Total number of lookups that fell back to the default rate."""
        return sum(self.fallbacks.values())

    def get_rate(self, from_currency: str, to_currency: str, on_date: date) -> RateResult:
        """Resolve the rate to convert ``from_currency`` into ``to_currency`` on a date."""
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()

        if from_currency == to_currency:
            return RateResult(from_currency, to_currency, Decimal("1"), None)

        key = (from_currency, to_currency, on_date)
        cached = self._cache.get(key)
        if cached is not None:
            if cached.used_fallback:
                self.fallbacks[(from_currency, to_currency)] += 1
            return cached

        result = self._lookup(from_currency, to_currency, on_date)
        if result is None:
            inverse = self._lookup(to_currency, from_currency, on_date)
            if inverse is not None and inverse.rate != 0:
                result = RateResult(
                    from_currency,
                    to_currency,
                    Decimal("1") / inverse.rate,
                    inverse.rate_date,
                )

        if result is None:
            logger.warning(
                "No exchange rate for %s->%s on or before %s; using fallback rate %s",
                from_currency, to_currency, on_date, self.fallback_rate,
            )
            result = RateResult(
                from_currency, to_currency, self.fallback_rate, None, used_fallback=True
            )
            self.fallbacks[(from_currency, to_currency)] += 1

        self._cache[key] = result
        return result

    def convert(
        self,
        amount: Decimal,
        from_currency: str,
        to_currency: str,
        on_date: date,
    ) -> ConversionResult:
        """Convert an amount into ``to_currency`` using the rate for ``on_date``."""
        rate = self.get_rate(from_currency, to_currency, on_date)
        return ConversionResult(
            amount=amount * rate.rate,
            currency=rate.to_currency,
            rate=rate.rate,
            used_fallback=rate.used_fallback,
        )

    def _lookup(self, from_currency: str, to_currency: str, on_date: date) -> Optional[RateResult]:
        """Exact-date rate, else the most recent earlier one."""
        rates = self._load_pair(from_currency, to_currency)
        best: Optional[tuple[date, Decimal]] = None
        for rate_date, rate in rates:
            if rate_date > on_date:
                break
            best = (rate_date, rate)

        if best is None:
            return None
        return RateResult(from_currency, to_currency, best[1], best[0])

    def _load_pair(self, from_currency: str, to_currency: str) -> list[tuple[date, Decimal]]:
        """Load (and memoize) every stored rate for a pair, ordered by date."""
        pair = (from_currency, to_currency)
        if pair not in self._pair_rates:
            rows = (
                self.db.query(ExchangeRate.rate_date, ExchangeRate.rate)
                .filter(
                    ExchangeRate.from_currency == from_currency,
                    ExchangeRate.to_currency == to_currency,
                )
                .order_by(ExchangeRate.rate_date.asc())
                .all()
            )
            self._pair_rates[pair] = [(row[0], Decimal(str(row[1]))) for row in rows]
        return self._pair_rates[pair]
