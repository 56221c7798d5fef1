"""Gap filling for calculated holding series."""

from collections import defaultdict
from dataclasses import replace
from datetime import timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from services.holding_calculator import HoldingCandidate


def gapfill_holdings(holdings: list["HoldingCandidate"]) -> list["HoldingCandidate"]:
    """Make each security's series contiguous by carrying the prior day forward.

    Days without a price (weekends, holidays, feed gaps) are skipped by the
    calculators. Within a (security, currency) series, each missing day
    between two emitted days gets a copy of the previous day's snapshot.
    Quantity and cost basis only change on trade days, and trades always
    carry a price, so the carried-forward values stay exact.

    A series is never extended before its first or after its last emitted
    day, so no price is invented for a security that had none yet.

    Returns:
        Holdings ordered by (date, security_id, currency)
    """
    series: dict[tuple[str, str], list["HoldingCandidate"]] = defaultdict(list)
    for holding in holdings:
        series[(holding.security_id, holding.currency)].append(holding)

    filled: list["HoldingCandidate"] = []
    for entries in series.values():
        entries.sort(key=lambda h: h.date)
        previous = None
        for holding in entries:
            if previous is not None:
                current = previous.date + timedelta(days=1)
                while current < holding.date:
                    filled.append(replace(previous, date=current))
                    current += timedelta(days=1)
            filled.append(holding)
            previous = holding

    filled.sort(key=lambda h: (h.date, h.security_id, h.currency))
    return filled
