"""Cost basis reconciliation: decides whether an incoming cost basis may replace a stored one.

Shared by the holding materializer (trade-derived values) and the provider
holdings import (provider-reported values) so every writer follows the same
provenance rules.

Priority hierarchy: manual > calculated > provider > unknown
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional, Protocol


class CostBasisSource(str, Enum):
    """Provenance of a stored cost basis, ordered by trust."""

    UNKNOWN = "unknown"
    PROVIDER = "provider"
    CALCULATED = "calculated"
    MANUAL = "manual"

    @property
    def priority(self) -> int:
        return _PRIORITY[self]

    def outranks_or_equals(self, other: "CostBasisSource") -> bool:
        return self.priority >= other.priority

    @classmethod
    def from_stored(cls, value: Optional[str]) -> "CostBasisSource":
        """Map a stored column value to a source; NULL means unknown."""
        if value is None:
            return cls.UNKNOWN
        return cls(value)

    def to_stored(self) -> Optional[str]:
        """Column value for this source; unknown is stored as NULL."""
        if self is CostBasisSource.UNKNOWN:
            return None
        return self.value


_PRIORITY = {
    CostBasisSource.UNKNOWN: 0,
    CostBasisSource.PROVIDER: 1,
    CostBasisSource.CALCULATED: 2,
    CostBasisSource.MANUAL: 3,
}


class CostBasisHolder(Protocol):
    """The stored fields reconciliation looks at (a ``Holding`` satisfies this)."""

    cost_basis: Optional[Decimal]
    cost_basis_source: Optional[str]
    cost_basis_locked: bool


@dataclass(frozen=True)
class ReconciliationDecision:
    """Outcome of :func:`reconcile`.

    ``source`` is ``None`` whenever ``value`` is ``None`` (unknown).
    """

    value: Optional[Decimal]
    source: Optional[CostBasisSource]
    should_write: bool


def _keep(existing: CostBasisHolder) -> ReconciliationDecision:
    source = CostBasisSource.from_stored(existing.cost_basis_source)
    return ReconciliationDecision(
        value=existing.cost_basis,
        source=None if source is CostBasisSource.UNKNOWN else source,
        should_write=False,
    )


def reconcile(
    existing: Optional[CostBasisHolder],
    incoming_value: Optional[Decimal],
    incoming_source: CostBasisSource,
) -> ReconciliationDecision:
    """Determine the cost basis value and source to store for a holding.

    Never raises for well-formed input. Callers that want to know whether
    a write was suppressed (e.g. by a lock) inspect ``should_write``.

    Args:
        existing: The stored holding, or None if there is none yet
        incoming_value: Newly observed per-unit cost basis (may be None)
        incoming_source: Who observed it

    Returns:
        ReconciliationDecision with the value/source to keep and whether
        anything needs writing
    """
    # Providers report 0 when they don't know; treat it as absent
    if incoming_source is CostBasisSource.PROVIDER and (
        incoming_value is None or incoming_value == 0
    ):
        incoming_value = None
    elif incoming_source is CostBasisSource.UNKNOWN:
        incoming_value = None

    if existing is None:
        return ReconciliationDecision(
            value=incoming_value,
            source=incoming_source if incoming_value is not None else None,
            should_write=True,
        )

    if existing.cost_basis_locked:
        return _keep(existing)

    existing_source = CostBasisSource.from_stored(existing.cost_basis_source)
    if incoming_value is None or not incoming_source.outranks_or_equals(existing_source):
        return _keep(existing)

    # Re-materializing usually yields the same value; skip the write
    if existing_source is incoming_source and existing.cost_basis == incoming_value:
        return _keep(existing)

    return ReconciliationDecision(
        value=incoming_value,
        source=incoming_source,
        should_write=True,
    )
