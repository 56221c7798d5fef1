"""Pydantic schemas for materialized holdings."""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class HoldingResponse(BaseModel):
    """Schema for Holding API response."""

    id: str
    account_id: str
    security_id: str
    date: date
    currency: str
    qty: Decimal
    price: Decimal
    amount: Decimal
    cost_basis: Decimal | None = None
    cost_basis_source: str | None = None
    cost_basis_locked: bool
    provider_name: str | None = None
    updated_at: datetime | None = None

    # Computed fields, populated by the API layer, not stored on the model
    ticker: str | None = None
    avg_cost: Decimal | None = None

    model_config = ConfigDict(from_attributes=True)


class CostBasisUpdate(BaseModel):
    """Schema for setting a manual per-unit cost basis."""

    cost_basis: Decimal = Field(ge=0)


class CostBasisUnlockRequest(BaseModel):
    """Schema for unlocking a holding's cost basis."""

    reset: bool = False


class MaterializeRequest(BaseModel):
    """Schema for triggering a holdings materialization."""

    strategy: Literal["forward", "reverse"] | None = None
    as_of: date | None = None


class MaterializeResponse(BaseModel):
    """Summary of a materialization run."""

    account_id: str
    strategy: str
    holdings_calculated: int
    rows_with_cost_basis: int
    rows_without_cost_basis: int
    rows_skipped_provider: int
    rows_purged: int
    exchange_rate_fallbacks: int
