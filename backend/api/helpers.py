"""Shared API helpers for route handlers.

Common query patterns and response builders used across route files.
"""

from typing import Optional, TypeVar

from fastapi import HTTPException
from sqlalchemy.orm import Session

from database import Base
from models import Holding

T = TypeVar("T", bound=Base)


def get_or_404(db: Session, model: type[T], entity_id: str, detail: str = "Not found") -> T:
    """Fetch a single entity by primary key or raise 404.

    Args:
        db: Database session.
        model: SQLAlchemy model class.
        entity_id: Primary key value.
        detail: Error message for the 404 response.

    Returns:
        The entity instance.

    Raises:
        HTTPException: 404 if the entity doesn't exist.
    """
    entity = db.query(model).filter(model.id == entity_id).first()
    if not entity:
        raise HTTPException(status_code=404, detail=detail)
    return entity


def holding_response_dict(holding: Holding, avg_cost=None) -> dict:
    """Build a HoldingResponse-compatible dict from a Holding.

    Args:
        holding: A Holding instance with its security relationship loaded.
        avg_cost: Optional computed average cost per unit.

    Returns:
        Dict matching the HoldingResponse schema.
    """
    ticker: Optional[str] = holding.security.ticker if holding.security else None
    return {
        "id": holding.id,
        "account_id": holding.account_id,
        "security_id": holding.security_id,
        "date": holding.date,
        "currency": holding.currency,
        "qty": holding.qty,
        "price": holding.price,
        "amount": holding.amount,
        "cost_basis": holding.cost_basis,
        "cost_basis_source": holding.cost_basis_source,
        "cost_basis_locked": holding.cost_basis_locked,
        "provider_name": holding.provider_name,
        "updated_at": holding.updated_at,
        "ticker": ticker,
        "avg_cost": avg_cost,
    }
