"""Pydantic request/response schemas."""

from .holding import (
    CostBasisUnlockRequest,
    CostBasisUpdate,
    HoldingResponse,
    MaterializeRequest,
    MaterializeResponse,
)

__all__ = [
    "CostBasisUnlockRequest",
    "CostBasisUpdate",
    "HoldingResponse",
    "MaterializeRequest",
    "MaterializeResponse",
]
