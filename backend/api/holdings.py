"""Holdings API endpoints: snapshot queries, cost basis edits and materialization."""

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from api.helpers import get_or_404, holding_response_dict
from database import get_db
from models import Account, Holding, Security
from schemas.holding import (
    CostBasisUnlockRequest,
    CostBasisUpdate,
    HoldingResponse,
    MaterializeRequest,
    MaterializeResponse,
)
from services.holding_service import HoldingService
from services.holding_sync_service import HoldingSyncService, MaterializationInProgressError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["holdings"])


def get_sync_service() -> HoldingSyncService:
    """Dependency that provides the holdings sync service."""
    return HoldingSyncService()


@router.get("/accounts/{account_id}/holdings", response_model=list[HoldingResponse])
def get_account_holdings(
    account_id: str,
    on_date: date | None = Query(default=None, alias="date"),
    db: Session = Depends(get_db),
):
    """Current holdings for an account, or every stored row for ``?date=``."""
    account = get_or_404(db, Account, account_id, "Account not found")
    if on_date is not None:
        holdings = HoldingService.holdings_on(db, account_id, on_date)
    else:
        holdings = HoldingService.current_holdings(db, account)
    return [
        holding_response_dict(h, avg_cost=HoldingService.avg_cost(db, h))
        for h in holdings
    ]


@router.get(
    "/accounts/{account_id}/holdings/{security_id}/history",
    response_model=list[HoldingResponse],
)
def get_holding_history(
    account_id: str,
    security_id: str,
    db: Session = Depends(get_db),
):
    """Chronological snapshot series for one security in an account."""
    get_or_404(db, Account, account_id, "Account not found")
    get_or_404(db, Security, security_id, "Security not found")
    return [
        holding_response_dict(h)
        for h in HoldingService.history(db, account_id, security_id)
    ]


@router.post(
    "/accounts/{account_id}/holdings/materialize",
    response_model=MaterializeResponse,
)
def materialize_account_holdings(
    account_id: str,
    request: MaterializeRequest | None = None,
    db: Session = Depends(get_db),
    sync_service: HoldingSyncService = Depends(get_sync_service),
):
    """Recalculate and store the account's holdings history."""
    get_or_404(db, Account, account_id, "Account not found")
    request = request or MaterializeRequest()

    try:
        result = sync_service.sync_account(
            db, account_id, strategy=request.strategy, as_of=request.as_of
        )
    except MaterializationInProgressError as e:
        logger.info("Rejected materialize request: %s", e)
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "account_id": account_id,
        "strategy": result.strategy.value,
        "holdings_calculated": len(result.holdings),
        "rows_with_cost_basis": result.rows_with_cost_basis,
        "rows_without_cost_basis": result.rows_without_cost_basis,
        "rows_skipped_provider": result.rows_skipped_provider,
        "rows_purged": result.rows_purged,
        "exchange_rate_fallbacks": result.exchange_rate_fallbacks,
    }


@router.put("/holdings/{holding_id}/cost-basis", response_model=HoldingResponse)
def set_holding_cost_basis(
    holding_id: str,
    update: CostBasisUpdate,
    db: Session = Depends(get_db),
):
    """Set a manual per-unit cost basis; the value is locked against automated updates."""
    holding = get_or_404(db, Holding, holding_id, "Holding not found")
    try:
        HoldingService.set_manual_cost_basis(db, holding, update.cost_basis)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    db.commit()
    db.refresh(holding)
    return holding_response_dict(holding)


@router.post("/holdings/{holding_id}/cost-basis/unlock", response_model=HoldingResponse)
def unlock_holding_cost_basis(
    holding_id: str,
    request: CostBasisUnlockRequest | None = None,
    db: Session = Depends(get_db),
):
    """Allow automated processes to update this holding's cost basis again."""
    holding = get_or_404(db, Holding, holding_id, "Holding not found")
    request = request or CostBasisUnlockRequest()
    HoldingService.unlock_cost_basis(db, holding, reset=request.reset)
    db.commit()
    db.refresh(holding)
    return holding_response_dict(holding)
