# coding: utf-8
"""
Wallets API

Endpoints:
    GET  /api/wallets/{agent_id}               - balance
    GET  /api/wallets/{agent_id}/transactions  - ledger history
    GET  /api/wallets/{agent_id}/unlocks       - leads the agent holds
    POST /api/wallets/{agent_id}/top-up        - credit a confirmed payment
    POST /api/wallets/{agent_id}/adjust        - admin correction
    GET  /api/wallets/{agent_id}/audit         - balance vs. ledger check
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.api_key_auth import verify_api_key
from src.core.exceptions import WalletNotFoundError
from src.database.engine import get_session
from src.services.unlock_service import UnlockService
from src.services.wallet_service import WalletLedger


router = APIRouter(prefix="/wallets", tags=["wallets"], dependencies=[Depends(verify_api_key)])


class TopUpRequest(BaseModel):
    """Credits confirmed by the payment gateway"""
    credits: int = Field(..., ge=1, description="Credits purchased")
    payment_method: str = Field(default="Payment", max_length=50, description="Gateway name")
    confirmation_code: str = Field(default="", max_length=100, description="Gateway receipt")


class AdjustRequest(BaseModel):
    delta: int = Field(..., description="Signed credit change")
    reason: str = Field(..., min_length=1, max_length=255)


@router.get("/{agent_id}")
async def get_balance(
    agent_id: int,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    try:
        balance = await WalletLedger.get_balance(session, agent_id)
    except WalletNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "agent_id": agent_id, "balance": balance}


@router.get("/{agent_id}/transactions")
async def get_transactions(
    agent_id: int,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    transaction_type: Optional[str] = Query(None, alias="type"),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Ledger entries, newest first

    Returns:
        {"success": true, "transactions": [...], "limit": 50, "offset": 0}
    """
    transactions = await WalletLedger.get_transaction_history(
        session, agent_id, limit=limit, offset=offset, transaction_type=transaction_type
    )
    return {
        "success": True,
        "transactions": transactions,
        "limit": limit,
        "offset": offset,
    }


@router.get("/{agent_id}/unlocks")
async def get_unlocked_leads(
    agent_id: int,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    lead_ids = await UnlockService.get_unlocked_leads(session, agent_id)
    return {"success": True, "lead_ids": lead_ids}


@router.post("/{agent_id}/top-up")
async def top_up(
    agent_id: int,
    request: TopUpRequest,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Called by the payment flow once the gateway confirmed the charge"""
    try:
        result = await WalletLedger.top_up(
            session,
            agent_id,
            request.credits,
            payment_method=request.payment_method,
            confirmation_code=request.confirmation_code,
        )
    except WalletNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {"success": True, "new_balance": result.new_balance}


@router.post("/{agent_id}/adjust")
async def admin_adjust(
    agent_id: int,
    request: AdjustRequest,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    try:
        result = await WalletLedger.admin_adjust(session, agent_id, request.delta, request.reason)
    except WalletNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result.success:
        raise HTTPException(
            status_code=402,
            detail={"success": False, "status": result.status.value, "balance": result.new_balance},
        )
    return {"success": True, "new_balance": result.new_balance}


@router.get("/{agent_id}/audit")
async def audit_wallet(
    agent_id: int,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    try:
        audit = await WalletLedger.audit_wallet(session, agent_id)
    except WalletNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {
        "success": True,
        "agent_id": audit.agent_id,
        "balance": audit.balance,
        "ledger_sum": audit.ledger_sum,
        "transaction_count": audit.transaction_count,
        "drift": audit.drift,
        "consistent": audit.is_consistent,
    }
