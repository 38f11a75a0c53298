# coding: utf-8
"""
Leads API

Endpoints:
    POST /api/leads                   - intake (normalizes any payload shape)
    GET  /api/leads/{lead_id}         - lead card; contact details only for holders
    GET  /api/leads/{lead_id}/quote   - current price and eligibility
    POST /api/leads/{lead_id}/unlock  - buy a slot or the exclusive buyout
    PATCH /api/leads/{lead_id}/status - admin pause / close / reopen
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from src.api.api_key_auth import verify_api_key
from src.api.rate_limit import limiter, write_rate_limit
from src.core.enums import EligibilityReason, UnlockStatus
from src.core.exceptions import LedgerUnavailableError, WalletNotFoundError
from src.database import crud
from src.database.engine import get_session
from src.database.models import Lead, LeadStatus, LeadUnlock
from src.services.lead_intake import create_lead
from src.services.slot_allocator import SlotAllocator, utc_now
from src.services.unlock_service import unlock_service


router = APIRouter(prefix="/leads", tags=["leads"], dependencies=[Depends(verify_api_key)])


# ============================================================================
# REQUEST MODELS
# ============================================================================


class UnlockRequest(BaseModel):
    """Request model for unlocking a lead"""
    agent_id: int = Field(..., description="Paying agent")
    exclusive: bool = Field(default=False, description="Exclusive buyout instead of a slot")


class LeadStatusRequest(BaseModel):
    status: LeadStatus


# HTTP status per unlock outcome; NOT_ELIGIBLE is refined by reason
UNLOCK_HTTP_STATUS = {
    UnlockStatus.SUCCESS: 200,
    UnlockStatus.ALREADY_UNLOCKED: 200,
    UnlockStatus.INSUFFICIENT_FUNDS: 402,
    UnlockStatus.NOT_VERIFIED: 403,
    UnlockStatus.NOT_ELIGIBLE: 409,
}


# ============================================================================
# SERIALIZERS
# ============================================================================


def lead_to_dict(lead: Lead, include_contact: bool = False) -> Dict[str, Any]:
    now = utc_now()
    data = {
        "id": lead.id,
        "property_type": lead.property_type,
        "location": lead.location,
        "budget": lead.budget,
        "bedrooms": lead.bedrooms,
        "move_in_date": lead.move_in_date,
        "notes": lead.notes,
        "base_price": lead.base_price,
        "claimed_slots": lead.claimed_slots,
        "max_slots": lead.max_slots,
        "is_exclusive": lead.is_exclusive,
        "status": lead.status,
        "market_state": SlotAllocator.market_state(lead, now).value,
        "expires_at": SlotAllocator.expires_at(lead).isoformat(),
        "views": lead.views,
        "contacts": lead.contacts,
        "created_at": lead.created_at.isoformat(),
    }
    if include_contact:
        data.update(
            tenant_name=lead.tenant_name,
            tenant_phone=lead.tenant_phone,
            tenant_email=lead.tenant_email,
        )
    return data


def unlock_to_dict(unlock: Optional[LeadUnlock]) -> Optional[Dict[str, Any]]:
    if unlock is None:
        return None
    return {
        "id": unlock.id,
        "agent_id": unlock.agent_id,
        "lead_id": unlock.lead_id,
        "cost_paid": unlock.cost_paid,
        "is_exclusive": unlock.is_exclusive,
        "contact_type": unlock.contact_type,
        "refunded": unlock.refunded,
    }


# ============================================================================
# ENDPOINTS
# ============================================================================


@router.post("", status_code=201)
async def intake_lead(
    payload: Dict[str, Any],
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Create a lead from any supported payload shape

    Returns:
        {"success": true, "lead": {...}}
    """
    try:
        lead = await create_lead(session, payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"success": True, "lead": lead_to_dict(lead, include_contact=True)}


@router.get("/{lead_id}")
async def get_lead(
    lead_id: int,
    agent_id: Optional[int] = Query(None, description="Viewing agent"),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Lead card; tenant contact details are included only for slot holders
    """
    lead = await crud.get_lead(session, lead_id)
    if lead is None:
        raise HTTPException(status_code=404, detail="Lead not found")

    await crud.increment_lead_views(session, lead_id)

    unlocked = False
    if agent_id is not None:
        unlocked = await crud.get_unlock(session, agent_id, lead_id) is not None

    return {
        "success": True,
        "unlocked": unlocked,
        "lead": lead_to_dict(lead, include_contact=unlocked),
    }


@router.get("/{lead_id}/quote")
async def get_quote(
    lead_id: int,
    agent_id: Optional[int] = Query(None, description="Agent asking for the quote"),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Price the next unlock exactly as the unlock endpoint would charge it
    """
    quote = await unlock_service.quote(session, lead_id, agent_id=agent_id)
    if quote is None:
        raise HTTPException(status_code=404, detail="Lead not found")

    return {
        "success": True,
        "lead_id": quote.lead_id,
        "eligible": quote.eligible,
        "price": quote.price,
        "exclusive_price": quote.exclusive_price,
        "tier": quote.tier,
        "slots_remaining": quote.slots_remaining,
        "reason": quote.reason.value if quote.reason else None,
    }


@router.post("/{lead_id}/unlock")
@limiter.limit(write_rate_limit)
async def unlock_lead(
    lead_id: int,
    payload: UnlockRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Unlock a lead for an agent

    Status codes:
        200 success or already unlocked
        402 insufficient funds
        403 agent not verified
        404 lead or wallet not found
        409 lead not eligible (sold out, exclusive, expired, ...)
        503 ledger unavailable, safe to retry
    """
    try:
        result = await unlock_service.unlock(
            session, payload.agent_id, lead_id, exclusive=payload.exclusive
        )
    except LedgerUnavailableError as e:
        logger.error(f"Unlock unavailable: {e}")
        raise HTTPException(
            status_code=503,
            detail={"success": False, "error": "ledger_unavailable", "retryable": True},
        )
    except WalletNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    body = {
        "success": result.success,
        "status": result.status.value,
        "reason": result.reason.value if result.reason else None,
        "price": result.price,
        "new_balance": result.new_balance,
        "unlock": unlock_to_dict(result.unlock),
    }

    if not result.success:
        status_code = UNLOCK_HTTP_STATUS[result.status]
        if result.reason == EligibilityReason.LEAD_NOT_FOUND:
            status_code = 404
        raise HTTPException(status_code=status_code, detail=body)

    lead = await crud.get_lead(session, lead_id)
    body["lead"] = lead_to_dict(lead, include_contact=True)
    return body


@router.patch("/{lead_id}/status")
async def change_lead_status(
    lead_id: int,
    request: LeadStatusRequest,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Administrative status change; sold slots are untouched"""
    lead = await crud.update_lead_status(session, lead_id, request.status)
    if lead is None:
        raise HTTPException(status_code=404, detail="Lead not found")
    return {"success": True, "lead": lead_to_dict(lead)}
