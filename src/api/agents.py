# coding: utf-8
"""
Agents & Referrals API

Endpoints:
    POST /api/agents                        - onboard agent (+ wallet, + referral code)
    GET  /api/agents/{agent_id}/referrals   - referral stats
    POST /api/agents/{agent_id}/referral    - link a referral code after signup
    POST /api/referrals/settle              - pay out once the referred agent is active
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from src.api.api_key_auth import verify_api_key
from src.api.rate_limit import limiter, write_rate_limit
from src.core.enums import ReferralOutcome
from src.core.exceptions import WalletNotFoundError
from src.core.results import ReferralResult
from src.database.engine import get_session
from src.services.onboarding_service import onboard_agent
from src.services.referral_service import referral_service


router = APIRouter(tags=["agents"], dependencies=[Depends(verify_api_key)])


class OnboardRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    referral_code: Optional[str] = Field(None, max_length=20)


class ApplyReferralRequest(BaseModel):
    referral_code: str = Field(..., min_length=1, max_length=20)


class SettleReferralRequest(BaseModel):
    referrer_id: int
    referred_id: int


REFERRAL_HTTP_STATUS = {
    ReferralOutcome.INVALID_CODE: 400,
    ReferralOutcome.SELF_REFERRAL: 400,
    ReferralOutcome.ALREADY_REFERRED: 409,
    ReferralOutcome.ALREADY_SETTLED: 409,
    ReferralOutcome.NOT_FOUND: 404,
}


def referral_body(result: ReferralResult) -> Dict[str, Any]:
    referral = result.referral
    return {
        "success": result.success,
        "status": result.status.value,
        "credited": result.credited,
        "referral": {
            "referrer_id": referral.referrer_id,
            "referred_id": referral.referred_id,
            "bonus_awarded": referral.bonus_awarded,
        } if referral else None,
    }


@router.post("/agents", status_code=201)
async def create_agent(
    request: OnboardRequest,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Onboard an agent with a starting balance

    An invalid referral code is reported in the response but never blocks
    the signup.
    """
    try:
        agent, referral = await onboard_agent(
            session, request.name, request.email, referral_code=request.referral_code
        )
    except IntegrityError:
        logger.info(f"Onboarding rejected: {request.email} already registered")
        raise HTTPException(status_code=409, detail="Email already registered")

    return {
        "success": True,
        "agent": {
            "id": agent.id,
            "name": agent.name,
            "email": agent.email,
            "referral_code": agent.referral_code,
            "verification_status": agent.verification_status,
        },
        "referral": referral_body(referral) if referral else None,
    }


@router.get("/agents/{agent_id}/referrals")
async def get_referral_stats(
    agent_id: int,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    stats = await referral_service.get_referral_stats(session, agent_id)
    if stats["referral_code"] is None:
        raise HTTPException(status_code=404, detail="Agent not found")
    return {"success": True, **stats}


@router.post("/agents/{agent_id}/referral")
async def apply_referral_code(
    agent_id: int,
    request: ApplyReferralRequest,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    result = await referral_service.register_referral(session, agent_id, request.referral_code)
    if not result.success:
        raise HTTPException(
            status_code=REFERRAL_HTTP_STATUS[result.status], detail=referral_body(result)
        )
    return referral_body(result)


@router.post("/referrals/settle")
@limiter.limit(write_rate_limit)
async def settle_referral(
    payload: SettleReferralRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Credit the referral bonus; a repeat call answers 409 already_settled
    """
    try:
        result = await referral_service.settle_referral(
            session, payload.referrer_id, payload.referred_id
        )
    except WalletNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    if not result.success:
        raise HTTPException(
            status_code=REFERRAL_HTTP_STATUS[result.status], detail=referral_body(result)
        )
    return referral_body(result)
