# coding: utf-8
"""
Bad-Lead Reports API

Endpoints:
    POST /api/reports                        - agent files a report
    GET  /api/reports                        - admin queue
    POST /api/reports/{report_id}/resolve    - admin approves (refund) or rejects
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.api_key_auth import verify_api_key
from src.api.rate_limit import limiter, write_rate_limit
from src.core.enums import ReportOutcome
from src.core.exceptions import WalletNotFoundError
from src.database.engine import get_session
from src.database.models import LeadReport, ReportStatus
from src.services.dispute_service import dispute_service


router = APIRouter(prefix="/reports", tags=["reports"], dependencies=[Depends(verify_api_key)])


class FileReportRequest(BaseModel):
    agent_id: int
    lead_id: int
    reason_code: str = Field(..., description="unreachable, fake_number, already_closed, wrong_info, other")
    details: Optional[str] = None


class ResolveReportRequest(BaseModel):
    approve: bool
    admin_id: Optional[int] = None
    admin_notes: Optional[str] = Field(None, max_length=2000)


REPORT_HTTP_STATUS = {
    ReportOutcome.INVALID_REASON: 400,
    ReportOutcome.NOT_UNLOCKED: 403,
    ReportOutcome.ALREADY_REFUNDED: 409,
    ReportOutcome.DUPLICATE_REPORT: 409,
    ReportOutcome.REPORT_NOT_FOUND: 404,
    ReportOutcome.ALREADY_RESOLVED: 409,
}


def report_to_dict(report: Optional[LeadReport]) -> Optional[Dict[str, Any]]:
    if report is None:
        return None
    return {
        "id": report.id,
        "reporter_id": report.reporter_id,
        "lead_id": report.lead_id,
        "reason_code": report.reason_code,
        "status": report.status,
        "credits_paid": report.credits_paid,
        "refunded_amount": report.refunded_amount,
    }


@router.post("", status_code=201)
@limiter.limit(write_rate_limit)
async def file_report(
    payload: FileReportRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    result = await dispute_service.file_report(
        session, payload.agent_id, payload.lead_id, payload.reason_code, payload.details
    )
    body = {
        "success": result.success,
        "status": result.status.value,
        "report": report_to_dict(result.report),
    }
    if not result.success:
        raise HTTPException(status_code=REPORT_HTTP_STATUS[result.status], detail=body)
    return body


@router.get("")
async def list_reports(
    status: Optional[ReportStatus] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    reports = await dispute_service.list_reports(
        session, status=status.value if status else None, limit=limit, offset=offset
    )
    return {"success": True, "reports": reports}


@router.post("/{report_id}/resolve")
async def resolve_report(
    report_id: int,
    request: ResolveReportRequest,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Approve (refund credits_paid) or reject a pending report
    """
    try:
        result = await dispute_service.resolve_report(
            session,
            report_id,
            request.approve,
            admin_id=request.admin_id,
            admin_notes=request.admin_notes,
        )
    except WalletNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    body = {
        "success": result.success,
        "status": result.status.value,
        "refunded_amount": result.refunded_amount,
        "report": report_to_dict(result.report),
    }
    if not result.success:
        raise HTTPException(status_code=REPORT_HTTP_STATUS[result.status], detail=body)
    return body
