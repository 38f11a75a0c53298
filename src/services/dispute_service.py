# coding: utf-8
"""
Dispute / Refund Handler

Agents report bad leads they unlocked; admins approve (refund the credits
paid) or reject. The refunded slot stays claimed: the lead is not resold.
"""

from datetime import datetime, UTC
from typing import Optional, List, Dict

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.marketplace_config import (
    REPORT_REASON_LABELS,
    REPORT_DETAILS_MAX_LENGTH,
    get_reason_label,
)
from src.core.enums import ReportOutcome, NotificationType
from src.core.results import ReportResult
from src.database import crud
from src.database.engine import atomic
from src.database.models import (
    LeadReport,
    LeadUnlock,
    ReportStatus,
    WalletTransactionType,
)
from src.services.wallet_service import WalletLedger
from src.services.notification_service import NotificationDispatcher, notification_dispatcher


class DisputeService:
    """Bad-lead reports and refunds"""

    def __init__(self, notifier: Optional[NotificationDispatcher] = None):
        self.notifier = notifier or notification_dispatcher

    async def file_report(
        self,
        session: AsyncSession,
        agent_id: int,
        lead_id: int,
        reason_code: str,
        details: Optional[str] = None,
    ) -> ReportResult:
        """
        File a bad-lead report against an unlock the agent paid for

        Args:
            session: Database session
            agent_id: Reporting agent
            lead_id: Reported lead
            reason_code: One of REPORT_REASON_LABELS
            details: Free text, truncated to REPORT_DETAILS_MAX_LENGTH

        Returns:
            ReportResult (INVALID_REASON, NOT_UNLOCKED, ALREADY_REFUNDED,
            DUPLICATE_REPORT on failure)
        """
        if reason_code not in REPORT_REASON_LABELS:
            logger.info(f"Report by agent {agent_id} rejected: invalid reason {reason_code!r}")
            return ReportResult(status=ReportOutcome.INVALID_REASON)

        unlock = await crud.get_unlock(session, agent_id, lead_id)
        if unlock is None:
            return ReportResult(status=ReportOutcome.NOT_UNLOCKED)

        if unlock.refunded:
            return ReportResult(status=ReportOutcome.ALREADY_REFUNDED)

        if details:
            details = details.strip()[:REPORT_DETAILS_MAX_LENGTH] or None

        report = LeadReport(
            reporter_id=agent_id,
            lead_id=lead_id,
            unlock_id=unlock.id,
            reason_code=reason_code,
            details=details,
            status=ReportStatus.PENDING.value,
            credits_paid=unlock.cost_paid,
            refunded_amount=0,
            open_key=LeadReport.make_open_key(agent_id, lead_id),
        )

        try:
            async with atomic(session):
                session.add(report)
                await session.flush()
        except IntegrityError:
            # open_key is unique: one pending report per (agent, lead)
            logger.info(f"Duplicate report by agent {agent_id} on lead {lead_id}")
            existing = await crud.get_open_report(session, agent_id, lead_id)
            return ReportResult(status=ReportOutcome.DUPLICATE_REPORT, report=existing)

        logger.info(
            f"Report #{report.id} filed by agent {agent_id} on lead {lead_id}: "
            f"{get_reason_label(reason_code)} ({unlock.cost_paid} credits at stake)"
        )
        return ReportResult(status=ReportOutcome.SUCCESS, report=report)

    async def resolve_report(
        self,
        session: AsyncSession,
        report_id: int,
        approve: bool,
        admin_id: Optional[int] = None,
        admin_notes: Optional[str] = None,
    ) -> ReportResult:
        """
        Approve (refund) or reject a pending report

        The pending -> resolved transition is a conditional update, so two
        admins resolving the same report at once refund it at most once.

        Args:
            session: Database session
            report_id: Report to resolve
            approve: True refunds credits_paid, False only records the decision
            admin_id: Resolving admin
            admin_notes: Decision notes (rejection reason)

        Returns:
            ReportResult with refunded_amount set on approval
        """
        report = await crud.get_report(session, report_id)
        if report is None:
            return ReportResult(status=ReportOutcome.REPORT_NOT_FOUND)

        if report.status != ReportStatus.PENDING.value:
            return ReportResult(status=ReportOutcome.ALREADY_RESOLVED, report=report)

        new_status = ReportStatus.APPROVED if approve else ReportStatus.REJECTED
        refund = report.credits_paid if approve else 0

        async with atomic(session):
            stmt = (
                update(LeadReport)
                .where(
                    LeadReport.id == report_id,
                    LeadReport.status == ReportStatus.PENDING.value,
                )
                .values(
                    status=new_status.value,
                    open_key=None,
                    admin_id=admin_id,
                    admin_notes=admin_notes,
                    refunded_amount=refund,
                    resolved_at=datetime.now(UTC),
                )
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)

            if result.rowcount != 1:
                outcome = ReportOutcome.ALREADY_RESOLVED
            else:
                outcome = ReportOutcome.SUCCESS
                if approve:
                    await self._refund(session, report, refund)

        report = await crud.get_report(session, report_id)

        if outcome != ReportOutcome.SUCCESS:
            logger.info(f"Report #{report_id} was resolved concurrently")
            return ReportResult(status=outcome, report=report)

        logger.info(
            f"Report #{report_id} {new_status.value} by admin {admin_id}"
            + (f", refunded {refund} credits to agent {report.reporter_id}" if approve else "")
        )
        self.notifier.publish(
            NotificationType.REPORT_RESOLVED,
            reportId=report_id,
            agentId=report.reporter_id,
            leadId=report.lead_id,
            approved=approve,
            refundedAmount=refund,
        )
        return ReportResult(status=outcome, report=report, refunded_amount=refund)

    @staticmethod
    async def _refund(session: AsyncSession, report: LeadReport, amount: int) -> None:
        # claimed_slots is left alone: a refunded slot is not resold
        stmt = (
            update(LeadUnlock)
            .where(LeadUnlock.id == report.unlock_id, LeadUnlock.refunded.is_(False))
            .values(refunded=True, refunded_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)

        if amount > 0:
            await WalletLedger.credit(
                session,
                report.reporter_id,
                amount,
                reason=f"Refund - Bad lead report #{report.id}",
                transaction_type=WalletTransactionType.REFUND_CREDIT,
                related_lead_id=report.lead_id,
            )

    @staticmethod
    async def list_reports(
        session: AsyncSession,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Dict]:
        """Reports for the admin queue, newest first"""
        reports = await crud.list_reports(session, status=status, limit=limit, offset=offset)
        return [
            {
                "id": report.id,
                "reporter_id": report.reporter_id,
                "lead_id": report.lead_id,
                "reason_code": report.reason_code,
                "reason": get_reason_label(report.reason_code),
                "details": report.details,
                "status": report.status,
                "credits_paid": report.credits_paid,
                "refunded_amount": report.refunded_amount,
                "admin_id": report.admin_id,
                "admin_notes": report.admin_notes,
                "created_at": report.created_at.isoformat(),
                "resolved_at": report.resolved_at.isoformat() if report.resolved_at else None,
            }
            for report in reports
        ]


# Global instance
dispute_service = DisputeService()
