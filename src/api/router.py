"""
FastAPI Router for the Lead Marketplace core
"""

from fastapi import APIRouter
from typing import Dict, Any

from src.database.engine import check_connection
from src.services.notification_service import notification_dispatcher

# Import sub-routers
from src.api.leads import router as leads_router
from src.api.wallets import router as wallets_router
from src.api.reports import router as reports_router
from src.api.agents import router as agents_router


# Main router
router = APIRouter()

# Include sub-routers (they carry their own prefixes)
router.include_router(leads_router)
router.include_router(wallets_router)
router.include_router(reports_router)
router.include_router(agents_router)  # Onboarding + referrals


@router.get("/status")
async def core_status() -> Dict[str, Any]:
    """
    Liveness of the pieces an unlock depends on
    """
    database_ok = await check_connection()
    return {
        "database": "ok" if database_ok else "unavailable",
        "notifications_pending": notification_dispatcher.pending(),
        "notifications_dropped": notification_dispatcher.dropped,
    }
