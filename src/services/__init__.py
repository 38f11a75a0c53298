"""Lead marketplace core services"""
from .slot_allocator import SlotAllocator
from .wallet_service import WalletLedger
from .unlock_service import UnlockService, unlock_service
from .referral_service import ReferralService, referral_service
from .dispute_service import DisputeService, dispute_service
from .notification_service import NotificationDispatcher, notification_dispatcher

__all__ = [
    'SlotAllocator',
    'WalletLedger',
    'UnlockService',
    'unlock_service',
    'ReferralService',
    'referral_service',
    'DisputeService',
    'dispute_service',
    'NotificationDispatcher',
    'notification_dispatcher',
]
