# coding: utf-8
"""
Lead Marketplace Rules Configuration

Centralized configuration for slot pricing, credits, referrals and disputes.
Allows easy adjustments without database migrations.
"""

import os
from typing import Dict, List


# =======================
# SLOTS & PRICING
# =======================

# Non-exclusive unlock rights per lead
DEFAULT_MAX_SLOTS: int = int(os.getenv("DEFAULT_MAX_SLOTS", "3"))

# Default lead price when intake does not supply one
DEFAULT_BASE_PRICE: int = int(os.getenv("DEFAULT_BASE_PRICE", "250"))

# Price multiplier per claimed slot; slots past the table reuse the last entry
SLOT_PRICE_MULTIPLIERS: List[float] = [1.0, 1.5, 2.5]

# Exclusive buyout = "all 5 tiers worth" at a flat discount
EXCLUSIVE_TIER_FACTOR: float = 5.0
EXCLUSIVE_DISCOUNT: float = 0.85

# Leads accept new unlocks for this long after creation
LEAD_FRESHNESS_HOURS: int = int(os.getenv("LEAD_FRESHNESS_HOURS", "48"))


# =======================
# WALLET
# =======================

# Credits granted when an agent wallet is opened
STARTING_BALANCE: int = int(os.getenv("STARTING_BALANCE", "2"))


# =======================
# REFERRALS
# =======================

# Credited to the referrer once the referred agent is confirmed active
REFERRAL_BONUS: int = int(os.getenv("REFERRAL_BONUS", "5"))

# Credited to the referred agent at the same time
REFERRAL_WELCOME_BONUS: int = int(os.getenv("REFERRAL_WELCOME_BONUS", "2"))

REFERRAL_CODE_LENGTH: int = 8


# =======================
# UNLOCK TRANSACTION
# =======================

# Attempts for one unlock before surfacing an infrastructure failure
UNLOCK_MAX_ATTEMPTS: int = int(os.getenv("UNLOCK_MAX_ATTEMPTS", "5"))

# Per-attempt budget; an attempt past it is rolled back and retried
UNLOCK_ATTEMPT_TIMEOUT_SECONDS: float = float(
    os.getenv("UNLOCK_ATTEMPT_TIMEOUT_SECONDS", "10")
)

# Exponential backoff between attempts (seconds)
UNLOCK_RETRY_WAIT_MIN: float = 0.01
UNLOCK_RETRY_WAIT_MAX: float = 0.5


# =======================
# LEAD INTAKE
# =======================

PROPERTY_TYPES: List[str] = [
    "apartment",
    "house",
    "studio",
    "commercial",
    "land",
    "office",
    "bedsitter",
    "single_room",
]
DEFAULT_PROPERTY_TYPE: str = "apartment"

# Country code prepended to local phone numbers
DEFAULT_PHONE_COUNTRY_CODE: str = os.getenv("DEFAULT_PHONE_COUNTRY_CODE", "254")

# Move-in date assumed when a lead gives none
DEFAULT_MOVE_IN_DAYS: int = 30

DEFAULT_LOCATION: str = "Not specified"


# =======================
# DISPUTES
# =======================

REPORT_REASON_LABELS: Dict[str, str] = {
    "unreachable": "Number Unreachable",
    "fake_number": "Fake/Wrong Number",
    "already_closed": "Already Found House",
    "wrong_info": "Incorrect Details",
    "other": "Other Issue",
}

REPORT_DETAILS_MAX_LENGTH: int = 2000


# =======================
# NOTIFICATIONS
# =======================

# Outbound event queue bound; events past it are dropped with a warning
NOTIFICATION_QUEUE_SIZE: int = int(os.getenv("NOTIFICATION_QUEUE_SIZE", "1000"))


def get_reason_label(reason_code: str) -> str:
    """Human-readable label for a report reason code"""
    return REPORT_REASON_LABELS.get(reason_code, reason_code)
