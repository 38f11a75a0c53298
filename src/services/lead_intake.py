# coding: utf-8
"""
Lead Intake

Maps raw lead payloads (web form, ad integrations, admin entry) onto one
canonical schema before anything reaches the core. Downstream code reads
Lead columns only; it never probes alternative payload shapes.
"""

import re
from datetime import date, timedelta
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.marketplace_config import (
    DEFAULT_BASE_PRICE,
    DEFAULT_MAX_SLOTS,
    PROPERTY_TYPES,
    DEFAULT_PROPERTY_TYPE,
    DEFAULT_PHONE_COUNTRY_CODE,
    DEFAULT_MOVE_IN_DAYS,
    DEFAULT_LOCATION,
)
from src.database import crud
from src.database.models import Lead, LeadStatus


REQUIRED_FIELDS = ("tenant_name", "tenant_phone")


class LeadCreate(BaseModel):
    """Canonical lead shape accepted by the core"""
    tenant_name: str = Field(..., min_length=1, max_length=255, description="Tenant display name")
    tenant_phone: str = Field(..., min_length=4, max_length=50, description="E.164 phone number")
    tenant_email: Optional[str] = Field(None, max_length=255)
    property_type: str = Field(default=DEFAULT_PROPERTY_TYPE)
    location: str = Field(default=DEFAULT_LOCATION, max_length=255)
    budget: Optional[int] = Field(None, ge=0, description="Monthly budget")
    bedrooms: Optional[int] = Field(None, ge=0)
    move_in_date: Optional[str] = Field(None, description="ISO date")
    notes: Optional[str] = None
    base_price: int = Field(default=DEFAULT_BASE_PRICE, ge=1, description="Unlock price in credits")
    max_slots: int = Field(default=DEFAULT_MAX_SLOTS, ge=1, description="Non-exclusive slots")


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a phone number to +<country><number>

    Examples:
        "0712 345 678" -> "+254712345678"
        "254712345678" -> "+254712345678"
    """
    if not phone:
        return None

    cleaned = re.sub(r"[^\d+]", "", str(phone))
    if not cleaned:
        return None

    if cleaned.startswith("+"):
        return cleaned
    if cleaned.startswith("0"):
        return f"+{DEFAULT_PHONE_COUNTRY_CODE}{cleaned[1:]}"
    if cleaned.startswith(DEFAULT_PHONE_COUNTRY_CODE):
        return f"+{cleaned}"
    return f"+{DEFAULT_PHONE_COUNTRY_CODE}{cleaned}"


def normalize_property_type(value: Optional[str]) -> str:
    if not value:
        return DEFAULT_PROPERTY_TYPE
    normalized = str(value).strip().lower().replace(" ", "_")
    return normalized if normalized in PROPERTY_TYPES else DEFAULT_PROPERTY_TYPE


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _first(*values: Any) -> Any:
    """First value that is not None or blank"""
    for value in values:
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _default_move_in_date(today: Optional[date] = None) -> str:
    today = today or date.today()
    return (today + timedelta(days=DEFAULT_MOVE_IN_DAYS)).isoformat()


def normalize_lead_payload(raw: Dict[str, Any], today: Optional[date] = None) -> LeadCreate:
    """
    Resolve every known payload shape into a LeadCreate

    Fields may arrive top-level, under "requirements", or under legacy
    names (name/phone/email, budget_max). Top-level wins.

    Args:
        raw: Incoming payload
        today: Reference date for the default move-in date

    Returns:
        Validated LeadCreate

    Raises:
        ValueError: a required field is missing
        pydantic.ValidationError: a field is out of range
    """
    requirements = raw.get("requirements")
    if not isinstance(requirements, dict):
        requirements = {}

    def pick(*keys: str) -> Any:
        return _first(
            *(raw.get(key) for key in keys),
            *(requirements.get(key) for key in keys),
        )

    name = pick("tenant_name", "name")
    phone = normalize_phone(pick("tenant_phone", "phone"))

    missing = [
        field for field, value in zip(REQUIRED_FIELDS, (name, phone)) if not value
    ]
    if missing:
        raise ValueError(f"Missing required fields: {', '.join(missing)}")

    email = pick("tenant_email", "email")
    notes = pick("notes", "additional_requirements")
    if notes is None and isinstance(raw.get("requirements"), str):
        notes = raw["requirements"]

    data = {
        "tenant_name": str(name).strip(),
        "tenant_phone": phone,
        "tenant_email": str(email).strip().lower() if email else None,
        "property_type": normalize_property_type(pick("property_type")),
        "location": str(pick("location") or DEFAULT_LOCATION).strip(),
        "budget": _to_int(pick("budget", "budget_max")),
        "bedrooms": _to_int(pick("bedrooms")),
        "move_in_date": str(pick("move_in_date") or _default_move_in_date(today)),
        "notes": str(notes).strip() if notes else None,
    }

    base_price = _to_int(raw.get("base_price"))
    if base_price is not None:
        data["base_price"] = base_price
    max_slots = _to_int(raw.get("max_slots"))
    if max_slots is not None:
        data["max_slots"] = max_slots

    return LeadCreate.model_validate(data)


def build_lead(payload: LeadCreate) -> Lead:
    """Fresh, unclaimed Lead row for a canonical payload"""
    return Lead(
        **payload.model_dump(),
        claimed_slots=0,
        is_exclusive=False,
        status=LeadStatus.ACTIVE.value,
        views=0,
        contacts=0,
    )


async def create_lead(session: AsyncSession, raw: Dict[str, Any]) -> Lead:
    """
    Normalize a raw payload and persist it as an active lead (commits)

    Raises:
        ValueError / pydantic.ValidationError: payload cannot be normalized
    """
    payload = normalize_lead_payload(raw)
    lead = await crud.add_lead(session, build_lead(payload))
    logger.info(f"Lead intake: #{lead.id} {lead.property_type} in {lead.location}")
    return lead
