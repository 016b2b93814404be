"""
Campaign Overlap Resolver — which promotional campaigns touch a date or a
forecast month.

Campaigns (offers) are process-wide: one campaign applies to every
company. A campaign overlaps a forecast month when its inclusive
[start_date, end_date] range intersects that calendar month. Campaigns
with is_active = False never overlap, whatever their dates.

When several campaigns overlap the same month, the most recently created
one names the month (created_at descending, then id descending).
"""

from __future__ import annotations

import uuid
from calendar import monthrange
from collections.abc import Iterable
from datetime import date, datetime
from typing import NamedTuple

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import NotFoundError, ValidationError
from core.tenancy import Caller, RequiredRole, require_role
from db.models import Offer

logger = structlog.get_logger()


class MonthOverlay(NamedTuple):
    has_active_offer: bool
    offer_name: str | None


# ── Calendar helpers ──────────────────────────────────────────────────────


def add_months(base: date, months: int) -> date:
    """First day of the month `months` after the month containing `base`."""
    index = base.year * 12 + (base.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def month_bounds(month_start: date) -> tuple[date, date]:
    first = month_start.replace(day=1)
    last = first.replace(day=monthrange(first.year, first.month)[1])
    return first, last


def parse_month_key(month: str) -> date:
    """'YYYY-MM' → first day of that month."""
    year, month_num = month.split("-")[:2]
    return date(int(year), int(month_num), 1)


def month_key(value: date) -> str:
    return value.strftime("%Y-%m")


# ── Overlap rules ─────────────────────────────────────────────────────────


def is_currently_active(offer: Offer, today: date | None = None) -> bool:
    today = today or date.today()
    return bool(offer.is_active) and offer.start_date <= today <= offer.end_date


def active_offers_for(offers: Iterable[Offer], on_date: date) -> set[Offer]:
    return {offer for offer in offers if is_currently_active(offer, on_date)}


def overlaps_month(offer: Offer, month_index: int, base_date: date) -> bool:
    if not offer.is_active:
        return False
    first, last = month_bounds(add_months(base_date, month_index))
    return offer.start_date <= last and offer.end_date >= first


def _recency_key(offer: Offer) -> tuple:
    return (offer.created_at or datetime.min, str(offer.id))


def resolve_month(offers: Iterable[Offer], month_index: int, base_date: date) -> MonthOverlay:
    overlapping = [offer for offer in offers if overlaps_month(offer, month_index, base_date)]
    if not overlapping:
        return MonthOverlay(False, None)
    newest = max(overlapping, key=_recency_key)
    return MonthOverlay(True, newest.name)


# ── Persistence ───────────────────────────────────────────────────────────


async def load_offers(db: AsyncSession) -> list[Offer]:
    result = await db.execute(select(Offer).order_by(Offer.created_at.desc()))
    return list(result.scalars().all())


async def create_offer(
    db: AsyncSession,
    caller: Caller,
    *,
    name: str,
    start_date: date,
    end_date: date,
    description: str | None = None,
    is_active: bool = True,
) -> Offer:
    require_role(caller, RequiredRole.ADMIN)
    if not name or not name.strip():
        raise ValidationError("Campaign name is required", field="name")
    if end_date < start_date:
        raise ValidationError(
            "Campaign end_date must be on or after start_date",
            field="end_date",
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
        )

    offer = Offer(
        name=name.strip(),
        start_date=start_date,
        end_date=end_date,
        description=description,
        is_active=is_active,
    )
    db.add(offer)
    await db.commit()
    await db.refresh(offer)
    logger.info("campaigns.offer.created", offer_id=str(offer.id), start=str(start_date), end=str(end_date))
    return offer


async def set_offer_active(db: AsyncSession, caller: Caller, offer_id: uuid.UUID, is_active: bool) -> Offer:
    """Soft-enable/disable a campaign. History is never deleted."""
    require_role(caller, RequiredRole.ADMIN)
    result = await db.execute(select(Offer).where(Offer.id == offer_id))
    offer = result.scalar_one_or_none()
    if offer is None:
        raise NotFoundError("Offer not found", offer_id=str(offer_id))
    offer.is_active = is_active
    await db.commit()
    await db.refresh(offer)
    logger.info("campaigns.offer.toggled", offer_id=str(offer_id), is_active=is_active)
    return offer
