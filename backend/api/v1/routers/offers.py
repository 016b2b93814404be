"""
Offers Router — promotional campaigns shared by every company.
"""

from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_caller, get_db
from core.tenancy import Caller
from db.models import Offer
from retail.campaigns import create_offer, is_currently_active, load_offers, set_offer_active

router = APIRouter(prefix="/api/v1/offers", tags=["offers"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class OfferCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    start_date: date
    end_date: date
    description: str | None = None


class OfferUpdate(BaseModel):
    is_active: bool


class OfferResponse(BaseModel):
    id: UUID
    name: str
    start_date: date
    end_date: date
    description: str | None
    is_active: bool
    currently_active: bool
    created_at: datetime


def _to_response(offer: Offer) -> OfferResponse:
    return OfferResponse(
        id=offer.id,
        name=offer.name,
        start_date=offer.start_date,
        end_date=offer.end_date,
        description=offer.description,
        is_active=offer.is_active,
        currently_active=is_currently_active(offer),
        created_at=offer.created_at,
    )


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[OfferResponse])
async def list_offers(
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
):
    """List every campaign, newest first."""
    return [_to_response(offer) for offer in await load_offers(db)]


@router.post("/", response_model=OfferResponse, status_code=201)
async def add_offer(
    body: OfferCreate,
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
):
    """Create a campaign (admin only)."""
    offer = await create_offer(
        db,
        caller,
        name=body.name,
        start_date=body.start_date,
        end_date=body.end_date,
        description=body.description,
    )
    return _to_response(offer)


@router.patch("/{offer_id}", response_model=OfferResponse)
async def update_offer(
    offer_id: UUID,
    body: OfferUpdate,
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
):
    """Enable or disable a campaign (admin only)."""
    offer = await set_offer_active(db, caller, offer_id, body.is_active)
    return _to_response(offer)
