"""
Auth Router — local credential issuance.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_caller, get_db
from core.errors import NotFoundError, UnauthenticatedError
from core.security import create_token_for_user, verify_password
from core.tenancy import Caller
from db.models import User

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str
    company_id: UUID | None


class MeResponse(BaseModel):
    id: UUID
    name: str
    email: str
    role: str
    company_id: UUID | None
    is_active: bool

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Exchange email + password for a bearer token."""
    result = await db.execute(select(User).where(User.email == body.email.strip().lower()))
    user = result.scalar_one_or_none()
    if user is None or not verify_password(body.password, user.hashed_password):
        raise UnauthenticatedError("Invalid email or password")
    if not user.is_active:
        raise UnauthenticatedError("Account is disabled")
    return TokenResponse(
        access_token=create_token_for_user(user),
        role=user.role,
        company_id=user.company_id,
    )


@router.get("/me", response_model=MeResponse)
async def me(
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
):
    """Return the authenticated user's profile."""
    result = await db.execute(select(User).where(User.id == caller.user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User not found", user_id=str(caller.user_id))
    return user
