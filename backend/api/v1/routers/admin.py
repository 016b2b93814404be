"""
Admin Router — cross-tenant administration.

Every route requires the admin role. Tenant binding does not apply here.
"""

from datetime import date, datetime
from typing import Literal
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, get_training_service, require_admin
from api.v1.routers.companies import ProductResponse, RetrainRequest, TrainingRunResponse
from core.errors import NotFoundError, ValidationError
from core.security import hash_password
from core.tenancy import Caller
from db.models import Company, Product, SaleRecord, User
from ml import ledger
from ml.ledger import TrainingService
from retail.campaigns import active_offers_for, load_offers

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class CompanyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class CompanyResponse(BaseModel):
    id: UUID
    name: str
    created_at: datetime

    model_config = {"from_attributes": True}


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=8)
    role: Literal["admin", "company"]
    company_id: UUID | None = None


class UserResponse(BaseModel):
    id: UUID
    name: str
    email: str
    role: str
    company_id: UUID | None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class DashboardResponse(BaseModel):
    total_users: int
    total_companies: int
    total_products: int
    total_sale_records: int
    active_offers: int
    model_accuracy: float | None


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/dashboard", response_model=DashboardResponse)
async def dashboard(
    caller: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Platform-wide counts and the current model accuracy."""
    today = date.today()

    async def _count(query) -> int:
        result = await db.execute(query)
        return int(result.scalar() or 0)

    return DashboardResponse(
        total_users=await _count(select(func.count(User.id))),
        total_companies=await _count(select(func.count(Company.id))),
        total_products=await _count(select(func.count(Product.id))),
        total_sale_records=await _count(select(func.count(SaleRecord.id))),
        active_offers=len(active_offers_for(await load_offers(db), today)),
        model_accuracy=await ledger.current_accuracy(db),
    )


@router.get("/companies", response_model=list[CompanyResponse])
async def list_companies(
    caller: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """List all companies."""
    result = await db.execute(select(Company).order_by(Company.created_at.desc()))
    return result.scalars().all()


@router.post("/companies", response_model=CompanyResponse, status_code=201)
async def create_company(
    body: CompanyCreate,
    caller: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Create a tenant."""
    name = body.name.strip()
    existing = await db.execute(select(Company).where(Company.name == name))
    if existing.scalar_one_or_none():
        raise ValidationError("Company name already exists", field="name")

    company = Company(name=name)
    db.add(company)
    await db.commit()
    await db.refresh(company)
    logger.info("admin.company.created", company_id=str(company.id))
    return company


@router.get("/users", response_model=list[UserResponse])
async def list_users(
    caller: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """List all users."""
    result = await db.execute(select(User).order_by(User.created_at.desc()))
    return result.scalars().all()


@router.post("/users", response_model=UserResponse, status_code=201)
async def create_user(
    body: UserCreate,
    caller: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Create an admin or company account. Company accounts need an existing company."""
    email = body.email.strip().lower()
    if body.role == "company":
        if body.company_id is None:
            raise ValidationError("Company accounts require company_id", field="company_id")
        company = await db.execute(select(Company).where(Company.id == body.company_id))
        if company.scalar_one_or_none() is None:
            raise NotFoundError("Company not found", company_id=str(body.company_id))
    elif body.company_id is not None:
        raise ValidationError("Admin accounts cannot belong to a company", field="company_id")

    existing = await db.execute(select(User).where(User.email == email))
    if existing.scalar_one_or_none():
        raise ValidationError("Email already registered", field="email")

    user = User(
        name=body.name,
        email=email,
        hashed_password=hash_password(body.password),
        role=body.role,
        company_id=body.company_id,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    logger.info("admin.user.created", user_id=str(user.id), role=user.role)
    return user


@router.get("/products", response_model=list[ProductResponse])
async def list_all_products(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    caller: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """List products across every company."""
    result = await db.execute(
        select(Product).order_by(Product.company_id, Product.model_name, Product.region).offset(skip).limit(limit)
    )
    return result.scalars().all()


@router.post("/train", response_model=TrainingRunResponse, status_code=201)
async def retrain_global_model(
    body: RetrainRequest | None = None,
    caller: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: TrainingService = Depends(get_training_service),
):
    """Retrain on every company's data."""
    return await service.retrain(db, caller, None, notes=body.notes if body else None)
