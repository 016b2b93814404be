"""
Training Router — model training history and public platform info.
"""

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_caller, get_db
from api.v1.routers.companies import TrainingRunResponse
from core.config import get_settings
from core.tenancy import Caller
from db.models import Company, Product
from ml import ledger

router = APIRouter(prefix="/api/v1", tags=["training"])


@router.get("/training/history", response_model=list[TrainingRunResponse])
async def list_training_history(
    limit: int = Query(10, ge=1, le=100),
    order: Literal["desc", "asc"] = "desc",
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
):
    """
    Most recent `limit` training runs the caller may see.

    Admins see every run. Company accounts see global runs and their own
    company's runs only.

    order=desc lists newest first; order=asc returns the same window in
    chronological order for accuracy-over-time charts.
    """
    if order == "asc":
        return await ledger.timeline(db, limit, caller)
    return await ledger.history(db, limit, caller)


@router.get("/info")
async def platform_info(db: AsyncSession = Depends(get_db)):
    """Public landing-page figures."""
    accuracy = await ledger.current_accuracy(db)
    companies = await db.execute(select(func.count(Company.id)))
    products = await db.execute(select(func.count(Product.id)))
    return {
        "name": get_settings().app_name,
        "version": get_settings().app_version,
        "model_accuracy": round(accuracy * 100, 2) if accuracy is not None else None,
        "total_companies": int(companies.scalar() or 0),
        "total_products": int(products.scalar() or 0),
    }
