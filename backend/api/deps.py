"""
SalesCast API Dependencies

Dependency injection for DB sessions, caller identity, role gates and
the forecasting services.
"""

from collections.abc import AsyncGenerator
from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from catalog.reconciler import CatalogReconciler, tenant_locks
from core.config import get_settings
from core.security import verify
from core.tenancy import Caller, RequiredRole, require_role
from db.session import AsyncSessionLocal
from ml.forecast import ForecastOrchestrator
from ml.ledger import TrainingService
from ml.model_client import ForecastModel, build_forecast_model

security = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_current_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Caller:
    """Verify the bearer token and return the caller identity."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return verify(credentials.credentials)


async def require_admin(caller: Caller = Depends(get_current_caller)) -> Caller:
    return require_role(caller, RequiredRole.ADMIN)


@lru_cache
def get_forecast_model() -> ForecastModel:
    return build_forecast_model()


def get_reconciler() -> CatalogReconciler:
    return CatalogReconciler(tenant_locks)


def get_orchestrator(model: ForecastModel = Depends(get_forecast_model)) -> ForecastOrchestrator:
    return ForecastOrchestrator(model, max_horizon_months=get_settings().forecast_max_horizon_months)


def get_training_service(
    model: ForecastModel = Depends(get_forecast_model),
    reconciler: CatalogReconciler = Depends(get_reconciler),
) -> TrainingService:
    return TrainingService(model, reconciler)
