"""
Companies Router — tenant-scoped catalog, analytics, forecast and training.

Every route is bound to the caller's own company: a company account
requesting another company's id gets 403, whatever the operation.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import (
    get_current_caller,
    get_db,
    get_orchestrator,
    get_training_service,
)
from catalog.analytics import get_analytics
from catalog.reconciler import delete_product, list_products, list_sales
from core.config import get_settings
from core.errors import ValidationError
from core.tenancy import Caller
from ml.forecast import ForecastOrchestrator
from ml.ledger import TrainingService

router = APIRouter(prefix="/api/v1/companies/{company_id}", tags=["companies"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class ProductResponse(BaseModel):
    id: UUID
    company_id: UUID
    model_name: str
    region: str
    battery_life: float | None
    display_type: str | None
    brand: str | None
    features: dict[str, bool]
    price: float
    discount_price: float | None
    effective_price: float
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class SaleRecordResponse(BaseModel):
    id: UUID
    product_id: UUID
    model_name: str
    region: str
    month: str
    sales_count: int
    revenue: float


class TrainingRunResponse(BaseModel):
    id: UUID
    training_date: datetime
    accuracy: float
    notes: str | None
    source: str
    company_id: UUID | None
    rows_trained: int

    model_config = {"from_attributes": True}


class RowFailureResponse(BaseModel):
    row_number: int
    reason: str
    kind: str
    field: str | None


class IngestResponse(BaseModel):
    message: str
    products_created: int
    products_updated: int
    sales_added: int
    units_added: int
    rows_succeeded: int
    rows_failed: int
    failures: list[RowFailureResponse]
    training_run: TrainingRunResponse | None = None


class PredictionResponse(BaseModel):
    product_id: UUID
    month_index: int
    month: str
    predicted_sales: float
    confidence: float
    has_active_offer: bool
    offer_name: str | None


class ForecastSummaryResponse(BaseModel):
    total_predicted_units: float
    average_confidence: float
    promotional_months: int
    peak_month_index: int


class ProductForecastResponse(BaseModel):
    product_id: UUID
    model_name: str
    region: str
    last_known_month: str
    predictions: list[PredictionResponse]
    summary: ForecastSummaryResponse


class PredictionSetResponse(BaseModel):
    company_id: UUID
    horizon_months: int
    generated_at: datetime
    total_predicted_units: float
    promotional_months: int
    products: list[ProductForecastResponse]


class FeatureImportanceItem(BaseModel):
    feature: str
    importance: float
    impact: str


class FeatureImportanceResponse(BaseModel):
    feature_importance: list[FeatureImportanceItem]


class RetrainRequest(BaseModel):
    notes: str | None = None


class CsvTrainingResponse(BaseModel):
    run: TrainingRunResponse
    ingest: IngestResponse


def _ingest_response(result, run=None) -> IngestResponse:
    return IngestResponse(
        message=f"Ingested {result.rows_succeeded} row(s), {result.rows_failed} failed",
        training_run=TrainingRunResponse.model_validate(run) if run is not None else None,
        **result.to_dict(),
    )


async def _read_upload(file: UploadFile) -> bytes:
    max_bytes = get_settings().max_upload_bytes
    content = await file.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise ValidationError("Uploaded file is too large", field="file", max_bytes=max_bytes)
    return content


# ─── Catalog ────────────────────────────────────────────────────────────────


@router.post("/sales/upload", response_model=IngestResponse)
async def upload_sales_csv(
    company_id: UUID,
    file: UploadFile = File(...),
    notes: str | None = Form(None),
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
    service: TrainingService = Depends(get_training_service),
):
    """
    Ingest a sales CSV into the company's catalog (additive), then retrain.

    Every upload that ingests at least one row appends a csv run to the
    training ledger, carrying `notes`. A file with no ingestible row is
    rejected with its row failures and records nothing.
    """
    content = await _read_upload(file)
    result = await service.train_with_csv(db, caller, company_id, content, notes=notes)
    return _ingest_response(result.ingest, run=result.run)


@router.get("/sales", response_model=list[SaleRecordResponse])
async def get_sales(
    company_id: UUID,
    limit: int = Query(100, ge=1, le=1000),
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
):
    """List the company's monthly sale records, newest month first."""
    rows = await list_sales(db, caller, company_id, limit=limit)
    return [
        SaleRecordResponse(
            id=record.id,
            product_id=product.id,
            model_name=product.model_name,
            region=product.region,
            month=record.month,
            sales_count=record.sales_count,
            revenue=round(record.revenue, 2),
        )
        for record, product in rows
    ]


@router.get("/products", response_model=list[ProductResponse])
async def get_products(
    company_id: UUID,
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
):
    """List the company's products."""
    return await list_products(db, caller, company_id)


@router.delete("/products/{product_id}", status_code=204)
async def remove_product(
    company_id: UUID,
    product_id: UUID,
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
):
    """Delete a product and its sale records."""
    await delete_product(db, caller, company_id, product_id)


@router.get("/analytics")
async def analytics(
    company_id: UUID,
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
):
    """Sales by region and month, top products and revenue stats."""
    return await get_analytics(db, caller, company_id)


# ─── Forecasting ────────────────────────────────────────────────────────────


@router.get("/predictions", response_model=PredictionSetResponse)
async def get_predictions(
    company_id: UUID,
    months: int | None = Query(None, ge=1),
    timeout: float | None = Query(None, gt=0),
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
    orchestrator: ForecastOrchestrator = Depends(get_orchestrator),
):
    """Forecast the next `months` months for every product, with campaign overlay."""
    settings = get_settings()
    ceiling = settings.forecast_timeout_seconds
    prediction_set = await orchestrator.predict(
        db,
        caller,
        company_id,
        horizon_months=months or settings.forecast_default_horizon_months,
        timeout=min(timeout, ceiling) if timeout else ceiling,
    )
    return prediction_set.to_dict()


@router.get("/feature-importance", response_model=FeatureImportanceResponse)
async def get_feature_importance(
    company_id: UUID,
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
    orchestrator: ForecastOrchestrator = Depends(get_orchestrator),
):
    """Which product features correlate with sales, most important first."""
    items = await orchestrator.feature_importance(
        db, caller, company_id, timeout=get_settings().forecast_timeout_seconds
    )
    return {"feature_importance": items}


# ─── Training ───────────────────────────────────────────────────────────────


@router.post("/train", response_model=TrainingRunResponse, status_code=201)
async def retrain_company_model(
    company_id: UUID,
    body: RetrainRequest | None = None,
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
    service: TrainingService = Depends(get_training_service),
):
    """Retrain on the company's current catalog."""
    return await service.retrain(db, caller, company_id, notes=body.notes if body else None)


@router.post("/train-csv", response_model=CsvTrainingResponse, status_code=201)
async def train_with_csv(
    company_id: UUID,
    file: UploadFile = File(...),
    notes: str | None = Form(None),
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
    service: TrainingService = Depends(get_training_service),
):
    """Ingest a CSV, then retrain. Partial row failures are reported alongside the run."""
    content = await _read_upload(file)
    result = await service.train_with_csv(db, caller, company_id, content, notes=notes)
    return CsvTrainingResponse(
        run=TrainingRunResponse.model_validate(result.run),
        ingest=_ingest_response(result.ingest),
    )
