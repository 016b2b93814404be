"""
Forecast Orchestrator — per-product demand forecasts with campaign overlay.

For each product in the tenant's catalog:
  1. Send the full monthly history (ascending, gaps preserved) to the model
  2. Validate the returned points against the model contract
  3. Map month index i to (last known month + i) and annotate it with the
     campaign overlapping that calendar month
  4. Summarize: total units, average confidence, promotional months, peak

The whole model interaction runs under a caller-supplied timeout. The
orchestrator is read-only with respect to the catalog.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import InsufficientDataError, UpstreamError, UpstreamTimeoutError, ValidationError
from core.tenancy import Caller, bind_tenant
from db.models import Offer
from ml.datasets import ProductHistory, load_catalog_snapshot, load_sales_frame
from ml.model_client import ForecastModel
from retail.campaigns import add_months, load_offers, month_key, parse_month_key, resolve_month

logger = structlog.get_logger()

HIGH_IMPACT = 0.25
MEDIUM_IMPACT = 0.10


class ModelForecastPoint(BaseModel):
    """One point as returned by the forecasting model."""

    month: int = Field(..., ge=1)
    predicted_sales: float = Field(..., ge=0)
    confidence: float = Field(..., ge=0, le=1)


@dataclass
class Prediction:
    product_id: uuid.UUID
    month_index: int
    month: str  # calendar month of the index, YYYY-MM
    predicted_sales: float
    confidence: float
    has_active_offer: bool
    offer_name: str | None


@dataclass
class ForecastSummary:
    total_predicted_units: float
    average_confidence: float
    promotional_months: int
    peak_month_index: int


@dataclass
class ProductForecast:
    product_id: uuid.UUID
    model_name: str
    region: str
    last_known_month: str
    predictions: list[Prediction]
    summary: ForecastSummary


@dataclass
class PredictionSet:
    company_id: uuid.UUID
    horizon_months: int
    generated_at: datetime
    products: list[ProductForecast] = field(default_factory=list)

    @property
    def total_predicted_units(self) -> float:
        return round(sum(p.summary.total_predicted_units for p in self.products), 1)

    @property
    def promotional_months(self) -> int:
        return sum(p.summary.promotional_months for p in self.products)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["total_predicted_units"] = self.total_predicted_units
        data["promotional_months"] = self.promotional_months
        return data


def summarize(predictions: list[Prediction]) -> ForecastSummary:
    """Aggregate one product's forecast. Ties for the peak go to the earliest month."""
    if not predictions:
        return ForecastSummary(0.0, 0.0, 0, 0)
    peak = max(predictions, key=lambda p: (p.predicted_sales, -p.month_index))
    return ForecastSummary(
        total_predicted_units=round(sum(p.predicted_sales for p in predictions), 1),
        average_confidence=round(sum(p.confidence for p in predictions) / len(predictions), 4),
        promotional_months=sum(1 for p in predictions if p.has_active_offer),
        peak_month_index=peak.month_index,
    )


def impact_label(importance: float) -> str:
    if importance >= HIGH_IMPACT:
        return "High"
    if importance >= MEDIUM_IMPACT:
        return "Medium"
    return "Low"


def _validate_points(raw_points: list[Any], horizon_months: int, product_id: uuid.UUID) -> list[ModelForecastPoint]:
    try:
        points = [ModelForecastPoint.model_validate(raw) for raw in raw_points]
    except PydanticValidationError as exc:
        raise UpstreamError(
            "Forecasting model returned an invalid prediction",
            product_id=str(product_id),
            errors=exc.error_count(),
        ) from exc

    indexes = sorted(p.month for p in points)
    if indexes != list(range(1, horizon_months + 1)):
        raise UpstreamError(
            "Forecasting model returned the wrong months",
            product_id=str(product_id),
            expected=horizon_months,
            received=len(points),
        )
    return sorted(points, key=lambda p: p.month)


class ForecastOrchestrator:
    def __init__(self, model: ForecastModel, max_horizon_months: int = 24):
        self.model = model
        self.max_horizon_months = max_horizon_months

    async def predict(
        self,
        db: AsyncSession,
        caller: Caller,
        company_id: uuid.UUID | str,
        horizon_months: int,
        timeout: float,
    ) -> PredictionSet:
        tenant_id = bind_tenant(caller, company_id)
        if not 1 <= horizon_months <= self.max_horizon_months:
            raise ValidationError(
                f"horizon_months must be between 1 and {self.max_horizon_months}",
                field="horizon_months",
                value=horizon_months,
            )
        if timeout <= 0:
            raise ValidationError("timeout must be positive", field="timeout", value=timeout)

        snapshot = [item for item in await load_catalog_snapshot(db, tenant_id) if item.history]
        if not snapshot:
            raise InsufficientDataError(
                "No products with sales history to forecast; upload sales data first",
                company_id=str(tenant_id),
            )
        offers = await load_offers(db)

        started = time.perf_counter()
        try:
            products = await asyncio.wait_for(
                self._forecast_all(snapshot, offers, horizon_months),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("forecast.predict.timeout", company_id=str(tenant_id), timeout=timeout)
            raise UpstreamTimeoutError(
                "Forecasting model did not respond in time",
                company_id=str(tenant_id),
                timeout_seconds=timeout,
            )

        prediction_set = PredictionSet(
            company_id=tenant_id,
            horizon_months=horizon_months,
            generated_at=datetime.utcnow(),
            products=products,
        )
        logger.info(
            "forecast.predict.completed",
            company_id=str(tenant_id),
            products=len(products),
            horizon_months=horizon_months,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return prediction_set

    async def _forecast_all(
        self,
        snapshot: list[ProductHistory],
        offers: list[Offer],
        horizon_months: int,
    ) -> list[ProductForecast]:
        forecasts = []
        for item in snapshot:
            forecasts.append(await self._forecast_product(item, offers, horizon_months))
        return forecasts

    async def _forecast_product(
        self,
        item: ProductHistory,
        offers: list[Offer],
        horizon_months: int,
    ) -> ProductForecast:
        product = item.product
        raw_points = await self.model.predict(item.history, horizon_months)
        points = _validate_points(raw_points, horizon_months, product.id)

        base_date = parse_month_key(item.last_known_month)
        predictions = []
        for point in points:
            overlay = resolve_month(offers, point.month, base_date)
            predictions.append(
                Prediction(
                    product_id=product.id,
                    month_index=point.month,
                    month=month_key(add_months(base_date, point.month)),
                    predicted_sales=point.predicted_sales,
                    confidence=point.confidence,
                    has_active_offer=overlay.has_active_offer,
                    offer_name=overlay.offer_name,
                )
            )

        return ProductForecast(
            product_id=product.id,
            model_name=product.model_name,
            region=product.region,
            last_known_month=item.last_known_month,
            predictions=predictions,
            summary=summarize(predictions),
        )

    async def feature_importance(
        self,
        db: AsyncSession,
        caller: Caller,
        company_id: uuid.UUID | str,
        timeout: float,
    ) -> list[dict[str, Any]]:
        """
        Feature importance for the tenant, most important first.

        Importance values come straight from the model; their sum is not
        re-normalized here.
        """
        tenant_id = bind_tenant(caller, company_id)
        dataset = await load_sales_frame(db, tenant_id)
        if dataset.empty:
            raise InsufficientDataError(
                "No sales data to analyse; upload sales data first",
                company_id=str(tenant_id),
            )

        try:
            raw = await asyncio.wait_for(self.model.feature_importance(dataset), timeout=timeout)
        except asyncio.TimeoutError:
            raise UpstreamTimeoutError(
                "Forecasting model did not respond in time",
                company_id=str(tenant_id),
                timeout_seconds=timeout,
            )

        items = []
        for entry in raw:
            try:
                feature = str(entry["feature"])
                importance = float(entry["importance"])
            except (KeyError, TypeError, ValueError) as exc:
                raise UpstreamError("Forecasting model returned malformed feature importance") from exc
            items.append({"feature": feature, "importance": importance, "impact": impact_label(importance)})

        items.sort(key=lambda item: item["importance"], reverse=True)
        return items
