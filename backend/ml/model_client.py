"""
Forecasting Model Client — the boundary to the demand-forecasting model.

All model backends implement ForecastModel so the orchestrator and the
training ledger are backend-agnostic:

    train(dataset)               -> accuracy in [0, 1]
    predict(history, horizon)    -> [{month, predicted_sales, confidence}]
    feature_importance(dataset)  -> [{feature, importance}]

Backends:
  - HttpForecastModel      remote model service over HTTP (httpx)
  - BaselineForecastModel  in-process trend model used for local/dev and
                           whenever no model service is configured
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx
import numpy as np
import pandas as pd
import structlog

from core.config import get_settings
from core.errors import UpstreamError, UpstreamTimeoutError

logger = structlog.get_logger()


@dataclass(frozen=True)
class HistoryPoint:
    """One month of a product's sales history, as sent to the model."""

    month: str  # YYYY-MM
    sales_count: int
    revenue: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"month": self.month, "sales_count": self.sales_count, "revenue": self.revenue}


class ForecastModel(ABC):
    """Interface every forecasting backend implements."""

    name = "abstract"

    @abstractmethod
    async def train(self, dataset: pd.DataFrame) -> float:
        """Retrain on a tenant or global dataset and return accuracy in [0, 1]."""
        ...

    @abstractmethod
    async def predict(self, history: list[HistoryPoint], horizon_months: int) -> list[dict[str, Any]]:
        """Forecast `horizon_months` months following the last history point."""
        ...

    @abstractmethod
    async def feature_importance(self, dataset: pd.DataFrame) -> list[dict[str, Any]]:
        """Return [{feature, importance}] for the tenant's dataset."""
        ...


# ── Baseline (in-process) ─────────────────────────────────────────────────


class BaselineForecastModel(ForecastModel):
    """
    Linear-trend forecaster over each product's monthly history.

    Trend is fitted on the last `trend_window` months (mean for shorter
    histories). Confidence grows with history length and decays with the
    forecast step. Accuracy is 1 - WAPE of a one-step holdout on every
    product with at least two months of history.
    """

    name = "baseline"

    def __init__(self, trend_window: int = 12):
        self.trend_window = trend_window

    def _fit(self, values: np.ndarray):
        recent = values[-self.trend_window :]
        if len(recent) >= 3:
            slope, intercept = np.polyfit(np.arange(len(recent)), recent, 1)
            offset = len(values) - len(recent)
            return lambda step: slope * (step - offset) + intercept
        level = float(recent.mean()) if len(recent) else 0.0
        return lambda step: level

    async def train(self, dataset: pd.DataFrame) -> float:
        abs_error = 0.0
        actual_total = 0.0
        for _, series in dataset.sort_values("month").groupby("product_id"):
            values = series["sales_count"].to_numpy(dtype=float)
            if len(values) < 2:
                continue
            fitted = self._fit(values[:-1])
            predicted = max(float(fitted(len(values) - 1)), 0.0)
            abs_error += abs(predicted - values[-1])
            actual_total += values[-1]
        if actual_total <= 0:
            return 0.0
        return float(np.clip(1.0 - abs_error / actual_total, 0.0, 1.0))

    async def predict(self, history: list[HistoryPoint], horizon_months: int) -> list[dict[str, Any]]:
        values = np.array([point.sales_count for point in history], dtype=float)
        fitted = self._fit(values)
        base_confidence = 0.6 + 0.3 * min(len(values), 12) / 12
        forecasts = []
        for step in range(1, horizon_months + 1):
            predicted = max(float(fitted(len(values) - 1 + step)), 0.0)
            confidence = float(np.clip(base_confidence - 0.04 * (step - 1), 0.05, 0.95))
            forecasts.append(
                {
                    "month": step,
                    "predicted_sales": round(predicted, 1),
                    "confidence": round(confidence, 3),
                }
            )
        return forecasts

    async def feature_importance(self, dataset: pd.DataFrame) -> list[dict[str, Any]]:
        """
        Absolute correlation between each product attribute and the
        product's total units, normalized to sum to 1.
        """
        if dataset.empty:
            return []
        feature_cols = [c for c in dataset.columns if c.startswith("feature_")]
        numeric_cols = [c for c in ("price", "discount_price", "battery_life") if c in dataset.columns]
        per_product = dataset.groupby("product_id").agg(
            {"sales_count": "sum", **{c: "last" for c in feature_cols + numeric_cols}}
        )
        if len(per_product) < 2:
            return []

        scores: dict[str, float] = {}
        target = per_product["sales_count"].astype(float)
        for col in feature_cols + numeric_cols:
            values = per_product[col].astype(float)
            if values.nunique(dropna=True) < 2:
                continue
            corr = values.corr(target)
            if pd.notna(corr):
                scores[col.removeprefix("feature_")] = abs(float(corr))

        total = sum(scores.values())
        if total <= 0:
            return []
        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
        return [{"feature": name, "importance": round(score / total, 4)} for name, score in ranked]


# ── Remote model service ──────────────────────────────────────────────────


class HttpForecastModel(ForecastModel):
    """Client for a remote forecasting service exposing /train, /predict, /feature-importance."""

    name = "http"

    def __init__(self, base_url: str, timeout_seconds: float = 30.0, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport
        self.logger = logger.bind(model_backend=self.name, base_url=self.base_url)

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                transport=self.transport,
            ) as client:
                resp = await client.post(path, json=payload)
                resp.raise_for_status()
                body = resp.json()
        except httpx.TimeoutException as exc:
            self.logger.warning("forecast_model.timeout", path=path)
            raise UpstreamTimeoutError("Forecasting model timed out", path=path) from exc
        except httpx.HTTPStatusError as exc:
            self.logger.warning("forecast_model.http_error", path=path, status=exc.response.status_code)
            raise UpstreamError(
                "Forecasting model returned an error", path=path, status=exc.response.status_code
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            self.logger.warning("forecast_model.unavailable", path=path, error=str(exc))
            raise UpstreamError("Forecasting model unavailable", path=path) from exc
        if not isinstance(body, dict):
            raise UpstreamError("Forecasting model returned a non-object body", path=path)
        return body

    async def train(self, dataset: pd.DataFrame) -> float:
        body = await self._post("/train", {"rows": _records(dataset)})
        try:
            return float(body["accuracy"])
        except (KeyError, TypeError, ValueError) as exc:
            raise UpstreamError("Forecasting model response is missing accuracy", path="/train") from exc

    async def predict(self, history: list[HistoryPoint], horizon_months: int) -> list[dict[str, Any]]:
        body = await self._post(
            "/predict",
            {"history": [point.to_dict() for point in history], "horizon": horizon_months},
        )
        predictions = body.get("predictions")
        if not isinstance(predictions, list):
            raise UpstreamError("Forecasting model response is missing predictions", path="/predict")
        return predictions

    async def feature_importance(self, dataset: pd.DataFrame) -> list[dict[str, Any]]:
        body = await self._post("/feature-importance", {"rows": _records(dataset)})
        features = body.get("feature_importance")
        if not isinstance(features, list):
            raise UpstreamError("Forecasting model response is missing feature_importance", path="/feature-importance")
        return features


def _records(dataset: pd.DataFrame) -> list[dict[str, Any]]:
    """JSON-safe rows (NaN → None)."""
    if dataset.empty:
        return []
    cleaned = dataset.astype(object).where(pd.notna(dataset), None)
    return cleaned.to_dict(orient="records")


def build_forecast_model() -> ForecastModel:
    settings = get_settings()
    if settings.forecast_backend == "http":
        return HttpForecastModel(settings.forecast_model_url, timeout_seconds=settings.forecast_timeout_seconds)
    return BaselineForecastModel()
