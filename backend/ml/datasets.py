"""
Catalog → model dataset loaders.

Training and feature-importance requests receive one row per
(product, month) with the product's attributes and feature flags
flattened into `feature_<name>` columns. Prediction requests receive a
per-product snapshot of the catalog.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

import pandas as pd
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from db.models import Product, SaleRecord
from ml.model_client import HistoryPoint

BASE_COLUMNS = [
    "company_id",
    "product_id",
    "model_name",
    "region",
    "month",
    "sales_count",
    "revenue",
    "price",
    "discount_price",
    "battery_life",
]


@dataclass
class ProductHistory:
    product: Product
    history: list[HistoryPoint]

    @property
    def last_known_month(self) -> str:
        return self.history[-1].month


async def load_catalog_snapshot(db: AsyncSession, company_id: uuid.UUID) -> list[ProductHistory]:
    """
    Products with their full monthly history, months ascending.

    Loaded in one round of queries so a forecast sees a consistent view of
    the catalog as of request start. Months are not gap-filled.
    """
    result = await db.execute(
        select(Product)
        .where(Product.company_id == company_id)
        .options(selectinload(Product.sales))
        .order_by(Product.model_name, Product.region)
        .execution_options(populate_existing=True)
    )
    snapshot = []
    for product in result.scalars().all():
        records = sorted(product.sales, key=lambda s: s.month)
        history = [HistoryPoint(month=s.month, sales_count=int(s.sales_count), revenue=float(s.revenue)) for s in records]
        snapshot.append(ProductHistory(product=product, history=history))
    return snapshot


async def load_sales_frame(db: AsyncSession, company_id: uuid.UUID | None = None) -> pd.DataFrame:
    """Flattened (product, month) rows for one tenant, or every tenant when company_id is None."""
    query = select(SaleRecord, Product).join(Product, SaleRecord.product_id == Product.id)
    if company_id is not None:
        query = query.where(Product.company_id == company_id)
    result = await db.execute(query.order_by(Product.id, SaleRecord.month))

    rows = []
    feature_names: set[str] = set()
    for record, product in result.all():
        features = product.features or {}
        feature_names.update(features)
        rows.append(
            {
                "company_id": str(product.company_id),
                "product_id": str(product.id),
                "model_name": product.model_name,
                "region": product.region,
                "month": record.month,
                "sales_count": int(record.sales_count),
                "revenue": float(record.revenue),
                "price": product.price,
                "discount_price": product.discount_price,
                "battery_life": product.battery_life,
                **{f"feature_{name}": bool(flag) for name, flag in features.items()},
            }
        )

    feature_cols = sorted(f"feature_{name}" for name in feature_names)
    frame = pd.DataFrame(rows, columns=BASE_COLUMNS + feature_cols)
    if feature_cols:
        # Absent flag = no evidence of the feature
        frame[feature_cols] = frame[feature_cols].fillna(False).astype(bool)
    for col in ("price", "discount_price", "battery_life"):
        frame[col] = pd.to_numeric(frame[col], errors="coerce")
    return frame
