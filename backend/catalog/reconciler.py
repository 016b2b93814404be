"""
Catalog Reconciler — upserts Products and SaleRecords per tenant.

Product identity is the natural key (company_id, model_name, region):
  - scalar attributes are last-write-wins
  - feature flags are unioned (a flag once true stays true)

SaleRecords are keyed by (product, month) and are additive: uploading the
same month again adds to sales_count and revenue, modelling incremental
uploads of new transactions.

One CSV file is one database transaction, and at most one ingestion runs
per tenant at a time: an in-process lock orders ingestions within a worker,
and a row lock on the company orders them across workers.
"""

from __future__ import annotations

import asyncio
import time
import uuid
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from catalog.normalizer import CanonicalRow, RowFailure, parse_csv
from core.errors import NotFoundError
from core.tenancy import Caller, bind_tenant
from db.models import Company, Product, SaleRecord

logger = structlog.get_logger()

DEFAULT_REGION = "Global"


class TenantLockRegistry:
    """
    One asyncio.Lock per company id, created lazily.

    Entries are weak: a lock disappears once no ingestion holds or waits
    on it, so the registry does not grow with every tenant ever seen.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._locks)

    def lock_for(self, company_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(company_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[company_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, company_id: uuid.UUID) -> AsyncIterator[None]:
        lock = self.lock_for(company_id)
        async with lock:
            yield

    def is_locked(self, company_id: uuid.UUID) -> bool:
        lock = self._locks.get(company_id)
        return lock is not None and lock.locked()


def tenant_lease(company_id: uuid.UUID) -> Select:
    """
    Row lock on the tenant's company, held until the ingestion transaction ends.

    Serializes ingestions for one tenant across worker processes; backends
    without row locks (SQLite) render it as a plain select.
    """
    return select(Company.id).where(Company.id == company_id).with_for_update()


tenant_locks = TenantLockRegistry()


@dataclass
class IngestResult:
    products_created: int = 0
    products_updated: int = 0
    sales_added: int = 0
    units_added: int = 0
    failures: list[RowFailure] = field(default_factory=list)

    @property
    def rows_succeeded(self) -> int:
        return self.sales_added

    @property
    def rows_failed(self) -> int:
        return len(self.failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            "products_created": self.products_created,
            "products_updated": self.products_updated,
            "sales_added": self.sales_added,
            "units_added": self.units_added,
            "rows_succeeded": self.rows_succeeded,
            "rows_failed": self.rows_failed,
            "failures": [f.to_dict() for f in self.failures],
        }


def natural_key(model_name: str, region: str | None) -> tuple[str, str]:
    return (model_name.strip(), (region or DEFAULT_REGION).strip())


def merge_features(existing: dict[str, bool] | None, incoming: dict[str, bool]) -> dict[str, bool]:
    """Union feature evidence: True is sticky, False never overwrites True."""
    merged = dict(existing or {})
    for name, flag in incoming.items():
        merged[name] = bool(merged.get(name, False) or flag)
    return merged


def apply_row_to_product(product: Product, row: CanonicalRow) -> None:
    """Last-write-wins for scalars present on the row, union for features."""
    product.price = row.price
    if row.discount_price is not None:
        product.discount_price = row.discount_price
    if row.battery_life is not None:
        product.battery_life = row.battery_life
    if row.display_type is not None:
        product.display_type = row.display_type
    if row.brand is not None:
        product.brand = row.brand
    # Reassign so the JSON column is flagged dirty
    product.features = merge_features(product.features, row.features)


class CatalogReconciler:
    def __init__(self, locks: TenantLockRegistry | None = None):
        self.locks = locks if locks is not None else tenant_locks

    async def ingest(
        self,
        db: AsyncSession,
        caller: Caller,
        company_id: uuid.UUID | str,
        rows: list[CanonicalRow],
        failures: list[RowFailure] | None = None,
    ) -> IngestResult:
        """
        Apply normalized rows to the tenant's catalog in input order.

        Row failures from normalization are carried through unchanged so
        the caller sees one report for the whole file.
        """
        tenant_id = bind_tenant(caller, company_id)
        result = IngestResult(failures=list(failures or []))
        started = time.perf_counter()

        async with self.locks.hold(tenant_id):
            try:
                await self._apply(db, tenant_id, rows, result)
                await db.commit()
            except Exception:
                await db.rollback()
                logger.error("catalog.ingest.rolled_back", company_id=str(tenant_id), rows=len(rows))
                raise

        logger.info(
            "catalog.ingest.completed",
            company_id=str(tenant_id),
            products_created=result.products_created,
            products_updated=result.products_updated,
            sales_added=result.sales_added,
            rows_failed=result.rows_failed,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return result

    async def ingest_csv(
        self,
        db: AsyncSession,
        caller: Caller,
        company_id: uuid.UUID | str,
        file_bytes: bytes,
    ) -> IngestResult:
        """Normalize an uploaded file and reconcile it into the catalog."""
        bind_tenant(caller, company_id)
        batch = parse_csv(file_bytes)
        return await self.ingest(db, caller, company_id, batch.rows, batch.failures)

    async def _apply(
        self,
        db: AsyncSession,
        company_id: uuid.UUID,
        rows: list[CanonicalRow],
        result: IngestResult,
    ) -> None:
        leased = await db.execute(tenant_lease(company_id))
        if leased.scalar_one_or_none() is None:
            raise NotFoundError("Company not found", company_id=str(company_id))

        products_result = await db.execute(select(Product).where(Product.company_id == company_id))
        products = {natural_key(p.model_name, p.region): p for p in products_result.scalars().all()}

        sales: dict[tuple[uuid.UUID, str], SaleRecord] = {}
        if products:
            sales_result = await db.execute(
                select(SaleRecord).where(SaleRecord.product_id.in_([p.id for p in products.values()]))
            )
            sales = {(s.product_id, s.month): s for s in sales_result.scalars().all()}

        created_keys: set[tuple[str, str]] = set()
        updated_keys: set[tuple[str, str]] = set()

        for row in rows:
            key = natural_key(row.model_name, row.region)
            product = products.get(key)
            if product is None:
                product = Product(
                    id=uuid.uuid4(),
                    company_id=company_id,
                    model_name=key[0],
                    region=key[1],
                    price=row.price,
                    features={},
                )
                apply_row_to_product(product, row)
                db.add(product)
                products[key] = product
                created_keys.add(key)
            else:
                apply_row_to_product(product, row)
                if key not in created_keys:
                    updated_keys.add(key)

            revenue = row.sales_count * row.effective_price
            record = sales.get((product.id, row.month))
            if record is None:
                record = SaleRecord(
                    id=uuid.uuid4(),
                    product_id=product.id,
                    month=row.month,
                    sales_count=row.sales_count,
                    revenue=revenue,
                )
                db.add(record)
                sales[(product.id, row.month)] = record
            else:
                record.sales_count = (record.sales_count or 0) + row.sales_count
                record.revenue = (record.revenue or 0.0) + revenue

            result.sales_added += 1
            result.units_added += row.sales_count

        await db.flush()
        result.products_created = len(created_keys)
        result.products_updated = len(updated_keys)


async def list_products(db: AsyncSession, caller: Caller, company_id: uuid.UUID | str) -> list[Product]:
    tenant_id = bind_tenant(caller, company_id)
    result = await db.execute(
        select(Product).where(Product.company_id == tenant_id).order_by(Product.model_name, Product.region)
    )
    return list(result.scalars().all())


async def delete_product(
    db: AsyncSession, caller: Caller, company_id: uuid.UUID | str, product_id: uuid.UUID
) -> None:
    """Delete a product and its sale records. Other tenants' products are NotFound."""
    tenant_id = bind_tenant(caller, company_id)
    result = await db.execute(
        select(Product).where(Product.id == product_id, Product.company_id == tenant_id)
    )
    product = result.scalar_one_or_none()
    if product is None:
        raise NotFoundError("Product not found", product_id=str(product_id))
    await db.delete(product)
    await db.commit()
    logger.info("catalog.product.deleted", company_id=str(tenant_id), product_id=str(product_id))


async def list_sales(
    db: AsyncSession, caller: Caller, company_id: uuid.UUID | str, limit: int = 100
) -> list[tuple[SaleRecord, Product]]:
    tenant_id = bind_tenant(caller, company_id)
    result = await db.execute(
        select(SaleRecord, Product)
        .join(Product, SaleRecord.product_id == Product.id)
        .where(Product.company_id == tenant_id)
        .order_by(SaleRecord.month.desc(), Product.model_name)
        .limit(limit)
    )
    return [(row[0], row[1]) for row in result.all()]
