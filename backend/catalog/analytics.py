"""
Sales analytics for a tenant's catalog: region, month, top-product and
revenue rollups for the company dashboard.
"""

import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.tenancy import Caller, bind_tenant
from db.models import Product, SaleRecord

TOP_PRODUCTS_LIMIT = 5


def _tenant_sales(tenant_id: uuid.UUID, *columns):
    return (
        select(*columns)
        .select_from(SaleRecord)
        .join(Product, SaleRecord.product_id == Product.id)
        .where(Product.company_id == tenant_id)
    )


async def get_analytics(db: AsyncSession, caller: Caller, company_id: uuid.UUID | str) -> dict[str, Any]:
    tenant_id = bind_tenant(caller, company_id)
    units = func.coalesce(func.sum(SaleRecord.sales_count), 0)
    revenue = func.coalesce(func.sum(SaleRecord.revenue), 0.0)
    region_rows = await db.execute(
        _tenant_sales(tenant_id, Product.region, units.label("units"), revenue.label("revenue"))
        .group_by(Product.region)
        .order_by(units.desc())
    )
    sales_by_region = [
        {"region": r.region, "sales": int(r.units), "revenue": round(float(r.revenue), 2)} for r in region_rows.all()
    ]

    month_rows = await db.execute(
        _tenant_sales(tenant_id, SaleRecord.month, units.label("units"), revenue.label("revenue"))
        .group_by(SaleRecord.month)
        .order_by(SaleRecord.month.asc())
    )
    sales_by_month = [
        {"month": r.month, "sales": int(r.units), "revenue": round(float(r.revenue), 2)} for r in month_rows.all()
    ]

    top_rows = await db.execute(
        _tenant_sales(
            tenant_id,
            Product.id,
            Product.model_name,
            Product.region,
            units.label("units"),
            revenue.label("revenue"),
        )
        .group_by(Product.id, Product.model_name, Product.region)
        .order_by(units.desc(), Product.model_name.asc())
        .limit(TOP_PRODUCTS_LIMIT)
    )
    top_products = [
        {
            "product_id": str(r.id),
            "model_name": r.model_name,
            "region": r.region,
            "sales": int(r.units),
            "revenue": round(float(r.revenue), 2),
        }
        for r in top_rows.all()
    ]

    product_count = await db.execute(select(func.count(Product.id)).where(Product.company_id == tenant_id))
    total_revenue = sum(m["revenue"] for m in sales_by_month)
    total_units = sum(m["sales"] for m in sales_by_month)
    revenue_stats = {
        "total_revenue": round(total_revenue, 2),
        "total_units": total_units,
        "avg_monthly_revenue": round(total_revenue / len(sales_by_month), 2) if sales_by_month else 0.0,
        "product_count": int(product_count.scalar() or 0),
    }

    return {
        "sales_by_region": sales_by_region,
        "sales_by_month": sales_by_month,
        "top_products": top_products,
        "revenue_stats": revenue_stats,
    }
