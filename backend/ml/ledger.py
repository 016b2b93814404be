"""
Training Ledger — append-only history of model retraining.

Runs are never updated or deleted. "Current model accuracy" is always the
accuracy of the most recent run, read from the table on demand.

Ordering:
  - history(limit)  most recent first (listing), filtered to the runs the
                    caller may see
  - timeline(limit) the same window in ascending chronological order
                    (canonical order for accuracy-over-time charts)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import structlog
from sqlalchemy import Select, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from catalog.reconciler import CatalogReconciler, IngestResult
from core.errors import IngestionFailedError, InsufficientDataError, ValidationError
from core.tenancy import Caller, Role, bind_tenant
from db.models import TrainingRun
from ml.datasets import load_sales_frame
from ml.model_client import ForecastModel

logger = structlog.get_logger()


class TrainingSource(str, Enum):
    MANUAL = "manual"
    CSV = "csv"


@dataclass
class CsvTrainingResult:
    run: TrainingRun
    ingest: IngestResult


async def record_run(
    db: AsyncSession,
    source: TrainingSource | str,
    accuracy: float,
    notes: str | None = None,
    *,
    company_id: uuid.UUID | None = None,
    rows_trained: int = 0,
) -> TrainingRun:
    source = TrainingSource(source)
    if accuracy is None or not 0.0 <= float(accuracy) <= 1.0:
        raise ValidationError("accuracy must be between 0 and 1", field="accuracy", value=accuracy)

    run = TrainingRun(
        training_date=datetime.utcnow(),
        accuracy=float(accuracy),
        notes=notes,
        source=source.value,
        company_id=company_id,
        rows_trained=rows_trained,
    )
    db.add(run)
    await db.commit()
    await db.refresh(run)
    logger.info(
        "training.run_recorded",
        run_id=str(run.id),
        source=source.value,
        accuracy=run.accuracy,
        company_id=str(company_id) if company_id else None,
    )
    return run


def visible_runs(caller: Caller | None = None) -> Select:
    """Admins (or internal callers) see every run; a company sees global runs and its own."""
    query = select(TrainingRun)
    if caller is not None and not caller.is_admin:
        query = query.where(
            or_(TrainingRun.company_id.is_(None), TrainingRun.company_id == caller.company_id)
        )
    return query


async def history(db: AsyncSession, limit: int = 10, caller: Caller | None = None) -> list[TrainingRun]:
    result = await db.execute(
        visible_runs(caller).order_by(TrainingRun.training_date.desc(), TrainingRun.id.desc()).limit(limit)
    )
    return list(result.scalars().all())


async def timeline(db: AsyncSession, limit: int = 10, caller: Caller | None = None) -> list[TrainingRun]:
    return list(reversed(await history(db, limit, caller)))


async def current_accuracy(db: AsyncSession) -> float | None:
    latest = await history(db, limit=1)
    return latest[0].accuracy if latest else None


class TrainingService:
    """Retraining entry points that end in a ledger append."""

    def __init__(self, model: ForecastModel, reconciler: CatalogReconciler | None = None):
        self.model = model
        self.reconciler = reconciler or CatalogReconciler()

    async def retrain(
        self,
        db: AsyncSession,
        caller: Caller,
        company_id: uuid.UUID | str | None = None,
        notes: str | None = None,
    ) -> TrainingRun:
        """
        Manual retrain. Admins train on the global dataset (company_id None);
        company accounts train on their own tenant only.
        """
        if caller.role == Role.ADMIN and company_id is None:
            tenant_id = None
        else:
            tenant_id = bind_tenant(caller, company_id)

        dataset = await load_sales_frame(db, tenant_id)
        if dataset.empty:
            raise InsufficientDataError(
                "No sales data to train on",
                company_id=str(tenant_id) if tenant_id else None,
            )
        accuracy = await self.model.train(dataset)
        return await record_run(
            db,
            TrainingSource.MANUAL,
            accuracy,
            notes,
            company_id=tenant_id,
            rows_trained=len(dataset),
        )

    async def train_with_csv(
        self,
        db: AsyncSession,
        caller: Caller,
        company_id: uuid.UUID | str,
        file_bytes: bytes,
        notes: str | None = None,
    ) -> CsvTrainingResult:
        """
        Ingest an uploaded file, then retrain on the tenant's dataset.

        If no row of the file was ingested, no run is recorded and the
        ingestion failure is raised. Partial ingestion still records a run;
        the row failures travel with the returned ingest result.
        """
        tenant_id = bind_tenant(caller, company_id)
        ingest = await self.reconciler.ingest_csv(db, caller, tenant_id, file_bytes)
        if ingest.rows_succeeded == 0:
            raise IngestionFailedError("No rows of the uploaded file could be ingested", result=ingest)

        dataset = await load_sales_frame(db, tenant_id)
        accuracy = await self.model.train(dataset)
        run = await record_run(
            db,
            TrainingSource.CSV,
            accuracy,
            notes,
            company_id=tenant_id,
            rows_trained=len(dataset),
        )
        return CsvTrainingResult(run=run, ingest=ingest)
