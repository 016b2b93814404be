"""
Tests for the Training Ledger and retraining service.
"""

from datetime import datetime

import pytest
from sqlalchemy import func, select

from catalog.reconciler import CatalogReconciler
from core.errors import (
    AuthorizationError,
    IngestionFailedError,
    InsufficientDataError,
    SchemaError,
    ValidationError,
)
from db.models import TrainingRun
from ml import ledger
from ml.ledger import TrainingService, TrainingSource


async def _run_count(db):
    result = await db.execute(select(func.count(TrainingRun.id)))
    return result.scalar()


@pytest.fixture
async def dated_runs(test_db):
    runs = [
        TrainingRun(training_date=datetime(2025, 1, d), accuracy=acc, source="manual")
        for d, acc in [(1, 0.70), (2, 0.75), (3, 0.81)]
    ]
    test_db.add_all(runs)
    await test_db.commit()
    return runs


@pytest.mark.asyncio
class TestLedger:
    async def test_record_run(self, test_db, companies):
        run = await ledger.record_run(
            test_db, TrainingSource.MANUAL, 0.9, "weekly", company_id=companies["a"].id, rows_trained=12
        )
        assert run.id is not None
        assert run.source == "manual"
        assert run.company_id == companies["a"].id
        assert run.rows_trained == 12

    @pytest.mark.parametrize("accuracy", [-0.01, 1.01])
    async def test_accuracy_out_of_range(self, test_db, accuracy):
        with pytest.raises(ValidationError):
            await ledger.record_run(test_db, "manual", accuracy)
        assert await _run_count(test_db) == 0

    async def test_unknown_source_rejected(self, test_db):
        with pytest.raises(ValueError):
            await ledger.record_run(test_db, "cron", 0.5)

    async def test_history_newest_first(self, test_db, dated_runs):
        runs = await ledger.history(test_db, limit=2)
        assert [r.accuracy for r in runs] == [0.81, 0.75]

    async def test_timeline_is_chronological(self, test_db, dated_runs):
        runs = await ledger.timeline(test_db, limit=3)
        assert [r.accuracy for r in runs] == [0.70, 0.75, 0.81]

    async def test_current_accuracy_is_latest(self, test_db, dated_runs):
        assert await ledger.current_accuracy(test_db) == 0.81

    async def test_current_accuracy_empty(self, test_db):
        assert await ledger.current_accuracy(test_db) is None

    async def test_company_history_is_global_plus_own(self, test_db, companies, caller_a, admin_caller):
        own = await ledger.record_run(test_db, "manual", 0.8, company_id=companies["a"].id)
        shared = await ledger.record_run(test_db, "manual", 0.7)
        other = await ledger.record_run(test_db, "csv", 0.9, "bolt notes", company_id=companies["b"].id)

        assert {r.id for r in await ledger.history(test_db, caller=caller_a)} == {own.id, shared.id}
        assert {r.id for r in await ledger.timeline(test_db, caller=caller_a)} == {own.id, shared.id}
        assert {r.id for r in await ledger.history(test_db, caller=admin_caller)} == {own.id, shared.id, other.id}


@pytest.mark.asyncio
class TestRetrain:
    async def test_company_retrain_records_tenant_run(
        self, test_db, caller_a, companies, sample_csv_a, stub_model
    ):
        await CatalogReconciler().ingest_csv(test_db, caller_a, companies["a"].id, sample_csv_a)
        run = await TrainingService(stub_model).retrain(test_db, caller_a, companies["a"].id, notes="after upload")

        assert run.source == "manual"
        assert run.accuracy == 0.87
        assert run.company_id == companies["a"].id
        assert run.rows_trained == 6
        assert run.notes == "after upload"

    async def test_admin_global_retrain_spans_tenants(
        self, test_db, admin_caller, caller_a, caller_b, companies, sample_csv_a, sample_csv_b, stub_model
    ):
        reconciler = CatalogReconciler()
        await reconciler.ingest_csv(test_db, caller_a, companies["a"].id, sample_csv_a)
        await reconciler.ingest_csv(test_db, caller_b, companies["b"].id, sample_csv_b)

        run = await TrainingService(stub_model).retrain(test_db, admin_caller)
        assert run.company_id is None
        assert run.rows_trained == 8

    async def test_admin_cannot_retrain_a_tenant(self, test_db, admin_caller, companies, stub_model):
        with pytest.raises(AuthorizationError):
            await TrainingService(stub_model).retrain(test_db, admin_caller, companies["a"].id)

    async def test_other_tenant_is_forbidden(self, test_db, caller_b, companies, stub_model):
        with pytest.raises(AuthorizationError):
            await TrainingService(stub_model).retrain(test_db, caller_b, companies["a"].id)

    async def test_no_data_is_insufficient(self, test_db, caller_a, companies, stub_model):
        with pytest.raises(InsufficientDataError):
            await TrainingService(stub_model).retrain(test_db, caller_a, companies["a"].id)
        assert stub_model.train_calls == 0
        assert await _run_count(test_db) == 0


@pytest.mark.asyncio
class TestTrainWithCsv:
    async def test_ingests_then_records_csv_run(self, test_db, caller_a, companies, sample_csv_a, stub_model):
        result = await TrainingService(stub_model).train_with_csv(
            test_db, caller_a, companies["a"].id, sample_csv_a, notes="Q1 upload"
        )
        assert result.ingest.rows_succeeded == 6
        assert result.run.source == "csv"
        assert result.run.rows_trained == 6
        assert await ledger.current_accuracy(test_db) == 0.87

    async def test_partial_failure_still_records_run(self, test_db, caller_a, companies, stub_model):
        csv = b"Model,Sales_Count,Month,Price_Rs\nA,1,2025-01,10\nB,-4,2025-01,10\n"
        result = await TrainingService(stub_model).train_with_csv(test_db, caller_a, companies["a"].id, csv)
        assert result.ingest.rows_failed == 1
        assert await _run_count(test_db) == 1

    async def test_all_rows_failing_records_nothing(self, test_db, caller_a, companies, stub_model):
        csv = b"Model,Sales_Count,Month,Price_Rs\nA,x,2025-01,10\nB,1,someday,10\n"
        with pytest.raises(IngestionFailedError) as exc_info:
            await TrainingService(stub_model).train_with_csv(test_db, caller_a, companies["a"].id, csv)
        assert len(exc_info.value.context["failures"]) == 2
        assert stub_model.train_calls == 0
        assert await _run_count(test_db) == 0

    async def test_schema_error_records_nothing(self, test_db, caller_a, companies, stub_model):
        with pytest.raises(SchemaError):
            await TrainingService(stub_model).train_with_csv(
                test_db, caller_a, companies["a"].id, b"Model,Month\nA,2025-01\n"
            )
        assert await _run_count(test_db) == 0
