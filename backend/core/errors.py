"""
SalesCast Error Taxonomy

Every failure raised by the ingestion, catalog, forecasting and training
services is a SalesCastError subclass. Each carries a machine-readable
``kind`` and a ``context`` dict (field name, row number, entity id, ...)
so callers can render a precise message without parsing strings.
"""

from __future__ import annotations

from typing import Any


class SalesCastError(Exception):
    """Base class for all domain errors."""

    kind = "error"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "kind": self.kind, "context": self.context}


class SchemaError(SalesCastError):
    """Missing or malformed CSV column (file- or row-scoped)."""

    kind = "schema_error"
    status_code = 422

    def __init__(self, message: str, *, field: str | None = None, row_number: int | None = None):
        super().__init__(message, field=field, row_number=row_number)
        self.field = field
        self.row_number = row_number


class FieldTypeError(SalesCastError, TypeError):
    """Unparseable CSV field value. Row-scoped and non-fatal to the batch."""

    kind = "type_error"
    status_code = 422

    def __init__(self, message: str, *, field: str, row_number: int | None = None, value: Any = None):
        super().__init__(message, field=field, row_number=row_number, value=value)
        self.field = field
        self.row_number = row_number


class ValidationError(SalesCastError):
    """Out-of-range value (accuracy, campaign dates, horizon)."""

    kind = "validation_error"
    status_code = 422


class IngestionFailedError(SalesCastError):
    """No row of an uploaded file could be ingested."""

    kind = "ingestion_failed"
    status_code = 422

    def __init__(self, message: str, *, result: Any):
        super().__init__(message, failures=[f.to_dict() for f in result.failures])
        self.result = result


class UnauthenticatedError(SalesCastError):
    kind = "unauthenticated"
    status_code = 401


class AuthorizationError(SalesCastError):
    """Role or tenant mismatch."""

    kind = "authorization_error"
    status_code = 403


class NotFoundError(SalesCastError):
    kind = "not_found"
    status_code = 404


class InsufficientDataError(SalesCastError):
    """Tenant has no catalog data to forecast or train on."""

    kind = "insufficient_data"
    status_code = 409


class UpstreamError(SalesCastError):
    """Forecasting model unavailable or returned a malformed response."""

    kind = "upstream_error"
    status_code = 502


class UpstreamTimeoutError(UpstreamError):
    kind = "upstream_timeout"
    status_code = 504
