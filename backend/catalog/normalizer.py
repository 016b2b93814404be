"""
Schema Normalizer — maps uploaded sales CSVs into canonical sale rows.

Two column-naming conventions are accepted and resolve to the same
canonical fields:

    Convention A (dashboard export)   Convention B (generic export)
    Model                             model_name
    Sales_Count                       sales_count
    Month (YYYY-MM)                   date (YYYY-MM-DD)
    Price_Rs                          price
    Region                            region
    Discount_Price_Rs                 discount_price
    Battery_Life_Days                 battery_life
    Display_Type                      display_type
    Brand                             brand

Headers match case-insensitively. When both conventions supply a column for
the same logical field the non-empty value wins, and convention A wins when
both are non-empty. Every other column is a yes/no feature flag.

Row-level problems are collected as failures instead of aborting the file;
only a header that lacks a required field aborts the whole file.
"""

from __future__ import annotations

import io
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import pandas as pd
import structlog

from core.errors import FieldTypeError, SchemaError

logger = structlog.get_logger()


@dataclass(frozen=True)
class FieldSpec:
    name: str
    aliases: tuple[str, str]  # (convention A, convention B)
    required: bool = False


FIELD_TABLE: tuple[FieldSpec, ...] = (
    FieldSpec("model_name", ("Model", "model_name"), required=True),
    FieldSpec("sales_count", ("Sales_Count", "sales_count"), required=True),
    FieldSpec("month", ("Month", "date"), required=True),
    FieldSpec("price", ("Price_Rs", "price"), required=True),
    FieldSpec("region", ("Region", "region")),
    FieldSpec("discount_price", ("Discount_Price_Rs", "discount_price")),
    FieldSpec("battery_life", ("Battery_Life_Days", "battery_life")),
    FieldSpec("display_type", ("Display_Type", "display_type")),
    FieldSpec("brand", ("Brand", "brand")),
)
REQUIRED_FIELDS = [entry.name for entry in FIELD_TABLE if entry.required]

TRUE_LITERALS = {"yes", "true", "1"}
FALSE_LITERALS = {"no", "false", "0"}

_MONTH_RE = re.compile(r"^\d{4}-\d{2}$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass
class CanonicalRow:
    row_number: int
    model_name: str
    month: str  # YYYY-MM
    sales_count: int
    price: float
    region: str | None = None
    discount_price: float | None = None
    battery_life: float | None = None
    display_type: str | None = None
    brand: str | None = None
    features: dict[str, bool] = field(default_factory=dict)

    @property
    def effective_price(self) -> float:
        return self.discount_price if self.discount_price is not None else self.price


@dataclass
class RowFailure:
    row_number: int
    reason: str
    kind: str
    field: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_number": self.row_number,
            "reason": self.reason,
            "kind": self.kind,
            "field": self.field,
        }


@dataclass
class NormalizedBatch:
    rows: list[CanonicalRow]
    failures: list[RowFailure]

    @property
    def total_rows(self) -> int:
        return len(self.rows) + len(self.failures)


def _header_key(column: Any) -> str:
    return str(column).strip().lower()


class ColumnResolver:
    """Resolves raw column names to logical fields and feature flags."""

    def __init__(self, columns: list[Any]):
        self.columns = list(columns)
        self.candidates: dict[str, list[Any]] = {}
        claimed = set()
        for entry in FIELD_TABLE:
            ordered = []
            for alias in entry.aliases:
                alias_key = alias.lower()
                for column in self.columns:
                    if _header_key(column) == alias_key and column not in ordered:
                        ordered.append(column)
            self.candidates[entry.name] = ordered
            claimed.update(ordered)
        self.feature_columns = [c for c in self.columns if c not in claimed and _header_key(c)]

    def missing_required(self) -> list[str]:
        return [name for name in REQUIRED_FIELDS if not self.candidates.get(name)]

    def value(self, raw: Mapping[Any, Any], name: str) -> str:
        """First non-empty candidate value in priority order, else ''."""
        for column in self.candidates.get(name, []):
            text = _clean(raw.get(column))
            if text:
                return text
        return ""


def _clean(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value).strip()


def parse_bool(value: str, *, field_name: str, row_number: int | None = None) -> bool:
    text = value.strip().lower()
    if text in TRUE_LITERALS:
        return True
    if text in FALSE_LITERALS:
        return False
    raise FieldTypeError(
        f"Row {row_number}: {field_name} must be Yes/No, true/false or 1/0, got {value!r}",
        field=field_name,
        row_number=row_number,
        value=value,
    )


def parse_number(value: str, *, field_name: str, row_number: int | None = None, integer: bool = False) -> float:
    try:
        number = float(value)
    except ValueError:
        number = float("nan")
    if math.isnan(number) or math.isinf(number) or number < 0:
        raise FieldTypeError(
            f"Row {row_number}: {field_name} must be a non-negative number, got {value!r}",
            field=field_name,
            row_number=row_number,
            value=value,
        )
    if integer:
        if not number.is_integer():
            raise FieldTypeError(
                f"Row {row_number}: {field_name} must be a whole number, got {value!r}",
                field=field_name,
                row_number=row_number,
                value=value,
            )
        return int(number)
    return number


def parse_month(value: str, *, row_number: int | None = None) -> str:
    """Accept YYYY-MM or YYYY-MM-DD and return the canonical YYYY-MM."""
    text = value.strip()
    try:
        if _MONTH_RE.match(text):
            parsed = datetime.strptime(text, "%Y-%m")
        elif _DATE_RE.match(text):
            parsed = datetime.strptime(text, "%Y-%m-%d")
        else:
            raise ValueError(text)
    except ValueError:
        raise FieldTypeError(
            f"Row {row_number}: month must be YYYY-MM or YYYY-MM-DD, got {value!r}",
            field="month",
            row_number=row_number,
            value=value,
        )
    return parsed.strftime("%Y-%m")


def _optional_number(resolver: ColumnResolver, raw: Mapping[Any, Any], name: str, row_number: int) -> float | None:
    text = resolver.value(raw, name)
    if not text:
        return None
    return parse_number(text, field_name=name, row_number=row_number)


def _normalize_with(resolver: ColumnResolver, raw: Mapping[Any, Any], row_number: int) -> CanonicalRow:
    for name in REQUIRED_FIELDS:
        if not resolver.value(raw, name):
            raise SchemaError(
                f"Row {row_number}: missing required field {name!r}",
                field=name,
                row_number=row_number,
            )

    features: dict[str, bool] = {}
    for column in resolver.feature_columns:
        text = _clean(raw.get(column))
        if not text:
            continue
        feature = _header_key(column)
        flag = parse_bool(text, field_name=feature, row_number=row_number)
        features[feature] = features.get(feature, False) or flag

    region = resolver.value(raw, "region") or None
    display_type = resolver.value(raw, "display_type") or None

    return CanonicalRow(
        row_number=row_number,
        model_name=resolver.value(raw, "model_name"),
        month=parse_month(resolver.value(raw, "month"), row_number=row_number),
        sales_count=parse_number(
            resolver.value(raw, "sales_count"), field_name="sales_count", row_number=row_number, integer=True
        ),
        price=parse_number(resolver.value(raw, "price"), field_name="price", row_number=row_number),
        region=region,
        discount_price=_optional_number(resolver, raw, "discount_price", row_number),
        battery_life=_optional_number(resolver, raw, "battery_life", row_number),
        display_type=display_type,
        brand=resolver.value(raw, "brand") or None,
        features=features,
    )


def normalize_row(raw: Mapping[Any, Any], row_number: int = 1) -> CanonicalRow:
    """
    Normalize one raw key/value row.

    Raises SchemaError when a required field is missing or empty and
    FieldTypeError when a value cannot be parsed.
    """
    return _normalize_with(ColumnResolver(list(raw.keys())), raw, row_number)


def normalize_rows(records: list[Mapping[Any, Any]], columns: list[Any] | None = None) -> NormalizedBatch:
    """
    Normalize a sequence of raw rows sharing one header.

    Row numbers are 1-based data rows (the header is not counted).
    """
    if columns is None:
        columns = list(records[0].keys()) if records else []
    resolver = ColumnResolver(columns)
    missing = resolver.missing_required()
    if missing:
        raise SchemaError(
            f"CSV is missing required column(s): {', '.join(missing)}",
            field=missing[0],
        )

    rows: list[CanonicalRow] = []
    failures: list[RowFailure] = []
    for index, raw in enumerate(records, start=1):
        try:
            rows.append(_normalize_with(resolver, raw, index))
        except (SchemaError, FieldTypeError) as exc:
            failures.append(RowFailure(row_number=index, reason=exc.message, kind=exc.kind, field=exc.field))
    return NormalizedBatch(rows=rows, failures=failures)


def read_csv_bytes(file_bytes: bytes) -> pd.DataFrame:
    """Load raw CSV bytes as an all-string DataFrame."""
    if not file_bytes or not file_bytes.strip():
        raise SchemaError("CSV file is empty")
    try:
        return pd.read_csv(
            io.BytesIO(file_bytes),
            dtype=str,
            keep_default_na=False,
            encoding="utf-8-sig",
            skipinitialspace=True,
        )
    except UnicodeDecodeError:
        raise SchemaError("CSV file must be UTF-8 encoded")
    except pd.errors.EmptyDataError:
        raise SchemaError("CSV file is empty")
    except pd.errors.ParserError as exc:
        raise SchemaError(f"CSV file could not be parsed: {exc}")


def parse_csv(file_bytes: bytes) -> NormalizedBatch:
    """Read and normalize an uploaded CSV file."""
    frame = read_csv_bytes(file_bytes)
    batch = normalize_rows(frame.to_dict(orient="records"), columns=list(frame.columns))
    logger.info(
        "catalog.normalize.completed",
        rows=batch.total_rows,
        succeeded=len(batch.rows),
        failed=len(batch.failures),
    )
    return batch
