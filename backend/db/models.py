"""
SalesCast Database Models

Tables for the sales-analytics platform.
Multi-tenant via company_id on users and products; sale records are
owned through their product.

Tables:
  1. companies      - Tenant organizations
  2. users          - Admin and company accounts
  3. products       - Canonical catalog derived from uploaded CSVs
  4. sale_records   - Monthly sales per product (additive on re-upload)
  5. offers         - Promotional campaigns (process-wide)
  6. training_runs  - Append-only model retraining history
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.orm import relationship

from db.session import Base


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


JSONType = JSON().with_variant(JSONB(), "postgresql")


# ─── 1. Companies ──────────────────────────────────────────────────────────


class Company(Base):
    __tablename__ = "companies"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False, unique=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    users = relationship("User", back_populates="company")
    products = relationship("Product", back_populates="company", cascade="all, delete-orphan")


# ─── 2. Users ───────────────────────────────────────────────────────────────


class User(Base):
    __tablename__ = "users"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    hashed_password = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False)
    company_id = Column(GUID(), ForeignKey("companies.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("role IN ('admin', 'company')", name="ck_user_role"),
        # company_id present iff role = company
        CheckConstraint(
            "(role = 'company' AND company_id IS NOT NULL) OR (role = 'admin' AND company_id IS NULL)",
            name="ck_user_company_scope",
        ),
        Index("ix_users_company", "company_id"),
    )

    company = relationship("Company", back_populates="users")


# ─── 3. Products ────────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    company_id = Column(GUID(), ForeignKey("companies.id"), nullable=False)
    model_name = Column(String(255), nullable=False)
    region = Column(String(100), nullable=False)
    battery_life = Column(Float)  # days
    display_type = Column(String(100))
    brand = Column(String(255))
    features = Column(JSONType, nullable=False, default=dict)  # {feature_name: bool}
    price = Column(Float, nullable=False)
    discount_price = Column(Float)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("company_id", "model_name", "region", name="uq_product_natural_key"),
        Index("ix_products_company", "company_id"),
        CheckConstraint("price >= 0", name="ck_product_price_non_negative"),
    )

    company = relationship("Company", back_populates="products")
    sales = relationship(
        "SaleRecord",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="SaleRecord.month",
    )

    @property
    def effective_price(self) -> float:
        return self.discount_price if self.discount_price is not None else self.price


# ─── 4. Sale Records ───────────────────────────────────────────────────────


class SaleRecord(Base):
    __tablename__ = "sale_records"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    product_id = Column(GUID(), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    month = Column(String(7), nullable=False)  # YYYY-MM
    sales_count = Column(Integer, nullable=False, default=0)
    revenue = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("product_id", "month", name="uq_sale_record_product_month"),
        Index("ix_sale_records_product_month", "product_id", "month"),
        CheckConstraint("sales_count >= 0", name="ck_sale_count_non_negative"),
    )

    product = relationship("Product", back_populates="sales")


# ─── 5. Offers (Campaigns) ─────────────────────────────────────────────────


class Offer(Base):
    __tablename__ = "offers"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_offers_dates", "start_date", "end_date"),
        CheckConstraint("end_date >= start_date", name="ck_offer_dates_valid"),
    )


# ─── 6. Training Runs ──────────────────────────────────────────────────────


class TrainingRun(Base):
    """
    Append-only audit trail of model retraining.

    Sources:
      - 'manual': explicit retrain request (admin global or company tenant)
      - 'csv': retrain triggered by a CSV upload
    """

    __tablename__ = "training_runs"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    training_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    accuracy = Column(Float, nullable=False)
    notes = Column(Text)
    source = Column(String(20), nullable=False)
    company_id = Column(GUID(), ForeignKey("companies.id"), nullable=True)  # NULL = global run
    rows_trained = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_training_runs_date", "training_date"),
        CheckConstraint("accuracy >= 0 AND accuracy <= 1", name="ck_training_accuracy_range"),
        CheckConstraint("source IN ('manual', 'csv')", name="ck_training_source"),
    )
