"""
SQLAlchemy models for the Tiendanube ingestion and sync pipeline.
All model and enum definitions live here for simplicity and to avoid circular imports.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Numeric, Text, Enum as SQLEnum, JSON, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum
import uuid

PROVIDER_TIENDANUBE = "tiendanube"

# Enums
class StoreConnectionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    UNINSTALLED = "UNINSTALLED"

class WebhookLogStatus(str, enum.Enum):
    RECEIVED = "RECEIVED"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    IGNORED = "IGNORED"

class OrderState(str, enum.Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"
    PENDING = "PENDING"
    CANCELLED = "CANCELLED"

class SyncJobType(str, enum.Enum):
    PRODUCTS = "PRODUCTS"
    ORDERS = "ORDERS"
    CHECKOUTS = "CHECKOUTS"
    CLEANUP = "CLEANUP"
    REFRESH = "REFRESH"

class SyncJobStatus(str, enum.Enum):
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"

# Models
class StoreCredential(Base):
    __tablename__ = "store_credentials"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    store_id = Column("store_id", String, unique=True, nullable=False, index=True)
    access_token_encrypted = Column("access_token_encrypted", String, nullable=False)
    business_id = Column("business_id", String, nullable=True)
    scope = Column("scope", String, nullable=True)
    store_info = Column("store_info", Text, nullable=True)
    status = Column(SQLEnum(StoreConnectionStatus), default=StoreConnectionStatus.ACTIVE, nullable=False)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

class WebhookLog(Base):
    __tablename__ = "webhook_logs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    idempotency_key = Column("idempotency_key", String, unique=True, nullable=False, index=True)
    store_id = Column("store_id", String, nullable=False, index=True)
    event = Column("event", String, nullable=False, index=True)
    entity_id = Column("entity_id", String, nullable=True)
    payload = Column("payload", Text, nullable=True)
    status = Column(SQLEnum(WebhookLogStatus), default=WebhookLogStatus.RECEIVED, nullable=False, index=True)
    error = Column("error", String, nullable=True)
    attempts = Column("attempts", Integer, default=1, nullable=False)
    received_at = Column("received_at", DateTime, nullable=False)
    processed_at = Column("processed_at", DateTime, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())

class TiendanubeProduct(Base):
    """Product snapshot. tiendanube_id is indexed, not unique: duplicates are collapsed by cleanup."""
    __tablename__ = "tiendanube_products"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    store_id = Column("store_id", String, nullable=False, index=True)
    tiendanube_id = Column("tiendanube_id", String, nullable=False, index=True)
    variant_id = Column("variant_id", String, nullable=True)
    name = Column("name", String, nullable=True)
    description = Column("description", Text, nullable=True)
    handle = Column("handle", String, nullable=True)
    published = Column("published", Boolean, default=False)
    tags = Column("tags", String, nullable=True)
    brand = Column("brand", String, nullable=True)
    price = Column("price", Numeric(12, 2), nullable=True)
    promotional_price = Column("promotional_price", Numeric(12, 2), nullable=True)
    stock = Column("stock", Integer, default=0, nullable=False)
    weight = Column("weight", Numeric(10, 3), nullable=True)
    sku = Column("sku", String, nullable=True, index=True)
    cost = Column("cost", Numeric(12, 2), nullable=True)
    source_created_at = Column("source_created_at", DateTime, nullable=True)
    source_updated_at = Column("source_updated_at", DateTime, nullable=True)
    raw = Column("raw", JSON, nullable=True)
    added_at = Column("added_at", DateTime, nullable=False)
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

class TiendanubeOrder(Base):
    """Order snapshot. Line items are kept as JSON for refresh_local_from_snapshot."""
    __tablename__ = "tiendanube_orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    store_id = Column("store_id", String, nullable=False, index=True)
    tiendanube_id = Column("tiendanube_id", String, nullable=False, index=True)
    number = Column("number", String, nullable=True)
    token = Column("token", String, nullable=True)
    contact_name = Column("contact_name", String, nullable=True)
    contact_email = Column("contact_email", String, nullable=True, index=True)
    status = Column("status", String, nullable=True)
    payment_status = Column("payment_status", String, nullable=True)
    shipping_status = Column("shipping_status", String, nullable=True)
    subtotal = Column("subtotal", Numeric(12, 2), nullable=True)
    discount = Column("discount", Numeric(12, 2), nullable=True)
    total = Column("total", Numeric(12, 2), nullable=True)
    currency = Column("currency", String(3), nullable=True)
    gateway = Column("gateway", String, nullable=True)
    products = Column("products", JSON, nullable=True)
    billing_address = Column("billing_address", JSON, nullable=True)
    shipping_address = Column("shipping_address", JSON, nullable=True)
    source_created_at = Column("source_created_at", DateTime, nullable=True)
    source_updated_at = Column("source_updated_at", DateTime, nullable=True)
    paid_at = Column("paid_at", DateTime, nullable=True)
    cancelled_at = Column("cancelled_at", DateTime, nullable=True)
    closed_at = Column("closed_at", DateTime, nullable=True)
    raw = Column("raw", JSON, nullable=True)
    added_at = Column("added_at", DateTime, nullable=False)
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

class TiendanubeCheckout(Base):
    __tablename__ = "tiendanube_checkouts"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    store_id = Column("store_id", String, nullable=False, index=True)
    tiendanube_id = Column("tiendanube_id", String, nullable=False, index=True)
    token = Column("token", String, nullable=True)
    abandoned_checkout_url = Column("abandoned_checkout_url", String, nullable=True)
    contact_name = Column("contact_name", String, nullable=True)
    contact_email = Column("contact_email", String, nullable=True, index=True)
    contact_phone = Column("contact_phone", String, nullable=True)
    subtotal = Column("subtotal", Numeric(12, 2), nullable=True)
    total = Column("total", Numeric(12, 2), nullable=True)
    currency = Column("currency", String(3), nullable=True)
    products = Column("products", JSON, nullable=True)
    source_created_at = Column("source_created_at", DateTime, nullable=True)
    source_updated_at = Column("source_updated_at", DateTime, nullable=True)
    raw = Column("raw", JSON, nullable=True)
    added_at = Column("added_at", DateTime, nullable=False)
    dismissed = Column("dismissed", Boolean, default=False, nullable=False)
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

class Product(Base):
    """Local catalog row linked to the platform product (provider, item_id)."""
    __tablename__ = "products"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    store_id = Column("store_id", String, nullable=False, index=True)
    provider = Column("provider", String, nullable=False, default=PROVIDER_TIENDANUBE)
    item_id = Column("item_id", String, nullable=False)
    sku = Column("sku", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    orders = relationship("Order", back_populates="product", cascade="all, delete-orphan")

    __table_args__ = (Index("ix_products_provider_item", "provider", "item_id"),)

class Order(Base):
    """Local order summary: one row per (platform order, product line)."""
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    store_id = Column("store_id", String, nullable=False, index=True)
    provider = Column("provider", String, nullable=False, default=PROVIDER_TIENDANUBE)
    provider_order_id = Column("provider_order_id", String, nullable=False, index=True)
    product_id = Column("product_id", String, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    state = Column(SQLEnum(OrderState), default=OrderState.PENDING, nullable=False)
    source_created_at = Column("source_created_at", DateTime, nullable=True)
    source_updated_at = Column("source_updated_at", DateTime, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    product = relationship("Product", back_populates="orders")

class SyncJob(Base):
    __tablename__ = "sync_jobs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    store_id = Column("store_id", String, nullable=False, index=True)
    job_type = Column("job_type", SQLEnum(SyncJobType), nullable=False)
    status = Column(SQLEnum(SyncJobStatus), default=SyncJobStatus.RUNNING)
    started_at = Column("started_at", DateTime, nullable=True)
    finished_at = Column("finished_at", DateTime, nullable=True)
    records_processed = Column("records_processed", Integer, default=0)
    records_failed = Column("records_failed", Integer, default=0)
    summary = Column("summary", JSON, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
