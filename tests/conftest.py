"""
Shared fixtures: in-memory database, API client and a fake Tiendanube client.
"""
import json
import os

# Must be set before the app is imported: Settings reads the environment at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TIENDANUBE_APP_SECRET"] = "test-app-secret"
os.environ["TIENDANUBE_APP_ID"] = "1234"
os.environ["SYNC_INTERVAL_SEC"] = "0"
os.environ["REPLAY_INTERVAL_SEC"] = "0"
os.environ.pop("TIENDANUBE_ACCESS_TOKEN", None)
os.environ.pop("TIENDANUBE_STORE_ID", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from app.database import get_db, Base
from app.exceptions import NotFoundUpstream, StoreSyncError
from app.services.credentials import save_store_credential
from app.services.webhook_verification import compute_signature

WEBHOOK_SECRET = "test-app-secret"
STORE_ID = "42"

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


class FakeTiendanubeClient:
    """
    Stands in for TiendanubeClient. `entities` maps (entity_type, id) to a payload or an
    exception to raise; missing entries answer 404. `pages` maps (entity_type, page) the same way;
    missing pages are empty.
    """

    def __init__(self, store_id=STORE_ID):
        self.store_id = store_id
        self.entities = {}
        self.pages = {}
        self.calls = []
        self.registered = []
        self.fail_events = {}
        self.on_fetch = None

    async def get_entity(self, entity_type, entity_id):
        self.calls.append(("get", entity_type, str(entity_id)))
        if self.on_fetch:
            self.on_fetch(entity_type, str(entity_id))
        value = self.entities.get((entity_type, str(entity_id)))
        if value is None:
            raise NotFoundUpstream(f"{entity_type} {entity_id} not found")
        if isinstance(value, Exception):
            raise value
        return value

    async def list_page(self, entity_type, page, per_page):
        self.calls.append(("list", entity_type, page))
        value = self.pages.get((entity_type, page), [])
        if isinstance(value, Exception):
            raise value
        return value

    async def register_webhook(self, event, url):
        if event in self.fail_events:
            raise StoreSyncError(self.fail_events[event])
        self.registered.append((event, url))
        return {"id": len(self.registered), "event": event, "url": url}

    async def list_webhooks(self):
        return [{"id": i, "event": event, "url": url} for i, (event, url) in enumerate(self.registered, 1)]

    async def get_store(self):
        return {"id": int(self.store_id), "name": {"es": "Tienda Demo"}, "business_id": "30-1234"}


def make_product(product_id, **overrides):
    variant = {
        "id": int(product_id) * 10,
        "price": "19.99",
        "promotional_price": None,
        "stock": 5,
        "weight": "0.250",
        "sku": f"SKU-{product_id}",
    }
    variant.update(overrides.pop("variant", {}))
    payload = {
        "id": int(product_id),
        "name": {"es": "Remera", "pt": "Camiseta"},
        "description": {"es": "<p>Algodon</p>"},
        "handle": {"es": "remera"},
        "published": True,
        "tags": "verano,algodon",
        "brand": "Acme",
        "variants": [variant],
        "created_at": "2024-01-15T10:30:00+0000",
        "updated_at": "2024-01-16T08:00:00+0000",
    }
    payload.update(overrides)
    return payload


def make_order(order_id, product_ids=(), **overrides):
    payload = {
        "id": int(order_id),
        "number": 100 + int(order_id) % 1000,
        "token": f"tok-{order_id}",
        "contact_name": "Ana Perez",
        "contact_email": "ana@example.com",
        "status": "open",
        "payment_status": "paid",
        "shipping_status": "unpacked",
        "subtotal": "100.00",
        "discount": "0.00",
        "total": "100.00",
        "currency": "ARS",
        "gateway": "mercadopago",
        "products": [{"product_id": int(pid), "quantity": 1, "price": "100.00"} for pid in product_ids],
        "created_at": "2024-02-01T12:00:00+0000",
        "updated_at": "2024-02-01T12:05:00+0000",
        "paid_at": "2024-02-01T12:05:00+0000",
    }
    payload.update(overrides)
    return payload


def make_checkout(checkout_id, **overrides):
    payload = {
        "id": int(checkout_id),
        "token": f"chk-{checkout_id}",
        "abandoned_checkout_url": f"https://demo.mitiendanube.com/checkout/{checkout_id}",
        "contact_name": "Ana Perez",
        "contact_email": "ana@example.com",
        "subtotal": "50.00",
        "total": "55.00",
        "currency": "ARS",
        "products": [],
        "created_at": "2024-03-01T09:00:00+0000",
        "updated_at": "2024-03-01T09:10:00+0000",
    }
    payload.update(overrides)
    return payload


def signed_delivery(payload, secret=WEBHOOK_SECRET):
    """Return (raw_body, headers) for a signed Tiendanube delivery."""
    raw_body = json.dumps(payload).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "x-linkedstore-hmac-sha256": compute_signature(raw_body, secret),
    }
    return raw_body, headers


@pytest.fixture(scope="session", autouse=True)
def setup_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(setup_database):
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
        db.close()


@pytest.fixture
def client(db_session):
    return TestClient(app)


@pytest.fixture
def fake_client():
    return FakeTiendanubeClient()


@pytest.fixture
def store_credential(db_session):
    return save_store_credential(db_session, STORE_ID, "tok-42", scope="read_products,read_orders")


@pytest.fixture
def store_headers(store_credential):
    return {"X-Store-Id": STORE_ID}
