"""
Event routing for Tiendanube webhooks.

Event names (`resource/action`) are parsed into a closed WebhookTopic enum and
grouped into categories; anything unknown falls into UNRECOGNIZED and is acknowledged.
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from app.exceptions import ValidationError
from app.models import StoreConnectionStatus
from app.services.credentials import set_store_status
from app.services.reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)


class WebhookTopic(str, enum.Enum):
    PRODUCT_CREATED = "product/created"
    PRODUCT_UPDATED = "product/updated"
    PRODUCT_DELETED = "product/deleted"
    PRODUCT_VARIANT_CUSTOM_FIELDS_UPDATED = "product_variant/custom_fields_updated"
    ORDER_CREATED = "order/created"
    ORDER_UPDATED = "order/updated"
    ORDER_PAID = "order/paid"
    ORDER_PACKED = "order/packed"
    ORDER_FULFILLED = "order/fulfilled"
    ORDER_CANCELLED = "order/cancelled"
    ORDER_CUSTOM_FIELDS_UPDATED = "order/custom_fields_updated"
    ORDER_EDITED = "order/edited"
    ORDER_PENDING = "order/pending"
    ORDER_VOIDED = "order/voided"
    CATEGORY_CREATED = "category/created"
    CATEGORY_UPDATED = "category/updated"
    CATEGORY_DELETED = "category/deleted"
    APP_UNINSTALLED = "app/uninstalled"
    APP_SUSPENDED = "app/suspended"
    APP_RESUMED = "app/resumed"
    DOMAIN_UPDATED = "domain/updated"
    ORDER_CUSTOM_FIELD_CREATED = "order_custom_field/created"
    ORDER_CUSTOM_FIELD_UPDATED = "order_custom_field/updated"
    ORDER_CUSTOM_FIELD_DELETED = "order_custom_field/deleted"
    PRODUCT_VARIANT_CUSTOM_FIELD_CREATED = "product_variant_custom_field/created"
    PRODUCT_VARIANT_CUSTOM_FIELD_UPDATED = "product_variant_custom_field/updated"
    PRODUCT_VARIANT_CUSTOM_FIELD_DELETED = "product_variant_custom_field/deleted"
    SUBSCRIPTION_UPDATED = "subscription/updated"
    FULFILLMENT_UPDATED = "fulfillment/updated"
    STORE_REDACT = "store/redact"
    CUSTOMERS_REDACT = "customers/redact"
    CUSTOMERS_DATA_REQUEST = "customers/data_request"


class EventCategory(str, enum.Enum):
    ERASURE = "ERASURE"
    LIFECYCLE = "LIFECYCLE"
    PRODUCT = "PRODUCT"
    ORDER = "ORDER"
    CATALOG = "CATALOG"
    METADATA = "METADATA"
    UNRECOGNIZED = "UNRECOGNIZED"


T = WebhookTopic
TOPIC_CATEGORIES = {
    T.PRODUCT_CREATED: EventCategory.PRODUCT,
    T.PRODUCT_UPDATED: EventCategory.PRODUCT,
    T.PRODUCT_DELETED: EventCategory.PRODUCT,
    T.PRODUCT_VARIANT_CUSTOM_FIELDS_UPDATED: EventCategory.PRODUCT,
    T.ORDER_CREATED: EventCategory.ORDER,
    T.ORDER_UPDATED: EventCategory.ORDER,
    T.ORDER_PAID: EventCategory.ORDER,
    T.ORDER_PACKED: EventCategory.ORDER,
    T.ORDER_FULFILLED: EventCategory.ORDER,
    T.ORDER_CANCELLED: EventCategory.ORDER,
    T.ORDER_CUSTOM_FIELDS_UPDATED: EventCategory.ORDER,
    T.ORDER_EDITED: EventCategory.ORDER,
    T.ORDER_PENDING: EventCategory.ORDER,
    T.ORDER_VOIDED: EventCategory.ORDER,
    T.CATEGORY_CREATED: EventCategory.CATALOG,
    T.CATEGORY_UPDATED: EventCategory.CATALOG,
    T.CATEGORY_DELETED: EventCategory.CATALOG,
    T.APP_UNINSTALLED: EventCategory.LIFECYCLE,
    T.APP_SUSPENDED: EventCategory.LIFECYCLE,
    T.APP_RESUMED: EventCategory.LIFECYCLE,
    T.DOMAIN_UPDATED: EventCategory.METADATA,
    T.ORDER_CUSTOM_FIELD_CREATED: EventCategory.METADATA,
    T.ORDER_CUSTOM_FIELD_UPDATED: EventCategory.METADATA,
    T.ORDER_CUSTOM_FIELD_DELETED: EventCategory.METADATA,
    T.PRODUCT_VARIANT_CUSTOM_FIELD_CREATED: EventCategory.METADATA,
    T.PRODUCT_VARIANT_CUSTOM_FIELD_UPDATED: EventCategory.METADATA,
    T.PRODUCT_VARIANT_CUSTOM_FIELD_DELETED: EventCategory.METADATA,
    T.SUBSCRIPTION_UPDATED: EventCategory.METADATA,
    T.FULFILLMENT_UPDATED: EventCategory.METADATA,
    T.STORE_REDACT: EventCategory.ERASURE,
    T.CUSTOMERS_REDACT: EventCategory.ERASURE,
    T.CUSTOMERS_DATA_REQUEST: EventCategory.ERASURE,
}

LIFECYCLE_STATUS = {
    T.APP_UNINSTALLED: StoreConnectionStatus.UNINSTALLED,
    T.APP_SUSPENDED: StoreConnectionStatus.SUSPENDED,
    T.APP_RESUMED: StoreConnectionStatus.ACTIVE,
}

# Events that do not call the platform API (and so need no credential)
OFFLINE_CATEGORIES = (EventCategory.ERASURE, EventCategory.LIFECYCLE, EventCategory.CATALOG,
                      EventCategory.METADATA, EventCategory.UNRECOGNIZED)


def parse_topic(name: Optional[str]) -> Optional[WebhookTopic]:
    if not name:
        return None
    try:
        return WebhookTopic(name.strip().lower())
    except ValueError:
        return None


def categorize(name: Optional[str]) -> EventCategory:
    topic = parse_topic(name)
    if topic is None:
        return EventCategory.UNRECOGNIZED
    return TOPIC_CATEGORIES[topic]


def needs_client(name: Optional[str]) -> bool:
    topic = parse_topic(name)
    if topic is None or topic == T.PRODUCT_DELETED:
        return False
    return categorize(name) not in OFFLINE_CATEGORIES


def extract_entity_id(payload: dict) -> Optional[str]:
    """Entity id is `id` at the top level, or `data.id`."""
    entity_id = payload.get("id")
    if entity_id is None and isinstance(payload.get("data"), dict):
        entity_id = payload["data"].get("id")
    if entity_id is None or entity_id == "":
        return None
    return str(entity_id)


@dataclass
class RouteResult:
    status: str  # processed | ignored
    message: str
    detail: dict[str, Any] = field(default_factory=dict)


class EventRouter:
    """
    Dispatches one verified, de-duplicated delivery.
    `client_factory(store_id)` builds a TiendanubeClient; it is only called for
    events that fetch from the platform.
    """

    def __init__(self, db: Session, client_factory: Optional[Callable[[str], Any]] = None):
        self.db = db
        self.client_factory = client_factory

    def _engine(self, store_id: str, with_client: bool = False) -> ReconciliationEngine:
        client = None
        if with_client:
            if self.client_factory is None:
                raise ValidationError("No Tiendanube client available for entity sync")
            client = self.client_factory(store_id)
        return ReconciliationEngine(self.db, client)

    async def dispatch(self, store_id: str, event: str, payload: dict) -> RouteResult:
        topic = parse_topic(event)
        category = categorize(event)

        if topic is None:
            logger.warning("Unrecognized Tiendanube event %r for store %s; acknowledging", event, store_id)
            return RouteResult("ignored", f"Unrecognized event {event}")

        if category == EventCategory.ERASURE:
            return self._handle_erasure(topic, store_id, payload)
        if category == EventCategory.LIFECYCLE:
            return self._handle_lifecycle(topic, store_id)
        if category in (EventCategory.CATALOG, EventCategory.METADATA):
            logger.info("Event %s for store %s recorded, no local state to update", event, store_id)
            return RouteResult("ignored", f"Event {topic.value} acknowledged")

        entity_id = extract_entity_id(payload)
        if not entity_id:
            raise ValidationError(f"Event {topic.value} is missing the entity id")
        if category == EventCategory.PRODUCT:
            return await self._handle_product(topic, store_id, entity_id)
        return await self._handle_order(topic, store_id, entity_id)

    async def _handle_product(self, topic: WebhookTopic, store_id: str, entity_id: str) -> RouteResult:
        if topic == T.PRODUCT_DELETED:
            deleted = self._engine(store_id).delete_local_entity("product", entity_id, store_id)
            return RouteResult("processed", f"Product {entity_id} deleted", {"deleted": deleted})
        outcome = await self._engine(store_id, with_client=True).sync_single_entity("product", entity_id, store_id)
        return RouteResult("processed", f"Product {entity_id} {outcome.outcome}", outcome.to_dict())

    async def _handle_order(self, topic: WebhookTopic, store_id: str, entity_id: str) -> RouteResult:
        outcome = await self._engine(store_id, with_client=True).sync_single_entity("order", entity_id, store_id)
        return RouteResult("processed", f"Order {entity_id} {outcome.outcome} ({topic.value})", outcome.to_dict())

    def _handle_lifecycle(self, topic: WebhookTopic, store_id: str) -> RouteResult:
        status = LIFECYCLE_STATUS[topic]
        updated = set_store_status(self.db, store_id, status)
        logger.info("Store %s connection state -> %s (%s)", store_id, status.value, topic.value)
        return RouteResult("processed", f"Store status set to {status.value}", {"updated": updated})

    def _handle_erasure(self, topic: WebhookTopic, store_id: str, payload: dict) -> RouteResult:
        engine = self._engine(store_id)
        if topic == T.STORE_REDACT:
            counts = engine.delete_store_data(store_id)
            return RouteResult("processed", f"Deleted {counts['deleted']} records for store {store_id}", counts)

        customer = payload.get("customer") if isinstance(payload.get("customer"), dict) else {}
        email = customer.get("email")
        if topic == T.CUSTOMERS_REDACT:
            counts = engine.redact_customer(store_id, email, payload.get("orders_to_redact") or [])
            return RouteResult("processed", f"Deleted {counts['deleted']} customer records", counts)

        data = engine.collect_customer_data(store_id, email, payload.get("orders_requested") or [])
        logger.warning(
            "Data request for store %s customer %s: %s orders, %s checkouts held locally",
            store_id, customer.get("id"), len(data["orders"]), len(data["checkouts"]),
        )
        return RouteResult("processed", "Customer data request recorded", data)
