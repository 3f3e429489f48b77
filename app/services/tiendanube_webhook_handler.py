"""
Tiendanube webhook: signature check, idempotency registration and event processing.

Processing runs inline within the request. A single-entity reconciliation is one
upstream GET (bounded by UPSTREAM_TIMEOUT, no retries) plus one row write, which
fits inside the platform's ~10s delivery deadline. On failure the ledger entry is
marked FAILED and the error propagates so the platform retries; the retry reclaims it.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import AuthError, DuplicateDelivery, ValidationError
from app.models import WebhookLog
from app.services.credentials import client_for_store
from app.services.webhook_ledger import WebhookLedger, build_idempotency_key
from app.services.webhook_router import EventRouter, WebhookTopic, extract_entity_id, parse_topic
from app.services.webhook_verification import get_signature_header, verify_webhook_signature

logger = logging.getLogger(__name__)

STORE_ID_HEADER = "x-store-id"


@dataclass
class WebhookOutcome:
    success: bool
    message: str
    idempotency_key: Optional[str] = None
    duplicate: bool = False
    status: Optional[str] = None
    detail: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        body = {"success": self.success, "message": self.message}
        if self.idempotency_key:
            body["idempotencyKey"] = self.idempotency_key
        if self.duplicate:
            body["duplicate"] = True
        if self.status:
            body["status"] = self.status
        if self.detail:
            body["detail"] = self.detail
        return body


def webhook_client_factory(db: Session) -> Callable[[str], Any]:
    """Clients for the webhook path: short timeout, no retries (the platform retries for us)."""
    def factory(store_id: str):
        return client_for_store(db, store_id, timeout=settings.UPSTREAM_TIMEOUT, max_retries=0)
    return factory


def delivery_entity_id(event: str, payload: dict) -> Optional[str]:
    """Id that distinguishes deliveries of the same event: the entity, or the customer for compliance events."""
    entity_id = extract_entity_id(payload)
    if entity_id:
        return entity_id
    topic = parse_topic(event)
    if topic in (WebhookTopic.CUSTOMERS_REDACT, WebhookTopic.CUSTOMERS_DATA_REQUEST):
        data_request = payload.get("data_request") if isinstance(payload.get("data_request"), dict) else {}
        customer = payload.get("customer") if isinstance(payload.get("customer"), dict) else {}
        ref = data_request.get("id") or customer.get("id")
        return str(ref) if ref is not None else None
    return None


def parse_delivery(raw_body: bytes, headers: Mapping[str, str]) -> tuple[str, str, Optional[str], dict]:
    """Return (store_id, event, entity_id, payload) or raise ValidationError."""
    try:
        payload = json.loads(raw_body.decode("utf-8")) if raw_body else None
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError("Invalid JSON") from e
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object")

    store_id = payload.get("store_id") or headers.get(STORE_ID_HEADER)
    if not store_id:
        raise ValidationError("Missing store_id")
    if isinstance(store_id, bool) or not isinstance(store_id, (str, int)):
        raise ValidationError("Invalid store_id")
    event = payload.get("event")
    if not isinstance(event, str) or not event.strip():
        raise ValidationError("Missing event")
    event = event.strip()
    return str(store_id), event, delivery_entity_id(event, payload), payload


async def _run(
    db: Session,
    ledger: WebhookLedger,
    entry: WebhookLog,
    store_id: str,
    event: str,
    payload: dict,
    client_factory: Optional[Callable[[str], Any]],
) -> WebhookOutcome:
    router = EventRouter(db, client_factory or webhook_client_factory(db))
    try:
        result = await router.dispatch(store_id, event, payload)
    except Exception as e:
        logger.exception("Tiendanube webhook %s failed: %s", entry.idempotency_key, e)
        ledger.mark_failed(entry, f"{type(e).__name__}: {e}")
        raise

    if result.status == "ignored":
        ledger.mark_ignored(entry, result.message)
    else:
        ledger.mark_success(entry)
    return WebhookOutcome(
        success=True,
        message=result.message,
        idempotency_key=entry.idempotency_key,
        status=result.status,
        detail=result.detail,
    )


async def process_tiendanube_webhook(
    db: Session,
    raw_body: bytes,
    headers: Mapping[str, str],
    *,
    secret: Optional[str] = None,
    client_factory: Optional[Callable[[str], Any]] = None,
) -> WebhookOutcome:
    """
    Verify -> parse -> register in ledger -> route -> finalize.
    `raw_body` must be the unparsed request bytes.
    """
    secret = secret if secret is not None else settings.TIENDANUBE_APP_SECRET
    if not secret:
        logger.error("TIENDANUBE_APP_SECRET not configured; rejecting webhook")
        raise AuthError("Webhook secret not configured")
    if not verify_webhook_signature(raw_body, get_signature_header(headers), secret):
        logger.warning("Tiendanube webhook: signature verification failed")
        raise AuthError("Invalid webhook signature")

    store_id, event, entity_id, payload = parse_delivery(raw_body, headers)
    key = build_idempotency_key(store_id, event, entity_id)

    ledger = WebhookLedger(db)
    registration = ledger.register(
        key,
        store_id=store_id,
        event=event,
        entity_id=entity_id,
        payload=raw_body.decode("utf-8"),
    )
    if not registration.is_new:
        logger.info("Tiendanube webhook %s already handled (%s); skipping", key, registration.entry.status.value)
        return WebhookOutcome(
            success=True,
            message="Duplicate delivery, already processed",
            idempotency_key=key,
            duplicate=True,
            status=registration.entry.status.value.lower(),
        )

    logger.info("Tiendanube webhook %s registered (attempt %s)", key, registration.entry.attempts)
    return await _run(db, ledger, registration.entry, store_id, event, payload, client_factory)


async def replay_entry(
    db: Session,
    entry: WebhookLog,
    *,
    client_factory: Optional[Callable[[str], Any]] = None,
) -> WebhookOutcome:
    """Re-run a FAILED or stranded RECEIVED delivery from its stored payload."""
    ledger = WebhookLedger(db)
    if not ledger.claim_for_replay(entry):
        raise DuplicateDelivery(f"Webhook {entry.idempotency_key} already processed")
    try:
        payload = json.loads(entry.payload or "{}")
    except json.JSONDecodeError as e:
        ledger.mark_failed(entry, "Stored payload is not valid JSON")
        raise ValidationError("Stored payload is not valid JSON") from e
    return await _run(db, ledger, entry, entry.store_id, entry.event, payload, client_factory)
