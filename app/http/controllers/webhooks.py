"""
Webhook routes. The Tiendanube receiver is public (no tenant header); HMAC verified.
Log browsing, replay and registration require X-Store-Id.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, status, Query
from sqlalchemy.orm import Session

from app.auth import get_current_store
from app.config import settings
from app.database import get_db
from app.exceptions import ValidationError
from app.http.requests.schemas import (
    WebhookConfigureRequest,
    WebhookRegistrationResponse,
    WebhookResponse,
)
from app.models import WebhookLogStatus
from app.services.credentials import StoreAccess, client_for_store
from app.services.tiendanube_webhook_handler import process_tiendanube_webhook, replay_entry
from app.services.webhook_ledger import WebhookLedger, serialize_log
from app.services.webhook_registration import WEBHOOK_EVENTS, register_all, webhook_status
from app.services.webhook_verification import SIGNATURE_HEADERS

logger = logging.getLogger(__name__)
router = APIRouter()

SUPPORTED_PROVIDERS = ("tiendanube",)


@router.get("/info")
async def webhook_info():
    """Public: where and how to send Tiendanube webhooks."""
    return {
        "endpoint": settings.DEFAULT_WEBHOOK_URL or "/api/webhooks/tiendanube",
        "method": "POST",
        "signatureHeader": SIGNATURE_HEADERS[0],
        "secretConfigured": bool(settings.TIENDANUBE_APP_SECRET),
        "supportedEvents": WEBHOOK_EVENTS,
    }


@router.get("/logs")
async def get_webhook_logs(
    db: Session = Depends(get_db),
    store: StoreAccess = Depends(get_current_store),
    limit: int = Query(50, ge=1, le=200),
    event: Optional[str] = Query(None),
    log_status: Optional[WebhookLogStatus] = Query(None, alias="status"),
):
    """Recent ledger entries for the current store."""
    rows = WebhookLedger(db).recent(store.store_id, limit=limit, event=event, status=log_status)
    return {"logs": [serialize_log(r) for r in rows], "count": len(rows)}


@router.get("/logs/{idempotency_key:path}/payload")
async def get_webhook_log(
    idempotency_key: str,
    db: Session = Depends(get_db),
    store: StoreAccess = Depends(get_current_store),
):
    """One ledger entry including its raw payload."""
    entry = WebhookLedger(db).get(idempotency_key)
    if not entry or entry.store_id != store.store_id:
        raise HTTPException(status_code=404, detail="Webhook log not found")
    return serialize_log(entry, include_payload=True)


@router.post("/logs/{idempotency_key:path}/replay", response_model=WebhookResponse)
async def replay_webhook_log(
    idempotency_key: str,
    db: Session = Depends(get_db),
    store: StoreAccess = Depends(get_current_store),
):
    """Re-run a FAILED (or stranded RECEIVED) delivery from its stored payload."""
    entry = WebhookLedger(db).get(idempotency_key)
    if not entry or entry.store_id != store.store_id:
        raise HTTPException(status_code=404, detail="Webhook log not found")
    outcome = await replay_entry(db, entry)
    return outcome.to_dict()


@router.post("/configure", response_model=WebhookRegistrationResponse)
async def configure_webhooks(
    body: Optional[WebhookConfigureRequest] = None,
    db: Session = Depends(get_db),
    store: StoreAccess = Depends(get_current_store),
):
    """Register every supported event with Tiendanube for the current store."""
    webhook_url = (body.webhook_url if body else None) or settings.DEFAULT_WEBHOOK_URL
    if not webhook_url:
        raise ValidationError("webhook_url is required when WEBHOOK_BASE_URL is not configured")
    client = client_for_store(db, store.store_id)
    results = await register_all(webhook_url, client)
    failed = results["failed"]
    return {
        "success": failed == 0,
        "message": (
            f"All {results['total']} webhooks registered"
            if failed == 0
            else f"{results['successful']} of {results['total']} webhooks registered, {failed} failed"
        ),
        "total": results["total"],
        "successful": results["successful"],
        "failed": failed,
        "errors": results["errors"],
        "webhookUrl": results["webhook_url"],
        "version": results["version"],
    }


@router.get("/status")
async def get_webhook_status(
    db: Session = Depends(get_db),
    store: StoreAccess = Depends(get_current_store),
):
    """Webhooks currently registered on Tiendanube vs. the ones we expect."""
    client = client_for_store(db, store.store_id)
    return await webhook_status(client)


@router.post("/{provider}", response_model=WebhookResponse)
async def receive_webhook(
    provider: str,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Public endpoint for platform webhooks. No tenant header required.
    The raw body is read before any parsing: the signature covers the exact bytes.
    200 on processed/duplicate/ignored, 400 malformed, 401 bad signature, 500 on failure (platform retries).
    """
    if provider.lower() not in SUPPORTED_PROVIDERS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unsupported provider: {provider}")
    raw_body = await request.body()
    outcome = await process_tiendanube_webhook(db, raw_body, request.headers)
    return outcome.to_dict()
