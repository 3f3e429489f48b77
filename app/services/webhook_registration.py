"""
Tiendanube webhook registration: subscribe the callback URL to every event we handle.
"""
import logging
from typing import Any
from urllib.parse import urlparse

from app.exceptions import StoreSyncError, ValidationError

logger = logging.getLogger(__name__)

# Bump when the list changes so stores can be re-configured
WEBHOOK_EVENTS_VERSION = "2025-03.1"

WEBHOOK_EVENTS = [
    "category/created",
    "category/updated",
    "category/deleted",
    "app/uninstalled",
    "app/suspended",
    "app/resumed",
    "order/created",
    "order/updated",
    "order/paid",
    "order/packed",
    "order/fulfilled",
    "order/cancelled",
    "order/custom_fields_updated",
    "order/edited",
    "order/pending",
    "order/voided",
    "product/created",
    "product/updated",
    "product/deleted",
    "product_variant/custom_fields_updated",
    "domain/updated",
    "order_custom_field/created",
    "order_custom_field/updated",
    "order_custom_field/deleted",
    "product_variant_custom_field/created",
    "product_variant_custom_field/updated",
    "product_variant_custom_field/deleted",
    "subscription/updated",
    "fulfillment/updated",
    # Compliance
    "store/redact",
    "customers/redact",
    "customers/data_request",
]


def validate_callback_url(url: str) -> str:
    """Require an absolute http(s) URL with a host."""
    url = (url or "").strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc or " " in url:
        raise ValidationError(f"Invalid webhook URL: {url!r}")
    return url


async def register_all(callback_url: str, client) -> dict[str, Any]:
    """
    Register every event in WEBHOOK_EVENTS for the client's store.
    One call per event; a failure is recorded and the loop continues.
    """
    callback_url = validate_callback_url(callback_url)
    results = {
        "total": len(WEBHOOK_EVENTS),
        "successful": 0,
        "failed": 0,
        "errors": [],
        "webhook_url": callback_url,
        "version": WEBHOOK_EVENTS_VERSION,
    }
    for event in WEBHOOK_EVENTS:
        try:
            await client.register_webhook(event, callback_url)
        except StoreSyncError as e:
            results["failed"] += 1
            results["errors"].append({"event": event, "error": e.message})
            logger.warning("Webhook registration for %s failed: %s", event, e.message)
            continue
        except Exception as e:
            results["failed"] += 1
            results["errors"].append({"event": event, "error": str(e)})
            logger.exception("Webhook registration for %s crashed: %s", event, e)
            continue
        results["successful"] += 1

    logger.info(
        "Webhook registration for store %s: %s/%s registered",
        getattr(client, "store_id", "?"), results["successful"], results["total"],
    )
    return results


async def webhook_status(client) -> dict[str, Any]:
    """Compare the platform's registrations against WEBHOOK_EVENTS."""
    webhooks = [w for w in await client.list_webhooks() if isinstance(w, dict)]
    registered = sorted({w["event"] for w in webhooks if isinstance(w.get("event"), str) and w["event"]})
    by_type: dict[str, int] = {}
    for event in registered:
        resource = event.split("/")[0]
        by_type[resource] = by_type.get(resource, 0) + 1
    return {
        "total_webhooks": len(webhooks),
        "registered": registered,
        "missing": [e for e in WEBHOOK_EVENTS if e not in registered],
        "by_type": by_type,
        "webhooks": [{"id": w.get("id"), "event": w.get("event"), "url": w.get("url")} for w in webhooks],
        "version": WEBHOOK_EVENTS_VERSION,
    }
