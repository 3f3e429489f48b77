"""
Webhook Replay Worker

Picks up ledger entries left in RECEIVED by a crashed request and runs them again.
Platform retries take care of FAILED entries; this only covers the crash window.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from app.database import SessionLocal
from app.exceptions import DuplicateDelivery
from app.services.tiendanube_webhook_handler import replay_entry
from app.services.webhook_ledger import WebhookLedger

logger = logging.getLogger(__name__)


async def run_webhook_replay_worker(
    session_factory: Optional[Callable] = None,
    client_factory: Optional[Callable[[str], Any]] = None,
    limit: int = 50,
) -> Dict[str, Any]:
    db = (session_factory or SessionLocal)()
    replayed = 0
    skipped = 0
    failures = []
    try:
        for entry in WebhookLedger(db).find_stale_received(limit=limit):
            key = entry.idempotency_key
            try:
                await replay_entry(db, entry, client_factory=client_factory)
                replayed += 1
            except DuplicateDelivery:
                skipped += 1
            except Exception as e:
                # Entry is already marked FAILED by the handler
                failures.append({"key": key, "error": str(e)})
                logger.warning("Replay of webhook %s failed: %s", key, e)
    finally:
        db.close()

    return {
        "success": not failures,
        "message": f"Replayed {replayed} webhooks, {len(failures)} failed, {skipped} skipped",
        "replayed": replayed,
        "skipped": skipped,
        "failures": failures,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
