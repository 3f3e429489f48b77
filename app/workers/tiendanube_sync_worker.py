"""
Tiendanube Sync Worker

Periodic full resync for every connected store: products, orders, checkouts,
then duplicate cleanup and local refresh. Converges anything webhooks missed.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from app.database import SessionLocal
from app.exceptions import StoreSyncError
from app.services.credentials import client_for_store, list_active_store_ids
from app.services.reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)

SYNC_ENTITIES = ("product", "order", "checkout")


async def sync_store(db, store_id: str, client=None) -> Dict[str, Any]:
    """Full resync of one store. Entity failures are recorded, not raised."""
    client = client or client_for_store(db, store_id)
    engine = ReconciliationEngine(db, client)
    summary: Dict[str, Any] = {}
    for entity_type in SYNC_ENTITIES:
        summary[entity_type] = await engine.bulk_sync(entity_type, store_id)
    summary["cleanup"] = engine.cleanup_duplicates(store_id)
    summary["refresh"] = engine.refresh_local_from_snapshot(store_id)
    return summary


async def run_tiendanube_sync_worker(session_factory: Optional[Callable] = None) -> Dict[str, Any]:
    """
    Run a single sync cycle for all active stores.

    Returns:
        Summary of sync results across all stores
    """
    db = (session_factory or SessionLocal)()
    synced = []
    failed = []
    try:
        store_ids = list_active_store_ids(db)
        logger.info("Starting Tiendanube sync for %s stores", len(store_ids))
        for store_id in store_ids:
            try:
                summary = await sync_store(db, store_id)
            except StoreSyncError as e:
                failed.append({"store_id": store_id, "error": e.message})
                logger.error("Store %s: sync failed: %s", store_id, e.message)
                continue
            errors = sum(summary[e]["errors"] for e in SYNC_ENTITIES)
            synced.append({"store_id": store_id, "errors": errors})
            logger.info("Store %s: sync complete (%s item errors)", store_id, errors)
    finally:
        db.close()

    return {
        "success": not failed,
        "message": f"Synced {len(synced)} stores, {len(failed)} failed",
        "synced": synced,
        "failed": failed,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
