"""
Sync routes: on-demand bulk sync, cleanup and local refresh for the current store.
All of these answer 200 with a summary, even on partial failure.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.auth import get_current_store
from app.database import get_db
from app.http.requests.schemas import CleanupSummary, OrdersSyncResponse, RefreshSummary, SyncSummary
from app.models import SyncJob
from app.services.credentials import StoreAccess, client_for_store
from app.services.reconciliation import ENTITY_MODELS, ReconciliationEngine

logger = logging.getLogger(__name__)
router = APIRouter()


def _engine(db: Session, store: StoreAccess) -> ReconciliationEngine:
    return ReconciliationEngine(db, client_for_store(db, store.store_id))


def _raise_if_unreachable(summary: dict) -> None:
    """Nothing fetched and the first page failed: the platform is unreachable."""
    if summary["pages"] == 0 and summary["errors"] > 0:
        raise HTTPException(
            status_code=502,
            detail={"message": "Could not reach Tiendanube", **summary},
        )


@router.get("/jobs")
async def list_sync_jobs(
    db: Session = Depends(get_db),
    store: StoreAccess = Depends(get_current_store),
    limit: int = Query(50, ge=1, le=100),
):
    """List recent sync jobs for the current store"""
    jobs = (
        db.query(SyncJob)
        .filter(SyncJob.store_id == store.store_id)
        .order_by(SyncJob.started_at.desc())
        .limit(limit)
        .all()
    )
    return {
        "jobs": [
            {
                "id": job.id,
                "type": job.job_type.value if job.job_type else None,
                "status": job.status.value if job.status else None,
                "recordsProcessed": job.records_processed,
                "recordsFailed": job.records_failed,
                "startedAt": job.started_at.isoformat() if job.started_at else None,
                "finishedAt": job.finished_at.isoformat() if job.finished_at else None,
            }
            for job in jobs
        ]
    }


@router.post("/products", response_model=SyncSummary)
async def sync_products(
    db: Session = Depends(get_db),
    store: StoreAccess = Depends(get_current_store),
):
    """Full paginated product sync"""
    summary = await _engine(db, store).bulk_sync("product", store.store_id)
    _raise_if_unreachable(summary)
    return summary


@router.post("/checkouts", response_model=SyncSummary)
async def sync_checkouts(
    db: Session = Depends(get_db),
    store: StoreAccess = Depends(get_current_store),
):
    """Full paginated abandoned-checkout sync"""
    summary = await _engine(db, store).bulk_sync("checkout", store.store_id)
    _raise_if_unreachable(summary)
    return summary


@router.post("/orders", response_model=OrdersSyncResponse)
async def sync_orders(
    db: Session = Depends(get_db),
    store: StoreAccess = Depends(get_current_store),
):
    """Full order sync, then duplicate cleanup and local refresh."""
    engine = _engine(db, store)
    summary = await engine.bulk_sync("order", store.store_id)
    _raise_if_unreachable(summary)
    return {
        "sync": summary,
        "cleanup": engine.cleanup_duplicates(store.store_id),
        "refresh": engine.refresh_local_from_snapshot(store.store_id),
    }


@router.post("/cleanup-duplicates", response_model=CleanupSummary)
async def cleanup_duplicates(
    db: Session = Depends(get_db),
    store: StoreAccess = Depends(get_current_store),
):
    return ReconciliationEngine(db).cleanup_duplicates(store.store_id)


@router.post("/refresh-local", response_model=RefreshSummary)
async def refresh_local(
    db: Session = Depends(get_db),
    store: StoreAccess = Depends(get_current_store),
):
    return ReconciliationEngine(db).refresh_local_from_snapshot(store.store_id)


@router.post("/{entity_type}/{external_id}")
async def sync_single(
    entity_type: str,
    external_id: str,
    db: Session = Depends(get_db),
    store: StoreAccess = Depends(get_current_store),
):
    """Re-fetch one product/order/checkout from Tiendanube."""
    if entity_type not in ENTITY_MODELS:
        raise HTTPException(status_code=404, detail=f"Unknown entity type: {entity_type}")
    outcome = await _engine(db, store).sync_single_entity(entity_type, external_id, store.store_id)
    return outcome.to_dict()
