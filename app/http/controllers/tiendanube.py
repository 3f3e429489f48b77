"""
Tiendanube account routes: OAuth callback, store info, logout.
"""
import json
import logging
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.auth import get_current_store
from app.database import get_db
from app.exceptions import StoreSyncError, ValidationError
from app.http.requests.schemas import StoreInfoResponse
from app.services.credentials import (
    StoreAccess,
    client_for_store,
    delete_store_credential,
    get_store_info,
    save_store_credential,
    update_store_info,
)
from app.services.tiendanube import exchange_authorization_code

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/callback")
async def oauth_callback(
    code: str = Query(None),
    db: Session = Depends(get_db),
):
    """
    OAuth redirect target after the merchant installs the app.
    Exchanges the code, stores the encrypted token and snapshots store info.
    """
    if not code:
        raise ValidationError("No code provided")
    token = await exchange_authorization_code(code)
    store_id = token["user_id"]
    if not store_id:
        raise ValidationError("Token response did not include the store id")
    save_store_credential(db, store_id, token["access_token"], scope=token.get("scope"))

    try:
        info = await client_for_store(db, store_id).get_store()
        update_store_info(db, store_id, info)
    except StoreSyncError as e:
        # Credential is saved; store info can be fetched later from GET /store
        logger.warning("Could not fetch store info for %s after install: %s", store_id, e.message)

    return {"success": True, "store_id": store_id}


@router.get("/store", response_model=StoreInfoResponse)
async def get_store(
    db: Session = Depends(get_db),
    store: StoreAccess = Depends(get_current_store),
):
    """Fetch store info from Tiendanube and refresh the local snapshot."""
    try:
        info = await client_for_store(db, store.store_id).get_store()
        update_store_info(db, store.store_id, info)
    except StoreSyncError as e:
        cached = get_store_info(db, store.store_id)
        if cached is None:
            raise
        logger.warning("Serving cached store info for %s: %s", store.store_id, e.message)
        info = cached
    return {
        "storeId": store.store_id,
        "status": store.status.value,
        "businessId": store.business_id,
        "store": json.loads(json.dumps(info, default=str)),
    }


@router.delete("/store")
async def logout_store(
    db: Session = Depends(get_db),
    store: StoreAccess = Depends(get_current_store),
):
    """Disconnect: remove the stored credential. Synced data is kept."""
    deleted = delete_store_credential(db, store.store_id)
    return {"success": True, "deleted": deleted}
