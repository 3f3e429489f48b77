"""
Tenant authentication for internal endpoints: the X-Store-Id header must name a
store we hold a Tiendanube credential for.
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.services.credentials import StoreAccess, get_store_credential


def get_current_store(
    x_store_id: Optional[str] = Header(None, alias="X-Store-Id"),
    db: Session = Depends(get_db),
) -> StoreAccess:
    store_id = (x_store_id or "").strip()
    if not store_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Store-Id header")
    access = get_store_credential(db, store_id)
    if not access:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Store not connected. Install the app from Tiendanube first.",
        )
    return access
