"""
Credential encryption/decryption and per-store Tiendanube credential access.
"""
import json
import base64
import logging
from dataclasses import dataclass
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import AuthError
from app.models import StoreCredential, StoreConnectionStatus
from app.services.tiendanube import TiendanubeClient

logger = logging.getLogger(__name__)


def get_encryption_key() -> bytes:
    """Get or generate encryption key"""
    key_str = settings.ENCRYPTION_KEY
    # Ensure key is 32 bytes for Fernet
    key_bytes = key_str.encode()[:32].ljust(32, b'0')
    return base64.urlsafe_b64encode(key_bytes)

def encrypt_token(token: str) -> str:
    """Encrypt a token"""
    f = Fernet(get_encryption_key())
    return f.encrypt(token.encode()).decode()

def decrypt_token(encrypted: str) -> str:
    """Decrypt a token"""
    f = Fernet(get_encryption_key())
    return f.decrypt(encrypted.encode()).decode()


@dataclass
class StoreAccess:
    store_id: str
    access_token: str
    business_id: Optional[str] = None
    status: StoreConnectionStatus = StoreConnectionStatus.ACTIVE
    from_env: bool = False


def _env_access(store_id: str) -> Optional[StoreAccess]:
    env_store = (settings.TIENDANUBE_STORE_ID or "").strip()
    env_token = (settings.TIENDANUBE_ACCESS_TOKEN or "").strip()
    if env_store and env_token and env_store == str(store_id):
        return StoreAccess(store_id=env_store, access_token=env_token, from_env=True)
    return None


def _get_row(db: Session, store_id: str) -> Optional[StoreCredential]:
    return db.query(StoreCredential).filter(StoreCredential.store_id == str(store_id)).first()


def get_store_credential(db: Session, store_id: str) -> Optional[StoreAccess]:
    """Return the decrypted credential for a store, or None.
    Falls back to TIENDANUBE_ACCESS_TOKEN when the store matches TIENDANUBE_STORE_ID."""
    if not store_id:
        return None
    cred = _get_row(db, store_id)
    if cred and cred.access_token_encrypted:
        try:
            token = decrypt_token(cred.access_token_encrypted)
        except InvalidToken:
            logger.error("Stored credential for store %s cannot be decrypted (ENCRYPTION_KEY changed?)", store_id)
            return _env_access(store_id)
        return StoreAccess(
            store_id=cred.store_id,
            access_token=token,
            business_id=cred.business_id,
            status=cred.status,
        )
    return _env_access(store_id)


def save_store_credential(
    db: Session,
    store_id: str,
    access_token: str,
    *,
    business_id: Optional[str] = None,
    scope: Optional[str] = None,
) -> StoreCredential:
    """Create or replace the credential for a store (OAuth callback). Re-activates the store."""
    cred = _get_row(db, store_id)
    if not cred:
        cred = StoreCredential(store_id=str(store_id))
        db.add(cred)
    cred.access_token_encrypted = encrypt_token(access_token)
    cred.business_id = business_id
    cred.scope = scope
    cred.status = StoreConnectionStatus.ACTIVE
    db.commit()
    db.refresh(cred)
    logger.info("Saved Tiendanube credential for store %s", store_id)
    return cred


def update_store_info(db: Session, store_id: str, info: dict[str, Any]) -> bool:
    """Store the latest store-info snapshot. Returns False when no credential row exists."""
    cred = _get_row(db, store_id)
    if not cred:
        return False
    cred.store_info = json.dumps(info, default=str)
    if not cred.business_id and info.get("business_id"):
        cred.business_id = str(info["business_id"])
    db.commit()
    return True


def get_store_info(db: Session, store_id: str) -> Optional[dict[str, Any]]:
    cred = _get_row(db, store_id)
    if not cred or not cred.store_info:
        return None
    try:
        return json.loads(cred.store_info)
    except json.JSONDecodeError:
        return None


def set_store_status(db: Session, store_id: str, status: StoreConnectionStatus) -> bool:
    """Update connection state (app lifecycle events). Data is never deleted here."""
    cred = _get_row(db, store_id)
    if not cred:
        logger.warning("No credential for store %s; cannot set status %s", store_id, status.value)
        return False
    cred.status = status
    db.commit()
    return True


def delete_store_credential(db: Session, store_id: str) -> bool:
    cred = _get_row(db, store_id)
    if not cred:
        return False
    db.delete(cred)
    db.commit()
    logger.info("Deleted Tiendanube credential for store %s", store_id)
    return True


def list_active_store_ids(db: Session) -> list[str]:
    """Stores eligible for scheduled sync (stored ACTIVE credentials plus the env fallback)."""
    ids = [
        row.store_id
        for row in db.query(StoreCredential).filter(StoreCredential.status == StoreConnectionStatus.ACTIVE).all()
    ]
    env_store = (settings.TIENDANUBE_STORE_ID or "").strip()
    if env_store and settings.TIENDANUBE_ACCESS_TOKEN and env_store not in ids and not _get_row(db, env_store):
        ids.append(env_store)
    return ids


def client_for_store(db: Session, store_id: str, **client_kwargs: Any) -> TiendanubeClient:
    """Build a TiendanubeClient bound to the store's credential. Raises AuthError if none exists."""
    access = get_store_credential(db, store_id)
    if not access:
        raise AuthError(f"No Tiendanube credential for store {store_id}")
    return TiendanubeClient(access.store_id, access.access_token, **client_kwargs)
