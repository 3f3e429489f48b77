"""
Idempotency ledger for inbound webhook deliveries (webhook_logs table).

Two-phase write: an entry is inserted as RECEIVED before any side effect and
finalized as SUCCESS / FAILED / IGNORED afterwards. A crash in between leaves a
RECEIVED row the replay worker can pick up.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import PersistenceError
from app.models import WebhookLog, WebhookLogStatus

logger = logging.getLogger(__name__)

FINAL_STATUSES = (WebhookLogStatus.SUCCESS, WebhookLogStatus.IGNORED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def build_idempotency_key(store_id: Any, event: str, entity_id: Any = None) -> str:
    """`{store}-{event}-{entity}`; compliance events without an entity use `{store}-{event}`."""
    base = f"{store_id}-{event}"
    if entity_id is None or entity_id == "":
        return base
    return f"{base}-{entity_id}"


@dataclass
class LedgerRegistration:
    is_new: bool
    entry: WebhookLog
    reclaimed: bool = False


class WebhookLedger:
    def __init__(
        self,
        db: Session,
        dedup_window_seconds: Optional[int] = None,
        stale_after_seconds: Optional[int] = None,
    ):
        self.db = db
        self.dedup_window = timedelta(seconds=dedup_window_seconds or settings.WEBHOOK_DEDUP_WINDOW_SECONDS)
        self.stale_after = timedelta(seconds=stale_after_seconds or settings.WEBHOOK_STALE_AFTER_SECONDS)

    def get(self, key: str) -> Optional[WebhookLog]:
        return self.db.query(WebhookLog).filter(WebhookLog.idempotency_key == key).first()

    def register(
        self,
        key: str,
        *,
        store_id: str,
        event: str,
        entity_id: Optional[str] = None,
        payload: Any = None,
    ) -> LedgerRegistration:
        """
        Insert a RECEIVED entry for this key. Returns is_new=False when the delivery
        was already handled (or is being handled right now by another request).
        """
        existing = self.get(key)
        if existing:
            return self._on_existing(existing)

        if payload is not None and not isinstance(payload, str):
            payload = json.dumps(payload, default=str)
        entry = WebhookLog(
            idempotency_key=key,
            store_id=str(store_id),
            event=event,
            entity_id=str(entity_id) if entity_id is not None else None,
            payload=payload,
            status=WebhookLogStatus.RECEIVED,
            attempts=1,
            received_at=_utcnow(),
        )
        self.db.add(entry)
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent delivery with the same key won the insert
            self.db.rollback()
            existing = self.get(key)
            if existing is None:
                raise PersistenceError(f"Could not register webhook {key}")
            logger.info("Webhook %s registered concurrently; treating as duplicate", key)
            return LedgerRegistration(is_new=False, entry=existing)
        self.db.refresh(entry)
        return LedgerRegistration(is_new=True, entry=entry)

    def _on_existing(self, entry: WebhookLog) -> LedgerRegistration:
        now = _utcnow()
        age = now - (entry.received_at or now)
        if age > self.dedup_window:
            # Outside the platform retry horizon: a new logical event reusing the key
            return self._reclaim(entry)
        if entry.status in FINAL_STATUSES:
            return LedgerRegistration(is_new=False, entry=entry)
        if entry.status == WebhookLogStatus.RECEIVED and age < self.stale_after:
            return LedgerRegistration(is_new=False, entry=entry)
        return self._reclaim(entry)

    def _reclaim(self, entry: WebhookLog) -> LedgerRegistration:
        """
        Take over a FAILED / stale entry. Guarded by (status, attempts) so two
        concurrent retries cannot both reclaim it.
        """
        updated = (
            self.db.query(WebhookLog)
            .filter(
                WebhookLog.id == entry.id,
                WebhookLog.status == entry.status,
                WebhookLog.attempts == entry.attempts,
            )
            .update(
                {
                    WebhookLog.status: WebhookLogStatus.RECEIVED,
                    WebhookLog.attempts: entry.attempts + 1,
                    WebhookLog.received_at: _utcnow(),
                    WebhookLog.processed_at: None,
                    WebhookLog.error: None,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        self.db.refresh(entry)
        if not updated:
            return LedgerRegistration(is_new=False, entry=entry)
        logger.info("Webhook %s reclaimed (attempt %s)", entry.idempotency_key, entry.attempts)
        return LedgerRegistration(is_new=True, entry=entry, reclaimed=True)

    def claim_for_replay(self, entry: WebhookLog) -> bool:
        """Reclaim an entry for the replay worker / manual replay. False if another process got it."""
        if entry.status in FINAL_STATUSES:
            return False
        if entry.status == WebhookLogStatus.RECEIVED and _utcnow() - entry.received_at < self.stale_after:
            return False
        return self._reclaim(entry).is_new

    def _finalize(self, entry: WebhookLog, status: WebhookLogStatus, error: Optional[str] = None) -> WebhookLog:
        entry.status = status
        entry.error = error[:500] if error else None
        entry.processed_at = _utcnow()
        self.db.commit()
        return entry

    def mark_success(self, entry: WebhookLog) -> WebhookLog:
        return self._finalize(entry, WebhookLogStatus.SUCCESS)

    def mark_ignored(self, entry: WebhookLog, reason: Optional[str] = None) -> WebhookLog:
        return self._finalize(entry, WebhookLogStatus.IGNORED, reason)

    def mark_failed(self, entry: WebhookLog, error: str) -> WebhookLog:
        # Session may be mid-failure from the handler
        self.db.rollback()
        self.db.refresh(entry)
        return self._finalize(entry, WebhookLogStatus.FAILED, error)

    def find_stale_received(self, limit: int = 50) -> list[WebhookLog]:
        """RECEIVED entries older than the stale threshold: their worker crashed mid-processing."""
        cutoff = _utcnow() - self.stale_after
        return (
            self.db.query(WebhookLog)
            .filter(WebhookLog.status == WebhookLogStatus.RECEIVED, WebhookLog.received_at < cutoff)
            .order_by(WebhookLog.received_at.asc())
            .limit(limit)
            .all()
        )

    def recent(
        self,
        store_id: str,
        limit: int = 50,
        event: Optional[str] = None,
        status: Optional[WebhookLogStatus] = None,
    ) -> list[WebhookLog]:
        query = self.db.query(WebhookLog).filter(WebhookLog.store_id == str(store_id))
        if event:
            query = query.filter(WebhookLog.event == event)
        if status:
            query = query.filter(WebhookLog.status == status)
        return query.order_by(WebhookLog.received_at.desc()).limit(limit).all()


def serialize_log(entry: WebhookLog, include_payload: bool = False) -> dict:
    data = {
        "id": entry.id,
        "idempotencyKey": entry.idempotency_key,
        "storeId": entry.store_id,
        "event": entry.event,
        "entityId": entry.entity_id,
        "status": entry.status.value if entry.status else None,
        "attempts": entry.attempts,
        "error": entry.error,
        "receivedAt": entry.received_at.isoformat() if entry.received_at else None,
        "processedAt": entry.processed_at.isoformat() if entry.processed_at else None,
    }
    if include_payload:
        data["payload"] = entry.payload
    return data
