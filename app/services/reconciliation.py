"""
Reconciliation engine: applies authoritative Tiendanube state to local tables.

- sync_single_entity: fetch one product/order/checkout and upsert it (or delete it locally on 404)
- bulk_sync: page through a whole collection, one commit per item, partial progress kept
- cleanup_duplicates: collapse rows sharing the same external id
- refresh_local_from_snapshot: rebuild products/orders summary rows from the tiendanube_* snapshots

Upserts are last-write-wins; concurrent webhook and bulk writes for the same id converge
because both come from the platform. No locking here.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import NotFoundUpstream, PersistenceError, StoreSyncError, ValidationError
from app.models import (
    PROVIDER_TIENDANUBE,
    Order,
    OrderState,
    Product,
    SyncJob,
    SyncJobStatus,
    SyncJobType,
    TiendanubeCheckout,
    TiendanubeOrder,
    TiendanubeProduct,
)
from app.services.transforms import TRANSFORMS

logger = logging.getLogger(__name__)

ENTITY_MODELS = {
    "product": TiendanubeProduct,
    "order": TiendanubeOrder,
    "checkout": TiendanubeCheckout,
}

JOB_TYPES = {
    "product": SyncJobType.PRODUCTS,
    "order": SyncJobType.ORDERS,
    "checkout": SyncJobType.CHECKOUTS,
}

# Columns that belong to the local side and survive an upsert
LOCAL_ONLY_FIELDS = {"id", "store_id", "tiendanube_id", "added_at", "dismissed", "updated_at"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def order_state(snapshot: TiendanubeOrder) -> OrderState:
    """payment_status wins over order status; cancellation only applies to unpaid/unknown payment."""
    payment = (snapshot.payment_status or "").lower()
    if payment == "paid":
        return OrderState.PAID
    if payment == "pending":
        return OrderState.PENDING
    if (snapshot.status or "").lower() == "cancelled" or snapshot.cancelled_at:
        return OrderState.CANCELLED
    return OrderState.UNPAID


@dataclass
class SyncOutcome:
    outcome: str  # created | updated | not_found
    entity_type: str
    external_id: str
    record_id: Optional[str] = None
    deleted: int = 0
    problems: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "entityType": self.entity_type,
            "externalId": self.external_id,
            "recordId": self.record_id,
            "deleted": self.deleted,
            "problems": self.problems,
        }


class ReconciliationEngine:
    """
    Bound to one DB session and, for operations that talk to the platform,
    one store's TiendanubeClient.
    """

    def __init__(self, db: Session, client=None, page_size: Optional[int] = None, max_pages: Optional[int] = None):
        self.db = db
        self.client = client
        self.page_size = page_size or settings.SYNC_PAGE_SIZE
        self.max_pages = max_pages or settings.SYNC_MAX_PAGES

    def _require_client(self):
        if self.client is None:
            raise StoreSyncError("ReconciliationEngine needs a Tiendanube client for this operation")
        return self.client

    @staticmethod
    def _model(entity_type: str):
        model = ENTITY_MODELS.get(entity_type)
        if model is None:
            raise ValidationError(f"Unsupported entity type: {entity_type}")
        return model

    # ---- upsert -------------------------------------------------------------

    def upsert_entity(self, entity_type: str, store_id: str, payload: dict) -> tuple[str, Any, list[str]]:
        """
        Replace every synchronized field of the row for this external id, or insert it.
        Does not commit. Returns (outcome, row, problems).
        """
        model = self._model(entity_type)
        fields, problems = TRANSFORMS[entity_type](payload)
        external_id = fields["tiendanube_id"]
        row = (
            self.db.query(model)
            .filter(model.store_id == str(store_id), model.tiendanube_id == external_id)
            .order_by(model.added_at.asc())
            .first()
        )
        if row is None:
            row = model(store_id=str(store_id), tiendanube_id=external_id, added_at=_utcnow())
            self.db.add(row)
            outcome = "created"
        else:
            outcome = "updated"
        for name, value in fields.items():
            if name not in LOCAL_ONLY_FIELDS:
                setattr(row, name, value)
        self.db.flush()
        return outcome, row, problems

    async def sync_single_entity(self, entity_type: str, external_id: str, store_id: str) -> SyncOutcome:
        """
        Fetch one entity and upsert it. A 404 upstream removes the local copy
        and yields outcome "not_found". Orders also refresh their summary rows.
        """
        self._model(entity_type)
        client = self._require_client()
        external_id = str(external_id)
        try:
            payload = await client.get_entity(entity_type, external_id)
        except NotFoundUpstream:
            deleted = self.delete_local_entity(entity_type, external_id, store_id)
            logger.info("%s %s gone upstream for store %s; removed %s local rows", entity_type, external_id, store_id, deleted)
            return SyncOutcome("not_found", entity_type, external_id, deleted=deleted)

        try:
            outcome, row, problems = self.upsert_entity(entity_type, store_id, payload)
            if entity_type == "order":
                self._refresh_order_rows(row)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not save {entity_type} {external_id}: {e}") from e

        if problems:
            logger.warning("%s %s stored with unparsed fields: %s", entity_type, external_id, "; ".join(problems))
        logger.info("%s %s %s for store %s", entity_type, external_id, outcome, store_id)
        return SyncOutcome(outcome, entity_type, external_id, record_id=row.id, problems=problems)

    # ---- bulk sync ----------------------------------------------------------

    def _start_job(self, store_id: str, job_type: SyncJobType) -> SyncJob:
        job = SyncJob(
            store_id=str(store_id),
            job_type=job_type,
            status=SyncJobStatus.RUNNING,
            started_at=_utcnow(),
        )
        self.db.add(job)
        self.db.commit()
        return job

    def _finish_job(self, job: SyncJob, results: dict, processed: int, failed: int, aborted: bool = False) -> None:
        if aborted:
            job.status = SyncJobStatus.FAILED
        elif failed:
            job.status = SyncJobStatus.PARTIAL
        else:
            job.status = SyncJobStatus.SUCCESS
        job.finished_at = _utcnow()
        job.records_processed = processed
        job.records_failed = failed
        job.summary = json.loads(json.dumps(results, default=str))
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Could not record sync job %s: %s", job.id, e)

    async def bulk_sync(self, entity_type: str, store_id: str) -> dict:
        """
        Page through the full collection and upsert every record.
        Stops on a short/empty page, on the platform's past-the-end 404, or on a page
        error (recorded; earlier pages stay committed). Item failures are counted and skipped.
        """
        self._model(entity_type)
        client = self._require_client()
        results = {"total": 0, "added": 0, "updated": 0, "errors": 0, "errors_details": [], "pages": 0}
        job = self._start_job(store_id, JOB_TYPES[entity_type])
        logger.info("Bulk %s sync started for store %s (page size %s)", entity_type, store_id, self.page_size)

        page = 1
        while page <= self.max_pages:
            try:
                items = await client.list_page(entity_type, page, self.page_size)
            except NotFoundUpstream:
                # "Last page is N"
                break
            except StoreSyncError as e:
                results["errors"] += 1
                results["errors_details"].append(f"Page {page}: {e.message}")
                logger.warning("Bulk %s sync for store %s stopped at page %s: %s", entity_type, store_id, page, e.message)
                break

            results["pages"] += 1
            for item in items:
                self._sync_item(entity_type, store_id, item, results)
            if len(items) < self.page_size:
                break
            page += 1

        aborted = results["pages"] == 0 and results["errors"] > 0
        self._finish_job(job, results, results["added"] + results["updated"], results["errors"], aborted=aborted)
        logger.info(
            "Bulk %s sync for store %s: total=%s added=%s updated=%s errors=%s",
            entity_type, store_id, results["total"], results["added"], results["updated"], results["errors"],
        )
        return results

    def _sync_item(self, entity_type: str, store_id: str, item: Any, results: dict) -> None:
        results["total"] += 1
        item_id = item.get("id") if isinstance(item, dict) else None
        try:
            if not isinstance(item, dict) or item_id is None:
                raise ValidationError("item has no id")
            outcome, row, problems = self.upsert_entity(entity_type, store_id, item)
            if entity_type == "order":
                self._refresh_order_rows(row)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            results["errors"] += 1
            results["errors_details"].append(f"{entity_type.capitalize()} {item_id}: {e}")
            logger.warning("Bulk %s sync: item %s failed: %s", entity_type, item_id, e)
            return
        results["added" if outcome == "created" else "updated"] += 1
        for problem in problems:
            results["errors_details"].append(f"{entity_type.capitalize()} {item_id}: {problem}")

    # ---- deletes ------------------------------------------------------------

    def _delete_order_rows(self, store_id: str, provider_order_ids: list[str]) -> int:
        if not provider_order_ids:
            return 0
        return (
            self.db.query(Order)
            .filter(
                Order.store_id == str(store_id),
                Order.provider == PROVIDER_TIENDANUBE,
                Order.provider_order_id.in_(provider_order_ids),
            )
            .delete(synchronize_session=False)
        )

    def delete_local_entity(self, entity_type: str, external_id: str, store_id: str) -> int:
        """Remove every local row for one external id (snapshot plus dependent summary rows)."""
        model = self._model(entity_type)
        external_id = str(external_id)
        deleted = 0
        try:
            if entity_type == "order":
                deleted += self._delete_order_rows(store_id, [external_id])
            elif entity_type == "product":
                links = (
                    self.db.query(Product)
                    .filter(
                        Product.store_id == str(store_id),
                        Product.provider == PROVIDER_TIENDANUBE,
                        Product.item_id == external_id,
                    )
                    .all()
                )
                link_ids = [p.id for p in links]
                if link_ids:
                    deleted += self.db.query(Order).filter(Order.product_id.in_(link_ids)).delete(synchronize_session=False)
                    deleted += self.db.query(Product).filter(Product.id.in_(link_ids)).delete(synchronize_session=False)
            deleted += (
                self.db.query(model)
                .filter(model.store_id == str(store_id), model.tiendanube_id == external_id)
                .delete(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not delete {entity_type} {external_id}: {e}") from e
        return deleted

    def delete_store_data(self, store_id: str) -> dict:
        """Erase everything held locally for a store (store/redact). The only mass delete."""
        store_id = str(store_id)
        try:
            counts = {
                "local_orders": self.db.query(Order).filter(Order.store_id == store_id).delete(synchronize_session=False),
                "local_products": self.db.query(Product).filter(Product.store_id == store_id).delete(synchronize_session=False),
                "products": self.db.query(TiendanubeProduct).filter(TiendanubeProduct.store_id == store_id).delete(synchronize_session=False),
                "orders": self.db.query(TiendanubeOrder).filter(TiendanubeOrder.store_id == store_id).delete(synchronize_session=False),
                "checkouts": self.db.query(TiendanubeCheckout).filter(TiendanubeCheckout.store_id == store_id).delete(synchronize_session=False),
            }
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not erase data for store {store_id}: {e}") from e
        counts["deleted"] = sum(counts.values())
        logger.warning("Erased local data for store %s: %s", store_id, counts)
        return counts

    def _customer_filters(self, model, email: Optional[str], order_ids: list[str]):
        conditions = []
        if email:
            conditions.append(func.lower(model.contact_email) == email.strip().lower())
        if order_ids and model is TiendanubeOrder:
            conditions.append(model.tiendanube_id.in_(order_ids))
        return conditions

    def _customer_rows(self, model, store_id: str, email: Optional[str], order_ids: list[str]) -> list:
        conditions = self._customer_filters(model, email, order_ids)
        if not conditions:
            return []
        return self.db.query(model).filter(model.store_id == str(store_id), or_(*conditions)).all()

    def redact_customer(self, store_id: str, email: Optional[str], order_ids: list[str]) -> dict:
        """Delete one customer's orders and checkouts (customers/redact)."""
        order_ids = [str(o) for o in order_ids or []]
        try:
            orders = self._customer_rows(TiendanubeOrder, store_id, email, order_ids)
            checkouts = self._customer_rows(TiendanubeCheckout, store_id, email, order_ids)
            local_orders = self._delete_order_rows(store_id, sorted({o.tiendanube_id for o in orders} | set(order_ids)))
            for row in orders + checkouts:
                self.db.delete(row)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not redact customer data for store {store_id}: {e}") from e
        counts = {"orders": len(orders), "checkouts": len(checkouts), "local_orders": local_orders}
        counts["deleted"] = sum(counts.values())
        return counts

    def collect_customer_data(self, store_id: str, email: Optional[str], order_ids: list[str]) -> dict:
        """What we hold for a customer (customers/data_request). Read-only."""
        order_ids = [str(o) for o in order_ids or []]
        orders = self._customer_rows(TiendanubeOrder, store_id, email, order_ids)
        checkouts = self._customer_rows(TiendanubeCheckout, store_id, email, order_ids)
        return {
            "orders": [o.tiendanube_id for o in orders],
            "checkouts": [c.tiendanube_id for c in checkouts],
        }

    # ---- cleanup ------------------------------------------------------------

    @staticmethod
    def _completeness(row) -> int:
        return sum(
            1
            for column in row.__table__.columns
            if column.key not in LOCAL_ONLY_FIELDS and getattr(row, column.key) not in (None, "", [], {})
        )

    def _canonical_sort_key(self, row):
        return (
            row.source_updated_at or datetime.min,
            self._completeness(row),
            row.added_at or datetime.min,
        )

    def _collapse_snapshot(self, entity_type: str, store_id: str, results: dict) -> dict:
        model = ENTITY_MODELS[entity_type]
        stats = {"merged": 0, "deleted": 0}
        dup_ids = [
            tid
            for (tid,) in self.db.query(model.tiendanube_id)
            .filter(model.store_id == str(store_id))
            .group_by(model.tiendanube_id)
            .having(func.count(model.id) > 1)
            .all()
        ]
        for tid in dup_ids:
            try:
                rows = self.db.query(model).filter(model.store_id == str(store_id), model.tiendanube_id == tid).all()
                rows.sort(key=self._canonical_sort_key, reverse=True)
                keeper, extras = rows[0], rows[1:]
                added = [r.added_at for r in rows if r.added_at]
                if added:
                    keeper.added_at = min(added)
                if hasattr(model, "dismissed"):
                    keeper.dismissed = any(r.dismissed for r in rows)
                for extra in extras:
                    self.db.delete(extra)
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                results["errors"] += 1
                results["errors_details"].append(f"{entity_type.capitalize()} {tid}: {e}")
                logger.warning("Cleanup of %s %s failed: %s", entity_type, tid, e)
                continue
            stats["merged"] += 1
            stats["deleted"] += len(extras)
            logger.info("Collapsed %s duplicate %s rows for %s", len(extras), entity_type, tid)
        return stats

    def _collapse_order_rows(self, store_id: str, results: dict) -> dict:
        stats = {"merged": 0, "deleted": 0}
        groups = (
            self.db.query(Order.provider_order_id, Order.product_id)
            .filter(Order.store_id == str(store_id))
            .group_by(Order.provider_order_id, Order.product_id)
            .having(func.count(Order.id) > 1)
            .all()
        )
        for provider_order_id, product_id in groups:
            try:
                rows = (
                    self.db.query(Order)
                    .filter(
                        Order.store_id == str(store_id),
                        Order.provider_order_id == provider_order_id,
                        Order.product_id == product_id,
                    )
                    .all()
                )
                rows.sort(key=lambda r: (r.source_updated_at or datetime.min, r.updated_at or datetime.min), reverse=True)
                for extra in rows[1:]:
                    self.db.delete(extra)
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                results["errors"] += 1
                results["errors_details"].append(f"Local order {provider_order_id}: {e}")
                continue
            stats["merged"] += 1
            stats["deleted"] += len(rows) - 1
        return stats

    def cleanup_duplicates(self, store_id: str) -> dict:
        """
        Keep one row per external id: the freshest source_updated_at, then the most
        complete, then the latest ingested. Local bookkeeping is merged onto the keeper.
        """
        results = {"merged": 0, "deleted": 0, "errors": 0, "errors_details": [], "by_entity": {}}
        job = self._start_job(store_id, SyncJobType.CLEANUP)
        for entity_type in ENTITY_MODELS:
            results["by_entity"][entity_type] = self._collapse_snapshot(entity_type, store_id, results)
        results["by_entity"]["local_orders"] = self._collapse_order_rows(store_id, results)
        for stats in results["by_entity"].values():
            results["merged"] += stats["merged"]
            results["deleted"] += stats["deleted"]
        self._finish_job(job, results, results["deleted"], results["errors"])
        logger.info("Cleanup for store %s: merged=%s deleted=%s", store_id, results["merged"], results["deleted"])
        return results

    # ---- refresh ------------------------------------------------------------

    def _link_product(self, snapshot: TiendanubeProduct) -> tuple[Product, bool]:
        link = (
            self.db.query(Product)
            .filter(
                Product.store_id == snapshot.store_id,
                Product.provider == PROVIDER_TIENDANUBE,
                Product.item_id == snapshot.tiendanube_id,
            )
            .first()
        )
        created = link is None
        if created:
            link = Product(store_id=snapshot.store_id, provider=PROVIDER_TIENDANUBE, item_id=snapshot.tiendanube_id)
            self.db.add(link)
        link.sku = snapshot.sku
        self.db.flush()
        return link, created

    def _refresh_order_rows(self, snapshot: TiendanubeOrder) -> tuple[int, int]:
        """
        Rebuild orders summary rows for one snapshot: one per line whose product is linked.
        Lines removed upstream drop their rows. Does not commit.
        """
        lines = snapshot.products
        if isinstance(lines, str):
            lines = json.loads(lines)
        if not isinstance(lines, list):
            raise ValidationError(f"Order {snapshot.tiendanube_id} has no line items list")

        state = order_state(snapshot)
        created = updated = 0
        kept_product_ids = set()
        for line in lines:
            item_id = line.get("product_id") if isinstance(line, dict) else None
            if item_id is None:
                continue
            link = (
                self.db.query(Product)
                .filter(
                    Product.store_id == snapshot.store_id,
                    Product.provider == PROVIDER_TIENDANUBE,
                    Product.item_id == str(item_id),
                )
                .first()
            )
            if not link:
                logger.debug("Order %s: product %s not in products table", snapshot.tiendanube_id, item_id)
                continue
            if link.id in kept_product_ids:
                continue
            kept_product_ids.add(link.id)
            row = (
                self.db.query(Order)
                .filter(
                    Order.store_id == snapshot.store_id,
                    Order.provider == PROVIDER_TIENDANUBE,
                    Order.provider_order_id == snapshot.tiendanube_id,
                    Order.product_id == link.id,
                )
                .first()
            )
            if row is None:
                row = Order(
                    store_id=snapshot.store_id,
                    provider=PROVIDER_TIENDANUBE,
                    provider_order_id=snapshot.tiendanube_id,
                    product_id=link.id,
                )
                self.db.add(row)
                created += 1
            else:
                updated += 1
            row.state = state
            row.source_created_at = snapshot.source_created_at
            row.source_updated_at = snapshot.source_updated_at

        stale = self.db.query(Order).filter(
            Order.store_id == snapshot.store_id,
            Order.provider == PROVIDER_TIENDANUBE,
            Order.provider_order_id == snapshot.tiendanube_id,
        )
        if kept_product_ids:
            stale = stale.filter(Order.product_id.notin_(list(kept_product_ids)))
        stale.delete(synchronize_session=False)
        self.db.flush()
        return created, updated

    def refresh_local_from_snapshot(self, store_id: str) -> dict:
        """
        Re-derive products (catalog links) and orders (per-line state) from the
        tiendanube_products / tiendanube_orders snapshots.
        """
        results = {
            "total_processed": 0,
            "created": 0,
            "updated": 0,
            "products_linked": 0,
            "errors": 0,
            "errors_details": [],
        }
        job = self._start_job(store_id, SyncJobType.REFRESH)

        for snapshot in self.db.query(TiendanubeProduct).filter(TiendanubeProduct.store_id == str(store_id)).all():
            try:
                _, created = self._link_product(snapshot)
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                results["errors"] += 1
                results["errors_details"].append(f"Product {snapshot.tiendanube_id}: {e}")
                continue
            if created:
                results["products_linked"] += 1

        orders = self.db.query(TiendanubeOrder).filter(TiendanubeOrder.store_id == str(store_id)).all()
        logger.info("Refreshing local orders for store %s from %s snapshots", store_id, len(orders))
        for snapshot in orders:
            tid = snapshot.tiendanube_id
            try:
                created, updated = self._refresh_order_rows(snapshot)
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                results["errors"] += 1
                results["errors_details"].append(f"Order {tid}: {e}")
                logger.warning("Refresh of order %s failed: %s", tid, e)
                continue
            results["created"] += created
            results["updated"] += updated
            results["total_processed"] += created + updated

        self._finish_job(job, results, results["total_processed"], results["errors"])
        return results
