"""
Reconciliation engine tests: single-entity sync, bulk sync, cleanup and local refresh
"""
from datetime import datetime, timedelta

import httpx
import pytest

from conftest import STORE_ID, make_checkout, make_order, make_product
from app.exceptions import AuthError, NotFoundUpstream, UpstreamUnavailable, ValidationError
from app.models import (
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
from app.services.reconciliation import ReconciliationEngine, order_state
from app.services.tiendanube import TiendanubeClient


def _product_rows(db):
    return db.query(TiendanubeProduct).filter(TiendanubeProduct.store_id == STORE_ID).all()


class TestSyncSingleEntity:
    """Fetch one entity and upsert it"""

    async def test_upsert_is_idempotent(self, db_session, fake_client):
        fake_client.entities[("product", "555")] = make_product(555)
        engine = ReconciliationEngine(db_session, fake_client)

        first = await engine.sync_single_entity("product", "555", STORE_ID)
        second = await engine.sync_single_entity("product", "555", STORE_ID)

        assert first.outcome == "created"
        assert second.outcome == "updated"
        assert second.record_id == first.record_id
        rows = _product_rows(db_session)
        assert len(rows) == 1
        assert str(rows[0].price) == "19.99"

    async def test_update_replaces_fields_and_keeps_added_at(self, db_session, fake_client):
        fake_client.entities[("product", "555")] = make_product(555)
        engine = ReconciliationEngine(db_session, fake_client)
        await engine.sync_single_entity("product", "555", STORE_ID)
        added_at = _product_rows(db_session)[0].added_at

        fake_client.entities[("product", "555")] = make_product(
            555, name={"es": "Remera nueva"}, variant={"price": "25.00", "stock": 1}
        )
        await engine.sync_single_entity("product", "555", STORE_ID)

        row = _product_rows(db_session)[0]
        assert row.name == "Remera nueva"
        assert str(row.price) == "25.00"
        assert row.stock == 1
        assert row.added_at == added_at

    async def test_not_found_upstream_deletes_local_copy(self, db_session, fake_client):
        fake_client.entities[("product", "555")] = make_product(555)
        engine = ReconciliationEngine(db_session, fake_client)
        await engine.sync_single_entity("product", "555", STORE_ID)
        del fake_client.entities[("product", "555")]

        outcome = await engine.sync_single_entity("product", "555", STORE_ID)

        assert outcome.outcome == "not_found"
        assert outcome.deleted == 1
        assert _product_rows(db_session) == []

    async def test_not_found_for_unknown_entity_is_noop(self, db_session, fake_client):
        outcome = await ReconciliationEngine(db_session, fake_client).sync_single_entity("order", "9", STORE_ID)
        assert outcome.outcome == "not_found"
        assert outcome.deleted == 0

    async def test_upstream_errors_propagate(self, db_session, fake_client):
        fake_client.entities[("order", "1001")] = UpstreamUnavailable("Tiendanube API error 503")
        with pytest.raises(UpstreamUnavailable):
            await ReconciliationEngine(db_session, fake_client).sync_single_entity("order", "1001", STORE_ID)

        fake_client.entities[("order", "1001")] = AuthError("token revoked")
        with pytest.raises(AuthError):
            await ReconciliationEngine(db_session, fake_client).sync_single_entity("order", "1001", STORE_ID)
        assert db_session.query(TiendanubeOrder).count() == 0

    async def test_unsupported_entity_type(self, db_session, fake_client):
        with pytest.raises(ValidationError):
            await ReconciliationEngine(db_session, fake_client).sync_single_entity("coupon", "1", STORE_ID)

    async def test_order_sync_refreshes_local_rows(self, db_session, fake_client):
        fake_client.entities[("product", "555")] = make_product(555)
        fake_client.entities[("order", "1001")] = make_order(1001, product_ids=[555])
        engine = ReconciliationEngine(db_session, fake_client)
        await engine.sync_single_entity("product", "555", STORE_ID)
        engine.refresh_local_from_snapshot(STORE_ID)

        await engine.sync_single_entity("order", "1001", STORE_ID)

        local = db_session.query(Order).filter(Order.provider_order_id == "1001").all()
        assert len(local) == 1
        assert local[0].state == OrderState.PAID

    async def test_parse_problems_do_not_block_upsert(self, db_session, fake_client):
        fake_client.entities[("product", "555")] = make_product(555, variant={"price": "not-a-number"})

        outcome = await ReconciliationEngine(db_session, fake_client).sync_single_entity("product", "555", STORE_ID)

        assert outcome.outcome == "created"
        assert outcome.problems == ["price: could not parse 'not-a-number'"]
        assert _product_rows(db_session)[0].price is None


class TestBulkSync:
    """Paginated full sync"""

    async def test_empty_collection(self, db_session, fake_client):
        results = await ReconciliationEngine(db_session, fake_client).bulk_sync("product", STORE_ID)

        assert results["total"] == 0
        assert results["added"] == 0
        assert results["updated"] == 0
        assert results["errors"] == 0
        assert results["errors_details"] == []

    async def test_pages_until_short_page(self, db_session, fake_client):
        fake_client.pages[("product", 1)] = [make_product(1), make_product(2)]
        fake_client.pages[("product", 2)] = [make_product(3)]

        results = await ReconciliationEngine(db_session, fake_client, page_size=2).bulk_sync("product", STORE_ID)

        assert results["total"] == 3
        assert results["added"] == 3
        assert results["pages"] == 2
        assert ("list", "product", 3) not in fake_client.calls

    async def test_past_the_end_404_is_not_an_error(self, db_session, fake_client):
        fake_client.pages[("order", 1)] = [make_order(1), make_order(2)]
        fake_client.pages[("order", 2)] = NotFoundUpstream("Last page is 1")

        results = await ReconciliationEngine(db_session, fake_client, page_size=2).bulk_sync("order", STORE_ID)

        assert results["added"] == 2
        assert results["errors"] == 0

    async def test_rerun_counts_updates(self, db_session, fake_client):
        fake_client.pages[("checkout", 1)] = [make_checkout(1), make_checkout(2)]
        engine = ReconciliationEngine(db_session, fake_client)
        await engine.bulk_sync("checkout", STORE_ID)

        results = await engine.bulk_sync("checkout", STORE_ID)

        assert results["added"] == 0
        assert results["updated"] == 2
        assert db_session.query(TiendanubeCheckout).count() == 2

    async def test_page_failure_keeps_earlier_pages(self, db_session, fake_client):
        for page in (1, 2, 4, 5):
            fake_client.pages[("product", page)] = [make_product(page * 10), make_product(page * 10 + 1)]
        fake_client.pages[("product", 3)] = UpstreamUnavailable("Tiendanube API error 503")

        results = await ReconciliationEngine(db_session, fake_client, page_size=2).bulk_sync("product", STORE_ID)

        assert results["total"] == 4
        assert results["added"] == 4
        assert results["errors"] == 1
        assert results["errors_details"] == ["Page 3: Tiendanube API error 503"]
        assert len(_product_rows(db_session)) == 4
        job = db_session.query(SyncJob).filter(SyncJob.job_type == SyncJobType.PRODUCTS).one()
        assert job.status == SyncJobStatus.PARTIAL

    async def test_bad_item_is_skipped(self, db_session, fake_client):
        fake_client.pages[("product", 1)] = [make_product(1), {"name": "no id"}, make_product(3)]

        results = await ReconciliationEngine(db_session, fake_client, page_size=5).bulk_sync("product", STORE_ID)

        assert results["total"] == 3
        assert results["added"] == 2
        assert results["errors"] == 1
        assert results["errors_details"] == ["Product None: item has no id"]

    async def test_parse_problems_reported_not_counted(self, db_session, fake_client):
        fake_client.pages[("product", 1)] = [make_product(7, variant={"price": "not-a-number"})]

        results = await ReconciliationEngine(db_session, fake_client).bulk_sync("product", STORE_ID)

        assert results["added"] == 1
        assert results["errors"] == 0
        assert results["errors_details"] == ["Product 7: price: could not parse 'not-a-number'"]

    async def test_unreachable_records_failed_job(self, db_session, fake_client):
        fake_client.pages[("order", 1)] = UpstreamUnavailable("Tiendanube unreachable: timed out")

        results = await ReconciliationEngine(db_session, fake_client).bulk_sync("order", STORE_ID)

        assert results["pages"] == 0
        assert results["errors"] == 1
        job = db_session.query(SyncJob).one()
        assert job.status == SyncJobStatus.FAILED
        assert job.finished_at is not None

    async def test_non_json_page_records_failed_job(self, db_session):
        client = TiendanubeClient(
            STORE_ID, "tok-42", max_retries=0,
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>maintenance</html>")),
        )

        results = await ReconciliationEngine(db_session, client).bulk_sync("product", STORE_ID)

        assert results["errors"] == 1
        assert results["errors_details"][0].startswith("Page 1: Tiendanube returned a non-JSON body")
        job = db_session.query(SyncJob).one()
        assert job.status == SyncJobStatus.FAILED


class TestCleanupDuplicates:
    def _order(self, db, tid, updated, added, **fields):
        row = TiendanubeOrder(
            store_id=STORE_ID,
            tiendanube_id=tid,
            source_updated_at=updated,
            added_at=added,
            products=[],
            **fields,
        )
        db.add(row)
        db.commit()
        return row

    def test_collapses_duplicate_orders(self, db_session):
        base = datetime(2024, 2, 1, 12, 0)
        self._order(db_session, "1001", base, base, payment_status="pending")
        newer = self._order(db_session, "1001", base + timedelta(hours=1), base + timedelta(days=1), payment_status="paid")
        self._order(db_session, "1002", base, base)

        results = ReconciliationEngine(db_session).cleanup_duplicates(STORE_ID)

        assert results["merged"] == 1
        assert results["deleted"] == 1
        assert results["errors"] == 0
        rows = db_session.query(TiendanubeOrder).filter(TiendanubeOrder.tiendanube_id == "1001").all()
        assert len(rows) == 1
        assert rows[0].id == newer.id
        assert rows[0].payment_status == "paid"
        # Earliest ingestion time survives on the keeper
        assert rows[0].added_at == base

    def test_completeness_breaks_ties(self, db_session):
        ts = datetime(2024, 2, 1, 12, 0)
        self._order(db_session, "1001", ts, ts)
        complete = self._order(db_session, "1001", ts, ts - timedelta(hours=1), contact_email="ana@example.com", total=10)

        ReconciliationEngine(db_session).cleanup_duplicates(STORE_ID)

        rows = db_session.query(TiendanubeOrder).all()
        assert [r.id for r in rows] == [complete.id]

    def test_dismissed_flag_merged(self, db_session):
        ts = datetime(2024, 3, 1, 9, 0)
        db_session.add_all([
            TiendanubeCheckout(store_id=STORE_ID, tiendanube_id="77", source_updated_at=ts, added_at=ts, dismissed=True),
            TiendanubeCheckout(store_id=STORE_ID, tiendanube_id="77", source_updated_at=ts + timedelta(minutes=5),
                               added_at=ts, dismissed=False),
        ])
        db_session.commit()

        results = ReconciliationEngine(db_session).cleanup_duplicates(STORE_ID)

        assert results["by_entity"]["checkout"] == {"merged": 1, "deleted": 1}
        assert db_session.query(TiendanubeCheckout).one().dismissed is True

    def test_nothing_to_clean(self, db_session):
        results = ReconciliationEngine(db_session).cleanup_duplicates(STORE_ID)
        assert results["merged"] == 0
        assert results["deleted"] == 0
        assert db_session.query(SyncJob).one().job_type == SyncJobType.CLEANUP


class TestRefreshLocal:
    def _seed(self, db, payment_status="paid", **order_fields):
        engine = ReconciliationEngine(db)
        engine.upsert_entity("product", STORE_ID, make_product(555))
        engine.upsert_entity("product", STORE_ID, make_product(556))
        engine.upsert_entity("order", STORE_ID, make_order(1001, product_ids=[555, 999], payment_status=payment_status, **order_fields))
        db.commit()
        return engine

    def test_builds_links_and_order_rows(self, db_session):
        engine = self._seed(db_session)

        results = engine.refresh_local_from_snapshot(STORE_ID)

        assert results["products_linked"] == 2
        assert results["created"] == 1
        assert results["total_processed"] == 1
        assert results["errors"] == 0
        order = db_session.query(Order).one()
        assert order.provider_order_id == "1001"
        assert order.state == OrderState.PAID
        assert order.product.item_id == "555"

    def test_second_refresh_updates(self, db_session):
        engine = self._seed(db_session)
        engine.refresh_local_from_snapshot(STORE_ID)

        results = engine.refresh_local_from_snapshot(STORE_ID)

        assert results["products_linked"] == 0
        assert results["created"] == 0
        assert results["updated"] == 1
        assert db_session.query(Order).count() == 1
        assert db_session.query(Product).count() == 2

    def test_state_follows_snapshot(self, db_session):
        engine = self._seed(db_session, payment_status="pending")
        engine.refresh_local_from_snapshot(STORE_ID)
        assert db_session.query(Order).one().state == OrderState.PENDING

        engine.upsert_entity("order", STORE_ID, make_order(1001, product_ids=[555], payment_status="voided",
                                                           status="cancelled"))
        db_session.commit()
        engine.refresh_local_from_snapshot(STORE_ID)

        db_session.expire_all()
        assert db_session.query(Order).one().state == OrderState.CANCELLED

    def test_removed_line_drops_row(self, db_session):
        engine = self._seed(db_session)
        engine.upsert_entity("order", STORE_ID, make_order(1001, product_ids=[555, 556]))
        db_session.commit()
        engine.refresh_local_from_snapshot(STORE_ID)
        assert db_session.query(Order).count() == 2

        engine.upsert_entity("order", STORE_ID, make_order(1001, product_ids=[556]))
        db_session.commit()
        engine.refresh_local_from_snapshot(STORE_ID)

        db_session.expire_all()
        rows = db_session.query(Order).all()
        assert [r.product.item_id for r in rows] == ["556"]


class TestOrderState:
    def _snapshot(self, **fields):
        return TiendanubeOrder(store_id=STORE_ID, tiendanube_id="1", **fields)

    def test_precedence(self):
        assert order_state(self._snapshot(payment_status="paid", status="cancelled")) == OrderState.PAID
        assert order_state(self._snapshot(payment_status="pending")) == OrderState.PENDING
        assert order_state(self._snapshot(payment_status="refunded", status="cancelled")) == OrderState.CANCELLED
        assert order_state(self._snapshot(cancelled_at=datetime(2024, 1, 1))) == OrderState.CANCELLED
        assert order_state(self._snapshot(payment_status="abandoned", status="open")) == OrderState.UNPAID


class TestErasure:
    def _seed(self, db):
        engine = ReconciliationEngine(db)
        engine.upsert_entity("product", STORE_ID, make_product(555))
        engine.upsert_entity("order", STORE_ID, make_order(1001, product_ids=[555]))
        engine.upsert_entity("order", STORE_ID, make_order(1002, product_ids=[555], contact_email="bob@example.com"))
        engine.upsert_entity("checkout", STORE_ID, make_checkout(77))
        engine.upsert_entity("product", "7", make_product(1))
        db.commit()
        engine.refresh_local_from_snapshot(STORE_ID)
        return engine

    def test_delete_store_data(self, db_session):
        engine = self._seed(db_session)

        counts = engine.delete_store_data(STORE_ID)

        assert counts == {
            "local_orders": 2,
            "local_products": 1,
            "products": 1,
            "orders": 2,
            "checkouts": 1,
            "deleted": 7,
        }
        # Other stores untouched
        assert db_session.query(TiendanubeProduct).filter(TiendanubeProduct.store_id == "7").count() == 1

    def test_redact_customer(self, db_session):
        engine = self._seed(db_session)

        counts = engine.redact_customer(STORE_ID, "ANA@example.com", [1001])

        assert counts["orders"] == 1
        assert counts["checkouts"] == 1
        assert counts["local_orders"] == 1
        remaining = db_session.query(TiendanubeOrder).all()
        assert [o.tiendanube_id for o in remaining] == ["1002"]

    def test_collect_customer_data_is_read_only(self, db_session):
        engine = self._seed(db_session)

        data = engine.collect_customer_data(STORE_ID, "ana@example.com", [])

        assert data == {"orders": ["1001"], "checkouts": ["77"]}
        assert db_session.query(TiendanubeOrder).count() == 2

    def test_delete_local_product_removes_links(self, db_session):
        engine = self._seed(db_session)

        deleted = engine.delete_local_entity("product", "555", STORE_ID)

        # snapshot, product link and the two order rows pointing at it
        assert deleted == 4
        assert db_session.query(Order).count() == 0
        assert db_session.query(Product).filter(Product.store_id == STORE_ID).count() == 0
