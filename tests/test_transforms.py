"""
Payload transform tests
"""
from datetime import datetime
from decimal import Decimal

from conftest import make_checkout, make_order, make_product
from app.services.transforms import (
    checkout_from_api,
    order_from_api,
    parse_decimal,
    parse_timestamp,
    product_from_api,
    resolve_localized,
)


class TestParsing:
    def test_decimal_from_string(self):
        problems = []
        assert parse_decimal("19.99", "price", problems) == Decimal("19.99")
        assert problems == []

    def test_unparseable_decimal_reported(self):
        problems = []
        assert parse_decimal("not-a-number", "price", problems) is None
        assert problems == ["price: could not parse 'not-a-number'"]

    def test_empty_decimal_is_none_without_problem(self):
        problems = []
        assert parse_decimal(None, "price", problems) is None
        assert parse_decimal("", "price", problems) is None
        assert problems == []

    def test_non_finite_and_bool_rejected(self):
        problems = []
        assert parse_decimal("NaN", "total", problems) is None
        assert parse_decimal(True, "total", problems) is None
        assert len(problems) == 2

    def test_timestamp_without_colon_offset(self):
        assert parse_timestamp("2024-01-15T10:30:00+0000") == datetime(2024, 1, 15, 10, 30)

    def test_timestamp_converted_to_utc(self):
        assert parse_timestamp("2024-01-15T07:30:00-0300") == datetime(2024, 1, 15, 10, 30)
        assert parse_timestamp("2024-01-15T10:30:00Z") == datetime(2024, 1, 15, 10, 30)

    def test_bad_timestamp_is_none(self):
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None


class TestLocalizedFields:
    def test_language_preference(self):
        assert resolve_localized({"pt": "Camiseta", "es": "Remera"}) == "Remera"
        assert resolve_localized({"pt": "Camiseta", "en": "T-shirt"}) == "T-shirt"

    def test_falls_back_to_any_translation(self):
        assert resolve_localized({"es": "", "fr": "Chemise"}) == "Chemise"

    def test_plain_string_and_empty(self):
        assert resolve_localized("Remera") == "Remera"
        assert resolve_localized({}) is None
        assert resolve_localized(None) is None


class TestEntityTransforms:
    def test_product_uses_first_variant(self):
        payload = make_product(555)
        payload["variants"].append({"id": 9, "price": "1.00", "stock": 99, "sku": "OTHER"})

        fields, problems = product_from_api(payload)

        assert problems == []
        assert fields["tiendanube_id"] == "555"
        assert fields["variant_id"] == "5550"
        assert fields["name"] == "Remera"
        assert fields["price"] == Decimal("19.99")
        assert fields["stock"] == 5
        assert fields["sku"] == "SKU-555"
        assert fields["source_updated_at"] == datetime(2024, 1, 16, 8, 0)
        assert fields["raw"] is payload

    def test_product_unlimited_stock_is_zero(self):
        fields, _ = product_from_api(make_product(555, variant={"stock": None}))
        assert fields["stock"] == 0

    def test_product_without_variants(self):
        fields, problems = product_from_api(make_product(555, variants=[]))
        assert fields["price"] is None
        assert fields["sku"] is None
        assert problems == []

    def test_product_bad_price_kept_with_problem(self):
        fields, problems = product_from_api(make_product(555, variant={"price": "not-a-number"}))
        assert fields["price"] is None
        assert fields["name"] == "Remera"
        assert problems == ["price: could not parse 'not-a-number'"]

    def test_product_tags_list(self):
        fields, _ = product_from_api(make_product(555, tags=["a", "b"]))
        assert fields["tags"] == "a,b"

    def test_order_fields(self):
        fields, problems = order_from_api(make_order(1001, product_ids=[555]))

        assert problems == []
        assert fields["tiendanube_id"] == "1001"
        assert fields["payment_status"] == "paid"
        assert fields["total"] == Decimal("100.00")
        assert fields["products"][0]["product_id"] == 555
        assert fields["paid_at"] == datetime(2024, 2, 1, 12, 5)

    def test_checkout_fields(self):
        fields, problems = checkout_from_api(make_checkout(77))

        assert problems == []
        assert fields["tiendanube_id"] == "77"
        assert fields["total"] == Decimal("55.00")
        assert fields["contact_email"] == "ana@example.com"
