"""
Tiendanube payload -> local row transforms.

Money and quantity fields arrive as strings ("19.99"); they are parsed with Decimal.
A field that fails to parse becomes None and is reported in `problems` instead of
raising, so one bad value never aborts a sync.
"""
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

# Ordered language preference for localized fields
DEFAULT_LANGUAGES = ("es", "en", "pt")

_TZ_NO_COLON = re.compile(r"([+-]\d{2})(\d{2})$")


def resolve_localized(value: Any, languages: Iterable[str] = DEFAULT_LANGUAGES) -> Optional[str]:
    """
    Pick the first non-empty translation in preference order.
    Plain strings are returned as-is; dicts fall back to any non-empty value.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if not isinstance(value, dict):
        return str(value)
    for lang in languages:
        text = value.get(lang)
        if isinstance(text, str) and text.strip():
            return text
    for text in value.values():
        if isinstance(text, str) and text.strip():
            return text
    return None


def parse_decimal(value: Any, field: str, problems: list[str]) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        problems.append(f"{field}: could not parse {value!r}")
        return None
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        problems.append(f"{field}: could not parse {value!r}")
        return None
    if not parsed.is_finite():
        problems.append(f"{field}: could not parse {value!r}")
        return None
    return parsed


def parse_int(value: Any, field: str, problems: list[str]) -> Optional[int]:
    dec = parse_decimal(value, field, problems)
    if dec is None:
        return None
    return int(dec)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse platform timestamps ("2024-01-15T10:30:00+0000") into naive UTC datetimes."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _TZ_NO_COLON.sub(r"\1:\2", text)
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _str_or_none(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _tags(value: Any) -> Optional[str]:
    if isinstance(value, list):
        return ",".join(str(t) for t in value) or None
    return _str_or_none(value)


def first_variant(product: dict) -> dict:
    """
    Commerce attributes come from the first variant only; other variants are not stored.
    """
    variants = product.get("variants") or []
    if isinstance(variants, list) and variants and isinstance(variants[0], dict):
        return variants[0]
    return {}


def product_from_api(product: dict) -> tuple[dict, list[str]]:
    """Map a Tiendanube product to TiendanubeProduct fields."""
    problems: list[str] = []
    variant = first_variant(product)
    stock = parse_int(variant.get("stock"), "stock", problems)
    fields = {
        "tiendanube_id": str(product["id"]),
        "variant_id": _str_or_none(variant.get("id")),
        "name": resolve_localized(product.get("name")),
        "description": resolve_localized(product.get("description")),
        "handle": resolve_localized(product.get("handle")),
        "published": bool(product.get("published")),
        "tags": _tags(product.get("tags")),
        "brand": _str_or_none(product.get("brand")),
        "price": parse_decimal(variant.get("price"), "price", problems),
        "promotional_price": parse_decimal(variant.get("promotional_price"), "promotional_price", problems),
        # null stock means unlimited / not managed
        "stock": stock if stock is not None else 0,
        "weight": parse_decimal(variant.get("weight"), "weight", problems),
        "sku": _str_or_none(variant.get("sku")),
        "cost": parse_decimal(variant.get("cost"), "cost", problems),
        "source_created_at": parse_timestamp(product.get("created_at")),
        "source_updated_at": parse_timestamp(product.get("updated_at")),
        "raw": product,
    }
    return fields, problems


def order_from_api(order: dict) -> tuple[dict, list[str]]:
    """Map a Tiendanube order to TiendanubeOrder fields."""
    problems: list[str] = []
    fields = {
        "tiendanube_id": str(order["id"]),
        "number": _str_or_none(order.get("number")),
        "token": _str_or_none(order.get("token")),
        "contact_name": _str_or_none(order.get("contact_name")),
        "contact_email": _str_or_none(order.get("contact_email")),
        "status": _str_or_none(order.get("status")),
        "payment_status": _str_or_none(order.get("payment_status")),
        "shipping_status": _str_or_none(order.get("shipping_status")),
        "subtotal": parse_decimal(order.get("subtotal"), "subtotal", problems),
        "discount": parse_decimal(order.get("discount"), "discount", problems),
        "total": parse_decimal(order.get("total"), "total", problems),
        "currency": _str_or_none(order.get("currency")),
        "gateway": _str_or_none(order.get("gateway")),
        "products": order.get("products") if isinstance(order.get("products"), list) else [],
        "billing_address": {
            "name": order.get("billing_name"),
            "address": order.get("billing_address"),
            "number": order.get("billing_number"),
            "city": order.get("billing_city"),
            "province": order.get("billing_province"),
            "zipcode": order.get("billing_zipcode"),
            "country": order.get("billing_country"),
        },
        "shipping_address": order.get("shipping_address") if isinstance(order.get("shipping_address"), dict) else None,
        "source_created_at": parse_timestamp(order.get("created_at")),
        "source_updated_at": parse_timestamp(order.get("updated_at")),
        "paid_at": parse_timestamp(order.get("paid_at")),
        "cancelled_at": parse_timestamp(order.get("cancelled_at")),
        "closed_at": parse_timestamp(order.get("closed_at")),
        "raw": order,
    }
    return fields, problems


def checkout_from_api(checkout: dict) -> tuple[dict, list[str]]:
    """Map a Tiendanube abandoned checkout to TiendanubeCheckout fields."""
    problems: list[str] = []
    fields = {
        "tiendanube_id": str(checkout["id"]),
        "token": _str_or_none(checkout.get("token")),
        "abandoned_checkout_url": _str_or_none(checkout.get("abandoned_checkout_url")),
        "contact_name": _str_or_none(checkout.get("contact_name")),
        "contact_email": _str_or_none(checkout.get("contact_email")),
        "contact_phone": _str_or_none(checkout.get("contact_phone")),
        "subtotal": parse_decimal(checkout.get("subtotal"), "subtotal", problems),
        "total": parse_decimal(checkout.get("total"), "total", problems),
        "currency": _str_or_none(checkout.get("currency")),
        "products": checkout.get("products") if isinstance(checkout.get("products"), list) else [],
        "source_created_at": parse_timestamp(checkout.get("created_at")),
        "source_updated_at": parse_timestamp(checkout.get("updated_at")),
        "raw": checkout,
    }
    return fields, problems


TRANSFORMS = {
    "product": product_from_api,
    "order": order_from_api,
    "checkout": checkout_from_api,
}
