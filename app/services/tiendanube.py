"""
Tiendanube (Nuvemshop) REST API client - authenticated requests for one store.
Auth header is `Authentication: bearer <token>` (not Authorization). Never expose the token to frontend.
List endpoints paginate with page/per_page; a page past the end answers 404 "Last page is N".
"""
import logging
from typing import Any, Optional

import httpx

from app.config import settings
from app.exceptions import AuthError, NotFoundUpstream, UpstreamUnavailable, ValidationError
from app.services.http_client import (
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
    RETRY_BACKOFF_BASE,
    post_no_retry,
    request_with_retry,
)

logger = logging.getLogger(__name__)

# Entity type -> REST resource
RESOURCES = {
    "product": "products",
    "order": "orders",
    "checkout": "checkouts",
}


def _log_tiendanube_response(method: str, url: str, status: int, body_preview: str = "") -> None:
    """Log every Tiendanube API call. No sensitive data."""
    if status >= 400:
        logger.warning("Tiendanube API %s %s -> %s %s", method, url, status, body_preview[:200] if body_preview else "")
    else:
        logger.debug("Tiendanube API %s %s -> %s", method, url, status)


def _raise_for_status(method: str, url: str, resp: httpx.Response) -> None:
    status = resp.status_code
    _log_tiendanube_response(method, url, status, resp.text if status >= 400 else "")
    if status < 400:
        return
    preview = (resp.text or "")[:200]
    if status == 404:
        raise NotFoundUpstream(f"Tiendanube {method} {url} returned 404", details=preview)
    if status in (401, 403):
        raise AuthError(f"Tiendanube rejected the access token ({status})", details=preview)
    if status == 429 or status >= 500:
        raise UpstreamUnavailable(f"Tiendanube API error {status}", details=preview, upstream_status=status)
    raise ValidationError(f"Tiendanube API error {status}", details=preview)


def _json_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError as e:
        raise UpstreamUnavailable(
            f"Tiendanube returned a non-JSON body ({resp.status_code})",
            details=(resp.text or "")[:200],
            upstream_status=resp.status_code,
        ) from e


class TiendanubeClient:
    """Client bound to one store's bearer credential."""

    def __init__(
        self,
        store_id: str,
        access_token: str,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: int = DEFAULT_RETRIES,
        backoff_base: float = RETRY_BACKOFF_BASE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not access_token:
            raise AuthError(f"Missing access token for store {store_id}")
        self.store_id = str(store_id)
        self._access_token = access_token
        self.base_url = (base_url or settings.TIENDANUBE_API_BASE_URL).rstrip("/")
        self.timeout = timeout or DEFAULT_TIMEOUT
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.transport = transport

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{self.store_id}/{path.lstrip('/')}"

    def _headers(self) -> dict:
        return {
            "Authentication": f"bearer {self._access_token}",
            "User-Agent": settings.TIENDANUBE_USER_AGENT,
            "Content-Type": "application/json; charset=utf-8",
        }

    async def _get(self, path: str, params: Optional[dict] = None) -> Any:
        url = self._url(path)
        try:
            resp = await request_with_retry(
                "GET",
                url,
                params=params,
                headers=self._headers(),
                timeout=self.timeout,
                max_retries=self.max_retries,
                backoff_base=self.backoff_base,
                transport=self.transport,
            )
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Tiendanube unreachable: {e}") from e
        _raise_for_status("GET", url, resp)
        return _json_body(resp)

    async def _post(self, path: str, body: dict) -> Any:
        url = self._url(path)
        try:
            resp = await post_no_retry(
                url, json=body, headers=self._headers(), timeout=self.timeout, transport=self.transport
            )
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Tiendanube unreachable: {e}") from e
        _raise_for_status("POST", url, resp)
        return _json_body(resp) if resp.content else {}

    async def get_entity(self, entity_type: str, entity_id: str) -> dict:
        resource = RESOURCES.get(entity_type)
        if not resource:
            raise ValidationError(f"Unsupported entity type: {entity_type}")
        return await self._get(f"{resource}/{entity_id}")

    async def get_product(self, product_id: str) -> dict:
        return await self.get_entity("product", product_id)

    async def get_order(self, order_id: str) -> dict:
        return await self.get_entity("order", order_id)

    async def get_checkout(self, checkout_id: str) -> dict:
        return await self.get_entity("checkout", checkout_id)

    async def list_page(self, entity_type: str, page: int, per_page: int) -> list[dict]:
        """
        Fetch one page of a collection. Raises NotFoundUpstream when the page is past the end.
        """
        resource = RESOURCES.get(entity_type)
        if not resource:
            raise ValidationError(f"Unsupported entity type: {entity_type}")
        data = await self._get(resource, params={"page": page, "per_page": per_page})
        if not isinstance(data, list):
            raise UpstreamUnavailable(f"Unexpected {resource} page shape: {type(data).__name__}")
        return data

    async def get_store(self) -> dict:
        return await self._get("store")

    async def list_webhooks(self) -> list[dict]:
        data = await self._get("webhooks", params={"per_page": 200})
        return data if isinstance(data, list) else []

    async def register_webhook(self, event: str, url: str) -> dict:
        return await self._post("webhooks", {"event": event, "url": url})


async def exchange_authorization_code(
    code: str,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    """
    Exchange an OAuth authorization code for a permanent access token.
    Returns {"access_token", "user_id" (the store id), "scope"}.
    """
    if not code:
        raise ValidationError("Missing authorization code")
    if not settings.TIENDANUBE_APP_ID or not settings.TIENDANUBE_APP_SECRET:
        raise AuthError("TIENDANUBE_APP_ID / TIENDANUBE_APP_SECRET not configured")
    try:
        resp = await post_no_retry(
            settings.TIENDANUBE_AUTH_URL,
            json={
                "client_id": settings.TIENDANUBE_APP_ID,
                "client_secret": settings.TIENDANUBE_APP_SECRET,
                "grant_type": "authorization_code",
                "code": code,
            },
            headers={"User-Agent": settings.TIENDANUBE_USER_AGENT},
            timeout=15.0,
            transport=transport,
        )
    except httpx.HTTPError as e:
        raise UpstreamUnavailable(f"Tiendanube auth unreachable: {e}") from e
    _raise_for_status("POST", settings.TIENDANUBE_AUTH_URL, resp)
    data = _json_body(resp)
    if not isinstance(data, dict):
        raise UpstreamUnavailable("Unexpected token exchange response shape")
    # Errors come back as 200 with {"error": ..., "error_description": ...}
    if data.get("error") or not data.get("access_token"):
        raise AuthError(data.get("error_description") or data.get("error") or "Token exchange failed")
    return {
        "access_token": data["access_token"],
        "user_id": str(data.get("user_id") or ""),
        "scope": data.get("scope"),
    }
