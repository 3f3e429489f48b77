"""
Pydantic schemas for request/response validation (Http/Requests).
"""
from pydantic import BaseModel, validator
from typing import Optional, List, Any

from app.exceptions import ValidationError
from app.services.webhook_registration import validate_callback_url


# Webhook Schemas
class WebhookConfigureRequest(BaseModel):
    webhook_url: Optional[str] = None

    @validator('webhook_url')
    def validate_webhook_url(cls, v):
        if v is None or not v.strip():
            return None
        try:
            return validate_callback_url(v)
        except ValidationError as e:
            raise ValueError(e.message)


class WebhookResponse(BaseModel):
    success: bool
    message: str
    idempotencyKey: Optional[str] = None
    duplicate: bool = False
    status: Optional[str] = None
    detail: Optional[dict] = None


class WebhookRegistrationError(BaseModel):
    event: str
    error: str


class WebhookRegistrationResponse(BaseModel):
    success: bool
    message: str
    total: int
    successful: int
    failed: int
    errors: List[WebhookRegistrationError]
    webhookUrl: str
    version: str


# Sync Schemas
class SyncSummary(BaseModel):
    total: int
    added: int
    updated: int
    errors: int
    errors_details: List[str]
    pages: int


class CleanupSummary(BaseModel):
    merged: int
    deleted: int
    errors: int
    errors_details: List[str]
    by_entity: dict


class RefreshSummary(BaseModel):
    total_processed: int
    created: int
    updated: int
    products_linked: int
    errors: int
    errors_details: List[str]


class OrdersSyncResponse(BaseModel):
    sync: SyncSummary
    cleanup: Optional[CleanupSummary] = None
    refresh: Optional[RefreshSummary] = None


class StoreInfoResponse(BaseModel):
    storeId: str
    status: str
    businessId: Optional[str] = None
    store: Optional[Any] = None
