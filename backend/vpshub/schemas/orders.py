from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

class ProvisionResult(BaseModel):
    order_id: int
    success: bool
    provisioning_status: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    provider_service_id: Optional[str] = None
    ip_address: Optional[str] = None
    duration_ms: int = 0

class BulkProvisionRequest(BaseModel):
    order_ids: List[int] = Field(min_length=1, max_length=500)

class BulkItemOut(BaseModel):
    order_id: int
    success: bool
    error: Optional[str] = None
    error_code: Optional[str] = None

class BulkProvisionResult(BaseModel):
    total: int
    succeeded: int
    failed: int
    results: List[BulkItemOut]

class OrderOut(BaseModel):
    id: int
    user_id: Optional[int]
    reseller_id: Optional[int]
    product_name: str
    memory: str
    price: int
    status: str
    provisioning_status: str
    auto_provisioned: bool
    provisioning_error: Optional[str] = None
    provider: Optional[str] = None
    provider_service_id: Optional[str] = None
    ip_address: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None  # always masked
    expiry_date: Optional[datetime] = None
    created_at: datetime

class OrderList(BaseModel):
    items: List[OrderOut]
    total: int

class ResetStuckRequest(BaseModel):
    threshold_minutes: Optional[int] = Field(default=None, ge=1, le=1440)

class ResetStuckResult(BaseModel):
    threshold_minutes: int
    reset: List[int]
    stale: List[int]

class CleanupExpiredRequest(BaseModel):
    grace_days: Optional[int] = Field(default=None, ge=0, le=365)

class CleanupExpiredResult(BaseModel):
    deleted: int
    orders: List[dict]

class PaymentConfirmRequest(BaseModel):
    order_ref: str = Field(min_length=1, max_length=128)
    verified: bool
    gateway_reference: Optional[str] = Field(default=None, max_length=128)

class PaymentConfirmResult(BaseModel):
    order_id: int
    status: str
    changed: bool
    provisioning_enqueued: bool
