from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime

class RenewalIntentOut(BaseModel):
    renewal_txn_id: str
    order_id: int
    amount: int
    currency: str
    status: str

class RenewalConfirmRequest(BaseModel):
    renewal_txn_id: str = Field(min_length=8, max_length=64)
    verified: bool
    gateway_reference: Optional[str] = Field(default=None, max_length=128)
    amount: Optional[int] = Field(default=None, ge=0)
    processed_via: str = Field(default="confirm-api", pattern="^(webhook|confirm-api|manual)$")

class RenewalConfirmResult(BaseModel):
    renewal_txn_id: str
    order_id: int
    success: bool
    duplicate: bool
    new_expiry_date: Optional[datetime] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    provider_result: Dict[str, Any] = {}

class RenewalRecoverRequest(BaseModel):
    threshold_minutes: Optional[int] = Field(default=None, ge=1, le=10080)

class RenewalRecoveryOut(BaseModel):
    threshold_minutes: int
    requeued: List[str] = []
    recovered: List[str] = []
    failed: List[str] = []
    expired: List[str] = []
    awaiting_payment: List[str] = []
