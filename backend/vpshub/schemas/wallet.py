from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

class RechargeRequest(BaseModel):
    amount: int = Field(gt=0)
    description: str = Field(default="Manual recharge by admin", max_length=255)

class WalletOpResult(BaseModel):
    ok: bool
    transaction_id: int
    new_balance: int

class WalletTransactionOut(BaseModel):
    id: int
    type: str
    amount: int
    balance_after: int
    description: str
    source: str
    order_id: Optional[int] = None
    occurred_at: datetime

class WalletOut(BaseModel):
    reseller_id: int
    business_name: str
    balance: int
    currency: str
    credit_limit: int
    min_balance: int
    stats: Dict[str, int]
    reconciled: bool
    transactions: List[WalletTransactionOut]

class RefundReportItem(BaseModel):
    order_id: int
    reseller_id: int
    charged_amount: Optional[int]
    wallet_debit_txn_id: Optional[int]
    provisioning_error: Optional[str] = None
    updated_at: datetime

class RefundReport(BaseModel):
    items: List[RefundReportItem]
    total: int

class CatalogProduct(BaseModel):
    stock_id: int
    name: str
    description: str
    server_type: str
    tags: List[str]
    memory_options: Dict[str, Dict[str, Any]]

class CatalogOut(BaseModel):
    reseller_id: int
    currency: str
    products: List[CatalogProduct]
