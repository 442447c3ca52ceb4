from vpshub.models.ip_stock import IPStock
from vpshub.models.ledger import TransactionType, WalletTransaction
from vpshub.models.order import Order, PaymentStatus, ProviderName, ProvisioningStatus
from vpshub.models.renewal import ProcessedVia, RenewalIntent, RenewalIntentStatus, RenewalLog
from vpshub.models.reseller import Reseller, ResellerStatus
from vpshub.models.server_action import ServerAction, ServerActionRequest, ServerActionStatus

__all__ = [
    "IPStock",
    "Order",
    "PaymentStatus",
    "ProcessedVia",
    "ProviderName",
    "ProvisioningStatus",
    "RenewalIntent",
    "RenewalIntentStatus",
    "RenewalLog",
    "Reseller",
    "ResellerStatus",
    "ServerAction",
    "ServerActionRequest",
    "ServerActionStatus",
    "TransactionType",
    "WalletTransaction",
]
