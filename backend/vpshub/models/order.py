from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from vpshub.core.db import Base
from vpshub.models.common import TimestampMixin


class ProviderName(str, enum.Enum):
    hostycare = "hostycare"
    smartvps = "smartvps"
    virtualizor = "virtualizor"


class PaymentStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    paid = "paid"
    failed = "failed"
    active = "active"


class ProvisioningStatus(str, enum.Enum):
    pending = "pending"
    provisioning = "provisioning"
    active = "active"
    failed = "failed"


# payment states that allow a provisioning attempt
PROVISIONABLE_PAYMENT_STATUSES = (PaymentStatus.confirmed, PaymentStatus.paid, PaymentStatus.active)
# provisioning states an attempt may start from
RETRYABLE_PROVISIONING_STATUSES = (ProvisioningStatus.pending, ProvisioningStatus.failed)


class Order(Base, TimestampMixin):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int | None] = mapped_column(Integer, index=True, nullable=True)
    reseller_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("resellers.id"), index=True, nullable=True)

    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    memory: Mapped[str] = mapped_column(String(32), nullable=False)
    price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    promo_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    promo_discount: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    gateway_txn_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    client_txn_id: Mapped[str | None] = mapped_column(String(128), unique=True, index=True, nullable=True)
    status: Mapped[PaymentStatus] = mapped_column(Enum(PaymentStatus), default=PaymentStatus.pending, nullable=False)

    ip_stock_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("ip_stocks.id", ondelete="SET NULL"), nullable=True)
    provider: Mapped[ProviderName | None] = mapped_column(Enum(ProviderName), nullable=True)
    provider_product_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    provider_service_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    provisioning_status: Mapped[ProvisioningStatus] = mapped_column(
        Enum(ProvisioningStatus), default=ProvisioningStatus.pending, index=True, nullable=False
    )
    auto_provisioned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    provisioning_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    # bumped on every provisioning state transition (optimistic concurrency)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    hostname: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    password: Mapped[str | None] = mapped_column(String(128), nullable=True)  # encrypt at rest in production
    os: Mapped[str | None] = mapped_column(String(64), nullable=True)

    charged_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    wallet_debit_txn_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    wallet_refund_txn_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    last_action: Mapped[str | None] = mapped_column(String(32), nullable=True)
    last_action_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    expiry_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True, nullable=True)

    def has_credentials(self) -> bool:
        return bool(self.username and self.password and self.provider_service_id)
