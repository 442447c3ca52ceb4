from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Enum, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from vpshub.core.db import Base
from vpshub.models.common import TimestampMixin, utcnow


class RenewalIntentStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class ProcessedVia(str, enum.Enum):
    webhook = "webhook"
    confirm_api = "confirm-api"
    manual = "manual"


class RenewalIntent(Base, TimestampMixin):
    __tablename__ = "renewal_intents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    renewal_txn_id: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    # no FK: intents outlive hard-deleted orders for audit
    order_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)

    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    status: Mapped[RenewalIntentStatus] = mapped_column(
        Enum(RenewalIntentStatus), default=RenewalIntentStatus.pending, nullable=False
    )
    gateway_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    requested_by: Mapped[str] = mapped_column(String(64), nullable=False)


class RenewalLog(Base, TimestampMixin):
    """Write-once audit row; one per confirm attempt, pass or fail."""

    __tablename__ = "renewal_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    renewal_txn_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)

    success: Mapped[bool] = mapped_column(Boolean, index=True, nullable=False)
    processed_via: Mapped[ProcessedVia] = mapped_column(Enum(ProcessedVia, values_callable=lambda e: [m.value for m in e]), nullable=False)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    order_context: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    payment_info: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    provider_result: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    new_expiry_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
