from sqlalchemy import Integer, ForeignKey, BigInteger, String, DateTime, Enum, JSON
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
import enum
from vpshub.core.db import Base
from vpshub.models.common import TimestampMixin, utcnow

class TransactionType(str, enum.Enum):
    recharge = "recharge"
    debit = "debit"
    credit = "credit"

class WalletTransaction(Base, TimestampMixin):
    __tablename__ = "wallet_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    reseller_id: Mapped[int] = mapped_column(Integer, ForeignKey("resellers.id"), index=True, nullable=False)
    order_id: Mapped[int | None] = mapped_column(Integer, index=True, nullable=True)

    type: Mapped[TransactionType] = mapped_column(Enum(TransactionType), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)  # positive or negative
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    source: Mapped[str] = mapped_column(String(64), default="system", nullable=False)
    meta: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
