from __future__ import annotations

import enum

from sqlalchemy import BigInteger, Enum, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from vpshub.core.db import Base
from vpshub.models.common import TimestampMixin


class ResellerStatus(str, enum.Enum):
    active = "active"
    suspended = "suspended"
    pending = "pending"


class Reseller(Base, TimestampMixin):
    __tablename__ = "resellers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    status: Mapped[ResellerStatus] = mapped_column(Enum(ResellerStatus), default=ResellerStatus.pending, nullable=False)

    # {"global_markup": {"enabled": bool, "type": "percentage"|"fixed", "value": n},
    #  "custom_prices": {"<stockId>_<tier>": price}}
    pricing: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    # NOTE: only services.wallet may change balance; every change appends a WalletTransaction.
    balance: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="INR", nullable=False)
    credit_limit: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    min_balance: Mapped[int] = mapped_column(BigInteger, default=1000, nullable=False)

    total_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_spent: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    total_recharge: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
