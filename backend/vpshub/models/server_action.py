from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, JSON, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from vpshub.core.db import Base
from vpshub.models.common import TimestampMixin, utcnow


class ServerAction(str, enum.Enum):
    start = "start"
    stop = "stop"
    restart = "restart"
    format = "format"
    changepassword = "changepassword"
    reinstall = "reinstall"


class ServerActionStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class ServerActionRequest(Base, TimestampMixin):
    __tablename__ = "server_action_requests"
    __table_args__ = (
        # one pending request per order+action
        Index(
            "uq_server_action_pending",
            "order_id",
            "action",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)

    action: Mapped[ServerAction] = mapped_column(Enum(ServerAction), nullable=False)
    status: Mapped[ServerActionStatus] = mapped_column(
        Enum(ServerActionStatus), default=ServerActionStatus.pending, index=True, nullable=False
    )

    payload: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    order_snapshot: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    processed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
