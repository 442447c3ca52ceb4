from __future__ import annotations

from typing import Any

from sqlalchemy import Boolean, Enum, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from vpshub.core.db import Base
from vpshub.models.common import TimestampMixin
from vpshub.models.order import ProviderName


class IPStock(Base, TimestampMixin):
    __tablename__ = "ip_stocks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    server_type: Mapped[str] = mapped_column(String(64), default="Linux", nullable=False)
    provider: Mapped[ProviderName] = mapped_column(Enum(ProviderName), default=ProviderName.hostycare, nullable=False)

    available: Mapped[bool] = mapped_column(Boolean, default=True, index=True, nullable=False)
    # shared entries are never claimed; a single_use entry (one IP) serves one order
    single_use: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # {"8GB": {"price": 999, "provider_product_id": "91", "provider_product_name": "..."}}
    memory_options: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    # [{"code": "...", "discount_type": "percentage", "discount_value": 10, "is_active": true}]
    promo_codes: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    tags: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    default_configurations: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    def memory_option(self, tier: str) -> tuple[str, dict[str, Any]] | None:
        """Look up a tier, tolerating case differences ("8gb" vs "8GB")."""
        options = self.memory_options or {}
        if tier in options:
            return tier, options[tier]
        wanted = (tier or "").strip().lower()
        for key, value in options.items():
            if str(key).strip().lower() == wanted:
                return key, value
        return None
