from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vpshub.models.ip_stock import IPStock
from vpshub.models.reseller import Reseller
from vpshub.services.errors import NotFound


@dataclass
class PricedProduct:
    stock_id: int
    name: str
    description: str
    server_type: str
    tags: list[str]
    # {tier: {"price": reseller price, "base_price": cost, "provider_product_name": ...}}
    memory_options: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass
class PricedCatalog:
    reseller_id: int
    currency: str
    products: list[PricedProduct] = field(default_factory=list)


def _dec(value: Any) -> Decimal | None:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None


def custom_price_key(stock_id: int, tier: str) -> str:
    return f"{stock_id}_{tier}"


def reseller_price(pricing: dict[str, Any] | None, stock_id: int, tier: str, cost: int | float | Decimal) -> int:
    """Price a tier for one reseller, rounded up to a whole unit.

    Order of precedence: a positive custom price for ``<stockId>_<tier>``,
    then the enabled global markup (percentage or fixed), then raw cost.
    """
    pricing = pricing or {}
    base = _dec(cost) or Decimal(0)

    custom = _dec((pricing.get("custom_prices") or {}).get(custom_price_key(stock_id, tier)))
    if custom is not None and custom > 0:
        return math.ceil(custom)

    markup = pricing.get("global_markup") or {}
    value = _dec(markup.get("value")) or Decimal(0)
    if markup.get("enabled"):
        if markup.get("type") == "percentage":
            return math.ceil(base + base * value / Decimal(100))
        if markup.get("type") == "fixed":
            return math.ceil(base + value)

    return math.ceil(base)


def price_for_reseller(reseller: Reseller, stock_id: int, tier: str, cost: int) -> int:
    return reseller_price(reseller.pricing, stock_id, tier, cost)


async def get_reseller_priced_catalog(db: AsyncSession, reseller_id: int) -> PricedCatalog:
    q = await db.execute(select(Reseller).where(Reseller.id == reseller_id))
    reseller = q.scalar_one_or_none()
    if not reseller:
        raise NotFound("Reseller not found")

    qs = await db.execute(select(IPStock).where(IPStock.available == True).order_by(IPStock.id.asc()))
    catalog = PricedCatalog(reseller_id=reseller.id, currency=reseller.currency)
    for stock in qs.scalars().all():
        product = PricedProduct(
            stock_id=stock.id,
            name=stock.name,
            description=stock.description,
            server_type=stock.server_type,
            tags=list(stock.tags or []),
        )
        for tier, option in (stock.memory_options or {}).items():
            cost = int((option or {}).get("price") or 0)
            product.memory_options[tier] = {
                "price": price_for_reseller(reseller, stock.id, tier, cost),
                "base_price": cost,
                "provider_product_name": (option or {}).get("provider_product_name"),
            }
        catalog.products.append(product)
    return catalog
