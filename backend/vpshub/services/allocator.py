from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vpshub.models.ip_stock import IPStock
from vpshub.models.order import ProviderName
from vpshub.services.errors import NoStockAvailable

logger = logging.getLogger(__name__)


@dataclass
class StockReservation:
    stock_id: int
    provider: ProviderName
    tier: str
    provider_product_id: str
    provider_product_name: str | None
    price: int
    single_use: bool = False
    configurations: dict[str, Any] = field(default_factory=dict)


def provider_for_stock(stock: IPStock) -> ProviderName:
    # legacy rows mark SmartVPS products with a tag only
    if any(str(t).lower() == ProviderName.smartvps.value for t in (stock.tags or [])):
        return ProviderName.smartvps
    return ProviderName(stock.provider)


async def _claim(db: AsyncSession, stock_id: int) -> bool:
    res = await db.execute(
        update(IPStock)
        .where(IPStock.id == stock_id, IPStock.available == True)
        .values(available=False)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return res.rowcount == 1


def _reservation(stock: IPStock, tier_key: str, option: dict[str, Any]) -> StockReservation:
    return StockReservation(
        stock_id=stock.id,
        provider=provider_for_stock(stock),
        tier=tier_key,
        provider_product_id=str(option.get("provider_product_id") or option.get("hostycare_product_id") or ""),
        provider_product_name=option.get("provider_product_name"),
        price=int(option.get("price") or 0),
        single_use=bool(stock.single_use),
        configurations=dict(stock.default_configurations or {}),
    )


async def reserve(db: AsyncSession, plan_tier: str, preferred_stock_id: int | None = None) -> StockReservation:
    """Pick one available stock entry offering ``plan_tier``.

    The preferred entry wins if it is still available and offers the tier.
    Otherwise entries are tried in id order. Only ``single_use`` entries are
    claimed (flipped unavailable); shared catalog entries serve any number of
    concurrent attempts. Losing a claim race moves on to the next candidate.
    """
    q = await db.execute(select(IPStock).where(IPStock.available == True).order_by(IPStock.id.asc()))
    stocks = list(q.scalars().all())
    if preferred_stock_id is not None:
        stocks.sort(key=lambda s: 0 if s.id == preferred_stock_id else 1)

    for stock in stocks:
        found = stock.memory_option(plan_tier)
        if not found:
            continue
        tier_key, option = found
        if stock.single_use and not await _claim(db, stock.id):
            logger.info("stock claim lost stock_id=%s tier=%s", stock.id, plan_tier)
            continue
        logger.info(
            "stock reserved stock_id=%s tier=%s single_use=%s preferred=%s",
            stock.id, tier_key, bool(stock.single_use), stock.id == preferred_stock_id,
        )
        return _reservation(stock, tier_key, option)

    raise NoStockAvailable(f"No available stock offers memory tier {plan_tier!r}")


async def release(db: AsyncSession, stock_id: int) -> None:
    """Make a stock entry available again (operator action or compensation)."""
    await db.execute(
        update(IPStock).where(IPStock.id == stock_id).values(available=True).execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("stock released stock_id=%s", stock_id)


async def cancel(db: AsyncSession, reservation: StockReservation) -> None:
    """Undo a reservation after a failed attempt. Shared entries were never claimed."""
    if reservation.single_use:
        await release(db, reservation.stock_id)


async def settle(db: AsyncSession, reservation: StockReservation) -> None:
    """Finish a successful reservation: a single-use entry is consumed for good."""
    if not reservation.single_use:
        return
    # an operator release during the provider call must not reopen a used resource
    await db.execute(
        update(IPStock)
        .where(IPStock.id == reservation.stock_id)
        .values(available=False)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("stock consumed stock_id=%s", reservation.stock_id)
