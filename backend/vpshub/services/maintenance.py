from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from vpshub.core.config import settings
from vpshub.models.common import ensure_aware, utcnow
from vpshub.models.order import Order
from vpshub.services.credentials import mask_secret

logger = logging.getLogger(__name__)


def order_snapshot(order: Order) -> dict[str, Any]:
    expiry = ensure_aware(order.expiry_date)
    return {
        "id": order.id,
        "user_id": order.user_id,
        "reseller_id": order.reseller_id,
        "product_name": order.product_name,
        "memory": order.memory,
        "price": order.price,
        "status": order.status.value if order.status else None,
        "provisioning_status": order.provisioning_status.value if order.provisioning_status else None,
        "provider": order.provider.value if order.provider else None,
        "provider_service_id": order.provider_service_id,
        "ip_address": order.ip_address,
        "username": order.username,
        "password": mask_secret(order.password) if order.password else None,
        "expiry_date": expiry.isoformat() if expiry else None,
    }


async def cleanup_expired_orders(db: AsyncSession, grace_days: int | None = None) -> list[dict[str, Any]]:
    """Hard-delete orders expired for more than ``grace_days``.

    Each order is logged in full (credentials masked) before it goes.
    """
    days = int(grace_days if grace_days is not None else settings.EXPIRED_GRACE_DAYS)
    cutoff = utcnow() - timedelta(days=days)
    q = await db.execute(
        select(Order).where(Order.expiry_date.is_not(None), Order.expiry_date < cutoff).order_by(Order.id.asc())
    )
    orders = list(q.scalars().all())
    if not orders:
        return []

    snapshots = [order_snapshot(o) for o in orders]
    for snap in snapshots:
        logger.warning("deleting expired order snapshot=%s", snap)

    await db.execute(
        delete(Order).where(Order.id.in_([o.id for o in orders])).execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.warning("expired orders deleted count=%s grace_days=%s", len(snapshots), days)
    return snapshots
