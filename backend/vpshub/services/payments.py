from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vpshub.core.config import settings
from vpshub.models.common import utcnow
from vpshub.models.order import PROVISIONABLE_PAYMENT_STATUSES, Order, PaymentStatus
from vpshub.services.errors import NotFound

logger = logging.getLogger(__name__)


@dataclass
class PaymentSignal:
    order_ref: str  # order id or client txn id
    verified: bool
    gateway_reference: str | None = None


@dataclass
class PaymentOutcome:
    order_id: int
    status: PaymentStatus
    changed: bool
    provisioning_enqueued: bool = False


async def _find_order(db: AsyncSession, ref: str) -> Order | None:
    # client txn ids win over primary keys; numeric txn ids exist
    q = await db.execute(select(Order).where(Order.client_txn_id == ref))
    order = q.scalar_one_or_none()
    if order is None and ref.isdigit():
        q = await db.execute(select(Order).where(Order.id == int(ref)))
        order = q.scalar_one_or_none()
    return order


async def confirm_payment(
    db: AsyncSession,
    signal: PaymentSignal,
    on_confirmed: Callable[[int], None] | None = None,
) -> PaymentOutcome:
    """Apply an external payment signal to an order.

    Verified moves pending/failed to confirmed; unverified moves pending to
    failed. Orders already past payment are left alone.
    """
    order = await _find_order(db, str(signal.order_ref).strip())
    if not order:
        raise NotFound("Order not found")

    if signal.verified:
        res = await db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status.in_([PaymentStatus.pending, PaymentStatus.failed]))
            .values(status=PaymentStatus.confirmed, gateway_txn_id=signal.gateway_reference, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        new_status = PaymentStatus.confirmed
    else:
        res = await db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == PaymentStatus.pending)
            .values(status=PaymentStatus.failed, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        new_status = PaymentStatus.failed
    await db.commit()

    if res.rowcount != 1:
        await db.refresh(order)
        logger.info("payment signal no-op order_id=%s status=%s verified=%s", order.id, order.status.value, signal.verified)
        return PaymentOutcome(order_id=order.id, status=order.status, changed=False)

    logger.info("payment signal order_id=%s status=%s ref=%s", order.id, new_status.value, signal.gateway_reference)
    outcome = PaymentOutcome(order_id=order.id, status=new_status, changed=True)
    if new_status in PROVISIONABLE_PAYMENT_STATUSES and on_confirmed and settings.AUTO_PROVISION_ON_PAYMENT:
        on_confirmed(order.id)
        outcome.provisioning_enqueued = True
    return outcome
