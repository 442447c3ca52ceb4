from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vpshub.models.common import utcnow
from vpshub.models.order import Order
from vpshub.models.server_action import ServerAction, ServerActionRequest, ServerActionStatus
from vpshub.services.errors import Forbidden, NotFound, ValidationError

logger = logging.getLogger(__name__)

DECISIONS = {"approve": ServerActionStatus.approved, "reject": ServerActionStatus.rejected}


def _snapshot(order: Order) -> dict[str, Any]:
    return {
        "product_name": order.product_name,
        "ip_address": order.ip_address or "Not assigned",
        "os": order.os or "Unknown",
        "memory": order.memory or "Unknown",
        "provider": order.provider.value if order.provider else None,
    }


async def create_request(
    db: AsyncSession,
    order_id: int,
    user_id: int,
    action: ServerAction | str,
    payload: dict[str, Any] | None = None,
) -> ServerActionRequest:
    """Queue a manual action for an admin. Orders with a provider service id use direct actions instead."""
    try:
        action = ServerAction(action)
    except ValueError:
        raise ValidationError(f"Invalid action. Must be one of: {', '.join(a.value for a in ServerAction)}")

    q = await db.execute(select(Order).where(Order.id == order_id))
    order = q.scalar_one_or_none()
    if not order:
        raise NotFound("Order not found")
    if order.user_id != user_id:
        raise Forbidden("Unauthorized to request actions for this order")
    if order.provider and order.provider_service_id:
        raise ValidationError("This order supports direct server actions")

    qe = await db.execute(
        select(ServerActionRequest.id).where(
            ServerActionRequest.order_id == order_id,
            ServerActionRequest.action == action,
            ServerActionRequest.status == ServerActionStatus.pending,
        )
    )
    if qe.first():
        raise ValidationError(f"A pending {action.value} request already exists for this order")

    req = ServerActionRequest(
        order_id=order_id,
        user_id=user_id,
        action=action,
        status=ServerActionStatus.pending,
        payload=payload or {},
        order_snapshot=_snapshot(order),
        requested_at=utcnow(),
    )
    db.add(req)
    try:
        await db.commit()
    except IntegrityError:
        # concurrent duplicate hit the partial unique index
        await db.rollback()
        raise ValidationError(f"A pending {action.value} request already exists for this order")
    logger.info("server action requested id=%s order_id=%s action=%s user_id=%s", req.id, order_id, action.value, user_id)
    return req


async def process_request(
    db: AsyncSession,
    request_id: int,
    decision: str,
    admin_id: str,
    notes: str | None = None,
) -> ServerActionRequest:
    """Approve or reject a pending request. Approval only records the action on the order."""
    new_status = DECISIONS.get(decision)
    if new_status is None:
        raise ValidationError('Invalid decision. Must be "approve" or "reject"')

    q = await db.execute(select(ServerActionRequest).where(ServerActionRequest.id == request_id))
    req = q.scalar_one_or_none()
    if not req:
        raise NotFound("Request not found")

    now = utcnow()
    values: dict[str, Any] = {"status": new_status, "processed_at": now, "processed_by": str(admin_id), "updated_at": now}
    if notes:
        values["admin_notes"] = notes
    res = await db.execute(
        update(ServerActionRequest)
        .where(ServerActionRequest.id == request_id, ServerActionRequest.status == ServerActionStatus.pending)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        await db.rollback()
        await db.refresh(req)
        raise ValidationError(f"Request already {req.status.value}")

    if new_status == ServerActionStatus.approved:
        await db.execute(
            update(Order)
            .where(Order.id == req.order_id)
            .values(last_action=req.action.value, last_action_time=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
    await db.commit()
    await db.refresh(req)
    logger.info("server action processed id=%s decision=%s admin=%s", request_id, decision, admin_id)
    return req


async def list_pending(db: AsyncSession, limit: int = 200) -> list[ServerActionRequest]:
    q = await db.execute(
        select(ServerActionRequest)
        .where(ServerActionRequest.status == ServerActionStatus.pending)
        .order_by(ServerActionRequest.requested_at.asc(), ServerActionRequest.id.asc())
        .limit(limit)
    )
    return list(q.scalars().all())


async def list_for_order(db: AsyncSession, order_id: int, user_id: int) -> list[ServerActionRequest]:
    q = await db.execute(
        select(ServerActionRequest)
        .where(ServerActionRequest.order_id == order_id, ServerActionRequest.user_id == user_id)
        .order_by(ServerActionRequest.id.desc())
    )
    return list(q.scalars().all())
