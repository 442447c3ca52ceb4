from __future__ import annotations

import asyncio
import logging
import math
import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vpshub.core.config import settings
from vpshub.models.common import ensure_aware, utcnow
from vpshub.models.order import Order
from vpshub.models.renewal import ProcessedVia, RenewalIntent, RenewalIntentStatus, RenewalLog
from vpshub.services.adapters.base import ProviderAdapter
from vpshub.services.adapters.factory import get_adapter
from vpshub.services.errors import ErrorCode, NotFound, ValidationError, short_err

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400
INTERRUPTED_PREFIX = "Renewal interrupted"


@dataclass
class Eligibility:
    eligible: bool
    days_until_expiry: int | None = None
    reason: str | None = None


@dataclass
class PaymentIntent:
    renewal_txn_id: str
    order_id: int
    amount: int
    currency: str
    status: RenewalIntentStatus


@dataclass
class GatewayResult:
    verified: bool
    gateway_reference: str | None = None
    amount: int | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class RenewalOutcome:
    renewal_txn_id: str
    order_id: int
    success: bool
    duplicate: bool = False
    new_expiry_date: datetime | None = None
    error: str | None = None
    error_code: ErrorCode | None = None
    provider_result: dict[str, Any] = field(default_factory=dict)


def check_eligibility(order: Order, now: datetime | None = None) -> Eligibility:
    """Renewable from 30 days before expiry until 7 days after it (whole days, rounded up)."""
    expiry = ensure_aware(order.expiry_date)
    if expiry is None:
        return Eligibility(eligible=False, reason="Order has no expiry date")
    now = now or utcnow()
    days = math.ceil((expiry - now).total_seconds() / SECONDS_PER_DAY)
    if days > settings.RENEWAL_WINDOW_BEFORE_DAYS:
        return Eligibility(eligible=False, days_until_expiry=days, reason=f"Renewal opens {settings.RENEWAL_WINDOW_BEFORE_DAYS} days before expiry")
    if days < -settings.RENEWAL_WINDOW_AFTER_DAYS:
        return Eligibility(eligible=False, days_until_expiry=days, reason=f"Order expired more than {settings.RENEWAL_WINDOW_AFTER_DAYS} days ago")
    return Eligibility(eligible=True, days_until_expiry=days)


def new_renewal_txn_id(now: datetime | None = None) -> str:
    ms = int((now or utcnow()).timestamp() * 1000)
    suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(6))
    return f"RENEWAL_{ms}_{suffix}"


def _order_context(order: Order) -> dict[str, Any]:
    expiry = ensure_aware(order.expiry_date)
    return {
        "product_name": order.product_name,
        "provider": order.provider.value if order.provider else None,
        "memory": order.memory,
        "ip_address": order.ip_address,
        "price": order.price,
        "previous_expiry": expiry.isoformat() if expiry else None,
        "provider_service_id": order.provider_service_id,
    }


async def initiate_renewal(db: AsyncSession, order_id: int, requested_by: str, user_id: int | None = None) -> PaymentIntent:
    """Create a pending renewal intent at the original order price. The order itself is untouched."""
    q = await db.execute(select(Order).where(Order.id == order_id))
    order = q.scalar_one_or_none()
    if not order or (user_id is not None and order.user_id != user_id):
        raise NotFound("Order not found")

    elig = check_eligibility(order)
    if not elig.eligible:
        raise ValidationError(f"Order is not eligible for renewal: {elig.reason}")

    intent = RenewalIntent(
        renewal_txn_id=new_renewal_txn_id(),
        order_id=order.id,
        amount=int(order.price),
        currency=settings.DEFAULT_CURRENCY,
        status=RenewalIntentStatus.pending,
        requested_by=requested_by,
    )
    db.add(intent)
    await db.commit()
    logger.info("renewal initiated order_id=%s txn=%s amount=%s by=%s", order.id, intent.renewal_txn_id, intent.amount, requested_by)
    return PaymentIntent(
        renewal_txn_id=intent.renewal_txn_id,
        order_id=order.id,
        amount=intent.amount,
        currency=intent.currency,
        status=intent.status,
    )


class _LogWriter:
    def __init__(self, db: AsyncSession, renewal_txn_id: str, order_id: int, processed_via: ProcessedVia, order: Order | None):
        self.db = db
        self.renewal_txn_id = renewal_txn_id
        self.order_id = order_id
        self.processed_via = processed_via
        self.order_context = _order_context(order) if order else {}
        self.started_at = utcnow()
        self._t0 = time.monotonic()

    async def write(
        self,
        success: bool,
        payment_info: dict[str, Any],
        provider_result: dict[str, Any] | None = None,
        new_expiry: datetime | None = None,
        error: str | None = None,
    ) -> None:
        self.db.add(
            RenewalLog(
                order_id=self.order_id,
                renewal_txn_id=self.renewal_txn_id,
                success=success,
                processed_via=self.processed_via,
                started_at=self.started_at,
                finished_at=utcnow(),
                duration_ms=int((time.monotonic() - self._t0) * 1000),
                order_context=self.order_context,
                payment_info=payment_info,
                provider_result=provider_result or {"api_called": False},
                new_expiry_date=new_expiry,
                error_message=error,
            )
        )
        await self.db.commit()


async def confirm_renewal(
    db: AsyncSession,
    renewal_txn_id: str,
    result: GatewayResult,
    processed_via: ProcessedVia = ProcessedVia.confirm_api,
    adapter_factory: Callable[[Any], ProviderAdapter] | None = None,
) -> RenewalOutcome:
    q = await db.execute(
        select(RenewalIntent)
        .where(RenewalIntent.renewal_txn_id == renewal_txn_id)
        .execution_options(populate_existing=True)
    )
    intent = q.scalar_one_or_none()
    if not intent:
        raise NotFound(f"Renewal {renewal_txn_id} not found")

    qo = await db.execute(select(Order).where(Order.id == intent.order_id).execution_options(populate_existing=True))
    order = qo.scalar_one_or_none()
    log = _LogWriter(db, renewal_txn_id, intent.order_id, processed_via, order)
    payment_info = {
        "verified": result.verified,
        "gateway_reference": result.gateway_reference,
        "amount": result.amount if result.amount is not None else intent.amount,
        "currency": intent.currency,
    }

    claimed = await db.execute(
        update(RenewalIntent)
        .where(RenewalIntent.id == intent.id, RenewalIntent.status == RenewalIntentStatus.pending)
        .values(status=RenewalIntentStatus.processing, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if claimed.rowcount != 1:
        await db.refresh(intent)
        msg = f"Duplicate confirmation; renewal already {intent.status.value}"
        await log.write(False, payment_info, error=msg)
        logger.info("renewal duplicate txn=%s status=%s", renewal_txn_id, intent.status.value)
        return RenewalOutcome(
            renewal_txn_id=renewal_txn_id,
            order_id=intent.order_id,
            success=intent.status == RenewalIntentStatus.completed,
            duplicate=True,
            new_expiry_date=ensure_aware(order.expiry_date) if order else None,
            error=msg,
            error_code=ErrorCode.already_in_progress,
        )

    failure: str | None = None
    if order is None:
        failure = "Order no longer exists"
    elif not result.verified:
        failure = "Payment not verified"
    elif result.amount is not None and int(result.amount) != int(intent.amount):
        failure = f"Paid amount {result.amount} does not match renewal amount {intent.amount}"
    if failure:
        await _finish_intent(db, intent.id, RenewalIntentStatus.failed, result.gateway_reference)
        await log.write(False, payment_info, error=failure)
        logger.warning("renewal failed txn=%s order_id=%s reason=%s", renewal_txn_id, intent.order_id, failure)
        return RenewalOutcome(
            renewal_txn_id=renewal_txn_id,
            order_id=intent.order_id,
            success=False,
            error=failure,
            error_code=ErrorCode.validation,
        )

    now = utcnow()
    current = ensure_aware(order.expiry_date)
    new_expiry = max(now, current or now) + timedelta(days=settings.RENEWAL_PERIOD_DAYS)
    order_id, intent_id = order.id, intent.id
    try:
        # expiry and intent completion commit together
        await _extend_order(db, order_id, new_expiry, now)
        await _finish_intent(db, intent_id, RenewalIntentStatus.completed, result.gateway_reference)
    except Exception as e:
        logger.exception("renewal interrupted txn=%s order_id=%s", renewal_txn_id, order_id)
        await db.rollback()
        error = f"{INTERRUPTED_PREFIX}: {short_err(e)}"
        await _requeue_intent(db, intent_id)
        await log.write(False, payment_info, error=error)
        return RenewalOutcome(
            renewal_txn_id=renewal_txn_id,
            order_id=order_id,
            success=False,
            error=error,
            error_code=ErrorCode.internal,
        )

    provider_result = await _renew_upstream(order, adapter_factory or get_adapter)
    await log.write(True, payment_info, provider_result, new_expiry)
    logger.info("renewal completed txn=%s order_id=%s new_expiry=%s", renewal_txn_id, order.id, new_expiry.isoformat())
    return RenewalOutcome(
        renewal_txn_id=renewal_txn_id,
        order_id=order.id,
        success=True,
        new_expiry_date=new_expiry,
        provider_result=provider_result,
    )


async def _extend_order(db: AsyncSession, order_id: int, new_expiry: datetime, now: datetime) -> None:
    await db.execute(
        update(Order)
        .where(Order.id == order_id)
        .values(expiry_date=new_expiry, last_action="renew", last_action_time=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )


async def _requeue_intent(db: AsyncSession, intent_id: int, older_than: datetime | None = None) -> bool:
    """processing -> pending, so the next confirmation is applied instead of treated as a duplicate."""
    conds = [RenewalIntent.id == intent_id, RenewalIntent.status == RenewalIntentStatus.processing]
    if older_than is not None:
        conds.append(RenewalIntent.updated_at <= older_than)
    res = await db.execute(
        update(RenewalIntent)
        .where(*conds)
        .values(status=RenewalIntentStatus.pending, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return res.rowcount == 1


async def _finish_intent(db: AsyncSession, intent_id: int, status: RenewalIntentStatus, gateway_reference: str | None) -> None:
    await db.execute(
        update(RenewalIntent)
        .where(RenewalIntent.id == intent_id)
        .values(status=status, gateway_reference=gateway_reference, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def _renew_upstream(order: Order, adapter_factory: Callable[[Any], ProviderAdapter]) -> dict[str, Any]:
    """Best effort: the local extension stands whatever the provider says."""
    service_id = order.provider_service_id or order.ip_address
    if not order.provider or not service_id:
        return {"api_called": False, "reason": "no provider service"}
    try:
        adapter = adapter_factory(order.provider)
        await asyncio.wait_for(adapter.renew(service_id), timeout=settings.PROVIDER_CALL_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("renewal provider call timed out order_id=%s", order.id)
        return {"api_called": True, "success": False, "error": "timeout"}
    except Exception as e:
        logger.warning("renewal provider call failed order_id=%s err=%s", order.id, short_err(e))
        return {"api_called": True, "success": False, "error": short_err(e)}
    return {"api_called": True, "success": True, "provider": order.provider.value}


PaymentChecker = Callable[[RenewalIntent], Awaitable["GatewayResult | None"]]


@dataclass
class RenewalRecoveryReport:
    threshold_minutes: int
    requeued: list[str] = field(default_factory=list)
    recovered: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    expired: list[str] = field(default_factory=list)
    awaiting_payment: list[str] = field(default_factory=list)


async def _earlier_verified_payment(db: AsyncSession, renewal_txn_id: str) -> GatewayResult | None:
    """A verified payment whose confirmation was interrupted before it was applied."""
    q = await db.execute(
        select(RenewalLog)
        .where(RenewalLog.renewal_txn_id == renewal_txn_id, RenewalLog.success == False)
        .order_by(RenewalLog.id.desc())
    )
    for row in q.scalars().all():
        info = row.payment_info or {}
        if info.get("verified") and (row.error_message or "").startswith(INTERRUPTED_PREFIX):
            return GatewayResult(verified=True, gateway_reference=info.get("gateway_reference"), amount=info.get("amount"))
    return None


async def recover_renewals(
    db: AsyncSession,
    threshold_minutes: int | None = None,
    payment_checker: PaymentChecker | None = None,
    adapter_factory: Callable[[Any], ProviderAdapter] | None = None,
    limit: int = 100,
) -> RenewalRecoveryReport:
    """Re-drive renewals that were paid but never applied.

    Intents stuck in ``processing`` past the threshold go back to ``pending``.
    Pending intents past the threshold are confirmed again when a verified
    payment is known, either from an interrupted confirmation or from
    ``payment_checker``. Unpaid intents older than ``RENEWAL_INTENT_EXPIRY_HOURS``
    are failed.
    """
    minutes = int(threshold_minutes if threshold_minutes is not None else settings.RENEWAL_RECOVERY_THRESHOLD_MINUTES)
    report = RenewalRecoveryReport(threshold_minutes=minutes)
    now = utcnow()
    cutoff = now - timedelta(minutes=minutes)
    expire_before = now - timedelta(hours=settings.RENEWAL_INTENT_EXPIRY_HOURS)

    q = await db.execute(
        select(RenewalIntent.id, RenewalIntent.renewal_txn_id, RenewalIntent.order_id)
        .where(RenewalIntent.status == RenewalIntentStatus.processing, RenewalIntent.updated_at <= cutoff)
        .order_by(RenewalIntent.id.asc())
        .limit(limit)
    )
    for intent_id, txn, order_id in q.all():
        if not await _requeue_intent(db, intent_id, older_than=cutoff):
            continue
        report.requeued.append(txn)
        db.add(
            RenewalLog(
                order_id=order_id,
                renewal_txn_id=txn,
                success=False,
                processed_via=ProcessedVia.manual,
                finished_at=utcnow(),
                payment_info={},
                provider_result={"api_called": False},
                error_message=f"{INTERRUPTED_PREFIX}: confirmation did not finish, returned to pending",
            )
        )
        await db.commit()
        logger.warning("renewal requeued txn=%s order_id=%s threshold_minutes=%s", txn, order_id, minutes)

    q = await db.execute(
        select(RenewalIntent.id, RenewalIntent.renewal_txn_id, RenewalIntent.order_id, RenewalIntent.created_at)
        .where(
            RenewalIntent.status == RenewalIntentStatus.pending,
            or_(RenewalIntent.updated_at <= cutoff, RenewalIntent.renewal_txn_id.in_(report.requeued)),
        )
        .order_by(RenewalIntent.id.asc())
        .limit(limit)
    )
    # plain rows: confirm_renewal may roll the session back mid-loop
    for intent_id, txn, order_id, created_at in q.all():
        verification = await _earlier_verified_payment(db, txn)
        if verification is None and payment_checker is not None:
            intent = await db.get(RenewalIntent, intent_id, populate_existing=True)
            try:
                verification = await payment_checker(intent)
            except Exception as e:
                logger.warning("renewal payment check failed txn=%s err=%s", txn, short_err(e))

        if verification is not None and verification.verified:
            outcome = await confirm_renewal(db, txn, verification, ProcessedVia.manual, adapter_factory=adapter_factory)
            (report.recovered if outcome.success else report.failed).append(txn)
            logger.info("renewal recovery txn=%s success=%s error=%s", txn, outcome.success, outcome.error)
            continue

        created = ensure_aware(created_at)
        if created is not None and created <= expire_before:
            res = await db.execute(
                update(RenewalIntent)
                .where(RenewalIntent.id == intent_id, RenewalIntent.status == RenewalIntentStatus.pending)
                .values(status=RenewalIntentStatus.failed, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            if res.rowcount == 1:
                report.expired.append(txn)
                logger.info("renewal intent expired txn=%s order_id=%s", txn, order_id)
            continue

        report.awaiting_payment.append(txn)
    return report
