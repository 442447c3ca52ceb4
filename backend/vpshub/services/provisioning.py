from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vpshub.core.config import settings
from vpshub.core.db import AsyncSessionLocal
from vpshub.models.common import utcnow
from vpshub.models.order import (
    PROVISIONABLE_PAYMENT_STATUSES,
    RETRYABLE_PROVISIONING_STATUSES,
    Order,
    PaymentStatus,
    ProvisioningStatus,
)
from vpshub.services import allocator, wallet
from vpshub.services.adapters.base import CreatedServer, PlanParams, ProviderAdapter, ProviderError
from vpshub.services.adapters.factory import get_adapter
from vpshub.services.allocator import StockReservation
from vpshub.services.credentials import generate_hostname, generate_password, login_username, mask_secret, target_os
from vpshub.services.errors import (
    AlreadyInProgress,
    ErrorCode,
    InsufficientFunds,
    NoStockAvailable,
    NotFound,
    OrchestratorError,
    StaleStuckState,
    ValidationError,
    short_err,
)

logger = logging.getLogger(__name__)

STUCK_RESET_MESSAGE = "Reset from stuck provisioning state"

AdapterFactory = Callable[[Any], ProviderAdapter]


@dataclass
class ProvisionOutcome:
    order_id: int
    success: bool
    provisioning_status: ProvisioningStatus | None = None
    error: str | None = None
    error_code: ErrorCode | None = None
    provider_service_id: str | None = None
    ip_address: str | None = None
    duration_ms: int = 0

    @classmethod
    def from_error(cls, order_id: int, e: OrchestratorError, status: ProvisioningStatus | None, started: float) -> "ProvisionOutcome":
        return cls(
            order_id=order_id,
            success=False,
            provisioning_status=status,
            error=e.message,
            error_code=e.code,
            duration_ms=_elapsed_ms(started),
        )


@dataclass
class StuckResetReport:
    threshold_minutes: int
    reset: list[int] = field(default_factory=list)
    stale: list[int] = field(default_factory=list)


@dataclass
class _Attempt:
    """Bookkeeping for one claimed attempt, used to compensate on failure."""

    order_id: int
    prior_status: ProvisioningStatus
    version: int
    prior_error: str | None = None
    reseller_id: int | None = None
    charged: int | None = None
    debit_txn_id: int | None = None
    reservation: StockReservation | None = None


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class ProvisioningStateMachine:
    """Drives an order through pending -> provisioning -> active | failed.

    Every transition is a conditional UPDATE on ``provisioning_status`` and
    ``version``, so concurrent callers for one order get exactly one attempt.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        adapter_factory: AdapterFactory | None = None,
        call_timeout: float | None = None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.adapter_factory = adapter_factory or get_adapter
        self.call_timeout = float(call_timeout if call_timeout is not None else settings.PROVIDER_CALL_TIMEOUT_SECONDS)

    async def provision_order(self, order_id: int, actor: str = "system") -> ProvisionOutcome:
        started = time.monotonic()
        async with self.session_factory() as db:
            try:
                attempt, order = await self._claim(db, order_id)
            except AlreadyInProgress as e:
                logger.info("provision skipped order_id=%s actor=%s reason=%s", order_id, actor, e.message)
                return ProvisionOutcome.from_error(order_id, e, ProvisioningStatus.provisioning, started)
            except OrchestratorError as e:
                logger.info("provision rejected order_id=%s actor=%s code=%s reason=%s", order_id, actor, e.code.value, e.message)
                return ProvisionOutcome.from_error(order_id, e, None, started)

            logger.info("provision start order_id=%s actor=%s prior=%s", order_id, actor, attempt.prior_status.value)
            try:
                return await self._run(db, attempt, order, started)
            except Exception as e:
                logger.exception("provision crashed order_id=%s", order_id)
                await db.rollback()
                return await self._fail(db, attempt, ProviderError(f"Unexpected error: {short_err(e)}"), started)

    async def _claim(self, db: AsyncSession, order_id: int) -> tuple[_Attempt, Order]:
        q = await db.execute(select(Order).where(Order.id == order_id))
        order = q.scalar_one_or_none()
        if not order:
            raise NotFound(f"Order {order_id} not found")
        if order.status not in PROVISIONABLE_PAYMENT_STATUSES:
            raise ValidationError(f"Order payment status is {order.status.value}; payment must be confirmed first")
        if order.provisioning_status == ProvisioningStatus.provisioning:
            raise AlreadyInProgress(f"Order {order_id} is already being provisioned")
        if order.provisioning_status not in RETRYABLE_PROVISIONING_STATUSES:
            raise ValidationError(f"Order {order_id} is already provisioned")

        prior, version = order.provisioning_status, order.version
        res = await db.execute(
            update(Order)
            .where(Order.id == order_id, Order.provisioning_status == prior, Order.version == version)
            .values(
                provisioning_status=ProvisioningStatus.provisioning,
                provisioning_error=None,
                version=version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if res.rowcount != 1:
            raise AlreadyInProgress(f"Order {order_id} is already being provisioned")
        # read-only snapshot from here on; compensation rollbacks must not expire it
        db.expunge(order)
        attempt = _Attempt(
            order_id=order_id,
            prior_status=prior,
            version=version + 1,
            prior_error=order.provisioning_error,
            reseller_id=order.reseller_id,
        )
        return attempt, order

    async def _transition(self, db: AsyncSession, attempt: _Attempt, **values: Any) -> bool:
        res = await db.execute(
            update(Order)
            .where(Order.id == attempt.order_id, Order.version == attempt.version)
            .values(version=attempt.version + 1, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if res.rowcount == 1:
            attempt.version += 1
            return True
        return False

    async def _run(self, db: AsyncSession, attempt: _Attempt, order: Order, started: float) -> ProvisionOutcome:
        if attempt.reseller_id is not None:
            try:
                await self._charge(db, attempt, order)
            except (InsufficientFunds, ValidationError) as e:
                # nothing was charged; the order goes back exactly where it was
                await self._transition(db, attempt, provisioning_status=attempt.prior_status, provisioning_error=attempt.prior_error)
                logger.info("provision not charged order_id=%s reseller_id=%s reason=%s", order.id, attempt.reseller_id, e.message)
                return ProvisionOutcome.from_error(order.id, e, attempt.prior_status, started)

        try:
            attempt.reservation = await allocator.reserve(db, order.memory, order.ip_stock_id)
        except NoStockAvailable as e:
            await self._refund(db, attempt, "No stock available")
            await self._transition(db, attempt, provisioning_status=ProvisioningStatus.pending, provisioning_error=e.message)
            logger.warning("provision no stock order_id=%s tier=%s", order.id, order.memory)
            return ProvisionOutcome.from_error(order.id, e, ProvisioningStatus.pending, started)

        reservation = attempt.reservation
        plan = PlanParams(
            hostname=order.hostname or generate_hostname(order.product_name, reservation.tier),
            username=login_username(order.product_name),
            password=generate_password(),
            memory=reservation.tier,
            os=target_os(order.product_name),
            configurations=reservation.configurations,
        )
        moved = await self._transition(
            db,
            attempt,
            ip_stock_id=reservation.stock_id,
            provider=reservation.provider,
            provider_product_id=reservation.provider_product_id or None,
            hostname=plan.hostname,
            os=plan.os,
        )
        if not moved:
            return await self._abandon(db, attempt, StaleStuckState("Order changed before the provider call"), started)

        try:
            created = await self._create(reservation, plan)
        except ProviderError as e:
            return await self._fail(db, attempt, e, started)

        return await self._activate(db, attempt, created, started)

    async def _charge(self, db: AsyncSession, attempt: _Attempt, order: Order) -> None:
        if order.wallet_debit_txn_id and not order.wallet_refund_txn_id:
            # an earlier attempt charged and was never refunded
            attempt.charged = order.charged_amount
            attempt.debit_txn_id = order.wallet_debit_txn_id
            return
        amount = int(order.price or 0)
        if amount <= 0:
            return
        result = await wallet.debit(
            db,
            attempt.reseller_id,
            amount,
            description=f"Order {order.id} for {order.product_name} ({order.memory})",
            order_id=order.id,
        )
        attempt.charged = amount
        attempt.debit_txn_id = result.transaction_id
        await self._record_wallet(db, attempt.order_id, charged_amount=amount, wallet_debit_txn_id=result.transaction_id, wallet_refund_txn_id=None)

    async def _create(self, reservation: StockReservation, plan: PlanParams) -> CreatedServer:
        if not reservation.provider_product_id:
            raise ProviderError(f"Stock {reservation.stock_id} has no provider product for tier {reservation.tier}")
        adapter = self.adapter_factory(reservation.provider)
        try:
            created = await asyncio.wait_for(adapter.create(reservation.provider_product_id, plan), timeout=self.call_timeout)
        except asyncio.TimeoutError:
            raise ProviderError(f"Provider {reservation.provider.value} create timed out after {self.call_timeout:g}s")
        if not (created.provider_service_id and created.username and created.password):
            raise ProviderError("Provider returned incomplete server credentials")
        return created

    async def _activate(self, db: AsyncSession, attempt: _Attempt, created: CreatedServer, started: float) -> ProvisionOutcome:
        now = utcnow()
        values = dict(
            provisioning_status=ProvisioningStatus.active,
            status=PaymentStatus.active,
            auto_provisioned=True,
            provisioning_error=None,
            provider_service_id=created.provider_service_id,
            ip_address=created.ip_address,
            username=created.username,
            password=created.password,
            expiry_date=now + timedelta(days=settings.RENEWAL_PERIOD_DAYS),
        )
        if created.os:
            values["os"] = created.os

        if not await self._transition(db, attempt, **values):
            # a stuck-reset raced us; the server exists, so keep its credentials
            res = await db.execute(
                update(Order)
                .where(Order.id == attempt.order_id, Order.provisioning_status != ProvisioningStatus.active)
                .values(version=Order.version + 1, updated_at=now, **values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            if res.rowcount != 1:
                logger.error(
                    "provisioned server orphaned order_id=%s service_id=%s", attempt.order_id, created.provider_service_id
                )
                return ProvisionOutcome.from_error(
                    attempt.order_id, StaleStuckState("Order changed while the provider call was in flight"), None, started
                )

        if attempt.reservation:
            await allocator.settle(db, attempt.reservation)
        logger.info(
            "provision success order_id=%s service_id=%s ip=%s user=%s password=%s duration_ms=%s",
            attempt.order_id, created.provider_service_id, created.ip_address, created.username,
            mask_secret(created.password), _elapsed_ms(started),
        )
        return ProvisionOutcome(
            order_id=attempt.order_id,
            success=True,
            provisioning_status=ProvisioningStatus.active,
            provider_service_id=created.provider_service_id,
            ip_address=created.ip_address,
            duration_ms=_elapsed_ms(started),
        )

    async def _fail(self, db: AsyncSession, attempt: _Attempt, e: OrchestratorError, started: float) -> ProvisionOutcome:
        error = short_err(e, 1000)
        if not await self._transition(db, attempt, provisioning_status=ProvisioningStatus.failed, provisioning_error=error):
            logger.warning("provision failure not recorded, order changed order_id=%s", attempt.order_id)
        if attempt.reservation:
            await allocator.cancel(db, attempt.reservation)
        await self._refund(db, attempt, f"Provisioning failed: {error[:200]}")
        logger.warning("provision failed order_id=%s code=%s error=%s", attempt.order_id, e.code.value, error)
        return ProvisionOutcome.from_error(attempt.order_id, e, ProvisioningStatus.failed, started)

    async def _abandon(self, db: AsyncSession, attempt: _Attempt, e: StaleStuckState, started: float) -> ProvisionOutcome:
        """Another actor took the order over; give back what this attempt holds without touching the order state."""
        if attempt.reservation:
            await allocator.cancel(db, attempt.reservation)
        await self._refund(db, attempt, "Order changed during provisioning")
        logger.warning("provision abandoned order_id=%s reason=%s", attempt.order_id, e.message)
        return ProvisionOutcome.from_error(attempt.order_id, e, None, started)

    async def _refund(self, db: AsyncSession, attempt: _Attempt, reason: str) -> None:
        if attempt.reseller_id is None or not attempt.debit_txn_id or not attempt.charged:
            return
        try:
            result = await wallet.credit(
                db,
                attempt.reseller_id,
                attempt.charged,
                description=f"Refund for order {attempt.order_id}: {reason}",
                order_id=attempt.order_id,
                meta={"debit_txn_id": attempt.debit_txn_id},
            )
        except Exception:
            # left for the refund reconciliation report
            logger.exception("refund failed order_id=%s reseller_id=%s amount=%s", attempt.order_id, attempt.reseller_id, attempt.charged)
            await db.rollback()
            return
        await self._record_wallet(db, attempt.order_id, wallet_refund_txn_id=result.transaction_id)
        attempt.debit_txn_id = None

    async def _record_wallet(self, db: AsyncSession, order_id: int, **values: Any) -> None:
        # ledger links are not state: written even if the order moved on, version untouched
        await db.execute(update(Order).where(Order.id == order_id).values(**values).execution_options(synchronize_session=False))
        await db.commit()

    async def reset_stuck(self, threshold_minutes: int | None = None) -> StuckResetReport:
        """Put orders stuck in ``provisioning`` back to ``pending``.

        The provider is not consulted: a server created by the lost attempt
        stays unknown to us until an operator reconciles it.
        """
        minutes = int(threshold_minutes if threshold_minutes is not None else settings.STUCK_THRESHOLD_MINUTES)
        report = StuckResetReport(threshold_minutes=minutes)
        cutoff = utcnow() - timedelta(minutes=minutes)
        async with self.session_factory() as db:
            q = await db.execute(
                select(Order.id, Order.version)
                .where(Order.provisioning_status == ProvisioningStatus.provisioning, Order.updated_at <= cutoff)
                .order_by(Order.id.asc())
            )
            for order_id, version in q.all():
                res = await db.execute(
                    update(Order)
                    .where(
                        Order.id == order_id,
                        Order.provisioning_status == ProvisioningStatus.provisioning,
                        Order.version == version,
                    )
                    .values(
                        provisioning_status=ProvisioningStatus.pending,
                        provisioning_error=STUCK_RESET_MESSAGE,
                        version=version + 1,
                        updated_at=utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
                if res.rowcount == 1:
                    report.reset.append(order_id)
                    logger.warning("stuck order reset order_id=%s threshold_minutes=%s", order_id, minutes)
                else:
                    report.stale.append(order_id)
                    logger.info("stuck order moved on order_id=%s code=%s", order_id, StaleStuckState.code.value)
        return report
