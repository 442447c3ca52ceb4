from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import and_, exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vpshub.models.ledger import TransactionType, WalletTransaction
from vpshub.models.order import Order, ProvisioningStatus
from vpshub.models.reseller import Reseller, ResellerStatus
from vpshub.services.errors import InsufficientFunds, InvalidAmount, NotFound, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class WalletResult:
    transaction_id: int
    new_balance: int


@dataclass
class WalletDetails:
    reseller_id: int
    business_name: str
    balance: int
    currency: str
    credit_limit: int
    min_balance: int
    stats: dict[str, int]
    transactions: list[WalletTransaction] = field(default_factory=list)


@dataclass
class ReconcileReport:
    reseller_id: int
    balance: int
    last_balance_after: int | None
    ledger_sum: int
    transactions: int

    @property
    def ok(self) -> bool:
        if self.transactions == 0:
            return True
        return self.last_balance_after == self.balance and self.ledger_sum == self.balance


def _check_amount(amount: int) -> int:
    try:
        amount = int(amount)
    except (TypeError, ValueError):
        raise InvalidAmount("Amount must be a whole number")
    if amount <= 0:
        raise InvalidAmount("Amount must be positive")
    return amount


async def _append(
    db: AsyncSession,
    reseller_id: int,
    type_: TransactionType,
    amount: int,
    description: str,
    order_id: int | None,
    source: str,
    meta: dict[str, Any] | None,
) -> WalletResult:
    # same transaction as the balance UPDATE, so the row sees our own write
    q = await db.execute(select(Reseller.balance).where(Reseller.id == reseller_id))
    balance = int(q.scalar_one())
    tx = WalletTransaction(
        reseller_id=reseller_id,
        order_id=order_id,
        type=type_,
        amount=amount,
        balance_after=balance,
        description=description,
        source=source,
        meta=meta or {},
    )
    db.add(tx)
    await db.flush()
    await db.commit()
    return WalletResult(transaction_id=tx.id, new_balance=balance)


async def recharge(
    db: AsyncSession,
    reseller_id: int,
    amount: int,
    description: str = "Manual recharge by admin",
    source: str = "admin_panel",
    meta: dict[str, Any] | None = None,
) -> WalletResult:
    amount = _check_amount(amount)
    res = await db.execute(
        update(Reseller)
        .where(Reseller.id == reseller_id)
        .values(balance=Reseller.balance + amount, total_recharge=Reseller.total_recharge + amount)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        await db.rollback()
        raise NotFound("Reseller not found")

    result = await _append(db, reseller_id, TransactionType.recharge, amount, description, None, source, meta)
    logger.info("wallet recharge reseller_id=%s amount=%s balance=%s", reseller_id, amount, result.new_balance)
    return result


async def debit(
    db: AsyncSession,
    reseller_id: int,
    amount: int,
    description: str = "Order provisioning",
    order_id: int | None = None,
    source: str = "provisioning",
    meta: dict[str, Any] | None = None,
) -> WalletResult:
    """Charge the wallet. Balance may go down to ``-credit_limit`` and no further."""
    amount = _check_amount(amount)
    res = await db.execute(
        update(Reseller)
        .where(
            Reseller.id == reseller_id,
            Reseller.status == ResellerStatus.active,
            Reseller.balance - amount >= -Reseller.credit_limit,
        )
        .values(
            balance=Reseller.balance - amount,
            total_spent=Reseller.total_spent + amount,
            total_orders=Reseller.total_orders + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        await db.rollback()
        q = await db.execute(select(Reseller).where(Reseller.id == reseller_id))
        reseller = q.scalar_one_or_none()
        if not reseller:
            raise NotFound("Reseller not found")
        if reseller.status != ResellerStatus.active:
            raise ValidationError("Reseller account is not active")
        available = int(reseller.balance) + int(reseller.credit_limit or 0)
        raise InsufficientFunds(f"Insufficient wallet balance. Available: {available}, Required: {amount}")

    result = await _append(db, reseller_id, TransactionType.debit, -amount, description, order_id, source, meta)
    logger.info("wallet debit reseller_id=%s order_id=%s amount=%s balance=%s", reseller_id, order_id, amount, result.new_balance)

    q = await db.execute(select(Reseller.min_balance).where(Reseller.id == reseller_id))
    min_balance = q.scalar_one_or_none()
    if min_balance is not None and result.new_balance < int(min_balance):
        logger.warning("wallet low balance reseller_id=%s balance=%s min_balance=%s", reseller_id, result.new_balance, min_balance)
    return result


async def credit(
    db: AsyncSession,
    reseller_id: int,
    amount: int,
    description: str = "Refund",
    order_id: int | None = None,
    source: str = "provisioning",
    meta: dict[str, Any] | None = None,
) -> WalletResult:
    """Compensating refund for an earlier debit."""
    amount = _check_amount(amount)
    values: dict[str, Any] = {"balance": Reseller.balance + amount, "total_spent": Reseller.total_spent - amount}
    if order_id is not None:
        values["total_orders"] = Reseller.total_orders - 1
    res = await db.execute(
        update(Reseller).where(Reseller.id == reseller_id).values(**values).execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        await db.rollback()
        raise NotFound("Reseller not found")

    result = await _append(db, reseller_id, TransactionType.credit, amount, description, order_id, source, meta)
    logger.info("wallet credit reseller_id=%s order_id=%s amount=%s balance=%s", reseller_id, order_id, amount, result.new_balance)
    return result


async def wallet_details(db: AsyncSession, reseller_id: int, limit: int = 100) -> WalletDetails:
    q = await db.execute(select(Reseller).where(Reseller.id == reseller_id))
    reseller = q.scalar_one_or_none()
    if not reseller:
        raise NotFound("Reseller not found")
    await db.refresh(reseller)

    qt = await db.execute(
        select(WalletTransaction)
        .where(WalletTransaction.reseller_id == reseller_id)
        .order_by(WalletTransaction.id.desc())
        .limit(limit)
    )
    return WalletDetails(
        reseller_id=reseller.id,
        business_name=reseller.business_name,
        balance=int(reseller.balance),
        currency=reseller.currency,
        credit_limit=int(reseller.credit_limit or 0),
        min_balance=int(reseller.min_balance or 0),
        stats={
            "total_orders": int(reseller.total_orders or 0),
            "total_spent": int(reseller.total_spent or 0),
            "total_recharge": int(reseller.total_recharge or 0),
        },
        transactions=list(qt.scalars().all()),
    )


async def reconcile(db: AsyncSession, reseller_id: int) -> ReconcileReport:
    q = await db.execute(select(Reseller.balance).where(Reseller.id == reseller_id))
    balance = q.scalar_one_or_none()
    if balance is None:
        raise NotFound("Reseller not found")

    qs = await db.execute(
        select(func.coalesce(func.sum(WalletTransaction.amount), 0), func.count(WalletTransaction.id))
        .where(WalletTransaction.reseller_id == reseller_id)
    )
    ledger_sum, count = qs.one()
    ql = await db.execute(
        select(WalletTransaction.balance_after)
        .where(WalletTransaction.reseller_id == reseller_id)
        .order_by(WalletTransaction.id.desc())
        .limit(1)
    )
    report = ReconcileReport(
        reseller_id=reseller_id,
        balance=int(balance),
        last_balance_after=ql.scalar_one_or_none(),
        ledger_sum=int(ledger_sum),
        transactions=int(count),
    )
    if not report.ok:
        logger.error(
            "wallet mismatch reseller_id=%s balance=%s last_balance_after=%s ledger_sum=%s",
            reseller_id, report.balance, report.last_balance_after, report.ledger_sum,
        )
    return report


async def refund_reconciliation_report(db: AsyncSession) -> list[Order]:
    """Failed reseller orders that were charged and never refunded."""
    refunded = exists().where(
        and_(WalletTransaction.order_id == Order.id, WalletTransaction.type == TransactionType.credit)
    )
    q = await db.execute(
        select(Order)
        .where(
            Order.reseller_id.is_not(None),
            Order.wallet_debit_txn_id.is_not(None),
            Order.wallet_refund_txn_id.is_(None),
            Order.provisioning_status == ProvisioningStatus.failed,
            ~refunded,
        )
        .order_by(Order.id.asc())
    )
    return list(q.scalars().all())
