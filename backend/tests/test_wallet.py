import pytest
from sqlalchemy import select

from vpshub.models.ledger import TransactionType, WalletTransaction
from vpshub.models.order import ProvisioningStatus
from vpshub.models.reseller import Reseller, ResellerStatus
from vpshub.services import wallet
from vpshub.services.errors import InsufficientFunds, InvalidAmount, NotFound, ValidationError


async def test_recharge_then_debit_keeps_running_balance(db, make_reseller, load):
    reseller_id = await make_reseller()

    r1 = await wallet.recharge(db, reseller_id, 500)
    r2 = await wallet.debit(db, reseller_id, 200, order_id=11)

    assert (r1.new_balance, r2.new_balance) == (500, 300)
    rows = (await db.execute(select(WalletTransaction).order_by(WalletTransaction.id))).scalars().all()
    assert [(t.type, t.amount, t.balance_after) for t in rows] == [
        (TransactionType.recharge, 500, 500),
        (TransactionType.debit, -200, 300),
    ]
    reseller = await load(Reseller, reseller_id)
    assert (reseller.total_recharge, reseller.total_spent, reseller.total_orders) == (500, 200, 1)
    assert (await wallet.reconcile(db, reseller_id)).ok


async def test_debit_may_use_credit_limit_but_not_exceed_it(db, make_reseller, load):
    reseller_id = await make_reseller(balance=300, credit_limit=100)

    with pytest.raises(InsufficientFunds):
        await wallet.debit(db, reseller_id, 500)
    assert (await load(Reseller, reseller_id)).balance == 300

    result = await wallet.debit(db, reseller_id, 400)
    assert result.new_balance == -100
    count = (await db.execute(select(WalletTransaction).where(WalletTransaction.type == TransactionType.debit))).scalars().all()
    assert len(count) == 1


async def test_debit_requires_active_reseller(db, make_reseller):
    reseller_id = await make_reseller(balance=1000, status=ResellerStatus.suspended)
    with pytest.raises(ValidationError, match="not active"):
        await wallet.debit(db, reseller_id, 10)


async def test_credit_reverses_order_counters(db, make_reseller, load):
    reseller_id = await make_reseller(balance=1000)
    await wallet.debit(db, reseller_id, 400, order_id=5)

    result = await wallet.credit(db, reseller_id, 400, order_id=5)

    assert result.new_balance == 1000
    reseller = await load(Reseller, reseller_id)
    assert (reseller.total_spent, reseller.total_orders) == (0, 0)


@pytest.mark.parametrize("amount", [0, -5, "abc"])
async def test_amount_must_be_positive(db, make_reseller, amount):
    reseller_id = await make_reseller()
    with pytest.raises(InvalidAmount):
        await wallet.recharge(db, reseller_id, amount)


async def test_unknown_reseller(db):
    with pytest.raises(NotFound):
        await wallet.recharge(db, 99, 10)
    with pytest.raises(NotFound):
        await wallet.debit(db, 99, 10)


async def test_reconcile_flags_out_of_band_balance_edits(db, make_reseller, session_factory):
    reseller_id = await make_reseller(balance=100)
    async with session_factory() as s:
        reseller = await s.get(Reseller, reseller_id)
        reseller.balance = 999
        await s.commit()

    report = await wallet.reconcile(db, reseller_id)

    assert not report.ok
    assert report.ledger_sum == 100
    assert report.last_balance_after == 100


async def test_wallet_details(db, make_reseller):
    reseller_id = await make_reseller(balance=700)
    await wallet.debit(db, reseller_id, 50)

    details = await wallet.wallet_details(db, reseller_id, limit=1)

    assert details.balance == 650
    assert details.stats == {"total_orders": 1, "total_spent": 50, "total_recharge": 700}
    assert [t.amount for t in details.transactions] == [-50]


async def test_refund_report_lists_charged_failed_orders_without_credit(db, make_reseller, make_order):
    reseller_id = await make_reseller(balance=1000)
    debit = await wallet.debit(db, reseller_id, 300, order_id=None)
    missing = await make_order(
        reseller_id=reseller_id,
        provisioning_status=ProvisioningStatus.failed,
        charged_amount=300,
        wallet_debit_txn_id=debit.transaction_id,
    )
    refunded = await make_order(
        reseller_id=reseller_id,
        provisioning_status=ProvisioningStatus.failed,
        charged_amount=300,
        wallet_debit_txn_id=debit.transaction_id,
    )
    await wallet.credit(db, reseller_id, 300, order_id=refunded)

    rows = await wallet.refund_reconciliation_report(db)

    assert [o.id for o in rows] == [missing]
