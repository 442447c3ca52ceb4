import pytest

from vpshub.models.order import Order, PaymentStatus
from vpshub.services.errors import NotFound
from vpshub.services.payments import PaymentSignal, confirm_payment


async def test_verified_payment_confirms_and_enqueues(db, make_order, load):
    order_id = await make_order(status=PaymentStatus.pending, client_txn_id="CLT-1")
    enqueued = []

    outcome = await confirm_payment(db, PaymentSignal("CLT-1", verified=True, gateway_reference="gw-9"), enqueued.append)

    assert outcome.changed
    assert outcome.status == PaymentStatus.confirmed
    assert outcome.provisioning_enqueued
    assert enqueued == [order_id]
    order = await load(Order, order_id)
    assert order.status == PaymentStatus.confirmed
    assert order.gateway_txn_id == "gw-9"


async def test_repeated_signal_is_a_no_op(db, make_order):
    order_id = await make_order(status=PaymentStatus.pending)
    enqueued = []
    await confirm_payment(db, PaymentSignal(str(order_id), verified=True), enqueued.append)

    again = await confirm_payment(db, PaymentSignal(str(order_id), verified=True), enqueued.append)

    assert not again.changed
    assert again.status == PaymentStatus.confirmed
    assert enqueued == [order_id]


async def test_unverified_payment_fails_pending_order(db, make_order, load):
    order_id = await make_order(status=PaymentStatus.pending)

    outcome = await confirm_payment(db, PaymentSignal(str(order_id), verified=False))

    assert outcome.status == PaymentStatus.failed
    assert not outcome.provisioning_enqueued
    assert (await load(Order, order_id)).status == PaymentStatus.failed


async def test_unverified_signal_does_not_touch_active_order(db, make_order, load):
    order_id = await make_order(status=PaymentStatus.active)
    outcome = await confirm_payment(db, PaymentSignal(str(order_id), verified=False))
    assert not outcome.changed
    assert (await load(Order, order_id)).status == PaymentStatus.active


async def test_unknown_order(db):
    with pytest.raises(NotFound):
        await confirm_payment(db, PaymentSignal("nope", verified=True))


async def test_client_txn_id_wins_over_order_id(db, make_order, load):
    first_id = await make_order(status=PaymentStatus.pending)
    second_id = await make_order(status=PaymentStatus.pending, client_txn_id=str(first_id))
    enqueued = []

    outcome = await confirm_payment(db, PaymentSignal(str(first_id), verified=True), enqueued.append)

    assert outcome.order_id == second_id
    assert enqueued == [second_id]
    assert (await load(Order, second_id)).status == PaymentStatus.confirmed
    assert (await load(Order, first_id)).status == PaymentStatus.pending
