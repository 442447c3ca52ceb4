from datetime import timedelta

import pytest
from sqlalchemy import select, update

from conftest import FakeAdapter
from vpshub.models.common import ensure_aware, utcnow
from vpshub.models.order import Order, PaymentStatus, ProviderName, ProvisioningStatus
from vpshub.models.renewal import ProcessedVia, RenewalIntent, RenewalIntentStatus, RenewalLog
from vpshub.services import renewal
from vpshub.services.adapters.base import ProviderError
from vpshub.services.errors import ErrorCode, NotFound, ValidationError


@pytest.mark.parametrize(
    "days,eligible",
    [(31, False), (30, True), (0, True), (-7, True), (-8, False)],
)
def test_eligibility_window(days, eligible):
    now = utcnow()
    order = Order(expiry_date=now + timedelta(days=days))
    assert renewal.check_eligibility(order, now=now).eligible is eligible


def test_eligibility_rounds_partial_days_up():
    now = utcnow()
    order = Order(expiry_date=now + timedelta(days=30, hours=1))
    result = renewal.check_eligibility(order, now=now)
    assert result.days_until_expiry == 31
    assert not result.eligible


def test_no_expiry_is_not_eligible():
    assert not renewal.check_eligibility(Order(expiry_date=None)).eligible


def test_txn_id_format():
    txn = renewal.new_renewal_txn_id()
    prefix, ms, suffix = txn.split("_")
    assert prefix == "RENEWAL"
    assert ms.isdigit()
    assert len(suffix) == 6


async def _active_order(make_order, days_left=5, **kw):
    values = dict(
        status=PaymentStatus.active,
        provisioning_status=ProvisioningStatus.active,
        provider=ProviderName.hostycare,
        provider_service_id="svc-9",
        expiry_date=utcnow() + timedelta(days=days_left),
        price=1500,
    )
    values.update(kw)
    return await make_order(**values)


async def test_initiate_creates_pending_intent_only(db, make_order, load):
    order_id = await _active_order(make_order)
    before = await load(Order, order_id)

    intent = await renewal.initiate_renewal(db, order_id, requested_by="user:7", user_id=7)

    assert intent.status == RenewalIntentStatus.pending
    assert intent.amount == 1500
    assert intent.currency == "INR"
    assert intent.renewal_txn_id.startswith("RENEWAL_")
    after = await load(Order, order_id)
    assert after.expiry_date == before.expiry_date


async def test_initiate_rejects_other_users_and_ineligible_orders(db, make_order):
    order_id = await _active_order(make_order)
    with pytest.raises(NotFound):
        await renewal.initiate_renewal(db, order_id, requested_by="user:8", user_id=8)

    far = await _active_order(make_order, days_left=60)
    with pytest.raises(ValidationError):
        await renewal.initiate_renewal(db, far, requested_by="user:7", user_id=7)


async def test_confirm_extends_from_current_expiry(db, make_order, load):
    order_id = await _active_order(make_order, days_left=5)
    old_expiry = ensure_aware((await load(Order, order_id)).expiry_date)
    intent = await renewal.initiate_renewal(db, order_id, requested_by="user:7")
    adapter = FakeAdapter()

    outcome = await renewal.confirm_renewal(
        db, intent.renewal_txn_id, renewal.GatewayResult(verified=True, gateway_reference="gw-1", amount=1500),
        adapter_factory=lambda p: adapter,
    )

    assert outcome.success
    assert not outcome.duplicate
    assert outcome.new_expiry_date == old_expiry + timedelta(days=30)
    assert outcome.provider_result["api_called"] is True
    assert adapter.renewed == ["svc-9"]
    order = await load(Order, order_id)
    assert ensure_aware(order.expiry_date) == old_expiry + timedelta(days=30)
    assert order.last_action == "renew"

    logs = (await db.execute(select(RenewalLog))).scalars().all()
    assert len(logs) == 1
    assert logs[0].success is True
    assert logs[0].processed_via == ProcessedVia.confirm_api
    assert logs[0].payment_info["gateway_reference"] == "gw-1"
    assert logs[0].order_context["provider_service_id"] == "svc-9"


async def test_confirm_after_expiry_extends_from_now(db, make_order, load):
    order_id = await _active_order(make_order, days_left=-3)
    intent = await renewal.initiate_renewal(db, order_id, requested_by="admin:1")

    outcome = await renewal.confirm_renewal(
        db, intent.renewal_txn_id, renewal.GatewayResult(verified=True), adapter_factory=lambda p: FakeAdapter()
    )

    remaining = outcome.new_expiry_date - utcnow()
    assert timedelta(days=29) < remaining <= timedelta(days=30)


async def test_duplicate_confirm_is_logged_and_idempotent(db, make_order, load):
    order_id = await _active_order(make_order)
    intent = await renewal.initiate_renewal(db, order_id, requested_by="user:7")
    result = renewal.GatewayResult(verified=True, amount=1500)

    first = await renewal.confirm_renewal(db, intent.renewal_txn_id, result, adapter_factory=lambda p: FakeAdapter())
    second = await renewal.confirm_renewal(
        db, intent.renewal_txn_id, result, ProcessedVia.webhook, adapter_factory=lambda p: FakeAdapter()
    )

    assert first.success and second.success
    assert second.duplicate
    assert second.error_code == ErrorCode.already_in_progress
    assert second.new_expiry_date == first.new_expiry_date
    assert ensure_aware((await load(Order, order_id)).expiry_date) == first.new_expiry_date

    logs = (await db.execute(select(RenewalLog).order_by(RenewalLog.id))).scalars().all()
    assert [log.success for log in logs] == [True, False]
    assert logs[1].processed_via == ProcessedVia.webhook


async def test_unverified_payment_fails_intent(db, make_order, load):
    order_id = await _active_order(make_order)
    before = await load(Order, order_id)
    intent = await renewal.initiate_renewal(db, order_id, requested_by="user:7")

    outcome = await renewal.confirm_renewal(db, intent.renewal_txn_id, renewal.GatewayResult(verified=False))

    assert not outcome.success
    assert outcome.error == "Payment not verified"
    assert (await load(Order, order_id)).expiry_date == before.expiry_date
    stored = (await db.execute(select(RenewalIntent))).scalar_one()
    await db.refresh(stored)
    assert stored.status == RenewalIntentStatus.failed
    log = (await db.execute(select(RenewalLog))).scalar_one()
    assert log.success is False
    assert log.error_message == "Payment not verified"


async def test_amount_mismatch_fails(db, make_order):
    order_id = await _active_order(make_order)
    intent = await renewal.initiate_renewal(db, order_id, requested_by="user:7")

    outcome = await renewal.confirm_renewal(db, intent.renewal_txn_id, renewal.GatewayResult(verified=True, amount=10))

    assert not outcome.success
    assert "does not match" in outcome.error


async def test_provider_renew_failure_does_not_undo_extension(db, make_order, load):
    order_id = await _active_order(make_order, provider=ProviderName.virtualizor)
    intent = await renewal.initiate_renewal(db, order_id, requested_by="user:7")

    class Refusing(FakeAdapter):
        async def renew(self, service_id):
            raise ProviderError("no billing renewal")

    outcome = await renewal.confirm_renewal(
        db, intent.renewal_txn_id, renewal.GatewayResult(verified=True), adapter_factory=lambda p: Refusing()
    )

    assert outcome.success
    assert outcome.provider_result == {"api_called": True, "success": False, "error": "no billing renewal"}


async def test_unknown_txn(db):
    with pytest.raises(NotFound):
        await renewal.confirm_renewal(db, "RENEWAL_1_NOPE00", renewal.GatewayResult(verified=True))


async def _age_intent(session_factory, txn, minutes, **values):
    then = utcnow() - timedelta(minutes=minutes)
    async with session_factory() as s:
        await s.execute(
            update(RenewalIntent)
            .where(RenewalIntent.renewal_txn_id == txn)
            .values(created_at=then, updated_at=then, **values)
        )
        await s.commit()


async def _interrupted_confirm(db, make_order, load, monkeypatch):
    order_id = await _active_order(make_order)
    before = ensure_aware((await load(Order, order_id)).expiry_date)
    intent = await renewal.initiate_renewal(db, order_id, requested_by="user:7")

    async def lost_connection(*args, **kwargs):
        raise RuntimeError("connection reset by peer")

    monkeypatch.setattr(renewal, "_extend_order", lost_connection)
    outcome = await renewal.confirm_renewal(
        db,
        intent.renewal_txn_id,
        renewal.GatewayResult(verified=True, gateway_reference="gw-7", amount=1500),
        adapter_factory=lambda p: FakeAdapter(),
    )
    monkeypatch.undo()
    return order_id, before, intent.renewal_txn_id, outcome


async def test_interrupted_confirm_logs_and_returns_intent_to_pending(db, make_order, load, monkeypatch):
    order_id, before, txn, outcome = await _interrupted_confirm(db, make_order, load, monkeypatch)

    assert not outcome.success
    assert outcome.error_code == ErrorCode.internal
    assert outcome.error.startswith("Renewal interrupted")
    assert ensure_aware((await load(Order, order_id)).expiry_date) == before
    stored = (await db.execute(select(RenewalIntent).execution_options(populate_existing=True))).scalar_one()
    assert stored.status == RenewalIntentStatus.pending
    log = (await db.execute(select(RenewalLog))).scalar_one()
    assert log.success is False
    assert log.payment_info["verified"] is True

    retry = await renewal.confirm_renewal(
        db, txn, renewal.GatewayResult(verified=True, amount=1500), ProcessedVia.webhook, adapter_factory=lambda p: FakeAdapter()
    )

    assert retry.success
    assert not retry.duplicate
    assert retry.new_expiry_date == before + timedelta(days=30)


async def test_recovery_applies_interrupted_verified_payment(db, session_factory, make_order, load, monkeypatch):
    order_id, before, txn, _ = await _interrupted_confirm(db, make_order, load, monkeypatch)
    await _age_intent(session_factory, txn, minutes=30)
    adapter = FakeAdapter()

    report = await renewal.recover_renewals(db, threshold_minutes=10, adapter_factory=lambda p: adapter)

    assert report.recovered == [txn]
    assert report.awaiting_payment == []
    assert adapter.renewed == ["svc-9"]
    assert ensure_aware((await load(Order, order_id)).expiry_date) == before + timedelta(days=30)
    last = (await db.execute(select(RenewalLog).order_by(RenewalLog.id.desc()))).scalars().first()
    assert last.success is True
    assert last.processed_via == ProcessedVia.manual
    assert last.payment_info["gateway_reference"] == "gw-7"


async def test_recovery_requeues_abandoned_processing_intent(db, session_factory, make_order, load):
    order_id = await _active_order(make_order)
    before = ensure_aware((await load(Order, order_id)).expiry_date)
    txn = (await renewal.initiate_renewal(db, order_id, requested_by="user:7")).renewal_txn_id
    await _age_intent(session_factory, txn, minutes=30, status=RenewalIntentStatus.processing)

    report = await renewal.recover_renewals(db, threshold_minutes=10)

    assert report.requeued == [txn]
    assert report.awaiting_payment == [txn]
    assert ensure_aware((await load(Order, order_id)).expiry_date) == before

    # the gateway's late retry is applied, not swallowed as a duplicate
    late = await renewal.confirm_renewal(
        db, txn, renewal.GatewayResult(verified=True), ProcessedVia.webhook, adapter_factory=lambda p: FakeAdapter()
    )
    assert late.success
    assert not late.duplicate


async def test_recovery_leaves_fresh_processing_intents_alone(db, session_factory, make_order):
    order_id = await _active_order(make_order)
    txn = (await renewal.initiate_renewal(db, order_id, requested_by="user:7")).renewal_txn_id
    await _age_intent(session_factory, txn, minutes=2, status=RenewalIntentStatus.processing)

    report = await renewal.recover_renewals(db, threshold_minutes=10)

    assert report.requeued == []
    assert report.awaiting_payment == []


async def test_recovery_asks_payment_checker_and_expires_unpaid_intents(db, session_factory, make_order, load):
    paid_order = await _active_order(make_order)
    paid = (await renewal.initiate_renewal(db, paid_order, requested_by="user:7")).renewal_txn_id
    unpaid = (await renewal.initiate_renewal(db, await _active_order(make_order), requested_by="user:7")).renewal_txn_id
    await _age_intent(session_factory, paid, minutes=30)
    await _age_intent(session_factory, unpaid, minutes=3 * 24 * 60)
    asked = []

    async def gateway_lookup(intent):
        asked.append(intent.renewal_txn_id)
        if intent.renewal_txn_id == paid:
            return renewal.GatewayResult(verified=True, gateway_reference="gw-late", amount=intent.amount)
        return None

    report = await renewal.recover_renewals(
        db, threshold_minutes=10, payment_checker=gateway_lookup, adapter_factory=lambda p: FakeAdapter()
    )

    assert sorted(asked) == sorted([paid, unpaid])
    assert report.recovered == [paid]
    assert report.expired == [unpaid]
    statuses = dict((await db.execute(select(RenewalIntent.renewal_txn_id, RenewalIntent.status))).all())
    assert statuses == {paid: RenewalIntentStatus.completed, unpaid: RenewalIntentStatus.failed}
