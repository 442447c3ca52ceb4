from conftest import FakeAdapter
from vpshub.models.order import Order, PaymentStatus, ProvisioningStatus
from vpshub.services.bulk import BulkProvisioner, find_candidates, run_sweep
from vpshub.services.errors import ErrorCode
from vpshub.services.provisioning import ProvisioningStateMachine


async def _orders(make_stock, make_order, n, slow_index=None):
    stock_id = await make_stock(name="Cloud 8")
    ids = []
    for i in range(n):
        hostname = "slow.example.com" if i == slow_index else f"vm{i}.example.com"
        ids.append(await make_order(ip_stock_id=stock_id, hostname=hostname))
    return ids


async def test_bulk_keeps_input_order_and_isolates_failures(session_factory, make_stock, make_order, load):
    ids = await _orders(make_stock, make_order, 5, slow_index=2)
    adapter = FakeAdapter()
    machine = ProvisioningStateMachine(session_factory, adapter_factory=lambda p: adapter, call_timeout=0.3)

    results = await BulkProvisioner(machine, concurrency=3).bulk_provision(list(reversed(ids)))

    assert [r.order_id for r in results] == list(reversed(ids))
    assert sum(r.success for r in results) == 4
    failed = [r for r in results if not r.success]
    assert [r.order_id for r in failed] == [ids[2]]
    assert failed[0].error_code == ErrorCode.provider
    assert (await load(Order, ids[2])).provisioning_status == ProvisioningStatus.failed


async def test_bulk_orders_share_one_catalog_entry(session_factory, make_stock, make_order, load):
    ids = await _orders(make_stock, make_order, 5)
    adapter = FakeAdapter(delay=0.1)
    machine = ProvisioningStateMachine(session_factory, adapter_factory=lambda p: adapter)

    results = await BulkProvisioner(machine, concurrency=3).bulk_provision(ids)

    assert [r.success for r in results] == [True] * 5
    assert len(adapter.created) == 5
    stock_ids = {(await load(Order, order_id)).ip_stock_id for order_id in ids}
    assert len(stock_ids) == 1


async def test_single_use_stock_goes_to_one_order(session_factory, make_stock, make_order, load):
    stock_id = await make_stock(name="203.0.113.7", single_use=True)
    ids = [await make_order(ip_stock_id=stock_id, hostname=f"vm{i}.example.com") for i in range(2)]
    adapter = FakeAdapter(delay=0.1)
    machine = ProvisioningStateMachine(session_factory, adapter_factory=lambda p: adapter)

    results = await BulkProvisioner(machine, concurrency=2).bulk_provision(ids)

    assert sorted(r.success for r in results) == [False, True]
    loser = next(r for r in results if not r.success)
    assert loser.error_code == ErrorCode.no_stock
    assert (await load(Order, loser.order_id)).provisioning_status == ProvisioningStatus.pending
    assert len(adapter.created) == 1


async def test_bulk_reports_unknown_ids(session_factory, fake_adapter):
    machine = ProvisioningStateMachine(session_factory, adapter_factory=lambda p: fake_adapter)
    results = await BulkProvisioner(machine).bulk_provision([123])
    assert results[0].error_code == ErrorCode.not_found


async def test_find_candidates_selects_paid_unprovisioned_orders(db, make_order):
    fresh = await make_order()
    failed = await make_order(provisioning_status=ProvisioningStatus.failed, auto_provisioned=True)
    await make_order(status=PaymentStatus.pending)
    await make_order(provisioning_status=ProvisioningStatus.provisioning)
    await make_order(provisioning_status=ProvisioningStatus.active, status=PaymentStatus.active, auto_provisioned=True)
    await make_order(provisioning_status=ProvisioningStatus.pending, auto_provisioned=True)

    rows = await find_candidates(db, limit=10)

    assert [o.id for o in rows] == [fresh, failed]


async def test_sweep_counts(db, session_factory, make_stock, make_order):
    await _orders(make_stock, make_order, 2)
    boom_stock = await make_stock(name="boom-stock")
    await make_order(ip_stock_id=boom_stock, hostname="boom.example.com")
    adapter = FakeAdapter()
    machine = ProvisioningStateMachine(session_factory, adapter_factory=lambda p: adapter)

    stats = await run_sweep(db, BulkProvisioner(machine, concurrency=2), limit=10)

    assert stats.as_dict() == {"scanned": 3, "affected": 3, "succeeded": 2, "failed": 1, "skipped": 0, "errors": 0}
