import pytest

from vpshub.models.order import Order, ProviderName
from vpshub.models.server_action import ServerActionStatus
from vpshub.services import server_actions
from vpshub.services.errors import Forbidden, NotFound, ValidationError


async def test_request_and_approve(db, make_order, load):
    order_id = await make_order(ip_address="1.2.3.4", os="Ubuntu 22")

    req = await server_actions.create_request(db, order_id, 7, "restart", {"reason": "hung"})

    assert req.status == ServerActionStatus.pending
    assert req.order_snapshot["ip_address"] == "1.2.3.4"
    assert [r.id for r in await server_actions.list_pending(db)] == [req.id]

    done = await server_actions.process_request(db, req.id, "approve", "admin:1", "rebooted")

    assert done.status == ServerActionStatus.approved
    assert done.processed_by == "admin:1"
    assert done.admin_notes == "rebooted"
    order = await load(Order, order_id)
    assert order.last_action == "restart"
    assert order.last_action_time is not None
    assert await server_actions.list_pending(db) == []


async def test_second_decision_is_rejected(db, make_order):
    order_id = await make_order()
    req = await server_actions.create_request(db, order_id, 7, "stop")
    await server_actions.process_request(db, req.id, "reject", "admin:1")

    with pytest.raises(ValidationError, match="already rejected"):
        await server_actions.process_request(db, req.id, "approve", "admin:1")


async def test_one_pending_request_per_action(db, make_order):
    order_id = await make_order()
    await server_actions.create_request(db, order_id, 7, "format")

    with pytest.raises(ValidationError, match="already exists"):
        await server_actions.create_request(db, order_id, 7, "format")
    other = await server_actions.create_request(db, order_id, 7, "start")
    assert other.status == ServerActionStatus.pending


async def test_request_validation(db, make_order):
    order_id = await make_order()
    direct = await make_order(provider=ProviderName.hostycare, provider_service_id="svc-1")

    with pytest.raises(ValidationError, match="Invalid action"):
        await server_actions.create_request(db, order_id, 7, "explode")
    with pytest.raises(NotFound):
        await server_actions.create_request(db, 999, 7, "start")
    with pytest.raises(Forbidden):
        await server_actions.create_request(db, order_id, 8, "start")
    with pytest.raises(ValidationError, match="direct server actions"):
        await server_actions.create_request(db, direct, 7, "start")


async def test_invalid_decision(db, make_order):
    order_id = await make_order()
    req = await server_actions.create_request(db, order_id, 7, "stop")
    with pytest.raises(ValidationError):
        await server_actions.process_request(db, req.id, "maybe", "admin:1")
    with pytest.raises(NotFound):
        await server_actions.process_request(db, 999, "approve", "admin:1")
