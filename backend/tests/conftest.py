import asyncio
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret")

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from vpshub.core.db import Base
from vpshub import models  # noqa: F401
from vpshub.models.common import utcnow
from vpshub.models.ip_stock import IPStock
from vpshub.models.order import Order, PaymentStatus, ProviderName, ProvisioningStatus
from vpshub.models.reseller import Reseller, ResellerStatus
from vpshub.services import wallet
from vpshub.services.adapters.base import (
    CreatedServer,
    OwnedInstance,
    ProviderError,
    ProviderStatus,
    Template,
    TestConnectionResult,
)


class FakeAdapter:
    """In-memory provider. Hostnames starting with "slow" hang, "boom" fail."""

    def __init__(self, delay: float = 0.0, error: Exception | None = None, on_create=None):
        self.delay = delay
        self.error = error
        self.on_create = on_create
        self.created = []
        self.renewed = []

    async def create(self, product_id, plan):
        self.created.append((product_id, plan))
        n = len(self.created)
        if self.on_create:
            await self.on_create()
        if self.delay:
            await asyncio.sleep(self.delay)
        if plan.hostname.startswith("slow"):
            await asyncio.sleep(5)
        if plan.hostname.startswith("boom"):
            raise ProviderError("upstream rejected the order")
        if self.error:
            raise self.error
        return CreatedServer(
            provider_service_id=f"svc-{n}",
            ip_address=f"10.0.0.{n}",
            username=plan.username,
            password=plan.password,
            os=plan.os,
        )

    async def renew(self, service_id):
        self.renewed.append(service_id)

    async def test_connection(self):
        return TestConnectionResult(ok=True, detail="ok")

    async def status(self, service_id):
        return ProviderStatus(service_id=service_id, state="running", ip_address="10.0.0.1")

    async def list_templates(self, service_id=None):
        return [Template(id="ubuntu", name="Ubuntu 22")]

    async def list_owned_instances(self):
        return [OwnedInstance(service_id="svc-1", ip_address="10.0.0.1", state="running")]


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'vpshub-test.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def fake_adapter():
    return FakeAdapter()


@pytest.fixture
def make_stock(session_factory):
    async def _make(name="Cloud 8", tiers=None, provider=ProviderName.hostycare, single_use=False, available=True, tags=None):
        tiers = tiers or {"8GB": {"price": 999, "provider_product_id": "91", "provider_product_name": "Cloud Server 8GB"}}
        async with session_factory() as s:
            stock = IPStock(
                name=name,
                provider=provider,
                memory_options=tiers,
                single_use=single_use,
                available=available,
                tags=tags or [],
            )
            s.add(stock)
            await s.commit()
            return stock.id
    return _make


@pytest.fixture
def make_reseller(session_factory):
    async def _make(balance=0, credit_limit=0, status=ResellerStatus.active, pricing=None, email="shop@example.com"):
        async with session_factory() as s:
            r = Reseller(
                business_name="Shop",
                email=email,
                status=status,
                balance=0,
                credit_limit=credit_limit,
                pricing=pricing or {},
            )
            s.add(r)
            await s.commit()
            if balance:
                # seed through the ledger so reconcile() holds
                await wallet.recharge(s, r.id, balance, "Opening balance")
            return r.id
    return _make


@pytest.fixture
def make_order(session_factory):
    async def _make(**kw):
        values = dict(
            user_id=7,
            product_name="Cloud Server",
            memory="8GB",
            price=999,
            status=PaymentStatus.confirmed,
            provisioning_status=ProvisioningStatus.pending,
        )
        values.update(kw)
        async with session_factory() as s:
            order = Order(**values)
            s.add(order)
            await s.commit()
            return order.id
    return _make


@pytest.fixture
def load(session_factory):
    async def _load(model, pk):
        async with session_factory() as s:
            return await s.get(model, pk)
    return _load


def minutes_ago(n: int):
    return utcnow() - timedelta(minutes=n)
