from __future__ import annotations
import asyncio
import logging

from vpshub.core.celery_app import celery_app
from vpshub.core.config import settings
from vpshub.core.db import AsyncSessionLocal, engine
from vpshub.services import maintenance
from vpshub.services.bulk import BulkProvisioner, run_sweep
from vpshub.services.locks import redis_lock
from vpshub.services.provisioning import ProvisioningStateMachine

logger = logging.getLogger(__name__)


def _run(coro):
    async def runner():
        try:
            return await coro
        finally:
            # pooled connections are bound to this loop
            await engine.dispose()
    return asyncio.run(runner())


@celery_app.task(name="vpshub.tasks.provisioning.provision_order")
def provision_order(order_id: int, actor: str = "celery"):
    outcome = _run(ProvisioningStateMachine().provision_order(int(order_id), actor=actor))
    return {"order_id": outcome.order_id, "success": outcome.success, "error_code": outcome.error_code.value if outcome.error_code else None}


def enqueue_provision(order_id: int) -> None:
    provision_order.delay(order_id, "payment")


@celery_app.task(name="vpshub.tasks.provisioning.auto_provision_sweep")
def auto_provision_sweep():
    lock_ttl = max(120, int(settings.AUTO_PROVISION_SECONDS) * 2)
    with redis_lock("vpshub:lock:auto_provision_sweep", ttl_seconds=lock_ttl) as ok:
        if not ok:
            return None
        stats = _run(_auto_provision_async())
        logger.info("auto provision sweep %s", stats.as_dict())
        return stats.as_dict()


@celery_app.task(name="vpshub.tasks.provisioning.reset_stuck_orders")
def reset_stuck_orders():
    with redis_lock("vpshub:lock:reset_stuck_orders", ttl_seconds=max(120, int(settings.RESET_STUCK_SECONDS))) as ok:
        if not ok:
            return None
        report = _run(ProvisioningStateMachine().reset_stuck(settings.STUCK_THRESHOLD_MINUTES))
        return {"reset": report.reset, "stale": report.stale}


@celery_app.task(name="vpshub.tasks.provisioning.cleanup_expired_orders")
def cleanup_expired_orders():
    with redis_lock("vpshub:lock:cleanup_expired_orders", ttl_seconds=max(300, int(settings.CLEANUP_EXPIRED_SECONDS))) as ok:
        if not ok:
            return None
        deleted = _run(_cleanup_async())
        return {"deleted": len(deleted)}


# internal

async def _auto_provision_async():
    async with AsyncSessionLocal() as db:
        return await run_sweep(db, BulkProvisioner(), limit=settings.AUTO_PROVISION_BATCH_SIZE)


async def _cleanup_async():
    async with AsyncSessionLocal() as db:
        return await maintenance.cleanup_expired_orders(db, settings.EXPIRED_GRACE_DAYS)
