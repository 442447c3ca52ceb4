from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from vpshub.core.config import settings
from vpshub.models.order import PROVISIONABLE_PAYMENT_STATUSES, Order, ProvisioningStatus
from vpshub.services.errors import ErrorCode, short_err
from vpshub.services.provisioning import ProvisioningStateMachine
from vpshub.services.task_metrics import TaskRunStats

logger = logging.getLogger(__name__)


@dataclass
class BulkItemResult:
    order_id: int
    success: bool
    error: str | None = None
    error_code: ErrorCode | None = None


class BulkProvisioner:
    def __init__(self, machine: ProvisioningStateMachine | None = None, concurrency: int | None = None):
        self.machine = machine or ProvisioningStateMachine()
        self.concurrency = max(1, int(concurrency or settings.BULK_PROVISION_CONCURRENCY))

    async def bulk_provision(self, order_ids: list[int], actor: str = "system") -> list[BulkItemResult]:
        """Provision each id, at most ``concurrency`` at a time.

        One result per input id, in input order. A failing item never stops
        the others.
        """
        sem = asyncio.Semaphore(self.concurrency)

        async def one(order_id: int) -> BulkItemResult:
            async with sem:
                try:
                    outcome = await self.machine.provision_order(order_id, actor=actor)
                except Exception as e:
                    logger.exception("bulk item crashed order_id=%s", order_id)
                    return BulkItemResult(order_id=order_id, success=False, error=short_err(e), error_code=ErrorCode.internal)
            return BulkItemResult(order_id=order_id, success=outcome.success, error=outcome.error, error_code=outcome.error_code)

        results = list(await asyncio.gather(*(one(int(i)) for i in order_ids)))
        ok = sum(1 for r in results if r.success)
        logger.info("bulk provision done actor=%s total=%s success=%s failed=%s", actor, len(results), ok, len(results) - ok)
        return results


async def find_candidates(db: AsyncSession, limit: int | None = None) -> list[Order]:
    """Paid orders never auto-provisioned (or failed), oldest first."""
    limit = int(limit or settings.AUTO_PROVISION_BATCH_SIZE)
    q = await db.execute(
        select(Order)
        .where(
            Order.status.in_(PROVISIONABLE_PAYMENT_STATUSES),
            or_(Order.auto_provisioned == False, Order.provisioning_status == ProvisioningStatus.failed),
            Order.provisioning_status != ProvisioningStatus.provisioning,
            Order.provisioning_status != ProvisioningStatus.active,
        )
        .order_by(Order.created_at.asc(), Order.id.asc())
        .limit(limit)
    )
    return list(q.scalars().all())


async def run_sweep(db: AsyncSession, provisioner: BulkProvisioner | None = None, limit: int | None = None) -> TaskRunStats:
    stats = TaskRunStats()
    candidates = await find_candidates(db, limit)
    stats.scanned = len(candidates)
    if not candidates:
        return stats

    provisioner = provisioner or BulkProvisioner()
    results = await provisioner.bulk_provision([o.id for o in candidates], actor="auto-provision")
    for r in results:
        if r.success:
            stats.succeeded += 1
        elif r.error_code == ErrorCode.already_in_progress:
            stats.skipped += 1
        else:
            stats.failed += 1
    stats.affected = stats.succeeded + stats.failed
    return stats
