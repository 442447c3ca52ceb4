from __future__ import annotations
import logging

from vpshub.core.celery_app import celery_app
from vpshub.core.config import settings
from vpshub.core.db import AsyncSessionLocal
from vpshub.services import renewal
from vpshub.services.locks import redis_lock
from vpshub.tasks.provisioning import _run

logger = logging.getLogger(__name__)


@celery_app.task(name="vpshub.tasks.renewals.recover_renewals")
def recover_renewals():
    with redis_lock("vpshub:lock:recover_renewals", ttl_seconds=max(300, int(settings.RECOVER_RENEWALS_SECONDS))) as ok:
        if not ok:
            return None
        report = _run(_recover_async())
        if report.requeued or report.recovered or report.failed:
            logger.warning(
                "renewal recovery requeued=%s recovered=%s failed=%s", report.requeued, report.recovered, report.failed
            )
        return {
            "requeued": len(report.requeued),
            "recovered": len(report.recovered),
            "failed": len(report.failed),
            "expired": len(report.expired),
            "awaiting_payment": len(report.awaiting_payment),
        }


async def _recover_async():
    async with AsyncSessionLocal() as db:
        return await renewal.recover_renewals(db, settings.RENEWAL_RECOVERY_THRESHOLD_MINUTES)
