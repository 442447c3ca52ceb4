from __future__ import annotations
from celery import Celery
from celery.signals import worker_ready
import logging
from vpshub.core.config import settings

logger = logging.getLogger(__name__)

celery_app = Celery(
    "vpshub",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["vpshub.tasks.provisioning", "vpshub.tasks.renewals"],
)

celery_app.conf.timezone = "UTC"
# a provisioning attempt must not be replayed by a redelivery
celery_app.conf.task_acks_late = False

auto_every = max(60, min(3600, int(settings.AUTO_PROVISION_SECONDS or 300)))
stuck_every = max(60, min(3600, int(settings.RESET_STUCK_SECONDS or 300)))
cleanup_every = max(300, min(86400, int(settings.CLEANUP_EXPIRED_SECONDS or 3600)))
recover_every = max(300, min(86400, int(settings.RECOVER_RENEWALS_SECONDS or 900)))

celery_app.conf.beat_schedule = {
    "auto_provision_every_interval": {
        "task": "vpshub.tasks.provisioning.auto_provision_sweep",
        "schedule": float(auto_every),
    },
    "reset_stuck_every_interval": {
        "task": "vpshub.tasks.provisioning.reset_stuck_orders",
        "schedule": float(stuck_every),
    },
    "recover_renewals_every_interval": {
        "task": "vpshub.tasks.renewals.recover_renewals",
        "schedule": float(recover_every),
    },
    "cleanup_expired_every_interval": {
        "task": "vpshub.tasks.provisioning.cleanup_expired_orders",
        "schedule": float(cleanup_every),
    },
}


@worker_ready.connect
def _kickoff_recovery(sender=None, **kwargs):
    # orders left in provisioning by a dead worker
    app = getattr(sender, "app", celery_app)
    try:
        app.send_task("vpshub.tasks.provisioning.reset_stuck_orders")
    except Exception as e:
        logger.warning("celery startup task dispatch failed err=%s", str(e)[:220])
