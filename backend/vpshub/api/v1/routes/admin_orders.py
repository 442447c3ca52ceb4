from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from vpshub.core.db import get_db
from vpshub.core.security import Principal
from vpshub.api.deps import get_state_machine, require_admin
from vpshub.models.order import Order
from vpshub.services import maintenance
from vpshub.services.bulk import BulkProvisioner, find_candidates
from vpshub.services.credentials import mask_secret
from vpshub.services.errors import ErrorCode
from vpshub.services.provisioning import ProvisioningStateMachine, ProvisionOutcome
from vpshub.schemas.orders import (
    BulkItemOut,
    BulkProvisionRequest,
    BulkProvisionResult,
    CleanupExpiredRequest,
    CleanupExpiredResult,
    OrderList,
    OrderOut,
    ProvisionResult,
    ResetStuckRequest,
    ResetStuckResult,
)

router = APIRouter()


def order_out(o: Order) -> OrderOut:
    return OrderOut(
        id=o.id,
        user_id=o.user_id,
        reseller_id=o.reseller_id,
        product_name=o.product_name,
        memory=o.memory,
        price=o.price,
        status=o.status.value,
        provisioning_status=o.provisioning_status.value,
        auto_provisioned=bool(o.auto_provisioned),
        provisioning_error=o.provisioning_error,
        provider=o.provider.value if o.provider else None,
        provider_service_id=o.provider_service_id,
        ip_address=o.ip_address,
        username=o.username,
        password=mask_secret(o.password) if o.password else None,
        expiry_date=o.expiry_date,
        created_at=o.created_at,
    )


def _provision_out(outcome: ProvisionOutcome) -> ProvisionResult:
    return ProvisionResult(
        order_id=outcome.order_id,
        success=outcome.success,
        provisioning_status=outcome.provisioning_status.value if outcome.provisioning_status else None,
        error=outcome.error,
        error_code=outcome.error_code.value if outcome.error_code else None,
        provider_service_id=outcome.provider_service_id,
        ip_address=outcome.ip_address,
        duration_ms=outcome.duration_ms,
    )


@router.post("/{order_id}/provision", response_model=ProvisionResult)
async def provision_order(
    order_id: int,
    admin: Principal = Depends(require_admin),
    machine: ProvisioningStateMachine = Depends(get_state_machine),
):
    outcome = await machine.provision_order(order_id, actor=admin.actor)
    if not outcome.success and outcome.error_code == ErrorCode.not_found:
        raise HTTPException(status_code=404, detail=outcome.error)
    return _provision_out(outcome)


@router.post("/bulk-provision", response_model=BulkProvisionResult)
async def bulk_provision(
    payload: BulkProvisionRequest,
    admin: Principal = Depends(require_admin),
    machine: ProvisioningStateMachine = Depends(get_state_machine),
):
    results = await BulkProvisioner(machine).bulk_provision(payload.order_ids, actor=admin.actor)
    ok = sum(1 for r in results if r.success)
    return BulkProvisionResult(
        total=len(results),
        succeeded=ok,
        failed=len(results) - ok,
        results=[
            BulkItemOut(order_id=r.order_id, success=r.success, error=r.error, error_code=r.error_code.value if r.error_code else None)
            for r in results
        ],
    )


@router.get("/provision-candidates", response_model=OrderList)
async def provision_candidates(
    db: AsyncSession = Depends(get_db),
    admin: Principal = Depends(require_admin),
    limit: int = Query(50, ge=1, le=500),
):
    rows = await find_candidates(db, limit)
    return OrderList(items=[order_out(o) for o in rows], total=len(rows))


@router.post("/reset-stuck", response_model=ResetStuckResult)
async def reset_stuck(
    payload: ResetStuckRequest,
    admin: Principal = Depends(require_admin),
    machine: ProvisioningStateMachine = Depends(get_state_machine),
):
    report = await machine.reset_stuck(payload.threshold_minutes)
    return ResetStuckResult(threshold_minutes=report.threshold_minutes, reset=report.reset, stale=report.stale)


@router.post("/cleanup-expired", response_model=CleanupExpiredResult)
async def cleanup_expired(
    payload: CleanupExpiredRequest,
    db: AsyncSession = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    snapshots = await maintenance.cleanup_expired_orders(db, payload.grace_days)
    return CleanupExpiredResult(deleted=len(snapshots), orders=snapshots)
