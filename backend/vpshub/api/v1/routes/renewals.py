from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from vpshub.core.db import get_db
from vpshub.core.security import Principal
from vpshub.api.deps import get_adapter_factory, http_error, require_admin, require_payment_service, require_user
from vpshub.models.renewal import ProcessedVia
from vpshub.services import renewal
from vpshub.services.errors import OrchestratorError
from vpshub.schemas.renewal import (
    RenewalConfirmRequest,
    RenewalConfirmResult,
    RenewalIntentOut,
    RenewalRecoverRequest,
    RenewalRecoveryOut,
)

router = APIRouter()
admin_router = APIRouter()


@router.post("/orders/{order_id}/renewal", response_model=RenewalIntentOut)
async def initiate_renewal(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    user: Principal = Depends(require_user),
):
    try:
        intent = await renewal.initiate_renewal(db, order_id, requested_by=user.actor, user_id=user.numeric_id)
    except OrchestratorError as e:
        raise http_error(e)
    return RenewalIntentOut(
        renewal_txn_id=intent.renewal_txn_id,
        order_id=intent.order_id,
        amount=intent.amount,
        currency=intent.currency,
        status=intent.status.value,
    )


@router.post("/payments/renewal-confirm", response_model=RenewalConfirmResult)
async def confirm_renewal(
    payload: RenewalConfirmRequest,
    db: AsyncSession = Depends(get_db),
    service: Principal = Depends(require_payment_service),
    adapter_factory=Depends(get_adapter_factory),
):
    result = renewal.GatewayResult(verified=payload.verified, gateway_reference=payload.gateway_reference, amount=payload.amount)
    try:
        outcome = await renewal.confirm_renewal(
            db, payload.renewal_txn_id, result, ProcessedVia(payload.processed_via), adapter_factory=adapter_factory
        )
    except OrchestratorError as e:
        raise http_error(e)
    return RenewalConfirmResult(
        renewal_txn_id=outcome.renewal_txn_id,
        order_id=outcome.order_id,
        success=outcome.success,
        duplicate=outcome.duplicate,
        new_expiry_date=outcome.new_expiry_date,
        error=outcome.error,
        error_code=outcome.error_code.value if outcome.error_code else None,
        provider_result=outcome.provider_result,
    )


@admin_router.post("/recover", response_model=RenewalRecoveryOut)
async def recover_renewals(
    payload: RenewalRecoverRequest,
    db: AsyncSession = Depends(get_db),
    admin: Principal = Depends(require_admin),
    adapter_factory=Depends(get_adapter_factory),
):
    report = await renewal.recover_renewals(db, payload.threshold_minutes, adapter_factory=adapter_factory)
    return RenewalRecoveryOut(
        threshold_minutes=report.threshold_minutes,
        requeued=report.requeued,
        recovered=report.recovered,
        failed=report.failed,
        expired=report.expired,
        awaiting_payment=report.awaiting_payment,
    )
