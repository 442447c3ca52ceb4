from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from vpshub.core.db import get_db
from vpshub.core.security import Principal
from vpshub.api.deps import get_provision_enqueuer, http_error, require_payment_service
from vpshub.services.errors import OrchestratorError
from vpshub.services.payments import PaymentSignal, confirm_payment
from vpshub.schemas.orders import PaymentConfirmRequest, PaymentConfirmResult

router = APIRouter()


@router.post("/confirm", response_model=PaymentConfirmResult)
async def payment_confirm(
    payload: PaymentConfirmRequest,
    db: AsyncSession = Depends(get_db),
    service: Principal = Depends(require_payment_service),
    enqueue=Depends(get_provision_enqueuer),
):
    signal = PaymentSignal(order_ref=payload.order_ref, verified=payload.verified, gateway_reference=payload.gateway_reference)
    try:
        outcome = await confirm_payment(db, signal, on_confirmed=enqueue)
    except OrchestratorError as e:
        raise http_error(e)
    return PaymentConfirmResult(
        order_id=outcome.order_id,
        status=outcome.status.value,
        changed=outcome.changed,
        provisioning_enqueued=outcome.provisioning_enqueued,
    )
