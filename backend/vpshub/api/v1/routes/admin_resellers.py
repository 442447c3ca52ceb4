from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from vpshub.core.db import get_db
from vpshub.core.security import Principal
from vpshub.api.deps import http_error, require_admin
from vpshub.services import wallet
from vpshub.services.errors import OrchestratorError
from vpshub.schemas.wallet import (
    RechargeRequest,
    RefundReport,
    RefundReportItem,
    WalletOpResult,
    WalletOut,
    WalletTransactionOut,
)

router = APIRouter()


@router.get("/wallet/refund-report", response_model=RefundReport)
async def refund_report(db: AsyncSession = Depends(get_db), admin: Principal = Depends(require_admin)):
    rows = await wallet.refund_reconciliation_report(db)
    items = [
        RefundReportItem(
            order_id=o.id,
            reseller_id=o.reseller_id,
            charged_amount=o.charged_amount,
            wallet_debit_txn_id=o.wallet_debit_txn_id,
            provisioning_error=o.provisioning_error,
            updated_at=o.updated_at,
        )
        for o in rows
    ]
    return RefundReport(items=items, total=len(items))


@router.post("/{reseller_id}/wallet/recharge", response_model=WalletOpResult)
async def recharge_wallet(
    reseller_id: int,
    payload: RechargeRequest,
    db: AsyncSession = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    try:
        result = await wallet.recharge(
            db, reseller_id, payload.amount, payload.description, source="admin_panel", meta={"by": admin.actor}
        )
    except OrchestratorError as e:
        raise http_error(e)
    return WalletOpResult(ok=True, transaction_id=result.transaction_id, new_balance=result.new_balance)


@router.get("/{reseller_id}/wallet", response_model=WalletOut)
async def get_wallet(
    reseller_id: int,
    db: AsyncSession = Depends(get_db),
    admin: Principal = Depends(require_admin),
    limit: int = Query(100, ge=1, le=1000),
):
    try:
        details = await wallet.wallet_details(db, reseller_id, limit=limit)
        check = await wallet.reconcile(db, reseller_id)
    except OrchestratorError as e:
        raise http_error(e)
    return WalletOut(
        reseller_id=details.reseller_id,
        business_name=details.business_name,
        balance=details.balance,
        currency=details.currency,
        credit_limit=details.credit_limit,
        min_balance=details.min_balance,
        stats=details.stats,
        reconciled=check.ok,
        transactions=[
            WalletTransactionOut(
                id=t.id,
                type=t.type.value,
                amount=t.amount,
                balance_after=t.balance_after,
                description=t.description,
                source=t.source,
                order_id=t.order_id,
                occurred_at=t.occurred_at,
            )
            for t in details.transactions
        ],
    )
