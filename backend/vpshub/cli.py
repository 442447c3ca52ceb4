import argparse
import asyncio
import logging
from sqlalchemy import select
from vpshub.core.config import settings
from vpshub.core.db import AsyncSessionLocal
from vpshub.models.reseller import Reseller
from vpshub.services import maintenance, renewal, wallet
from vpshub.services.bulk import BulkProvisioner
from vpshub.services.provisioning import ProvisioningStateMachine

ACTOR = "cli"

async def provision(order_id: int):
    outcome = await ProvisioningStateMachine().provision_order(order_id, actor=ACTOR)
    if outcome.success:
        print(f"[PROVISION] order={order_id} ok service_id={outcome.provider_service_id} ip={outcome.ip_address}")
    else:
        code = outcome.error_code.value if outcome.error_code else "-"
        print(f"[PROVISION] order={order_id} FAILED code={code} error={outcome.error}")


async def bulk_provision(order_ids: list[int], concurrency: int | None):
    results = await BulkProvisioner(concurrency=concurrency).bulk_provision(order_ids, actor=ACTOR)
    for r in results:
        status = "ok" if r.success else f"FAILED code={r.error_code.value if r.error_code else '-'} error={r.error}"
        print(f"[BULK] order={r.order_id} {status}")
    ok = sum(1 for r in results if r.success)
    print(f"[BULK] total={len(results)} success={ok} failed={len(results) - ok}")


async def reset_stuck(threshold_minutes: int):
    report = await ProvisioningStateMachine().reset_stuck(threshold_minutes)
    print(f"[RESET-STUCK] threshold={report.threshold_minutes}m reset={report.reset} stale={report.stale}")


async def cleanup_expired(grace_days: int):
    async with AsyncSessionLocal() as db:
        deleted = await maintenance.cleanup_expired_orders(db, grace_days)
    print(f"[CLEANUP-EXPIRED] grace_days={grace_days} deleted={len(deleted)}")


async def recover_renewals(threshold_minutes: int):
    async with AsyncSessionLocal() as db:
        report = await renewal.recover_renewals(db, threshold_minutes)
    for txn in report.failed:
        print(f"[ERR] renewal={txn} could not be applied")
    print(
        f"[RECOVER-RENEWALS] threshold={report.threshold_minutes}m requeued={len(report.requeued)} "
        f"recovered={len(report.recovered)} failed={len(report.failed)} expired={len(report.expired)} "
        f"awaiting_payment={len(report.awaiting_payment)}"
    )


async def reconcile_wallets():
    """Check every reseller ledger and list charged-but-unrefunded failed orders."""
    mismatched = 0
    async with AsyncSessionLocal() as db:
        q = await db.execute(select(Reseller.id).order_by(Reseller.id.asc()))
        for (reseller_id,) in q.all():
            report = await wallet.reconcile(db, reseller_id)
            if not report.ok:
                mismatched += 1
                print(
                    f"[ERR] reseller_id={reseller_id} balance={report.balance} "
                    f"last_balance_after={report.last_balance_after} ledger_sum={report.ledger_sum}"
                )
        pending = await wallet.refund_reconciliation_report(db)
    for o in pending:
        print(f"[REFUND-MISSING] order={o.id} reseller_id={o.reseller_id} charged={o.charged_amount}")
    print(f"[WALLET-RECONCILE] mismatched={mismatched} refunds_missing={len(pending)}")


def main():
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    parser = argparse.ArgumentParser(prog="vpshub")
    sub = parser.add_subparsers(dest="cmd")

    p = sub.add_parser("provision")
    p.add_argument("order_id", type=int)

    b = sub.add_parser("bulk-provision")
    b.add_argument("order_ids", type=int, nargs="+")
    b.add_argument("--concurrency", type=int, default=None)

    r = sub.add_parser("reset-stuck")
    r.add_argument("--threshold-minutes", type=int, default=settings.STUCK_THRESHOLD_MINUTES)

    c = sub.add_parser("cleanup-expired")
    c.add_argument("--grace-days", type=int, default=settings.EXPIRED_GRACE_DAYS)

    rr = sub.add_parser("recover-renewals")
    rr.add_argument("--threshold-minutes", type=int, default=settings.RENEWAL_RECOVERY_THRESHOLD_MINUTES)

    sub.add_parser("reconcile-wallets")

    args = parser.parse_args()
    if args.cmd == "provision":
        asyncio.run(provision(args.order_id))
    elif args.cmd == "bulk-provision":
        asyncio.run(bulk_provision(args.order_ids, args.concurrency))
    elif args.cmd == "reset-stuck":
        asyncio.run(reset_stuck(args.threshold_minutes))
    elif args.cmd == "cleanup-expired":
        asyncio.run(cleanup_expired(args.grace_days))
    elif args.cmd == "recover-renewals":
        asyncio.run(recover_renewals(args.threshold_minutes))
    elif args.cmd == "reconcile-wallets":
        asyncio.run(reconcile_wallets())
    else:
        parser.print_help()

if __name__ == "__main__":
    main()
