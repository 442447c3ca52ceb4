from fastapi import APIRouter
from vpshub.api.v1.routes import (
    admin_orders,
    admin_providers,
    admin_resellers,
    payments,
    renewals,
    reseller_catalog,
    server_actions,
)

api_router = APIRouter()
api_router.include_router(admin_orders.router, prefix="/admin/orders", tags=["admin-orders"])
api_router.include_router(admin_resellers.router, prefix="/admin/resellers", tags=["admin-resellers"])
api_router.include_router(admin_providers.router, prefix="/admin/providers", tags=["admin-providers"])
api_router.include_router(server_actions.admin_router, prefix="/admin/server-actions", tags=["admin-server-actions"])
api_router.include_router(renewals.admin_router, prefix="/admin/renewals", tags=["admin-renewals"])

api_router.include_router(renewals.router, tags=["renewals"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
api_router.include_router(reseller_catalog.router, prefix="/reseller", tags=["reseller"])
api_router.include_router(server_actions.router, prefix="/server-actions", tags=["server-actions"])
