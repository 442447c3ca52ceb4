from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from vpshub.core.db import get_db
from vpshub.core.security import Principal
from vpshub.api.deps import http_error, require_admin, require_user
from vpshub.models.server_action import ServerActionRequest
from vpshub.services import server_actions
from vpshub.services.errors import OrchestratorError
from vpshub.schemas.server_actions import ServerActionCreate, ServerActionList, ServerActionOut, ServerActionProcess

router = APIRouter()
admin_router = APIRouter()


def _to_out(r: ServerActionRequest) -> ServerActionOut:
    return ServerActionOut(
        id=r.id,
        order_id=r.order_id,
        user_id=r.user_id,
        action=r.action.value,
        status=r.status.value,
        payload=r.payload or {},
        order_snapshot=r.order_snapshot or {},
        requested_at=r.requested_at,
        processed_by=r.processed_by,
        processed_at=r.processed_at,
        admin_notes=r.admin_notes,
    )


@router.post("", response_model=ServerActionOut)
async def request_action(
    payload: ServerActionCreate,
    db: AsyncSession = Depends(get_db),
    user: Principal = Depends(require_user),
):
    try:
        req = await server_actions.create_request(db, payload.order_id, user.numeric_id, payload.action, payload.payload)
    except OrchestratorError as e:
        raise http_error(e)
    return _to_out(req)


@router.get("", response_model=ServerActionList)
async def my_requests(
    order_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
    user: Principal = Depends(require_user),
):
    rows = await server_actions.list_for_order(db, order_id, user.numeric_id)
    return ServerActionList(items=[_to_out(r) for r in rows], total=len(rows))


@admin_router.get("/pending", response_model=ServerActionList)
async def pending(db: AsyncSession = Depends(get_db), admin: Principal = Depends(require_admin)):
    rows = await server_actions.list_pending(db)
    return ServerActionList(items=[_to_out(r) for r in rows], total=len(rows))


@admin_router.post("/{request_id}/process", response_model=ServerActionOut)
async def process(
    request_id: int,
    payload: ServerActionProcess,
    db: AsyncSession = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    try:
        req = await server_actions.process_request(db, request_id, payload.decision, admin.actor, payload.admin_notes)
    except OrchestratorError as e:
        raise http_error(e)
    return _to_out(req)
