from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from vpshub.core.security import Principal
from vpshub.api.deps import get_adapter_factory, http_error, require_admin
from vpshub.models.order import ProviderName
from vpshub.services.adapters.base import ProviderError
from vpshub.schemas.providers import InstanceOut, ProviderStatusOut, TemplateOut, TestConnectionOut

router = APIRouter()


def _adapter(provider: str, adapter_factory):
    try:
        name = ProviderName(provider)
    except ValueError:
        raise HTTPException(status_code=404, detail="Unknown provider")
    try:
        return adapter_factory(name)
    except ProviderError as e:
        raise http_error(e)


@router.post("/{provider}/test-connection", response_model=TestConnectionOut)
async def test_connection(provider: str, admin: Principal = Depends(require_admin), adapter_factory=Depends(get_adapter_factory)):
    try:
        name = ProviderName(provider)
    except ValueError:
        raise HTTPException(status_code=404, detail="Unknown provider")
    try:
        adapter = adapter_factory(name)
    except ProviderError as e:
        # missing credentials are a failed check, not a server error
        return TestConnectionOut(ok=False, detail=e.message)
    result = await adapter.test_connection()
    return TestConnectionOut(ok=result.ok, detail=result.detail, meta=result.meta)


@router.get("/{provider}/services/{service_id}/status", response_model=ProviderStatusOut)
async def service_status(
    provider: str,
    service_id: str,
    admin: Principal = Depends(require_admin),
    adapter_factory=Depends(get_adapter_factory),
):
    adapter = _adapter(provider, adapter_factory)
    try:
        st = await adapter.status(service_id)
    except ProviderError as e:
        raise http_error(e)
    return ProviderStatusOut(service_id=st.service_id, state=st.state, ip_address=st.ip_address, os=st.os)


@router.get("/{provider}/templates", response_model=list[TemplateOut])
async def templates(
    provider: str,
    service_id: Optional[str] = Query(default=None),
    admin: Principal = Depends(require_admin),
    adapter_factory=Depends(get_adapter_factory),
):
    adapter = _adapter(provider, adapter_factory)
    try:
        rows = await adapter.list_templates(service_id)
    except ProviderError as e:
        raise http_error(e)
    return [TemplateOut(id=t.id, name=t.name) for t in rows]


@router.get("/{provider}/instances", response_model=list[InstanceOut])
async def instances(provider: str, admin: Principal = Depends(require_admin), adapter_factory=Depends(get_adapter_factory)):
    adapter = _adapter(provider, adapter_factory)
    try:
        rows = await adapter.list_owned_instances()
    except ProviderError as e:
        raise http_error(e)
    return [InstanceOut(service_id=i.service_id, ip_address=i.ip_address, state=i.state) for i in rows]
