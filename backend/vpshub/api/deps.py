from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from vpshub.core.security import Principal, Role, decode_access_token
from vpshub.services.adapters.factory import get_adapter
from vpshub.services.errors import ErrorCode, OrchestratorError
from vpshub.services.provisioning import ProvisioningStateMachine
from vpshub.tasks.provisioning import enqueue_provision

# tokens are issued by the storefront; this service only verifies them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


async def get_current_principal(token: str = Depends(oauth2_scheme)) -> Principal:
    try:
        return decode_access_token(token)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != Role.admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin only")
    return principal


async def require_reseller(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != Role.reseller or principal.numeric_id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Reseller only")
    return principal


async def require_user(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != Role.user or principal.numeric_id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Customer only")
    return principal


async def require_payment_service(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role not in (Role.service, Role.admin):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Payment service only")
    return principal


_STATUS_BY_CODE = {
    ErrorCode.not_found: status.HTTP_404_NOT_FOUND,
    ErrorCode.forbidden: status.HTTP_403_FORBIDDEN,
    ErrorCode.already_in_progress: status.HTTP_409_CONFLICT,
    ErrorCode.stale_stuck_state: status.HTTP_409_CONFLICT,
    ErrorCode.insufficient_funds: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.provider: status.HTTP_502_BAD_GATEWAY,
}


def http_error(e: OrchestratorError) -> HTTPException:
    return HTTPException(status_code=_STATUS_BY_CODE.get(e.code, status.HTTP_400_BAD_REQUEST), detail=e.message)


def get_adapter_factory():
    return get_adapter


def get_state_machine(adapter_factory=Depends(get_adapter_factory)) -> ProvisioningStateMachine:
    return ProvisioningStateMachine(adapter_factory=adapter_factory)


def get_provision_enqueuer():
    return enqueue_provision
