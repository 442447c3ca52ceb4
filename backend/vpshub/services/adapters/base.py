from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol, TypeVar

import httpx

from vpshub.services.errors import ErrorCode, OrchestratorError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderError(OrchestratorError):
    """Upstream provider failure (network/auth/vendor response)."""

    code = ErrorCode.provider

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class TestConnectionResult:
    ok: bool
    detail: str
    meta: dict[str, Any] | None = None


@dataclass
class PlanParams:
    hostname: str
    username: str
    password: str
    memory: str
    os: str
    cycle: str = "monthly"
    fields: dict[str, Any] = field(default_factory=dict)
    configurations: dict[str, Any] = field(default_factory=dict)


@dataclass
class CreatedServer:
    provider_service_id: str
    ip_address: str | None
    username: str
    password: str
    os: str | None = None


@dataclass
class ProviderStatus:
    service_id: str
    state: str  # running | stopped | suspended | provisioning | unknown
    ip_address: str | None = None
    os: str | None = None


@dataclass
class Template:
    id: str
    name: str


@dataclass
class OwnedInstance:
    service_id: str
    ip_address: str | None
    state: str


class ProviderAdapter(Protocol):
    async def test_connection(self) -> TestConnectionResult: ...

    async def create(self, product_id: str, plan: PlanParams) -> CreatedServer: ...

    async def status(self, service_id: str) -> ProviderStatus: ...

    async def reinstall(self, service_id: str, template_id: str, password: str) -> None: ...

    async def list_templates(self, service_id: str | None = None) -> list[Template]: ...

    async def list_owned_instances(self) -> list[OwnedInstance]: ...

    async def renew(self, service_id: str) -> None: ...


def normalize_state(raw: Any) -> str:
    s = str(raw or "").strip().lower()
    if s in {"running", "online", "active", "on", "1", "started"}:
        return "running"
    if s in {"stopped", "offline", "off", "0", "shutdown", "poweroff"}:
        return "stopped"
    if s in {"suspended", "locked"}:
        return "suspended"
    if s in {"pending", "provisioning", "installing", "building"}:
        return "provisioning"
    return "unknown"


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    retry_timeouts: bool = True,
    what: str = "request",
) -> T:
    """Retry transport failures with exponential backoff.

    ConnectError/ConnectTimeout never reached the vendor and are always retried.
    Read/write timeouts are retried only when ``retry_timeouts`` is set
    (never for create calls). HTTP error responses are not retried.
    """
    attempts = max(1, int(attempts))
    for attempt in range(attempts):
        try:
            return await fn()
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            err: Exception = e
        except httpx.TimeoutException as e:
            if not retry_timeouts:
                raise ProviderError(f"{what} timed out: {e.__class__.__name__}") from e
            err = e
        except httpx.TransportError as e:
            raise ProviderError(f"{what} transport error: {e.__class__.__name__}: {e}") from e

        if attempt + 1 >= attempts:
            raise ProviderError(f"{what} failed after {attempts} attempts: {err.__class__.__name__}") from err
        delay = base_delay * (2 ** attempt)
        logger.warning("provider %s retry attempt=%s delay=%.1fs err=%s", what, attempt + 1, delay, err.__class__.__name__)
        await asyncio.sleep(delay)

    raise ProviderError(f"{what} failed")  # pragma: no cover
