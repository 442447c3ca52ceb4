from __future__ import annotations

import base64
import hashlib
import hmac
from datetime import datetime, timezone
from typing import Any

import httpx

from vpshub.services.adapters.base import (
    CreatedServer,
    OwnedInstance,
    PlanParams,
    ProviderError,
    ProviderStatus,
    Template,
    TestConnectionResult,
    call_with_retry,
    normalize_state,
)
from vpshub.services.http_client import build_async_client


def _dig(js: Any, *paths: str) -> Any:
    """First non-empty value among dotted paths ("data.service.id")."""
    for path in paths:
        cur = js
        for part in path.split("."):
            if not isinstance(cur, dict):
                cur = None
                break
            cur = cur.get(part)
        if cur not in (None, ""):
            return cur
    return None


def build_form_params(obj: Any, parent_key: str = "", out: list[tuple[str, str]] | None = None) -> list[tuple[str, str]]:
    """Serialize nested dicts/lists as PHP-style form keys: fields[key]=v, nsprefix[]=ns1."""
    if out is None:
        out = []
    items = obj.items() if isinstance(obj, dict) else []
    for key, value in items:
        full_key = f"{parent_key}[{key}]" if parent_key else str(key)
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            for v in value:
                if isinstance(v, dict):
                    build_form_params(v, f"{full_key}[]", out)
                else:
                    out.append((f"{full_key}[]", str(v)))
        elif isinstance(value, dict):
            build_form_params(value, full_key, out)
        else:
            out.append((full_key, str(value)))
    return out


class HostycareAdapter:
    """Hostycare ProductsReseller API.

    Auth: ``username`` header plus an hourly token,
    base64(hex(HMAC-SHA256(key="<username>:<yy-mm-dd HH>", msg=api_key))), UTC.
    """

    def __init__(
        self,
        endpoint: str,
        username: str,
        api_key: str,
        verify_ssl: bool = True,
        timeout: float = 25.0,
        retry_attempts: int = 3,
        retry_base_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.username = username
        self.api_key = api_key
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self._transport = transport

        if not (self.username and self.api_key):
            raise ProviderError("Hostycare credentials must include username and api key")

    def generate_token(self, now: datetime | None = None) -> str:
        now = now or datetime.now(timezone.utc)
        current_time = now.strftime("%y-%m-%d %H")
        key = f"{self.username}:{current_time}".encode()
        digest = hmac.new(key, self.api_key.encode(), hashlib.sha256).hexdigest()
        return base64.b64encode(digest.encode()).decode()

    def _headers(self) -> dict[str, str]:
        return {
            "username": self.username,
            "token": self.generate_token(),
            "Accept": "application/json",
        }

    async def _request(self, action: str, method: str = "GET", params: dict[str, Any] | None = None, retry_timeouts: bool = True) -> Any:
        url = f"{self.endpoint}{action}"

        async def send() -> httpx.Response:
            async with build_async_client(self.timeout, self.verify_ssl, self._transport) as client:
                if method == "POST":
                    return await client.post(url, headers=self._headers(), data=build_form_params(params or {}))
                return await client.get(url, headers=self._headers())

        r = await call_with_retry(
            send,
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            retry_timeouts=retry_timeouts,
            what=f"hostycare {method} {action}",
        )
        try:
            js = r.json()
        except ValueError:
            raise ProviderError(f"Hostycare invalid JSON ({r.status_code}) {action}: {r.text[:300]}", r.status_code)

        # Hostycare embeds errors in HTTP 200 bodies too
        if r.status_code >= 400 or (isinstance(js, dict) and (js.get("error") or js.get("success") is False)):
            msg = (js.get("error") or js.get("message")) if isinstance(js, dict) else None
            raise ProviderError(f"Hostycare {method} {action}: {msg or f'HTTP {r.status_code}'}", r.status_code)
        return js

    async def test_connection(self) -> TestConnectionResult:
        try:
            js = await self._request("/testConnection")
            return TestConnectionResult(ok=True, detail="ok", meta={"response": js})
        except ProviderError as e:
            return TestConnectionResult(ok=False, detail=e.message)

    async def create(self, product_id: str, plan: PlanParams) -> CreatedServer:
        body: dict[str, Any] = {
            "cycle": plan.cycle or "monthly",
            "hostname": plan.hostname,
            "username": plan.username,
            "password": plan.password,
        }
        if plan.fields:
            body["fields"] = plan.fields
        if plan.configurations:
            body["configurations"] = plan.configurations

        js = await self._request(f"/order/products/{product_id}", "POST", body, retry_timeouts=False)
        service_id = _dig(js, "data.service.id", "service.id", "id")
        if not service_id:
            raise ProviderError(f"Hostycare create response missing service id: {str(js)[:300]}")
        # IP is often assigned later; status() picks it up
        ip = _dig(js, "data.service.dedicatedip", "data.service.dedicatedIp", "service.dedicatedip", "dedicatedip")
        return CreatedServer(
            provider_service_id=str(service_id),
            ip_address=str(ip) if ip else None,
            username=plan.username,
            password=plan.password,
            os=plan.os,
        )

    async def status(self, service_id: str) -> ProviderStatus:
        js = await self._request(f"/services/{service_id}")
        ip = _dig(js, "data.service.dedicatedip", "service.dedicatedip", "dedicatedip", "ipAddress")
        raw = _dig(js, "data.service.status", "service.status", "status")
        return ProviderStatus(service_id=str(service_id), state=normalize_state(raw), ip_address=str(ip) if ip else None)

    async def reinstall(self, service_id: str, template_id: str, password: str) -> None:
        body: dict[str, Any] = {"password": password}
        if template_id:
            body["template"] = template_id
        await self._request(f"/services/{service_id}/reinstall", "POST", body, retry_timeouts=False)

    async def list_templates(self, service_id: str | None = None) -> list[Template]:
        if not service_id:
            raise ProviderError("Hostycare templates are listed per service; service_id is required")
        js = await self._request(f"/services/{service_id}/reinstall")
        raw = _dig(js, "data.templates", "templates", "data") or []
        out: list[Template] = []
        if isinstance(raw, dict):
            raw = [{"id": k, "name": v} for k, v in raw.items()]
        for it in raw if isinstance(raw, list) else []:
            if isinstance(it, dict) and it.get("id") is not None:
                out.append(Template(id=str(it["id"]), name=str(it.get("name") or it["id"])))
        return out

    async def list_owned_instances(self) -> list[OwnedInstance]:
        js = await self._request("/services")
        raw = _dig(js, "data.services", "services", "data") or []
        out: list[OwnedInstance] = []
        for it in raw if isinstance(raw, list) else []:
            if not isinstance(it, dict) or it.get("id") is None:
                continue
            ip = it.get("dedicatedip") or it.get("dedicatedIp")
            out.append(OwnedInstance(service_id=str(it["id"]), ip_address=str(ip) if ip else None, state=normalize_state(it.get("status"))))
        return out

    async def renew(self, service_id: str) -> None:
        await self._request(f"/services/{service_id}/renew", "POST", retry_timeouts=False)
