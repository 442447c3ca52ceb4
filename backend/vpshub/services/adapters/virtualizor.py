from __future__ import annotations

import hashlib
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


def _first_ip(ips: Any) -> str | None:
    if isinstance(ips, dict):
        ips = list(ips.values())
    if isinstance(ips, list):
        for ip in ips:
            if isinstance(ip, dict):
                ip = ip.get("ip")
            if ip:
                return str(ip)
    if isinstance(ips, str) and ips:
        return ips
    return None


class VirtualizorAdapter:
    """Virtualizor admin API: form POST to ``?act=<action>`` signed with a sha1 hash."""

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        api_password: str,
        verify_ssl: bool = True,
        timeout: float = 25.0,
        retry_attempts: int = 3,
        retry_base_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        endpoint = (endpoint or "").rstrip("/")
        if endpoint.startswith("http://"):
            endpoint = "https://" + endpoint[len("http://"):]
        self.endpoint = endpoint
        self.api_key = api_key
        self.api_password = api_password
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self._transport = transport

        if not (self.endpoint and self.api_key and self.api_password):
            raise ProviderError("Virtualizor config must include endpoint, api key and api password")

    def api_hash(self, action: str, post: dict[str, Any]) -> str:
        s = f"{self.api_key}{action}"
        for key in sorted(post):
            s += f"{key}{post[key]}"
        s += self.api_password
        return hashlib.sha1(s.encode()).hexdigest()

    async def _request(self, action: str, params: dict[str, Any] | None = None, retry_timeouts: bool = True) -> dict[str, Any]:
        post: dict[str, Any] = {**(params or {}), "api": "json", "apikey": self.api_key, "apipass": self.api_password}
        post["hash"] = self.api_hash(action, post)
        url = f"{self.endpoint}/"

        async def send() -> httpx.Response:
            async with build_async_client(self.timeout, self.verify_ssl, self._transport) as client:
                return await client.post(url, params={"act": action}, data={k: str(v) for k, v in post.items()}, follow_redirects=True)

        r = await call_with_retry(
            send,
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            retry_timeouts=retry_timeouts,
            what=f"virtualizor {action}",
        )
        try:
            js = r.json()
        except ValueError:
            raise ProviderError(f"Invalid JSON response from Virtualizor {action}: {r.text[:200]}", r.status_code)
        if r.status_code >= 400 or (isinstance(js, dict) and js.get("error")):
            msg = js.get("error") or js.get("msg") if isinstance(js, dict) else None
            if isinstance(msg, (list, dict)):
                msg = "; ".join(str(m) for m in (msg.values() if isinstance(msg, dict) else msg))
            raise ProviderError(f"Virtualizor {action}: {msg or f'HTTP {r.status_code}'}", r.status_code)
        return js if isinstance(js, dict) else {}

    async def test_connection(self) -> TestConnectionResult:
        try:
            js = await self._request("ostemplates")
            return TestConnectionResult(ok=True, detail="ok", meta={"keys": sorted(js.keys())[:10]})
        except ProviderError as e:
            return TestConnectionResult(ok=False, detail=e.message)

    async def create(self, product_id: str, plan: PlanParams) -> CreatedServer:
        # product_id is the Virtualizor plan id; configurations may carry osid/server etc.
        params: dict[str, Any] = {
            "addvps": 1,
            "plid": product_id,
            "hostname": plan.hostname,
            "rootpass": plan.password,
        }
        params.update({k: v for k, v in (plan.configurations or {}).items() if v is not None})
        js = await self._request("addvs", params, retry_timeouts=False)
        info = js.get("vs_info") or {}
        vpsid = info.get("vpsid") or js.get("newvs")
        if not vpsid:
            raise ProviderError(f"Virtualizor addvs response missing vpsid: {str(js)[:300]}")
        return CreatedServer(
            provider_service_id=str(vpsid),
            ip_address=_first_ip(info.get("ips")),
            username=plan.username,
            password=plan.password,
            os=info.get("os_name") or plan.os,
        )

    async def status(self, service_id: str) -> ProviderStatus:
        js = await self._request("vpsmanage", {"vps": service_id})
        info = js.get("info") or {}
        vps = info.get("vps") or {}
        return ProviderStatus(
            service_id=str(service_id),
            state=normalize_state(info.get("status")),
            ip_address=_first_ip(info.get("ip")),
            os=vps.get("os_name"),
        )

    async def reinstall(self, service_id: str, template_id: str, password: str) -> None:
        await self._request("rebuild", {"vps": service_id, "newos": template_id, "newpass": password}, retry_timeouts=False)

    async def list_templates(self, service_id: str | None = None) -> list[Template]:
        js = await self._request("ostemplates")
        out: list[Template] = []
        # {"oslist": {"kvm": {"ubuntu": {"<osid>": {"name": ...}}}}}
        for per_virt in (js.get("oslist") or {}).values():
            for per_distro in (per_virt or {}).values():
                for osid, meta in (per_distro or {}).items():
                    name = meta.get("name") if isinstance(meta, dict) else str(meta)
                    out.append(Template(id=str(osid), name=str(name or osid)))
        return out

    async def list_owned_instances(self) -> list[OwnedInstance]:
        js = await self._request("listvs")
        out: list[OwnedInstance] = []
        for vpsid, vs in (js.get("vs") or {}).items():
            if not isinstance(vs, dict):
                continue
            out.append(
                OwnedInstance(
                    service_id=str(vs.get("vpsid") or vpsid),
                    ip_address=_first_ip(vs.get("ips")),
                    state=normalize_state(vs.get("status")),
                )
            )
        return out

    async def renew(self, service_id: str) -> None:
        raise ProviderError("Virtualizor instances have no billing renewal; extend locally")
