from __future__ import annotations

import json
import re
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

_IPV4_RE = re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")

# changeos accepts only these identifiers
SMARTVPS_OS_TEMPLATES = ("2012", "2016", "2019", "2022", "11", "centos", "ubuntu")


def extract_ip(value: Any) -> str | None:
    text = value if isinstance(value, str) else json.dumps(value)
    m = _IPV4_RE.search(text or "")
    return m.group(0) if m else None


def extract_ram_gb(memory: str) -> str | None:
    """"8GB" -> "8", "4096 MB" -> "4" (ceil), otherwise the first number."""
    s = str(memory or "")
    m = re.search(r"(\d+)\s*gb", s, re.I)
    if m:
        return m.group(1)
    m = re.search(r"(\d+)\s*mb", s, re.I)
    if m:
        return str(max(1, -(-int(m.group(1)) // 1024)))
    m = re.search(r"(\d+)", s)
    return m.group(1) if m else None


def parse_payload(payload: Any) -> Any:
    """SmartVPS answers with JSON, JSON-in-a-string, or plain text."""
    if not isinstance(payload, str):
        return payload
    for candidate in (payload, payload.strip('"').replace('\\"', '"')):
        try:
            return json.loads(candidate)
        except ValueError:
            continue
    return payload


class SmartVPSAdapter:
    """SmartVPS reseller API (basic auth, JSON bodies). Instances are keyed by IP."""

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        verify_ssl: bool = True,
        timeout: float = 25.0,
        retry_attempts: int = 3,
        retry_base_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/") + "/"
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self._transport = transport

        if not (username and password):
            raise ProviderError("SmartVPS credentials must include username and password")
        self._auth = (username, password)

    async def _post(self, path: str, body: dict[str, Any] | None = None, retry_timeouts: bool = True) -> Any:
        url = f"{self.base_url}api/oceansmart/{path}"

        async def send() -> httpx.Response:
            async with build_async_client(self.timeout, self.verify_ssl, self._transport) as client:
                return await client.post(url, auth=self._auth, json=body, headers={"Accept": "application/json"})

        r = await call_with_retry(
            send,
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            retry_timeouts=retry_timeouts,
            what=f"smartvps {path}",
        )
        try:
            data: Any = r.json() if r.text else {}
        except ValueError:
            data = r.text
        if r.status_code >= 400:
            detail = data if isinstance(data, str) else (data.get("message") or data.get("error") if isinstance(data, dict) else None)
            raise ProviderError(f"SmartVPS {path} failed: {detail or f'HTTP {r.status_code}'}", r.status_code)
        return parse_payload(data)

    async def _status_obj(self, ip: str) -> dict[str, Any]:
        data = await self._post("status", {"ip": ip})
        return data if isinstance(data, dict) else {}

    async def test_connection(self) -> TestConnectionResult:
        try:
            data = await self._post("ipstock")
            return TestConnectionResult(ok=True, detail="ok", meta={"sample_ip": extract_ip(data)})
        except ProviderError as e:
            return TestConnectionResult(ok=False, detail=e.message)

    async def create(self, product_id: str, plan: PlanParams) -> CreatedServer:
        ram = extract_ram_gb(plan.memory)
        if not ram:
            raise ProviderError(f"Unable to parse RAM from memory {plan.memory!r}")

        stock = await self._post("ipstock")
        candidate = extract_ip(stock)
        if not candidate:
            raise ProviderError("No available IP found in SmartVPS ipstock")

        # e.g. "success|Congratulations ... Your ip is: 103.195.26.51"
        bought = await self._post("buyvps", {"ip": candidate, "ram": ram}, retry_timeouts=False)
        ip = extract_ip(bought) or candidate

        st = await self._status_obj(ip)
        # "Usernane" is how the API spells it
        username = st.get("Usernane") or st.get("Username") or plan.username
        password = st.get("Password") or plan.password
        return CreatedServer(
            provider_service_id=ip,
            ip_address=st.get("IP") or ip,
            username=str(username),
            password=str(password),
            os=st.get("OS") or plan.os,
        )

    async def status(self, service_id: str) -> ProviderStatus:
        st = await self._status_obj(service_id)
        return ProviderStatus(
            service_id=service_id,
            state=normalize_state(st.get("PowerStatus")),
            ip_address=st.get("IP") or service_id,
            os=st.get("OS"),
        )

    async def reinstall(self, service_id: str, template_id: str, password: str) -> None:
        # SmartVPS generates its own password on changeos
        if template_id not in SMARTVPS_OS_TEMPLATES:
            raise ProviderError(f"Unsupported SmartVPS OS template: {template_id}")
        await self._post("changeos", {"ip": service_id, "os": template_id}, retry_timeouts=False)

    async def list_templates(self, service_id: str | None = None) -> list[Template]:
        return [Template(id=t, name=t) for t in SMARTVPS_OS_TEMPLATES]

    async def list_owned_instances(self) -> list[OwnedInstance]:
        raise ProviderError("SmartVPS does not expose an instance listing")

    async def renew(self, service_id: str) -> None:
        await self._post("renewvps", {"ip": service_id}, retry_timeouts=False)
