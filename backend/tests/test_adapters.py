import base64
import hashlib
import hmac
import json
from datetime import datetime, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from vpshub.services.adapters.base import PlanParams, ProviderError, call_with_retry, normalize_state
from vpshub.services.adapters.hostycare import HostycareAdapter, build_form_params
from vpshub.services.adapters.smartvps import SmartVPSAdapter, extract_ip, extract_ram_gb, parse_payload
from vpshub.services.adapters.virtualizor import VirtualizorAdapter

HC_ENDPOINT = "https://hc.example.com/api/index.php"


def plan(**kw):
    values = dict(hostname="cloud-8gb-abc123.com", username="root", password="Pw#12345abcd", memory="8GB", os="Ubuntu 22")
    values.update(kw)
    return PlanParams(**values)


def hostycare(handler):
    return HostycareAdapter(HC_ENDPOINT, "reseller", "secret-key", retry_base_delay=0, transport=httpx.MockTransport(handler))


def test_hostycare_token_is_hourly_hmac():
    adapter = HostycareAdapter(HC_ENDPOINT, "reseller", "secret-key")
    at = datetime(2026, 3, 4, 15, 30, tzinfo=timezone.utc)

    token = adapter.generate_token(at)

    digest = hmac.new(b"reseller:26-03-04 15", b"secret-key", hashlib.sha256).hexdigest()
    assert token == base64.b64encode(digest.encode()).decode()
    assert adapter.generate_token(at.replace(minute=59)) == token
    assert adapter.generate_token(at.replace(hour=16)) != token


def test_hostycare_requires_credentials():
    with pytest.raises(ProviderError):
        HostycareAdapter(HC_ENDPOINT, "", "key")


def test_form_params_use_bracket_keys():
    params = build_form_params({"cycle": "monthly", "fields": {"os": "ubuntu"}, "ns": ["ns1", "ns2"], "skip": None})
    assert params == [("cycle", "monthly"), ("fields[os]", "ubuntu"), ("ns[]", "ns1"), ("ns[]", "ns2")]


async def test_hostycare_create():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["headers"] = request.headers
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, json={"success": True, "data": {"service": {"id": 555, "dedicatedip": "1.2.3.4"}}})

    created = await hostycare(handler).create("91", plan(configurations={"location": "IN"}))

    assert seen["path"] == "/api/index.php/order/products/91"
    assert seen["headers"]["username"] == "reseller"
    assert seen["headers"]["token"]
    assert seen["form"]["hostname"] == ["cloud-8gb-abc123.com"]
    assert seen["form"]["configurations[location]"] == ["IN"]
    assert created.provider_service_id == "555"
    assert created.ip_address == "1.2.3.4"
    assert created.password == "Pw#12345abcd"


async def test_hostycare_error_in_200_body():
    def handler(request):
        return httpx.Response(200, json={"error": "Product out of stock"})

    with pytest.raises(ProviderError, match="Product out of stock"):
        await hostycare(handler).create("91", plan())


async def test_hostycare_retries_connect_errors_but_not_create_timeouts():
    calls = {"status": 0, "create": 0}

    def handler(request):
        if request.method == "GET":
            calls["status"] += 1
            if calls["status"] < 3:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json={"data": {"service": {"status": "Active", "dedicatedip": "9.9.9.9"}}})
        calls["create"] += 1
        raise httpx.ReadTimeout("slow", request=request)

    adapter = hostycare(handler)
    status = await adapter.status("555")
    assert calls["status"] == 3
    assert status.state == "running"
    assert status.ip_address == "9.9.9.9"

    with pytest.raises(ProviderError, match="timed out"):
        await adapter.create("91", plan())
    assert calls["create"] == 1


async def test_call_with_retry_gives_up():
    attempts = []

    async def fn():
        attempts.append(1)
        raise httpx.ConnectError("down")

    with pytest.raises(ProviderError, match="after 2 attempts"):
        await call_with_retry(fn, attempts=2, base_delay=0)
    assert len(attempts) == 2


def test_normalize_state():
    assert normalize_state("Online") == "running"
    assert normalize_state("poweroff") == "stopped"
    assert normalize_state(None) == "unknown"


def test_smartvps_parsers():
    assert extract_ram_gb("8GB") == "8"
    assert extract_ram_gb("4096 MB") == "4"
    assert extract_ram_gb("1500mb") == "2"
    assert extract_ram_gb("plan") is None
    assert extract_ip("success|Your ip is: 103.195.26.51") == "103.195.26.51"
    assert extract_ip({"ips": ["10.1.1.1"]}) == "10.1.1.1"
    assert parse_payload('{"IP": "1.1.1.1"}') == {"IP": "1.1.1.1"}
    assert parse_payload("plain text") == "plain text"


async def test_smartvps_create_reads_vendor_spelling():
    bodies = {}

    def handler(request: httpx.Request) -> httpx.Response:
        action = request.url.path.rsplit("/", 1)[-1]
        bodies[action] = json.loads(request.content or b"null")
        assert request.headers["authorization"].startswith("Basic ")
        if action == "ipstock":
            return httpx.Response(200, json={"ips": ["103.195.26.51"]})
        if action == "buyvps":
            return httpx.Response(200, text="success|Congratulations Your ip is: 103.195.26.51")
        if action == "status":
            return httpx.Response(
                200,
                json={"IP": "103.195.26.51", "Usernane": "Administrator", "Password": "Vendor#1", "OS": "2022", "PowerStatus": "Running"},
            )
        return httpx.Response(404)

    adapter = SmartVPSAdapter("https://smartvps.example.com", "u", "p", retry_base_delay=0, transport=httpx.MockTransport(handler))
    created = await adapter.create("", plan(memory="8GB"))

    assert bodies["buyvps"] == {"ip": "103.195.26.51", "ram": "8"}
    assert created.provider_service_id == "103.195.26.51"
    assert created.username == "Administrator"
    assert created.password == "Vendor#1"
    assert created.os == "2022"


async def test_smartvps_http_error():
    adapter = SmartVPSAdapter(
        "https://smartvps.example.com", "u", "p", retry_base_delay=0,
        transport=httpx.MockTransport(lambda r: httpx.Response(500, json={"message": "maintenance"})),
    )
    with pytest.raises(ProviderError, match="maintenance"):
        await adapter.renew("103.195.26.51")
    with pytest.raises(ProviderError):
        await adapter.reinstall("103.195.26.51", "windows95", "x")


def test_virtualizor_hash_and_https_upgrade():
    adapter = VirtualizorAdapter("http://panel.example.com:4085", "k", "p")
    assert adapter.endpoint == "https://panel.example.com:4085"
    assert adapter.api_hash("addvs", {"b": 2, "a": 1}) == hashlib.sha1(b"kaddvsa1b2p").hexdigest()


async def test_virtualizor_addvs():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["act"] = request.url.params["act"]
        seen["form"] = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        return httpx.Response(200, json={"done": 1, "vs_info": {"vpsid": 77, "ips": ["5.6.7.8"]}})

    adapter = VirtualizorAdapter("https://panel.example.com:4085", "k", "p", retry_base_delay=0, transport=httpx.MockTransport(handler))
    created = await adapter.create("3", plan(configurations={"osid": 100}))

    assert seen["act"] == "addvs"
    assert seen["form"]["plid"] == "3"
    assert seen["form"]["osid"] == "100"
    assert seen["form"]["rootpass"] == "Pw#12345abcd"
    expected = dict(seen["form"])
    sent_hash = expected.pop("hash")
    assert sent_hash == adapter.api_hash("addvs", expected)
    assert created.provider_service_id == "77"
    assert created.ip_address == "5.6.7.8"


async def test_virtualizor_renew_is_unsupported():
    adapter = VirtualizorAdapter("https://panel.example.com", "k", "p")
    with pytest.raises(ProviderError):
        await adapter.renew("77")
