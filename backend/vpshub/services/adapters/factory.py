from __future__ import annotations

from vpshub.core.config import settings
from vpshub.models.order import ProviderName
from vpshub.services.adapters.base import ProviderAdapter
from vpshub.services.adapters.hostycare import HostycareAdapter
from vpshub.services.adapters.smartvps import SmartVPSAdapter
from vpshub.services.adapters.virtualizor import VirtualizorAdapter


def get_adapter(provider: ProviderName | str) -> ProviderAdapter:
    common = dict(
        verify_ssl=settings.PROVIDER_TLS_VERIFY,
        timeout=float(settings.HTTP_TIMEOUT_SECONDS),
        retry_attempts=settings.PROVIDER_RETRY_ATTEMPTS,
        retry_base_delay=settings.PROVIDER_RETRY_BASE_DELAY,
    )
    provider = ProviderName(provider)

    if provider == ProviderName.hostycare:
        return HostycareAdapter(settings.HOSTYCARE_ENDPOINT, settings.HOSTYCARE_USERNAME, settings.HOSTYCARE_API_KEY, **common)
    if provider == ProviderName.smartvps:
        return SmartVPSAdapter(settings.SMARTVPS_BASE_URL, settings.SMARTVPS_USERNAME, settings.SMARTVPS_PASSWORD, **common)
    if provider == ProviderName.virtualizor:
        return VirtualizorAdapter(
            settings.VIRTUALIZOR_ENDPOINT, settings.VIRTUALIZOR_API_KEY, settings.VIRTUALIZOR_API_PASSWORD, **common
        )

    raise ValueError(f"Unsupported provider: {provider}")
