from enum import Enum

import httpx

from app.config import Settings
from app.errors import ConfigurationError
from app.receipt.base import BaseReceiptProvider, ProviderConfig, ReceiptProvider
from app.receipt.openrouter_provider import OpenRouterOcrProvider
from app.receipt.veryfi_provider import VeryfiOcrProvider


class ProviderType(str, Enum):
    OPENROUTER = "openrouter"  # generic vision LLM
    VERYFI = "veryfi"  # dedicated receipt vendor


PROVIDERS: dict[ProviderType, type[BaseReceiptProvider]] = {
    ProviderType.OPENROUTER: OpenRouterOcrProvider,
    ProviderType.VERYFI: VeryfiOcrProvider,
}


def parse_provider_type(token: str | ProviderType | None) -> ProviderType:
    if isinstance(token, ProviderType):
        return token
    try:
        return ProviderType((token or "").strip().lower())
    except ValueError:
        available = ", ".join(available_providers())
        raise ConfigurationError(f"Unknown OCR provider '{token}'. Available: {available}") from None


def create_provider(
    provider_type: str | ProviderType,
    config: ProviderConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ReceiptProvider:
    """Build exactly one provider; its config is validated before it is returned."""
    provider_class = PROVIDERS[parse_provider_type(provider_type)]
    return provider_class(config, transport=transport)


def available_providers() -> list[str]:
    return [p.value for p in ProviderType]


def provider_from_settings(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ReceiptProvider:
    """Return the configured receipt extraction provider."""
    return create_provider(settings.ocr_provider, settings.provider_config(), transport=transport)
