"""Build provider adapters from settings."""

from sandcoder.clients.transport import AnthropicTransport, HttpTransport, Transport
from sandcoder.config import ProviderSettings
from sandcoder.providers.anthropic import AnthropicAdapter
from sandcoder.providers.base import ProviderAdapter
from sandcoder.providers.openai import DEFAULT_BASE_URLS, OpenAICompatibleAdapter

OPENROUTER_HEADERS = {"HTTP-Referer": "https://github.com/sandcoder/sandcoder", "X-Title": "sandcoder"}


def create_transport(settings: ProviderSettings) -> Transport:
    """Create the transport matching ``settings.name``."""
    api_key = settings.api_key.get_secret_value() if settings.api_key else None

    if settings.name == "anthropic":
        return AnthropicTransport(api_key, base_url=settings.base_url)

    if settings.name != "ollama" and not api_key:
        raise ValueError(f"An API key is required for provider '{settings.name}'")

    headers = OPENROUTER_HEADERS if settings.name == "openrouter" else None
    return HttpTransport(
        settings.name,
        settings.base_url or DEFAULT_BASE_URLS[settings.name],
        api_key=api_key,
        headers=headers,
    )


def create_adapter(settings: ProviderSettings, transport: Transport | None = None) -> ProviderAdapter:
    """Create an adapter for ``settings``, building its transport unless one is given."""
    transport = transport or create_transport(settings)
    if settings.name == "anthropic":
        return AnthropicAdapter(settings, transport)
    return OpenAICompatibleAdapter(settings, transport)


def create_adapter_chain(
    primary: ProviderSettings, fallbacks: list[ProviderSettings] | None = None
) -> list[ProviderAdapter]:
    """Primary adapter followed by the fallback providers, in order."""
    return [create_adapter(settings) for settings in [primary, *(fallbacks or [])]]
