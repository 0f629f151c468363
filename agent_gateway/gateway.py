"""
Provider gateway: maps a logical client type to a provider factory.

The factory is the provider class itself; `factory(api_key=..., base_url=...)`
returns a provider, and `provider(model_id)` returns a `ChatModel` handle.
"""

from __future__ import annotations

from typing import Callable, Dict, Type, Union

from .models import ClientType
from .providers import (
    AnthropicProvider,
    BaseProvider,
    GatewayProvider,
    GoogleProvider,
    OpenAIProvider,
    StubProvider,
)

ProviderFactory = Type[BaseProvider]

# Signature of `resolve`, used by the HTTP layer as an injectable dependency.
Resolver = Callable[[Union[ClientType, str]], ProviderFactory]

_CLIENTS: Dict[str, ProviderFactory] = {
    ClientType.OPENAI.value: OpenAIProvider,
    ClientType.ANTHROPIC.value: AnthropicProvider,
    ClientType.GOOGLE.value: GoogleProvider,
}

FALLBACK_FACTORY: ProviderFactory = GatewayProvider


def resolve(client_type: Union[ClientType, str]) -> ProviderFactory:
    """
    Return the provider factory for `client_type`.

    Unrecognized identifiers fall back to the generic gateway; this never raises.
    """
    key = client_type.value if isinstance(client_type, ClientType) else str(client_type)
    return _CLIENTS.get(key.strip().lower(), FALLBACK_FACTORY)


create_chat_gateway = resolve


def resolve_stub(client_type: Union[ClientType, str]) -> ProviderFactory:
    """Resolver that routes every client type to the offline stub provider."""
    return StubProvider
