"""Provider registry."""

from typing import TYPE_CHECKING

from .base import BaseProvider
from .claude import ClaudeProvider

if TYPE_CHECKING:
    from relay_agent.config import Config


# Registered providers
PROVIDERS: dict[str, type[BaseProvider]] = {
    "claude": ClaudeProvider,
}


def get_provider(name: str, config: "Config") -> BaseProvider:
    """
    Create a provider instance by name.

    Args:
        name: Provider name (e.g. "claude")
        config: Config object passed to the provider

    Returns:
        BaseProvider: provider instance

    Raises:
        ValueError: unknown provider name
    """
    if name not in PROVIDERS:
        available = list(PROVIDERS.keys())
        raise ValueError(f"Unknown provider: {name}. Available: {available}")

    return PROVIDERS[name](config)  # type: ignore[call-arg]


def register_provider(name: str, provider_class: type[BaseProvider]) -> None:
    """Register a provider class under a name."""
    PROVIDERS[name] = provider_class


def list_providers() -> list[str]:
    """Names of all registered providers."""
    return list(PROVIDERS.keys())
