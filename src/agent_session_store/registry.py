"""Provider registry and cross-agent listing."""

import asyncio

from loguru import logger

from .adapters import (
    ClaudeCodeAdapter,
    CodexAdapter,
    FactoryDroidAdapter,
    GeminiAdapter,
    OpenCodeAdapter,
)
from .adapters.base import SessionProvider, SessionRecord
from .remote import RemoteHost, RemoteShell


class ProviderRegistry:
    """Maps agent ids to their storage providers."""

    def __init__(self) -> None:
        self._providers: dict[str, SessionProvider] = {}

    def register(self, provider: SessionProvider) -> None:
        if provider.agent_id in self._providers:
            logger.debug(f"Replacing provider for {provider.agent_id}")
        self._providers[provider.agent_id] = provider

    def get(self, agent_id: str) -> SessionProvider | None:
        return self._providers.get(agent_id)

    def has(self, agent_id: str) -> bool:
        return agent_id in self._providers

    def all(self) -> list[SessionProvider]:
        return list(self._providers.values())

    def agent_ids(self) -> list[str]:
        return list(self._providers)

    def clear(self) -> None:
        self._providers.clear()


def create_default_registry(shell: RemoteShell | None = None) -> ProviderRegistry:
    """Registry with every supported agent at its default location."""
    registry = ProviderRegistry()
    for provider in (
        ClaudeCodeAdapter(shell=shell),
        CodexAdapter(shell=shell),
        GeminiAdapter(shell=shell),
        OpenCodeAdapter(shell=shell),
        FactoryDroidAdapter(shell=shell),
    ):
        registry.register(provider)
    return registry


_default_registry: ProviderRegistry | None = None


def default_registry() -> ProviderRegistry:
    global _default_registry
    if _default_registry is None:
        _default_registry = create_default_registry()
    return _default_registry


def get_provider(agent_id: str) -> SessionProvider | None:
    return default_registry().get(agent_id)


async def list_all_sessions(
    project_path: str,
    remote: RemoteHost | None = None,
    registry: ProviderRegistry | None = None,
) -> dict[str, list[SessionRecord]]:
    """List a project's sessions for every agent concurrently.

    A provider that fails is logged and reported with no sessions.
    """
    providers = (registry or default_registry()).all()
    results = await asyncio.gather(
        *(p.list_sessions(project_path, remote) for p in providers),
        return_exceptions=True,
    )

    by_agent: dict[str, list[SessionRecord]] = {}
    for provider, result in zip(providers, results):
        if isinstance(result, Exception):
            logger.bind(agent=provider.agent_id).error(f"Listing sessions failed: {result}")
            by_agent[provider.agent_id] = []
        else:
            by_agent[provider.agent_id] = result
    return by_agent
