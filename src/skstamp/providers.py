"""Provider directory: the configured TSAs in the order they are attempted."""

from __future__ import annotations

from typing import Iterable

from .config import Provider


def order_providers(providers: Iterable[Provider]) -> list[Provider]:
    """Return providers in attempt order.

    Providers with a priority come first, ascending (lower number is tried
    earlier, ties keep their configured order). Providers without a
    priority follow in configured order. A priority of ``0`` counts as no
    priority.
    """
    prioritized: list[Provider] = []
    unprioritized: list[Provider] = []

    for provider in providers:
        if provider.priority:
            prioritized.append(provider)
        else:
            unprioritized.append(provider)

    return sorted(prioritized, key=lambda p: p.priority) + unprioritized


class ProviderDirectory:
    """Immutable set of providers for one service instance.

    Args:
        providers: Configured providers. Copied into a tuple; later edits
            to the caller's list have no effect.
    """

    def __init__(self, providers: Iterable[Provider]) -> None:
        self._providers = tuple(providers)

    def __len__(self) -> int:
        return len(self._providers)

    @property
    def providers(self) -> tuple[Provider, ...]:
        return self._providers

    def ordered(self) -> list[Provider]:
        """Return a freshly computed attempt order."""
        return order_providers(self._providers)
