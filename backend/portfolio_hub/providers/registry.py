"""Dispatch table from provider name to adapter instance."""

from __future__ import annotations

from typing import Iterable, Iterator

from portfolio_hub.config import AppSettings
from portfolio_hub.core.errors import ValidationError
from portfolio_hub.models.connection import ProviderName

from .base import ProviderAdapter
from .binance import BinanceAdapter
from .cryptocom import CryptoComAdapter
from .degiro import DegiroAdapter
from .http import ResilientFetcher
from .trading212 import Trading212Adapter


class ProviderRegistry:
    def __init__(self, adapters: Iterable[ProviderAdapter]) -> None:
        self._adapters: dict[ProviderName, ProviderAdapter] = {}
        for adapter in adapters:
            if adapter.provider in self._adapters:
                raise ValueError(f"Duplicate adapter for {adapter.provider.value}")
            self._adapters[adapter.provider] = adapter

    def get(self, provider: ProviderName | str) -> ProviderAdapter:
        try:
            return self._adapters[ProviderName(provider)]
        except (KeyError, ValueError) as exc:
            raise ValidationError(f"Unsupported provider: {provider}") from exc

    def __contains__(self, provider: object) -> bool:
        try:
            return ProviderName(provider) in self._adapters  # type: ignore[arg-type]
        except ValueError:
            return False

    def __iter__(self) -> Iterator[ProviderAdapter]:
        return iter(self._adapters.values())

    @property
    def providers(self) -> list[ProviderName]:
        return list(self._adapters)


def build_registry(fetcher: ResilientFetcher, settings: AppSettings | None = None) -> ProviderRegistry:
    return ProviderRegistry(
        [
            DegiroAdapter(fetcher, settings),
            Trading212Adapter(fetcher, settings),
            BinanceAdapter(fetcher, settings),
            CryptoComAdapter(fetcher, settings),
        ]
    )


__all__ = ["ProviderRegistry", "build_registry"]
