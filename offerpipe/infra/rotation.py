"""Proxy rotation strategies."""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from typing import Sequence

from ..config.models import RotationStrategyName
from ..models import ProxyConfig


class RotationStrategy(ABC):
    """Pick the next proxy from the currently active list."""

    name: str = "base"

    @abstractmethod
    def select(self, proxies: Sequence[ProxyConfig]) -> ProxyConfig | None:
        """Return one proxy or ``None`` when the list is empty."""

    def on_success(self, proxy: ProxyConfig) -> None:
        return None

    def on_failure(self, proxy: ProxyConfig) -> None:
        return None


class RoundRobinStrategy(RotationStrategy):
    name = RotationStrategyName.ROUND_ROBIN.value

    def __init__(self) -> None:
        self._index = -1

    def select(self, proxies: Sequence[ProxyConfig]) -> ProxyConfig | None:
        if not proxies:
            return None
        self._index = (self._index + 1) % len(proxies)
        return proxies[self._index]


class RandomStrategy(RotationStrategy):
    name = RotationStrategyName.RANDOM.value

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def select(self, proxies: Sequence[ProxyConfig]) -> ProxyConfig | None:
        if not proxies:
            return None
        return self._rng.choice(list(proxies))


class WeightedStrategy(RotationStrategy):
    """Weighted random choice; weights move with reported outcomes."""

    name = RotationStrategyName.WEIGHTED.value

    def __init__(
        self,
        default_weight: float = 1.0,
        min_weight: float = 0.1,
        max_weight: float = 10.0,
        success_boost: float = 0.1,
        failure_penalty: float = 0.2,
        rng: random.Random | None = None,
    ) -> None:
        self.default_weight = default_weight
        self.min_weight = min_weight
        self.max_weight = max_weight
        self.success_boost = success_boost
        self.failure_penalty = failure_penalty
        self._rng = rng or random.Random()
        self._weights: dict[str, float] = {}

    def weight_of(self, proxy: ProxyConfig) -> float:
        return self._weights.get(proxy.proxy_id, self.default_weight)

    def _adjust(self, proxy: ProxyConfig, delta: float) -> None:
        weight = self.weight_of(proxy) + delta
        self._weights[proxy.proxy_id] = min(self.max_weight, max(self.min_weight, weight))

    def on_success(self, proxy: ProxyConfig) -> None:
        self._adjust(proxy, self.success_boost)

    def on_failure(self, proxy: ProxyConfig) -> None:
        self._adjust(proxy, -self.failure_penalty)

    def select(self, proxies: Sequence[ProxyConfig]) -> ProxyConfig | None:
        if not proxies:
            return None
        weights = [self.weight_of(proxy) for proxy in proxies]
        point = self._rng.uniform(0, sum(weights))
        cumulative = 0.0
        for proxy, weight in zip(proxies, weights):
            cumulative += weight
            if point <= cumulative:
                return proxy
        return proxies[-1]


def build_strategy(
    name: RotationStrategyName | str,
    rng: random.Random | None = None,
    **options: float,
) -> RotationStrategy:
    strategy = RotationStrategyName(name)
    if strategy is RotationStrategyName.ROUND_ROBIN:
        return RoundRobinStrategy()
    if strategy is RotationStrategyName.RANDOM:
        return RandomStrategy(rng=rng)
    if strategy is RotationStrategyName.WEIGHTED:
        return WeightedStrategy(rng=rng, **options)
    raise ValueError(f"Unknown rotation strategy: {name}")


__all__ = [
    "RandomStrategy",
    "RotationStrategy",
    "RoundRobinStrategy",
    "WeightedStrategy",
    "build_strategy",
]
