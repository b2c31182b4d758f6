"""Live proxy pool with pluggable rotation and periodic validation."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from ..engine.contracts import ProxyProvider
from ..errors import ProxyProviderFailure
from ..logging_conf import configure_logging
from ..models import ProxyConfig, ProxyStats, ValidationResult, utcnow
from ..scheduler import APSchedulerAdapter
from .rotation import RotationStrategy

VALIDATION_JOB_ID = "proxy::validation"
DEFAULT_VALIDATION_INTERVAL = 300.0


@dataclass(slots=True)
class ProxyEvent:
    kind: str
    source: str
    provider: str | None = None
    proxy_id: str | None = None
    error: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class PoolStats:
    total_proxies: int
    active_proxies: int
    providers: list[str]
    success_rate: float
    total_requests: int
    failed_requests: int
    last_updated: datetime | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_proxies": self.total_proxies,
            "active_proxies": self.active_proxies,
            "providers": list(self.providers),
            "success_rate": self.success_rate,
            "total_requests": self.total_requests,
            "failed_requests": self.failed_requests,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


Listener = Callable[[ProxyEvent], None]


class ProxyManager:
    """Own the proxy map, hand out proxies and keep their health current.

    Background work never raises: provider and validation failures are
    logged and published to subscribers as ``ProxyEvent``s.
    """

    def __init__(
        self,
        strategy: RotationStrategy,
        scheduler: APSchedulerAdapter | None = None,
        validation_interval: float = DEFAULT_VALIDATION_INTERVAL,
    ) -> None:
        self.strategy = strategy
        self.validation_interval = validation_interval
        self._scheduler = scheduler
        self._owns_scheduler = scheduler is None
        self._providers: dict[str, ProxyProvider] = {}
        self._proxies: dict[str, ProxyConfig] = {}
        self._stats: dict[str, ProxyStats] = {}
        self._listeners: list[Listener] = []
        self._running = False
        self.last_updated: datetime | None = None
        self.logger = configure_logging().bind(component="proxy_manager")

    # ------------------------------------------------------------------
    # Registration & events
    # ------------------------------------------------------------------
    def register_provider(self, name: str, provider: ProxyProvider) -> None:
        self._providers[name] = provider
        self.logger.info("proxy_provider_registered", provider=name)

    @property
    def providers(self) -> list[str]:
        return list(self._providers)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, event: ProxyEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("proxy_listener_failed", kind=event.kind, error=str(exc))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def initialize(self) -> None:
        await self.refresh()
        await self.validate_all()
        if self._scheduler is None:
            self._scheduler = APSchedulerAdapter()
        self._scheduler.schedule_interval(
            VALIDATION_JOB_ID, self.validate_all, self.validation_interval
        )
        self._scheduler.start()
        self._running = True
        self.logger.info(
            "proxy_manager_initialized",
            total=len(self._proxies),
            active=len(self.active_proxies()),
            interval_seconds=self.validation_interval,
        )

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._scheduler is not None:
            self._scheduler.remove(VALIDATION_JOB_ID)
            if self._owns_scheduler:
                self._scheduler.shutdown()
        self._emit(ProxyEvent(kind="stopped", source="stop"))
        self.logger.info("proxy_manager_stopped")

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Pool maintenance
    # ------------------------------------------------------------------
    async def _fetch(self, name: str, provider: ProxyProvider) -> list[ProxyConfig] | None:
        try:
            return list(await provider.fetch_proxies())
        except Exception as exc:  # noqa: BLE001
            failure = ProxyProviderFailure(name, str(exc))
            self.logger.warning("proxy_provider_failed", provider=name, error=str(exc))
            self._emit(
                ProxyEvent(
                    kind="error",
                    source="refresh",
                    provider=name,
                    error=str(exc),
                    payload={"code": failure.code},
                )
            )
            return None

    async def refresh(self) -> None:
        """Re-fetch every provider and rebuild the pool.

        Known proxies keep their state. Proxies of a provider whose fetch
        failed are retained until that provider answers again.
        """

        names = list(self._providers)
        fetched = await asyncio.gather(
            *(self._fetch(name, self._providers[name]) for name in names)
        )
        rebuilt: dict[str, ProxyConfig] = {}
        for name, proxies in zip(names, fetched):
            if proxies is None:
                for proxy_id, proxy in self._proxies.items():
                    if proxy.provider_name == name:
                        rebuilt[proxy_id] = proxy
                continue
            for proxy in proxies:
                existing = self._proxies.get(proxy.proxy_id)
                if existing is not None:
                    rebuilt[proxy.proxy_id] = existing
                    continue
                proxy.provider_name = name
                proxy.is_active = True
                proxy.health_score = 100.0
                rebuilt[proxy.proxy_id] = proxy
        self._proxies = rebuilt
        self._stats = {
            proxy_id: self._stats.get(proxy_id, ProxyStats()) for proxy_id in rebuilt
        }
        self.last_updated = utcnow()
        self._emit(
            ProxyEvent(kind="pool_updated", source="refresh", payload={"total": len(rebuilt)})
        )
        self.logger.info("proxy_pool_refreshed", total=len(rebuilt), providers=names)

    async def validate_proxy(self, proxy: ProxyConfig) -> ValidationResult | None:
        provider = self._providers.get(proxy.provider_name)
        if provider is None:
            self._emit(
                ProxyEvent(
                    kind="error",
                    source="validation",
                    provider=proxy.provider_name,
                    proxy_id=proxy.proxy_id,
                    error="provider not registered",
                )
            )
            return None
        try:
            result = await provider.validate_proxy(proxy)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning(
                "proxy_validation_failed", proxy=proxy.proxy_id, provider=proxy.provider_name, error=str(exc)
            )
            self._emit(
                ProxyEvent(
                    kind="error",
                    source="validation",
                    provider=proxy.provider_name,
                    proxy_id=proxy.proxy_id,
                    error=str(exc),
                )
            )
            proxy.is_active = False
            proxy.last_checked = utcnow()
            self._stats.setdefault(proxy.proxy_id, ProxyStats()).record(False, now=proxy.last_checked)
            return None

        proxy.is_active = result.is_valid
        proxy.last_checked = result.timestamp
        stats = self._stats.setdefault(proxy.proxy_id, ProxyStats())
        stats.record(result.is_valid, result.latency_ms, now=result.timestamp)
        proxy.health_score = round(stats.success_rate, 2)
        self._emit(
            ProxyEvent(
                kind="validated",
                source="validation",
                provider=proxy.provider_name,
                proxy_id=proxy.proxy_id,
                payload={"is_valid": result.is_valid, "latency_ms": result.latency_ms},
            )
        )
        return result

    async def validate_all(self) -> None:
        proxies = list(self._proxies.values())
        await asyncio.gather(*(self.validate_proxy(proxy) for proxy in proxies))
        self.last_updated = utcnow()
        self.logger.info(
            "proxy_validation_pass",
            total=len(proxies),
            active=len(self.active_proxies()),
        )

    # ------------------------------------------------------------------
    # Selection & feedback
    # ------------------------------------------------------------------
    def active_proxies(self) -> list[ProxyConfig]:
        return [proxy for proxy in self._proxies.values() if proxy.is_active]

    def all_proxies(self) -> list[ProxyConfig]:
        return list(self._proxies.values())

    def get_next_proxy(self) -> ProxyConfig | None:
        return self.strategy.select(self.active_proxies())

    def report_result(self, proxy: ProxyConfig, success: bool, latency_ms: float | None = None) -> None:
        stats = self._stats.setdefault(proxy.proxy_id, ProxyStats())
        stats.record(success, latency_ms)
        if success:
            self.strategy.on_success(proxy)
        else:
            self.strategy.on_failure(proxy)

    def stats_for(self, proxy_id: str) -> ProxyStats | None:
        return self._stats.get(proxy_id)

    def get_stats(self) -> PoolStats:
        total_requests = sum(stats.total_requests for stats in self._stats.values())
        failed_requests = sum(stats.failed_requests for stats in self._stats.values())
        success_rate = 0.0
        if total_requests:
            success_rate = round((total_requests - failed_requests) / total_requests * 100, 2)
        return PoolStats(
            total_proxies=len(self._proxies),
            active_proxies=len(self.active_proxies()),
            providers=list(self._providers),
            success_rate=success_rate,
            total_requests=total_requests,
            failed_requests=failed_requests,
            last_updated=self.last_updated,
        )


__all__ = ["PoolStats", "ProxyEvent", "ProxyManager", "VALIDATION_JOB_ID"]
