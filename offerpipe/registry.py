"""Backend registry and factory for components declared in configuration."""

from __future__ import annotations

import importlib
from typing import Any, Iterator

from .config.models import ComponentSpec, OrchestratorSettings
from .engine.contracts import ElementResolver, ExtractionBackend, ProxyProvider, ResolvingBackend
from .errors import ConfigurationError
from .infra.providers import HttpListProxyProvider, StaticProxyProvider

BUILTIN_PROVIDERS: dict[str, type] = {
    "static": StaticProxyProvider,
    "http-list": HttpListProxyProvider,
}


class BackendRegistry:
    """Ordered name -> backend mapping used by the orchestrator."""

    def __init__(self, settings: OrchestratorSettings | None = None) -> None:
        self._backends: dict[str, ExtractionBackend] = {}
        self.settings = settings or OrchestratorSettings()

    def register(self, name: str, backend: ExtractionBackend) -> None:
        self._backends[name] = backend

    def get(self, name: str) -> ExtractionBackend:
        try:
            return self._backends[name]
        except KeyError:
            allowed = ", ".join(self._backends) or "<none>"
            raise ConfigurationError(f"Unknown backend '{name}'. Registered: {allowed}.") from None

    def names(self) -> list[str]:
        return list(self._backends)

    def items(self) -> Iterator[tuple[str, ExtractionBackend]]:
        return iter(list(self._backends.items()))

    def __len__(self) -> int:
        return len(self._backends)

    def primary(self) -> tuple[str, ExtractionBackend]:
        if self.settings.primary_backend:
            return self.settings.primary_backend, self.get(self.settings.primary_backend)
        if not self._backends:
            raise ConfigurationError("No extraction backend registered")
        name = next(iter(self._backends))
        return name, self._backends[name]

    def fallback(self) -> tuple[str, ExtractionBackend] | None:
        if self.settings.fallback_backend:
            return self.settings.fallback_backend, self.get(self.settings.fallback_backend)
        primary_name, _ = self.primary()
        for name, backend in self._backends.items():
            if name != primary_name:
                return name, backend
        return None

    def login_backend(self) -> tuple[str, ExtractionBackend]:
        if self.settings.login_backend:
            return self.settings.login_backend, self.get(self.settings.login_backend)
        return self.primary()


class ComponentRegistry:
    """Instantiate backends and proxy providers from ``ComponentSpec`` entries."""

    def __init__(self, provider_aliases: dict[str, type] | None = None) -> None:
        self._provider_aliases = dict(BUILTIN_PROVIDERS)
        if provider_aliases:
            self._provider_aliases.update(provider_aliases)

    @staticmethod
    def _load_dynamic_class(path: str) -> type:
        if ":" not in path:
            raise ConfigurationError(f"Invalid import path '{path}'. Use 'module.path:ClassName'.")
        module_path, class_name = path.split(":", 1)
        try:
            module = importlib.import_module(module_path)
        except ImportError as exc:
            raise ConfigurationError(f"Unable to import module '{module_path}': {exc}") from exc
        loaded = getattr(module, class_name, None)
        if loaded is None or not isinstance(loaded, type):
            raise ConfigurationError(f"Unable to resolve class '{path}'.")
        return loaded

    def build_backend(self, spec: ComponentSpec) -> ExtractionBackend:
        instance: Any = self._load_dynamic_class(spec.import_path)(**spec.options)
        if isinstance(instance, ExtractionBackend):
            return instance
        if isinstance(instance, ElementResolver):
            return ResolvingBackend(instance)
        raise ConfigurationError(
            f"Backend '{spec.name}' ({spec.import_path}) implements neither login/extract nor resolve"
        )

    def build_provider(self, spec: ComponentSpec) -> ProxyProvider:
        cls = self._provider_aliases.get(spec.import_path)
        if cls is None:
            cls = self._load_dynamic_class(spec.import_path)
        instance = cls(**spec.options)
        if not isinstance(instance, ProxyProvider):
            raise ConfigurationError(
                f"Proxy provider '{spec.name}' ({spec.import_path}) lacks fetch_proxies/validate_proxy"
            )
        return instance

    def build_backends(
        self, specs: list[ComponentSpec], settings: OrchestratorSettings | None = None
    ) -> BackendRegistry:
        registry = BackendRegistry(settings)
        for spec in specs:
            if spec.enabled:
                registry.register(spec.name, self.build_backend(spec))
        return registry


__all__ = ["BUILTIN_PROVIDERS", "BackendRegistry", "ComponentRegistry"]
