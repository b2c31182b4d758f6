"""Interfaces for the external collaborators the core coordinates."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from ..models import Cookie, Offer, ProxyConfig, ValidationResult


@dataclass(slots=True)
class LoginResult:
    success: bool
    session_id: str | None = None
    cookies: list[Cookie] = field(default_factory=list)
    fingerprint: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    requires_second_factor: bool = False


@runtime_checkable
class ExtractionBackend(Protocol):
    """Browser-automation engine able to log in and extract offers."""

    async def login(self, identity: str, secret: str, options: dict[str, Any]) -> LoginResult: ...

    async def extract(self, url: str, options: dict[str, Any]) -> list[Offer]: ...


@dataclass(slots=True)
class ResolveRequest:
    url: str
    instructions: str = "extract product offers"
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ResolveResult:
    success: bool
    data: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None


@runtime_checkable
class ElementResolver(Protocol):
    """Backend that locates page elements from instructions and returns raw rows."""

    async def resolve(self, request: ResolveRequest) -> ResolveResult: ...


class ResolvingBackend:
    """Adapt an ``ElementResolver`` to the ``ExtractionBackend`` interface."""

    def __init__(self, resolver: ElementResolver, instructions: str = "extract product offers") -> None:
        self.resolver = resolver
        self.instructions = instructions

    async def login(self, identity: str, secret: str, options: dict[str, Any]) -> LoginResult:
        return LoginResult(success=False, error="login is not supported by element resolvers")

    async def extract(self, url: str, options: dict[str, Any]) -> list[Offer]:
        result = await self.resolver.resolve(
            ResolveRequest(url=url, instructions=self.instructions, options=dict(options))
        )
        if not result.success:
            raise RuntimeError(result.error or "element resolution failed")
        offers: list[Offer] = []
        for index, row in enumerate(result.data):
            payload = {"id": f"{url}#{index}", "url": url, **row}
            offers.append(Offer.model_validate(payload))
        return offers


@runtime_checkable
class ProxyProvider(Protocol):
    async def fetch_proxies(self) -> list[ProxyConfig]: ...

    async def validate_proxy(self, proxy: ProxyConfig) -> ValidationResult: ...


__all__ = [
    "ElementResolver",
    "ExtractionBackend",
    "LoginResult",
    "ProxyProvider",
    "ResolveRequest",
    "ResolveResult",
    "ResolvingBackend",
]
