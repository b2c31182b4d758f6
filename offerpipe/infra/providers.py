"""Reference proxy providers: static lists and downloadable host:port lists."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable, Iterable, Mapping
from urllib.parse import urlsplit

import httpx

from ..models import ProxyConfig, ProxyCredentials, ProxyProtocol, ValidationResult, utcnow

DEFAULT_TEST_URL = "https://httpbin.org/ip"
SUPPORTED_PROTOCOLS = frozenset({ProxyProtocol.HTTP, ProxyProtocol.HTTPS, ProxyProtocol.SOCKS5})

ClientFactory = Callable[[ProxyConfig], httpx.AsyncClient]


def parse_proxy_line(line: str, default_protocol: ProxyProtocol = ProxyProtocol.HTTP) -> ProxyConfig:
    """Parse ``[protocol://][user:pass@]host:port`` into a ``ProxyConfig``.

    SOCKS4 entries are rejected; httpx has no SOCKS4 transport.
    """

    text = line.strip()
    if "://" not in text:
        text = f"{default_protocol.value}://{text}"
    parts = urlsplit(text)
    if not parts.hostname or parts.port is None:
        raise ValueError(f"Invalid proxy entry: {line!r}")
    protocol = ProxyProtocol(parts.scheme.lower())
    if protocol not in SUPPORTED_PROTOCOLS:
        raise ValueError(f"Unsupported proxy protocol {protocol.value!r}: {line!r}")
    credentials = None
    if parts.username:
        credentials = ProxyCredentials(username=parts.username, password=parts.password or "")
    return ProxyConfig(
        host=parts.hostname,
        port=parts.port,
        protocol=protocol,
        credentials=credentials,
    )


def _parse_lines(lines: Iterable[str], default_protocol: ProxyProtocol) -> list[ProxyConfig]:
    proxies: list[ProxyConfig] = []
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        proxies.append(parse_proxy_line(line, default_protocol))
    return proxies


class HttpProbeValidator:
    """Validate a proxy by fetching a test URL through it and timing the call."""

    def __init__(
        self,
        test_url: str = DEFAULT_TEST_URL,
        timeout: float = 10.0,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.test_url = test_url
        self.timeout = timeout
        self._client_factory = client_factory or self._default_client

    def _default_client(self, proxy: ProxyConfig) -> httpx.AsyncClient:
        return httpx.AsyncClient(proxy=proxy.url, timeout=self.timeout)

    async def validate_proxy(self, proxy: ProxyConfig) -> ValidationResult:
        started = time.perf_counter()
        try:
            client = self._client_factory(proxy)
        except (ValueError, ImportError) as exc:
            # unsupported scheme, or socks5 without the socksio extra
            return ValidationResult(is_valid=False, latency_ms=-1, timestamp=utcnow(), error=str(exc))
        try:
            async with client:
                response = await client.get(self.test_url)
            latency = (time.perf_counter() - started) * 1000
            if response.status_code >= 400:
                return ValidationResult(
                    is_valid=False,
                    latency_ms=latency,
                    timestamp=utcnow(),
                    error=f"HTTP {response.status_code}",
                )
            return ValidationResult(is_valid=True, latency_ms=latency, timestamp=utcnow())
        except httpx.HTTPError as exc:
            return ValidationResult(is_valid=False, latency_ms=-1, timestamp=utcnow(), error=str(exc))


class StaticProxyProvider(HttpProbeValidator):
    """Serve proxies from an inline list and/or a newline separated file."""

    def __init__(
        self,
        proxies: Iterable[str] | None = None,
        file_path: str | Path | None = None,
        default_protocol: str = ProxyProtocol.HTTP.value,
        test_url: str = DEFAULT_TEST_URL,
        timeout: float = 10.0,
        client_factory: ClientFactory | None = None,
    ) -> None:
        super().__init__(test_url=test_url, timeout=timeout, client_factory=client_factory)
        self.entries: list[str] = [p.strip() for p in proxies or [] if p.strip()]
        self.file_path = Path(file_path) if file_path else None
        self.default_protocol = ProxyProtocol(default_protocol)

    async def fetch_proxies(self) -> list[ProxyConfig]:
        lines = list(self.entries)
        if self.file_path is not None:
            if not self.file_path.exists():
                raise FileNotFoundError(f"Proxy list not found: {self.file_path}")
            lines.extend(self.file_path.read_text(encoding="utf-8").splitlines())
        return _parse_lines(lines, self.default_protocol)


class HttpListProxyProvider(HttpProbeValidator):
    """Download plain ``host:port`` lists, one URL per protocol."""

    def __init__(
        self,
        sources: Mapping[str, str],
        client: httpx.AsyncClient | None = None,
        test_url: str = DEFAULT_TEST_URL,
        timeout: float = 10.0,
        client_factory: ClientFactory | None = None,
    ) -> None:
        super().__init__(test_url=test_url, timeout=timeout, client_factory=client_factory)
        self.sources = {ProxyProtocol(protocol): url for protocol, url in sources.items()}
        unsupported = [protocol.value for protocol in self.sources if protocol not in SUPPORTED_PROTOCOLS]
        if unsupported:
            raise ValueError(f"Unsupported proxy protocols: {unsupported}")
        self._client = client

    async def fetch_proxies(self) -> list[ProxyConfig]:
        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        proxies: list[ProxyConfig] = []
        try:
            for protocol, url in self.sources.items():
                response = await client.get(url)
                response.raise_for_status()
                proxies.extend(_parse_lines(response.text.splitlines(), protocol))
        finally:
            if self._client is None:
                await client.aclose()
        return proxies


__all__ = [
    "DEFAULT_TEST_URL",
    "HttpListProxyProvider",
    "HttpProbeValidator",
    "SUPPORTED_PROTOCOLS",
    "StaticProxyProvider",
    "parse_proxy_line",
]
