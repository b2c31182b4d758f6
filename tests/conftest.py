"""Shared fixtures: fake backends and providers, stores and config builders."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable

import pytest

from offerpipe.config import ConfigLocator, ConfigRepository, OrchestratorSettings, ScrapePolicy
from offerpipe.engine.contracts import LoginResult
from offerpipe.infra import InMemoryArtifactStore, InMemorySessionStore
from offerpipe.models import Offer, ProxyConfig, ValidationResult
from offerpipe.orchestrator import Orchestrator
from offerpipe.registry import BackendRegistry


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeBackend:
    """Extraction backend replaying scripted outcomes.

    Each outcome is a list of offers or an exception instance; the last
    outcome repeats once the script runs out.
    """

    def __init__(
        self,
        outcomes: Iterable[list[Offer] | Exception] = ((),),
        login_result: LoginResult | Exception | None = None,
    ) -> None:
        self.outcomes = [list(o) if not isinstance(o, Exception) else o for o in outcomes]
        self.login_result = login_result or LoginResult(success=True, session_id="sess-123456789")
        self.extract_calls: list[tuple[str, dict[str, Any]]] = []
        self.login_calls: list[str] = []

    async def login(self, identity: str, secret: str, options: dict[str, Any]) -> LoginResult:
        self.login_calls.append(identity)
        if isinstance(self.login_result, Exception):
            raise self.login_result
        return self.login_result

    async def extract(self, url: str, options: dict[str, Any]) -> list[Offer]:
        self.extract_calls.append((url, options))
        index = min(len(self.extract_calls) - 1, len(self.outcomes) - 1)
        outcome = self.outcomes[index]
        if isinstance(outcome, Exception):
            raise outcome
        return list(outcome)


class FakeProvider:
    def __init__(
        self,
        proxies: list[ProxyConfig] | Exception,
        valid: dict[str, bool] | None = None,
    ) -> None:
        self.proxies = proxies
        self.valid = valid or {}
        self.fetch_calls = 0
        self.validate_calls: list[str] = []

    async def fetch_proxies(self) -> list[ProxyConfig]:
        self.fetch_calls += 1
        if isinstance(self.proxies, Exception):
            raise self.proxies
        return [ProxyConfig(host=p.host, port=p.port, protocol=p.protocol) for p in self.proxies]

    async def validate_proxy(self, proxy: ProxyConfig) -> ValidationResult:
        self.validate_calls.append(proxy.proxy_id)
        is_valid = self.valid.get(proxy.host, True)
        return ValidationResult(is_valid=is_valid, latency_ms=25.0 if is_valid else -1)


class StubScheduler:
    def __init__(self) -> None:
        self.jobs: dict[str, tuple[Any, float]] = {}
        self.started = False
        self.shutdowns = 0

    def schedule_interval(self, job_id: str, callback: Any, seconds: float) -> None:
        self.jobs[job_id] = (callback, seconds)

    def remove(self, job_id: str) -> None:
        self.jobs.pop(job_id, None)

    def start(self) -> None:
        self.started = True

    def shutdown(self) -> None:
        self.shutdowns += 1


@pytest.fixture
def make_offer() -> Callable[..., Offer]:
    counter = {"value": 0}

    def _factory(title: str = "Nike Air Max 90", **overrides: Any) -> Offer:
        counter["value"] += 1
        payload: dict[str, Any] = {
            "id": f"offer-{counter['value']}",
            "title": title,
            "price": 99.0,
            "brand": "Nike",
            "category": "shoes",
            "url": f"https://shop.example/{counter['value']}",
        }
        payload.update(overrides)
        return Offer(**payload)

    return _factory


@pytest.fixture
def distinct_offers(make_offer) -> Callable[[int], list[Offer]]:
    titles = [
        "Nike Air Max 90",
        "Adidas Ultraboost Light",
        "Puma Suede Classic",
        "New Balance 550",
        "Converse Chuck 70",
        "Vans Old Skool",
        "Asics Gel Kayano",
    ]

    def _factory(count: int) -> list[Offer]:
        return [make_offer(titles[i], price=50.0 + i * 10) for i in range(count)]

    return _factory


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def session_store(clock: FakeClock) -> InMemorySessionStore:
    return InMemorySessionStore(clock=clock)


@pytest.fixture
def artifact_store() -> InMemoryArtifactStore:
    return InMemoryArtifactStore()


@pytest.fixture
def build_orchestrator(session_store, artifact_store, clock, recording_sleep) -> Callable[..., Orchestrator]:
    def _factory(
        backends: dict[str, FakeBackend],
        policy: ScrapePolicy | None = ScrapePolicy.WATERFALL,
        **settings: Any,
    ) -> Orchestrator:
        orchestrator_settings = OrchestratorSettings(policy=policy, base_delay=0.5, **settings)
        registry = BackendRegistry(orchestrator_settings)
        for name, backend in backends.items():
            registry.register(name, backend)
        return Orchestrator(
            session_store=session_store,
            backends=registry,
            artifact_store=artifact_store,
            settings=orchestrator_settings,
            clock=clock,
            sleep=recording_sleep,
        )

    return _factory


@pytest.fixture
def temp_config_repository(tmp_path: Path) -> ConfigRepository:
    locator = ConfigLocator(project_root=tmp_path)
    return ConfigRepository(locator)


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OFFERPIPE_HOME", str(tmp_path))


@pytest.fixture
def fake_backend() -> type[FakeBackend]:
    return FakeBackend


@pytest.fixture
def fake_provider() -> type[FakeProvider]:
    return FakeProvider


@pytest.fixture
def stub_scheduler() -> StubScheduler:
    return StubScheduler()
