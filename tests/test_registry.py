from __future__ import annotations

import sys
import types

import pytest

from offerpipe.config import ComponentSpec, OrchestratorSettings
from offerpipe.engine.contracts import LoginResult, ResolveResult, ResolvingBackend
from offerpipe.errors import ConfigurationError
from offerpipe.infra import StaticProxyProvider
from offerpipe.registry import BackendRegistry, ComponentRegistry


class ApiBackend:
    def __init__(self, base_url: str = "https://api.example") -> None:
        self.base_url = base_url

    async def login(self, identity, secret, options):  # noqa: ANN001
        return LoginResult(success=True, session_id="api")

    async def extract(self, url, options):  # noqa: ANN001
        return []


class Resolver:
    async def resolve(self, request):  # noqa: ANN001
        return ResolveResult(success=True, data=[])


class NotABackend:
    pass


@pytest.fixture
def acme_module(monkeypatch: pytest.MonkeyPatch) -> str:
    module = types.ModuleType("acme_backends")
    module.ApiBackend = ApiBackend
    module.Resolver = Resolver
    module.NotABackend = NotABackend
    module.helper = lambda: None
    monkeypatch.setitem(sys.modules, "acme_backends", module)
    return "acme_backends"


def test_primary_and_fallback_follow_registration_order(fake_backend) -> None:
    registry = BackendRegistry()
    first, second = fake_backend(), fake_backend()
    registry.register("browser", first)
    registry.register("api", second)
    assert registry.primary() == ("browser", first)
    assert registry.fallback() == ("api", second)
    assert registry.login_backend() == ("browser", first)
    assert registry.names() == ["browser", "api"]
    assert len(registry) == 2


def test_configured_roles_override_order(fake_backend) -> None:
    settings = OrchestratorSettings(primary_backend="api", fallback_backend="browser", login_backend="browser")
    registry = BackendRegistry(settings)
    browser, api = fake_backend(), fake_backend()
    registry.register("browser", browser)
    registry.register("api", api)
    assert registry.primary() == ("api", api)
    assert registry.fallback() == ("browser", browser)
    assert registry.login_backend() == ("browser", browser)


def test_single_backend_has_no_fallback(fake_backend) -> None:
    registry = BackendRegistry()
    registry.register("only", fake_backend())
    assert registry.fallback() is None


def test_empty_registry_and_unknown_names() -> None:
    registry = BackendRegistry()
    with pytest.raises(ConfigurationError):
        registry.primary()
    with pytest.raises(ConfigurationError):
        registry.get("ghost")


def test_build_backends_from_specs(acme_module: str) -> None:
    components = ComponentRegistry()
    specs = [
        ComponentSpec(name="api", import_path=f"{acme_module}:ApiBackend", options={"base_url": "https://x"}),
        ComponentSpec(name="vision", import_path=f"{acme_module}:Resolver"),
        ComponentSpec(name="off", import_path=f"{acme_module}:ApiBackend", enabled=False),
    ]
    registry = components.build_backends(specs)
    assert registry.names() == ["api", "vision"]
    assert registry.get("api").base_url == "https://x"
    assert isinstance(registry.get("vision"), ResolvingBackend)


@pytest.mark.parametrize(
    "import_path",
    ["acme_backends.ApiBackend", "acme_missing:Thing", "acme_backends:Missing", "acme_backends:helper", "acme_backends:NotABackend"],
)
def test_build_backend_errors(acme_module: str, import_path: str) -> None:
    with pytest.raises(ConfigurationError):
        ComponentRegistry().build_backend(ComponentSpec(name="x", import_path=import_path))


def test_build_provider_aliases_and_paths(acme_module: str) -> None:
    components = ComponentRegistry()
    static = components.build_provider(ComponentSpec(name="s", import_path="static", options={"proxies": ["1.1.1.1:80"]}))
    assert isinstance(static, StaticProxyProvider)
    dotted = components.build_provider(
        ComponentSpec(name="d", import_path="offerpipe.infra.providers:StaticProxyProvider")
    )
    assert isinstance(dotted, StaticProxyProvider)
    with pytest.raises(ConfigurationError):
        components.build_provider(ComponentSpec(name="bad", import_path=f"{acme_module}:ApiBackend"))
