from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from offerpipe.app import AppState, app
from offerpipe.config import WorkflowDefinition
from offerpipe.infra import ProxyManager, RoundRobinStrategy
from offerpipe.logging_conf import configure_logging
from offerpipe.models import ProxyConfig
from offerpipe.workflow import WorkflowEngine

runner = CliRunner()


@pytest.fixture
def cli_state(monkeypatch, temp_config_repository, build_orchestrator, fake_backend, distinct_offers, fake_provider, stub_scheduler):
    configure_logging()
    backend = fake_backend([distinct_offers(3)])

    def engine_factory() -> WorkflowEngine:
        return WorkflowEngine(
            orchestrator=build_orchestrator({"primary": backend}),
            repository=temp_config_repository,
        )

    def proxy_factory() -> ProxyManager:
        manager = ProxyManager(RoundRobinStrategy(), scheduler=stub_scheduler)
        provider = fake_provider([ProxyConfig(host="a", port=80), ProxyConfig(host="b", port=80)], valid={"b": False})
        manager.register_provider("list", provider)
        return manager

    state = AppState(repository=temp_config_repository, engine_factory=engine_factory, proxy_factory=proxy_factory)
    monkeypatch.setattr("offerpipe.app.build_state", lambda verbose: state)
    return state


def _save(repository, name: str, *steps: dict) -> None:
    repository.save_workflow(WorkflowDefinition(name=name, description="demo", steps=list(steps)))


SCRAPE_STEPS = (
    {"name": "login", "action": "auth.login", "params": {"username": "${user}", "password": "${password}"}},
    {"name": "scrape", "action": "scraping.scrape", "params": {"url": "https://shop.example"}},
)


def test_workflow_list_empty(cli_state) -> None:
    result = runner.invoke(app, ["workflow", "list"])
    assert result.exit_code == 0, result.stdout
    assert "No workflows found." in result.stdout


def test_workflow_list_and_show(cli_state) -> None:
    _save(cli_state.repository, "deals", *SCRAPE_STEPS)
    listed = runner.invoke(app, ["workflow", "list"])
    assert listed.exit_code == 0, listed.stdout
    assert "Workflows (1)" in listed.stdout
    assert "deals" in listed.stdout

    shown = runner.invoke(app, ["workflow", "show", "deals"])
    assert shown.exit_code == 0, shown.stdout
    assert "auth.login" in shown.stdout
    assert "scraping.scrape" in shown.stdout


def test_workflow_validate(cli_state) -> None:
    _save(cli_state.repository, "deals", *SCRAPE_STEPS)
    _save(cli_state.repository, "broken", {"name": "x", "action": "browser.teleport"})

    ok = runner.invoke(app, ["workflow", "validate", "deals"])
    assert ok.exit_code == 0, ok.stdout
    assert "Workflow 'deals' is valid (2 steps)." in ok.stdout

    bad = runner.invoke(app, ["workflow", "validate", "broken"])
    assert bad.exit_code == 1
    assert "Invalid: Unknown action: browser.teleport" in bad.stdout

    missing = runner.invoke(app, ["workflow", "validate", "ghost"])
    assert missing.exit_code == 1


def test_workflow_run_prints_json_status(cli_state) -> None:
    _save(cli_state.repository, "deals", *SCRAPE_STEPS)
    result = runner.invoke(
        app, ["workflow", "run", "deals", "-p", "user=alice", "--param", "password=secret", "--json"]
    )
    assert result.exit_code == 0, result.stdout
    status = json.loads(result.stdout)
    assert status["status"] == "completed"
    assert status["results"]["totalOffers"] == 3
    assert status["results"]["sessionId"] == "sess-123..."
    assert "password" not in status["results"]


def test_workflow_run_from_file_failure_exits_nonzero(cli_state, tmp_path) -> None:
    path = tmp_path / "adhoc.yaml"
    path.write_text(
        "name: adhoc\nsteps:\n  - name: scrape\n    action: scraping.scrape\n    params: {url: 'https://x'}\n",
        encoding="utf-8",
    )
    result = runner.invoke(app, ["workflow", "run", "--file", str(path)])
    assert result.exit_code == 1
    assert "failed" in result.stdout


def test_workflow_run_requires_target(cli_state) -> None:
    result = runner.invoke(app, ["workflow", "run"])
    assert result.exit_code != 0


def test_proxy_stats(cli_state) -> None:
    result = runner.invoke(app, ["proxy", "stats"])
    assert result.exit_code == 0, result.stdout
    assert "total proxies" in result.stdout
    assert "50.0" in result.stdout
    assert "list" in result.stdout


def test_log_commands(cli_state, tmp_path) -> None:
    log_dir = tmp_path / "logs" / "workflows"
    log_dir.mkdir(parents=True, exist_ok=True)
    (log_dir / "deals.log").write_text("first\nsecond\nthird\n", encoding="utf-8")

    listed = runner.invoke(app, ["log", "list"])
    assert listed.exit_code == 0, listed.stdout
    assert "deals.log" in listed.stdout

    shown = runner.invoke(app, ["log", "show", "--workflow", "deals", "--tail", "2"])
    assert shown.exit_code == 0, shown.stdout
    assert "second" in shown.stdout
    assert "third" in shown.stdout
    assert "first" not in shown.stdout
