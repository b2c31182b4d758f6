"""Typer CLI entrypoint for offerpipe."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

import typer
import yaml
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigRepository, GlobalConfig, WorkflowDefinition
from .errors import OfferpipeError
from .infra import (
    FileArtifactStore,
    InMemorySessionStore,
    ProxyManager,
    SQLiteSessionStore,
    build_strategy,
)
from .logging_conf import (
    available_workflow_logs,
    configure_logging,
    default_log_dir,
    tail_log,
    workflow_log_path,
)
from .orchestrator import Orchestrator
from .registry import ComponentRegistry
from .workflow import WorkflowEngine, validate_workflow

app = typer.Typer(help="offerpipe command line", no_args_is_help=True, rich_markup_mode=None)
workflow_app = typer.Typer(name="workflow", help="Workflow commands", no_args_is_help=True)
proxy_app = typer.Typer(name="proxy", help="Proxy pool commands", no_args_is_help=True)
log_app = typer.Typer(name="log", help="Log commands", no_args_is_help=True)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    engine_factory: Callable[[], WorkflowEngine]
    proxy_factory: Callable[[], ProxyManager]


# ----------------------------------------------------------------------
# Wiring
# ----------------------------------------------------------------------
def build_proxy_manager(config: GlobalConfig, components: ComponentRegistry) -> ProxyManager:
    settings = config.proxy
    options = {}
    if settings.strategy.value == "weighted":
        options = {
            "min_weight": settings.min_weight,
            "max_weight": settings.max_weight,
            "success_boost": settings.success_boost,
            "failure_penalty": settings.failure_penalty,
        }
    manager = ProxyManager(
        build_strategy(settings.strategy, **options),
        validation_interval=settings.validation_interval,
    )
    for spec in settings.providers:
        if spec.enabled:
            manager.register_provider(spec.name, components.build_provider(spec))
    return manager


def build_engine(repository: ConfigRepository, components: ComponentRegistry) -> WorkflowEngine:
    config = repository.load_global_config()
    root = repository.locator.project_root
    storage = config.storage
    if storage.session_store == "sqlite":
        session_store = SQLiteSessionStore(storage.resolve(storage.sessions_db, root))
    else:
        session_store = InMemorySessionStore()
    artifact_store = FileArtifactStore(storage.resolve(storage.artifacts_dir, root))
    backends = components.build_backends(config.backends, config.orchestrator)
    orchestrator = Orchestrator(
        session_store=session_store,
        backends=backends,
        artifact_store=artifact_store,
        settings=config.orchestrator,
    )
    proxy_manager = build_proxy_manager(config, components) if config.proxy.enabled else None
    return WorkflowEngine(
        orchestrator=orchestrator,
        proxy_manager=proxy_manager,
        repository=repository,
        artifact_store=artifact_store,
        settings=config.workflow,
    )


def build_state(verbose: bool) -> AppState:
    configure_logging(verbose=verbose)
    repository = ConfigRepository()
    components = ComponentRegistry()
    return AppState(
        repository=repository,
        engine_factory=lambda: build_engine(repository, components),
        proxy_factory=lambda: build_proxy_manager(repository.load_global_config(), components),
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _parse_params(values: Sequence[str]) -> dict:
    params: dict = {}
    for item in values:
        if "=" not in item:
            raise typer.BadParameter(f"Expected key=value, got '{item}'", param_hint="--param")
        key, raw = item.split("=", 1)
        params[key.strip()] = yaml.safe_load(raw) if raw else ""
    return params


# ----------------------------------------------------------------------
# Rendering
# ----------------------------------------------------------------------
def _render_workflows_table(workflows: Sequence[WorkflowDefinition]) -> Table:
    table = Table(title=f"Workflows ({len(workflows)})", box=box.SIMPLE_HEAD)
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Version", style="magenta")
    table.add_column("Steps", style="green", justify="right")
    table.add_column("Description", overflow="fold")
    for definition in workflows:
        table.add_row(definition.name, definition.version, str(len(definition.steps)), definition.description)
    return table


def _render_steps_table(definition: WorkflowDefinition) -> Table:
    table = Table(title=f"{definition.name} v{definition.version}", box=box.SIMPLE_HEAD)
    table.add_column("#", justify="right")
    table.add_column("Step", style="cyan")
    table.add_column("Action", style="magenta")
    table.add_column("Condition", style="yellow", overflow="fold")
    table.add_column("Retry", style="green")
    table.add_column("Timeout", style="green")
    for index, step in enumerate(definition.steps, start=1):
        retry = f"{step.retry.attempts}x / {step.retry.delay}ms" if step.retry else "-"
        timeout = f"{step.timeout}ms" if step.timeout else "-"
        table.add_row(str(index), step.name, step.action, step.condition or "-", retry, timeout)
    return table


def _render_status(status: dict) -> Table:
    table = Table(title="Execution", box=box.SIMPLE_HEAD, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", overflow="fold")
    table.add_row("Workflow", status["workflow"])
    table.add_row("Status", status["status"])
    table.add_row("Progress", f"{status['current_step']}/{status['total_steps']}")
    table.add_row("Duration", f"{status['duration_ms']} ms")
    if status["errors"]:
        table.add_row("Errors", "\n".join(status["errors"]))
    return table


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------
app.add_typer(workflow_app, name="workflow", help="List, validate and run workflows")
app.add_typer(proxy_app, name="proxy", help="Inspect the proxy pool")
app.add_typer(log_app, name="log", help="Show log files")


@app.callback()
def main(
    ctx: typer.Context, verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging")
) -> None:
    ctx.obj = build_state(verbose)


@workflow_app.command("list", help="List workflow documents.")
def workflow_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    workflows = state.repository.list_workflows()
    if not workflows:
        console.print("No workflows found.", style="yellow")
        return
    console.print(_render_workflows_table(workflows))


@workflow_app.command("show", help="Show the steps of a workflow.")
def workflow_show(ctx: typer.Context, name: str = typer.Argument(...)) -> None:
    state = _get_state(ctx)
    try:
        definition = state.repository.load_workflow(name)
    except OfferpipeError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1) from exc
    console.print(_render_steps_table(definition))


@workflow_app.command("validate", help="Validate a workflow document.")
def workflow_validate(ctx: typer.Context, name: str = typer.Argument(...)) -> None:
    state = _get_state(ctx)
    try:
        definition = validate_workflow(state.repository.load_workflow(name))
    except OfferpipeError as exc:
        console.print(f"Invalid: {exc}", style="red")
        raise typer.Exit(code=1) from exc
    console.print(f"Workflow '{definition.name}' is valid ({len(definition.steps)} steps).", style="green")


@workflow_app.command("run", help="Run a workflow and print its status.")
def workflow_run(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Workflow name under data/workflows."),
    param: list[str] = typer.Option([], "--param", "-p", help="Initial parameter key=value."),
    file: Optional[Path] = typer.Option(None, "--file", help="Run a workflow document from a path."),
    as_json: bool = typer.Option(False, "--json", help="Print the status as JSON."),
) -> None:
    state = _get_state(ctx)
    if not name and file is None:
        raise typer.BadParameter("Provide a workflow name or --file")
    params = _parse_params(param)
    try:
        engine = state.engine_factory()
        if file is not None:
            definition = state.repository.load_workflow(file)
            execution = asyncio.run(engine.execute_definition(definition, params))
        else:
            execution = asyncio.run(engine.execute_workflow(name, params))
    except OfferpipeError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1) from exc

    status = engine.execution_status(execution.id)
    if as_json:
        typer.echo(json.dumps(status, indent=2, ensure_ascii=False, default=str))
    else:
        console.print(_render_status(status))
    if status["status"] != "completed":
        raise typer.Exit(code=1)


async def _collect_proxy_stats(manager: ProxyManager) -> dict:
    await manager.refresh()
    await manager.validate_all()
    return manager.get_stats().as_dict()


@proxy_app.command("stats", help="Fetch and validate proxies once, then print pool statistics.")
def proxy_stats(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    try:
        manager = state.proxy_factory()
    except OfferpipeError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1) from exc
    stats = asyncio.run(_collect_proxy_stats(manager))
    table = Table(title="Proxy pool", box=box.SIMPLE_HEAD, show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    for key in ("total_proxies", "active_proxies", "success_rate", "total_requests", "failed_requests"):
        table.add_row(key.replace("_", " "), str(stats[key]))
    table.add_row("providers", ", ".join(stats["providers"]) or "-")
    console.print(table)


@log_app.command("list", help="List workflow log files.")
def log_list() -> None:
    logs = list(available_workflow_logs())
    if not logs:
        console.print("No workflow logs yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="Show the most recent log lines.")
def log_show(
    workflow: Optional[str] = typer.Option(None, "--workflow", help="Workflow name; global log if omitted."),
    tail: int = typer.Option(100, "--tail", help="Number of lines."),
) -> None:
    path = workflow_log_path(workflow) if workflow else default_log_dir() / "offerpipe.log"
    lines = tail_log(path, tail)
    if not lines:
        console.print("No log entries.", style="dim")
        return
    console.print(f"{path.name} · last {len(lines)} lines", style="cyan")
    console.print("".join(lines), markup=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
