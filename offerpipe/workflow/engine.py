"""Interpreter for declarative extraction workflows."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable

from ..config.loader import ConfigRepository
from ..config.models import WorkflowDefinition, WorkflowSettings, WorkflowStep
from ..errors import (
    ConfigurationError,
    OfferpipeError,
    UnknownAction,
    WorkflowStepExhausted,
    WorkflowStepTimeout,
)
from ..infra.artifacts import ArtifactStore
from ..infra.proxy_pool import ProxyManager
from ..logging_conf import workflow_logger
from ..models import ExecutionLogEntry, ExecutionStatus, WorkflowExecution, utcnow
from ..orchestrator import Orchestrator
from .actions import ActionContext, ActionKind, dispatch
from .conditions import Condition
from .params import resolve_params

SENSITIVE_KEYS = frozenset({"password", "secret", "token", "cookies", "session", "secondFactorToken"})

Sleep = Callable[[float], Awaitable[Any]]


def validate_workflow(definition: WorkflowDefinition) -> WorkflowDefinition:
    """Check every action is known and every condition parses."""

    for step in definition.steps:
        ActionKind.parse(step.action)
        if step.condition:
            Condition(step.condition)
    return definition


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _redact(item) for key, item in value.items() if key not in SENSITIVE_KEYS}
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


class WorkflowEngine:
    """Run workflow definitions step by step and track their executions."""

    def __init__(
        self,
        orchestrator: Orchestrator | None = None,
        proxy_manager: ProxyManager | None = None,
        repository: ConfigRepository | None = None,
        artifact_store: ArtifactStore | None = None,
        settings: WorkflowSettings | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.orchestrator = orchestrator
        self.proxy_manager = proxy_manager
        self.repository = repository
        self.artifact_store = artifact_store
        self.settings = settings or WorkflowSettings()
        self._sleep = sleep
        self._clock = clock
        self._executions: dict[str, WorkflowExecution] = {}
        self._tasks: dict[str, asyncio.Task[WorkflowExecution]] = {}

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------
    def load_workflow(self, name: str) -> WorkflowDefinition:
        if self.repository is None:
            raise ConfigurationError("No workflow repository configured")
        return validate_workflow(self.repository.load_workflow(name))

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def execute_workflow(
        self, name: str, initial_params: dict[str, Any] | None = None
    ) -> WorkflowExecution:
        return await self.execute_definition(self.load_workflow(name), initial_params)

    async def execute_definition(
        self, definition: WorkflowDefinition, initial_params: dict[str, Any] | None = None
    ) -> WorkflowExecution:
        validate_workflow(definition)
        execution = self._create_execution(definition, initial_params)
        await self._run(definition, execution)
        return execution

    def start_workflow(
        self, name: str, initial_params: dict[str, Any] | None = None
    ) -> WorkflowExecution:
        """Schedule a run on the current event loop and return its execution at once."""

        definition = self.load_workflow(name)
        execution = self._create_execution(definition, initial_params)
        task = asyncio.get_running_loop().create_task(self._run(definition, execution))
        self._tasks[execution.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(execution.id, None))
        return execution

    def _create_execution(
        self, definition: WorkflowDefinition, initial_params: dict[str, Any] | None
    ) -> WorkflowExecution:
        execution = WorkflowExecution(
            id=uuid.uuid4().hex,
            workflow_name=definition.name,
            total_steps=len(definition.steps),
            started_at=self._clock(),
            results_context={**definition.variables, **(initial_params or {})},
        )
        self._executions[execution.id] = execution
        return execution

    def _log(self, execution: WorkflowExecution, message: str, step: str | None = None) -> None:
        if execution.status.terminal:
            return
        execution.log.append(ExecutionLogEntry(timestamp=self._clock(), message=message, step=step))

    def _finish(self, execution: WorkflowExecution, status: ExecutionStatus, message: str) -> None:
        self._log(execution, message)
        execution.status = status
        execution.ended_at = self._clock()

    async def _run(self, definition: WorkflowDefinition, execution: WorkflowExecution) -> WorkflowExecution:
        logger = workflow_logger(definition.name).bind(execution_id=execution.id)
        logger.info("workflow_started", steps=execution.total_steps)
        self._log(execution, f"Workflow started: {definition.name}")

        for index, step in enumerate(definition.steps):
            if execution.status is not ExecutionStatus.RUNNING:
                break
            execution.current_step_index = index

            if step.condition and not Condition(step.condition).evaluate(execution.results_context):
                self._log(execution, f"Step skipped, condition not met: {step.condition}", step.name)
                logger.info("step_skipped", step=step.name)
                continue

            self._log(execution, f"Executing step {index + 1}/{execution.total_steps}", step.name)
            try:
                updates = await self._run_step(definition, execution, step, logger)
            except (UnknownAction, WorkflowStepExhausted) as exc:
                if execution.status is ExecutionStatus.RUNNING:
                    execution.errors.append(str(exc))
                    self._finish(execution, ExecutionStatus.FAILED, f"Workflow failed: {exc}")
                logger.error("workflow_failed", step=step.name, error=str(exc), code=exc.code)
                return execution

            if execution.status is not ExecutionStatus.RUNNING:
                break
            execution.results_context.update(updates)
            self._log(execution, "Step completed", step.name)

        if execution.status is ExecutionStatus.RUNNING:
            execution.current_step_index = execution.total_steps
            self._finish(execution, ExecutionStatus.COMPLETED, "Workflow completed")
            logger.info("workflow_completed", duration_ms=execution.duration_ms)
        else:
            logger.info("workflow_stopped", status=execution.status.value)
        return execution

    async def _run_step(
        self,
        definition: WorkflowDefinition,
        execution: WorkflowExecution,
        step: WorkflowStep,
        logger,
    ) -> dict[str, Any]:
        kind = ActionKind.parse(step.action)
        attempts = step.retry.attempts if step.retry else 1
        delay_ms = step.retry.delay if step.retry else 0
        last_error: BaseException | None = None

        for attempt in range(1, attempts + 1):
            if attempt > 1:
                self._log(execution, f"Retry attempt {attempt}/{attempts}", step.name)
                await self._sleep(delay_ms * attempt / 1000)
                if execution.status is not ExecutionStatus.RUNNING:
                    return {}
            ctx = ActionContext(
                workflow_name=definition.name,
                execution_id=execution.id,
                step_name=step.name,
                params=resolve_params(step.params, execution.results_context),
                results=dict(execution.results_context),
                orchestrator=self.orchestrator,
                proxy_manager=self.proxy_manager,
                artifact_store=self.artifact_store,
                artifact_namespace=self.settings.artifact_namespace,
                sleep=self._sleep,
                clock=self._clock,
            )
            try:
                if step.timeout:
                    try:
                        return await asyncio.wait_for(dispatch(kind, ctx), timeout=step.timeout / 1000)
                    except asyncio.TimeoutError:
                        raise WorkflowStepTimeout(step.name, step.timeout) from None
                return await dispatch(kind, ctx)
            except UnknownAction:
                raise
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                code = exc.code if isinstance(exc, OfferpipeError) else type(exc).__name__
                self._log(execution, f"Step failed (attempt {attempt}): {exc}", step.name)
                logger.warning("step_attempt_failed", step=step.name, attempt=attempt, error=str(exc), code=code)
        raise WorkflowStepExhausted(step.name, attempts, last_error)

    # ------------------------------------------------------------------
    # Inspection & control
    # ------------------------------------------------------------------
    def cancel_execution(self, execution_id: str) -> bool:
        execution = self._executions.get(execution_id)
        if execution is None or execution.status is not ExecutionStatus.RUNNING:
            return False
        self._finish(execution, ExecutionStatus.CANCELLED, "Workflow cancelled")
        return True

    def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        return self._executions.get(execution_id)

    def list_executions(self) -> list[WorkflowExecution]:
        return sorted(self._executions.values(), key=lambda item: item.started_at, reverse=True)

    async def wait_for(self, execution_id: str) -> WorkflowExecution | None:
        task = self._tasks.get(execution_id)
        if task is not None:
            await asyncio.shield(task)
        return self._executions.get(execution_id)

    def execution_status(self, execution_id: str) -> dict[str, Any] | None:
        execution = self._executions.get(execution_id)
        if execution is None:
            return None
        results = _redact(execution.results_context)
        session_id = results.get("sessionId")
        if isinstance(session_id, str) and len(session_id) > 8:
            results["sessionId"] = session_id[:8] + "..."
        if execution.status is ExecutionStatus.COMPLETED:
            progress = 100
        elif execution.status.terminal or not execution.total_steps:
            progress = 0
        else:
            progress = round(execution.current_step_index / execution.total_steps * 100)
        limit = self.settings.status_log_limit
        return {
            "id": execution.id,
            "workflow": execution.workflow_name,
            "status": execution.status.value,
            "progress": progress,
            "current_step": execution.current_step_index,
            "total_steps": execution.total_steps,
            "results": results,
            "errors": list(execution.errors),
            "recent_logs": [entry.as_dict() for entry in execution.log[-limit:]],
            "started_at": execution.started_at.isoformat(),
            "ended_at": execution.ended_at.isoformat() if execution.ended_at else None,
            "duration_ms": execution.duration_ms,
        }


__all__ = ["SENSITIVE_KEYS", "WorkflowEngine", "validate_workflow"]
