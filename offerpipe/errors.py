"""Error taxonomy shared by the orchestrator, proxy manager and workflow engine.

Each error carries a stable ``code`` so an outer API layer can translate it
into a status and message without inspecting the class hierarchy.
"""

from __future__ import annotations


class OfferpipeError(Exception):
    code = "offerpipe_error"


class ConfigurationError(OfferpipeError):
    """Invalid configuration, workflow document or missing explicit choice."""

    code = "configuration_error"


class ConditionSyntaxError(ConfigurationError):
    code = "condition_syntax_error"


class WorkflowNotFound(ConfigurationError):
    code = "workflow_not_found"


class SessionUnavailable(OfferpipeError):
    code = "session_unavailable"


class BackendFailure(OfferpipeError):
    code = "backend_failure"

    def __init__(self, backend: str, message: str) -> None:
        super().__init__(f"{backend}: {message}")
        self.backend = backend


class EmptyResult(OfferpipeError):
    code = "empty_result"


class ProxyProviderFailure(OfferpipeError):
    """Reported through proxy events, never raised to callers."""

    code = "proxy_provider_failure"

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class NoProxyAvailable(OfferpipeError):
    code = "no_proxy_available"


class WorkflowStepTimeout(OfferpipeError):
    code = "workflow_step_timeout"

    def __init__(self, step: str, timeout_ms: int) -> None:
        super().__init__(f"Step '{step}' timed out after {timeout_ms}ms")
        self.step = step
        self.timeout_ms = timeout_ms


class WorkflowStepExhausted(OfferpipeError):
    code = "workflow_step_exhausted"

    def __init__(self, step: str, attempts: int, last_error: BaseException | None) -> None:
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"Step '{step}' failed after {attempts} attempt(s){detail}")
        self.step = step
        self.attempts = attempts
        self.last_error = last_error


class UnknownAction(OfferpipeError):
    code = "unknown_action"

    def __init__(self, action: str) -> None:
        super().__init__(f"Unknown action: {action}")
        self.action = action


__all__ = [
    "BackendFailure",
    "ConditionSyntaxError",
    "ConfigurationError",
    "EmptyResult",
    "NoProxyAvailable",
    "OfferpipeError",
    "ProxyProviderFailure",
    "SessionUnavailable",
    "UnknownAction",
    "WorkflowNotFound",
    "WorkflowStepExhausted",
    "WorkflowStepTimeout",
]
