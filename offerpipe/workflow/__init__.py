"""Workflow package exports."""

from .actions import ActionContext, ActionKind
from .conditions import Condition, compile_condition, evaluate_condition
from .engine import WorkflowEngine, validate_workflow
from .params import resolve_params, resolve_value

__all__ = [
    "ActionContext",
    "ActionKind",
    "Condition",
    "WorkflowEngine",
    "compile_condition",
    "evaluate_condition",
    "resolve_params",
    "resolve_value",
    "validate_workflow",
]
