"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    ComponentSpec,
    GlobalConfig,
    OrchestratorSettings,
    ProxyPoolSettings,
    RetryPolicy,
    RotationStrategyName,
    ScrapePolicy,
    StorageSettings,
    WorkflowDefinition,
    WorkflowSettings,
    WorkflowStep,
)

__all__ = [
    "ComponentSpec",
    "ConfigLocator",
    "ConfigRepository",
    "GlobalConfig",
    "OrchestratorSettings",
    "ProxyPoolSettings",
    "RetryPolicy",
    "RotationStrategyName",
    "ScrapePolicy",
    "StorageSettings",
    "WorkflowDefinition",
    "WorkflowSettings",
    "WorkflowStep",
]
