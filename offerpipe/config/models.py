"""Pydantic models used across offerpipe configuration flow."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class ScrapePolicy(str, Enum):
    """How the orchestrator spreads one extraction across backends."""

    WATERFALL = "waterfall"
    AGGREGATION = "aggregation"


class RotationStrategyName(str, Enum):
    ROUND_ROBIN = "round_robin"
    WEIGHTED = "weighted"
    RANDOM = "random"


class ComponentSpec(BaseModel):
    """A pluggable component declared by name and import path.

    ``import_path`` is either ``module.path:ClassName`` or, for proxy
    providers, one of the built-in aliases (``static``, ``http-list``).
    """

    name: str
    import_path: str
    options: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True

    @field_validator("name", "import_path")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value


class OrchestratorSettings(BaseModel):
    # No default policy: the deployment must choose one.
    policy: ScrapePolicy | None = None
    max_retries: int = 3
    base_delay: float = Field(default=1.0, description="Seconds; waterfall waits base_delay * attempt.")
    primary_backend: str | None = None
    fallback_backend: str | None = None
    login_backend: str | None = None
    session_ttl_days: int = 7
    similarity_threshold: float = 0.85
    second_factor_ttl_minutes: int = 10
    second_factor_max_attempts: int = 3

    @model_validator(mode="after")
    def _validate_ranges(self) -> "OrchestratorSettings":
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.session_ttl_days < 1:
            raise ValueError("session_ttl_days must be >= 1")
        if not 0 < self.similarity_threshold <= 1:
            raise ValueError("similarity_threshold must be within (0, 1]")
        return self


class ProxyPoolSettings(BaseModel):
    enabled: bool = False
    strategy: RotationStrategyName = RotationStrategyName.ROUND_ROBIN
    validation_interval: float = Field(default=300.0, description="Seconds between validation passes.")
    min_weight: float = 0.1
    max_weight: float = 10.0
    success_boost: float = 0.1
    failure_penalty: float = 0.2
    providers: list[ComponentSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_weights(self) -> "ProxyPoolSettings":
        if self.validation_interval <= 0:
            raise ValueError("validation_interval must be > 0")
        if self.min_weight <= 0 or self.max_weight < self.min_weight:
            raise ValueError("weight bounds must satisfy 0 < min_weight <= max_weight")
        return self


class WorkflowSettings(BaseModel):
    status_log_limit: int = 10
    artifact_namespace: str = "workflow"


class StorageSettings(BaseModel):
    session_store: Literal["memory", "sqlite"] = "sqlite"
    sessions_db: Path = Field(default=Path("data/sessions/sessions.db"))
    artifacts_dir: Path = Field(default=Path("data/artifacts"))

    @field_validator("sessions_db", "artifacts_dir", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    def resolve(self, path: Path, base_dir: Path) -> Path:
        if not path.is_absolute():
            return (base_dir / path).resolve()
        return path


class GlobalConfig(BaseModel):
    """Global controls shared by every workflow run."""

    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    proxy: ProxyPoolSettings = Field(default_factory=ProxyPoolSettings)
    backends: list[ComponentSpec] = Field(default_factory=list)
    workflow: WorkflowSettings = Field(default_factory=WorkflowSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    @model_validator(mode="after")
    def _validate_backends(self) -> "GlobalConfig":
        names = [spec.name for spec in self.backends]
        if len(names) != len(set(names)):
            raise ValueError("backend names must be unique")
        for field_name in ("primary_backend", "fallback_backend", "login_backend"):
            ref = getattr(self.orchestrator, field_name)
            if ref is not None and names and ref not in names:
                raise ValueError(f"orchestrator.{field_name} refers to unknown backend '{ref}'")
        return self


# ----------------------------------------------------------------------
# Workflow documents
# ----------------------------------------------------------------------
class RetryPolicy(BaseModel):
    attempts: int = 1
    delay: int = Field(default=1000, description="Milliseconds, multiplied by the attempt number.")

    @model_validator(mode="after")
    def _validate(self) -> "RetryPolicy":
        if self.attempts < 1:
            raise ValueError("retry.attempts must be >= 1")
        if self.delay < 0:
            raise ValueError("retry.delay must be >= 0")
        return self


class WorkflowStep(BaseModel):
    name: str
    action: str
    params: dict[str, Any] = Field(default_factory=dict)
    condition: str | None = None
    retry: RetryPolicy | None = None
    timeout: int | None = Field(default=None, description="Milliseconds.")

    @field_validator("timeout")
    @classmethod
    def _positive_timeout(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError("timeout must be > 0")
        return value


class WorkflowDefinition(BaseModel):
    """A named pipeline of steps declared as data."""

    name: str
    description: str = ""
    version: str = "1.0"
    variables: dict[str, Any] = Field(default_factory=dict)
    steps: list[WorkflowStep]

    @field_validator("version", mode="before")
    @classmethod
    def _coerce_version(cls, value: Any) -> str:
        return str(value)

    @model_validator(mode="after")
    def _validate_steps(self) -> "WorkflowDefinition":
        if not self.name.strip():
            raise ValueError("workflow name cannot be empty")
        if not self.steps:
            raise ValueError("workflow must declare at least one step")
        seen: set[str] = set()
        for step in self.steps:
            if step.name in seen:
                raise ValueError(f"duplicate step name: {step.name}")
            seen.add(step.name)
        return self


__all__ = [
    "ComponentSpec",
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
