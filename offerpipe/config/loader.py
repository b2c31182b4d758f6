"""Reading and writing the global config and workflow documents.

Everything lives under a single home directory (``$OFFERPIPE_HOME`` or the
checkout root)::

    <home>/data/global_config.yaml
    <home>/data/workflows/<slug>.yaml|.yml|.json
    <home>/data/artifacts/
    <home>/data/sessions/
    <home>/logs/
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

import yaml
from pydantic import BaseModel, ValidationError

from ..errors import ConfigurationError, WorkflowNotFound
from .models import GlobalConfig, WorkflowDefinition

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
GLOBAL_CONFIG_FILENAME = "global_config.yaml"
HOME_ENV = "OFFERPIPE_HOME"


def _slugify(name: str) -> str:
    return "".join(ch.lower() if ch.isalnum() or ch == "_" else "-" for ch in name).strip("-")


def _is_yaml(path: Path) -> bool:
    return path.suffix in (".yaml", ".yml")


def _read_document(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    try:
        data = (yaml.safe_load(text) if _is_yaml(path) else json.loads(text)) or {}
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Cannot parse {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected a mapping at the top of {path}")
    return data


def _write_document(path: Path, payload: dict[str, Any]) -> None:
    if _is_yaml(path):
        text = yaml.safe_dump(payload, allow_unicode=True, sort_keys=False)
    else:
        text = json.dumps(payload, indent=2, ensure_ascii=False)
    staging = path.with_name(f".{path.name}.tmp")
    staging.write_text(text, encoding="utf-8")
    os.replace(staging, path)


def _validated(model: type[BaseModel], payload: dict[str, Any], path: Path) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"{path.name} failed validation: {exc}") from exc


@dataclass(slots=True)
class ConfigLocator:
    """Directory layout under the offerpipe home; directories are created eagerly."""

    project_root: Path | None = None
    _root: Path = field(init=False, repr=False)

    def __post_init__(self) -> None:
        home = os.environ.get(HOME_ENV)
        if home:
            self._root = Path(home).expanduser().resolve()
        else:
            self._root = (self.project_root or Path(__file__).resolve().parents[2]).resolve()
        self.project_root = self._root
        for directory in (self.workflows_dir, self.artifacts_dir, self.sessions_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    @property
    def data_dir(self) -> Path:
        return self._root / "data"

    @property
    def workflows_dir(self) -> Path:
        return self.data_dir / "workflows"

    @property
    def artifacts_dir(self) -> Path:
        return self.data_dir / "artifacts"

    @property
    def sessions_dir(self) -> Path:
        return self.data_dir / "sessions"

    @property
    def logs_dir(self) -> Path:
        return self._root / "logs"

    def global_config_path(self) -> Path:
        return self.data_dir / GLOBAL_CONFIG_FILENAME


class ConfigRepository:
    """Validated access to the global config and the stored workflows."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._global: GlobalConfig | None = None

    def load_global_config(self) -> GlobalConfig:
        """Return the cached global config, writing defaults on first use."""

        if self._global is None:
            path = self.locator.global_config_path()
            if path.exists():
                self._global = _validated(GlobalConfig, _read_document(path), path)
            else:
                self.save_global_config(GlobalConfig())
        return self._global

    def save_global_config(self, config: GlobalConfig) -> None:
        _write_document(self.locator.global_config_path(), config.model_dump(mode="json"))
        self._global = config

    def workflow_path(self, name: str) -> Path:
        """Existing document for ``name`` in any format, else the YAML path it would get."""

        slug = _slugify(name)
        candidates = [self.locator.workflows_dir / f"{slug}{suffix}" for suffix in CONFIG_EXTENSIONS]
        return next((path for path in candidates if path.exists()), candidates[0])

    def list_workflow_files(self) -> Iterator[Path]:
        for path in sorted(self.locator.workflows_dir.iterdir()):
            if path.is_file() and path.suffix in CONFIG_EXTENSIONS and not path.name.startswith("."):
                yield path

    def list_workflows(self) -> list[WorkflowDefinition]:
        return [self.load_workflow(path) for path in self.list_workflow_files()]

    def load_workflow(self, identifier: str | Path) -> WorkflowDefinition:
        path = identifier if isinstance(identifier, Path) else self.workflow_path(identifier)
        if not path.is_file():
            raise WorkflowNotFound(f"Workflow not found: {identifier}")
        return _validated(WorkflowDefinition, _read_document(path), path)

    def save_workflow(self, definition: WorkflowDefinition) -> Path:
        path = self.workflow_path(definition.name)
        _write_document(path, definition.model_dump(mode="json", exclude_none=True))
        return path

    def delete_workflow(self, name: str) -> bool:
        path = self.workflow_path(name)
        if not path.exists():
            return False
        path.unlink()
        return True


__all__ = ["CONFIG_EXTENSIONS", "ConfigLocator", "ConfigRepository"]
