"""Artifact stores for scraping results and saved workflow data."""

from __future__ import annotations

import asyncio
import json
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Protocol


class ArtifactStore(Protocol):
    async def put(self, namespace: str, payload: dict[str, Any]) -> str: ...

    async def list(self, namespace: str, limit: int = 50) -> list[dict[str, Any]]: ...


def _artifact_key(namespace: str) -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"{namespace}/{stamp}-{uuid.uuid4().hex[:8]}"


class InMemoryArtifactStore:
    def __init__(self) -> None:
        self.items: dict[str, list[tuple[str, dict[str, Any]]]] = {}

    async def put(self, namespace: str, payload: dict[str, Any]) -> str:
        key = _artifact_key(namespace)
        self.items.setdefault(namespace, []).append((key, payload))
        return key

    async def list(self, namespace: str, limit: int = 50) -> list[dict[str, Any]]:
        entries = self.items.get(namespace, [])[-limit:]
        return [{"key": key, **payload} for key, payload in reversed(entries)]


class FileArtifactStore:
    """Append artifacts as JSON lines, one file per namespace."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = output_dir
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    def path_for(self, namespace: str) -> Path:
        slug = re.sub(r"[^0-9A-Za-z_-]+", "_", namespace.strip()) or "default"
        return self.output_dir / f"{slug}.jsonl"

    def _append(self, namespace: str, key: str, payload: dict[str, Any]) -> None:
        record = {"key": key, **payload}
        with self._lock, self.path_for(namespace).open("a", encoding="utf-8") as stream:
            json.dump(record, stream, ensure_ascii=False, default=str)
            stream.write("\n")

    def _read(self, namespace: str, limit: int) -> list[dict[str, Any]]:
        path = self.path_for(namespace)
        if not path.exists():
            return []
        with self._lock:
            lines = path.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in reversed(lines[-limit:]) if line.strip()]

    async def put(self, namespace: str, payload: dict[str, Any]) -> str:
        key = _artifact_key(namespace)
        await asyncio.to_thread(self._append, namespace, key, payload)
        return key

    async def list(self, namespace: str, limit: int = 50) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._read, namespace, limit)


__all__ = ["ArtifactStore", "FileArtifactStore", "InMemoryArtifactStore"]
