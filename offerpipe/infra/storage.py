"""Session storage: protocol plus in-memory and SQLite implementations.

Lookups apply the TTL lazily: a record whose ``expires_at`` has passed is
reported as missing and, for the SQLite store, marked ``expired`` on read.

The SQLite store keeps each record encrypted with Fernet. The key is the
SHA-256 of ``$OFFERPIPE_SESSION_KEY``; rows written under another key read
back as missing.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import os
import sqlite3
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Callable, Protocol

from cryptography.fernet import Fernet, InvalidToken

from ..logging_conf import configure_logging
from ..models import SessionRecord, SessionStatus, utcnow

Clock = Callable[[], datetime]

SESSION_KEY_ENV = "OFFERPIPE_SESSION_KEY"
_FALLBACK_PASSPHRASE = "offerpipe-local-sessions"


class SessionCipher:
    """Symmetric cipher keyed by the SHA-256 digest of a passphrase."""

    def __init__(self, passphrase: str) -> None:
        digest = hashlib.sha256(passphrase.encode("utf-8")).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    @classmethod
    def from_env(cls, env_var: str = SESSION_KEY_ENV) -> "SessionCipher":
        passphrase = os.environ.get(env_var)
        if not passphrase:
            configure_logging().bind(component="session_store").warning(
                "session_key_missing", env_var=env_var
            )
            passphrase = _FALLBACK_PASSPHRASE
        return cls(passphrase)

    def encrypt(self, text: str) -> str:
        return self._fernet.encrypt(text.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")


class SessionStore(Protocol):
    async def get(self, session_id: str) -> SessionRecord | None: ...

    async def find_active(self, owner_identity: str) -> SessionRecord | None: ...

    async def save(self, record: SessionRecord) -> None: ...

    async def update_status(self, session_id: str, status: SessionStatus) -> bool: ...


class InMemorySessionStore:
    def __init__(self, clock: Clock = utcnow) -> None:
        self._records: dict[str, SessionRecord] = {}
        self._clock = clock
        self.writes = 0

    async def get(self, session_id: str) -> SessionRecord | None:
        record = self._records.get(session_id)
        if record is None or not record.is_usable(self._clock()):
            return None
        return record

    async def find_active(self, owner_identity: str) -> SessionRecord | None:
        now = self._clock()
        usable = [
            record
            for record in self._records.values()
            if record.owner_identity == owner_identity and record.is_usable(now)
        ]
        if not usable:
            return None
        return max(usable, key=lambda record: record.created_at)

    async def save(self, record: SessionRecord) -> None:
        self._records[record.session_id] = record
        self.writes += 1

    async def update_status(self, session_id: str, status: SessionStatus) -> bool:
        record = self._records.get(session_id)
        if record is None:
            return False
        self._records[session_id] = record.model_copy(update={"status": status})
        return True


class SQLiteSessionStore:
    """Durable session store backed by a single SQLite file."""

    def __init__(self, path: Path, clock: Clock = utcnow, cipher: SessionCipher | None = None) -> None:
        self.path = path
        self._clock = clock
        self._cipher = cipher or SessionCipher.from_env()
        self.logger = configure_logging().bind(component="session_store")
        self._lock = Lock()
        path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                session_id TEXT PRIMARY KEY,
                owner_identity TEXT NOT NULL,
                payload TEXT NOT NULL,
                created_at TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                status TEXT NOT NULL
            )
            """
        )
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_sessions_owner ON sessions(owner_identity)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Blocking helpers, run through asyncio.to_thread
    # ------------------------------------------------------------------
    def _row_to_record(self, row: sqlite3.Row | None) -> SessionRecord | None:
        if row is None:
            return None
        try:
            payload = self._cipher.decrypt(row["payload"])
        except InvalidToken:
            self.logger.warning("session_payload_unreadable", session_id=row["session_id"])
            return None
        record = SessionRecord.model_validate(json.loads(payload))
        record = record.model_copy(update={"status": SessionStatus(row["status"])})
        if record.status is SessionStatus.ACTIVE and not record.is_usable(self._clock()):
            self._set_status(record.session_id, SessionStatus.EXPIRED)
            return None
        if not record.is_usable(self._clock()):
            return None
        return record

    def _get(self, session_id: str) -> SessionRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM sessions WHERE session_id = ?", (session_id,)
            ).fetchone()
        return self._row_to_record(row)

    def _find_active(self, owner_identity: str) -> SessionRecord | None:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM sessions WHERE owner_identity = ? AND status = ? "
                "ORDER BY created_at DESC",
                (owner_identity, SessionStatus.ACTIVE.value),
            ).fetchall()
        for row in rows:
            record = self._row_to_record(row)
            if record is not None:
                return record
        return None

    def _save(self, record: SessionRecord) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO sessions(session_id, owner_identity, payload, created_at, expires_at, status) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    record.session_id,
                    record.owner_identity,
                    self._cipher.encrypt(record.model_dump_json()),
                    record.created_at.isoformat(),
                    record.expires_at.isoformat(),
                    record.status.value,
                ),
            )
            self._conn.commit()

    def _set_status(self, session_id: str, status: SessionStatus) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "UPDATE sessions SET status = ? WHERE session_id = ?", (status.value, session_id)
            )
            self._conn.commit()
            return cur.rowcount > 0

    # ------------------------------------------------------------------
    async def get(self, session_id: str) -> SessionRecord | None:
        return await asyncio.to_thread(self._get, session_id)

    async def find_active(self, owner_identity: str) -> SessionRecord | None:
        return await asyncio.to_thread(self._find_active, owner_identity)

    async def save(self, record: SessionRecord) -> None:
        await asyncio.to_thread(self._save, record)

    async def update_status(self, session_id: str, status: SessionStatus) -> bool:
        return await asyncio.to_thread(self._set_status, session_id, status)

    def close(self) -> None:
        with self._lock:
            self._conn.close()


__all__ = ["InMemorySessionStore", "SESSION_KEY_ENV", "SQLiteSessionStore", "SessionCipher", "SessionStore"]
