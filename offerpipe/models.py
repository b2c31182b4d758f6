"""Domain records: offers, sessions, proxies and workflow executions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

SESSION_TTL = timedelta(days=7)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ----------------------------------------------------------------------
# Offers
# ----------------------------------------------------------------------
class Availability(str, Enum):
    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"
    LIMITED = "limited"


class Offer(BaseModel):
    """A single product offer as reported by an extraction backend."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    price: float
    original_price: float | None = None
    discount_pct: float | None = None
    brand: str = ""
    category: str = ""
    url: str = ""
    image_url: str | None = None
    description: str | None = None
    availability: Availability = Availability.IN_STOCK
    observed_at: datetime = Field(default_factory=utcnow)
    source: str | None = None

    def tagged(self, source: str) -> "Offer":
        return self.model_copy(update={"source": source})


# ----------------------------------------------------------------------
# Sessions
# ----------------------------------------------------------------------
class SessionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    INVALID = "invalid"


class Cookie(BaseModel):
    name: str
    value: str
    domain: str | None = None
    path: str | None = "/"
    expires: float | None = None
    http_only: bool = False
    secure: bool = False
    same_site: str | None = None


class SessionRecord(BaseModel):
    """Authenticated browsing session owned by one identity."""

    session_id: str
    owner_identity: str
    cookies: list[Cookie] = Field(default_factory=list)
    fingerprint: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    status: SessionStatus = SessionStatus.ACTIVE

    @field_validator("created_at", "expires_at")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def issue(
        cls,
        session_id: str,
        owner_identity: str,
        cookies: list[Cookie] | None = None,
        fingerprint: dict[str, Any] | None = None,
        now: datetime | None = None,
        ttl: timedelta = SESSION_TTL,
    ) -> "SessionRecord":
        created = now or utcnow()
        return cls(
            session_id=session_id,
            owner_identity=owner_identity,
            cookies=cookies or [],
            fingerprint=fingerprint or {},
            created_at=created,
            expires_at=created + ttl,
        )

    def is_usable(self, now: datetime | None = None) -> bool:
        moment = now or utcnow()
        return self.status is SessionStatus.ACTIVE and moment < self.expires_at


@dataclass(slots=True)
class SecondFactorChallenge:
    """Login paused waiting for a second factor; never a usable session."""

    token: str
    owner_identity: str
    created_at: datetime
    expires_at: datetime
    max_attempts: int = 3
    attempts: int = 0

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    @property
    def attempts_left(self) -> int:
        return max(self.max_attempts - self.attempts, 0)


# ----------------------------------------------------------------------
# Proxies
# ----------------------------------------------------------------------
class ProxyProtocol(str, Enum):
    HTTP = "http"
    HTTPS = "https"
    SOCKS4 = "socks4"
    SOCKS5 = "socks5"


class AnonymityLevel(str, Enum):
    TRANSPARENT = "transparent"
    ANONYMOUS = "anonymous"
    ELITE = "elite"


@dataclass(slots=True)
class ProxyCredentials:
    username: str
    password: str


@dataclass(slots=True)
class ProxyConfig:
    host: str
    port: int
    protocol: ProxyProtocol = ProxyProtocol.HTTP
    credentials: ProxyCredentials | None = None
    country: str | None = None
    anonymity_level: AnonymityLevel | None = None
    last_checked: datetime | None = None
    health_score: float = 100.0
    is_active: bool = True
    provider_name: str = ""

    @property
    def proxy_id(self) -> str:
        return f"{self.protocol.value}://{self.host}:{self.port}"

    @property
    def url(self) -> str:
        auth = ""
        if self.credentials is not None:
            auth = f"{self.credentials.username}:{self.credentials.password}@"
        return f"{self.protocol.value}://{auth}{self.host}:{self.port}"


@dataclass(slots=True)
class ProxyStats:
    total_requests: int = 0
    failed_requests: int = 0
    avg_latency_ms: float = 0.0
    last_used_at: datetime | None = None

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return (self.total_requests - self.failed_requests) / self.total_requests * 100

    def record(self, success: bool, latency_ms: float | None = None, now: datetime | None = None) -> None:
        self.total_requests += 1
        if not success:
            self.failed_requests += 1
        if latency_ms is not None and latency_ms > 0:
            # running mean over every recorded request
            self.avg_latency_ms = (
                self.avg_latency_ms * (self.total_requests - 1) + latency_ms
            ) / self.total_requests
        self.last_used_at = now or utcnow()


@dataclass(slots=True)
class ValidationResult:
    is_valid: bool
    latency_ms: float
    timestamp: datetime = field(default_factory=utcnow)
    error: str | None = None


# ----------------------------------------------------------------------
# Workflow executions
# ----------------------------------------------------------------------
class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


@dataclass(slots=True)
class ExecutionLogEntry:
    timestamp: datetime
    message: str
    step: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "message": self.message, "step": self.step}


@dataclass(slots=True)
class WorkflowExecution:
    id: str
    workflow_name: str
    total_steps: int
    status: ExecutionStatus = ExecutionStatus.RUNNING
    started_at: datetime = field(default_factory=utcnow)
    ended_at: datetime | None = None
    current_step_index: int = 0
    results_context: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    log: list[ExecutionLogEntry] = field(default_factory=list)

    @property
    def duration_ms(self) -> int:
        end = self.ended_at or utcnow()
        return int((end - self.started_at).total_seconds() * 1000)


__all__ = [
    "AnonymityLevel",
    "Availability",
    "Cookie",
    "ExecutionLogEntry",
    "ExecutionStatus",
    "Offer",
    "ProxyConfig",
    "ProxyCredentials",
    "ProxyProtocol",
    "ProxyStats",
    "SESSION_TTL",
    "SecondFactorChallenge",
    "SessionRecord",
    "SessionStatus",
    "ValidationResult",
    "WorkflowExecution",
    "utcnow",
]
