"""Infrastructure helpers."""

from .artifacts import ArtifactStore, FileArtifactStore, InMemoryArtifactStore
from .providers import HttpListProxyProvider, StaticProxyProvider
from .proxy_pool import PoolStats, ProxyEvent, ProxyManager
from .rotation import (
    RandomStrategy,
    RotationStrategy,
    RoundRobinStrategy,
    WeightedStrategy,
    build_strategy,
)
from .storage import InMemorySessionStore, SQLiteSessionStore, SessionCipher, SessionStore

__all__ = [
    "ArtifactStore",
    "FileArtifactStore",
    "HttpListProxyProvider",
    "InMemoryArtifactStore",
    "InMemorySessionStore",
    "PoolStats",
    "ProxyEvent",
    "ProxyManager",
    "RandomStrategy",
    "RotationStrategy",
    "RoundRobinStrategy",
    "SQLiteSessionStore",
    "SessionCipher",
    "SessionStore",
    "StaticProxyProvider",
    "WeightedStrategy",
    "build_strategy",
]
