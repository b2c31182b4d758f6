"""Engine package exports."""

from .contracts import (
    ElementResolver,
    ExtractionBackend,
    LoginResult,
    ProxyProvider,
    ResolveRequest,
    ResolveResult,
    ResolvingBackend,
)
from .dedup import DeduplicationResult, OfferDeduplicator

__all__ = [
    "DeduplicationResult",
    "ElementResolver",
    "ExtractionBackend",
    "LoginResult",
    "OfferDeduplicator",
    "ProxyProvider",
    "ResolveRequest",
    "ResolveResult",
    "ResolvingBackend",
]
