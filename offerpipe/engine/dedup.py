"""Offer deduplication across exact keys and fuzzy title similarity."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from ..models import Offer

DEFAULT_SIMILARITY_THRESHOLD = 0.85

_PUNCTUATION = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")


def normalize_title(title: str) -> str:
    cleaned = _PUNCTUATION.sub("", title.casefold())
    return _WHITESPACE.sub(" ", cleaned).strip()


def strip_query(url: str) -> str:
    return url.split("?", 1)[0].split("#", 1)[0]


def levenshtein(left: str, right: str) -> int:
    if left == right:
        return 0
    if not left:
        return len(right)
    if not right:
        return len(left)
    previous = list(range(len(right) + 1))
    for i, lch in enumerate(left, start=1):
        current = [i]
        for j, rch in enumerate(right, start=1):
            cost = 0 if lch == rch else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def similarity(left: str, right: str) -> float:
    longest = max(len(left), len(right))
    if longest == 0:
        return 1.0
    return (longest - levenshtein(left, right)) / longest


@dataclass
class DeduplicationResult:
    offers: list[Offer]
    original_count: int
    dropped: dict[str, int] = field(
        default_factory=lambda: {"image": 0, "title": 0, "composite": 0, "fuzzy": 0}
    )

    @property
    def duplicates_removed(self) -> int:
        return self.original_count - len(self.offers)


class OfferDeduplicator:
    """Reduce an offer sequence to first-seen unique offers.

    Checks run in order: stripped image URL, normalised title, the
    (title, price, brand) composite key and finally fuzzy title similarity
    against every retained title. The fuzzy pass is quadratic in the number
    of retained offers.
    """

    def __init__(self, similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD) -> None:
        self.similarity_threshold = similarity_threshold

    def deduplicate(self, offers: Iterable[Offer]) -> list[Offer]:
        return self.run(offers).offers

    def run(self, offers: Iterable[Offer]) -> DeduplicationResult:
        items: Sequence[Offer] = list(offers)
        result = DeduplicationResult(offers=[], original_count=len(items))
        seen_images: set[str] = set()
        seen_titles: set[str] = set()
        seen_composites: set[tuple[str, float, str]] = set()
        retained_titles: list[str] = []

        for offer in items:
            title = normalize_title(offer.title)
            image = strip_query(offer.image_url) if offer.image_url else None
            composite = (title, offer.price, offer.brand.casefold())

            if image and image in seen_images:
                result.dropped["image"] += 1
                continue
            if title in seen_titles:
                result.dropped["title"] += 1
                continue
            if composite in seen_composites:
                result.dropped["composite"] += 1
                continue
            if any(
                similarity(title, existing) >= self.similarity_threshold
                for existing in retained_titles
            ):
                result.dropped["fuzzy"] += 1
                continue

            if image:
                seen_images.add(image)
            seen_titles.add(title)
            seen_composites.add(composite)
            retained_titles.append(title)
            result.offers.append(offer)
        return result


__all__ = [
    "DEFAULT_SIMILARITY_THRESHOLD",
    "DeduplicationResult",
    "OfferDeduplicator",
    "levenshtein",
    "normalize_title",
    "similarity",
    "strip_query",
]
