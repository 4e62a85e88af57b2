"""Classify dependency edges against the requested target platforms."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from ..models import DependencyEdge, PlatformDetails, TargetPlatform
from .cfg import parse_predicate


class Classification(str, Enum):
    UNIVERSAL = "universal"
    CONDITIONAL = "conditional"
    EXCLUDED = "excluded"


@dataclass(frozen=True)
class EdgeClassification:
    """Outcome of classifying one platform predicate.

    ``predicate`` is set only for conditional results and is the exact string
    used as the select key when rendering. ``matched`` lists the triples the
    predicate holds for.
    """

    kind: Classification
    predicate: Optional[str] = None
    matched: Tuple[str, ...] = ()


class PlatformResolver:
    """Decides whether an edge applies to all, some, or none of the platforms."""

    def __init__(self, details: PlatformDetails) -> None:
        if not details.platforms:
            raise ValueError("At least one target platform is required")
        self.details = details
        self._cache: Dict[Optional[str], EdgeClassification] = {}

    def matches(self, predicate: str, platform: TargetPlatform) -> bool:
        return parse_predicate(predicate).evaluate(platform)

    def classify_predicate(self, predicate: Optional[str]) -> EdgeClassification:
        cached = self._cache.get(predicate)
        if cached is not None:
            return cached
        result = self._classify(predicate)
        self._cache[predicate] = result
        return result

    def classify(self, edge: DependencyEdge) -> EdgeClassification:
        return self.classify_predicate(edge.platform)

    def _classify(self, predicate: Optional[str]) -> EdgeClassification:
        all_triples = self.details.triples
        if predicate is None:
            return EdgeClassification(Classification.UNIVERSAL, matched=all_triples)
        matched = tuple(
            platform.triple
            for platform in self.details.platforms
            if self.matches(predicate, platform)
        )
        if not matched:
            return EdgeClassification(Classification.EXCLUDED)
        if len(matched) == len(all_triples):
            return EdgeClassification(Classification.UNIVERSAL, matched=matched)
        return EdgeClassification(Classification.CONDITIONAL, predicate=predicate, matched=matched)


__all__ = ["Classification", "EdgeClassification", "PlatformResolver"]
