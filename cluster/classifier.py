"""Classify swarm services into shutdown/restore tiers."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field, replace
import re
from typing import Any, Iterable, Mapping

from config.controller import (
    DEFAULT_DATABASE_PATTERNS,
    DEFAULT_INGRESS_PATTERNS,
    DEFAULT_ONESHOT_PATTERNS,
)
from core.models import Category, ServiceDescriptor


@dataclass(frozen=True)
class ClassifierPatterns:
    """Substring patterns per tier, matched case-insensitively."""

    oneshot: tuple[str, ...] = field(default_factory=lambda: tuple(DEFAULT_ONESHOT_PATTERNS))
    ingress: tuple[str, ...] = field(default_factory=lambda: tuple(DEFAULT_INGRESS_PATTERNS))
    database: tuple[str, ...] = field(default_factory=lambda: tuple(DEFAULT_DATABASE_PATTERNS))

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ClassifierPatterns":
        classification = config.get("classification") if isinstance(config, Mapping) else None
        if not isinstance(classification, Mapping):
            return cls()
        defaults = cls()
        return cls(
            oneshot=tuple(classification.get("oneshot", defaults.oneshot)),
            ingress=tuple(classification.get("ingress", defaults.ingress)),
            database=tuple(classification.get("database", defaults.database)),
        )


def _compile(patterns: Iterable[str]) -> re.Pattern[str] | None:
    escaped = [re.escape(pattern) for pattern in patterns if pattern]
    if not escaped:
        return None
    return re.compile("|".join(escaped), re.IGNORECASE)


class ServiceClassifier:
    """Map a service name and image to a category.

    Precedence is OneShot, then Ingress, then Database; anything else is an
    application. A one-shot job that uses a database image (``db-migrate`` on
    ``postgres:15``) is therefore never restarted.
    """

    def __init__(self, patterns: ClassifierPatterns | None = None) -> None:
        self.patterns = patterns or ClassifierPatterns()
        self._rules: list[tuple[Category, re.Pattern[str] | None]] = [
            (Category.ONESHOT, _compile(self.patterns.oneshot)),
            (Category.INGRESS, _compile(self.patterns.ingress)),
            (Category.DATABASE, _compile(self.patterns.database)),
        ]

    def classify(self, name: str, image: str) -> Category:
        combined = f"{name}_{image}"
        for category, pattern in self._rules:
            if pattern is not None and pattern.search(combined):
                return category
        return Category.APP

    def classify_service(self, service: ServiceDescriptor) -> ServiceDescriptor:
        return replace(service, category=self.classify(service.name, service.image))

    def classify_all(self, services: Iterable[ServiceDescriptor]) -> list[ServiceDescriptor]:
        return [self.classify_service(service) for service in services]


def count_by_category(services: Iterable[ServiceDescriptor]) -> dict[str, int]:
    """Return per-category counts keyed by category value, including zeros."""

    counts = Counter(service.category for service in services if service.category)
    return {category.value: counts.get(category, 0) for category in Category}
