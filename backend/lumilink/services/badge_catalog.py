"""
backend/lumilink/services/badge_catalog.py

Purpose:
    Immutable, explicitly constructed badge catalog. Validates entries once at
    startup (unique keys, well-formed rules, known metric names) and exposes
    definitions in deterministic evaluation order: ascending rarity, then key.

Dependencies:
    - pydantic
    - lumilink.config
    - lumilink.models.badge
    - lumilink.models.metric
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from lumilink.config import settings
from lumilink.models.badge import BADGE_DEFINITIONS, BadgeCategory, BadgeDefinition, BadgeIcon
from lumilink.models.metric import KNOWN_METRICS

logger = logging.getLogger("lumilink.badge_catalog")


class CatalogLoadError(ValueError):
    """Raised when the catalog cannot be built (duplicate key, malformed rule, unknown metric)."""


class BadgeCatalog:
    __slots__ = ("_definitions", "_by_key", "_metrics")

    def __init__(
        self,
        definitions: Iterable[BadgeDefinition],
        *,
        known_metrics: Iterable[str] = KNOWN_METRICS,
    ) -> None:
        known = frozenset(known_metrics)
        by_key: dict[str, BadgeDefinition] = {}
        for definition in definitions:
            if definition.key in by_key:
                raise CatalogLoadError(f"duplicate badge key: {definition.key}")
            unknown = definition.metrics() - known
            if unknown:
                raise CatalogLoadError(
                    f"badge {definition.key} references unknown metrics: {', '.join(sorted(unknown))}"
                )
            by_key[definition.key] = definition

        ordered = sorted(by_key.values(), key=lambda d: (d.rarity.rank, d.key))
        metrics: set[str] = set()
        for definition in ordered:
            metrics |= definition.metrics()

        self._definitions: tuple[BadgeDefinition, ...] = tuple(ordered)
        self._by_key: dict[str, BadgeDefinition] = by_key
        self._metrics: frozenset[str] = frozenset(metrics)

    @classmethod
    def from_entries(
        cls,
        entries: Iterable[dict[str, Any]],
        *,
        known_metrics: Iterable[str] = KNOWN_METRICS,
    ) -> BadgeCatalog:
        definitions: list[BadgeDefinition] = []
        for idx, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise CatalogLoadError(f"catalog entry #{idx} is not an object")
            raw_icon = entry.get("icon")
            if raw_icon is not None and not BadgeIcon.is_known(raw_icon):
                logger.warning(
                    "Unknown icon %r for badge %s; using fallback icon",
                    raw_icon, entry.get("key", f"#{idx}"),
                )
            try:
                definitions.append(BadgeDefinition.model_validate(entry))
            except ValidationError as exc:
                raise CatalogLoadError(
                    f"invalid catalog entry {entry.get('key', f'#{idx}')!r}: {exc}"
                ) from exc
        return cls(definitions, known_metrics=known_metrics)

    @classmethod
    def from_file(cls, path: str | Path, **kwargs: Any) -> BadgeCatalog:
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise CatalogLoadError(f"cannot read badge catalog {path}: {exc}") from exc
        if isinstance(raw, dict):
            raw = raw.get("badges")
        if not isinstance(raw, list):
            raise CatalogLoadError(f"badge catalog {path} must be a list of badge objects")
        return cls.from_entries(raw, **kwargs)

    @classmethod
    def load_default(cls) -> BadgeCatalog:
        """Configured catalog file if set, otherwise the built-in definitions."""
        if settings.BADGE_CATALOG_FILE:
            catalog = cls.from_file(settings.BADGE_CATALOG_FILE)
            source = settings.BADGE_CATALOG_FILE
        else:
            catalog = cls.from_entries(BADGE_DEFINITIONS)
            source = "built-in"
        logger.info("Badge catalog loaded: %d badges from %s", len(catalog), source)
        return catalog

    def list_definitions(self) -> tuple[BadgeDefinition, ...]:
        return self._definitions

    def get(self, key: str) -> BadgeDefinition | None:
        return self._by_key.get(key)

    def by_category(self, category: BadgeCategory | str) -> tuple[BadgeDefinition, ...]:
        wanted = BadgeCategory(category)
        return tuple(d for d in self._definitions if d.category is wanted)

    def referenced_metrics(self) -> frozenset[str]:
        return self._metrics

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def __iter__(self) -> Iterator[BadgeDefinition]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)
