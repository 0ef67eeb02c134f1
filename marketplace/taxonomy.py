"""Product category taxonomy with synonyms and fuzzy resolution.

Canonical categories mirror the supplier catalog enum. Buyer input is resolved
by exact synonym lookup first, then rapidfuzz similarity.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from rapidfuzz import fuzz, process

from .config import settings

logger = logging.getLogger(__name__)

CATEGORY_TAXONOMY = [
    {
        "category": "AMR",
        "synonyms": ["amr", "autonomous mobile robot", "autonomous mobile robots", "mobile robot"],
        "description": "Autonomous Mobile Robots",
    },
    {
        "category": "AGV",
        "synonyms": ["agv", "automated guided vehicle", "automated guided vehicles", "guided vehicle"],
        "description": "Automated Guided Vehicles",
    },
    {
        "category": "SixAxis",
        "synonyms": ["sixaxis", "six axis", "six-axis", "6 axis", "6-axis", "6axis", "articulated robot", "robot arm"],
        "description": "Six-axis articulated robots",
    },
    {
        "category": "SCARA",
        "synonyms": ["scara", "scara robot", "selective compliance arm"],
        "description": "SCARA robots",
    },
    {
        "category": "Conveyor",
        "synonyms": ["conveyor", "conveyors", "conveyor system", "belt conveyor"],
        "description": "Conveyor systems",
    },
    {
        "category": "ASRS",
        "synonyms": ["asrs", "as/rs", "as-rs", "automated storage and retrieval", "automated storage"],
        "description": "Automated storage and retrieval systems",
    },
    {
        "category": "Vision",
        "synonyms": ["vision", "machine vision", "vision system", "vision inspection"],
        "description": "Machine vision systems",
    },
    {
        "category": "Other",
        "synonyms": ["other", "misc", "miscellaneous"],
        "description": "Other automation equipment",
    },
]

CATEGORIES: tuple[str, ...] = tuple(entry["category"] for entry in CATEGORY_TAXONOMY)

# Values that mean "no category constraint"
ANY_CATEGORY = {"", "any", "all", "*"}


@dataclass
class CategoryEntry:
    """Single taxonomy entry."""
    category: str
    synonyms: list[str] = field(default_factory=list)
    description: str = ""


class CategoryResolver:
    """Resolves free-text category names to canonical categories.

    Supports:
    - Exact canonical matching (case-insensitive)
    - Synonym matching
    - Fuzzy matching via rapidfuzz
    """

    def __init__(
        self,
        taxonomy: list[CategoryEntry] | None = None,
        *,
        fuzzy_threshold: int | None = None,
    ) -> None:
        self.taxonomy = taxonomy or [CategoryEntry(**entry) for entry in CATEGORY_TAXONOMY]
        self.fuzzy_threshold = (
            fuzzy_threshold if fuzzy_threshold is not None else settings.matching.category_fuzzy_threshold
        )

        self._synonym_map: dict[str, str] = {}  # key -> canonical
        for entry in self.taxonomy:
            self._synonym_map[self._key(entry.category)] = entry.category
            for syn in entry.synonyms:
                self._synonym_map[self._key(syn)] = entry.category

        logger.debug(f"Loaded {len(self.taxonomy)} categories with {len(self._synonym_map)} synonyms")

    @staticmethod
    def _key(text: str) -> str:
        return re.sub(r"\s+", " ", text.strip().lower())

    @property
    def categories(self) -> list[str]:
        return [entry.category for entry in self.taxonomy]

    def resolve(self, raw: str) -> str | None:
        """Return the canonical category for ``raw`` or None if unknown."""
        key = self._key(raw)
        if not key:
            return None

        if key in self._synonym_map:
            return self._synonym_map[key]

        # Compact form catches "Six_Axis", "AS/RS " and similar
        compact = re.sub(r"[^a-z0-9]", "", key)
        for synonym, canonical in self._synonym_map.items():
            if re.sub(r"[^a-z0-9]", "", synonym) == compact:
                return canonical

        best = process.extractOne(
            key,
            list(self._synonym_map.keys()),
            scorer=fuzz.ratio,
        )
        if best and best[1] >= self.fuzzy_threshold:
            canonical = self._synonym_map[best[0]]
            logger.debug(f"Fuzzy-resolved category {raw!r} -> {canonical} (score={best[1]:.0f})")
            return canonical

        return None
