"""Keyword taxonomy: category -> descriptive phrases expected from the classifier.

Categories are coarse buckets over an open-vocabulary (ImageNet) classifier,
so each constrained category carries many near-synonym phrases to raise
recall.  ``other`` owns an empty phrase set and is never constrained.

The built-in table can be replaced by a JSON file (``{"category": [...]}``)
configured through ``CIVICSENSE_TAXONOMY_PATH``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from types import MappingProxyType

from app.models.issue import Category

logger = logging.getLogger(__name__)

UNCONSTRAINED_CATEGORY = Category.OTHER.value

DEFAULT_KEYWORDS: dict[str, list[str]] = {
    # Surface cavities only
    "pothole": [
        "pothole", "road crack", "asphalt crack", "broken asphalt",
        "road cavity", "crater", "road depression", "surface hole",
        "collapsed asphalt", "circular hole in road", "damaged pavement surface",
        "cracked tar", "bitumen crack", "road surface fracture",
        "sunken asphalt", "uneven road surface", "asphalt erosion",
        "blacktop crack", "pavement fracture", "road sinkhole",
        "surface cavity", "road rupture", "tar road crack",
        "road surface damage", "asphalt surface break", "cracked roadway",
        "eroded asphalt", "damaged tar surface", "road hole damage",
        "road wear erosion",
    ],
    # Waste objects only
    "garbage": [
        "trash", "garbage", "plastic waste", "plastic bottle", "paper plate",
        "food waste", "waste pile", "litter", "trash bag", "overflowing bin",
        "garbage bag", "waste container", "dumpster", "scattered waste",
        "dirty waste", "waste heap", "rubbish", "recyclable waste",
        "metal can", "discarded bottle", "polythene bag", "paper waste",
        "household waste", "organic waste", "rotting waste", "trash can",
        "waste barrel", "junk pile", "refuse waste", "waste overflow area",
    ],
    # Lighting infrastructure only
    "streetlight": [
        "street light", "lamp post", "light pole", "streetlamp",
        "traffic signal light", "signal pole", "electric pole",
        "lamp fixture", "broken light bulb", "damaged streetlamp",
        "lighting pole", "roadside lamp", "public lighting pole",
        "lamp housing", "metal lighting pole", "tall light pole",
        "lighting column", "electric lighting unit", "municipal light pole",
        "lamp arm structure", "pole mounted lamp", "overhead lighting pole",
        "signal head light", "bulb fixture", "lighting infrastructure",
        "electric street lamp", "urban light pole", "road illumination pole",
        "lamp support pole", "street lighting unit",
    ],
    # Water drainage structures only
    "drainage_issue": [
        "drain", "sewer", "manhole", "gutter", "storm drain",
        "blocked drain", "open manhole", "drain cover", "water overflow drain",
        "sewage water", "drain pipe", "flooded drain", "drainage channel",
        "drain outlet", "sewer lid", "clogged drain", "water logging",
        "overflowing sewer", "drain blockage", "stormwater drain",
        "drain grate", "sewer opening", "flooded gutter", "sewage leakage",
        "wastewater flow", "drain pit", "municipal drain channel",
        "underground sewer", "drain slab", "sewer overflow area",
    ],
    # Structural damage, not potholes
    "damaged_road": [
        "collapsed bridge", "broken divider", "damaged barrier",
        "broken guardrail", "road barrier damage", "bridge structural crack",
        "damaged flyover", "roadside railing", "concrete breakage",
        "bridge surface crack", "road edge collapse",
        "cracked divider structure", "broken curb", "damaged median",
        "roadside concrete break", "bridge damage", "sidewalk collapse",
        "road structure damage", "broken concrete slab",
        "infrastructure damage", "road boundary crack",
        "broken retaining wall", "flyover damage",
        "collapsed concrete structure", "road railing damage",
        "divider collapse", "damaged overpass", "cracked embankment",
        "concrete fracture", "roadside structure collapse",
    ],
    "other": [],
}


def _category_key(category: Category | str | None) -> str | None:
    if category is None:
        return None
    if isinstance(category, Category):
        return category.value
    try:
        return Category(category).value
    except ValueError:
        return str(category).strip().lower()


class KeywordTaxonomy:
    """Immutable lookup from category to lowercase keyword phrases.

    Lookups are total: unknown categories and ``other`` yield an empty
    tuple, which the matcher treats as "no constraint".
    """

    def __init__(self, keywords: Mapping[str, Iterable[str]] | None = None) -> None:
        source = DEFAULT_KEYWORDS if keywords is None else keywords
        table: dict[str, tuple[str, ...]] = {}
        for category, phrases in source.items():
            key = _category_key(category)
            cleaned = tuple(
                phrase.strip().lower() for phrase in phrases if phrase and phrase.strip()
            )
            table[key] = cleaned
        self._table = MappingProxyType(table)

    @classmethod
    def from_file(cls, path: Path) -> KeywordTaxonomy:
        """Load a taxonomy from a JSON object mapping category to phrase list."""
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict) or not all(
            isinstance(v, list) for v in data.values()
        ):
            raise ValueError(
                f"Taxonomy file {path} must map category names to phrase lists"
            )
        logger.info("Loaded keyword taxonomy from %s (%d categories)", path, len(data))
        return cls(data)

    def keywords_for(self, category: Category | str | None) -> tuple[str, ...]:
        """Return the phrases for *category*, or an empty tuple."""
        key = _category_key(category)
        if key is None:
            return ()
        return self._table.get(key, ())

    def is_constrained(self, category: Category | str | None) -> bool:
        """Whether images for *category* are checked against keywords at all."""
        key = _category_key(category)
        if key is None or key == UNCONSTRAINED_CATEGORY:
            return False
        return bool(self.keywords_for(key))

    def categories(self) -> list[str]:
        """Configured category names, in insertion order."""
        return list(self._table.keys())

    def as_dict(self) -> dict[str, list[str]]:
        return {category: list(phrases) for category, phrases in self._table.items()}
