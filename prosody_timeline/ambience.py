from __future__ import annotations

import re
from typing import List, Optional

from loguru import logger

from prosody_timeline.segments import strip_accents
from prosody_timeline.tables import SoundCatalog

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_scene(label: str) -> str:
    """Lowercase, drop diacritics, whitespace runs → underscore."""
    return _WHITESPACE_RE.sub("_", strip_accents((label or "").lower()).strip())


class SoundMapper:
    """Resolves a free-form scene label to ambient sound ids from a fixed catalog."""

    def __init__(self, catalog: Optional[SoundCatalog] = None) -> None:
        self.catalog = catalog or SoundCatalog()
        self._keys = [(normalize_scene(key), key) for key in self.catalog.entries]
        self.known_sounds = frozenset(
            sound
            for sounds in [*self.catalog.entries.values(), self.catalog.default]
            for sound in sounds
        )

    def match(self, label: str) -> Optional[str]:
        """Catalog key for `label`, or None when nothing contains/is contained."""
        normalized = normalize_scene(label)
        if not normalized:
            return None
        for normalized_key, key in self._keys:
            if normalized_key in normalized or normalized in normalized_key:
                return key
        return None

    def map_environment(self, label: str) -> List[str]:
        key = self.match(label)
        if key is None:
            logger.warning(
                "sounds.default label={label!r} sounds={sounds}",
                label=label,
                sounds=self.catalog.default,
            )
            return list(self.catalog.default)
        sounds = self.catalog.entries[key]
        logger.debug(
            "sounds.mapped label={label!r} key={key} sounds={sounds}",
            label=label,
            key=key,
            sounds=sounds,
        )
        return list(sounds)
