from __future__ import annotations

import re
from functools import cached_property
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from prosody_timeline.segments import EmotionLabel, Interjection
from prosody_timeline.tables import KeywordTables

DEFAULT_INTERJECTION_MS = 500


class Classification(BaseModel):
    """Result of the keyword scan over one segment of text."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    emotion: EmotionLabel
    environment: str
    interjections: List[Interjection] = Field(default_factory=list)
    matched_keyword: Optional[str] = Field(
        default=None, description="Emotion cue that decided the label, if any."
    )


class LexicalClassifier:
    """
    Deterministic keyword classifier used when no remote analysis is available.

    Emotion and scene are independent passes over the lowercased text; within a
    pass the first category (in table order) with any substring hit wins.
    """

    def __init__(
        self,
        keywords: Optional[KeywordTables] = None,
        interjection_ms: int = DEFAULT_INTERJECTION_MS,
    ) -> None:
        self.keywords = keywords or KeywordTables()
        self.interjection_ms = interjection_ms

    @cached_property
    def _interjection_patterns(self) -> List[Tuple[re.Pattern[str], str]]:
        return [
            (re.compile(pattern, re.IGNORECASE), sound)
            for pattern, sound in self.keywords.interjections
        ]

    def emotion(self, text: str) -> Tuple[EmotionLabel, Optional[str]]:
        lowered = (text or "").lower()
        for label, cues in self.keywords.emotions.items():
            for cue in cues:
                if cue.lower() in lowered:
                    return label, cue
        return self.keywords.default_emotion, None

    def scene(self, text: str) -> str:
        lowered = (text or "").lower()
        for scene, cues in self.keywords.scenes.items():
            if any(cue.lower() in lowered for cue in cues):
                return scene
        return self.keywords.default_scene

    def interjections(self, text: str) -> List[Interjection]:
        if not text:
            return []
        return [
            Interjection(sound=sound, duration_ms=self.interjection_ms)
            for pattern, sound in self._interjection_patterns
            if pattern.search(text)
        ]

    def classify(self, text: str) -> Classification:
        emotion, cue = self.emotion(text)
        return Classification(
            emotion=emotion,
            environment=self.scene(text),
            interjections=self.interjections(text),
            matched_keyword=cue,
        )
