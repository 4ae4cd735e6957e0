"""
Lookup tables driving classification and parameter derivation.

Everything here is plain immutable data. Components receive the tables they
need at construction time, so tests (or a JSON override file) can substitute
their own values.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, model_validator

from prosody_timeline.segments import EmotionLabel, VocalType

MAX_RATE_PERCENT = 35.0
DEFAULT_TRANSITION_MS = 500

STABILITY_RANGE: Tuple[float, float] = (0.15, 0.75)
EXPRESSIVENESS_RANGE: Tuple[float, float] = (0.75, 0.98)
INTENSITY_STABILITY_DAMPING = 0.3
PROGRESSION_EXPRESSIVENESS_GAIN = 0.15


class TierName(str, Enum):
    """Rate/pitch buckets, ordered from softest to strongest delivery."""

    whisper = "whisper"
    sensual = "sensual"
    aroused = "aroused"
    climax = "climax"


class Tier(BaseModel):
    """Rate and pitch sub-ranges (percent) for one delivery bucket."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    rate: Tuple[float, float]
    pitch: Tuple[float, float]
    # Bands quoted to the remote analyzer; derivation itself uses the global ranges.
    stability: Tuple[float, float]
    expressiveness: Tuple[float, float]
    intensity: Tuple[float, float]

    @model_validator(mode="after")
    def _validate_ranges(self) -> "Tier":
        for name in ("rate", "pitch", "stability", "expressiveness", "intensity"):
            low, high = getattr(self, name)
            if low > high:
                raise ValueError(f"{name} range is inverted: {low} > {high}")
        if self.rate[1] > MAX_RATE_PERCENT:
            raise ValueError(f"rate ceiling {self.rate[1]} exceeds {MAX_RATE_PERCENT}%")
        return self

    @property
    def rate_floor(self) -> float:
        return self.rate[0]


class EmotionBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    stability: float = Field(ge=0.0, le=1.0)
    expressiveness: float = Field(ge=0.0, le=1.0)


_DEFAULT_BASES: Dict[EmotionLabel, EmotionBase] = {
    EmotionLabel.sensual: EmotionBase(stability=0.55, expressiveness=0.88),
    EmotionLabel.aroused: EmotionBase(stability=0.30, expressiveness=0.92),
    EmotionLabel.climax: EmotionBase(stability=0.20, expressiveness=0.95),
    EmotionLabel.whisper: EmotionBase(stability=0.70, expressiveness=0.82),
    EmotionLabel.intense: EmotionBase(stability=0.32, expressiveness=0.90),
    EmotionLabel.tender: EmotionBase(stability=0.65, expressiveness=0.83),
}

_DEFAULT_TIERS: Dict[TierName, Tier] = {
    TierName.whisper: Tier(
        rate=(18, 22),
        pitch=(-25, -15),
        stability=(0.65, 0.75),
        expressiveness=(0.80, 0.85),
        intensity=(0, 30),
    ),
    TierName.sensual: Tier(
        rate=(22, 26),
        pitch=(-15, -8),
        stability=(0.50, 0.65),
        expressiveness=(0.85, 0.90),
        intensity=(30, 60),
    ),
    TierName.aroused: Tier(
        rate=(26, 32),
        pitch=(-5, 3),
        stability=(0.25, 0.40),
        expressiveness=(0.90, 0.95),
        intensity=(60, 85),
    ),
    TierName.climax: Tier(
        rate=(32, 35),
        pitch=(3, 8),
        stability=(0.15, 0.25),
        expressiveness=(0.92, 0.98),
        intensity=(85, 100),
    ),
}

_DEFAULT_EMOTION_TIERS: Dict[EmotionLabel, TierName] = {
    EmotionLabel.whisper: TierName.whisper,
    EmotionLabel.sensual: TierName.sensual,
    EmotionLabel.tender: TierName.sensual,
    EmotionLabel.aroused: TierName.aroused,
    EmotionLabel.intense: TierName.aroused,
    EmotionLabel.climax: TierName.climax,
}

_DEFAULT_VOCAL_TIERS: Dict[VocalType, TierName] = {
    VocalType.whisper: TierName.whisper,
    VocalType.normal: TierName.sensual,
    VocalType.moan: TierName.aroused,
    VocalType.cry: TierName.climax,
}

# Intensity assumed for locally classified segments (no remote estimate).
_DEFAULT_INTENSITIES: Dict[EmotionLabel, float] = {
    EmotionLabel.whisper: 20,
    EmotionLabel.tender: 35,
    EmotionLabel.sensual: 45,
    EmotionLabel.intense: 75,
    EmotionLabel.aroused: 80,
    EmotionLabel.climax: 95,
}

_S = EmotionLabel.sensual
_A = EmotionLabel.aroused
_C = EmotionLabel.climax
_W = EmotionLabel.whisper
_I = EmotionLabel.intense
_T = EmotionLabel.tender

# ms needed to move from one affect to another; missing pairs use the default.
_DEFAULT_TRANSITIONS: Dict[EmotionLabel, Dict[EmotionLabel, int]] = {
    _S: {_A: 600, _C: 800, _W: 400, _I: 700, _T: 300},
    _A: {_S: 600, _C: 400, _W: 700, _I: 500, _T: 800},
    _C: {_S: 800, _A: 400, _W: 900, _I: 300, _T: 1000},
    _W: {_S: 400, _A: 700, _C: 900, _I: 800, _T: 300},
    _I: {_S: 700, _A: 500, _C: 300, _W: 800, _T: 900},
    _T: {_S: 300, _A: 800, _C: 1000, _W: 300, _I: 900},
}


class ParameterTables(BaseModel):
    """Per-emotion bases, rate/pitch tiers and the emotion transition matrix."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    bases: Dict[EmotionLabel, EmotionBase] = Field(
        default_factory=lambda: dict(_DEFAULT_BASES)
    )
    tiers: Dict[TierName, Tier] = Field(default_factory=lambda: dict(_DEFAULT_TIERS))
    emotion_tiers: Dict[EmotionLabel, TierName] = Field(
        default_factory=lambda: dict(_DEFAULT_EMOTION_TIERS)
    )
    vocal_tiers: Dict[VocalType, TierName] = Field(
        default_factory=lambda: dict(_DEFAULT_VOCAL_TIERS)
    )
    intensities: Dict[EmotionLabel, float] = Field(
        default_factory=lambda: dict(_DEFAULT_INTENSITIES)
    )
    transitions: Dict[EmotionLabel, Dict[EmotionLabel, int]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in _DEFAULT_TRANSITIONS.items()}
    )
    default_transition_ms: int = Field(DEFAULT_TRANSITION_MS, ge=0)

    @model_validator(mode="after")
    def _validate_coverage(self) -> "ParameterTables":
        if EmotionLabel.sensual not in self.bases:
            raise ValueError("bases must define the 'sensual' fallback entry")
        if TierName.sensual not in self.tiers:
            raise ValueError("tiers must define the 'sensual' fallback tier")
        missing = set(self.emotion_tiers.values()) | set(self.vocal_tiers.values())
        missing -= set(self.tiers)
        if missing:
            raise ValueError(f"tier mapping references undefined tiers: {sorted(missing)}")
        return self


# ---------- Lexical cues ----------


class KeywordTables(BaseModel):
    """
    Substring cues for the lexical classifier. Dict order is the match priority;
    the first category with any hit wins.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    emotions: Dict[EmotionLabel, List[str]] = Field(
        default_factory=lambda: {
            EmotionLabel.aroused: ["gémis", "soupir", "excit"],
            EmotionLabel.climax: ["extase", "jouir", "orgasme"],
            EmotionLabel.whisper: ["murmure", "chuchot"],
            EmotionLabel.intense: ["fort", "intense", "violent"],
            EmotionLabel.tender: ["doux", "tendre"],
            EmotionLabel.sensual: [
                "désir",
                "caresse",
                "peau",
                "frisson",
                "sensuel",
                "chaleur",
            ],
        }
    )
    scenes: Dict[str, List[str]] = Field(
        default_factory=lambda: {
            "beach": ["plage", "mer", "vague"],
            "forest": ["forêt", "bois", "arbre"],
            "rain": ["pluie", "orage"],
            "city": ["ville", "rue"],
        }
    )
    # (pattern, reported sound), matched case-insensitively.
    interjections: List[Tuple[str, str]] = Field(
        default_factory=lambda: [
            (r"m+h+h+", "mhhh"),
            (r"a+h+h+", "ahhh"),
            (r"o+h+h+", "ohhh"),
            (r"h+a+h+", "hahh"),
            (r"o+u+i+", "oui"),
        ]
    )
    default_emotion: EmotionLabel = EmotionLabel.sensual
    default_scene: str = "bedroom"


# ---------- Ambient sound catalog ----------

_OCEAN = ["ocean-waves-112906.mp3", "sea-and-seagull-wave-5932.mp3"]
_SEA = ["ocean-waves-112906.mp3", "sea-wave-34088.mp3"]
_FOREST = ["forest-ambience-296528.mp3", "bird-333090.mp3"]
_RAIN = ["light-spring-rain-nature-sounds-331710.mp3", "calm-nature-sounds-196258.mp3"]
_CITY = ["city-ambience-9270.mp3", "opening-the-front-door-210347.mp3"]
_BEDROOM = ["mid-nights-sound-291477.mp3", "main-door-opening-closing-38280.mp3"]
_RIVER = [
    "relaxing-mountains-rivers-streams-running-water-18178.mp3",
    "river-26984.mp3",
]
_WIND = ["windy-hut-fx-64675.mp3"]
_NATURE = ["calm-nature-sounds-196258.mp3", "bird-333090.mp3"]
_DOOR = ["main-door-opening-closing-38280.mp3", "opening-the-front-door-210347.mp3"]
_NIGHT = ["mid-nights-sound-291477.mp3"]


class SoundCatalog(BaseModel):
    """Scene keys mapped to ambient sound ids; order is the match priority."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    entries: Dict[str, List[str]] = Field(
        default_factory=lambda: {
            "plage": _OCEAN,
            "mer": _SEA,
            "océan": _OCEAN,
            "forêt": _FOREST,
            "bois": _FOREST,
            "pluie": _RAIN,
            "orage": _RAIN,
            "ville": _CITY,
            "rue": _CITY,
            "chambre": _BEDROOM,
            "lit": _BEDROOM,
            "ruisseau": _RIVER,
            "rivière": _RIVER,
            "vent": _WIND,
            "nature": _NATURE,
            "porte": _DOOR,
            "nuit": _NIGHT,
            "beach": _OCEAN,
            "sea": _SEA,
            "ocean": _OCEAN,
            "forest": _FOREST,
            "woods": _FOREST,
            "rain": _RAIN,
            "storm": _RAIN,
            "city": _CITY,
            "street": _CITY,
            "bedroom": _BEDROOM,
            "bed": _BEDROOM,
            "river": _RIVER,
            "stream": _RIVER,
            "wind": _WIND,
            "door": _DOOR,
            "night": _NIGHT,
        }
    )
    default: List[str] = Field(
        default_factory=lambda: ["calm-nature-sounds-196258.mp3"], min_length=1
    )

    @model_validator(mode="after")
    def _validate_entries(self) -> "SoundCatalog":
        empty = [key for key, sounds in self.entries.items() if not sounds]
        if empty:
            raise ValueError(f"catalog entries without sounds: {empty}")
        return self


class TableSet(BaseModel):
    """All tables in one document, as stored in an override JSON file."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    parameters: ParameterTables = Field(default_factory=ParameterTables)
    keywords: KeywordTables = Field(default_factory=KeywordTables)
    sounds: SoundCatalog = Field(default_factory=SoundCatalog)


def load_tables(path: Optional[Path | str] = None) -> TableSet:
    """Return the built-in tables, or the ones stored in `path` (JSON)."""
    if not path:
        return TableSet()
    table_path = Path(path)
    if not table_path.exists():
        raise FileNotFoundError(f"Table override file {table_path} does not exist.")
    tables = TableSet.model_validate_json(table_path.read_text())
    logger.info("tables.loaded path={path}", path=table_path)
    return tables
