from __future__ import annotations

import unicodedata
from enum import Enum
from typing import Dict, List, Optional, Type, TypeVar

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from prosody_timeline.errors import UnknownCategoryError

# ---------- Closed vocabularies ----------


class EmotionLabel(str, Enum):
    """Vocal affect attached to a segment."""

    sensual = "sensual"
    aroused = "aroused"
    climax = "climax"
    whisper = "whisper"
    intense = "intense"
    tender = "tender"


class VocalType(str, Enum):
    whisper = "whisper"
    normal = "normal"
    moan = "moan"
    cry = "cry"


class SpeechRate(str, Enum):
    very_slow = "very-slow"
    slow = "slow"
    moderate = "moderate"
    fast = "fast"


class BreathingStyle(str, Enum):
    light = "light"
    deep = "deep"
    panting = "panting"


class Volume(str, Enum):
    soft = "soft"
    medium = "medium"
    loud = "loud"


class TransitionKind(str, Enum):
    """How a segment hands over to the next one."""

    crossfade = "crossfade"
    cut = "cut"
    overlap = "overlap"


class AnalysisSource(str, Enum):
    remote = "remote"
    local = "local"
    default = "default"


# Remote replies mix French and English vocabulary; keys are accent-free.
_ALIASES: Dict[Type[Enum], Dict[str, str]] = {
    EmotionLabel: {
        "sensuel": "sensual",
        "excite": "aroused",
        "jouissance": "climax",
        "murmure": "whisper",
        "doux": "tender",
    },
    VocalType: {
        "murmure": "whisper",
        "chuchotement": "whisper",
        "sensuel": "normal",
        "sensual": "normal",
        "gemissement": "moan",
        "excite": "moan",
        "cri": "cry",
        "jouissance": "cry",
    },
    SpeechRate: {
        "tres lent": "very-slow",
        "tres_lent": "very-slow",
        "very slow": "very-slow",
        "lent": "slow",
        "modere": "moderate",
        "normal": "moderate",
        "rapide": "fast",
    },
    BreathingStyle: {
        "legere": "light",
        "leger": "light",
        "profonde": "deep",
        "profond": "deep",
        "haletante": "panting",
        "haletant": "panting",
    },
    Volume: {
        "doux": "soft",
        "fort": "loud",
    },
}

E = TypeVar("E", bound=Enum)


def strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def parse_category(enum_cls: Type[E], value: object) -> E:
    """Resolve `value` into `enum_cls`, accepting French aliases.

    Raises UnknownCategoryError when nothing matches.
    """
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str) or not value.strip():
        raise UnknownCategoryError(enum_cls.__name__, value)
    key = strip_accents(value.strip().lower())
    key = _ALIASES.get(enum_cls, {}).get(key, key)
    try:
        return enum_cls(key)
    except ValueError:
        raise UnknownCategoryError(enum_cls.__name__, value) from None


def coerce_category(enum_cls: Type[E], value: object, default: E) -> E:
    """Like parse_category but falls back to `default` (logged)."""
    if value is None:
        return default
    try:
        return parse_category(enum_cls, value)
    except UnknownCategoryError as exc:
        logger.warning(
            "category.unknown kind={kind} value={value!r} default={default}",
            kind=exc.kind,
            value=value,
            default=default.value,
        )
        return default


# ---------- Segment parts ----------


class Interjection(BaseModel):
    """Non-lexical vocalization placed after the segment text."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    sound: str = Field(min_length=1, description="Vocalization, e.g. 'mmmh'.")
    duration_ms: int = Field(500, ge=0, description="Length of the vocalization.")


class Environment(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    label: str = Field(description="Scene label as detected (e.g. 'bedroom', 'plage').")
    sounds: List[str] = Field(
        default_factory=list, description="Ambient sound file ids, best first."
    )


class SynthesisParams(BaseModel):
    """Exact knobs handed to the speech-synthesis collaborator."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    stability: float = Field(ge=0.15, le=0.98, description="Lower = more variation.")
    expressiveness: float = Field(
        ge=0.15, le=0.98, description="Similarity/expressiveness boost."
    )
    rate_percent: str = Field(description="Prosody rate, e.g. '24%'. Never above 35%.")
    pitch_percent: str = Field(description="Signed prosody pitch, e.g. '-12%'.")

    @property
    def rate_value(self) -> float:
        return float(self.rate_percent.rstrip("%"))


class Transition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: TransitionKind
    duration: float = Field(ge=0.0, description="Seconds.")


class Timing(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    start_time: float = Field(ge=0.0)
    duration: float = Field(gt=0.0)
    fade_in: float = Field(ge=0.0)
    fade_out: float = Field(ge=0.0)
    transition: Transition
    emotion_transition_ms: int = Field(
        0, ge=0, description="Affect change duration from the previous segment."
    )


class Segment(BaseModel):
    """
    One synthesis/timing unit. Built by an analysis producer, then finalized
    by the timeline assembler; never mutated afterwards.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    text: str = Field(min_length=1)
    emotion: EmotionLabel = EmotionLabel.sensual
    intensity: float = Field(50.0, ge=0.0, le=100.0)
    vocal_type: Optional[VocalType] = None
    rhythm: SpeechRate = SpeechRate.slow
    pitch_shift_percent: float = 0.0
    breathing: BreathingStyle = BreathingStyle.light
    volume: Volume = Volume.medium
    interjections: List[Interjection] = Field(default_factory=list)
    environment: Environment
    synthesis: SynthesisParams
    timing: Optional[Timing] = None
    source: AnalysisSource = AnalysisSource.local
