"""
Remote segment analysis through a chat model.

The model is asked for a JSON document describing segments and their vocal
attributes. Replies are free text, so the JSON is recovered with an ordered
list of extraction strategies before validation against the reply contract.
"""

from __future__ import annotations

import json
import re
from typing import Callable, List, Optional, Sequence, Tuple

from langchain_core.callbacks import UsageMetadataCallbackHandler
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.runnables import RunnableConfig
from loguru import logger
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from prosody_timeline.ambience import SoundMapper
from prosody_timeline.errors import MalformedSegmentError, RemoteAnalysisError
from prosody_timeline.params import (
    ParameterEngine,
    breathing_for,
    clamp_expressiveness,
    clamp_stability,
    format_pitch,
    format_rate,
    volume_for,
)
from prosody_timeline.segments import (
    AnalysisSource,
    BreathingStyle,
    EmotionLabel,
    Environment,
    Interjection,
    Segment,
    SpeechRate,
    SynthesisParams,
    VocalType,
    coerce_category,
)
from prosody_timeline.tables import MAX_RATE_PERCENT, TierName

DEFAULT_SCENE = "chambre"
MIN_CLEAN_TEXT_CHARS = 3

# ─────────────────────────────────────────────────────────────────────────────
# Reply contract. Lenient on naming: older prompts used ElevenLabs field names.
# ─────────────────────────────────────────────────────────────────────────────

_NUMBER_RE = re.compile(r"[-+]?\d+(?:[.,]\d+)?")


def _percent_number(value: object) -> object:
    """Numbers pass through; "-12%" or "24 %" become floats; other text → None."""
    if isinstance(value, str):
        match = _NUMBER_RE.search(value)
        return float(match.group().replace(",", ".")) if match else None
    return value


def _percent_text(value: object) -> object:
    """Rates may arrive as 24, 24.5 or "24%"; keep them as text."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return f"{value:g}%"
    return value


class RemoteVocal(BaseModel):
    model_config = ConfigDict(extra="ignore")

    intensity: Optional[float] = None
    type: Optional[str] = None
    rhythm: Optional[str] = None
    pitch: Optional[float] = None

    @field_validator("intensity", "pitch", mode="before")
    @classmethod
    def coerce_numbers(cls, value: object) -> object:
        return _percent_number(value)


class RemoteExpressions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    breathing: Optional[str] = None
    sounds: List[str] = Field(default_factory=list)
    duration_ms: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("durationMs", "duration", "duration_ms")
    )


class RemoteSynthesis(BaseModel):
    model_config = ConfigDict(extra="ignore")

    stability: Optional[float] = None
    expressiveness: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("expressiveness", "similarity_boost")
    )
    rate_percent: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ratePercentStr", "speed", "rate")
    )
    pitch_shift: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("pitchShift", "pitch_shift")
    )

    @field_validator("rate_percent", mode="before")
    @classmethod
    def coerce_rate(cls, value: object) -> object:
        return _percent_text(value)

    @field_validator("stability", "expressiveness", "pitch_shift", mode="before")
    @classmethod
    def coerce_numbers(cls, value: object) -> object:
        return _percent_number(value)


class RemoteEnvironment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    suggested_sound: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("suggestedSound", "suggested_sound")
    )


class RemoteSegment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str = Field(min_length=1)
    vocal: RemoteVocal = Field(default_factory=RemoteVocal)
    expressions: RemoteExpressions = Field(default_factory=RemoteExpressions)
    synthesis: RemoteSynthesis = Field(
        default_factory=RemoteSynthesis,
        validation_alias=AliasChoices("synthesisParams", "elevenlabs", "synthesis"),
    )
    environment: Optional[RemoteEnvironment] = None


class RemoteReply(BaseModel):
    model_config = ConfigDict(extra="ignore")

    segments: List[RemoteSegment]


# ─────────────────────────────────────────────────────────────────────────────
# Prompts
# ─────────────────────────────────────────────────────────────────────────────

SYSTEM_PROMPT = (
    "You analyse French sensual fiction for expressive audio narration. "
    "Answer with a single JSON document and nothing else."
)

_REPLY_EXAMPLE = json.dumps(
    {
        "segments": [
            {
                "text": "...",
                "vocal": {"intensity": 45, "type": "sensuel", "rhythm": "lent", "pitch": -12},
                "expressions": {"breathing": "profonde", "sounds": ["mmmh"], "durationMs": 600},
                "synthesisParams": {
                    "stability": 0.55,
                    "expressiveness": 0.88,
                    "ratePercentStr": "24%",
                    "pitchShift": -12,
                },
                "environment": {
                    "type": "chambre",
                    "suggestedSound": "mid-nights-sound-291477.mp3",
                },
            }
        ]
    },
    ensure_ascii=False,
)


def _span(bounds: Sequence[float], fmt: str = "{:g}") -> str:
    return f"{fmt.format(bounds[0])}..{fmt.format(bounds[1])}"


def build_prompt(text: str, engine: ParameterEngine) -> str:
    """User prompt enumerating the numeric bounds taken from the engine tables."""
    tiers = engine.tables.tiers
    lines = [
        "Split the text into narration segments and give vocal parameters for each.",
        "",
        "HARD LIMITS:",
        f"- Speech rate never above {MAX_RATE_PERCENT:g}% (climax included).",
        "- Intensity rises gradually from 0 to 100 across the text.",
        "- Keep transitions between segments smooth.",
        "",
        "VOCAL TIERS (intensity band: rate, pitch, stability, expressiveness):",
    ]
    labels = {
        TierName.whisper: "murmure",
        TierName.sensual: "sensuel",
        TierName.aroused: "gémissement",
        TierName.climax: "cri",
    }
    for name, tier in tiers.items():
        lines.append(
            f"- {labels.get(name, name.value)} ({_span(tier.intensity)}%): "
            f"rate {_span(tier.rate)}%, pitch {_span(tier.pitch, '{:+g}')}%, "
            f"stability {_span(tier.stability, '{:.2f}')}, "
            f"expressiveness {_span(tier.expressiveness, '{:.2f}')}"
        )
    lines += [
        "",
        "BREATHING: légère (0-30%), profonde (30-70%), haletante (70-100%)",
        'SOUNDS: "mmmh", "ahhh", "ohhh" when the context calls for them',
        "RHYTHM: très lent, lent, modéré, rapide",
        "ENVIRONMENTS: chambre, plage, forêt, pluie, ville",
        "",
        "Required JSON:",
        _REPLY_EXAMPLE,
        "",
        f"TEXT: {text}",
    ]
    return "\n".join(lines)


# ─────────────────────────────────────────────────────────────────────────────
# JSON extraction strategies (tried in order)
# ─────────────────────────────────────────────────────────────────────────────

Extractor = Callable[[str], Optional[str]]

_FENCED_JSON_RE = re.compile(r"```json\s*\n([\s\S]*?)\n\s*```", re.IGNORECASE)
_FENCED_ANY_RE = re.compile(r"```[\w-]*\s*\n([\s\S]*?)\n\s*```")
_SEGMENTS_ARRAY_RE = re.compile(r'"segments"\s*:\s*\[([\s\S]*)\]')

_LEADING_NUMBERS_RE = re.compile(r"^[\s\d.]*(?=[{\[\"])")
_TRAILING_NUMBERS_RE = re.compile(r"(?<=[}\]])[\s\d.]*$")
_INLINE_NUMBERS_RE = re.compile(r"(?m)^[ \t]*\d+\.[ \t]+(?=[{\[\"])")


def extract_fenced_json(content: str) -> Optional[str]:
    match = _FENCED_JSON_RE.search(content)
    return match.group(1) if match else None


def extract_fenced_any(content: str) -> Optional[str]:
    match = _FENCED_ANY_RE.search(content)
    return match.group(1) if match else None


def extract_brace_span(content: str) -> Optional[str]:
    """First `{` up to its matching `}` (string-aware); last `}` if unbalanced."""
    start = content.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for pos in range(start, len(content)):
        ch = content[pos]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return content[start : pos + 1]
    end = content.rfind("}")
    return content[start : end + 1] if end > start else None


def extract_segments_array(content: str) -> Optional[str]:
    """Bare `"segments": [...]` span, rebuilt into a full reply object."""
    match = _SEGMENTS_ARRAY_RE.search(content)
    return f'{{"segments":[{match.group(1)}]}}' if match else None


EXTRACTORS: List[Extractor] = [
    extract_fenced_json,
    extract_fenced_any,
    extract_brace_span,
    extract_segments_array,
]


def clean_candidate(candidate: str) -> str:
    """Strip list numbering around/inside a candidate and wrap bare segment lists."""
    cleaned = _INLINE_NUMBERS_RE.sub("", candidate)
    cleaned = _LEADING_NUMBERS_RE.sub("", cleaned)
    cleaned = _TRAILING_NUMBERS_RE.sub("", cleaned).strip()
    if cleaned.startswith('"segments"'):
        cleaned = f"{{{cleaned}}}"
    elif cleaned and not cleaned.startswith("{"):
        if cleaned.startswith("["):
            cleaned = cleaned[1:-1] if cleaned.endswith("]") else cleaned[1:]
        cleaned = f'{{"segments":[{cleaned}]}}'
    return cleaned


def _validate(candidate: str, strategy: str) -> Tuple[Optional[RemoteReply], bool]:
    """(reply, candidate_was_json); the flag tells contract mismatches from junk."""
    try:
        return RemoteReply.model_validate_json(candidate), True
    except ValidationError as exc:
        errors = exc.errors()
        logger.debug(
            "analysis.candidate_rejected strategy={strategy} errors={errors}",
            strategy=strategy,
            errors=len(errors),
        )
        return None, not any(error["type"] == "json_invalid" for error in errors)


def parse_reply(content: str, extractors: Sequence[Extractor] = EXTRACTORS) -> RemoteReply:
    """Return the first candidate that validates; RemoteAnalysisError otherwise."""
    saw_json = False
    for extractor in extractors:
        candidate = extractor(content)
        if not candidate:
            continue
        cleaned = clean_candidate(candidate)
        reply, is_json = _validate(cleaned, extractor.__name__)
        saw_json = saw_json or is_json
        if reply is None and '"segments"' not in cleaned:
            # A lone segment object without the outer wrapper.
            reply, is_json = _validate(f'{{"segments":[{cleaned}]}}', extractor.__name__)
            saw_json = saw_json or is_json
        if reply is None:
            continue
        logger.debug(
            "analysis.candidate_accepted strategy={strategy} segments={count}",
            strategy=extractor.__name__,
            count=len(reply.segments),
        )
        return reply
    if saw_json:
        raise RemoteAnalysisError("invalid-format", "reply does not match contract")
    raise RemoteAnalysisError("invalid-format", "no JSON candidate in reply")


# ─────────────────────────────────────────────────────────────────────────────
# Segment text cleanup
# ─────────────────────────────────────────────────────────────────────────────

_TEXT_CLEANUPS = [
    (re.compile(r"^\s*(?:\d+[.)]\s*)+"), ""),
    (re.compile(r"\n\s*\d+[.)]\s*"), "\n"),
    (re.compile(r"\s+\d+[.)]?\s*$"), ""),
]


def clean_segment_text(text: str) -> str:
    """Strip enumeration artifacts; MalformedSegmentError if too little remains."""
    cleaned = text
    for pattern, replacement in _TEXT_CLEANUPS:
        cleaned = pattern.sub(replacement, cleaned)
    cleaned = cleaned.strip()
    if len(cleaned) < MIN_CLEAN_TEXT_CHARS:
        raise MalformedSegmentError(text, cleaned)
    return cleaned


def restore_segment_text(text: str) -> str:
    try:
        return clean_segment_text(text)
    except MalformedSegmentError as exc:
        logger.warning(
            "analysis.segment_text_restored original={original!r} cleaned={cleaned!r}",
            original=exc.original,
            cleaned=exc.cleaned,
        )
        return text.strip() or text


def _parse_percent(value: str) -> Optional[float]:
    match = re.search(r"-?\d+(?:\.\d+)?", value)
    return float(match.group()) if match else None


def emotion_from_vocal(intensity: float, vocal_type: Optional[VocalType]) -> EmotionLabel:
    if vocal_type == VocalType.cry or intensity > 90:
        return EmotionLabel.climax
    if vocal_type == VocalType.moan or intensity > 80:
        return EmotionLabel.aroused
    if vocal_type == VocalType.whisper:
        return EmotionLabel.whisper
    if intensity > 70:
        return EmotionLabel.intense
    if intensity < 50:
        return EmotionLabel.tender
    return EmotionLabel.sensual


def progression_at(index: int, total: int) -> float:
    return index / (total - 1) if total > 1 else 0.0


# ─────────────────────────────────────────────────────────────────────────────
# Adapter
# ─────────────────────────────────────────────────────────────────────────────


class RemoteAnalyzer:
    """Asks a chat model for segments and turns its reply into Segments."""

    def __init__(
        self,
        llm: BaseChatModel,
        engine: Optional[ParameterEngine] = None,
        mapper: Optional[SoundMapper] = None,
        extractors: Sequence[Extractor] = EXTRACTORS,
    ) -> None:
        self.llm = llm
        self.engine = engine or ParameterEngine()
        self.mapper = mapper or SoundMapper()
        self.extractors = list(extractors)

    def request(self, text: str) -> str:
        messages = [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=build_prompt(text, self.engine)),
        ]
        callback = UsageMetadataCallbackHandler()
        try:
            response = self.llm.invoke(
                messages, config=RunnableConfig(callbacks=[callback])
            )
        except Exception as exc:  # noqa: BLE001
            raise RemoteAnalysisError("network", str(exc)) from exc
        logger.debug("analysis.tokens usage={usage}", usage=callback.usage_metadata)
        content = response.content
        if isinstance(content, list):
            content = "".join(
                part if isinstance(part, str) else str(part.get("text", ""))
                for part in content
            )
        logger.debug("analysis.reply chars={chars}", chars=len(content))
        return content

    def analyze(self, text: str) -> List[Segment]:
        logger.info("analysis.remote.start chars={chars}", chars=len(text))
        reply = parse_reply(self.request(text), self.extractors)
        if not reply.segments:
            raise RemoteAnalysisError("empty", "reply contained no segments")
        total = len(reply.segments)
        segments = [
            self.to_segment(raw, progression_at(index, total))
            for index, raw in enumerate(reply.segments)
        ]
        logger.info("analysis.remote.done segments={count}", count=len(segments))
        return segments

    def to_segment(self, raw: RemoteSegment, progression: float) -> Segment:
        engine = self.engine
        vocal = raw.vocal
        intensity = max(0.0, min(100.0, vocal.intensity if vocal.intensity is not None else 50.0))
        vocal_type = (
            coerce_category(VocalType, vocal.type, VocalType.normal)
            if vocal.type
            else None
        )
        emotion = emotion_from_vocal(intensity, vocal_type)
        tier = engine.tier(emotion, vocal_type)
        derived = engine.derive(emotion, intensity, progression, vocal_type)

        remote = raw.synthesis
        rate_value = _parse_percent(remote.rate_percent) if remote.rate_percent else None
        rate_percent = (
            format_rate(engine.clamp_rate(rate_value, tier))
            if rate_value is not None
            else derived.rate_percent
        )
        pitch = remote.pitch_shift if remote.pitch_shift is not None else vocal.pitch
        synthesis = SynthesisParams(
            stability=clamp_stability(remote.stability)
            if remote.stability is not None
            else derived.stability,
            expressiveness=clamp_expressiveness(remote.expressiveness)
            if remote.expressiveness is not None
            else derived.expressiveness,
            rate_percent=rate_percent,
            pitch_percent=format_pitch(pitch) if pitch is not None else derived.pitch_percent,
        )

        expressions = raw.expressions
        duration_ms = expressions.duration_ms if expressions.duration_ms is not None else 500
        interjections = [
            Interjection(sound=sound.strip(), duration_ms=max(0, duration_ms))
            for sound in expressions.sounds
            if sound and sound.strip()
        ]

        scene = (raw.environment.type if raw.environment else None) or DEFAULT_SCENE
        sounds = self.mapper.map_environment(scene)
        suggested = raw.environment.suggested_sound if raw.environment else None
        if suggested and suggested in self.mapper.known_sounds and suggested not in sounds:
            sounds = [suggested, *sounds]

        return Segment(
            text=restore_segment_text(raw.text),
            emotion=emotion,
            intensity=intensity,
            vocal_type=vocal_type,
            rhythm=coerce_category(SpeechRate, vocal.rhythm, SpeechRate.moderate),
            pitch_shift_percent=pitch
            if pitch is not None
            else _parse_percent(synthesis.pitch_percent) or 0.0,
            breathing=coerce_category(
                BreathingStyle, expressions.breathing, breathing_for(intensity)
            ),
            volume=volume_for(intensity),
            interjections=interjections,
            environment=Environment(label=scene, sounds=sounds),
            synthesis=synthesis,
            source=AnalysisSource.remote,
        )
