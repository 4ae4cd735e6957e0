from __future__ import annotations

from typing import Optional

from loguru import logger

from prosody_timeline.segments import (
    BreathingStyle,
    EmotionLabel,
    SynthesisParams,
    VocalType,
    Volume,
    coerce_category,
    parse_category,
)
from prosody_timeline.errors import UnknownCategoryError
from prosody_timeline.tables import (
    EXPRESSIVENESS_RANGE,
    INTENSITY_STABILITY_DAMPING,
    MAX_RATE_PERCENT,
    PROGRESSION_EXPRESSIVENESS_GAIN,
    STABILITY_RANGE,
    ParameterTables,
    Tier,
    TierName,
)


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def format_rate(value: float) -> str:
    return f"{value:g}%"


def format_pitch(value: float) -> str:
    return f"{value:+g}%"


def clamp_stability(value: float) -> float:
    return round(_clamp(value, *STABILITY_RANGE), 4)


def clamp_expressiveness(value: float) -> float:
    return round(_clamp(value, *EXPRESSIVENESS_RANGE), 4)


def volume_for(intensity: float) -> Volume:
    if intensity > 80:
        return Volume.loud
    if intensity < 50:
        return Volume.soft
    return Volume.medium


def breathing_for(intensity: float) -> BreathingStyle:
    """Breathing band for an intensity when no explicit style is known."""
    if intensity >= 70:
        return BreathingStyle.panting
    if intensity >= 30:
        return BreathingStyle.deep
    return BreathingStyle.light


class ParameterEngine:
    """Maps affect + intensity + narrative position onto bounded synthesis knobs."""

    def __init__(self, tables: Optional[ParameterTables] = None) -> None:
        self.tables = tables or ParameterTables()

    # —————————————————— Lookups ——————————————————

    def emotion(self, label: object) -> EmotionLabel:
        """Resolve any label to a known emotion; unknown → sensual."""
        emotion = coerce_category(EmotionLabel, label, EmotionLabel.sensual)
        if emotion not in self.tables.bases:
            return EmotionLabel.sensual
        return emotion

    def tier_name(
        self, emotion: object, vocal_type: Optional[object] = None
    ) -> TierName:
        """Vocal type decides the tier when known; otherwise the emotion does."""
        if vocal_type is not None:
            vocal = coerce_category(VocalType, vocal_type, VocalType.normal)
            if vocal in self.tables.vocal_tiers:
                return self.tables.vocal_tiers[vocal]
        label = self.emotion(emotion)
        return self.tables.emotion_tiers.get(label, TierName.sensual)

    def tier(self, emotion: object, vocal_type: Optional[object] = None) -> Tier:
        name = self.tier_name(emotion, vocal_type)
        return self.tables.tiers.get(name, self.tables.tiers[TierName.sensual])

    def default_intensity(self, emotion: object) -> float:
        return float(self.tables.intensities.get(self.emotion(emotion), 50.0))

    # —————————————————— Rate & pitch ——————————————————

    def clamp_rate(self, value: float, tier: Tier) -> float:
        return _clamp(value, tier.rate_floor, MAX_RATE_PERCENT)

    def representative_rate(self, emotion: EmotionLabel, tier: Tier) -> float:
        low, high = tier.rate
        value = high if emotion == EmotionLabel.climax else (low + high) / 2
        return self.clamp_rate(value, tier)

    def representative_pitch(self, emotion: EmotionLabel, tier: Tier) -> float:
        low, high = tier.pitch
        if emotion == EmotionLabel.climax:
            return float(high)
        return float(round((low + high) / 2))

    # —————————————————— Derivation ——————————————————

    def scores(
        self, emotion: object, intensity: float, progression: float
    ) -> tuple[float, float]:
        """(stability, expressiveness) after intensity/progression adjustment."""
        label = self.emotion(emotion)
        base = self.tables.bases[label]
        intensity = _clamp(float(intensity), 0.0, 100.0)
        progression = _clamp(float(progression), 0.0, 1.0)
        stability = base.stability * (
            1 - intensity / 100 * INTENSITY_STABILITY_DAMPING
        )
        expressiveness = (
            base.expressiveness + progression * PROGRESSION_EXPRESSIVENESS_GAIN
        )
        return clamp_stability(stability), clamp_expressiveness(expressiveness)

    def derive(
        self,
        emotion: object,
        intensity: float,
        progression: float,
        vocal_type: Optional[object] = None,
    ) -> SynthesisParams:
        label = self.emotion(emotion)
        tier = self.tier(label, vocal_type)
        stability, expressiveness = self.scores(label, intensity, progression)
        params = SynthesisParams(
            stability=stability,
            expressiveness=expressiveness,
            rate_percent=format_rate(self.representative_rate(label, tier)),
            pitch_percent=format_pitch(self.representative_pitch(label, tier)),
        )
        logger.debug(
            "params.derive emotion={emotion} intensity={intensity} progression={progression:.2f} "
            "stability={stability} expressiveness={expressiveness} rate={rate} pitch={pitch}",
            emotion=label.value,
            intensity=intensity,
            progression=progression,
            stability=params.stability,
            expressiveness=params.expressiveness,
            rate=params.rate_percent,
            pitch=params.pitch_percent,
        )
        return params

    def transition_duration(self, source: object, target: object) -> int:
        """Milliseconds to move between two affects; unlisted pairs use the default."""
        try:
            source_label = parse_category(EmotionLabel, source)
            target_label = parse_category(EmotionLabel, target)
        except UnknownCategoryError:
            return self.tables.default_transition_ms
        row = self.tables.transitions.get(source_label, {})
        return row.get(target_label, self.tables.default_transition_ms)
