from __future__ import annotations

from typing import List, Optional, Sequence

from pydantic import ConfigDict
from pydantic_xml import BaseXmlModel, attr, element

from prosody_timeline.segments import Segment
from prosody_timeline.timeline import total_duration


class CueSegment(BaseXmlModel, tag="segment", skip_empty=True):
    """One timed segment as written to the cue sheet."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    index: int = attr(ge=0)
    emotion: str = attr()
    intensity: float = attr()
    source: str = attr()
    start: float = attr(description="Start time in seconds.")
    duration: float = attr()
    fade_in: float = attr(name="fade-in")
    fade_out: float = attr(name="fade-out")
    transition: str = attr()
    transition_duration: float = attr(name="transition-duration")
    rate: str = attr()
    pitch: str = attr()
    stability: float = attr()
    expressiveness: float = attr()
    breathing: str = attr()
    environment: str = attr()
    text: str = element(tag="text")
    sounds: List[str] = element(tag="sound", default_factory=list)
    interjections: List[str] = element(tag="interjection", default_factory=list)


class CueSheet(BaseXmlModel, tag="cue-sheet", skip_empty=True):
    model_config = ConfigDict(frozen=True, extra="forbid")

    text_name: Optional[str] = attr(name="text-name", default=None)
    total: float = attr(description="End time of the last segment, seconds.")
    segments: List[CueSegment] = element(default_factory=list)

    def render(self) -> str:
        raw = self.to_xml(encoding="unicode", pretty_print=True, skip_empty=True)
        return raw.decode("utf-8") if isinstance(raw, bytes) else raw


def build_cue_sheet(timeline: Sequence[Segment], text_name: Optional[str] = None) -> CueSheet:
    entries: List[CueSegment] = []
    for index, segment in enumerate(timeline):
        timing = segment.timing
        if timing is None:
            raise ValueError(f"Segment {index} has no timing; assemble the timeline first.")
        entries.append(
            CueSegment(
                index=index,
                emotion=segment.emotion.value,
                intensity=segment.intensity,
                source=segment.source.value,
                start=round(timing.start_time, 3),
                duration=round(timing.duration, 3),
                fade_in=round(timing.fade_in, 3),
                fade_out=round(timing.fade_out, 3),
                transition=timing.transition.kind.value,
                transition_duration=timing.transition.duration,
                rate=segment.synthesis.rate_percent,
                pitch=segment.synthesis.pitch_percent,
                stability=segment.synthesis.stability,
                expressiveness=segment.synthesis.expressiveness,
                breathing=segment.breathing.value,
                environment=segment.environment.label,
                text=segment.text,
                sounds=list(segment.environment.sounds),
                interjections=[item.sound for item in segment.interjections],
            )
        )
    return CueSheet(
        text_name=text_name,
        total=round(total_duration(timeline), 3),
        segments=entries,
    )
