"""
Timeline assembly: estimated durations, fades and boundary transitions.

Segments are laid end to end in input order. A crossfading segment overlaps
the next one by its transition duration; every other kind leaves the next
start exactly at the end of the current segment.
"""

from __future__ import annotations

import re
from typing import Collection, Dict, List, Optional, Sequence

from loguru import logger

from prosody_timeline.params import ParameterEngine
from prosody_timeline.segments import (
    Segment,
    SpeechRate,
    Timing,
    Transition,
    TransitionKind,
)

WORDS_PER_SECOND: Dict[SpeechRate, float] = {
    SpeechRate.very_slow: 1.0,
    SpeechRate.slow: 1.5,
    SpeechRate.moderate: 2.0,
    SpeechRate.fast: 2.5,
}

TRANSITION_SECONDS: Dict[TransitionKind, float] = {
    TransitionKind.crossfade: 1.0,
    TransitionKind.overlap: 0.5,
    TransitionKind.cut: 0.2,
}

MAX_FADE_SECONDS = 1.0
FADE_RATIO = 0.1
# Keeps Timing.duration > 0 for text made only of whitespace-free symbols.
_MIN_DURATION = 0.01

_TERMINAL_RE = re.compile(r"[.!?]$")


def word_count(text: str) -> int:
    return len(text.split())


def estimate_duration(text: str, rate: SpeechRate) -> float:
    return word_count(text) / WORDS_PER_SECOND[rate]


def fade_for(duration: float) -> float:
    return min(MAX_FADE_SECONDS, duration * FADE_RATIO)


def transition_kind(text: str) -> TransitionKind:
    """Choose the hand-over from the segment's own punctuation."""
    if "..." in text or "…" in text:
        return TransitionKind.crossfade
    if _TERMINAL_RE.search(text.strip()):
        return TransitionKind.cut
    return TransitionKind.overlap


class TimelineAssembler:
    def __init__(self, engine: Optional[ParameterEngine] = None) -> None:
        self.engine = engine or ParameterEngine()

    def timing_for(self, segment: Segment, start_time: float, previous: Optional[Segment]) -> Timing:
        duration = max(estimate_duration(segment.text, segment.rhythm), _MIN_DURATION)
        fade = fade_for(duration)
        kind = transition_kind(segment.text)
        emotion_ms = (
            self.engine.transition_duration(previous.emotion, segment.emotion)
            if previous is not None
            else 0
        )
        return Timing(
            start_time=start_time,
            duration=duration,
            fade_in=fade,
            fade_out=fade,
            transition=Transition(kind=kind, duration=TRANSITION_SECONDS[kind]),
            emotion_transition_ms=emotion_ms,
        )

    def assemble(self, segments: Sequence[Segment]) -> List[Segment]:
        """Return copies of `segments` with timing attached, in the same order."""
        timed: List[Segment] = []
        current = 0.0
        last_index = len(segments) - 1
        previous: Optional[Segment] = None
        for index, segment in enumerate(segments):
            timing = self.timing_for(segment, current, previous)
            timed.append(segment.model_copy(update={"timing": timing}))
            current += timing.duration
            if timing.transition.kind == TransitionKind.crossfade and index < last_index:
                current -= timing.transition.duration
            # A crossfade longer than its segment must not move the next start backwards.
            current = max(current, timing.start_time)
            previous = segment
        if timed:
            logger.debug(
                "timeline.assembled segments={count} total={total:.2f}s",
                count=len(timed),
                total=total_duration(timed),
            )
        return timed

    def retime(self, timeline: Sequence[Segment], skipped: Collection[int]) -> List[Segment]:
        """
        Drop the segments at indices `skipped` (e.g. failed synthesis) and
        recompute start times for the survivors.
        """
        survivors = [
            segment for index, segment in enumerate(timeline) if index not in skipped
        ]
        if len(survivors) != len(timeline):
            logger.info(
                "timeline.retime dropped={dropped} remaining={remaining}",
                dropped=sorted(i for i in skipped if 0 <= i < len(timeline)),
                remaining=len(survivors),
            )
        return self.assemble(survivors)


def total_duration(timeline: Sequence[Segment]) -> float:
    """End time of the last-ending segment."""
    ends = [
        segment.timing.start_time + segment.timing.duration
        for segment in timeline
        if segment.timing is not None
    ]
    return max(ends, default=0.0)
