"""
Synthesis requests for the downstream speech service.

Each timed segment becomes one SSML document plus the voice settings the
service needs. Requests are emitted in timeline order and must be sent one at
a time in that order.
"""

from __future__ import annotations

import re
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field
from pydantic_xml import BaseXmlModel, attr, element

from prosody_timeline.config import Settings, VoiceProfile
from prosody_timeline.segments import Segment

FIRST_LEAD_MS = 100
AFTER_SENTENCE_LEAD_MS = 150
TAIL_MS = 100
FINAL_TAIL_MS = 200

_XML_CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")
_SENTENCE_END_RE = re.compile(r"[.!?…]$")


def _sanitize_for_xml(text: str) -> str:
    return _XML_CONTROL_CHAR_RE.sub("", text)


class SsmlBreak(BaseXmlModel, tag="break"):
    model_config = ConfigDict(frozen=True)

    time: str = attr()


class SsmlProsody(BaseXmlModel, tag="prosody"):
    model_config = ConfigDict(frozen=True)

    rate: str = attr()
    pitch: str = attr()
    volume: str = attr()
    text: str


class SsmlDocument(BaseXmlModel, tag="speak"):
    model_config = ConfigDict(frozen=True)

    lead: Optional[SsmlBreak] = element(default=None)
    prosody: SsmlProsody
    tail: SsmlBreak

    def render(self) -> str:
        raw = self.to_xml(encoding="unicode", skip_empty=True)
        return raw.decode("utf-8") if isinstance(raw, bytes) else raw


def spoken_text(segment: Segment) -> str:
    """Segment text followed by its interjections."""
    sounds = " ".join(item.sound for item in segment.interjections)
    text = segment.text.strip()
    return _sanitize_for_xml(f"{text} {sounds}" if sounds else text)


def build_ssml(segment: Segment, index: int, total: int, previous: Optional[Segment] = None) -> SsmlDocument:
    if index == 0:
        lead = SsmlBreak(time=f"{FIRST_LEAD_MS}ms")
    elif previous is not None and _SENTENCE_END_RE.search(previous.text.strip()):
        lead = SsmlBreak(time=f"{AFTER_SENTENCE_LEAD_MS}ms")
    else:
        lead = None
    tail_ms = FINAL_TAIL_MS if index == total - 1 else TAIL_MS
    return SsmlDocument(
        lead=lead,
        prosody=SsmlProsody(
            rate=segment.synthesis.rate_percent,
            pitch=segment.synthesis.pitch_percent,
            volume=segment.volume.value,
            text=spoken_text(segment),
        ),
        tail=SsmlBreak(time=f"{tail_ms}ms"),
    )


def render_ssml(segment: Segment, index: int, total: int, previous: Optional[Segment] = None) -> str:
    return build_ssml(segment, index, total, previous).render()


class SynthesisRequest(BaseModel):
    """Everything the speech service needs for one segment."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    index: int = Field(ge=0, description="Position in the timeline; send in this order.")
    voice: str
    voice_id: str
    model_id: str
    ssml: str
    stability: float
    expressiveness: float
    rate_percent: str
    pitch_percent: str
    start_time: float = Field(ge=0.0)
    duration: float = Field(ge=0.0)


def build_requests(
    timeline: Sequence[Segment],
    settings: Settings,
    voice: Optional[str] = None,
) -> List[SynthesisRequest]:
    profile: VoiceProfile = settings.voice(voice)
    total = len(timeline)
    requests: List[SynthesisRequest] = []
    previous: Optional[Segment] = None
    for index, segment in enumerate(timeline):
        if segment.timing is None:
            raise ValueError(f"Segment {index} has no timing; assemble the timeline first.")
        requests.append(
            SynthesisRequest(
                index=index,
                voice=profile.name,
                voice_id=profile.voice_id,
                model_id=settings.synthesis_model,
                ssml=render_ssml(segment, index, total, previous),
                stability=segment.synthesis.stability,
                expressiveness=segment.synthesis.expressiveness,
                rate_percent=segment.synthesis.rate_percent,
                pitch_percent=segment.synthesis.pitch_percent,
                start_time=segment.timing.start_time,
                duration=segment.timing.duration,
            )
        )
        previous = segment
    return requests
