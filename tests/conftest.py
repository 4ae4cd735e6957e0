from __future__ import annotations

from typing import Any, List, Sequence

import pytest
from langchain_core.messages import AIMessage

from prosody_timeline.config import Settings, load_settings
from prosody_timeline.params import ParameterEngine
from prosody_timeline.segments import (
    EmotionLabel,
    Environment,
    Segment,
    SpeechRate,
)


class FakeChatModel:
    """Chat-model stub returning canned replies in order (last one repeats)."""

    def __init__(self, *replies: str) -> None:
        self.replies: List[str] = list(replies)
        self.prompts: List[str] = []

    def invoke(self, messages: Sequence[Any], config: object = None) -> AIMessage:
        self.prompts.append(messages[1].content)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        return AIMessage(content=reply)


class FailingChatModel:
    """Chat-model stub that fails like an unreachable endpoint."""

    def __init__(self) -> None:
        self.calls = 0

    def invoke(self, messages: Sequence[Any], config: object = None) -> AIMessage:
        self.calls += 1
        raise ConnectionError("503 Service Unavailable")


def make_segment(
    text: str,
    emotion: EmotionLabel = EmotionLabel.sensual,
    rhythm: SpeechRate = SpeechRate.slow,
    intensity: float = 50.0,
) -> Segment:
    engine = ParameterEngine()
    return Segment(
        text=text,
        emotion=emotion,
        intensity=intensity,
        rhythm=rhythm,
        environment=Environment(label="bedroom", sounds=["mid-nights-sound-291477.mp3"]),
        synthesis=engine.derive(emotion, intensity, 0.0),
    )


@pytest.fixture()
def engine() -> ParameterEngine:
    return ParameterEngine()


@pytest.fixture()
def offline_settings() -> Settings:
    """Settings as read from an environment without any API key."""
    return load_settings({})
