from __future__ import annotations

import json
import os
from pathlib import Path
from typing import List

import pytest
from conftest import FailingChatModel, FakeChatModel, make_segment

from prosody_timeline.config import Settings, load_settings
from prosody_timeline.cuesheet import CueSheet, build_cue_sheet
from prosody_timeline.errors import EmptyInputError, ProsodyError
from prosody_timeline.segments import (
    AnalysisSource,
    BreathingStyle,
    EmotionLabel,
    Segment,
    TransitionKind,
    Volume,
)
from prosody_timeline.synthesis import build_requests
from prosody_timeline.tables import MAX_RATE_PERCENT, TierName, load_tables
from prosody_timeline.workflow import Pipeline, split_paragraphs

STORY = "Elle murmure.\n\nElle soupire, mhhh.\n\nL'extase sur la plage."


def _has_api_key() -> bool:
    return bool(os.environ.get("PROSODY_API_KEY") or os.environ.get("XAI_API_KEY"))


def test_split_paragraphs() -> None:
    assert split_paragraphs("a\n\n\nb\r\n\r\nc") == ["a", "b", "c"]
    assert split_paragraphs("  une seule ligne ") == ["une seule ligne"]


@pytest.mark.parametrize("text", ["", "   ", "\n\n\t"])
def test_empty_input_is_rejected(offline_settings: Settings, text: str) -> None:
    with pytest.raises(EmptyInputError):
        Pipeline(settings=offline_settings).run(text)


def test_local_analysis_per_paragraph(offline_settings: Settings) -> None:
    pipeline = Pipeline(settings=offline_settings)
    assert [source for source, _ in pipeline.producers] == [
        AnalysisSource.local,
        AnalysisSource.default,
    ]

    timeline = pipeline.run(STORY)

    assert [segment.emotion for segment in timeline] == [
        EmotionLabel.whisper,
        EmotionLabel.aroused,
        EmotionLabel.climax,
    ]
    assert all(segment.source == AnalysisSource.local for segment in timeline)
    assert [segment.breathing for segment in timeline] == [
        BreathingStyle.light,
        BreathingStyle.panting,
        BreathingStyle.panting,
    ]
    assert [segment.volume for segment in timeline] == [Volume.soft, Volume.medium, Volume.loud]
    assert [item.sound for item in timeline[1].interjections] == ["mhhh"]
    assert timeline[2].environment.label == "beach"
    assert timeline[2].environment.sounds[0] == "ocean-waves-112906.mp3"
    assert timeline[0].synthesis.expressiveness == pytest.approx(0.82)
    assert timeline[2].synthesis.expressiveness == pytest.approx(0.98)
    assert all(s.timing.transition.kind == TransitionKind.cut for s in timeline)
    assert timeline[1].timing.start_time == pytest.approx(2 / 1.5)


def test_remote_failure_falls_back_to_local(offline_settings: Settings) -> None:
    llm = FailingChatModel()
    pipeline = Pipeline(settings=offline_settings, llm=llm)

    timeline = pipeline.run("Un texte simple sans indice.\n\nEt une suite.")

    assert llm.calls == 1
    assert len(timeline) == 2
    sensual = pipeline.tables.parameters.tiers[TierName.sensual]
    for segment in timeline:
        assert segment.source == AnalysisSource.local
        assert segment.emotion == EmotionLabel.sensual
        assert sensual.rate[0] <= segment.synthesis.rate_value <= sensual.rate[1]
        assert segment.timing is not None


def test_invalid_remote_reply_falls_back_to_local(offline_settings: Settings) -> None:
    pipeline = Pipeline(settings=offline_settings, llm=FakeChatModel("Désolé, impossible."))

    timeline = pipeline.run(STORY)

    assert len(timeline) == 3
    assert {segment.source for segment in timeline} == {AnalysisSource.local}


def test_remote_reply_is_used_when_valid(offline_settings: Settings) -> None:
    reply = {
        "segments": [
            {"text": "Elle murmure.", "vocal": {"intensity": 20, "type": "murmure"}},
            {"text": "Elle crie !", "vocal": {"intensity": 95, "type": "cri"}},
        ]
    }
    pipeline = Pipeline(settings=offline_settings, llm=FakeChatModel(json.dumps(reply)))

    timeline = pipeline.run("Elle murmure. Elle crie !")

    assert [segment.source for segment in timeline] == [AnalysisSource.remote] * 2
    assert [segment.emotion for segment in timeline] == [EmotionLabel.whisper, EmotionLabel.climax]
    assert timeline[1].timing.emotion_transition_ms == 900


def test_remote_reply_with_numeric_rate_stays_remote(offline_settings: Settings) -> None:
    reply = {
        "segments": [
            {"text": "Elle attend.", "synthesisParams": {"ratePercentStr": 24}},
            {"text": "Elle sourit.", "synthesisParams": {"pitchShift": "-12%"}},
        ]
    }
    pipeline = Pipeline(settings=offline_settings, llm=FakeChatModel(json.dumps(reply)))

    timeline = pipeline.run("Elle attend. Elle sourit.")

    assert [segment.source for segment in timeline] == [AnalysisSource.remote] * 2
    assert timeline[0].synthesis.rate_percent == "24%"
    assert timeline[1].synthesis.pitch_percent == "-12%"


def test_default_segment_is_last_resort(
    offline_settings: Settings, monkeypatch: pytest.MonkeyPatch
) -> None:
    pipeline = Pipeline(settings=offline_settings)

    def broken(text: str) -> List[Segment]:
        raise ProsodyError("simulated local failure")

    monkeypatch.setattr(pipeline, "analyze_locally", broken)
    timeline = pipeline.run("Premier paragraphe.\n\nSecond paragraphe.")

    assert len(timeline) == 1
    segment = timeline[0]
    assert segment.source == AnalysisSource.default
    assert segment.text == "Premier paragraphe.\n\nSecond paragraphe."
    assert segment.emotion == EmotionLabel.sensual
    assert segment.synthesis.rate_percent == "24%"
    assert segment.environment.label == "chambre"
    assert segment.timing.start_time == 0.0


def test_synthesis_requests_in_timeline_order(offline_settings: Settings) -> None:
    timeline = Pipeline(settings=offline_settings).run("Elle murmure.\n\nElle soupire, mhhh.")
    requests = build_requests(timeline, offline_settings)

    assert [request.index for request in requests] == [0, 1]
    assert all(request.voice == "sasha" for request in requests)
    assert all(request.model_id == "eleven_multilingual_v2" for request in requests)

    first, second = requests
    assert first.ssml.startswith('<speak><break time="100ms"/>')
    assert '<prosody rate="20%" pitch="-20%" volume="soft">Elle murmure.</prosody>' in first.ssml
    assert first.ssml.endswith('<break time="100ms"/></speak>')
    assert second.ssml.startswith('<speak><break time="150ms"/>')
    assert "Elle soupire, mhhh. mhhh</prosody>" in second.ssml
    assert second.ssml.endswith('<break time="200ms"/></speak>')
    assert second.start_time == pytest.approx(timeline[1].timing.start_time)


def test_unknown_voice_falls_back_to_default(offline_settings: Settings) -> None:
    timeline = Pipeline(settings=offline_settings).run("Bonsoir.")

    requests = build_requests(timeline, offline_settings, voice="nobody")
    assert requests[0].voice == "sasha"
    assert build_requests(timeline, offline_settings, voice="Mael")[0].voice == "mael"


def test_requests_need_timing(offline_settings: Settings) -> None:
    with pytest.raises(ValueError):
        build_requests([make_segment("Pas encore placé.")], offline_settings)


def test_cue_sheet_xml(offline_settings: Settings) -> None:
    timeline = Pipeline(settings=offline_settings).run(STORY)
    xml = build_cue_sheet(timeline, text_name="chapter").render()

    assert '<cue-sheet text-name="chapter"' in xml
    assert 'transition="cut"' in xml
    assert "<interjection>mhhh</interjection>" in xml

    sheet = CueSheet.from_xml(xml.encode("utf-8"))
    assert [entry.emotion for entry in sheet.segments] == ["whisper", "aroused", "climax"]
    assert sheet.segments[2].sounds[0] == "ocean-waves-112906.mp3"
    last = sheet.segments[2]
    assert sheet.total == pytest.approx(last.start + last.duration, abs=1e-3)


def test_cue_sheet_needs_timing() -> None:
    with pytest.raises(ValueError):
        build_cue_sheet([make_segment("Pas encore placé.")])


def test_table_override_file(tmp_path: Path, offline_settings: Settings) -> None:
    override = tmp_path / "tables.json"
    override.write_text(json.dumps({"keywords": {"default_scene": "nuit"}}))

    tables = load_tables(override)
    assert tables.keywords.default_scene == "nuit"
    assert tables.parameters.default_transition_ms == 500

    timeline = Pipeline(settings=offline_settings, tables_path=override).run("Bonsoir.")
    assert timeline[0].environment.label == "nuit"
    assert timeline[0].environment.sounds == ["mid-nights-sound-291477.mp3"]


def test_table_override_validation(tmp_path: Path) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text(json.dumps({"parameters": {"tiers": {}}}))

    with pytest.raises(ValueError):
        load_tables(broken)
    with pytest.raises(FileNotFoundError):
        load_tables(tmp_path / "missing.json")


def test_settings_from_environment() -> None:
    settings = load_settings(
        {
            "XAI_API_KEY": "secret",
            "PROSODY_MODEL": "grok-4",
            "PROSODY_TEMPERATURE": "0.2",
            "PROSODY_VOICE_ID_MAEL": "voice-123",
        }
    )

    assert settings.remote_enabled
    assert settings.model_name == "grok-4"
    assert settings.temperature == 0.2
    assert settings.voice("mael").voice_id == "voice-123"
    assert "secret" not in repr(settings)
    assert not load_settings({}).remote_enabled


def test_remote_producer_follows_settings() -> None:
    from langchain_openai import ChatOpenAI

    keyed = load_settings({"PROSODY_API_KEY": "secret"})

    assert isinstance(Pipeline(settings=keyed).remote.llm, ChatOpenAI)
    assert Pipeline(settings=keyed, local=True).remote is None
    assert Pipeline(settings=keyed, model="grok-4").remote.llm.model_name == "grok-4"


def test_cli_commands(tmp_path: Path, offline_settings: Settings) -> None:
    pipeline = Pipeline(settings=offline_settings)
    source = tmp_path / "chapter.txt"
    source.write_text(STORY)

    out = tmp_path / "out" / "chapter.xml"
    assert pipeline.timeline(str(source), out=str(out), xml=True) == str(out)
    assert 'text-name="chapter"' in out.read_text()

    analyzed = json.loads(pipeline.analyze(str(source)))
    assert len(analyzed) == 3
    assert analyzed[0]["timing"]["start_time"] == 0.0

    literal = json.loads(pipeline.timeline("Bonsoir."))
    assert literal[0]["text"] == "Bonsoir."

    assert json.loads(pipeline.classify("Elle murmure."))["emotion"] == "whisper"
    assert json.loads(pipeline.classify(123))["emotion"] == "sensual"
    assert pipeline.sounds(42) == ["calm-nature-sounds-196258.mp3"]
    assert pipeline.sounds("forêt") == ["forest-ambience-296528.mp3", "bird-333090.mp3"]
    assert json.loads(pipeline.ssml(str(source), voice="mael"))[0]["voice"] == "mael"


@pytest.mark.skipif(
    not _has_api_key(), reason="Requires PROSODY_API_KEY or XAI_API_KEY and network access"
)
def test_remote_analysis_end_to_end() -> None:
    """Live call; only checks invariants since the reply varies between runs."""
    timeline = Pipeline().run(
        "Elle murmure doucement à mon oreille.\n\nSa peau frissonne sur la plage."
    )

    assert timeline
    starts = [segment.timing.start_time for segment in timeline]
    assert starts == sorted(starts)
    for segment in timeline:
        assert segment.synthesis.rate_value <= MAX_RATE_PERCENT
        assert 0.15 <= segment.synthesis.stability <= 0.75
        assert 0.75 <= segment.synthesis.expressiveness <= 0.98
