"""
Text → timed voice directives (Analyse → Derive → Map → Assemble)

Segments come from the first producer in the fallback chain that succeeds:

remote chat-model analysis → local paragraph/keyword analysis → one default segment

Every producer has the same signature (text in, untimed segments out) and
signals failure by raising a ProsodyError, so the chain stays a flat loop.
The surviving segments are then timed by the TimelineAssembler. Commands are
exposed on the CLI through `fire`.
"""

from __future__ import annotations

import json
import re
import sys
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

import fire
from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI
from loguru import logger

from prosody_timeline.ambience import SoundMapper
from prosody_timeline.analysis import RemoteAnalyzer, progression_at
from prosody_timeline.classifier import LexicalClassifier
from prosody_timeline.config import Settings, load_settings
from prosody_timeline.cuesheet import build_cue_sheet
from prosody_timeline.errors import EmptyInputError, ProsodyError
from prosody_timeline.params import ParameterEngine, volume_for
from prosody_timeline.segments import (
    AnalysisSource,
    BreathingStyle,
    EmotionLabel,
    Environment,
    Segment,
    SpeechRate,
    VocalType,
)
from prosody_timeline.synthesis import build_requests
from prosody_timeline.tables import TableSet, load_tables
from prosody_timeline.timeline import TimelineAssembler

Producer = Callable[[str], List[Segment]]

DEFAULT_INTENSITY = 70.0
DEFAULT_SCENE = "chambre"

_PARAGRAPH_RE = re.compile(r"\n[ \t]*\n\s*")


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def split_paragraphs(text: str) -> List[str]:
    """Blank-line separated paragraphs; the whole text when there are none."""
    paragraphs = [
        part.strip()
        for part in _PARAGRAPH_RE.split(text.replace("\r\n", "\n"))
        if part.strip()
    ]
    return paragraphs or [text.strip()]


def _parse_pitch(value: str) -> float:
    return float(value.rstrip("%"))


def _breathing_for_emotion(emotion: EmotionLabel) -> BreathingStyle:
    if emotion in (EmotionLabel.climax, EmotionLabel.aroused):
        return BreathingStyle.panting
    if emotion == EmotionLabel.intense:
        return BreathingStyle.deep
    return BreathingStyle.light


class Pipeline:
    """Narrative text to ordered, timed synthesis directives."""

    def __init__(
        self,
        debug: bool = False,
        local: bool = False,
        llm: Optional[BaseChatModel] = None,
        tables: Optional[TableSet] = None,
        tables_path: Path | str = "",
        model: str = "",
        settings: Optional[Settings] = None,
    ) -> None:
        if debug:
            configure_logging("DEBUG")
        self.settings = settings or load_settings()
        if model:
            self.settings = self.settings.model_copy(update={"model_name": model})
        self.tables = tables or load_tables(tables_path or self.settings.tables_path)
        self.engine = ParameterEngine(self.tables.parameters)
        self.classifier = LexicalClassifier(self.tables.keywords)
        self.mapper = SoundMapper(self.tables.sounds)
        self.assembler = TimelineAssembler(self.engine)

        if llm is None and not local and self.settings.remote_enabled:
            llm = ChatOpenAI(
                model=self.settings.model_name,
                temperature=self.settings.temperature,
                max_retries=self.settings.max_retries,
                base_url=self.settings.base_url,
                api_key=self.settings.api_key,
            )
        self.remote = (
            RemoteAnalyzer(llm, self.engine, self.mapper)
            if llm is not None and not local
            else None
        )

    # —————————————————— Producers ——————————————————

    @property
    def producers(self) -> List[Tuple[AnalysisSource, Producer]]:
        chain: List[Tuple[AnalysisSource, Producer]] = []
        if self.remote is not None:
            chain.append((AnalysisSource.remote, self.remote.analyze))
        chain.append((AnalysisSource.local, self.analyze_locally))
        chain.append((AnalysisSource.default, self.default_segments))
        return chain

    def analyze_locally(self, text: str) -> List[Segment]:
        paragraphs = split_paragraphs(text)
        total = len(paragraphs)
        segments: List[Segment] = []
        for index, paragraph in enumerate(paragraphs):
            found = self.classifier.classify(paragraph)
            intensity = self.engine.default_intensity(found.emotion)
            synthesis = self.engine.derive(
                found.emotion, intensity, progression_at(index, total)
            )
            segments.append(
                Segment(
                    text=paragraph,
                    emotion=found.emotion,
                    intensity=intensity,
                    rhythm=SpeechRate.slow,
                    pitch_shift_percent=_parse_pitch(synthesis.pitch_percent),
                    breathing=_breathing_for_emotion(found.emotion),
                    volume=volume_for(intensity),
                    interjections=found.interjections,
                    environment=Environment(
                        label=found.environment,
                        sounds=self.mapper.map_environment(found.environment),
                    ),
                    synthesis=synthesis,
                    source=AnalysisSource.local,
                )
            )
            logger.debug(
                "analysis.local.segment idx={idx} emotion={emotion} cue={cue} scene={scene}",
                idx=index,
                emotion=found.emotion.value,
                cue=found.matched_keyword,
                scene=found.environment,
            )
        return segments

    def default_segments(self, text: str) -> List[Segment]:
        """Last resort: the whole text as one default-parameter segment."""
        synthesis = self.engine.derive(
            EmotionLabel.sensual, DEFAULT_INTENSITY, 0.0, VocalType.normal
        )
        return [
            Segment(
                text=text.strip(),
                emotion=EmotionLabel.sensual,
                intensity=DEFAULT_INTENSITY,
                vocal_type=VocalType.normal,
                rhythm=SpeechRate.slow,
                pitch_shift_percent=_parse_pitch(synthesis.pitch_percent),
                breathing=BreathingStyle.light,
                volume=volume_for(DEFAULT_INTENSITY),
                environment=Environment(
                    label=DEFAULT_SCENE,
                    sounds=self.mapper.map_environment(DEFAULT_SCENE),
                ),
                synthesis=synthesis,
                source=AnalysisSource.default,
            )
        ]

    # —————————————————— Orchestration ——————————————————

    def segments(self, text: str) -> List[Segment]:
        """Untimed segments from the first producer that succeeds."""
        if not text or not text.strip():
            raise EmptyInputError("Input text is empty.")
        for source, producer in self.producers:
            try:
                produced = producer(text)
            except (ProsodyError, ValueError) as exc:
                logger.warning(
                    "pipeline.producer_failed source={source} error={error}",
                    source=source.value,
                    error=exc,
                )
                continue
            if not produced:
                logger.warning(
                    "pipeline.producer_empty source={source}", source=source.value
                )
                continue
            logger.info(
                "pipeline.segments source={source} count={count}",
                source=source.value,
                count=len(produced),
            )
            return produced
        # default_segments only fails on empty text, which is rejected above.
        raise EmptyInputError("No producer returned segments.")

    def run(self, text: str) -> List[Segment]:
        logger.info("pipeline.start chars={chars}", chars=len(text or ""))
        timeline = self.assembler.assemble(self.segments(text))
        logger.info("pipeline.done segments={count}", count=len(timeline))
        return timeline

    def retime(self, timeline: Sequence[Segment], skipped: Sequence[int]) -> List[Segment]:
        """Recompute start times after downstream synthesis dropped `skipped`."""
        return self.assembler.retime(timeline, set(skipped))

    # —————————————————— CLI commands ——————————————————

    @staticmethod
    def _read_source(source: Path | str) -> Tuple[str, Optional[str]]:
        """(text, text_name) from a file path or literal text."""
        candidate = str(source)
        if "\n" not in candidate and len(candidate) < 4096:
            path = Path(candidate)
            if path.is_file():
                return path.read_text(), path.stem
        return candidate, None

    @staticmethod
    def _dump(segments: Sequence[Segment]) -> str:
        return json.dumps(
            [segment.model_dump(mode="json") for segment in segments],
            ensure_ascii=False,
            indent=2,
        )

    def classify(self, text: str) -> str:
        """Keyword classification of one piece of text."""
        return self.classifier.classify(str(text)).model_dump_json(indent=2)

    def sounds(self, label: str) -> List[str]:
        """Ambient sound ids for a scene label."""
        return self.mapper.map_environment(str(label))

    def analyze(self, source: Path | str) -> str:
        """Timed segments as JSON."""
        text, _ = self._read_source(source)
        return self._dump(self.run(text))

    def timeline(self, source: Path | str, out: Path | str = "", xml: bool = False) -> str:
        """Write the timeline as JSON (or an XML cue sheet) to `out`, or return it."""
        text, text_name = self._read_source(source)
        timeline = self.run(text)
        payload = (
            build_cue_sheet(timeline, text_name=text_name).render()
            if xml
            else self._dump(timeline)
        )
        if not out:
            return payload
        out_path = Path(out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(payload)
        logger.info(
            "timeline.saved path={path} segments={count}",
            path=out_path,
            count=len(timeline),
        )
        return str(out_path)

    def ssml(self, source: Path | str, voice: str = "") -> str:
        """Ordered synthesis requests (SSML + voice settings) as JSON."""
        text, _ = self._read_source(source)
        requests = build_requests(self.run(text), self.settings, voice or None)
        return json.dumps(
            [request.model_dump(mode="json") for request in requests],
            ensure_ascii=False,
            indent=2,
        )


def main() -> None:
    fire.Fire(Pipeline)


if __name__ == "__main__":
    main()
