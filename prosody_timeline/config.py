from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Mapping, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_BASE_URL = "https://api.x.ai/v1"
DEFAULT_MODEL = "grok-3"
DEFAULT_SYNTHESIS_MODEL = "eleven_multilingual_v2"
DEFAULT_VOICE = "sasha"


class VoiceProfile(BaseModel):
    """Voice known to the speech-synthesis collaborator."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    voice_id: str = ""
    description: str = ""


class Settings(BaseModel):
    """Process-wide configuration, read once from the environment."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    api_key: Optional[str] = Field(default=None, repr=False)
    base_url: str = DEFAULT_BASE_URL
    model_name: str = DEFAULT_MODEL
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    max_retries: int = Field(2, ge=0)
    tables_path: Optional[Path] = None
    synthesis_model: str = DEFAULT_SYNTHESIS_MODEL
    default_voice: str = DEFAULT_VOICE
    voices: Dict[str, VoiceProfile] = Field(default_factory=dict)

    @property
    def remote_enabled(self) -> bool:
        return bool(self.api_key)

    def voice(self, name: Optional[str] = None) -> VoiceProfile:
        """Resolve a voice by name; unknown names fall back to the default voice."""
        key = (name or self.default_voice).strip().lower()
        if key in self.voices:
            return self.voices[key]
        logger.warning(
            "config.voice_unknown voice={voice} default={default}",
            voice=name,
            default=self.default_voice,
        )
        return self.voices.get(self.default_voice) or VoiceProfile(name=self.default_voice)


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ
    voices = {
        "sasha": VoiceProfile(
            name="sasha",
            voice_id=env.get("PROSODY_VOICE_ID_SASHA", ""),
            description="Deep voice",
        ),
        "mael": VoiceProfile(
            name="mael",
            voice_id=env.get("PROSODY_VOICE_ID_MAEL", ""),
            description="Soft voice",
        ),
    }
    settings = Settings(
        api_key=env.get("PROSODY_API_KEY") or env.get("XAI_API_KEY") or None,
        base_url=env.get("PROSODY_BASE_URL", DEFAULT_BASE_URL),
        model_name=env.get("PROSODY_MODEL", DEFAULT_MODEL),
        temperature=float(env.get("PROSODY_TEMPERATURE", "0.7")),
        tables_path=env.get("PROSODY_TABLES") or None,
        synthesis_model=env.get("PROSODY_SYNTHESIS_MODEL", DEFAULT_SYNTHESIS_MODEL),
        default_voice=env.get("PROSODY_DEFAULT_VOICE", DEFAULT_VOICE).lower(),
        voices=voices,
    )
    if not settings.remote_enabled:
        logger.warning(
            "config.api_key_missing remote analysis disabled; set PROSODY_API_KEY or XAI_API_KEY"
        )
    return settings
