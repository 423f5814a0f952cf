"""Live, named user settings with clamping and change notifications."""

import os
import threading
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from guardian.model.models import NudgePreferences, ScorerConfig, Tone
from guardian.watchers.logger import logger

GRACE_RANGE = (0.0, 600.0)
PERSISTENCE_RANGE = (1, 10)
COOLDOWN_RANGE = (0.0, 3600.0)


def _clamp(value: float, bounds: tuple[float, float]) -> float:
    low, high = bounds
    return max(low, min(high, value))


class Settings(BaseModel):
    """ユーザー設定. 値は編集時に妥当な範囲へ丸められる."""

    model_config = ConfigDict(frozen=True)

    grace_seconds: float = 20.0
    persistence_required: int = 3
    cooldown_seconds: float = 45.0
    tone: Tone = Tone.BUDDY
    persona_name: str = ""
    use_emojis: bool = True

    @field_validator("grace_seconds")
    @classmethod
    def clamp_grace(cls, v: float) -> float:
        return _clamp(v, GRACE_RANGE)

    @field_validator("persistence_required")
    @classmethod
    def clamp_persistence(cls, v: int) -> int:
        return int(_clamp(v, PERSISTENCE_RANGE))

    @field_validator("cooldown_seconds")
    @classmethod
    def clamp_cooldown(cls, v: float) -> float:
        return _clamp(v, COOLDOWN_RANGE)

    @field_validator("persona_name")
    @classmethod
    def strip_persona(cls, v: str) -> str:
        return v.strip()

    def scorer_config(self) -> ScorerConfig:
        return ScorerConfig(
            grace_seconds=self.grace_seconds,
            persistence_required=self.persistence_required,
            cooldown_seconds=self.cooldown_seconds,
        )

    def nudge_preferences(self) -> NudgePreferences:
        return NudgePreferences(
            tone=self.tone,
            persona_name=self.persona_name,
            use_emojis=self.use_emojis,
        )


SettingsListener = Callable[[Settings], None]


class SettingsStore:
    """設定値を保持し, 変更を購読者へ通知する."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or Settings()
        self._listeners: list[SettingsListener] = []
        self._lock = threading.Lock()

    @property
    def current(self) -> Settings:
        return self._settings

    def subscribe(self, listener: SettingsListener) -> None:
        self._listeners.append(listener)

    def update(self, **changes: Any) -> Settings:
        """設定を更新する. 不正な値は pydantic の ValidationError になる."""
        with self._lock:
            merged = {**self._settings.model_dump(), **changes}
            updated = Settings.model_validate(merged)
            if updated == self._settings:
                return updated
            self._settings = updated
        logger.info("Settings updated: %s", changes)
        for listener in list(self._listeners):
            listener(updated)
        return updated

    def scorer_config(self) -> ScorerConfig:
        return self._settings.scorer_config()

    def nudge_preferences(self) -> NudgePreferences:
        return self._settings.nudge_preferences()


def load_settings_from_env() -> Settings:
    """環境変数から初期設定を読み込む.

    - GUARDIAN_GRACE_SECONDS / GUARDIAN_PERSISTENCE / GUARDIAN_COOLDOWN_SECONDS
    - GUARDIAN_TONE (buddy, coach, gentle, direct)
    - GUARDIAN_PERSONA / GUARDIAN_EMOJIS
    """
    env = {
        "grace_seconds": os.getenv("GUARDIAN_GRACE_SECONDS"),
        "persistence_required": os.getenv("GUARDIAN_PERSISTENCE"),
        "cooldown_seconds": os.getenv("GUARDIAN_COOLDOWN_SECONDS"),
        "tone": os.getenv("GUARDIAN_TONE"),
        "persona_name": os.getenv("GUARDIAN_PERSONA"),
        "use_emojis": os.getenv("GUARDIAN_EMOJIS"),
    }
    return Settings.model_validate({k: v for k, v in env.items() if v is not None})
