__all__ = [
    "ContextSnapshot",
    "EscalationRequest",
    "Mode",
    "NudgePreferences",
    "ParsedURL",
    "ProbeResult",
    "ScoreResult",
    "ScorerConfig",
    "ScorerState",
    "TaskState",
    "Tone",
    "TopicCategory",
    "Verdict",
    "WindowInfo",
]


import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, NamedTuple, TypeVar

T = TypeVar("T")


class TopicCategory(Enum):
    """URLホストの大まかな分類."""

    CODING = "coding"
    DOCS = "docs"
    LEARNING = "learning"
    VIDEO = "video"
    SOCIAL = "social"
    SEARCH = "search"
    EMAIL = "email"
    MESSAGING = "messaging"
    SHOPPING = "shopping"
    NEWS = "news"
    MUSIC = "music"
    GAMING = "gaming"
    FINANCE = "finance"
    CLOUD = "cloud"
    AI = "ai"
    PRODUCTIVITY = "productivity"
    STORAGE = "storage"
    OTHER = "other"


class Verdict(Enum):
    """スコアラーの判定."""

    UNKNOWN = "unknown"
    ON_TASK = "onTask"
    OFF_TASK_CANDIDATE = "offTaskCandidate"
    OFF_TASK = "offTask"


class Mode(Enum):
    IDLE = "idle"
    ACTIVE = "active"


class Tone(Enum):
    """Nudge文面のトーン."""

    BUDDY = "buddy"
    COACH = "coach"
    GENTLE = "gentle"
    DIRECT = "direct"


class ProbeResult(NamedTuple, Generic[T]):
    """OSプローブの結果. available=False は「取得できなかった」を表す（エラーではない）."""

    value: T
    available: bool


@dataclass(frozen=True)
class WindowInfo:
    """前面アプリの情報."""

    app_name: str = ""
    bundle_id: str = ""
    title: str = ""


@dataclass(frozen=True)
class ParsedURL:
    """正規化済みURL."""

    original: str
    host: str  # e.g. "leetcode.com"
    path: str  # leading "/", no query/fragment
    path_short: str  # first 1-2 segments, e.g. "/problems/two-sum"
    display: str  # host + path_short
    canonical: str  # host + path
    query: str = ""  # allow-listed query params only


@dataclass(frozen=True)
class ContextSnapshot:
    """1回のポーリングで得られた正規化済みシグナル."""

    seq: int = 0
    timestamp: float = 0.0
    app_name: str = ""
    bundle_id: str = ""
    window_title: str = ""
    window_title_clean: str = ""
    browser_url: str = ""
    url_host: str = ""
    url_path: str = ""
    url_path_short: str = ""
    url_display: str = ""
    category: TopicCategory = TopicCategory.OTHER
    ocr_text: str | None = None

    @property
    def is_browser(self) -> bool:
        return bool(self.url_host)


@dataclass(frozen=True)
class TaskState:
    """Session Controller が所有するタスク状態."""

    mode: Mode = Mode.IDLE
    task_title: str = ""
    session_start: float | None = None
    session_id: int = 0
    allowlist: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_active(self) -> bool:
        return self.mode is Mode.ACTIVE and self.session_start is not None


@dataclass(frozen=True)
class ScorerConfig:
    """ヒステリシス設定. 変更は次のポーリングから反映される."""

    grace_seconds: float = 20.0
    persistence_required: int = 3
    cooldown_seconds: float = 45.0


@dataclass(frozen=True)
class ScorerState:
    verdict: Verdict = Verdict.UNKNOWN
    reason: str = ""
    consecutive_off_task: int = 0
    last_acted_at: float | None = None


class ScoreResult(NamedTuple):
    verdict: Verdict
    reason: str
    state: ScorerState


@dataclass(frozen=True)
class NudgePreferences:
    tone: Tone = Tone.BUDDY
    persona_name: str = ""
    use_emojis: bool = True


@dataclass(frozen=True)
class EscalationRequest:
    """外部判定サービスへのエスカレーション要求.

    hash_key は先頭7フィールドのみから計算する. 経過時間などは含めないので,
    ほぼ同じコンテキストは同じキーにまとまる.
    """

    task: str
    app_name: str
    bundle_id: str
    window_title: str
    url_host: str
    url_path: str
    category: str
    url_display: str = ""
    elapsed_seconds: int = 0
    session_id: int = 0

    @property
    def hash_key(self) -> str:
        base = "|".join(
            [
                self.task,
                self.app_name,
                self.bundle_id,
                self.window_title,
                self.url_host,
                self.url_path,
                self.category,
            ]
        )
        return hashlib.sha256(base.encode("utf-8")).hexdigest()
