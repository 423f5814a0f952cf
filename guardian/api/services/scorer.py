"""Heuristic on/off-task scorer with grace, persistence and cooldown."""

import re
import threading
import time
from collections.abc import Callable
from dataclasses import replace

from guardian.model.models import (
    ContextSnapshot,
    EscalationRequest,
    ScorerConfig,
    ScorerState,
    ScoreResult,
    TaskState,
    TopicCategory,
    Verdict,
)
from guardian.watchers.logger import logger

DEV_APP_MARKERS = ("xcode", "code", "cursor", "terminal", "iterm", "intellij", "pycharm")

WORK_CATEGORIES = frozenset(
    {
        TopicCategory.CODING,
        TopicCategory.DOCS,
        TopicCategory.PRODUCTIVITY,
        TopicCategory.AI,
        TopicCategory.CLOUD,
        TopicCategory.SEARCH,
        TopicCategory.STORAGE,
    }
)

LEISURE_CATEGORIES = frozenset(
    {
        TopicCategory.SOCIAL,
        TopicCategory.VIDEO,
        TopicCategory.MUSIC,
        TopicCategory.GAMING,
        TopicCategory.SHOPPING,
        TopicCategory.NEWS,
    }
)

DISTRACTOR_MARKERS = (
    "trending",
    "memes",
    "highlights",
    "clips",
    "shorts",
    "reels",
    "discover",
    "for you",
    "fyp",
)

VIDEO_HOST_MARKER = "youtube"

STOP_WORDS = frozenset(
    {
        "the", "and", "a", "an", "to", "of", "for", "on", "in", "with", "at", "by",
        "is", "are", "be", "this", "that", "it", "work", "session", "study",
        "studying", "job", "jobs", "apply", "applying",
    }
)  # fmt: skip

MIN_KEYWORD_LENGTH = 3

# 英数字の連続. ハイフンでつながった複合語はひとまとまりで拾う
_TOKEN_RE = re.compile(r"[^\W_]+(?:-[^\W_]+)*")

EscalationSink = Callable[[EscalationRequest], None]


def extract_keywords(task_title: str) -> frozenset[str]:
    """タスク名から照合用キーワードを取り出す."""
    keywords: set[str] = set()
    for token in _TOKEN_RE.findall(task_title.lower()):
        candidates = [token]
        if "-" in token:
            candidates.append(token.replace("-", ""))
            candidates.extend(token.split("-"))
        keywords.update(
            c for c in candidates if len(c) >= MIN_KEYWORD_LENGTH and c not in STOP_WORDS
        )
    return frozenset(keywords)


def matches_any_keyword(keywords: frozenset[str], text: str) -> bool:
    if not keywords or not text:
        return False
    return any(k in text for k in keywords)


def contains_distractor(title: str, host: str) -> bool:
    return any(w in title or w.replace(" ", "") in host for w in DISTRACTOR_MARKERS)


def is_dev_app(app_name: str) -> bool:
    app = app_name.lower()
    return any(marker in app for marker in DEV_APP_MARKERS)


class Scorer:
    """ContextSnapshot とタスク状態から判定を出すステートフルなスコアラー.

    状態 (ScorerState) はこのクラスだけが更新する. ポーリングループと
    エスカレーション結果のコールバックの両方から触られるため, 更新は
    すべて短いロックの中で行う.
    """

    def __init__(
        self,
        escalate: EscalationSink | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._escalate = escalate
        self._clock = clock
        self._state = ScorerState()
        self._session_id: int | None = None
        self._lock = threading.Lock()
        self._keywords_for: tuple[str, frozenset[str]] = ("", frozenset())

    @property
    def state(self) -> ScorerState:
        return self._state

    def set_escalation_sink(self, escalate: EscalationSink | None) -> None:
        self._escalate = escalate

    def on_session_change(self, task_state: TaskState) -> None:
        """セッションが idle に戻ったらヒステリシスを全て捨てる."""
        with self._lock:
            if task_state.is_active:
                self._session_id = task_state.session_id
                return
            self._session_id = None
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._state = ScorerState()

    def override_on_task(self, reason: str, session_id: int | None = None) -> ScorerState | None:
        """外部判定が on-task と判断したときに呼ばれる.

        session_id を渡した場合, そのセッションがまだ有効なときだけ反映する.
        反映しなかったら None.
        """
        with self._lock:
            if session_id is not None and session_id != self._session_id:
                return None
            self._state = replace(
                self._state,
                verdict=Verdict.ON_TASK,
                reason=reason,
                consecutive_off_task=0,
            )
            return self._state

    def _keywords(self, task_title: str) -> frozenset[str]:
        cached_title, cached = self._keywords_for
        if cached_title != task_title:
            cached = extract_keywords(task_title)
            self._keywords_for = (task_title, cached)
        return cached

    def _on_task(self, reason: str) -> ScoreResult:
        self._state = replace(
            self._state,
            verdict=Verdict.ON_TASK,
            reason=reason,
            consecutive_off_task=0,
        )
        return ScoreResult(self._state.verdict, reason, self._state)

    def score(
        self,
        snapshot: ContextSnapshot,
        task_state: TaskState,
        config: ScorerConfig,
        now: float | None = None,
    ) -> ScoreResult:
        """1回のポーリング分の判定を行う."""
        if not task_state.is_active or task_state.session_start is None:
            with self._lock:
                self._state = replace(self._state, verdict=Verdict.UNKNOWN, reason="Session idle")
                return ScoreResult(self._state.verdict, self._state.reason, self._state)

        now = self._clock() if now is None else now
        elapsed = now - task_state.session_start

        request: EscalationRequest | None = None
        with self._lock:
            # 0) Grace
            if elapsed < config.grace_seconds:
                remaining = int(config.grace_seconds - elapsed)
                return self._on_task(f"Within grace ({remaining}s left)")

            app = snapshot.app_name.lower()
            title = snapshot.window_title_clean.lower()
            host = snapshot.url_host.lower()
            display = snapshot.url_display.lower()
            category = snapshot.category

            # 1) このセッションで許可されたホスト
            if host and host in task_state.allowlist:
                return self._on_task("AI-allowed host")

            # 2) 明らかに作業中
            if is_dev_app(app):
                return self._on_task(f"Dev app: {app}")
            if category in WORK_CATEGORIES and not contains_distractor(title, host):
                return self._on_task(f"Work category: {category.value}")

            # 3) タスクのキーワード
            keywords = self._keywords(task_state.task_title)
            keyword_hit = matches_any_keyword(keywords, title) or matches_any_keyword(
                keywords, display
            )

            # 4) 脱線ヒューリスティック
            looks_off_task = False
            why = ""
            if category in LEISURE_CATEGORIES:
                if not keyword_hit:
                    looks_off_task = True
                    why = f"Category {category.value} w/o task match"
            elif not snapshot.is_browser:
                if not title or not keyword_hit:
                    looks_off_task = True
                    why = "Non-browser app with no task signal"
            elif category is TopicCategory.OTHER and not keyword_hit:
                looks_off_task = True
                why = "Other site w/o task match"

            if VIDEO_HOST_MARKER in host and not keyword_hit:
                looks_off_task = True
                why = "YouTube no task match"

            # 5) 曖昧なものは外部判定へ回す（判定確定前に送る）
            if looks_off_task or category is TopicCategory.OTHER:
                request = EscalationRequest(
                    task=task_state.task_title,
                    app_name=snapshot.app_name,
                    bundle_id=snapshot.bundle_id,
                    window_title=snapshot.window_title_clean,
                    url_host=snapshot.url_host,
                    url_path=snapshot.url_path_short,
                    category=category.value,
                    url_display=snapshot.url_display,
                    elapsed_seconds=int(elapsed),
                    session_id=task_state.session_id,
                )

            result = self._resolve(looks_off_task, why, keyword_hit, config, now)

        if request is not None and self._escalate is not None:
            self._escalate(request)
        if result.verdict is Verdict.OFF_TASK:
            logger.info("Off-task verdict: %s (%s)", result.reason, snapshot.url_display or snapshot.app_name)
        return result

    def _resolve(
        self,
        looks_off_task: bool,
        why: str,
        keyword_hit: bool,
        config: ScorerConfig,
        now: float,
    ) -> ScoreResult:
        """持続回数とクールダウンから最終判定を決める. ロック内で呼ぶこと."""
        if not looks_off_task:
            return self._on_task("Task keyword match" if keyword_hit else "Neutral")

        required = config.persistence_required
        count = self._state.consecutive_off_task + 1
        if count >= required:
            last = self._state.last_acted_at
            if last is not None and now - last < config.cooldown_seconds:
                self._state = replace(
                    self._state,
                    verdict=Verdict.OFF_TASK_CANDIDATE,
                    reason=f"{why} (cooldown)",
                    consecutive_off_task=required,
                )
            else:
                self._state = replace(
                    self._state,
                    verdict=Verdict.OFF_TASK,
                    reason=why,
                    consecutive_off_task=required,
                    last_acted_at=now,
                )
        else:
            self._state = replace(
                self._state,
                verdict=Verdict.OFF_TASK_CANDIDATE,
                reason=f"{why} ({count}/{required})",
                consecutive_off_task=count,
            )
        return ScoreResult(self._state.verdict, self._state.reason, self._state)
