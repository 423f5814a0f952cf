"""Deduplicating, rate-limited escalation of ambiguous snapshots to a judge."""

import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Protocol

from guardian.api.services.judge import Judge, JudgeError, JudgeRequest, JudgeResponse, JudgeVerdict
from guardian.api.services.scorer import Scorer
from guardian.api.services.session import SessionController
from guardian.model.models import EscalationRequest, NudgePreferences, TaskState
from guardian.ui.notifications import NotificationService, buddy_line
from guardian.watchers.logger import logger

COALESCE_SECONDS = 1.0
MIN_GAP_SECONDS = 20.0
MIN_CONFIDENCE = 0.55


class Cancellable(Protocol):
    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Cancellable]


def start_timer(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


class EscalationCoordinator:
    """エスカレーション要求をまとめて判定サービスへ送り, 結果を状態へ反映する.

    - 直前と同じ内容の要求は捨てる（隣接のみ）
    - coalesce_seconds 以内の連続要求は最新の1件にまとめる
    - 同じハッシュは min_gap_seconds 以内に再送しない
    - 応答待ちのハッシュは再送しない
    """

    def __init__(
        self,
        judge: Judge | None,
        scorer: Scorer,
        session: SessionController,
        notifier: NotificationService,
        preferences: Callable[[], NudgePreferences] = NudgePreferences,
        *,
        coalesce_seconds: float = COALESCE_SECONDS,
        min_gap_seconds: float = MIN_GAP_SECONDS,
        min_confidence: float = MIN_CONFIDENCE,
        clock: Callable[[], float] = time.time,
        timer_factory: TimerFactory = start_timer,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.judge = judge
        self.scorer = scorer
        self.session = session
        self.notifier = notifier
        self.preferences = preferences
        self.coalesce_seconds = coalesce_seconds
        self.min_gap_seconds = min_gap_seconds
        self.min_confidence = min_confidence
        self._clock = clock
        self._timer_factory = timer_factory
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="escalation")

        self._lock = threading.Lock()
        self._last_submitted: str | None = None
        self._pending: EscalationRequest | None = None
        self._timer: Cancellable | None = None
        self._in_flight: set[str] = set()
        self._recent: dict[str, float] = {}
        self._closed = False

        self.stats = {"submitted": 0, "dispatched": 0, "dropped": 0, "failed": 0}

    @property
    def in_flight(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._in_flight)

    def submit(self, request: EscalationRequest) -> None:
        """要求を受け付ける. 呼び出し元をブロックしない."""
        if self.judge is None:
            return
        key = request.hash_key
        with self._lock:
            if self._closed:
                return
            self.stats["submitted"] += 1
            if key == self._last_submitted:
                return
            self._last_submitted = key
            self._pending = request
            if self._timer is not None:
                return
            if self.coalesce_seconds <= 0:
                schedule = False
            else:
                schedule = True
                self._timer = self._timer_factory(self.coalesce_seconds, self.flush)
        if not schedule:
            self.flush()

    def flush(self) -> "Future[None] | None":
        """保留中の最新要求を送信する. 送信しなければ None."""
        with self._lock:
            self._timer = None
            request, self._pending = self._pending, None
            if request is None or self._closed:
                return None
            key = request.hash_key
            now = self._clock()
            self._prune_recent(now)
            last = self._recent.get(key)
            if last is not None and now - last < self.min_gap_seconds:
                self.stats["dropped"] += 1
                logger.debug("Escalation rate-limited: %s", key[:12])
                return None
            if key in self._in_flight:
                self.stats["dropped"] += 1
                logger.debug("Escalation already in flight: %s", key[:12])
                return None
            self._recent[key] = now
            self._in_flight.add(key)
            self.stats["dispatched"] += 1

        prefs = self.preferences()
        payload = JudgeRequest.from_escalation(request, prefs)
        logger.info("Escalating %s (%s)", request.url_display or request.app_name, key[:12])
        return self._executor.submit(self._call, request, payload, prefs)

    def _prune_recent(self, now: float) -> None:
        """レート制限の期間を過ぎたハッシュを捨てる. ロック内で呼ぶこと."""
        expired = [k for k, sent_at in self._recent.items() if now - sent_at >= self.min_gap_seconds]
        for key in expired:
            del self._recent[key]

    def _call(self, request: EscalationRequest, payload: JudgeRequest, prefs: NudgePreferences) -> None:
        key = request.hash_key
        try:
            if self.judge is None:
                return
            result = self.judge.judge(payload)
        except JudgeError as e:
            with self._lock:
                self.stats["failed"] += 1
            logger.warning("Escalation failed: %s", e)
            return
        finally:
            with self._lock:
                self._in_flight.discard(key)
        self.apply(request, result, prefs)

    def apply(
        self,
        request: EscalationRequest,
        result: JudgeResponse,
        prefs: NudgePreferences | None = None,
    ) -> bool:
        """判定結果をローカル状態へ反映する. 反映したら True.

        応答は数回分のポーリングより遅れて届くことがある. 反映は現在の状態から
        前向きに上書きするだけで, 既に出した nudge を取り消したりはしない.
        """
        state = self.session.state()
        if not state.is_active or state.session_id != request.session_id:
            logger.info("Discarding judgment for stale session %d", request.session_id)
            return False
        if result.confidence < self.min_confidence or result.verdict is JudgeVerdict.UNSURE:
            logger.info("Judgment ignored: %s (%.2f)", result.verdict.value, result.confidence)
            return False

        if result.verdict is JudgeVerdict.ON_TASK:
            if self.scorer.override_on_task(f"AI override: {result.rationale}", request.session_id) is None:
                logger.info("Discarding judgment for stale session %d", request.session_id)
                return False
            if result.allowlist_hosts:
                self.session.allow_hosts(result.allowlist_hosts, request.session_id)
            return True

        text = result.nudge.strip() or buddy_line(request, prefs or self.preferences())
        self.notifier.show_nudge(text, alternatives=result.alternatives or ())
        return True

    def on_session_change(self, task_state: TaskState) -> None:
        """セッション停止時は保留中の要求と直前ハッシュを捨てる."""
        if task_state.is_active:
            return
        with self._lock:
            self._pending = None
            self._last_submitted = None

    def shutdown(self, wait: bool = False) -> None:
        with self._lock:
            self._closed = True
            timer, self._timer = self._timer, None
            self._pending = None
        if timer is not None:
            timer.cancel()
        self._executor.shutdown(wait=wait)
