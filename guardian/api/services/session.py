import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import replace

from guardian.model.models import Mode, TaskState
from guardian.watchers.logger import logger

SessionListener = Callable[[TaskState], None]


class SessionController:
    """タスクのライフサイクル（idle/active, タスク名, 開始時刻, 許可ホスト）を管理する."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._state = TaskState()
        self._listeners: list[SessionListener] = []
        self._lock = threading.Lock()

    def state(self) -> TaskState:
        return self._state

    def subscribe(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def _publish(self, state: TaskState) -> None:
        for listener in list(self._listeners):
            listener(state)

    def start(self, title: str) -> bool:
        """セッションを開始する. 空のタスク名は無視して False を返す."""
        trimmed = title.strip()
        if not trimmed:
            return False
        with self._lock:
            self._state = TaskState(
                mode=Mode.ACTIVE,
                task_title=trimmed,
                session_start=self._clock(),
                session_id=self._state.session_id + 1,
            )
            state = self._state
        logger.info("Session %d started: %s", state.session_id, trimmed)
        self._publish(state)
        return True

    def stop(self) -> None:
        """セッションを停止する. タスク名は残す."""
        with self._lock:
            if self._state.mode is Mode.IDLE:
                return
            self._state = replace(
                self._state,
                mode=Mode.IDLE,
                session_start=None,
                allowlist=frozenset(),
            )
            state = self._state
        logger.info("Session %d stopped", state.session_id)
        self._publish(state)

    def allow_hosts(self, hosts: Iterable[str], session_id: int | None = None) -> None:
        """このセッションの間だけ on-task 扱いするホストを追加する.

        session_id を渡した場合, 別のセッションには追加しない.
        """
        cleaned = {h.strip().lower() for h in hosts if h and h.strip()}
        if not cleaned:
            return
        with self._lock:
            if self._state.mode is not Mode.ACTIVE:
                return
            if session_id is not None and session_id != self._state.session_id:
                return
            self._state = replace(self._state, allowlist=self._state.allowlist | cleaned)
            state = self._state
        logger.info("Session allow-list extended: %s", sorted(cleaned))
        self._publish(state)

