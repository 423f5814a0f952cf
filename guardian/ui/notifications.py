import platform
import sys
import threading
import time
from collections import deque
from collections.abc import Callable, Iterable
from typing import Any

from guardian.model.models import ContextSnapshot, EscalationRequest, NudgePreferences, Tone
from guardian.watchers.logger import logger

if sys.platform == "win32":
    from win10toast import ToastNotifier  # type: ignore[import-untyped, unused-ignore]

APP_TITLE = "Guardian"
RECENT_NUDGES = 5


class NotificationService:
    """Nudge表示サービス（表示履歴付き）.

    Windows ではトースト通知を出す. その他のプラットフォームでは履歴に
    記録するだけで False を返す.
    """

    def __init__(self, toast_duration: int = 5) -> None:
        self.platform = platform.system()
        self.toast_duration = toast_duration
        self._history: list[dict[str, Any]] = []
        self._recent: deque[str] = deque(maxlen=RECENT_NUDGES)
        self._stop_callbacks: list[Callable[[], None]] = []
        self._lock = threading.Lock()

    def _pick_fresh(self, options: list[str]) -> str:
        # 最近表示していない文面を優先する
        for option in options:
            if option and option not in self._recent:
                return option
        return options[0] if options else ""

    def show_nudge(self, text: str, alternatives: Iterable[str] = ()) -> bool:
        """Nudge を表示して履歴に残す."""
        with self._lock:
            chosen = self._pick_fresh([text, *alternatives])
            if not chosen:
                return False
            self._recent.append(chosen)

        delivered = False
        if self.platform == "Windows":
            notifier = ToastNotifier()
            notifier.show_toast(APP_TITLE, chosen, duration=self.toast_duration, threaded=True)  # pyright: ignore[reportUnknownMemberType]
            delivered = True
        logger.info("Nudge: %s", chosen)
        with self._lock:
            self._history.append(
                {
                    "message": chosen,
                    "timestamp": time.time(),
                    "delivered": delivered,
                },
            )
        return delivered

    def on_stop(self, callback: Callable[[], None]) -> None:
        """UI側の停止操作を受け取るコールバックを登録する."""
        self._stop_callbacks.append(callback)

    def request_stop(self) -> None:
        """UIから停止が要求されたときに呼ぶ."""
        for callback in list(self._stop_callbacks):
            callback()

    def get_notification_history(self) -> list[dict[str, Any]]:
        """Return a copy of the notification history."""
        with self._lock:
            return list(self._history)


def nudge_message(task: str, snapshot: ContextSnapshot) -> str:
    """ローカル判定で offTask になったときの文面."""
    if snapshot.url_display:
        return f"Still on {task}? ({snapshot.url_display})"
    if snapshot.window_title_clean:
        return f"Back to {task}? — {snapshot.window_title_clean}"
    return f"Still working on {task}?"


def _tone_prefix(tone: Tone, name: str) -> str:
    if tone is Tone.COACH:
        return f"{name} here, quick check" if name else "Quick check"
    if tone is Tone.GENTLE:
        return f"Hey {name}" if name else "Hey"
    if tone is Tone.DIRECT:
        return f"{name}, focus" if name else "Focus"
    return name or "Buddy check"


def buddy_line(request: EscalationRequest, prefs: NudgePreferences) -> str:
    """判定サービスが文面を返さなかったときのローカル文面."""
    task = request.task or "your task"
    where = request.url_display or request.url_host
    prefix = _tone_prefix(prefs.tone, prefs.persona_name.strip())
    emoji = " 🔎" if prefs.use_emojis else ""
    if where:
        return f"{prefix}: still on {task}? ({where}){emoji}"
    if request.window_title:
        return f"{prefix}: back to {task}? — {request.window_title}{emoji}"
    return f"{prefix}: stay with {task}{emoji}"
