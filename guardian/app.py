"""Guardian: wires the sampler, scorer, escalation and session together."""

import argparse
import threading
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from guardian.api.services.escalation import EscalationCoordinator
from guardian.api.services.judge import Judge, create_judge
from guardian.api.services.scorer import Scorer
from guardian.api.services.session import SessionController
from guardian.api.services.settings import Settings, SettingsStore, load_settings_from_env
from guardian.model.models import ContextSnapshot, ScoreResult, TaskState, Verdict
from guardian.ui.notifications import NotificationService, nudge_message
from guardian.watchers.active_window import ActiveWindowProbe
from guardian.watchers.browser_url import BrowserURLProbe
from guardian.watchers.catalog import DomainCatalog
from guardian.watchers.logger import logger
from guardian.watchers.pump import ContextSampler, TextProbe, URLProbe, WindowProbe
from guardian.watchers.screen_capture import ScreenTextProbe

REPO_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_PORT = 5577


class Guardian:
    """全コンポーネントを一度だけ組み立てて保持するクラス."""

    def __init__(
        self,
        *,
        window_probe: WindowProbe | None = None,
        url_probe: URLProbe | None = None,
        ocr_probe: TextProbe | None = None,
        judge: Judge | None = None,
        settings: SettingsStore | None = None,
        catalog: DomainCatalog | None = None,
        notifier: NotificationService | None = None,
        interval: float = 1.0,
        coordinator: EscalationCoordinator | None = None,
    ) -> None:
        self.settings = settings or SettingsStore(load_settings_from_env())
        self.session = SessionController()
        if catalog is None:
            catalog = DomainCatalog()
            catalog.load_overrides()
        self.catalog = catalog
        self.notifier = notifier or NotificationService()
        self.scorer = Scorer()
        self.coordinator = coordinator or EscalationCoordinator(
            judge,
            self.scorer,
            self.session,
            self.notifier,
            preferences=self.settings.nudge_preferences,
        )
        self.scorer.set_escalation_sink(self.coordinator.submit)

        self.sampler = ContextSampler(
            window_probe or ActiveWindowProbe(),
            url_probe or BrowserURLProbe(),
            ocr_probe,
            self.catalog,
            interval=interval,
            on_snapshot=self.handle_snapshot,
        )

        self.session.subscribe(self.scorer.on_session_change)
        self.session.subscribe(self.coordinator.on_session_change)
        self.session.subscribe(self._on_session_change)
        self.notifier.on_stop(self.session.stop)

        self._scorer_config = self.settings.scorer_config()
        self.settings.subscribe(self._on_settings_change)

        self._lock = threading.Lock()
        self.last_snapshot: ContextSnapshot | None = None
        self.last_result: ScoreResult | None = None

    def handle_snapshot(self, snapshot: ContextSnapshot) -> ScoreResult:
        """1回分のスナップショットを判定し, 必要なら nudge を出す."""
        task_state = self.session.state()
        result = self.scorer.score(snapshot, task_state, self._scorer_config)
        with self._lock:
            self.last_snapshot = snapshot
            self.last_result = result
        if result.verdict is Verdict.OFF_TASK:
            self.notifier.show_nudge(nudge_message(task_state.task_title, snapshot))
        return result

    def _on_session_change(self, task_state: TaskState) -> None:
        """セッションの開始・停止に合わせてサンプリングを開始・停止する."""
        if task_state.is_active:
            self.sampler.start()
        else:
            self.sampler.stop()

    def _on_settings_change(self, settings: Settings) -> None:
        """設定変更は次のポーリングから反映する."""
        self._scorer_config = settings.scorer_config()
        logger.info("Scorer config now %s", self._scorer_config)

    def start(self, task: str) -> bool:
        """タスクを指定してセッションを開始する（サンプリングも始まる）."""
        return self.session.start(task)

    def stop(self) -> None:
        self.session.stop()

    def shutdown(self) -> None:
        self.session.stop()
        self.sampler.shutdown()
        self.coordinator.shutdown()

    def get_status(self) -> dict[str, Any]:
        """現在の状態を取得"""
        state = self.session.state()
        with self._lock:
            result = self.last_result
        return {
            "mode": state.mode.value,
            "task": state.task_title,
            "session_id": state.session_id,
            "session_start": state.session_start,
            "allowlist": sorted(state.allowlist),
            "verdict": result.verdict.value if result else None,
            "reason": result.reason if result else "",
            "sampler": self.sampler.get_status(),
            "escalation": {
                **self.coordinator.stats,
                "in_flight": len(self.coordinator.in_flight),
            },
        }


def build_guardian(interval: float = 1.0, enable_ocr: bool = False) -> Guardian:
    """環境変数から判定サービスを選んで Guardian を組み立てる."""
    return Guardian(
        judge=create_judge(),
        ocr_probe=ScreenTextProbe() if enable_ocr else None,
        interval=interval,
    )


def main() -> None:
    """メイン関数"""
    parser = argparse.ArgumentParser(description="Guardian focus monitor")
    parser.add_argument("--task", default="", help="開始時のタスク名")
    parser.add_argument("--interval", type=float, default=1.0, help="サンプリング間隔（秒）")
    parser.add_argument("--ocr", action="store_true", help="画面OCRを有効化")
    parser.add_argument("--once", action="store_true", help="1回だけサンプリングして終了")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="制御APIのポート")
    parser.add_argument("--no-api", action="store_true", help="制御APIを起動しない")
    args = parser.parse_args()

    load_dotenv(dotenv_path=REPO_ROOT / ".env.local", override=False)
    guardian = build_guardian(interval=args.interval, enable_ocr=args.ocr)

    try:
        if args.once:
            if args.task:
                guardian.session.start(args.task)
            future = guardian.sampler.poll_once()
            if future is not None:
                future.result(timeout=5)
            logger.info("Status: %s", guardian.get_status())
            return

        if args.task:
            guardian.start(args.task)
        if args.no_api:
            threading.Event().wait()
        else:
            import uvicorn

            from guardian.api.main import create_app

            uvicorn.run(create_app(guardian), host="127.0.0.1", port=args.port)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        guardian.shutdown()


if __name__ == "__main__":
    main()
