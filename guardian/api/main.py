from collections import deque
from dataclasses import asdict
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, field_validator

from guardian.model.models import Tone
from guardian.watchers.logger import logger

if TYPE_CHECKING:
    from guardian.app import Guardian

MAX_LOG_LINES = 100


# --- Pydanticモデル定義 ---


class TaskStart(BaseModel):
    """セッション開始リクエストのモデル"""

    task: str

    @field_validator("task")
    @classmethod
    def task_must_not_be_empty(cls, v: str) -> str:
        if not v or not v.strip():
            msg = "task must not be empty"
            raise ValueError(msg)
        return v.strip()


class SettingsUpdate(BaseModel):
    """設定更新リクエスト. 指定されたフィールドだけ更新する"""

    grace_seconds: float | None = None
    persistence_required: int | None = None
    cooldown_seconds: float | None = None
    tone: Tone | None = None
    persona_name: str | None = None
    use_emojis: bool | None = None


def create_app(guardian: "Guardian") -> FastAPI:
    """Guardian を操作する制御APIを作る"""
    app = FastAPI(
        title="Guardian Control API",
        description="Session control and live status for the focus guardian",
    )
    logs: deque[str] = deque(maxlen=MAX_LOG_LINES)

    # --- ロギング ---

    def log_message(message: str) -> None:
        """ロガーに出力し, ログキューにも追加する"""
        logger.info(message)
        logs.append(message)

    # --- APIエンドポイント定義 ---

    @app.post("/session/start")
    async def start_session(req: TaskStart) -> dict[str, Any]:
        """タスク名を指定してセッションを開始する"""
        if not guardian.session.start(req.task):
            raise HTTPException(status_code=400, detail="task must not be empty")
        state = guardian.session.state()
        log_message(f"Session {state.session_id} started: {state.task_title}")
        return {"ok": True, "task": state.task_title, "session_id": state.session_id}

    @app.post("/session/stop")
    async def stop_session() -> dict[str, Any]:
        """セッションを停止する（タスク名は残る）"""
        guardian.session.stop()
        log_message("Session stopped")
        return {"ok": True}

    @app.get("/status")
    async def get_current_status() -> dict[str, Any]:
        """現在のシステム状態を取得する"""
        return guardian.get_status()

    @app.get("/settings")
    async def get_settings() -> dict[str, Any]:
        return guardian.settings.current.model_dump(mode="json")

    @app.put("/settings")
    async def update_settings(req: SettingsUpdate) -> dict[str, Any]:
        """設定を更新する. 範囲外の数値は丸められる"""
        changes = req.model_dump(exclude_none=True)
        updated = guardian.settings.update(**changes)
        if changes:
            log_message(f"Settings updated: {sorted(changes)}")
        return updated.model_dump(mode="json")

    # --- モニタリング用エンドポイント ---

    @app.get("/api/monitoring_data")
    async def get_monitoring_data() -> dict[str, Any]:
        """モニタリングUIに最新データを提供する"""
        snapshot = guardian.last_snapshot
        result = guardian.last_result
        last_snapshot = None
        if snapshot is not None:
            last_snapshot = {**asdict(snapshot), "category": snapshot.category.value}
        return {
            "last_snapshot": last_snapshot,
            "verdict": result.verdict.value if result else None,
            "reason": result.reason if result else "",
            "task": guardian.session.state().task_title,
            "nudges": guardian.notifier.get_notification_history()[-10:],
            "logs": list(logs),
        }

    return app
