"""Judgment service transports (HTTP review endpoint / OpenAI-compatible LLM)."""

import json
import os
from enum import Enum
from typing import Any, Protocol

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from guardian.model.models import EscalationRequest, NudgePreferences, Tone
from guardian.watchers.logger import logger

HTTP_OK = 200
DEFAULT_TIMEOUT = 8.0


class JudgeError(Exception):
    """判定サービスの呼び出し失敗（ネットワーク, タイムアウト, 不正な応答）."""


class JudgeVerdict(Enum):
    ON_TASK = "on_task"
    OFF_TASK = "off_task"
    UNSURE = "unsure"


class JudgeRequest(BaseModel):
    """判定サービスへ送るJSON. キー名はサービス側の camelCase に合わせる."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    task: str
    app_name: str = Field(alias="appName")
    bundle_id: str = Field(alias="bundleID")
    window_title: str = Field(alias="windowTitle")
    url_host: str = Field(alias="urlHost")
    url_path: str = Field(alias="urlPath")
    url_display: str = Field(alias="urlDisplay")
    domain_category: str = Field(alias="domainCategory")
    elapsed_seconds: int = Field(alias="elapsedSeconds")
    tone: Tone = Tone.BUDDY
    persona_name: str = Field(default="", alias="personaName")
    use_emojis: bool = Field(default=True, alias="useEmojis")

    @classmethod
    def from_escalation(
        cls, request: EscalationRequest, prefs: NudgePreferences
    ) -> "JudgeRequest":
        return cls(
            task=request.task,
            app_name=request.app_name,
            bundle_id=request.bundle_id,
            window_title=request.window_title,
            url_host=request.url_host,
            url_path=request.url_path,
            url_display=request.url_display,
            domain_category=request.category,
            elapsed_seconds=request.elapsed_seconds,
            tone=prefs.tone,
            persona_name=prefs.persona_name,
            use_emojis=prefs.use_emojis,
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class JudgeResponse(BaseModel):
    """判定サービスの応答."""

    model_config = ConfigDict(populate_by_name=True)

    verdict: JudgeVerdict
    confidence: float = Field(ge=0.0, le=1.0)
    nudge: str = ""
    rationale: str = ""
    allowlist_hosts: list[str] | None = Field(default=None, alias="allowlistHosts")
    alternatives: list[str] | None = None


class Judge(Protocol):
    def judge(self, request: JudgeRequest) -> JudgeResponse: ...


def _parse_response(data: Any) -> JudgeResponse:
    try:
        return JudgeResponse.model_validate(data)
    except ValidationError as e:
        msg = f"malformed judgment response: {e.error_count()} error(s)"
        raise JudgeError(msg) from e


class ReviewClient:
    """判定サービスの /review エンドポイントを呼ぶHTTPクライアント."""

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.review_url = f"{self.base_url}/review"

    def judge(self, request: JudgeRequest) -> JudgeResponse:
        try:
            response = requests.post(
                self.review_url,
                json=request.to_wire(),
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
        except requests.exceptions.Timeout as e:
            msg = "judgment service timeout"
            raise JudgeError(msg) from e
        except requests.RequestException as e:
            msg = f"judgment service unreachable: {e}"
            raise JudgeError(msg) from e

        if response.status_code != HTTP_OK:
            msg = f"judgment service error: HTTP {response.status_code}"
            raise JudgeError(msg)

        try:
            data = response.json()
        except ValueError as e:
            msg = "judgment service returned non-JSON body"
            raise JudgeError(msg) from e
        return _parse_response(data)


class LLMJudge:
    """OpenAI互換API（LM Studio等）に判定させるクライアント."""

    def __init__(
        self,
        base_url: str,
        model_name: str,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """初期化

        Args:
        base_url: OpenAI互換APIのベースURL（例: http://127.0.0.1:1234）
        model_name: 使用するモデル名（例: google/gemma-3-4b）
        timeout: APIタイムアウト(秒)

        """
        self.base_url = base_url.rstrip("/")
        self.model_name = model_name
        self.timeout = timeout
        self.chat_url = f"{self.base_url}/v1/chat/completions"

        # システムプロンプト
        self.system_prompt = """
You are a focus buddy. Decide whether the user's current screen matches the task
they declared.

Return ONLY a JSON object with these exact keys:
- verdict: one of "on_task", "off_task", "unsure"
- confidence: number between 0 and 1
- nudge: short friendly reminder for the user (max 80 chars), empty if on_task
- rationale: brief explanation (max 80 chars)
- allowlistHosts: list of hosts that are clearly part of the task (may be empty)

Match the requested tone and persona. Use emojis only when allowed.
""".strip()

    def _build_context_prompt(self, request: JudgeRequest) -> str:
        """判定用のユーザープロンプトを構築."""
        persona = request.persona_name or "none"
        return f"""
Task: {request.task}
Elapsed: {request.elapsed_seconds}s
Current Activity:
- App: {request.app_name or "unknown"} ({request.bundle_id or "n/a"})
- Window: {request.window_title[:80]}
- URL: {request.url_display[:80] if request.url_display else "N/A"}
- Category: {request.domain_category}
Tone: {request.tone.value}, persona: {persona}, emojis: {request.use_emojis}
""".strip()

    def judge(self, request: JudgeRequest) -> JudgeResponse:
        payload = {
            "model": self.model_name,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": self._build_context_prompt(request)},
            ],
            "temperature": 0.2,
            "max_tokens": 200,
        }
        try:
            response = requests.post(
                self.chat_url,
                json=payload,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
        except requests.exceptions.Timeout as e:
            msg = "LLM timeout"
            raise JudgeError(msg) from e
        except requests.RequestException as e:
            msg = f"LLM exception: {e}"
            raise JudgeError(msg) from e

        if response.status_code != HTTP_OK:
            msg = f"LLM error: HTTP {response.status_code}"
            raise JudgeError(msg)

        try:
            content = response.json()["choices"][0]["message"]["content"].strip()
            # ```json ... ``` で囲まれて返ってくることがある
            content = content.removeprefix("```json").removeprefix("```").removesuffix("```")
            data = json.loads(content)
        except (ValueError, KeyError, IndexError, TypeError) as e:
            msg = "LLM parse error"
            raise JudgeError(msg) from e
        return _parse_response(data)


def create_judge(
    judge_url: str | None = None,
    llm_url: str | None = None,
    llm_model: str | None = None,
) -> Judge | None:
    """判定クライアントのファクトリ関数.

    環境変数で設定:
    - GUARDIAN_JUDGE_URL: 判定サービスのベースURL（優先）
    - LLM_URL / LLM_MODEL: OpenAI互換APIのベースURLとモデル名

    どちらも無ければ None（エスカレーションは無効）.
    """
    resolved_judge = judge_url or os.getenv("GUARDIAN_JUDGE_URL")
    if resolved_judge:
        logger.info("Using judgment service at %s", resolved_judge)
        return ReviewClient(base_url=resolved_judge)

    resolved_base = llm_url or os.getenv("LLM_URL")
    resolved_model = llm_model or os.getenv("LLM_MODEL")
    if resolved_base and resolved_model:
        logger.info("Using LLM judge %s at %s", resolved_model, resolved_base)
        return LLMJudge(base_url=resolved_base, model_name=resolved_model)

    logger.warning("No judgment service configured; escalation disabled")
    return None
