from collections.abc import Callable
from concurrent.futures import Future
from typing import Any

import pytest

from guardian.api.services.judge import JudgeError, JudgeRequest, JudgeResponse
from guardian.model.models import (
    ContextSnapshot,
    Mode,
    ProbeResult,
    ScorerConfig,
    TaskState,
    TopicCategory,
    WindowInfo,
)


class FakeClock:
    """テスト用の手動クロック"""

    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualTimer:
    """threading.Timer の代わり. fire() を呼ぶまで発火しない"""

    def __init__(self, delay: float, callback: Callable[[], Any]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> Any:
        if not self.cancelled:
            return self.callback()
        return None


class ManualTimerFactory:
    def __init__(self) -> None:
        self.timers: list[ManualTimer] = []

    def __call__(self, delay: float, callback: Callable[[], Any]) -> ManualTimer:
        timer = ManualTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def last(self) -> ManualTimer:
        return self.timers[-1]


class ImmediateExecutor:
    """submit() をその場で実行する executor"""

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:  # noqa: BLE001
            future.set_exception(e)
        return future

    def shutdown(self, wait: bool = True, cancel_futures: bool = False) -> None:  # noqa: ARG002
        return None


class DeferredExecutor:
    """submit() された処理を run_all()/run(i) まで保留する executor"""

    def __init__(self) -> None:
        self.jobs: list[tuple[Future, Callable[..., Any], tuple[Any, ...]]] = []

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        future: Future = Future()
        self.jobs.append((future, fn, args))
        return future

    def run(self, index: int) -> None:
        future, fn, args = self.jobs[index]
        future.set_result(fn(*args))

    def run_all(self) -> None:
        for i in range(len(self.jobs)):
            if not self.jobs[i][0].done():
                self.run(i)

    def shutdown(self, wait: bool = True, cancel_futures: bool = False) -> None:  # noqa: ARG002
        return None


class FakeJudge:
    """判定サービスのフェイク. 呼び出された要求を記録する"""

    def __init__(self, response: JudgeResponse | None = None, error: Exception | None = None) -> None:
        self.response = response or JudgeResponse(verdict="unsure", confidence=0.0)
        self.error = error
        self.requests: list[JudgeRequest] = []

    def judge(self, request: JudgeRequest) -> JudgeResponse:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.response


class FakeWindowProbe:
    def __init__(self, info: WindowInfo | None = None, available: bool = True) -> None:
        self.info = info or WindowInfo()
        self.available = available
        self.calls = 0

    def read(self) -> ProbeResult[WindowInfo]:
        self.calls += 1
        return ProbeResult(self.info, self.available)


class FakeURLProbe:
    def __init__(self, url: str = "", browsers: frozenset[str] = frozenset({"com.apple.Safari"})) -> None:
        self.url = url
        self.browsers = browsers
        self.calls = 0

    def is_browser(self, bundle_id: str) -> bool:
        return bundle_id in self.browsers

    def fetch(self, bundle_id: str) -> ProbeResult[str]:  # noqa: ARG002
        self.calls += 1
        return ProbeResult(self.url, bool(self.url))


class FakeTextProbe:
    def __init__(self, text: str = "", available: bool = True) -> None:
        self.text = text
        self.available = available
        self.calls = 0

    def read_text(self) -> ProbeResult[str]:
        self.calls += 1
        return ProbeResult(self.text, self.available)


@pytest.fixture
def clock():
    """手動で進めるクロック"""
    return FakeClock()


@pytest.fixture
def timer_factory():
    return ManualTimerFactory()


@pytest.fixture
def immediate_executor():
    return ImmediateExecutor()


@pytest.fixture
def deferred_executor():
    return DeferredExecutor()


@pytest.fixture
def fake_judge():
    return FakeJudge()


@pytest.fixture
def failing_judge():
    return FakeJudge(error=JudgeError("judgment service timeout"))


@pytest.fixture
def make_probes():
    """(window, url, ocr) のフェイクプローブを作るファクトリ"""

    def _make(
        app_name: str = "Safari",
        bundle_id: str = "com.apple.Safari",
        title: str = "",
        url: str = "",
        ocr_text: str = "",
    ) -> tuple[FakeWindowProbe, FakeURLProbe, FakeTextProbe]:
        return (
            FakeWindowProbe(WindowInfo(app_name=app_name, bundle_id=bundle_id, title=title)),
            FakeURLProbe(url),
            FakeTextProbe(ocr_text),
        )

    return _make


@pytest.fixture
def make_snapshot():
    """ContextSnapshot を作るファクトリ"""

    def _make(**overrides: Any) -> ContextSnapshot:
        fields: dict[str, Any] = {
            "seq": 1,
            "app_name": "Safari",
            "bundle_id": "com.apple.Safari",
            "category": TopicCategory.OTHER,
        }
        fields.update(overrides)
        return ContextSnapshot(**fields)

    return _make


@pytest.fixture
def leetcode_snapshot(make_snapshot):
    """作業中のスナップショット"""
    return make_snapshot(
        window_title="Two Sum - LeetCode — Safari",
        window_title_clean="Two Sum - LeetCode",
        browser_url="https://leetcode.com/problems/two-sum/",
        url_host="leetcode.com",
        url_path="/problems/two-sum",
        url_path_short="/problems/two-sum",
        url_display="leetcode.com/problems/two-sum",
        category=TopicCategory.CODING,
    )


@pytest.fixture
def youtube_snapshot(make_snapshot):
    """脱線しているスナップショット"""
    return make_snapshot(
        window_title="Top 10 Fails — YouTube",
        window_title_clean="Top 10 Fails",
        browser_url="https://www.youtube.com/watch?v=abc",
        url_host="youtube.com",
        url_path="/watch",
        url_path_short="/watch",
        url_display="youtube.com/watch",
        category=TopicCategory.VIDEO,
    )


@pytest.fixture
def active_task(clock):
    """開始直後のアクティブなタスク状態"""

    def _make(title: str = "leetcode", started_ago: float = 60.0, **overrides: Any) -> TaskState:
        fields: dict[str, Any] = {
            "mode": Mode.ACTIVE,
            "task_title": title,
            "session_start": clock.now - started_ago,
            "session_id": 1,
        }
        fields.update(overrides)
        return TaskState(**fields)

    return _make


@pytest.fixture
def default_config():
    return ScorerConfig()
