import time
from unittest.mock import Mock

import pytest

from guardian.api.services.judge import JudgeResponse
from guardian.api.services.settings import Settings, SettingsStore
from guardian.app import Guardian
from guardian.model.models import Verdict
from guardian.ui.notifications import NotificationService
from guardian.watchers.catalog import DomainCatalog


@pytest.fixture
def notifier():
    service = NotificationService()
    service.platform = "Darwin"
    return service


@pytest.fixture
def build(make_probes, notifier):
    created = []

    def _build(url="https://www.youtube.com/watch?v=abc", judge=None, interval=60.0, **settings):
        window, url_probe, _ = make_probes(title="Top 10 Fails — YouTube", url=url)
        guardian = Guardian(
            window_probe=window,
            url_probe=url_probe,
            judge=judge,
            settings=SettingsStore(Settings(**settings)),
            catalog=DomainCatalog(),
            notifier=notifier,
            interval=interval,
        )
        created.append(guardian)
        return guardian

    yield _build
    for guardian in created:
        guardian.shutdown()


class TestGuardian:
    """Guardian 全体の結線テスト"""

    def test_off_task_nudges_once(self, build, notifier):
        guardian = build(grace_seconds=0, persistence_required=2, cooldown_seconds=600)
        guardian.session.start("leetcode")

        verdicts = []
        for _ in range(4):
            guardian.sampler.poll_once().result(timeout=5)
            verdicts.append(guardian.last_result.verdict)

        assert verdicts == [
            Verdict.OFF_TASK_CANDIDATE,
            Verdict.OFF_TASK,
            Verdict.OFF_TASK_CANDIDATE,
            Verdict.OFF_TASK_CANDIDATE,
        ]
        messages = [h["message"] for h in notifier.get_notification_history()]
        assert messages == ["Still on leetcode? (youtube.com/watch)"]

    def test_on_task_site(self, build):
        guardian = build(url="https://leetcode.com/problems/two-sum/", grace_seconds=0)
        guardian.session.start("leetcode")

        guardian.sampler.poll_once().result(timeout=5)

        assert guardian.last_result.verdict is Verdict.ON_TASK
        assert guardian.last_snapshot.url_display == "leetcode.com/problems/two-sum"

    def test_idle_is_unknown(self, build):
        guardian = build()

        guardian.sampler.poll_once().result(timeout=5)

        assert guardian.last_result.verdict is Verdict.UNKNOWN

    def test_stop_from_notification_resets_scorer(self, build, notifier):
        guardian = build(grace_seconds=0)
        guardian.session.start("leetcode")
        guardian.sampler.poll_once().result(timeout=5)
        assert guardian.scorer.state.consecutive_off_task == 1

        notifier.request_stop()

        assert not guardian.session.state().is_active
        assert guardian.scorer.state.consecutive_off_task == 0

    def test_escalation_reaches_judge(self, build):
        judge = Mock()
        judge.judge.return_value = JudgeResponse(verdict="unsure", confidence=0.2)
        guardian = build(judge=judge, grace_seconds=0)
        guardian.coordinator.coalesce_seconds = 0
        guardian.session.start("leetcode")

        guardian.sampler.poll_once().result(timeout=5)
        guardian.coordinator.shutdown(wait=True)

        sent = judge.judge.call_args.args[0]
        assert sent.url_host == "youtube.com"
        assert sent.window_title == "Top 10 Fails"
        assert sent.task == "leetcode"

    def test_session_drives_sampling(self, build, notifier):
        guardian = build(interval=0.05)
        assert not guardian.sampler.running

        assert guardian.start("leetcode")
        assert guardian.sampler.running
        time.sleep(0.2)
        assert guardian.sampler.window_probe.calls > 0

        notifier.request_stop()

        assert not guardian.sampler.running
        calls = guardian.sampler.window_probe.calls
        time.sleep(0.2)
        assert guardian.sampler.window_probe.calls == calls

    def test_settings_change_reaches_scorer(self, build):
        guardian = build(grace_seconds=0, persistence_required=3)
        guardian.session.start("leetcode")
        guardian.sampler.poll_once().result(timeout=5)
        assert guardian.last_result.verdict is Verdict.OFF_TASK_CANDIDATE

        guardian.settings.update(persistence_required=1)
        guardian.sampler.poll_once().result(timeout=5)

        assert guardian.last_result.verdict is Verdict.OFF_TASK
