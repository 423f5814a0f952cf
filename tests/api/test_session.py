from guardian.api.services.session import SessionController
from guardian.model.models import Mode


class TestSessionController:
    """セッション管理のテスト"""

    def test_start(self, clock):
        session = SessionController(clock=clock)

        assert session.start("  Two Sum practice ")

        state = session.state()
        assert state.mode is Mode.ACTIVE
        assert state.task_title == "Two Sum practice"
        assert state.session_start == clock.now
        assert state.session_id == 1

    def test_empty_title_is_ignored(self, clock):
        session = SessionController(clock=clock)

        assert not session.start("   ")
        assert session.state().mode is Mode.IDLE

    def test_stop_keeps_title_and_clears_allowlist(self, clock):
        session = SessionController(clock=clock)
        session.start("leetcode")
        session.allow_hosts(["neetcode.io"])

        session.stop()

        state = session.state()
        assert state.mode is Mode.IDLE
        assert state.task_title == "leetcode"
        assert state.session_start is None
        assert state.allowlist == frozenset()

    def test_restart_increments_session_id_and_resets_allowlist(self, clock):
        session = SessionController(clock=clock)
        session.start("leetcode")
        session.allow_hosts(["neetcode.io"])

        session.start("aws exam")

        assert session.state().session_id == 2
        assert session.state().allowlist == frozenset()

    def test_allow_hosts_only_while_active(self, clock):
        session = SessionController(clock=clock)

        session.allow_hosts(["neetcode.io"])
        assert session.state().allowlist == frozenset()

        session.start("leetcode")
        session.allow_hosts(["NeetCode.io ", "", "  "])
        assert session.state().allowlist == frozenset({"neetcode.io"})

    def test_subscribers_are_notified(self, clock):
        session = SessionController(clock=clock)
        seen = []
        session.subscribe(seen.append)

        session.start("leetcode")
        session.allow_hosts(["neetcode.io"])
        session.stop()
        session.stop()

        assert [s.mode for s in seen] == [Mode.ACTIVE, Mode.ACTIVE, Mode.IDLE]

    def test_allow_hosts_for_other_session_is_ignored(self, clock):
        session = SessionController(clock=clock)
        session.start("leetcode")
        session.start("aws exam")

        session.allow_hosts(["neetcode.io"], session_id=1)
        assert session.state().allowlist == frozenset()

        session.allow_hosts(["aws.amazon.com"], session_id=2)
        assert session.state().allowlist == frozenset({"aws.amazon.com"})
