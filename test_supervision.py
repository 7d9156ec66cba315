"""Tests for stall detection, status throttling and restart detection."""

from agentrelay.agents.supervision import (
    StallMonitor,
    StallStage,
    StatusThrottle,
    detect_restart_need,
)
from agentrelay.models import StatusUpdate


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_stall_stages_fire_once_each():
    """warn=2, kill=4, grace x1.5: warning at 2s, grace at 4s, kill at 6s."""
    clock = FakeClock()
    monitor = StallMonitor(warn_after=2, kill_after=4, grace_multiplier=1.5, clock=clock)

    clock.now = 1.9
    assert monitor.check() == []

    clock.now = 2.0
    notices = monitor.check()
    assert [n.stage for n in notices] == [StallStage.WARNING]
    assert not notices[0].update.important
    assert monitor.check() == [], "Warning must not repeat without new activity"

    clock.now = 4.0
    notices = monitor.check()
    assert [n.stage for n in notices] == [StallStage.GRACE]
    assert notices[0].update.important
    assert "grace period of 2s" in notices[0].update.message

    clock.now = 5.9
    assert monitor.check() == []

    clock.now = 6.0
    notices = monitor.check()
    assert [n.stage for n in notices] == [StallStage.KILL]
    assert notices[0].update.important
    assert monitor.killed
    assert monitor.check() == []


def test_activity_during_grace_recovers():
    clock = FakeClock()
    monitor = StallMonitor(warn_after=2, kill_after=4, grace_multiplier=1.5, clock=clock)

    clock.now = 4.5
    assert [n.stage for n in monitor.check()] == [StallStage.WARNING, StallStage.GRACE]

    clock.now = 5.0
    recovery = monitor.record_activity()
    assert recovery is not None
    assert recovery.message == "Executor is active again"
    assert not monitor.warned and not monitor.grace_active

    clock.now = 6.5
    assert monitor.check() == [], "Silence restarts counting from the last activity"
    clock.now = 7.0
    assert [n.stage for n in monitor.check()] == [StallStage.WARNING]


def test_activity_without_warning_is_silent():
    clock = FakeClock()
    monitor = StallMonitor(warn_after=2, kill_after=4, clock=clock)
    clock.now = 1.0
    assert monitor.record_activity() is None


def test_throttle_coalesces_to_latest():
    clock = FakeClock()
    throttle = StatusThrottle(interval=5, clock=clock)

    assert [u.message for u in throttle.offer(StatusUpdate("Reading a.py"))] == ["Reading a.py"]

    clock.now = 1
    assert throttle.offer(StatusUpdate("Reading b.py")) == []
    clock.now = 2
    assert throttle.offer(StatusUpdate("Reading c.py")) == []
    assert throttle.next_release_at() == 5

    clock.now = 4
    assert throttle.flush() == []

    clock.now = 5
    assert [u.message for u in throttle.flush()] == ["Reading c.py"]
    assert throttle.pending is None


def test_throttle_passes_important_immediately():
    clock = FakeClock()
    throttle = StatusThrottle(interval=5, clock=clock)
    throttle.offer(StatusUpdate("Reading a.py"))

    clock.now = 1
    released = throttle.offer(StatusUpdate("Hit transient error, retrying...", important=True))
    assert [u.message for u in released] == ["Hit transient error, retrying..."]


def test_detect_restart_need():
    assert detect_restart_need("Done.\n\n> **NOTE: Service restart needed.**", "agentrelay")
    assert detect_restart_need("Please restart agentrelay to pick this up", "agentrelay")
    assert not detect_restart_need("Updated README.md", "agentrelay")
    assert not detect_restart_need("", "agentrelay")
