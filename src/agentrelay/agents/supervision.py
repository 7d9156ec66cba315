"""Liveness supervision primitives: stall detection and status throttling."""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from agentrelay.core.exceptions import format_duration
from agentrelay.models import StatusUpdate

RESTART_PHRASES = (
    "restart needed",
    "service restart",
    "note: service restart needed",
)


def detect_restart_need(output: str, service_name: str) -> bool:
    """Whether the agent's final text says the service needs a restart."""
    lower = (output or "").lower()
    if any(phrase in lower for phrase in RESTART_PHRASES):
        return True
    return f"restart {service_name.lower()}" in lower


class StallStage(str, Enum):
    WARNING = "warning"
    GRACE = "grace"
    KILL = "kill"


@dataclass
class StallNotice:
    """Something the stall monitor decided on a tick."""
    stage: StallStage
    silent_for: float
    update: StatusUpdate


class StallMonitor:
    """Two-stage stall detector driven by explicit ticks.

    Crossing ``warn_after`` emits a soft notice, crossing ``kill_after``
    opens a grace window, and crossing ``kill_after * grace_multiplier``
    requests an abort. Activity before the abort clears both flags and
    produces a recovery notice.
    """

    def __init__(
        self,
        warn_after: float,
        kill_after: float,
        grace_multiplier: float = 1.5,
        clock: Callable[[], float] = time.monotonic,
        label: str = "Executor",
    ):
        self.warn_after = warn_after
        self.kill_after = kill_after
        self.hard_kill_after = kill_after * grace_multiplier
        self.label = label
        self._clock = clock
        self.last_activity = clock()
        self.warned = False
        self.grace_active = False
        self.killed = False

    def silent_for(self, now: Optional[float] = None) -> float:
        return (self._clock() if now is None else now) - self.last_activity

    def record_activity(self, now: Optional[float] = None) -> Optional[StatusUpdate]:
        """
        Note activity from the invocation.

        Returns:
            A recovery StatusUpdate if a warning or grace window was open
        """
        self.last_activity = self._clock() if now is None else now
        if self.killed or not (self.warned or self.grace_active):
            return None
        self.warned = False
        self.grace_active = False
        return StatusUpdate(message=f"{self.label} is active again")

    def check(self, now: Optional[float] = None) -> List[StallNotice]:
        """Evaluate thresholds; at most one notice per stage until activity resets them."""
        if self.killed:
            return []
        silent = self.silent_for(now)
        notices: List[StallNotice] = []

        if silent >= self.warn_after and not self.warned:
            self.warned = True
            notices.append(StallNotice(
                stage=StallStage.WARNING,
                silent_for=silent,
                update=StatusUpdate(
                    message=f"{self.label} has been silent for {format_duration(silent)}, may be stalled",
                ),
            ))

        if silent >= self.kill_after and not self.grace_active:
            self.grace_active = True
            grace = self.hard_kill_after - self.kill_after
            notices.append(StallNotice(
                stage=StallStage.GRACE,
                silent_for=silent,
                update=StatusUpdate(
                    message=(
                        f"{self.label} silent for {format_duration(silent)}, "
                        f"grace period of {format_duration(grace)} before abort"
                    ),
                    important=True,
                ),
            ))

        if silent >= self.hard_kill_after:
            self.killed = True
            notices.append(StallNotice(
                stage=StallStage.KILL,
                silent_for=silent,
                update=StatusUpdate(
                    message=(
                        f"{self.label} killed after {format_duration(silent)} of silence "
                        f"(grace period expired)"
                    ),
                    important=True,
                ),
            ))

        return notices


class StatusThrottle:
    """Rate limiter for free-form status messages.

    At most one ordinary message passes per ``interval``; messages arriving
    inside the window replace each other and the latest is released by
    ``flush`` once the window has passed. Important messages always pass.
    """

    def __init__(self, interval: float, clock: Callable[[], float] = time.monotonic):
        self.interval = interval
        self._clock = clock
        self._last_sent: Optional[float] = None
        self._pending: Optional[StatusUpdate] = None

    @property
    def pending(self) -> Optional[StatusUpdate]:
        return self._pending

    def next_release_at(self) -> Optional[float]:
        if self._pending is None or self._last_sent is None:
            return None
        return self._last_sent + self.interval

    def offer(self, update: StatusUpdate) -> List[StatusUpdate]:
        """Return the updates to deliver right now (zero or one)."""
        if update.important:
            return [update]
        now = self._clock()
        if self._last_sent is None or now - self._last_sent >= self.interval:
            self._last_sent = now
            self._pending = None
            return [update]
        self._pending = update
        return []

    def flush(self) -> List[StatusUpdate]:
        """Release the coalesced message if its window has passed."""
        if self._pending is None:
            return []
        now = self._clock()
        if self._last_sent is not None and now - self._last_sent < self.interval:
            return []
        update, self._pending = self._pending, None
        self._last_sent = now
        return [update]

    def discard(self) -> None:
        self._pending = None
