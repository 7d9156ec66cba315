"""Executor tuning knobs."""

from dataclasses import dataclass, field, replace
from typing import Dict, Any, Optional

from .task import Complexity


@dataclass(frozen=True)
class StallThresholds:
    """Seconds of silence per complexity tier."""
    trivial: float
    moderate: float
    complex: float

    def for_complexity(self, complexity: Complexity) -> float:
        return getattr(self, Complexity.from_string(complexity).value)

    def to_dict(self) -> Dict[str, float]:
        return {"trivial": self.trivial, "moderate": self.moderate, "complex": self.complex}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], defaults: "StallThresholds") -> "StallThresholds":
        """Create from a partial mapping; missing tiers keep ``defaults``."""
        data = data or {}
        return cls(
            trivial=float(data.get("trivial", defaults.trivial)),
            moderate=float(data.get("moderate", defaults.moderate)),
            complex=float(data.get("complex", defaults.complex)),
        )


DEFAULT_TIMEOUTS = StallThresholds(trivial=5 * 60, moderate=15 * 60, complex=45 * 60)
DEFAULT_STALL_WARNING = StallThresholds(trivial=2 * 60, moderate=4 * 60, complex=5 * 60)
DEFAULT_STALL_KILL = StallThresholds(trivial=5 * 60, moderate=10 * 60, complex=15 * 60)
DEFAULT_STALL_GRACE_MULTIPLIER = 1.5


@dataclass(frozen=True)
class ExecutorSettings:
    """All timing and model knobs the Executor reads.

    Values are seconds. ``timeouts`` reuses StallThresholds as a generic
    per-tier table.
    """
    timeouts: StallThresholds = field(default_factory=lambda: DEFAULT_TIMEOUTS)
    plan_timeout_cap: float = 10 * 60
    stall_warning: StallThresholds = field(default_factory=lambda: DEFAULT_STALL_WARNING)
    stall_kill: StallThresholds = field(default_factory=lambda: DEFAULT_STALL_KILL)
    stall_grace_multiplier: float = DEFAULT_STALL_GRACE_MULTIPLIER
    stall_check_interval: float = 30.0
    heartbeat_interval: float = 60.0
    status_update_interval: float = 5.0
    transient_retry_delay: float = 3.0
    model: Optional[str] = None

    def timeout_for(self, complexity: Complexity) -> float:
        """Execute-phase wall-clock budget for a tier."""
        return self.timeouts.for_complexity(complexity)

    def plan_timeout_for(self, complexity: Complexity) -> float:
        """Plan-phase budget: half the execute budget, capped."""
        return min(self.timeout_for(complexity) / 2, self.plan_timeout_cap)

    def with_overrides(self, **changes) -> "ExecutorSettings":
        return replace(self, **changes)

    @classmethod
    def from_config(cls) -> "ExecutorSettings":
        """Build settings from the environment-backed config module."""
        from agentrelay import config

        return cls(
            timeouts=StallThresholds(
                trivial=config.TIMEOUT_TRIVIAL_SECONDS,
                moderate=config.TIMEOUT_MODERATE_SECONDS,
                complex=config.TIMEOUT_COMPLEX_SECONDS,
            ),
            plan_timeout_cap=config.PLAN_TIMEOUT_CAP_SECONDS,
            stall_warning=StallThresholds(
                trivial=config.STALL_WARNING_TRIVIAL_SECONDS,
                moderate=config.STALL_WARNING_MODERATE_SECONDS,
                complex=config.STALL_WARNING_COMPLEX_SECONDS,
            ),
            stall_kill=StallThresholds(
                trivial=config.STALL_KILL_TRIVIAL_SECONDS,
                moderate=config.STALL_KILL_MODERATE_SECONDS,
                complex=config.STALL_KILL_COMPLEX_SECONDS,
            ),
            stall_grace_multiplier=config.STALL_GRACE_MULTIPLIER,
            stall_check_interval=config.STALL_CHECK_INTERVAL_SECONDS,
            heartbeat_interval=config.HEARTBEAT_INTERVAL_SECONDS,
            status_update_interval=config.STATUS_UPDATE_INTERVAL_SECONDS,
            transient_retry_delay=config.TRANSIENT_RETRY_DELAY_SECONDS,
            model=config.EXECUTOR_MODEL,
        )
