"""In-memory directory of running and recently finished invocations."""

import asyncio
import itertools
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Iterable, List, Optional

from agentrelay.core.logger import AgentLogger, default_logger
from agentrelay.models import (
    AgentEntry,
    AgentPhase,
    RegistryEvent,
    RegistryEventType,
    RegistrySnapshot,
)

MAX_OUTPUT_LINES = 30
MAX_COMPLETED_HISTORY = 50
COMPLETED_TTL_SECONDS = 300.0

RegistryListener = Callable[[RegistryEvent], None]

_UPDATABLE_FIELDS = frozenset({
    "phase", "progress", "last_activity_at", "success", "cost_usd", "completed_at", "description",
})


class AgentRegistry:
    """Process-wide view of invocations plus a typed publish/subscribe bus.

    The registry is a side channel: it never influences scheduling. Writes
    are atomic per entry under an RLock, and every read returns deep copies
    so observers cannot reach internal state. Completed entries stay
    readable for ``completed_ttl`` seconds and are then removed, either by a
    timer on the running event loop or lazily on the next access.
    """

    def __init__(
        self,
        max_output_lines: int = MAX_OUTPUT_LINES,
        max_completed_history: int = MAX_COMPLETED_HISTORY,
        completed_ttl: float = COMPLETED_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        logger: Optional[AgentLogger] = None,
    ):
        """
        Initialize registry.

        Args:
            max_output_lines: Size of each entry's rolling output buffer
            max_completed_history: Size of the completed-history ring
            completed_ttl: Seconds a finished entry stays in the live map
            clock: Time source (seconds); injectable for tests
            logger: Logger instance
        """
        self.max_output_lines = max_output_lines
        self.completed_ttl = completed_ttl
        self._clock = clock
        self.logger = logger or default_logger()
        self._agents: Dict[str, AgentEntry] = {}
        self._history: Deque[AgentEntry] = deque(maxlen=max_completed_history)
        self._expiry: Dict[str, float] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._listeners: List[tuple] = []
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(
        self,
        listener: RegistryListener,
        event_types: Optional[Iterable[RegistryEventType]] = None,
    ) -> Callable[[], None]:
        """
        Register a change listener.

        Args:
            listener: Called synchronously with each RegistryEvent
            event_types: Only deliver these types (default: all)

        Returns:
            A function that removes the listener
        """
        wanted = frozenset(event_types) if event_types is not None else None
        item = (listener, wanted)
        with self._lock:
            self._listeners.append(item)

        def unsubscribe() -> None:
            with self._lock:
                if item in self._listeners:
                    self._listeners.remove(item)

        return unsubscribe

    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def _emit(self, event_type: RegistryEventType, agent: AgentEntry) -> None:
        event = RegistryEvent(type=event_type, agent=agent.copy(), timestamp=self._clock())
        with self._lock:
            listeners = list(self._listeners)
        for listener, wanted in listeners:
            if wanted is not None and event_type not in wanted:
                continue
            try:
                listener(event)
            except Exception as e:
                # Listener errors never reach the writer
                self.logger.warning(f"[AgentRegistry] Listener failed on {event_type.value}: {e}")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _generate_id(self, role: str) -> str:
        return f"{role}-{next(self._ids)}-{int(self._clock() * 1000):x}"

    def register(
        self,
        role: str,
        chat_id: int,
        description: str,
        phase: AgentPhase,
    ) -> str:
        """Create an entry for a starting invocation and return its id."""
        now = self._clock()
        with self._lock:
            agent_id = self._generate_id(role)
            entry = AgentEntry(
                id=agent_id,
                role=role,
                chat_id=chat_id,
                description=description,
                phase=AgentPhase(phase),
                started_at=now,
                last_activity_at=now,
            )
            self._agents[agent_id] = entry
        self._emit(RegistryEventType.REGISTERED, entry)
        self.logger.info(f"[AgentRegistry] Registered {agent_id} for chat {chat_id}: {description[:80]}")
        return agent_id

    def update(self, agent_id: str, **fields) -> None:
        """
        Merge fields into an entry and emit ``updated``.

        ``last_activity_at`` is bumped to now unless passed explicitly.
        Unknown ids are ignored.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update registry fields: {', '.join(sorted(unknown))}")
        with self._lock:
            entry = self._agents.get(agent_id)
            if entry is None:
                return
            for name, value in fields.items():
                if name == "phase":
                    value = AgentPhase(value)
                setattr(entry, name, value)
            if fields.get("last_activity_at") is None:
                entry.last_activity_at = self._clock()
            snapshot = entry.copy()
        self._emit(RegistryEventType.UPDATED, snapshot)

    def touch(self, agent_id: str) -> None:
        """Record activity without changing anything else."""
        self.update(agent_id)

    def add_output(self, agent_id: str, lines) -> None:
        """
        Append output to an entry's rolling buffer.

        Args:
            agent_id: Entry id
            lines: A list of lines, or a raw chunk split on newlines with
                blank lines dropped
        """
        if isinstance(lines, str):
            new_lines = [line for line in lines.split("\n") if line.strip()]
        else:
            new_lines = list(lines)
        with self._lock:
            entry = self._agents.get(agent_id)
            if entry is None:
                return
            entry.recent_output.extend(new_lines)
            overflow = len(entry.recent_output) - self.max_output_lines
            if overflow > 0:
                del entry.recent_output[:overflow]
            entry.last_activity_at = self._clock()
            snapshot = entry.copy()
        self._emit(RegistryEventType.OUTPUT, snapshot)

    def complete(self, agent_id: str, success: bool, cost_usd: Optional[float] = None) -> None:
        """Move an entry to its terminal phase and schedule its removal."""
        now = self._clock()
        with self._lock:
            entry = self._agents.get(agent_id)
            if entry is None or entry.phase.is_terminal:
                return
            entry.phase = AgentPhase.COMPLETED if success else AgentPhase.FAILED
            entry.success = success
            entry.completed_at = now
            entry.last_activity_at = now
            if cost_usd is not None:
                entry.cost_usd = cost_usd
            snapshot = entry.copy()
            self._history.append(entry.copy())
            self._expiry[agent_id] = now + self.completed_ttl
        self._emit(RegistryEventType.COMPLETED if success else RegistryEventType.FAILED, snapshot)
        self.logger.info(f"[AgentRegistry] {agent_id} {'completed' if success else 'failed'} (cost: {cost_usd})")
        self._schedule_removal(agent_id)

    def _schedule_removal(self, agent_id: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: removal happens lazily on the next read
            return
        with self._lock:
            self._timers[agent_id] = loop.call_later(self.completed_ttl, self._remove_expired, agent_id)

    def _remove_expired(self, agent_id: str) -> None:
        with self._lock:
            self._timers.pop(agent_id, None)
            self._expiry.pop(agent_id, None)
            entry = self._agents.pop(agent_id, None)
        if entry is not None:
            self._emit(RegistryEventType.REMOVED, entry)

    def purge_expired(self) -> int:
        """Remove finished entries whose retention window has passed."""
        now = self._clock()
        with self._lock:
            expired = [agent_id for agent_id, deadline in self._expiry.items() if deadline <= now]
        for agent_id in expired:
            with self._lock:
                timer = self._timers.pop(agent_id, None)
            if timer is not None:
                timer.cancel()
            self._remove_expired(agent_id)
        return len(expired)

    def close(self) -> None:
        """Cancel pending removal timers."""
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    # ------------------------------------------------------------------
    # Reads (always copies)
    # ------------------------------------------------------------------

    def get(self, agent_id: str) -> Optional[AgentEntry]:
        self.purge_expired()
        with self._lock:
            entry = self._agents.get(agent_id)
            return entry.copy() if entry else None

    def get_snapshot(self) -> RegistrySnapshot:
        self.purge_expired()
        with self._lock:
            return RegistrySnapshot(
                agents=[a.copy() for a in self._agents.values()],
                recently_completed=[a.copy() for a in self._history],
                timestamp=self._clock(),
            )

    def get_all_agents(self) -> List[AgentEntry]:
        self.purge_expired()
        with self._lock:
            return [a.copy() for a in self._agents.values()]

    def get_active_agents(self) -> List[AgentEntry]:
        self.purge_expired()
        with self._lock:
            return [a.copy() for a in self._agents.values() if not a.phase.is_terminal]

    def get_active_count(self) -> int:
        with self._lock:
            return sum(1 for a in self._agents.values() if not a.phase.is_terminal)

    def get_completed_history(self) -> List[AgentEntry]:
        with self._lock:
            return [a.copy() for a in self._history]

    def get_active_executor_for_chat(self, chat_id: int) -> Optional[AgentEntry]:
        self.purge_expired()
        with self._lock:
            for entry in self._agents.values():
                if entry.role == "executor" and entry.chat_id == chat_id and not entry.phase.is_terminal:
                    return entry.copy()
        return None
