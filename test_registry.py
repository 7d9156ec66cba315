"""Tests for AgentRegistry."""

import pytest

from agentrelay.agents.registry import AgentRegistry
from agentrelay.models import AgentPhase, RegistryEventType


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_output_buffer_keeps_last_30_lines():
    registry = AgentRegistry()
    agent_id = registry.register("executor", 1, "task", AgentPhase.EXECUTING)

    registry.add_output(agent_id, [f"line {i}" for i in range(45)])

    output = registry.get(agent_id).recent_output
    assert len(output) == 30
    assert output[0] == "line 15"
    assert output[-1] == "line 44"


def test_raw_chunks_are_split_and_blank_lines_dropped():
    registry = AgentRegistry()
    agent_id = registry.register("executor", 1, "task", AgentPhase.EXECUTING)

    registry.add_output(agent_id, "first\n\n  \nsecond\n")

    assert registry.get(agent_id).recent_output == ["first", "second"]


def test_reads_return_copies():
    """Mutating a returned entry never changes the registry."""
    registry = AgentRegistry()
    agent_id = registry.register("executor", 1, "task", AgentPhase.PLANNING)

    entry = registry.get(agent_id)
    entry.recent_output.append("injected")
    entry.phase = AgentPhase.FAILED
    registry.get_snapshot().agents[0].description = "changed"

    fresh = registry.get(agent_id)
    assert fresh.recent_output == []
    assert fresh.phase == AgentPhase.PLANNING
    assert fresh.description == "task"


def test_completed_entry_retained_then_purged():
    """Finished entries stay readable for the TTL and then disappear."""
    clock = FakeClock()
    registry = AgentRegistry(completed_ttl=300, clock=clock)
    agent_id = registry.register("executor", 4, "task", AgentPhase.EXECUTING)

    registry.complete(agent_id, success=True, cost_usd=0.25)
    clock.now += 299
    entry = registry.get(agent_id)
    assert entry is not None, "Entry should still be readable inside the retention window"
    assert entry.phase == AgentPhase.COMPLETED
    assert entry.cost_usd == 0.25
    assert registry.get_active_count() == 0

    clock.now += 2
    assert registry.get(agent_id) is None
    assert registry.get_all_agents() == []
    assert [a.id for a in registry.get_completed_history()] == [agent_id]


def test_complete_is_ignored_for_terminal_entries():
    registry = AgentRegistry()
    agent_id = registry.register("executor", 1, "task", AgentPhase.EXECUTING)
    registry.complete(agent_id, success=False)
    registry.complete(agent_id, success=True)

    assert registry.get(agent_id).phase == AgentPhase.FAILED
    assert len(registry.get_completed_history()) == 1


def test_completed_history_is_bounded():
    registry = AgentRegistry(max_completed_history=3)
    ids = []
    for i in range(5):
        agent_id = registry.register("executor", i, f"task {i}", AgentPhase.EXECUTING)
        registry.complete(agent_id, success=True)
        ids.append(agent_id)

    assert [a.id for a in registry.get_completed_history()] == ids[2:]


def test_events_are_delivered_to_subscribers():
    registry = AgentRegistry()
    seen = []
    unsubscribe = registry.subscribe(lambda event: seen.append(event.type))

    agent_id = registry.register("executor", 1, "task", AgentPhase.EXECUTING)
    registry.update(agent_id, progress="Reading a.py")
    registry.add_output(agent_id, "hello")
    registry.complete(agent_id, success=True)
    unsubscribe()
    registry.touch(agent_id)

    assert seen == [
        RegistryEventType.REGISTERED,
        RegistryEventType.UPDATED,
        RegistryEventType.OUTPUT,
        RegistryEventType.COMPLETED,
    ]


def test_filtered_subscription_and_failing_listener():
    """A listener that raises does not stop delivery to the others."""
    registry = AgentRegistry()
    failures = []

    def broken(event):
        raise RuntimeError("observer bug")

    registry.subscribe(broken)
    registry.subscribe(lambda event: failures.append(event.agent.id), [RegistryEventType.FAILED])

    agent_id = registry.register("executor", 1, "task", AgentPhase.EXECUTING)
    registry.complete(agent_id, success=False)

    assert failures == [agent_id]


def test_update_rejects_unknown_fields():
    registry = AgentRegistry()
    agent_id = registry.register("executor", 1, "task", AgentPhase.EXECUTING)
    with pytest.raises(ValueError):
        registry.update(agent_id, chat_id=2)


def test_active_executor_for_chat():
    registry = AgentRegistry()
    plan_id = registry.register("executor", 3, "[PLAN] task", AgentPhase.PLANNING)
    registry.register("executor", 4, "other chat", AgentPhase.EXECUTING)

    assert registry.get_active_executor_for_chat(3).id == plan_id
    registry.complete(plan_id, success=True)
    assert registry.get_active_executor_for_chat(3) is None
