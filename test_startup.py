"""Tests for startup helpers, the CLI parser and the monitor's row formatting."""

import asyncio

import pytest

from agentrelay import config
from agentrelay.agents.executor import Executor
from agentrelay.dashboard.widgets import agent_row, completed_row, format_age, output_lines
from agentrelay.main import approve_plan, build_parser, main
from agentrelay.models import AgentPhase, Complexity, PendingPlan, TaskRequest
from agentrelay.runner.coordinator import TaskCoordinator
from agentrelay.runner.startup import Runtime, build_crash_report, load_stores
from agentrelay.scheduler.chat_locks import ChatLocks
from agentrelay.state import AgentConfigStore
from conftest import Step


def test_crash_report_lists_interrupted_tasks(tracker):
    assert build_crash_report(tracker) is None

    task_id = tracker.track(42, "Migrate the database", Complexity.COMPLEX, cwd="/srv/app")
    tracker.update_session_id(task_id, "sess-9")
    tracker.track(7, "Fix typo", Complexity.TRIVIAL)

    report = build_crash_report(tracker)

    assert report.startswith("2 task(s) were interrupted by a restart:")
    assert f"[{task_id}] chat 42 (complex" in report
    assert "resume session: sess-9" in report
    assert "resume session: (none recorded)" in report


def test_load_stores_reads_previous_state(state_dir):
    first = load_stores(state_dir, max_queue_per_chat=3)
    first.task_queue.enqueue(TaskRequest(chat_id=1, task="pending"))
    first.task_tracker.track(1, "running")

    second = load_stores(state_dir, max_queue_per_chat=3)

    assert second.task_queue.max_per_chat == 3
    assert [t.request.task for t in second.task_queue.peek(1)] == ["pending"]
    assert second.task_tracker.has_interrupted()
    assert not second.plan_store.has(1)


def test_parser_run_arguments():
    args = build_parser().parse_args(
        ["run", "--chat", "42", "--complexity", "complex", "--approve", "--resume", "s1", "Refactor parser"]
    )
    assert args.command == "run"
    assert args.chat == 42
    assert args.complexity == "complex"
    assert args.approve
    assert args.resume == "s1"
    assert args.task == "Refactor parser"

    monitor = build_parser().parse_args(["monitor", "--chat", "1", "--stay", "x"])
    assert monitor.stay
    assert monitor.complexity == "moderate"

    clear = build_parser().parse_args(["queue", "clear", "--chat", "5"])
    assert clear.queue_command == "clear"
    assert clear.chat == 5

    approve = build_parser().parse_args(["approve", "--chat", "7", "--resume", "s2"])
    assert approve.command == "approve"
    assert (approve.chat, approve.resume) == (7, "s2")

    resume = build_parser().parse_args(["queue", "resume", "--chat", "5"])
    assert resume.queue_command == "resume"


def test_parser_config_overrides():
    args = build_parser().parse_args(
        ["config", "--stall-kill", "complex=50", "--stall-kill", "trivial=5", "--stall-grace", "2"]
    )
    assert args.stall_kill == [("complex", 50.0), ("trivial", 5.0)]
    assert args.stall_grace == 2.0
    assert args.model is None

    with pytest.raises(SystemExit):
        build_parser().parse_args(["config", "--stall-warning", "huge=5"])


def test_config_command_saves_overrides(state_dir, monkeypatch):
    monkeypatch.setattr(config, "STATE_DIR", state_dir)

    code = main(["config", "--model", "opus", "--stall-kill", "complex=50", "--stall-grace", "2"])

    assert code == 0
    store = AgentConfigStore(state_dir)
    store.load()
    assert store.to_dict() == {
        "model": "opus",
        "stall_kill": {"complex": 50.0},
        "stall_grace_multiplier": 2.0,
    }

    assert main(["config", "--stall-grace", "0.5"]) == 2


def test_approve_executes_saved_plan(fake_client, registry, fast_settings, state_dir):
    stores = load_stores(state_dir)
    executor = Executor(fake_client, registry, settings=fast_settings, task_tracker=stores.task_tracker)
    chat_locks = ChatLocks()
    runtime = Runtime(
        stores=stores,
        registry=registry,
        executor=executor,
        chat_locks=chat_locks,
        coordinator=TaskCoordinator(
            executor=executor,
            chat_locks=chat_locks,
            task_queue=stores.task_queue,
            plan_store=stores.plan_store,
        ),
    )
    stores.plan_store.set(42, PendingPlan(chat_id=42, task="Add a health check", plan_text="1. add route"))
    fake_client.script(Step(result="Route added"))

    assert asyncio.run(approve_plan(runtime, 42)) == 0
    assert len(fake_client.requests) == 1
    assert "1. add route" in fake_client.requests[0].prompt
    assert not stores.plan_store.has(42)
    assert stores.task_tracker.get_all() == []

    assert asyncio.run(approve_plan(runtime, 42)) == 1, "No plan left to approve"


def test_monitor_rows(registry):
    entry_id = registry.register("executor", 42, "Fix [bold] markup", AgentPhase.EXECUTING)
    registry.add_output(entry_id, "line one\nline [two]\n")
    entry = registry.get(entry_id)

    row = agent_row(entry, now=entry.started_at + 75)
    assert row[0] == entry_id
    assert row[1] == "42"
    assert "executing" in row[2]
    assert row[3] == "1m 15s"
    assert row[5] == "line \\[two]"

    lines = output_lines(entry)
    assert "Fix \\[bold] markup" in lines[0]
    assert lines[-1] == "line \\[two]"
    assert output_lines(None) == ["(no agent selected)"]

    registry.complete(entry_id, success=True, cost_usd=0.5)
    done = registry.get_completed_history()[0]
    assert completed_row(done)[4] == "$0.5000"


def test_format_age():
    assert format_age(5) == "5s ago"
    assert format_age(125) == "2m ago"
    assert format_age(7300) == "2h ago"
    assert format_age(-3) == "0s ago"
