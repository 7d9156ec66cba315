"""Command-line entry point for agentrelay."""

import argparse
import asyncio
import sys
from typing import Optional, Tuple

from agentrelay import config
from agentrelay.core.logger import AgentLogger
from agentrelay.models import Complexity, ExecutorSettings, TaskRequest
from agentrelay.state.agent_config import TIER_NAMES
from agentrelay.runner.coordinator import LogNotifier, SubmitStatus
from agentrelay.runner.startup import (
    Runtime,
    build_crash_report,
    build_runtime,
    check_agent_cli,
    load_stores,
    print_configuration,
)


class PrintNotifier:
    """Notifier that prints chat messages to stdout."""

    async def notify(self, chat_id: int, text: str, important: bool = False) -> None:
        prefix = "[!]" if important else "[-]"
        print(f"{prefix} (chat {chat_id}) {text}", flush=True)


def create_logger(console: bool = True) -> AgentLogger:
    return AgentLogger(
        log_dir=config.LOG_DIR,
        log_level=config.LOG_LEVEL,
        sync=config.LOG_FSYNC,
        console=console,
    )


def _request_from_args(args: argparse.Namespace) -> TaskRequest:
    return TaskRequest(
        chat_id=args.chat,
        task=args.task,
        context=args.context or "",
        complexity=Complexity.from_string(args.complexity),
        raw_message=args.task,
        cwd=args.cwd or config.DEFAULT_PROJECT_DIR,
    )


async def run_task(runtime: Runtime, args: argparse.Namespace) -> int:
    """Plan a task, print the plan and optionally execute it."""
    coordinator = runtime.coordinator
    submitted = await coordinator.submit(_request_from_args(args))
    if submitted.status != SubmitStatus.STARTED:
        print(submitted.message)
        return 1

    try:
        await coordinator.wait_idle()
        if runtime.stores.plan_store.get(args.chat) is None:
            return 1
        if not args.approve:
            print(f"\nPlan saved for chat {args.chat}. Run 'agentrelay approve --chat {args.chat}' to execute it.")
            return 0
        return await _execute_plan(runtime, args.chat, args.resume)
    finally:
        await coordinator.shutdown()
        runtime.registry.close()


async def _execute_plan(runtime: Runtime, chat_id: int, session_id: Optional[str]) -> int:
    if not await runtime.coordinator.approve(chat_id, session_id=session_id):
        print("Could not start execution (chat busy or plan missing).")
        return 1
    await runtime.coordinator.wait_idle()
    return 0


async def approve_plan(runtime: Runtime, chat_id: int, session_id: Optional[str] = None) -> int:
    """Execute a plan saved by an earlier run."""
    try:
        return await _execute_plan(runtime, chat_id, session_id)
    finally:
        await runtime.coordinator.shutdown()
        runtime.registry.close()


async def resume_queue(runtime: Runtime, chat_id: int) -> int:
    """Plan the next queued task of a chat left idle by a restart."""
    try:
        if not await runtime.coordinator.resume_queue(chat_id):
            print(f"Nothing to resume for chat {chat_id} (queue empty or chat busy).")
            return 1
        await runtime.coordinator.wait_idle()
        return 0
    finally:
        await runtime.coordinator.shutdown()
        runtime.registry.close()


def cmd_status(args: argparse.Namespace) -> int:
    stores = load_stores(config.STATE_DIR)

    print("=" * 60)
    print("agentrelay status")
    print("=" * 60)

    stats = stores.task_queue.get_stats()
    print(f"\n[Queue] {stats.total} task(s) in {stats.chats} chat(s)")
    for chat_id in stores.task_queue.get_chats_with_queued():
        for position, queued in enumerate(stores.task_queue.peek(chat_id), start=1):
            print(f"  chat {chat_id} #{position} [{queued.id}] {queued.request.task[:70]}")

    chat_ids = stores.plan_store.all_chat_ids()
    print(f"\n[Pending plans] {len(chat_ids)}")
    for chat_id in chat_ids:
        plan = stores.plan_store.get(chat_id)
        if plan is not None:
            print(f"  chat {chat_id} (revision {plan.revision_count}, {plan.created_at}): {plan.task[:70]}")

    report = build_crash_report(stores.task_tracker)
    print("\n[Interrupted]")
    print(report or "  none")
    return 0


def cmd_queue_clear(args: argparse.Namespace) -> int:
    stores = load_stores(config.STATE_DIR)
    removed = stores.task_queue.clear_chat(args.chat)
    print(f"Removed {removed} queued task(s) for chat {args.chat}")
    return 0


def cmd_interrupted_clear(args: argparse.Namespace) -> int:
    stores = load_stores(config.STATE_DIR)
    count = len(stores.task_tracker.get_all())
    stores.task_tracker.clear_all()
    print(f"Cleared {count} interrupted task record(s)")
    return 0


def _preflight(runtime: Runtime) -> bool:
    report = build_crash_report(runtime.stores.task_tracker)
    if report:
        print(report)
        print("Use 'agentrelay interrupted clear' once they have been dealt with.\n")
    if not check_agent_cli():
        print(f"Agent CLI not found: {config.AGENT_CLI_PATH}")
        return False
    return True


def cmd_run(args: argparse.Namespace) -> int:
    logger = create_logger()
    runtime = build_runtime(logger=logger, notifier=PrintNotifier())
    if not _preflight(runtime):
        return 1
    try:
        return asyncio.run(run_task(runtime, args))
    except KeyboardInterrupt:
        print("\nInterrupted")
        logger.info("Run interrupted by user")
        return 130


def cmd_monitor(args: argparse.Namespace) -> int:
    from agentrelay.dashboard.app import AgentMonitorApp

    logger = create_logger(console=False)
    runtime = build_runtime(logger=logger, notifier=LogNotifier(logger))
    if not _preflight(runtime):
        return 1

    result = {"code": 0}

    async def job() -> None:
        result["code"] = await run_task(runtime, args)

    app = AgentMonitorApp(runtime.registry, job=job, exit_when_done=not args.stay)
    app.run()
    return result["code"]


def tier_seconds(text: str) -> Tuple[str, float]:
    """Parse a TIER=SECONDS command-line value."""
    tier, sep, seconds = text.partition("=")
    tier = tier.strip().lower()
    if not sep or tier not in TIER_NAMES:
        raise argparse.ArgumentTypeError(f"expected TIER=SECONDS with TIER one of {', '.join(TIER_NAMES)}")
    try:
        return tier, float(seconds)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid seconds: {seconds!r}")


def cmd_config(args: argparse.Namespace) -> int:
    stores = load_stores(config.STATE_DIR)
    store = stores.agent_config
    changed = False
    try:
        if args.model is not None:
            store.set_model(args.model)
            changed = True
        if args.stall_warning:
            store.set_stall_warning(dict(args.stall_warning))
            changed = True
        if args.stall_kill:
            store.set_stall_kill(dict(args.stall_kill))
            changed = True
        if args.stall_grace is not None:
            store.set_stall_grace_multiplier(args.stall_grace)
            changed = True
    except ValueError as e:
        print(f"Invalid configuration: {e}")
        return 2
    if changed:
        store.save()
        print(f"Saved {store.path}")
    print_configuration(store.apply(ExecutorSettings.from_config()))
    return 0


def cmd_approve(args: argparse.Namespace) -> int:
    logger = create_logger()
    runtime = build_runtime(logger=logger, notifier=PrintNotifier())
    if not _preflight(runtime):
        return 1
    try:
        return asyncio.run(approve_plan(runtime, args.chat, args.resume))
    except KeyboardInterrupt:
        print("\nInterrupted")
        logger.info("Run interrupted by user")
        return 130


def cmd_queue_resume(args: argparse.Namespace) -> int:
    logger = create_logger()
    runtime = build_runtime(logger=logger, notifier=PrintNotifier())
    if not _preflight(runtime):
        return 1
    return asyncio.run(resume_queue(runtime, args.chat))


def _add_task_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--chat', type=int, required=True, help='Chat (conversation) id')
    parser.add_argument(
        '--complexity',
        choices=[c.value for c in Complexity],
        default=Complexity.MODERATE.value,
        help='Complexity tier, selects timeouts and stall thresholds',
    )
    parser.add_argument('--cwd', default=None, help='Working directory for the agent')
    parser.add_argument('--context', default=None, help='Extra context passed to the agent')
    parser.add_argument('--approve', action='store_true', help='Execute the plan without asking')
    parser.add_argument('--resume', default=None, metavar='SESSION_ID', help='Agent session to resume when executing')
    parser.add_argument('task', help='Task description')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='agentrelay',
        description='Per-chat plan/approve/execute orchestrator for an external coding agent',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  agentrelay status
  agentrelay run --chat 42 "Add a health check endpoint"
  agentrelay run --chat 42 --complexity complex --approve "Refactor the parser"
  agentrelay monitor --chat 42 --approve "Fix the flaky test"
  agentrelay approve --chat 42
  agentrelay queue clear --chat 42
  agentrelay config --stall-kill complex=1200 --stall-grace 2
        """
    )
    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('status', help='Show queued tasks, pending plans and interrupted tasks')
    config_cmd = sub.add_parser('config', help='Show the effective configuration, optionally saving overrides')
    config_cmd.add_argument('--model', default=None, help='Executor model override (empty string clears it)')
    config_cmd.add_argument(
        '--stall-warning', type=tier_seconds, action='append', metavar='TIER=SECONDS',
        help='Stall warning threshold for one tier (repeatable)',
    )
    config_cmd.add_argument(
        '--stall-kill', type=tier_seconds, action='append', metavar='TIER=SECONDS',
        help='Stall kill threshold for one tier (repeatable)',
    )
    config_cmd.add_argument('--stall-grace', type=float, default=None, help='Grace multiplier applied to the kill threshold')

    run = sub.add_parser('run', help='Plan a task and optionally execute it')
    _add_task_arguments(run)

    monitor = sub.add_parser('monitor', help='Like run, with the live terminal monitor')
    _add_task_arguments(monitor)
    monitor.add_argument('--stay', action='store_true', help='Keep the monitor open after the task finishes')

    approve = sub.add_parser('approve', help='Execute the pending plan of a chat')
    approve.add_argument('--chat', type=int, required=True)
    approve.add_argument('--resume', default=None, metavar='SESSION_ID', help='Agent session to resume')

    queue = sub.add_parser('queue', help='Manage queued tasks')
    queue_sub = queue.add_subparsers(dest='queue_command', required=True)
    queue_clear = queue_sub.add_parser('clear', help='Drop every queued task of a chat')
    queue_clear.add_argument('--chat', type=int, required=True)
    queue_resume = queue_sub.add_parser('resume', help='Plan the next queued task of an idle chat')
    queue_resume.add_argument('--chat', type=int, required=True)

    interrupted = sub.add_parser('interrupted', help='Manage tasks interrupted by a crash')
    interrupted_sub = interrupted.add_subparsers(dest='interrupted_command', required=True)
    interrupted_sub.add_parser('clear', help='Forget all interrupted task records')

    return parser


def main(argv: Optional[list] = None) -> int:
    """Main entry point with command-line argument parsing."""
    args = build_parser().parse_args(argv)

    if args.command == 'status':
        return cmd_status(args)
    if args.command == 'config':
        return cmd_config(args)
    if args.command == 'run':
        return cmd_run(args)
    if args.command == 'monitor':
        return cmd_monitor(args)
    if args.command == 'approve':
        return cmd_approve(args)
    if args.command == 'queue':
        if args.queue_command == 'resume':
            return cmd_queue_resume(args)
        return cmd_queue_clear(args)
    if args.command == 'interrupted':
        return cmd_interrupted_clear(args)
    return 2


if __name__ == "__main__":
    sys.exit(main())
