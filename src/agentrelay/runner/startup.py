"""Startup helpers: environment checks, configuration banner and state loading."""

import subprocess
from dataclasses import dataclass
from typing import Optional

from agentrelay import config
from agentrelay.agents.executor import Executor
from agentrelay.agents.registry import AgentRegistry
from agentrelay.core.logger import AgentLogger
from agentrelay.llm.factory import AgentClientFactory
from agentrelay.llm.model_selector import ModelSelector
from agentrelay.models import Complexity, ExecutorSettings
from agentrelay.scheduler.chat_locks import ChatLocks
from agentrelay.state.active_tasks import ActiveTaskTracker
from agentrelay.state.agent_config import AgentConfigStore
from agentrelay.state.plan_store import PlanStore
from agentrelay.state.task_queue import TaskQueue
from .coordinator import Notifier, TaskCoordinator


def check_agent_cli(cli_path: Optional[str] = None) -> bool:
    """Check if the agent CLI is installed and runs."""
    try:
        result = subprocess.run(
            [cli_path or config.AGENT_CLI_PATH, '--version'],
            capture_output=True,
            text=True,
            timeout=5
        )
        return result.returncode == 0
    except (FileNotFoundError, PermissionError, subprocess.TimeoutExpired):
        return False


def print_configuration(settings: Optional[ExecutorSettings] = None) -> None:
    """Print current configuration settings."""
    settings = settings or ExecutorSettings.from_config()

    print("\n" + "=" * 60)
    print("Configuration")
    print("=" * 60)

    print("\n[Agent]")
    print(f"  Backend: {config.AGENT_BACKEND}")
    print(f"  CLI: {config.AGENT_CLI_PATH}")
    print(f"  Default project dir: {config.DEFAULT_PROJECT_DIR}")
    print(f"  Service name: {config.SERVICE_NAME}")

    print("\n[Models]")
    print(f"  Executor model: {settings.model or '(default)'}")
    print(f"  Per-tier selection: {'enabled' if config.MODEL_SELECTION_ENABLED else 'disabled'}")
    if config.MODEL_SELECTION_ENABLED:
        print(f"  Trivial: {config.EXECUTOR_MODEL_TRIVIAL or '(default)'}")
        print(f"  Moderate: {config.EXECUTOR_MODEL_MODERATE or '(default)'}")
        print(f"  Complex: {config.EXECUTOR_MODEL_COMPLEX or '(default)'}")

    print("\n[Timeouts]")
    for complexity in Complexity:
        print(
            f"  {complexity.value}: run {settings.timeout_for(complexity):.0f}s, "
            f"plan {settings.plan_timeout_for(complexity):.0f}s, "
            f"stall warn {settings.stall_warning.for_complexity(complexity):.0f}s, "
            f"stall kill {settings.stall_kill.for_complexity(complexity):.0f}s"
        )
    print(f"  Stall grace multiplier: {settings.stall_grace_multiplier}")

    print("\n[State]")
    print(f"  State directory: {config.STATE_DIR}")
    print(f"  Max queued per chat: {config.MAX_QUEUE_PER_CHAT}")

    print("\n[Logging]")
    print(f"  Log directory: {config.LOG_DIR}")
    print(f"  Log level: {config.LOG_LEVEL}")

    print("\n[Environment]")
    print(f"  Agent CLI: {'available' if check_agent_cli() else 'not found'}")

    print("=" * 60)


@dataclass
class Stores:
    """The durable documents, loaded."""
    task_queue: TaskQueue
    task_tracker: ActiveTaskTracker
    plan_store: PlanStore
    agent_config: AgentConfigStore


def load_stores(state_dir: str, logger: Optional[AgentLogger] = None, max_queue_per_chat: Optional[int] = None) -> Stores:
    """Load every durable document. Must run before any chat input is accepted."""
    stores = Stores(
        task_queue=TaskQueue(
            state_dir,
            max_per_chat=max_queue_per_chat or config.MAX_QUEUE_PER_CHAT,
            logger=logger,
        ),
        task_tracker=ActiveTaskTracker(state_dir, logger=logger),
        plan_store=PlanStore(state_dir, logger=logger),
        agent_config=AgentConfigStore(state_dir, logger=logger, base=ExecutorSettings.from_config()),
    )
    stores.task_queue.load()
    stores.task_tracker.load()
    stores.plan_store.load()
    stores.agent_config.load()
    return stores


def build_crash_report(tracker: ActiveTaskTracker) -> Optional[str]:
    """
    Describe tasks that were running when the process last died.

    Returns:
        Report text, or None when nothing was interrupted
    """
    records = tracker.get_all()
    if not records:
        return None

    lines = [f"{len(records)} task(s) were interrupted by a restart:"]
    for record in records:
        lines.append(f"- [{record.id}] chat {record.chat_id} ({record.complexity.value}, started {record.started_at})")
        lines.append(f"    {record.task[:200]}")
        lines.append(f"    cwd: {record.cwd}")
        if record.session_id:
            lines.append(f"    resume session: {record.session_id}")
        else:
            lines.append("    resume session: (none recorded)")
    return "\n".join(lines)


@dataclass
class Runtime:
    """Everything a running process needs, wired together."""
    stores: Stores
    registry: AgentRegistry
    executor: Executor
    chat_locks: ChatLocks
    coordinator: TaskCoordinator


def build_runtime(
    logger: AgentLogger,
    state_dir: Optional[str] = None,
    notifier: Optional[Notifier] = None,
) -> Runtime:
    """Load state and construct the executor stack from configuration."""
    stores = load_stores(state_dir or config.STATE_DIR, logger=logger)
    settings = stores.agent_config.apply(ExecutorSettings.from_config())

    registry = AgentRegistry(
        max_output_lines=config.REGISTRY_MAX_OUTPUT_LINES,
        max_completed_history=config.REGISTRY_MAX_COMPLETED_HISTORY,
        completed_ttl=config.REGISTRY_COMPLETED_TTL_SECONDS,
        logger=logger,
    )
    client = AgentClientFactory.create(
        backend=config.AGENT_BACKEND,
        cli_path=config.AGENT_CLI_PATH,
        logger=logger,
    )
    selector = ModelSelector.from_config()
    selector.model_default = settings.model

    executor = Executor(
        client=client,
        registry=registry,
        settings=settings,
        task_tracker=stores.task_tracker,
        logger=logger,
        service_name=config.SERVICE_NAME,
        model_selector=selector,
    )
    chat_locks = ChatLocks()
    coordinator = TaskCoordinator(
        executor=executor,
        chat_locks=chat_locks,
        task_queue=stores.task_queue,
        plan_store=stores.plan_store,
        notifier=notifier,
        logger=logger,
    )
    return Runtime(
        stores=stores,
        registry=registry,
        executor=executor,
        chat_locks=chat_locks,
        coordinator=coordinator,
    )
