"""Caller-side control flow: plan, approve, execute and drain the queue."""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Protocol, Set

from agentrelay.agents.executor import Executor
from agentrelay.agents.progress import ProgressFormatter
from agentrelay.agents.prompts import with_approved_plan
from agentrelay.core.exceptions import AgentCancelledError, AgentError, format_duration
from agentrelay.core.logger import AgentLogger, default_logger
from agentrelay.models import ExecutorResult, PendingPlan, StatusUpdate, TaskRequest
from agentrelay.scheduler.chat_locks import ChatLocks
from agentrelay.state.plan_store import PlanStore
from agentrelay.state.task_queue import TaskQueue

RESULT_PREVIEW_CHARS = 500


class Notifier(Protocol):
    """Where user-facing messages for a chat go."""

    async def notify(self, chat_id: int, text: str, important: bool = False) -> None:
        ...


class LogNotifier:
    """Notifier that writes every message to the logger."""

    def __init__(self, logger: Optional[AgentLogger] = None):
        self.logger = logger or default_logger()

    async def notify(self, chat_id: int, text: str, important: bool = False) -> None:
        marker = "!" if important else "-"
        self.logger.info(f"[Chat {chat_id}] {marker} {text}")


class SubmitStatus(str, Enum):
    STARTED = "started"
    QUEUED = "queued"
    FULL = "full"
    LOCKED = "locked"


@dataclass
class SubmitResult:
    status: SubmitStatus
    message: str = ""
    position: Optional[int] = None
    queue_id: Optional[str] = None


class TaskCoordinator:
    """Runs the plan -> approve -> execute cycle for every chat.

    A request is queued if and only if the chat's executor-busy flag is set.
    The flag is set for the whole of a background plan or execute run and
    cleared when it ends. Only a finished execute run starts the next queued
    task; a finished plan waits for the user's approval instead.
    """

    def __init__(
        self,
        executor: Executor,
        chat_locks: ChatLocks,
        task_queue: TaskQueue,
        plan_store: PlanStore,
        notifier: Optional[Notifier] = None,
        logger: Optional[AgentLogger] = None,
    ):
        """
        Initialize coordinator.

        Args:
            executor: Executor running both phases
            chat_locks: Per-chat lock and executor-busy flags
            task_queue: Durable per-chat queue
            plan_store: Durable pending plans awaiting approval
            notifier: Destination for user-facing messages (default: logger)
            logger: Logger instance
        """
        self.executor = executor
        self.chat_locks = chat_locks
        self.task_queue = task_queue
        self.plan_store = plan_store
        self.logger = logger or default_logger()
        self.notifier = notifier or LogNotifier(self.logger)
        self.progress: Dict[int, ProgressFormatter] = {}
        self._run_tokens: Dict[int, asyncio.Event] = {}
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def submit(self, request: TaskRequest) -> SubmitResult:
        """Take in a new task for a chat: start planning now or queue it."""
        chat_id = request.chat_id
        if self.chat_locks.is_locked(chat_id):
            return SubmitResult(
                status=SubmitStatus.LOCKED,
                message="Still processing your previous message, please wait.",
            )

        self.chat_locks.lock(chat_id)
        try:
            if self.chat_locks.is_executor_busy(chat_id):
                queued = self.task_queue.enqueue(request)
                if queued is None:
                    message = f"Queue is full (max {self.task_queue.max_per_chat})"
                    await self._notify(chat_id, message, important=True)
                    return SubmitResult(status=SubmitStatus.FULL, message=message)
                position = self.task_queue.get_queue_length(chat_id)
                message = f"Queued (position {position}). It will start when the current task finishes."
                await self._notify(chat_id, message)
                return SubmitResult(
                    status=SubmitStatus.QUEUED,
                    message=message,
                    position=position,
                    queue_id=queued.id,
                )

            self.chat_locks.set_executor_busy(chat_id)
            self._start_plan(request)
            return SubmitResult(status=SubmitStatus.STARTED, message="Planning started")
        finally:
            self.chat_locks.unlock(chat_id)

    async def approve(self, chat_id: int, session_id: Optional[str] = None) -> bool:
        """
        Execute the chat's pending plan.

        Returns:
            False if there is no plan or the chat is busy (the plan is kept)
        """
        plan = self.plan_store.consume(chat_id)
        if plan is None:
            return False
        if self.chat_locks.is_executor_busy(chat_id):
            self.plan_store.set(chat_id, plan)
            return False

        request = plan.to_request(context=with_approved_plan(plan.context, plan.plan_text))
        self.chat_locks.set_executor_busy(chat_id)
        self._spawn(chat_id, self._run_execute(request, self._new_token(chat_id), session_id))
        return True

    async def revise(self, chat_id: int, feedback: str) -> bool:
        """Re-plan with the user's feedback on the pending plan."""
        plan = self.plan_store.get(chat_id)
        if plan is None or self.chat_locks.is_executor_busy(chat_id):
            return False
        self.plan_store.consume(chat_id)
        self.chat_locks.set_executor_busy(chat_id)
        self._start_plan(
            plan.to_request(),
            revision_count=plan.revision_count + 1,
            revision_feedback=feedback,
            previous_plan=plan.plan_text,
        )
        return True

    def cancel_plan(self, chat_id: int) -> bool:
        return self.plan_store.cancel(chat_id)

    def cancel_running(self, chat_id: int) -> bool:
        """Fire the cancellation token of the chat's background run, if any."""
        token = self._run_tokens.get(chat_id)
        if token is None or token.is_set():
            return False
        token.set()
        self.logger.info(f"[Coordinator] Cancellation requested for chat {chat_id}")
        return True

    async def resume_queue(self, chat_id: int) -> bool:
        """Start the next queued task of an idle chat (e.g. after a restart)."""
        if self.chat_locks.is_executor_busy(chat_id) or self.task_queue.get_queue_length(chat_id) == 0:
            return False
        return await self._process_next(chat_id)

    async def wait_idle(self) -> None:
        """Wait until no background run is left, including runs started meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for token in list(self._run_tokens.values()):
            token.set()
        await self.wait_idle()

    # ------------------------------------------------------------------
    # Background runs
    # ------------------------------------------------------------------

    def _new_token(self, chat_id: int) -> asyncio.Event:
        token = asyncio.Event()
        self._run_tokens[chat_id] = token
        return token

    def _spawn(self, chat_id: int, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)

        def done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                self.logger.log_error_with_traceback(
                    "Coordinator", t.exception(), {"chat_id": chat_id}
                )

        task.add_done_callback(done)
        return task

    def _start_plan(
        self,
        request: TaskRequest,
        revision_count: int = 0,
        revision_feedback: Optional[str] = None,
        previous_plan: Optional[str] = None,
    ) -> None:
        token = self._new_token(request.chat_id)
        self._spawn(
            request.chat_id,
            self._run_plan(request, token, revision_count, revision_feedback, previous_plan),
        )

    def _status_forwarder(self, chat_id: int):
        async def forward(update: StatusUpdate) -> None:
            await self._notify(chat_id, update.message, important=update.important)
        return forward

    async def _run_plan(
        self,
        request: TaskRequest,
        token: asyncio.Event,
        revision_count: int,
        revision_feedback: Optional[str],
        previous_plan: Optional[str],
    ) -> None:
        chat_id = request.chat_id
        progress = ProgressFormatter(header="Planning")
        self.progress[chat_id] = progress
        try:
            result = await self.executor.plan(
                request,
                revision_feedback=revision_feedback,
                previous_plan=previous_plan,
                abort_event=token,
                on_status_update=self._status_forwarder(chat_id),
                on_stream_event=progress.add_event,
            )
            self.plan_store.set(chat_id, PendingPlan.from_request(request, result.plan_text, revision_count))
            header = "Revised plan" if revision_count else "Plan"
            await self._notify(
                chat_id,
                f"{header} ready ({format_duration(result.duration_ms / 1000)}, ${result.cost_usd:.4f}):\n\n"
                f"{result.plan_text}\n\nApprove, revise or cancel.",
                important=True,
            )
        except AgentCancelledError:
            await self._notify(chat_id, "Planning cancelled.", important=True)
        except AgentError as e:
            await self._notify(chat_id, f"Planning failed: {e}", important=True)
        finally:
            self._release(chat_id, token)

    async def _run_execute(self, request: TaskRequest, token: asyncio.Event, session_id: Optional[str]) -> None:
        chat_id = request.chat_id
        progress = ProgressFormatter(header="Working")
        self.progress[chat_id] = progress
        try:
            result = await self.executor.execute(
                request,
                abort_event=token,
                on_status_update=self._status_forwarder(chat_id),
                on_stream_event=progress.add_event,
                session_id=session_id,
            )
            await self._notify(chat_id, self.format_result(result, progress), important=True)
        finally:
            self._release(chat_id, token)
        await self._process_next(chat_id)

    def _release(self, chat_id: int, token: asyncio.Event) -> None:
        if self._run_tokens.get(chat_id) is token:
            del self._run_tokens[chat_id]
        self.chat_locks.set_executor_idle(chat_id)

    async def _process_next(self, chat_id: int) -> bool:
        """Dequeue exactly one task and start its plan phase."""
        if self.chat_locks.is_executor_busy(chat_id):
            return False
        queued = self.task_queue.dequeue(chat_id)
        if queued is None:
            return False
        remaining = self.task_queue.get_queue_length(chat_id)
        self.logger.info(
            f"[Coordinator] Starting queued task {queued.id} for chat {chat_id} ({remaining} remaining)"
        )
        self.chat_locks.set_executor_busy(chat_id)
        await self._notify(chat_id, f"Starting queued task: {queued.request.task[:100]}")
        self._start_plan(queued.request)
        return True

    @staticmethod
    def format_result(result: ExecutorResult, progress: Optional[ProgressFormatter] = None) -> str:
        text = result.result
        if len(text) > RESULT_PREVIEW_CHARS:
            text = text[:RESULT_PREVIEW_CHARS] + "..."
        parts = []
        if progress is not None:
            parts.append(progress.render_summary(result.success, result.duration_ms, result.cost_usd))
            parts.append("")
        parts.append(f"{'Done' if result.success else 'Failed'}: {text}")
        if result.needs_restart:
            parts.append("")
            parts.append("Service restart needed.")
        return "\n".join(parts)

    async def _notify(self, chat_id: int, text: str, important: bool = False) -> None:
        try:
            await self.notifier.notify(chat_id, text, important=important)
        except Exception as e:
            self.logger.warning(f"[Coordinator] Notifier failed for chat {chat_id}: {e}")
