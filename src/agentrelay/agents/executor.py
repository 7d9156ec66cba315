"""Executor: drives one plan- or execute-phase invocation of the agent."""

import asyncio
import contextlib
import inspect
import time
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from agentrelay.core.exceptions import (
    AgentCancelledError,
    AgentError,
    AgentStalledError,
    AgentTimeoutError,
    format_duration,
)
from agentrelay.core.logger import AgentLogger, default_logger
from agentrelay.llm.classifier import is_transient_error
from agentrelay.llm.client import AgentClient, InvocationRequest, InvocationResult
from agentrelay.llm.model_selector import ModelSelector
from agentrelay.models import (
    AgentPhase,
    Complexity,
    ExecutionPhase,
    ExecutorEvent,
    ExecutorEventKind,
    ExecutorResult,
    ExecutorSettings,
    PlanResult,
    StatusUpdate,
    StreamEvent,
    TaskRequest,
)
from agentrelay.state.active_tasks import ActiveTaskTracker
from .prompts import (
    PLAN_TOOLS,
    build_executor_system_prompt,
    build_planner_revision_prompt,
    build_planner_system_prompt,
    build_task_prompt,
)
from .registry import AgentRegistry
from .stream_parser import StreamParser, status_message_for
from .supervision import StallMonitor, StallStage, StatusThrottle, detect_restart_need

StatusCallback = Callable[[StatusUpdate], Any]
StreamCallback = Callable[[StreamEvent], Any]
InvocationCallback = Callable[[List[Dict[str, Any]]], Any]

ABORT_TIMEOUT = "timeout"
ABORT_STALLED = "stalled"
ABORT_CANCELLED = "cancelled"


def _result_record(records: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    for record in reversed(records):
        if record.get("type") == "result":
            return record
    return records[0] if records else None


class _InvocationSupervisor:
    """Timers, stall detection and output plumbing bound to one invocation.

    The external cancellation token, the hard timeout and the stall kill all
    set the same internal abort event; the first to fire records the reason.
    Every timer task is cancelled and awaited on exit.
    """

    def __init__(
        self,
        *,
        agent_id: str,
        label: str,
        chat_id: int,
        registry: AgentRegistry,
        settings: ExecutorSettings,
        complexity: Complexity,
        timeout: float,
        external_abort: Optional[asyncio.Event],
        on_status_update: Optional[StatusCallback],
        on_stream_event: Optional[StreamCallback],
        logger: AgentLogger,
        clock: Callable[[], float],
        on_session: Optional[Callable[[str], None]] = None,
    ):
        self.agent_id = agent_id
        self.label = label
        self.chat_id = chat_id
        self.registry = registry
        self.settings = settings
        self.timeout = timeout
        self.external_abort = external_abort
        self.logger = logger
        self._clock = clock
        self._on_status_update = on_status_update
        self._on_stream_event = on_stream_event
        self._on_session = on_session
        self.session_reported = False

        self.abort_event = asyncio.Event()
        self.abort_reason: Optional[str] = None
        self.started = clock()
        self.monitor = StallMonitor(
            warn_after=settings.stall_warning.for_complexity(complexity),
            kill_after=settings.stall_kill.for_complexity(complexity),
            grace_multiplier=settings.stall_grace_multiplier,
            clock=clock,
            label="Executor",
        )
        self.throttle = StatusThrottle(settings.status_update_interval, clock=clock)
        self.parser = StreamParser()
        self._tasks: List[asyncio.Task] = []
        self._callback_tasks: set = set()
        self._flush_handle: Optional[asyncio.TimerHandle] = None

    async def __aenter__(self) -> "_InvocationSupervisor":
        if self.external_abort is not None and self.external_abort.is_set():
            self.abort(ABORT_CANCELLED)
        self._tasks = [
            asyncio.create_task(self._hard_timeout()),
            asyncio.create_task(self._heartbeat()),
            asyncio.create_task(self._stall_ticks()),
        ]
        if self.external_abort is not None:
            self._tasks.append(asyncio.create_task(self._watch_external()))
        return self

    async def __aexit__(self, *exc_info) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
        self.throttle.discard()

    @property
    def elapsed(self) -> float:
        return self._clock() - self.started

    def abort(self, reason: str) -> None:
        if self.abort_reason is None:
            self.abort_reason = reason
        self.abort_event.set()

    # -- timers ---------------------------------------------------------

    async def _hard_timeout(self) -> None:
        await asyncio.sleep(self.timeout)
        if self.abort_event.is_set():
            return
        self.logger.error(
            f"[Executor] {self.agent_id} (chat {self.chat_id}) timed out after {format_duration(self.timeout)}, aborting"
        )
        self.send_status(StatusUpdate(
            message=f"{self.label} timed out after {format_duration(self.timeout)}. Aborting.",
            important=True,
        ))
        self.abort(ABORT_TIMEOUT)

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.settings.heartbeat_interval)
            self.registry.touch(self.agent_id)
            self.send_status(StatusUpdate(message=f"Still working ({format_duration(self.elapsed)} elapsed)"))

    async def _stall_ticks(self) -> None:
        while True:
            await asyncio.sleep(self.settings.stall_check_interval)
            for notice in self.monitor.check():
                if notice.stage == StallStage.KILL:
                    self.logger.error(
                        f"[Executor] {self.agent_id} stalled, killing after grace period "
                        f"(silent {format_duration(notice.silent_for)})"
                    )
                else:
                    self.logger.warning(
                        f"[Executor] {self.agent_id} stall {notice.stage.value} "
                        f"(silent {format_duration(notice.silent_for)})"
                    )
                self.send_status(notice.update)
                if notice.stage == StallStage.KILL:
                    self.abort(ABORT_STALLED)
                    return

    async def _watch_external(self) -> None:
        await self.external_abort.wait()
        if not self.abort_event.is_set():
            self.logger.info(f"[Executor] {self.agent_id} cancelled by caller")
        self.abort(ABORT_CANCELLED)

    # -- outbound ---------------------------------------------------------

    def _dispatch(self, callback: Callable[[Any], Any], payload: Any, what: str) -> None:
        """Call a sync or async caller callback; failures are logged, never raised."""
        try:
            outcome = callback(payload)
        except Exception as e:
            self.logger.warning(f"[Executor] {what} callback failed: {e}")
            return
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            self._callback_tasks.add(task)
            task.add_done_callback(lambda t: self._callback_done(t, what))

    def _callback_done(self, task: asyncio.Future, what: str) -> None:
        self._callback_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.warning(f"[Executor] {what} callback failed: {task.exception()}")

    def send_status(self, update: StatusUpdate) -> None:
        """Deliver a status update immediately, bypassing the throttle."""
        if self._on_status_update is not None:
            self._dispatch(self._on_status_update, update, "Status")

    def send_throttled(self, update: StatusUpdate) -> None:
        for item in self.throttle.offer(update):
            self.send_status(item)
        self._schedule_flush()

    def _schedule_flush(self) -> None:
        release_at = self.throttle.next_release_at()
        if release_at is None or self._flush_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._flush_handle = loop.call_later(max(0.0, release_at - self._clock()), self._flush)

    def _flush(self) -> None:
        self._flush_handle = None
        for item in self.throttle.flush():
            self.send_status(item)
        self._schedule_flush()

    def emit_stream_event(self, event: StreamEvent) -> None:
        if self._on_stream_event is not None:
            self._dispatch(self._on_stream_event, event, "Stream event")

    # -- callbacks handed to the agent client ------------------------------

    def on_activity(self) -> None:
        self.registry.touch(self.agent_id)
        recovered = self.monitor.record_activity()
        if recovered is not None:
            self.logger.info(f"[Executor] {self.agent_id} active again")
            self.send_throttled(recovered)

    def on_output(self, chunk: str) -> None:
        self.registry.add_output(self.agent_id, chunk)
        events = self.parser.feed(chunk)
        if self.parser.session_id and not self.session_reported:
            self.session_reported = True
            self._report_session(self.parser.session_id)
        for event in events:
            self.emit_stream_event(event)
            message = status_message_for(event)
            if message:
                self.send_throttled(StatusUpdate(message=message))

    def on_stderr(self, chunk: str) -> None:
        self.registry.add_output(self.agent_id, chunk)

    def _report_session(self, session_id: str) -> None:
        self.logger.debug(f"[Executor] {self.agent_id} session {session_id}")
        if self._on_session is None:
            return
        try:
            self._on_session(session_id)
        except Exception as e:
            self.logger.warning(f"[Executor] Session callback failed: {e}")


class Executor:
    """Orchestration engine for agent invocations.

    ``execute`` never raises for run failures; they come back as a failed
    ExecutorResult. ``plan`` raises, because a failed plan must be surfaced
    distinctly from a plan awaiting approval. The Executor has no per-chat
    concurrency control; callers serialize runs per chat.
    """

    def __init__(
        self,
        client: AgentClient,
        registry: AgentRegistry,
        settings: Optional[ExecutorSettings] = None,
        task_tracker: Optional[ActiveTaskTracker] = None,
        logger: Optional[AgentLogger] = None,
        service_name: str = "agentrelay",
        model_selector: Optional[ModelSelector] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize executor.

        Args:
            client: Agent backend
            registry: Registry the invocations are published to
            settings: Timing and model knobs (default: built-in defaults)
            task_tracker: Durable in-flight record for crash recovery
            logger: Logger instance
            service_name: Used in the system prompt and restart detection
            model_selector: Per-tier model choice (default: ``settings.model``)
            clock: Monotonic time source
        """
        self.client = client
        self.registry = registry
        self.settings = settings or ExecutorSettings()
        self.task_tracker = task_tracker
        self.logger = logger or default_logger()
        self.service_name = service_name
        self.model_selector = model_selector
        self._clock = clock

    def set_task_tracker(self, tracker: ActiveTaskTracker) -> None:
        self.task_tracker = tracker

    def _model_for(self, complexity: Complexity) -> Optional[str]:
        if self.model_selector is not None:
            return self.model_selector.select_model(complexity) or self.settings.model
        return self.settings.model

    def _supervisor(
        self,
        agent_id: str,
        label: str,
        request: TaskRequest,
        timeout: float,
        abort_event: Optional[asyncio.Event],
        on_status_update: Optional[StatusCallback],
        on_stream_event: Optional[StreamCallback],
        on_session: Optional[Callable[[str], None]] = None,
    ) -> _InvocationSupervisor:
        return _InvocationSupervisor(
            agent_id=agent_id,
            label=label,
            chat_id=request.chat_id,
            registry=self.registry,
            settings=self.settings,
            complexity=request.complexity,
            timeout=timeout,
            external_abort=abort_event,
            on_status_update=on_status_update,
            on_stream_event=on_stream_event,
            logger=self.logger,
            clock=self._clock,
            on_session=on_session,
        )

    def _records_sink(
        self,
        phase: ExecutionPhase,
        request: TaskRequest,
        agent_id: str,
        active_task_id: Optional[str],
        on_invocation: Optional[InvocationCallback],
    ) -> Callable[[List[Dict[str, Any]]], None]:
        def sink(records: List[Dict[str, Any]]) -> None:
            entry = _result_record(records)
            if entry is not None:
                entry.setdefault("_tier", "executor" if phase == ExecutionPhase.EXECUTE else "executor-plan")
                session_id = entry.get("session_id") or entry.get("sessionid")
                if session_id and active_task_id and self.task_tracker is not None:
                    self.task_tracker.update_session_id(active_task_id, session_id)
                self.logger.log_invocation(
                    chat_id=request.chat_id,
                    phase=phase.value,
                    duration=(entry.get("duration_ms") or 0) / 1000.0,
                    cost_usd=entry.get("total_cost_usd") or entry.get("cost_usd") or 0.0,
                    is_error=bool(entry.get("is_error", False)),
                    agent_id=agent_id,
                    session_id=session_id,
                    num_turns=entry.get("num_turns"),
                    stop_reason=entry.get("subtype") or entry.get("stop_reason"),
                )
            if on_invocation is not None:
                try:
                    on_invocation(records)
                except Exception as e:
                    self.logger.warning(f"[Executor] Invocation callback failed: {e}")
        return sink

    # ------------------------------------------------------------------
    # Execute phase
    # ------------------------------------------------------------------

    async def execute(
        self,
        request: TaskRequest,
        *,
        abort_event: Optional[asyncio.Event] = None,
        on_status_update: Optional[StatusCallback] = None,
        on_stream_event: Optional[StreamCallback] = None,
        on_invocation: Optional[InvocationCallback] = None,
        session_id: Optional[str] = None,
    ) -> ExecutorResult:
        """
        Run the task with full tool access.

        Args:
            request: Task to run
            abort_event: Caller cancellation token
            on_status_update: Receives throttled and important status messages
            on_stream_event: Receives typed activity parsed from the output
            on_invocation: Receives the raw output records of each attempt
            session_id: Agent session to resume (e.g. an interrupted task)

        Returns:
            ExecutorResult; failures are encoded, never raised
        """
        complexity = request.complexity
        timeout = self.settings.timeout_for(complexity)
        started = self._clock()

        self.logger.info(
            f"[Executor] Starting for chat {request.chat_id} "
            f"({complexity.value}, timeout {format_duration(timeout)}): {request.task[:100]}"
        )

        agent_id = self.registry.register(
            role="executor",
            chat_id=request.chat_id,
            description=request.task,
            phase=AgentPhase.EXECUTING,
        )

        active_task_id = None
        if self.task_tracker is not None:
            active_task_id = self.task_tracker.track(
                chat_id=request.chat_id,
                task=request.task,
                complexity=complexity,
                cwd=request.cwd,
                session_id=session_id or "",
            )

        def record_session(reported: str) -> None:
            if active_task_id and self.task_tracker is not None:
                self.task_tracker.update_session_id(active_task_id, reported)

        result: Optional[ExecutorResult] = None
        try:
            async with self._supervisor(
                agent_id, "Execution", request, timeout,
                abort_event, on_status_update, on_stream_event, record_session,
            ) as supervisor:
                invocation = InvocationRequest(
                    prompt=build_task_prompt(request),
                    cwd=request.cwd,
                    system_prompt=build_executor_system_prompt(self.service_name),
                    model=self._model_for(complexity),
                    session_id=session_id,
                    abort_event=supervisor.abort_event,
                    on_activity=supervisor.on_activity,
                    on_output=supervisor.on_output,
                    on_stderr=supervisor.on_stderr,
                    on_records=self._records_sink(
                        ExecutionPhase.EXECUTE, request, agent_id, active_task_id, on_invocation,
                    ),
                    label=agent_id,
                )
                try:
                    outcome = await self._invoke_with_retry(invocation, supervisor)
                    result = ExecutorResult(
                        success=not outcome.is_error,
                        result=outcome.result,
                        cost_usd=outcome.cost_usd or 0.0,
                        duration_ms=int((self._clock() - started) * 1000),
                        needs_restart=detect_restart_need(outcome.result, self.service_name),
                    )
                except Exception as e:
                    result = ExecutorResult(
                        success=False,
                        result=self._failure_message(supervisor, timeout, e),
                        cost_usd=0.0,
                        duration_ms=int((self._clock() - started) * 1000),
                        needs_restart=False,
                    )
                    self.logger.error(f"[Executor] {agent_id} failed: {type(e).__name__}: {e}")
        finally:
            if result is not None:
                self.registry.complete(agent_id, result.success, result.cost_usd)
            else:
                self.registry.complete(agent_id, False)
            if active_task_id and self.task_tracker is not None:
                self.task_tracker.complete(active_task_id)

        self.logger.info(
            f"[Executor] Complete for chat {request.chat_id}: success={result.success} "
            f"cost=${result.cost_usd:.4f} duration={result.duration_ms}ms"
        )
        return result

    def _failure_message(self, supervisor: _InvocationSupervisor, timeout: float, error: Exception) -> str:
        if supervisor.abort_reason == ABORT_TIMEOUT:
            return str(AgentTimeoutError(timeout))
        if supervisor.abort_reason == ABORT_STALLED:
            return str(AgentStalledError(supervisor.monitor.hard_kill_after))
        if supervisor.abort_reason == ABORT_CANCELLED or isinstance(error, AgentCancelledError):
            return str(AgentCancelledError())
        return f"Executor error: {error}"

    async def _invoke_with_retry(
        self,
        invocation: InvocationRequest,
        supervisor: _InvocationSupervisor,
    ) -> InvocationResult:
        """Invoke once, retrying exactly once after a delay for transient errors."""
        try:
            return await self.client.invoke(invocation)
        except AgentError as e:
            if supervisor.abort_event.is_set() or isinstance(e, AgentCancelledError):
                raise
            if not (e.retryable or is_transient_error(str(e))):
                raise
            error = e
        except Exception as e:
            if supervisor.abort_event.is_set() or not is_transient_error(str(e)):
                raise
            error = e

        self.logger.info(f"[Executor] Transient error, retrying once: {error}")
        supervisor.send_status(StatusUpdate(message="Hit transient error, retrying...", important=True))

        # The delay itself is abortable
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(supervisor.abort_event.wait(), timeout=self.settings.transient_retry_delay)
        if supervisor.abort_event.is_set():
            raise AgentCancelledError() from error

        return await self.client.invoke(invocation)

    # ------------------------------------------------------------------
    # Plan phase
    # ------------------------------------------------------------------

    async def plan(
        self,
        request: TaskRequest,
        *,
        revision_feedback: Optional[str] = None,
        previous_plan: Optional[str] = None,
        abort_event: Optional[asyncio.Event] = None,
        on_status_update: Optional[StatusCallback] = None,
        on_stream_event: Optional[StreamCallback] = None,
        on_invocation: Optional[InvocationCallback] = None,
    ) -> PlanResult:
        """
        Investigate the task read-only and return a plan for approval.

        Raises:
            AgentTimeoutError: Plan budget exceeded
            AgentStalledError: No activity past the kill + grace window
            AgentCancelledError: Caller cancelled
            AgentError: Any other agent failure (not retried)
        """
        complexity = request.complexity
        timeout = self.settings.plan_timeout_for(complexity)
        started = self._clock()

        if revision_feedback and previous_plan:
            system_prompt = build_planner_revision_prompt(revision_feedback, previous_plan)
        else:
            system_prompt = build_planner_system_prompt()

        self.logger.info(
            f"[Executor] Starting PLAN for chat {request.chat_id} "
            f"({complexity.value}, timeout {format_duration(timeout)}): {request.task[:100]}"
        )

        agent_id = self.registry.register(
            role="executor",
            chat_id=request.chat_id,
            description=f"[PLAN] {request.task}",
            phase=AgentPhase.PLANNING,
        )

        success = False
        cost = None
        try:
            async with self._supervisor(
                agent_id, "Planning", request, timeout,
                abort_event, on_status_update, on_stream_event,
            ) as supervisor:
                invocation = InvocationRequest(
                    prompt=build_task_prompt(request),
                    cwd=request.cwd,
                    system_prompt=system_prompt,
                    model=self._model_for(complexity),
                    allowed_tools=PLAN_TOOLS,
                    abort_event=supervisor.abort_event,
                    on_activity=supervisor.on_activity,
                    on_output=supervisor.on_output,
                    on_stderr=supervisor.on_stderr,
                    on_records=self._records_sink(
                        ExecutionPhase.PLAN, request, agent_id, None, on_invocation,
                    ),
                    label=agent_id,
                )
                try:
                    outcome = await self.client.invoke(invocation)
                except Exception as e:
                    mapped = self._plan_error(supervisor, timeout, e)
                    if mapped is e:
                        raise
                    raise mapped from e

                if outcome.is_error:
                    raise AgentError(f"Planning failed: {outcome.result}")
                cost = outcome.cost_usd or 0.0
                success = True
        except Exception as e:
            self.logger.error(f"[Executor] PLAN {agent_id} failed: {type(e).__name__}: {e}")
            raise
        finally:
            self.registry.complete(agent_id, success, cost)

        duration_ms = int((self._clock() - started) * 1000)
        self.logger.info(
            f"[Executor] PLAN complete for chat {request.chat_id} "
            f"(cost ${cost:.4f}, {duration_ms}ms)"
        )
        return PlanResult(plan_text=outcome.result, cost_usd=cost, duration_ms=duration_ms)

    def _plan_error(self, supervisor: _InvocationSupervisor, timeout: float, error: Exception) -> Exception:
        if supervisor.abort_reason == ABORT_TIMEOUT:
            return AgentTimeoutError(timeout, original_error=error)
        if supervisor.abort_reason == ABORT_STALLED:
            return AgentStalledError(supervisor.monitor.hard_kill_after, original_error=error)
        if supervisor.abort_reason == ABORT_CANCELLED or isinstance(error, AgentCancelledError):
            return AgentCancelledError(original_error=error)
        return error

    # ------------------------------------------------------------------
    # Event channel
    # ------------------------------------------------------------------

    async def stream(
        self,
        phase: ExecutionPhase,
        request: TaskRequest,
        **kwargs,
    ) -> AsyncIterator[ExecutorEvent]:
        """
        Run a phase and yield its events on a single channel.

        The last event is RESULT (ExecutorResult or PlanResult) or, for a
        failed plan, ERROR carrying the exception. Closing the iterator
        early cancels the run.
        """
        queue: "asyncio.Queue[ExecutorEvent]" = asyncio.Queue()

        def put(kind: ExecutorEventKind) -> Callable[[Any], None]:
            return lambda payload: queue.put_nowait(ExecutorEvent(kind=kind, payload=payload))

        callbacks = dict(
            on_status_update=put(ExecutorEventKind.STATUS),
            on_stream_event=put(ExecutorEventKind.STREAM),
            on_invocation=put(ExecutorEventKind.INVOCATION),
        )
        runner = self.execute if ExecutionPhase(phase) == ExecutionPhase.EXECUTE else self.plan

        async def run() -> None:
            try:
                value = await runner(request, **callbacks, **kwargs)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                queue.put_nowait(ExecutorEvent(kind=ExecutorEventKind.ERROR, payload=e))
            else:
                queue.put_nowait(ExecutorEvent(kind=ExecutorEventKind.RESULT, payload=value))

        task = asyncio.create_task(run())
        try:
            while True:
                event = await queue.get()
                yield event
                if event.kind.is_terminal:
                    break
        finally:
            if not task.done():
                task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
