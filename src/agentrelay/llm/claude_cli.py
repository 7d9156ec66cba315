"""Claude CLI client implementation."""

import asyncio
import codecs
import contextlib
import json
import shlex
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from agentrelay.core.exceptions import (
    AgentCancelledError,
    AgentInvocationError,
    AgentRateLimitError,
)
from agentrelay.core.logger import AgentLogger
from .classifier import is_transient_error
from .client import AgentClient, InvocationRequest, InvocationResult

READ_CHUNK_SIZE = 64 * 1024
STREAM_LIMIT = 10 * 1024 * 1024


def _extract_text(result: Any) -> str:
    if isinstance(result, str):
        return result
    if isinstance(result, list):
        texts = [
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in result
        ]
        return "\n".join(t for t in texts if t)
    if isinstance(result, dict):
        return str(result.get("text") or "")
    return ""


def extract_result(data: Dict[str, Any], fallback_session_id: str = "") -> InvocationResult:
    """Turn the agent's final ``result`` record into an InvocationResult."""
    session_id = data.get("session_id") or data.get("sessionid") or fallback_session_id
    cost = data.get("total_cost_usd") or data.get("totalcostusd") or data.get("cost_usd") or 0.0
    duration = data.get("duration_ms") or data.get("durationms")
    is_error = bool(data.get("is_error") or data.get("iserror") or False)
    subtype = str(data.get("subtype") or data.get("stop_reason") or data.get("stopreason") or "")
    num_turns = data.get("num_turns") or data.get("numturns")

    common = dict(
        session_id=session_id,
        cost_usd=float(cost),
        duration_ms=duration,
        num_turns=num_turns,
        stop_reason=subtype or None,
    )

    if subtype.startswith("error"):
        detail = data.get("error") or data.get("message") or ""
        suffix = f": {str(detail)[:200]}" if detail else ""
        return InvocationResult(
            result=f"Agent encountered an error ({subtype}){suffix}. The task may be partially complete.",
            is_error=True,
            **common,
        )

    raw = data.get("result") or data.get("content")
    if not raw:
        kind = subtype or data.get("type") or "unknown"
        return InvocationResult(
            result=(
                f"Task completed but the response could not be parsed (type: {kind}). "
                "Check logs for details."
            ),
            is_error=is_error,
            **common,
        )

    text = _extract_text(raw)
    if not text:
        return InvocationResult(
            result="Task completed but the response contained no readable text. Check logs for details.",
            is_error=is_error,
            **common,
        )
    return InvocationResult(result=text, is_error=is_error, **common)


def parse_cli_output(raw: str, fallback_session_id: str = "") -> Tuple[List[Dict[str, Any]], InvocationResult]:
    """
    Parse complete stream-json output.

    Returns:
        (all decoded records, result built from the last ``result`` record)

    Raises:
        ValueError: If no JSON record could be decoded
    """
    records: List[Dict[str, Any]] = []
    for line in raw.split("\n"):
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            records.append(obj)

    if not records:
        raise ValueError("No JSON found in agent output")

    for obj in reversed(records):
        if obj.get("type") == "result":
            return records, extract_result(obj, fallback_session_id)
    return records, extract_result(records[-1], fallback_session_id)


class ClaudeCLIClient(AgentClient):
    """Client for running the agent through the ``claude`` command line."""

    def __init__(
        self,
        cli_path: str = "claude",
        terminate_grace: float = 5.0,
        logger: Optional[AgentLogger] = None,
    ):
        """
        Initialize CLI client.

        Args:
            cli_path: Executable name or path of the agent CLI
            terminate_grace: Seconds to wait after SIGTERM before SIGKILL
            logger: Logger instance
        """
        super().__init__(logger=logger)
        self.cli_path = cli_path
        self.terminate_grace = terminate_grace

    def build_command(self, request: InvocationRequest) -> List[str]:
        cmd = [
            self.cli_path,
            "-p", request.prompt,
            "--output-format", "stream-json",
            "--verbose",
            "--dangerously-skip-permissions",
        ]
        if request.system_prompt:
            cmd.extend(["--system-prompt", request.system_prompt])
        if request.model:
            cmd.extend(["--model", request.model])
        if request.allowed_tools is not None:
            cmd.extend(["--tools", request.allowed_tools])
        if request.session_id:
            cmd.extend(["--resume", request.session_id])
        return cmd

    async def check_available(self) -> bool:
        try:
            process = await asyncio.create_subprocess_exec(
                self.cli_path, "--version",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            return await asyncio.wait_for(process.wait(), timeout=5) == 0
        except (FileNotFoundError, PermissionError, asyncio.TimeoutError):
            return False

    async def _invoke_once(self, request: InvocationRequest) -> InvocationResult:
        cmd = self.build_command(request)
        started = time.monotonic()
        self.logger.debug(f"[ClaudeCLI] Spawning {self.cli_path} in {request.cwd}")

        if request.abort_event is not None and request.abort_event.is_set():
            raise AgentCancelledError("Cancelled")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=request.cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except FileNotFoundError as e:
            raise AgentInvocationError(
                f"Agent CLI not found or working directory missing ({self.cli_path}, cwd={request.cwd})",
                retryable=False,
                original_error=e,
            )

        output_log = None
        try:
            output_log = self.logger.open_output_log(
                request.label,
                command=shlex.join(cmd[:1] + ["-p", "<prompt>"] + cmd[3:]),
                cwd=request.cwd,
            )
        except OSError as e:
            self.logger.warning(f"[ClaudeCLI] Failed to open raw output log: {e}")

        stdout_parts: List[str] = []
        stderr_parts: List[str] = []

        async def pump(
            stream: asyncio.StreamReader,
            sink: List[str],
            forward: Optional[Callable[[str], None]],
        ) -> None:
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            while True:
                data = await stream.read(READ_CHUNK_SIZE)
                if not data:
                    tail = decoder.decode(b"", final=True)
                    if tail:
                        self._deliver(tail, sink, request, output_log, forward)
                    return
                text = decoder.decode(data)
                if text:
                    self._deliver(text, sink, request, output_log, forward)

        readers = [
            asyncio.create_task(pump(process.stdout, stdout_parts, request.on_output)),
            asyncio.create_task(pump(process.stderr, stderr_parts, request.on_stderr)),
        ]
        finished = asyncio.create_task(self._wait_finished(process, readers))
        abort_waiter = (
            asyncio.create_task(request.abort_event.wait())
            if request.abort_event is not None else None
        )

        try:
            waiters = {finished} | ({abort_waiter} if abort_waiter else set())
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            if request.abort_event is not None and request.abort_event.is_set():
                await self._terminate(process)
                raise AgentCancelledError("Cancelled")
            returncode = finished.result()
        except asyncio.CancelledError:
            await asyncio.shield(self._terminate(process))
            raise
        finally:
            for task in [finished, *readers] + ([abort_waiter] if abort_waiter else []):
                if not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task
            if output_log is not None:
                output_log.close(process.returncode)

        stdout = "".join(stdout_parts)
        stderr = "".join(stderr_parts)
        if stderr:
            self.logger.debug(f"[ClaudeCLI] stderr: {stderr[:2000]}")

        if returncode != 0 and not stdout.strip():
            message = stderr.strip() or f"Agent CLI exited with code {returncode}"
            if "rate limit" in stderr.lower() or "429" in stderr:
                raise AgentRateLimitError(f"Rate limited: {message}")
            raise AgentInvocationError(message, retryable=is_transient_error(message))

        try:
            records, result = parse_cli_output(stdout, request.session_id or "")
        except ValueError as e:
            if stdout.strip():
                records = []
                result = InvocationResult(result=stdout.strip(), session_id=request.session_id or "")
            else:
                raise AgentInvocationError(str(e), retryable=False, original_error=e)

        if result.duration_ms is None:
            result.duration_ms = int((time.monotonic() - started) * 1000)
        result.records = records
        if request.on_records is not None and records:
            request.on_records(records)
        return result

    def _deliver(
        self,
        text: str,
        sink: List[str],
        request: InvocationRequest,
        output_log,
        forward: Optional[Callable[[str], None]],
    ) -> None:
        sink.append(text)
        if output_log is not None:
            try:
                output_log.write(text)
            except OSError:
                pass
        if request.on_activity is not None:
            request.on_activity()
        if forward is not None:
            forward(text)

    @staticmethod
    async def _wait_finished(process: asyncio.subprocess.Process, readers: List[asyncio.Task]) -> int:
        await asyncio.gather(*readers)
        return await process.wait()

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """SIGTERM, wait for the grace period, then SIGKILL."""
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.terminate_grace)
        except asyncio.TimeoutError:
            self.logger.warning(f"[ClaudeCLI] Agent did not exit after SIGTERM, killing pid {process.pid}")
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
