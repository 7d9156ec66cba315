"""Logging utilities for the agentrelay system."""

import json
import logging
import os
import traceback
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Any, Optional, TextIO

LOGGER_NAME = "agent_system"

FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
CONSOLE_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def _today() -> str:
    return datetime.now().strftime('%Y%m%d')


class AgentLogger:
    """Logger for agent invocations.

    With a ``log_dir`` the logger owns a rotating text log, an optional
    console handler, the JSONL side logs (``invocations_*.jsonl`` and
    ``errors_*.jsonl``) and one raw output file per agent run. Without one it
    only forwards to the ``agent_system`` logger so embedding applications
    and tests keep control of handler configuration.
    """

    def __init__(
        self,
        log_dir: Optional[str] = "logs",
        log_level: str = "INFO",
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 5,
        sync: bool = False,
        console: bool = True,
    ):
        """
        Initialize logger.

        Args:
            log_dir: Directory for log files, or None to skip file output
            log_level: Log level (DEBUG, INFO, WARNING, ERROR)
            max_bytes: Size of execution log before rotation (default: 10MB)
            backup_count: Rotated execution logs to keep (default: 5)
            sync: fsync after every JSONL and raw output write
            console: Also log to stderr (off while a full-screen UI owns the terminal)
        """
        self.log_dir = Path(log_dir) if log_dir else None
        self.sync = sync
        self.logger = logging.getLogger(LOGGER_NAME)
        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._install_handlers(
                getattr(logging, log_level.upper(), logging.INFO),
                max_bytes,
                backup_count,
                console,
            )

    def _install_handlers(self, level: int, max_bytes: int, backup_count: int, console: bool) -> None:
        handlers = [
            RotatingFileHandler(
                self.log_dir / f"execution_{_today()}.log",
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding='utf-8',
            )
        ]
        handlers[0].setFormatter(logging.Formatter(FILE_FORMAT))
        if console:
            stream_handler = logging.StreamHandler()
            stream_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
            handlers.append(stream_handler)

        # Replace, never stack, handlers when a second AgentLogger is built
        for old in list(self.logger.handlers):
            self.logger.removeHandler(old)
            old.close()
        for handler in handlers:
            handler.setLevel(level)
            self.logger.addHandler(handler)
        self.logger.setLevel(level)
        self.logger.propagate = False

    def sync_file(self, file_obj: TextIO) -> None:
        """Flush a log file and fsync it when sync is enabled."""
        file_obj.flush()
        if not self.sync:
            return
        try:
            os.fsync(file_obj.fileno())
        except OSError:
            # fsync is unsupported on some filesystems
            pass

    def _append_jsonl(self, kind: str, entry: Dict[str, Any]) -> None:
        if self.log_dir is None:
            return
        path = self.log_dir / f"{kind}_{_today()}.jsonl"
        try:
            with open(path, 'a', encoding='utf-8') as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + '\n')
                self.sync_file(f)
        except OSError as e:
            self.logger.warning(f"[Logger] Failed to write {path.name}: {e}")

    def log_invocation(
        self,
        chat_id: int,
        phase: str,
        duration: float,
        cost_usd: float = 0.0,
        is_error: bool = False,
        **kwargs
    ) -> None:
        """
        Record one finished agent invocation in ``invocations_*.jsonl``.

        Args:
            chat_id: Chat the invocation ran for
            phase: "plan" or "execute"
            duration: Duration in seconds
            cost_usd: Cost reported by the agent
            is_error: Whether the agent reported an error result
            **kwargs: agent_id, session_id, num_turns, stop_reason...
        """
        self._append_jsonl("invocations", {
            'timestamp': datetime.now().isoformat(),
            'chat_id': chat_id,
            'phase': phase,
            'duration_seconds': round(duration, 3),
            'cost_usd': cost_usd,
            'is_error': is_error,
            **kwargs
        })
        self.logger.info(
            f"[Executor] chat={chat_id} {phase} finished in {duration:.2f}s "
            f"(cost: ${cost_usd:.4f}, error: {is_error})"
        )

    def log_error_with_traceback(
        self,
        component: str,
        error: BaseException,
        context: Optional[Dict[str, Any]] = None
    ) -> None:
        """Record an unexpected failure in ``errors_*.jsonl`` and the text log."""
        tb = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        self._append_jsonl("errors", {
            'timestamp': datetime.now().isoformat(),
            'component': component,
            'error_type': type(error).__name__,
            'error_message': str(error),
            'context': context or {},
            'traceback': tb,
        })
        self.logger.error(f"[{component}] {type(error).__name__}: {error} {context or ''}".rstrip())
        self.logger.debug(f"[{component}] Traceback:\n{tb}")

    def info(self, message: str) -> None:
        self.logger.info(message)

    def warning(self, message: str) -> None:
        self.logger.warning(message)

    def error(self, message: str) -> None:
        self.logger.error(message)

    def debug(self, message: str) -> None:
        self.logger.debug(message)

    def open_output_log(
        self,
        agent_id: str,
        command: Optional[str] = None,
        cwd: Optional[str] = None,
    ) -> Optional["AgentOutputLog"]:
        """
        Open ``agent_<id>_<timestamp>.log`` to tee one run's raw output into.

        Returns:
            The writer, or None when the logger has no log directory
        """
        if self.log_dir is None:
            return None
        safe_id = "".join(c if c.isalnum() or c in ('-', '_') else '_' for c in agent_id)
        path = self.log_dir / f"agent_{safe_id}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
        header = [f"Agent: {agent_id}", f"Started: {datetime.now().isoformat()}"]
        if cwd:
            header.append(f"Working directory: {cwd}")
        if command:
            header.append(f"Command: {command}")
        return AgentOutputLog(path, self, header)


class AgentOutputLog:
    """Raw output file of one agent run; writes after close are dropped."""

    def __init__(self, path: Path, owner: AgentLogger, header):
        self.path = path
        self._owner = owner
        self._file: Optional[TextIO] = open(path, 'w', encoding='utf-8')
        self._file.write("\n".join(header) + "\n" + "-" * 60 + "\n")
        owner.sync_file(self._file)

    @property
    def closed(self) -> bool:
        return self._file is None

    def write(self, text: str) -> None:
        if self._file is None:
            return
        self._file.write(text)
        self._owner.sync_file(self._file)

    def close(self, exit_code: Optional[int] = None) -> None:
        if self._file is None:
            return
        footer = "-" * 60 + "\n"
        footer += f"Exit code: {exit_code}\n" if exit_code is not None else "Finished\n"
        self._file.write(footer)
        self._owner.sync_file(self._file)
        self._file.close()
        self._file = None


_null_logger: Optional[AgentLogger] = None


def default_logger() -> AgentLogger:
    """Return a shared handler-less AgentLogger for components built without one."""
    global _null_logger
    if _null_logger is None:
        _null_logger = AgentLogger(log_dir=None)
    return _null_logger
