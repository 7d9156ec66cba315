"""Caller-side control flow and process startup."""

from .coordinator import (
    LogNotifier,
    Notifier,
    SubmitResult,
    SubmitStatus,
    TaskCoordinator,
)
from .startup import (
    Runtime,
    Stores,
    build_crash_report,
    build_runtime,
    check_agent_cli,
    load_stores,
    print_configuration,
)

__all__ = [
    "LogNotifier",
    "Notifier",
    "SubmitResult",
    "SubmitStatus",
    "TaskCoordinator",
    "Runtime",
    "Stores",
    "build_crash_report",
    "build_runtime",
    "check_agent_cli",
    "load_stores",
    "print_configuration",
]
