"""Agent orchestration: registry, executor and supervision."""

from .registry import AgentRegistry
from .executor import Executor
from .progress import ProgressFormatter, format_elapsed
from .stream_parser import StreamParser, extract_status_line, parse_record, status_message_for
from .supervision import (
    StallMonitor,
    StallNotice,
    StallStage,
    StatusThrottle,
    detect_restart_need,
)
from .prompts import PLAN_TOOLS, with_approved_plan

__all__ = [
    "AgentRegistry",
    "Executor",
    "ProgressFormatter",
    "format_elapsed",
    "StreamParser",
    "extract_status_line",
    "parse_record",
    "status_message_for",
    "StallMonitor",
    "StallNotice",
    "StallStage",
    "StatusThrottle",
    "detect_restart_need",
    "PLAN_TOOLS",
    "with_approved_plan",
]
