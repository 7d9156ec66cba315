"""Agent backend layer."""

from .client import AgentClient, InvocationRequest, InvocationResult
from .claude_cli import ClaudeCLIClient, parse_cli_output, extract_result
from .factory import AgentClientFactory
from .model_selector import ModelSelector
from .classifier import is_transient_error, is_session_error

__all__ = [
    "AgentClient",
    "InvocationRequest",
    "InvocationResult",
    "ClaudeCLIClient",
    "parse_cli_output",
    "extract_result",
    "AgentClientFactory",
    "ModelSelector",
    "is_transient_error",
    "is_session_error",
]
