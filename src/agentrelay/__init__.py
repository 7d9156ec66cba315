"""agentrelay: per-chat plan/execute orchestration for an external coding agent."""

__version__ = "0.1.0"
