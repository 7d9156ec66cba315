"""Factory for creating agent clients."""

from .client import AgentClient
from .claude_cli import ClaudeCLIClient

SUPPORTED_BACKENDS = ["claude_cli"]


class AgentClientFactory:
    """Factory for creating agent clients."""

    @staticmethod
    def create(backend: str = "claude_cli", **kwargs) -> AgentClient:
        """
        Create an agent client for a backend.

        Args:
            backend: Backend name ("claude_cli")
            **kwargs: Backend-specific settings (cli_path, terminate_grace, logger)

        Returns:
            AgentClient instance

        Raises:
            ValueError: If unsupported backend is specified
        """
        if backend == "claude_cli":
            return ClaudeCLIClient(
                cli_path=kwargs.get("cli_path", "claude"),
                terminate_grace=kwargs.get("terminate_grace", 5.0),
                logger=kwargs.get("logger"),
            )
        raise ValueError(
            f"Unknown backend: {backend}. "
            f"Supported backends: {', '.join(SUPPORTED_BACKENDS)}"
        )
