"""Model selection by task complexity tier."""

from typing import Optional

from agentrelay.models import Complexity


class ModelSelector:
    """Selects the executor model for a complexity tier."""

    def __init__(
        self,
        enabled: bool = False,
        model_trivial: Optional[str] = None,
        model_moderate: Optional[str] = None,
        model_complex: Optional[str] = None,
        model_default: Optional[str] = None,
    ):
        """
        Initialize model selector.

        Args:
            enabled: Whether per-tier selection is enabled
            model_trivial: Model for trivial tasks
            model_moderate: Model for moderate tasks
            model_complex: Model for complex tasks
            model_default: Model used when selection is disabled or a tier has none
        """
        self.enabled = enabled
        self.model_default = model_default
        self._by_tier = {
            Complexity.TRIVIAL: model_trivial,
            Complexity.MODERATE: model_moderate,
            Complexity.COMPLEX: model_complex,
        }

    def select_model(self, complexity: Complexity) -> Optional[str]:
        """
        Select a model for a tier.

        Returns:
            Model name, or None to use the CLI default
        """
        if not self.enabled:
            return self.model_default
        return self._by_tier.get(Complexity.from_string(complexity)) or self.model_default

    @classmethod
    def from_config(cls) -> "ModelSelector":
        from agentrelay import config

        return cls(
            enabled=config.MODEL_SELECTION_ENABLED,
            model_trivial=config.EXECUTOR_MODEL_TRIVIAL,
            model_moderate=config.EXECUTOR_MODEL_MODERATE,
            model_complex=config.EXECUTOR_MODEL_COMPLEX,
            model_default=config.EXECUTOR_MODEL,
        )
