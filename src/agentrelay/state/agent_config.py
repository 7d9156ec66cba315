"""Admin-editable executor tier configuration stored as YAML."""

from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional, Union

import yaml

from agentrelay.core.logger import AgentLogger, default_logger
from agentrelay.models import Complexity, ExecutorSettings, StallThresholds

AGENT_CONFIG_FILENAME = "agent_config.yaml"

TIER_NAMES = tuple(c.value for c in Complexity)


def _parse_tiers(data: Any, key: str) -> Dict[str, float]:
    """Validate a partial ``{tier: seconds}`` mapping."""
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{key} must be a mapping of tier to seconds")
    tiers = {}
    for tier, seconds in data.items():
        if tier not in TIER_NAMES:
            raise ValueError(f"{key}: unknown tier '{tier}'")
        tiers[tier] = float(seconds)
    return tiers


class AgentConfigStore:
    """Runtime overrides for the executor tier.

    The YAML document holds ``model``, ``stall_warning`` and ``stall_kill``
    (per-tier seconds) and ``stall_grace_multiplier``. Only keys present in
    the file, or changed through a setter, override the environment-backed
    settings; everything else falls through to ``base``.
    """

    def __init__(
        self,
        state_dir: str,
        logger: Optional[AgentLogger] = None,
        base: Optional[ExecutorSettings] = None,
    ):
        self.path = Path(state_dir) / AGENT_CONFIG_FILENAME
        self.logger = logger or default_logger()
        self.base = base or ExecutorSettings()
        self.model: Optional[str] = None
        self._stall_warning: Dict[str, float] = {}
        self._stall_kill: Dict[str, float] = {}
        self._stall_grace_multiplier: Optional[float] = None

    @property
    def stall_warning(self) -> StallThresholds:
        return StallThresholds.from_dict(self._stall_warning, self.base.stall_warning)

    @property
    def stall_kill(self) -> StallThresholds:
        return StallThresholds.from_dict(self._stall_kill, self.base.stall_kill)

    @property
    def stall_grace_multiplier(self) -> float:
        if self._stall_grace_multiplier is None:
            return self.base.stall_grace_multiplier
        return self._stall_grace_multiplier

    def load(self) -> None:
        """Read the file's overrides. An unreadable file overrides nothing."""
        if not self.path.exists():
            self.logger.info("[AgentConfig] No agent config file, using defaults")
            return
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError("top-level document must be a mapping")
            stall_warning = _parse_tiers(data.get("stall_warning"), "stall_warning")
            stall_kill = _parse_tiers(data.get("stall_kill"), "stall_kill")
            grace = data.get("stall_grace_multiplier")
            grace = float(grace) if grace is not None else None
        except (OSError, yaml.YAMLError, TypeError, ValueError) as e:
            self.logger.warning(f"[AgentConfig] Could not read {self.path}: {e}; using defaults")
            return
        self.model = data.get("model") or None
        self._stall_warning = stall_warning
        self._stall_kill = stall_kill
        self._stall_grace_multiplier = grace
        self.logger.info(f"[AgentConfig] Loaded {self.path}")

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = self.to_dict()
        data["updated_at"] = datetime.now().isoformat()
        with open(self.path, 'w', encoding='utf-8') as f:
            yaml.dump(
                data,
                f,
                allow_unicode=True,
                default_flow_style=False,
                sort_keys=False
            )
        self.logger.info(f"[AgentConfig] Saved {self.path}")

    def set_model(self, model: Optional[str]) -> None:
        self.model = model or None

    def set_stall_warning(self, thresholds: Union[StallThresholds, Dict[str, float]]) -> None:
        """Override some or all warning tiers; omitted tiers keep their value."""
        self._stall_warning.update(self._tiers_from(thresholds, "stall_warning"))

    def set_stall_kill(self, thresholds: Union[StallThresholds, Dict[str, float]]) -> None:
        """Override some or all kill tiers; omitted tiers keep their value."""
        self._stall_kill.update(self._tiers_from(thresholds, "stall_kill"))

    def set_stall_grace_multiplier(self, multiplier: float) -> None:
        if multiplier < 1.0:
            raise ValueError("stall grace multiplier must be >= 1.0")
        self._stall_grace_multiplier = float(multiplier)

    @staticmethod
    def _tiers_from(thresholds: Union[StallThresholds, Dict[str, float]], key: str) -> Dict[str, float]:
        if isinstance(thresholds, StallThresholds):
            thresholds = thresholds.to_dict()
        tiers = _parse_tiers(thresholds, key)
        for tier, seconds in tiers.items():
            if seconds <= 0:
                raise ValueError(f"{key}.{tier} must be positive")
        return tiers

    def to_dict(self) -> Dict[str, Any]:
        """Return only the keys this store overrides."""
        data: Dict[str, Any] = {}
        if self.model:
            data["model"] = self.model
        if self._stall_warning:
            data["stall_warning"] = dict(self._stall_warning)
        if self._stall_kill:
            data["stall_kill"] = dict(self._stall_kill)
        if self._stall_grace_multiplier is not None:
            data["stall_grace_multiplier"] = self._stall_grace_multiplier
        return data

    def apply(self, settings: ExecutorSettings) -> ExecutorSettings:
        """Return ``settings`` with this store's overrides merged over it."""
        return settings.with_overrides(
            model=self.model or settings.model,
            stall_warning=StallThresholds.from_dict(self._stall_warning, settings.stall_warning),
            stall_kill=StallThresholds.from_dict(self._stall_kill, settings.stall_kill),
            stall_grace_multiplier=(
                settings.stall_grace_multiplier
                if self._stall_grace_multiplier is None
                else self._stall_grace_multiplier
            ),
        )
