"""Configuration for the agentrelay system."""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_or_default(name: str, default: str | None) -> str | None:
    """
    Get environment variable value or default, treating empty string as unset.

    Compose files often pass empty values like EXECUTOR_MODEL="", which must
    still fall back to the default.
    """
    value = os.getenv(name, None)
    if value is None or value == "":
        return default
    return value


def _env_float(name: str, default: float) -> float:
    return float(_env_or_default(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(_env_or_default(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    return (_env_or_default(name, "true" if default else "false") or "").lower() == "true"


# State Configuration
STATE_DIR = _env_or_default("STATE_DIR", "state")

# Logging Configuration
LOG_DIR = _env_or_default("LOG_DIR", "logs")
LOG_LEVEL = _env_or_default("LOG_LEVEL", "INFO")
LOG_FSYNC = _env_bool("LOG_FSYNC", False)

# Agent Backend Configuration
AGENT_BACKEND = _env_or_default("AGENT_BACKEND", "claude_cli")
AGENT_CLI_PATH = _env_or_default("AGENT_CLI_PATH", "claude")
DEFAULT_PROJECT_DIR = str(Path(_env_or_default("DEFAULT_PROJECT_DIR", ".")).resolve())

# Name used in system prompts and restart detection
SERVICE_NAME = _env_or_default("SERVICE_NAME", "agentrelay")

# Model Configuration
# None = use the CLI default
EXECUTOR_MODEL = _env_or_default("EXECUTOR_MODEL", None)
EXECUTOR_MODEL_TRIVIAL = _env_or_default("EXECUTOR_MODEL_TRIVIAL", EXECUTOR_MODEL)
EXECUTOR_MODEL_MODERATE = _env_or_default("EXECUTOR_MODEL_MODERATE", EXECUTOR_MODEL)
EXECUTOR_MODEL_COMPLEX = _env_or_default("EXECUTOR_MODEL_COMPLEX", EXECUTOR_MODEL)
MODEL_SELECTION_ENABLED = _env_bool("MODEL_SELECTION_ENABLED", False)

# Wall-clock budget per complexity tier (seconds)
TIMEOUT_TRIVIAL_SECONDS = _env_float("TIMEOUT_TRIVIAL_SECONDS", 5 * 60)
TIMEOUT_MODERATE_SECONDS = _env_float("TIMEOUT_MODERATE_SECONDS", 15 * 60)
TIMEOUT_COMPLEX_SECONDS = _env_float("TIMEOUT_COMPLEX_SECONDS", 45 * 60)
PLAN_TIMEOUT_CAP_SECONDS = _env_float("PLAN_TIMEOUT_CAP_SECONDS", 10 * 60)

# Stall detection (seconds of silence)
STALL_WARNING_TRIVIAL_SECONDS = _env_float("STALL_WARNING_TRIVIAL_SECONDS", 120)
STALL_WARNING_MODERATE_SECONDS = _env_float("STALL_WARNING_MODERATE_SECONDS", 240)
STALL_WARNING_COMPLEX_SECONDS = _env_float("STALL_WARNING_COMPLEX_SECONDS", 300)
STALL_KILL_TRIVIAL_SECONDS = _env_float("STALL_KILL_TRIVIAL_SECONDS", 300)
STALL_KILL_MODERATE_SECONDS = _env_float("STALL_KILL_MODERATE_SECONDS", 600)
STALL_KILL_COMPLEX_SECONDS = _env_float("STALL_KILL_COMPLEX_SECONDS", 900)
STALL_GRACE_MULTIPLIER = _env_float("STALL_GRACE_MULTIPLIER", 1.5)
STALL_CHECK_INTERVAL_SECONDS = _env_float("STALL_CHECK_INTERVAL_SECONDS", 30)

# Caller-facing status updates
HEARTBEAT_INTERVAL_SECONDS = _env_float("HEARTBEAT_INTERVAL_SECONDS", 60)
STATUS_UPDATE_INTERVAL_SECONDS = _env_float("STATUS_UPDATE_INTERVAL_SECONDS", 5)

# Error Handling Configuration
TRANSIENT_RETRY_DELAY_SECONDS = _env_float("TRANSIENT_RETRY_DELAY_SECONDS", 3)

# Queue Configuration
MAX_QUEUE_PER_CHAT = _env_int("MAX_QUEUE_PER_CHAT", 5)

# Agent Registry Configuration
REGISTRY_MAX_OUTPUT_LINES = _env_int("REGISTRY_MAX_OUTPUT_LINES", 30)
REGISTRY_MAX_COMPLETED_HISTORY = _env_int("REGISTRY_MAX_COMPLETED_HISTORY", 50)
REGISTRY_COMPLETED_TTL_SECONDS = _env_float("REGISTRY_COMPLETED_TTL_SECONDS", 5 * 60)
