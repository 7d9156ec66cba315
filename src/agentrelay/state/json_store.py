"""Durable JSON documents for crash-recoverable state."""

import json
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from agentrelay.core.exceptions import StateCorruptionError
from agentrelay.core.logger import AgentLogger, default_logger


class JsonDocumentStore:
    """One JSON document on disk, rewritten atomically on every save.

    ``save`` returns only after the data is fsynced and renamed into place,
    so a caller that returns after a mutation knows the change is durable.
    Write failures are logged and reported through the return value; the
    in-memory state of the owning store stays authoritative.
    """

    def __init__(self, state_dir: str, filename: str, logger: Optional[AgentLogger] = None):
        """
        Initialize the store.

        Args:
            state_dir: Directory holding the document
            filename: Document filename (e.g., "task_queue.json")
            logger: Logger instance
        """
        self.state_dir = Path(state_dir)
        self.filename = filename
        self.path = self.state_dir / filename
        self.logger = logger or default_logger()

    def read(self) -> Any:
        """
        Read and parse the document.

        Returns:
            Parsed JSON, or None if the file does not exist

        Raises:
            StateCorruptionError: If the file exists but is not valid JSON
        """
        if not self.path.exists():
            return None
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise StateCorruptionError(self.filename, e)

    def load(self, default_factory: Callable[[], Any]) -> Any:
        """
        Read the document, recovering from corruption.

        A corrupted file is moved aside to ``<name>.corrupt-<timestamp>`` and
        a fresh default is returned.
        """
        try:
            data = self.read()
        except StateCorruptionError as e:
            backup = self._quarantine()
            self.logger.error(
                f"[State] {e}; moved to {backup.name if backup else '(not moved)'}, starting empty"
            )
            return default_factory()
        except OSError as e:
            self.logger.error(f"[State] Failed to read {self.filename}: {e}; starting empty")
            return default_factory()
        if data is None:
            return default_factory()
        return data

    def save(self, data: Any) -> bool:
        """
        Durably replace the document.

        Returns:
            True on success, False if the write failed (already logged)
        """
        tmp_name = None
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.filename}.", suffix=".tmp", dir=str(self.state_dir)
            )
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())  # Force write to disk
            os.replace(tmp_name, self.path)
            tmp_name = None
            return True
        except (OSError, TypeError, ValueError) as e:
            self.logger.error(f"[State] Failed to write {self.filename}: {e}")
            return False
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

    def _quarantine(self) -> Optional[Path]:
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        backup = self.path.with_name(f"{self.filename}.corrupt-{timestamp}")
        try:
            os.replace(self.path, backup)
            return backup
        except OSError as e:
            self.logger.warning(f"[State] Could not move corrupted {self.filename} aside: {e}")
            return None
