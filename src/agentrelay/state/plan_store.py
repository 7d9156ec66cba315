"""Pending (unapproved) plans, one per chat."""

import threading
from typing import Dict, List, Optional

from agentrelay.core.logger import AgentLogger, default_logger
from agentrelay.models import PendingPlan
from .json_store import JsonDocumentStore

PLANS_FILENAME = "pending_plans.json"


class PlanStore:
    """Holds at most one plan per chat awaiting approval.

    A new plan for a chat always replaces the previous one. With
    ``state_dir=None`` the store is memory-only.
    """

    def __init__(self, state_dir: Optional[str] = None, logger: Optional[AgentLogger] = None):
        self.logger = logger or default_logger()
        self._store = JsonDocumentStore(state_dir, PLANS_FILENAME, logger=self.logger) if state_dir else None
        self._plans: Dict[int, PendingPlan] = {}
        self._lock = threading.RLock()

    def load(self) -> None:
        """Load pending plans from disk. Call on startup."""
        if self._store is None:
            return
        data = self._store.load(dict)
        plans: Dict[int, PendingPlan] = {}
        if isinstance(data, dict):
            for chat_key, item in data.items():
                try:
                    plans[int(chat_key)] = PendingPlan.from_dict(item)
                except (KeyError, TypeError, ValueError) as e:
                    self.logger.warning(f"[PlanStore] Skipping malformed plan for chat {chat_key}: {e}")
        with self._lock:
            self._plans = plans
        if plans:
            self.logger.info(f"[PlanStore] Loaded {len(plans)} pending plan(s) from disk")

    def set(self, chat_id: int, plan: PendingPlan) -> None:
        """Store a plan, replacing any existing one for the chat."""
        with self._lock:
            self._plans[chat_id] = plan
            self._save()
        self.logger.info(
            f"[PlanStore] Plan stored for chat {chat_id} (revision {plan.revision_count})"
        )

    def get(self, chat_id: int) -> Optional[PendingPlan]:
        with self._lock:
            plan = self._plans.get(chat_id)
            return PendingPlan.from_dict(plan.to_dict()) if plan else None

    def has(self, chat_id: int) -> bool:
        with self._lock:
            return chat_id in self._plans

    def consume(self, chat_id: int) -> Optional[PendingPlan]:
        """Remove and return the chat's plan (used at approval time)."""
        with self._lock:
            plan = self._plans.pop(chat_id, None)
            if plan is None:
                return None
            self._save()
        self.logger.info(f"[PlanStore] Plan consumed for chat {chat_id}")
        return plan

    def cancel(self, chat_id: int) -> bool:
        """Discard the chat's plan. Returns whether one existed."""
        with self._lock:
            if chat_id not in self._plans:
                return False
            del self._plans[chat_id]
            self._save()
        self.logger.info(f"[PlanStore] Plan cancelled for chat {chat_id}")
        return True

    def all_chat_ids(self) -> List[int]:
        with self._lock:
            return list(self._plans.keys())

    def _save(self) -> None:
        if self._store is None:
            return
        self._store.save({str(chat_id): plan.to_dict() for chat_id, plan in self._plans.items()})
