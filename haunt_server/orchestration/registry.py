"""
Registry of running orchestrators, keyed by user id.

Owned by the hosting service and passed to whoever needs it.
"""
import asyncio
import logging
from typing import Dict, List, Optional

from .orchestrator import Orchestrator

logger = logging.getLogger(__name__)


class SessionStateError(LookupError):
    """Raised when an operation refers to a session or queue that does not exist."""


class OrchestratorRegistry:
    """In-process map of user id -> Orchestrator."""

    def __init__(self):
        self._orchestrators: Dict[str, Orchestrator] = {}
        self._start_locks: Dict[str, asyncio.Lock] = {}

    def start_lock(self, user_id: str) -> asyncio.Lock:
        """Held while a session for the user is being started."""
        return self._start_locks.setdefault(user_id, asyncio.Lock())

    def register(self, user_id: str, orchestrator: Orchestrator) -> None:
        previous = self._orchestrators.get(user_id)
        if previous is not None and previous is not orchestrator:
            logger.warning(f"Replacing orchestrator for {user_id}; stopping the old one")
            previous.stop()
        self._orchestrators[user_id] = orchestrator

    def get(self, user_id: str) -> Optional[Orchestrator]:
        return self._orchestrators.get(user_id)

    def require(self, user_id: str) -> Orchestrator:
        """
        Raises:
            SessionStateError: if no orchestrator is registered for the user.
        """
        orchestrator = self._orchestrators.get(user_id)
        if orchestrator is None:
            raise SessionStateError(f"No running orchestrator for user {user_id}")
        return orchestrator

    def remove(self, user_id: str) -> Optional[Orchestrator]:
        """Stop and forget the user's orchestrator, if any."""
        orchestrator = self._orchestrators.pop(user_id, None)
        if orchestrator is not None:
            orchestrator.stop()
        return orchestrator

    def active_users(self) -> List[str]:
        return list(self._orchestrators.keys())

    def stop_all(self) -> None:
        for user_id in list(self._orchestrators.keys()):
            self.remove(user_id)
