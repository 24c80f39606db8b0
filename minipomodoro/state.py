"""
Server-side SessionView: remembers what the coordinator last reported so HTTP
clients can poll it.
"""
from __future__ import annotations

import logging
from typing import Optional

from minipomodoro.coordinator import SessionView
from minipomodoro.errors import PersistenceError
from minipomodoro.models import ListItem

logger = logging.getLogger(__name__)


class SessionState(SessionView):
    def __init__(self):
        self.is_running = False
        self.time_left_ms: Optional[int] = None
        self.elapsed_ms: Optional[int] = None
        self.items: list[ListItem] = []
        self.completions = 0
        self.last_error: Optional[str] = None

    def on_tick(self, time_left_ms: int, elapsed_ms: int, duration_ms: int) -> None:
        self.time_left_ms = time_left_ms
        self.elapsed_ms = elapsed_ms

    def on_timer_state_changed(self, is_running: bool) -> None:
        if self.is_running and not is_running:
            self.time_left_ms = None
            self.elapsed_ms = None
        self.is_running = is_running

    def on_list_changed(self, items: list[ListItem]) -> None:
        self.items = list(items)

    def on_persistence_error(self, operation: str, error: PersistenceError) -> None:
        self.last_error = f"{operation}: {error}"

    def announce(self, title: str) -> None:
        """Completion hook handed to CompletionAnnouncer."""
        self.completions += 1
        logger.info(title)
