"""Promote unread incoming messages to read when a conversation is opened."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from .errors import ReadAckFailure
from .models import ViewModel
from .overlay import LocalOverlay
from .selection import SelectionState

logger = logging.getLogger(__name__)


class ReadStateSynchronizer:
    """Runs once per opened conversation.

    The processed marker is cleared whenever the selected key changes or the
    widget reopens; until then later unread arrivals in the same session are
    left for the new-arrival banner.
    """

    def __init__(self, role: str) -> None:
        self.role = role
        self._processed_key: Optional[str] = None
        self._last_key: Optional[str] = None

    @property
    def processed_key(self) -> Optional[str]:
        return self._processed_key

    def reset(self) -> None:
        self._processed_key = None

    def note_selection(self, key: Optional[str]) -> None:
        if key != self._last_key:
            self._last_key = key
            self._processed_key = None

    def run(
        self,
        selection: SelectionState,
        view_model: ViewModel,
        overlay: LocalOverlay,
        widget_open: bool,
    ) -> List[str]:
        """Apply the optimistic read and return the message ids to acknowledge remotely."""

        key = selection.selected_key
        self.note_selection(key)
        if not widget_open or key is None or self._processed_key == key:
            return []
        messages = view_model.conversations.get(key)
        if messages is None:
            return []

        unread_ids = [
            message.id
            for message in messages
            if message.is_incoming(self.role) and not message.read and message.id not in overlay.locally_read
        ]
        self._processed_key = key
        if not unread_ids:
            return []

        overlay.mark_read(unread_ids)
        view_model.unread_by_conversation[key] = 0
        view_model.total_unread = max(0, view_model.total_unread - len(unread_ids))
        selection.new_since_open.difference_update(unread_ids)
        if not selection.new_since_open:
            selection.banner_visible = False
        return unread_ids

    async def acknowledge(self, message_ids: List[str], mark_read: Callable[[str], Awaitable[object]]) -> int:
        """Send one mark-read call per id. Failures are logged, never rolled back.

        Returns the number of acknowledgements that succeeded.
        """

        results = await asyncio.gather(*(mark_read(message_id) for message_id in message_ids), return_exceptions=True)
        succeeded = 0
        for message_id, result in zip(message_ids, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                failure = result if isinstance(result, ReadAckFailure) else ReadAckFailure(message_id, str(result))
                logger.warning("%s", failure)
                continue
            succeeded += 1
        return succeeded
