from __future__ import annotations

from typing import Set

from .models import ViewModel
from .overlay import LocalOverlay
from .selection import SelectionState


class NewArrivalDetector:
    """Track counterpart messages that arrive after the open conversation was opened."""

    def __init__(self, role: str) -> None:
        self.role = role

    def scan(self, selection: SelectionState, view_model: ViewModel, overlay: LocalOverlay) -> Set[str]:
        """Add fresh arrivals to ``new_since_open`` and show the banner; return the additions."""

        key = selection.selected_key
        opened_at_ms = selection.opened_at_ms
        if key is None or opened_at_ms is None:
            return set()
        added: Set[str] = set()
        for message in view_model.conversations.get(key, []):
            if not message.is_incoming(self.role):
                continue
            if message.sent_at_ms <= opened_at_ms:
                continue
            if message.id in selection.new_since_open or message.id in overlay.locally_read:
                continue
            added.add(message.id)
        if added:
            selection.new_since_open.update(added)
            selection.banner_visible = True
        return added

    @staticmethod
    def dismiss(selection: SelectionState) -> None:
        # new_since_open is kept so the same messages never re-trigger the banner
        selection.banner_visible = False
