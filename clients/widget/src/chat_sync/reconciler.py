from __future__ import annotations

from typing import Dict, List, Mapping

from .models import Message, ViewModel
from .overlay import LocalOverlay


def count_unread(messages: List[Message], overlay: LocalOverlay, role: str) -> int:
    return sum(1 for message in messages if message.is_incoming(role) and not overlay.is_read(message))


def reconcile(grouped: Mapping[str, List[Message]], overlay: LocalOverlay, role: str) -> ViewModel:
    """Merge grouped canonical messages with the local overlay into a view model.

    Pending sends go to the tail of their conversation. Callers run
    ``overlay.supersede`` on fresh poll results before reconciling, so
    confirmed sends never show up twice.
    """

    conversations: Dict[str, List[Message]] = {}
    unread: Dict[str, int] = {}
    for key, canonical in grouped.items():
        messages = sorted(canonical, key=lambda item: item.sent_at_ms)
        messages.extend(entry.message for entry in overlay.pending_for(key))
        conversations[key] = messages
        unread[key] = count_unread(messages, overlay, role)
    return ViewModel(
        conversations=conversations,
        unread_by_conversation=unread,
        total_unread=sum(unread.values()),
    )
