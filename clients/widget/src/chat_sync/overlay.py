"""Local optimistic state that survives poll cycles."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Set

from .models import Message


@dataclass(frozen=True)
class PendingSend:
    temp_id: str
    message: Message
    created_at_ms: int
    raw_text: str

    @property
    def conversation_key(self) -> str:
        return self.message.conversation_key


class LocalOverlay:
    """Pending sends keyed by temporary id plus locally confirmed reads.

    A pending entry leaves the overlay exactly once: superseded by a
    canonical message, or rolled back by ``rollback``.
    """

    def __init__(self, supersede_window_ms: int = 30_000) -> None:
        self.supersede_window_ms = supersede_window_ms
        self.pending_sends: Dict[str, PendingSend] = {}
        self.locally_read: Set[str] = set()
        self._consumed_canonical_ids: Set[str] = set()

    def add_pending(self, pending: PendingSend) -> None:
        if pending.temp_id in self.pending_sends:
            raise ValueError(f"duplicate temporary id {pending.temp_id}")
        self.pending_sends[pending.temp_id] = pending

    def rollback(self, temp_id: str) -> PendingSend | None:
        return self.pending_sends.pop(temp_id, None)

    def pending_for(self, key: str) -> List[PendingSend]:
        entries = [entry for entry in self.pending_sends.values() if entry.conversation_key == key]
        entries.sort(key=lambda entry: entry.created_at_ms)
        return entries

    def mark_read(self, message_ids: Iterable[str]) -> None:
        self.locally_read.update(message_ids)

    def is_read(self, message: Message) -> bool:
        return message.read or message.id in self.locally_read

    def supersede(self, canonical: Iterable[Message]) -> List[str]:
        """Drop pending entries confirmed by canonical messages; return their temp ids.

        Each canonical message supersedes at most one pending entry (oldest
        first) and only once across all cycles, and only when it was sent no
        earlier than the pending entry minus the skew window.
        """

        removed: List[str] = []
        if not self.pending_sends:
            return removed
        ordered = sorted(self.pending_sends.values(), key=lambda entry: entry.created_at_ms)
        for message in canonical:
            if message.id in self._consumed_canonical_ids:
                continue
            for entry in ordered:
                if entry.temp_id in removed:
                    continue
                pending = entry.message
                if (
                    pending.conversation_key == message.conversation_key
                    and pending.direction == message.direction
                    and pending.body == message.body
                    and message.sent_at_ms >= entry.created_at_ms - self.supersede_window_ms
                ):
                    removed.append(entry.temp_id)
                    self._consumed_canonical_ids.add(message.id)
                    break
        for temp_id in removed:
            self.pending_sends.pop(temp_id, None)
        return removed
