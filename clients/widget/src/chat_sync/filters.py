"""Expiry filter, eligibility filter and conversation grouper."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from .models import KIND_SCHEDULED_EVENT, Message, _now_ms


def event_instant_ms(event_date: Optional[str], event_time: Optional[str]) -> int | None:
    """Return the local-time event instant in epoch millis, or ``None`` if unparsable."""

    if not event_date or not event_time:
        return None
    try:
        year, month, day = (int(part) for part in event_date.split("-"))
        time_parts = [int(part) for part in event_time.split(":")]
        if len(time_parts) < 2 or len(time_parts) > 3:
            return None
        hours, minutes = time_parts[0], time_parts[1]
        seconds = time_parts[2] if len(time_parts) == 3 else 0
        instant = datetime(year, month, day, hours, minutes, seconds)
    except ValueError:
        return None
    return int(instant.timestamp() * 1000)


def filter_expired(messages: Iterable[Message], now_ms: int) -> List[Message]:
    """Drop scheduled-event messages whose event is strictly in the past.

    Plain messages and events with a missing or unparsable date/time are kept.
    """

    kept: List[Message] = []
    for message in messages:
        if message.kind == KIND_SCHEDULED_EVENT:
            instant = event_instant_ms(message.event_date, message.event_time)
            if instant is not None and instant < now_ms:
                continue
        kept.append(message)
    return kept


def group_eligible(messages: Iterable[Message], eligibility: Mapping[str, bool]) -> Dict[str, List[Message]]:
    """Group messages by conversation, keeping only keys explicitly marked eligible.

    Conversations keep the order in which their first message appeared in the
    fetch result; messages inside a conversation are sorted by ``sent_at_ms``.
    """

    grouped: Dict[str, List[Message]] = {}
    for message in messages:
        if eligibility.get(message.conversation_key) is not True:
            continue
        grouped.setdefault(message.conversation_key, []).append(message)
    for key in grouped:
        grouped[key].sort(key=lambda item: item.sent_at_ms)
    return grouped


def unique_keys(messages: Iterable[Message]) -> List[str]:
    keys: Dict[str, None] = {}
    for message in messages:
        keys.setdefault(message.conversation_key, None)
    return list(keys)


class EligibilityCache:
    """Short-lived per-key memo of eligibility answers.

    A ``ttl_ms`` of zero disables caching, so every lookup misses.
    """

    def __init__(self, ttl_ms: int, *, now_func: Callable[[], int] = _now_ms) -> None:
        self.ttl_ms = ttl_ms
        self._now = now_func
        self._entries: Dict[str, tuple[bool, int]] = {}

    def split(self, keys: Iterable[str]) -> tuple[Dict[str, bool], List[str]]:
        """Return ``(cached answers, keys that still need a lookup)``."""

        now_ms = self._now()
        hits: Dict[str, bool] = {}
        misses: List[str] = []
        for key in keys:
            entry = self._entries.get(key)
            if entry is not None and self.ttl_ms > 0 and now_ms - entry[1] < self.ttl_ms:
                hits[key] = entry[0]
            else:
                misses.append(key)
        return hits, misses

    def store(self, answers: Mapping[str, bool]) -> None:
        if self.ttl_ms <= 0:
            return
        now_ms = self._now()
        for key, eligible in answers.items():
            self._entries[key] = (bool(eligible), now_ms)

    def clear(self) -> None:
        self._entries.clear()
