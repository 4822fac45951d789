"""Message and view-model types plus the ingestion normalizer."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

ROLE_RESPONDER = "responder"
ROLE_INITIATOR = "initiator"
ROLES = (ROLE_RESPONDER, ROLE_INITIATOR)

DIRECTION_TO_RESPONDER = "to-responder"
DIRECTION_TO_INITIATOR = "to-initiator"

KIND_PLAIN = "plain"
KIND_SCHEDULED_EVENT = "scheduled-event"

KEY_SEPARATOR = ":"

_WIRE_DIRECTIONS = {
    "teacher_to_student": DIRECTION_TO_RESPONDER,
    "student_to_teacher": DIRECTION_TO_INITIATOR,
    DIRECTION_TO_RESPONDER: DIRECTION_TO_RESPONDER,
    DIRECTION_TO_INITIATOR: DIRECTION_TO_INITIATOR,
}


def _now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def incoming_direction(role: str) -> str:
    """Direction of messages the given role receives from its counterpart."""

    if role == ROLE_RESPONDER:
        return DIRECTION_TO_RESPONDER
    if role == ROLE_INITIATOR:
        return DIRECTION_TO_INITIATOR
    raise ValueError(f"unknown role {role!r}")


def outgoing_direction(role: str) -> str:
    if role == ROLE_RESPONDER:
        return DIRECTION_TO_INITIATOR
    if role == ROLE_INITIATOR:
        return DIRECTION_TO_RESPONDER
    raise ValueError(f"unknown role {role!r}")


def conversation_key(role: str, course_id: str, participant_id: str = "") -> str:
    """Build the conversation key for ``role``.

    The responder side has one conversation per course. The initiator side
    talks to many participants per course, so its key also carries the
    participant id.
    """

    if role == ROLE_RESPONDER:
        return course_id
    if not participant_id:
        raise ValueError("initiator conversation keys need a participant id")
    return f"{course_id}{KEY_SEPARATOR}{participant_id}"


def split_conversation_key(key: str) -> tuple[str, str]:
    course_id, _, participant_id = key.partition(KEY_SEPARATOR)
    return course_id, participant_id


@dataclass(frozen=True)
class Message:
    id: str
    conversation_key: str
    direction: str
    body: str
    sent_at_ms: int
    read: bool = False
    kind: str = KIND_PLAIN
    event_date: Optional[str] = None
    event_time: Optional[str] = None
    sender_display_name: Optional[str] = None

    def is_incoming(self, role: str) -> bool:
        return self.direction == incoming_direction(role)


@dataclass
class ViewModel:
    """Reconciled state handed to the selection, read-state and UI layers."""

    conversations: Dict[str, List[Message]] = field(default_factory=dict)
    unread_by_conversation: Dict[str, int] = field(default_factory=dict)
    total_unread: int = 0

    def has_conversation(self, key: str | None) -> bool:
        return key is not None and key in self.conversations

    def first_key(self) -> str | None:
        for key in self.conversations:
            return key
        return None

    def copy(self) -> "ViewModel":
        return ViewModel(
            conversations={key: list(messages) for key, messages in self.conversations.items()},
            unread_by_conversation=dict(self.unread_by_conversation),
            total_unread=self.total_unread,
        )


def _scalar_id(value: Any) -> str:
    if isinstance(value, dict):
        value = value.get("_id", value.get("id"))
    if value is None:
        return ""
    return str(value).strip()


def _display_name(value: Any) -> Optional[str]:
    if not isinstance(value, dict):
        return None
    for name_key in ("fullName", "name"):
        name = value.get(name_key)
        if isinstance(name, str) and name.strip():
            return name.strip()
    return None


def parse_timestamp_ms(value: Any) -> int:
    """Parse an ISO-8601 timestamp (or epoch millis) into epoch millis.

    Missing or malformed values map to 0 so such messages sort first.
    """

    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if not isinstance(value, str) or not value.strip():
        return 0
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return 0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def _date_part(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip().split("T", 1)[0]


def _optional_text(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


def normalize_message(raw: Mapping[str, Any], role: str) -> Message | None:
    """Turn one wire record into a ``Message`` or ``None`` when it cannot be keyed.

    Both the backend shape (``_id``, ``courseId``, ``message``, ``direction``
    as ``teacher_to_student``/``student_to_teacher``, ``meetingDate`` ...) and
    this package's own field names are accepted. A missing direction is
    inferred as incoming for ``role``.
    """

    message_id = _scalar_id(raw.get("_id", raw.get("id")))
    course_id = _scalar_id(raw.get("courseId", raw.get("course_id")))
    if not message_id or not course_id:
        logger.debug("dropping record without id or course: %r", raw)
        return None

    direction = _WIRE_DIRECTIONS.get(str(raw.get("direction") or ""), incoming_direction(role))

    if role == ROLE_INITIATOR:
        participant_id = _scalar_id(raw.get("studentId", raw.get("participant_id")))
        if not participant_id:
            logger.debug("dropping initiator record %s without participant", message_id)
            return None
        key = conversation_key(role, course_id, participant_id)
        sender = _display_name(raw.get("studentId")) if direction == DIRECTION_TO_INITIATOR else None
    else:
        key = conversation_key(role, course_id)
        sender = _display_name(raw.get("teacherId")) if direction == DIRECTION_TO_RESPONDER else None

    wire_type = str(raw.get("messageType") or raw.get("kind") or "")
    kind = KIND_SCHEDULED_EVENT if wire_type in {"zoom_link", KIND_SCHEDULED_EVENT} else KIND_PLAIN

    body = raw.get("message", raw.get("body", ""))
    return Message(
        id=message_id,
        conversation_key=key,
        direction=direction,
        body=str(body) if body is not None else "",
        sent_at_ms=parse_timestamp_ms(raw.get("createdAt", raw.get("sentAt", raw.get("sent_at_ms")))),
        read=bool(raw.get("read", False)),
        kind=kind,
        event_date=_date_part(raw.get("meetingDate", raw.get("date", raw.get("event_date")))),
        event_time=_optional_text(raw.get("meetingTime", raw.get("time", raw.get("event_time")))),
        sender_display_name=sender or _optional_text(raw.get("senderDisplayName")),
    )


def normalize_messages(records: Any, role: str) -> List[Message]:
    if not isinstance(records, list):
        return []
    messages: List[Message] = []
    for record in records:
        if not isinstance(record, dict):
            continue
        message = normalize_message(record, role)
        if message is not None:
            messages.append(message)
    return messages


def message_to_dict(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "conversation_key": message.conversation_key,
        "direction": message.direction,
        "body": message.body,
        "sent_at_ms": message.sent_at_ms,
        "read": message.read,
        "kind": message.kind,
        "event_date": message.event_date,
        "event_time": message.event_time,
        "sender_display_name": message.sender_display_name,
    }
