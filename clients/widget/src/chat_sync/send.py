"""Optimistic send: local insert, remote append, then confirm or roll back."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Callable

from .errors import ResolutionFailure, SendFailure, ValidationError
from .models import KIND_PLAIN, Message, _now_ms, outgoing_direction
from .overlay import LocalOverlay, PendingSend
from .source import MessageSource

logger = logging.getLogger(__name__)

SEND_OK = "sent"
SEND_INVALID = "invalid"
SEND_UNRESOLVED = "unresolved"
SEND_FAILED = "failed"

TEMP_ID_PREFIX = "temp-"


@dataclass
class ComposeBuffer:
    """The input field and the user-visible error line under it."""

    text: str = ""
    error_line: str = ""


def _new_temp_id() -> str:
    return f"{TEMP_ID_PREFIX}{secrets.token_urlsafe(8)}"


class SendPipeline:
    def __init__(
        self,
        source: MessageSource,
        overlay: LocalOverlay,
        role: str,
        *,
        min_body_length: int = 5,
        now_func: Callable[[], int] = _now_ms,
        id_factory: Callable[[], str] = _new_temp_id,
    ) -> None:
        self.source = source
        self.overlay = overlay
        self.role = role
        self.min_body_length = min_body_length
        self._now = now_func
        self._new_id = id_factory

    def validate(self, text: str, key: str | None, eligible: bool) -> str:
        """Return the trimmed body or raise ``ValidationError``. Never mutates state."""

        body = text.strip()
        if len(body) < self.min_body_length:
            raise ValidationError(f"Message must be at least {self.min_body_length} characters.")
        if key is None:
            raise ValidationError("Select a conversation first.")
        if not eligible:
            raise ValidationError("This conversation is closed. Messaging is no longer available.")
        return body

    def build_pending(self, key: str, body: str, raw_text: str) -> PendingSend:
        temp_id = self._new_id()
        while temp_id in self.overlay.pending_sends:
            temp_id = self._new_id()
        created_at_ms = self._now()
        message = Message(
            id=temp_id,
            conversation_key=key,
            direction=outgoing_direction(self.role),
            body=body,
            sent_at_ms=created_at_ms,
            read=False,
            kind=KIND_PLAIN,
        )
        return PendingSend(temp_id=temp_id, message=message, created_at_ms=created_at_ms, raw_text=raw_text)

    async def _resolve(self, key: str) -> str:
        try:
            counterpart_id = await self.source.resolve_counterpart(key)
        except ResolutionFailure:
            raise
        except Exception as exc:
            raise ResolutionFailure(key, str(exc)) from exc
        if not counterpart_id:
            raise ResolutionFailure(key, "empty counterpart id")
        return counterpart_id

    async def _deliver(self, pending: PendingSend, counterpart_id: str) -> Message | None:
        message = pending.message
        try:
            return await self.source.append_message(
                message.conversation_key,
                message.direction,
                message.body,
                {"counterpart_id": counterpart_id, "temp_id": pending.temp_id},
            )
        except SendFailure:
            raise
        except Exception as exc:
            raise SendFailure(str(exc)) from exc

    async def run(
        self,
        key: str | None,
        text: str,
        *,
        eligible: bool,
        compose: ComposeBuffer,
        on_change: Callable[[], None],
        is_live: Callable[[], bool],
    ) -> str:
        try:
            body = self.validate(text, key, eligible)
        except ValidationError as exc:
            compose.error_line = exc.user_message
            return SEND_INVALID

        try:
            counterpart_id = await self._resolve(key)
        except ResolutionFailure as exc:
            logger.warning("%s", exc)
            if is_live():
                compose.error_line = exc.user_message
            return SEND_UNRESOLVED
        if not is_live():
            return SEND_FAILED

        pending = self.build_pending(key, body, text)
        self.overlay.add_pending(pending)
        compose.text = ""
        compose.error_line = ""
        on_change()

        try:
            await self._deliver(pending, counterpart_id)
        except SendFailure as exc:
            logger.warning("send %s failed: %s", pending.temp_id, exc)
            if not is_live():
                return SEND_FAILED
            # match on the temporary id so an identical earlier message survives
            self.overlay.rollback(pending.temp_id)
            compose.text = pending.raw_text
            compose.error_line = exc.user_message
            on_change()
            return SEND_FAILED
        return SEND_OK
