from __future__ import annotations

DEFAULT_SEND_ERROR = "Failed to send message. Please try again."


class SyncError(Exception):
    """Base class for every error raised inside the synchronization engine."""


class TransientFetchError(SyncError):
    """A poll cycle could not fetch messages or eligibility.

    Never shown to the user; the previous view model is kept and the next
    tick retries.
    """


class SendFailure(SyncError):
    def __init__(self, message: str, *, user_message: str = DEFAULT_SEND_ERROR) -> None:
        self.user_message = user_message
        super().__init__(message)


class ReadAckFailure(SyncError):
    def __init__(self, message_id: str, reason: str) -> None:
        self.message_id = message_id
        self.reason = reason
        super().__init__(f"mark_read {message_id} failed: {reason}")


class ResolutionFailure(SyncError):
    def __init__(
        self,
        conversation_key: str,
        reason: str,
        *,
        user_message: str = "Unable to find the recipient for this conversation. Please try again later.",
    ) -> None:
        self.conversation_key = conversation_key
        self.user_message = user_message
        super().__init__(f"could not resolve counterpart for {conversation_key}: {reason}")


class ValidationError(SyncError):
    def __init__(self, user_message: str) -> None:
        self.user_message = user_message
        super().__init__(user_message)
