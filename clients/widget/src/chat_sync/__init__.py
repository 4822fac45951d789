"""Client-side conversation synchronization for the course chat widget."""

from .autoscroll import ScrollPosition
from .config import SyncConfig, load_sync_config_from_env
from .engine import ConversationSyncEngine, RenderState
from .errors import ReadAckFailure, ResolutionFailure, SendFailure, SyncError, TransientFetchError, ValidationError
from .models import (
    DIRECTION_TO_INITIATOR,
    DIRECTION_TO_RESPONDER,
    KIND_PLAIN,
    KIND_SCHEDULED_EVENT,
    ROLE_INITIATOR,
    ROLE_RESPONDER,
    Message,
    ViewModel,
    conversation_key,
)
from .send import SEND_FAILED, SEND_INVALID, SEND_OK, SEND_UNRESOLVED
from .source import HttpMessageSource, MessageSource

__all__ = [
    "ConversationSyncEngine",
    "RenderState",
    "HttpMessageSource",
    "MessageSource",
    "Message",
    "ViewModel",
    "ScrollPosition",
    "SyncConfig",
    "load_sync_config_from_env",
    "conversation_key",
    "ROLE_RESPONDER",
    "ROLE_INITIATOR",
    "DIRECTION_TO_RESPONDER",
    "DIRECTION_TO_INITIATOR",
    "KIND_PLAIN",
    "KIND_SCHEDULED_EVENT",
    "SEND_OK",
    "SEND_INVALID",
    "SEND_UNRESOLVED",
    "SEND_FAILED",
    "SyncError",
    "TransientFetchError",
    "SendFailure",
    "ReadAckFailure",
    "ResolutionFailure",
    "ValidationError",
]
