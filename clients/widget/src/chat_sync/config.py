from __future__ import annotations

import os
from dataclasses import dataclass

MIN_POLL_INTERVAL_MS = 100


@dataclass(frozen=True)
class SyncConfig:
    poll_interval_ms: int = 2000
    min_body_length: int = 5
    autoscroll_threshold_px: int = 150
    banner_dismiss_px: int = 100
    scroll_debounce_ms: int = 500
    supersede_window_ms: int = 30_000
    eligibility_ttl_ms: int = 0
    request_timeout_s: int = 10

    @property
    def poll_interval_s(self) -> float:
        return max(self.poll_interval_ms, MIN_POLL_INTERVAL_MS) / 1000


def _parse_non_negative_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if parsed < 0:
        raise ValueError(f"{name} must be non-negative")
    return parsed


def load_sync_config_from_env() -> SyncConfig:
    defaults = SyncConfig()
    poll_interval_ms = _parse_non_negative_int("CHAT_SYNC_POLL_INTERVAL_MS", defaults.poll_interval_ms)
    return SyncConfig(
        poll_interval_ms=max(MIN_POLL_INTERVAL_MS, poll_interval_ms),
        min_body_length=_parse_non_negative_int("CHAT_SYNC_MIN_BODY_LENGTH", defaults.min_body_length),
        autoscroll_threshold_px=_parse_non_negative_int(
            "CHAT_SYNC_AUTOSCROLL_THRESHOLD_PX", defaults.autoscroll_threshold_px
        ),
        banner_dismiss_px=_parse_non_negative_int("CHAT_SYNC_BANNER_DISMISS_PX", defaults.banner_dismiss_px),
        scroll_debounce_ms=_parse_non_negative_int("CHAT_SYNC_SCROLL_DEBOUNCE_MS", defaults.scroll_debounce_ms),
        supersede_window_ms=_parse_non_negative_int("CHAT_SYNC_SUPERSEDE_WINDOW_MS", defaults.supersede_window_ms),
        eligibility_ttl_ms=_parse_non_negative_int("CHAT_SYNC_ELIGIBILITY_TTL_MS", defaults.eligibility_ttl_ms),
        request_timeout_s=max(1, _parse_non_negative_int("CHAT_SYNC_REQUEST_TIMEOUT_S", defaults.request_timeout_s)),
    )
