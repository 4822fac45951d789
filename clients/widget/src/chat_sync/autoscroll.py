from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from .models import _now_ms


@dataclass(frozen=True)
class ScrollPosition:
    scroll_top: int
    client_height: int
    scroll_height: int

    @property
    def distance_from_bottom(self) -> int:
        return max(0, self.scroll_height - self.scroll_top - self.client_height)


class AutoscrollController:
    """Decide when the message list should jump to the bottom."""

    def __init__(
        self,
        *,
        threshold_px: int = 150,
        debounce_ms: int = 500,
        now_func: Callable[[], int] = _now_ms,
    ) -> None:
        self.threshold_px = threshold_px
        self.debounce_ms = debounce_ms
        self._now = now_func
        self.position: Optional[ScrollPosition] = None
        self._last_manual_scroll_ms: Optional[int] = None

    def note_scroll(self, position: ScrollPosition) -> None:
        self.position = position
        self._last_manual_scroll_ms = self._now()

    def is_user_scrolling(self) -> bool:
        if self._last_manual_scroll_ms is None:
            return False
        return self._now() - self._last_manual_scroll_ms < self.debounce_ms

    def is_near_bottom(self) -> bool:
        if self.position is None:
            return True
        return self.position.distance_from_bottom < self.threshold_px

    def on_view_update(self) -> bool:
        return self.is_near_bottom() and not self.is_user_scrolling()

    def on_selection_change(self) -> bool:
        self.position = None
        return True
