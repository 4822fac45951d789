"""Which conversation is open, and since when."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Set

from .models import ViewModel, _now_ms

logger = logging.getLogger(__name__)


@dataclass
class SelectionState:
    selected_key: Optional[str] = None
    opened_at_ms: Optional[int] = None
    new_since_open: Set[str] = field(default_factory=set)
    banner_visible: bool = False

    @property
    def is_selected(self) -> bool:
        return self.selected_key is not None

    def reset_tracking(self) -> None:
        self.opened_at_ms = None
        self.new_since_open = set()
        self.banner_visible = False


class SelectionMachine:
    """``Unselected`` / ``Selected(key)`` state machine.

    Auto-selection of the first conversation happens only when the widget
    opens with nothing selected; if no conversations are known yet, it waits
    for the first view model that has one.
    """

    def __init__(self, *, now_func: Callable[[], int] = _now_ms) -> None:
        self.state = SelectionState()
        self._now = now_func
        self._auto_select_pending = False

    @property
    def selected_key(self) -> Optional[str]:
        return self.state.selected_key

    def _enter(self, key: str, widget_open: bool) -> None:
        self.state.selected_key = key
        self.state.reset_tracking()
        if widget_open:
            self.state.opened_at_ms = self._now()
        self._auto_select_pending = False

    def _leave(self) -> None:
        self.state.selected_key = None
        self.state.reset_tracking()

    def select(self, key: str | None, view_model: ViewModel, widget_open: bool) -> bool:
        """Explicit user pick. Returns True when the selected key changed."""

        if key is None:
            if self.state.selected_key is None:
                return False
            self._auto_select_pending = False
            self._leave()
            return True
        if not view_model.has_conversation(key):
            return False
        if key == self.state.selected_key:
            return False
        self._enter(key, widget_open)
        return True

    def on_widget_open(self, view_model: ViewModel) -> bool:
        """Returns True when a conversation got auto-selected."""

        if self.state.selected_key is not None:
            self.state.reset_tracking()
            self.state.opened_at_ms = self._now()
            return False
        self._auto_select_pending = True
        return self._try_auto_select(view_model)

    def on_widget_close(self) -> None:
        self._auto_select_pending = False
        self.state.reset_tracking()

    def _try_auto_select(self, view_model: ViewModel) -> bool:
        if not self._auto_select_pending:
            return False
        first = view_model.first_key()
        if first is None:
            return False
        self._enter(first, widget_open=True)
        return True

    def validate(self, view_model: ViewModel, widget_open: bool) -> bool:
        """Re-check the selection after a reconciliation. Returns True on change."""

        key = self.state.selected_key
        if key is not None:
            if view_model.has_conversation(key):
                return False
            logger.info("conversation %s no longer available; clearing selection", key)
            self._leave()
            return True
        if widget_open:
            return self._try_auto_select(view_model)
        return False
