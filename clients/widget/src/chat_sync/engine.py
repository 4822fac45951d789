"""Engine facade wiring the poll loop, overlay, selection and send pipeline together.

Everything here runs on one asyncio event loop. State is only mutated from
the loop thread, between awaits, so no locks are needed; the scheduler's
in-flight flag is the only mutual exclusion.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional, Set

from .arrivals import NewArrivalDetector
from .autoscroll import AutoscrollController, ScrollPosition
from .config import SyncConfig
from .errors import TransientFetchError
from .filters import EligibilityCache, filter_expired, group_eligible, unique_keys
from .models import ROLES, Message, ViewModel, _now_ms
from .overlay import LocalOverlay
from .poller import PollScheduler
from .read_state import ReadStateSynchronizer
from .reconciler import reconcile
from .selection import SelectionMachine, SelectionState
from .send import SEND_OK, ComposeBuffer, SendPipeline
from .source import MessageSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderState:
    widget_open: bool
    conversation_keys: List[str]
    unread_by_conversation: Dict[str, int]
    total_unread: int
    selected_key: Optional[str]
    transcript: List[Message]
    pending_ids: FrozenSet[str]
    new_since_open: FrozenSet[str]
    banner_visible: bool
    compose_text: str
    error_line: str


class ConversationSyncEngine:
    def __init__(
        self,
        source: MessageSource,
        participant_id: str,
        role: str,
        config: SyncConfig | None = None,
        *,
        now_func: Callable[[], int] = _now_ms,
        eligibility_cache: EligibilityCache | None = None,
    ) -> None:
        if role not in ROLES:
            raise ValueError(f"unknown role {role!r}")
        self.source = source
        self.participant_id = participant_id
        self.role = role
        self.config = config or SyncConfig()
        self._now = now_func
        if eligibility_cache is None and self.config.eligibility_ttl_ms > 0:
            eligibility_cache = EligibilityCache(self.config.eligibility_ttl_ms, now_func=now_func)
        self.eligibility_cache = eligibility_cache

        self.view_model = ViewModel()
        self.overlay = LocalOverlay(self.config.supersede_window_ms)
        self.compose = ComposeBuffer()
        self.widget_open = False
        self._mounted = False
        self._grouped: Dict[str, List[Message]] = {}
        self._eligibility: Dict[str, bool] = {}
        self._scroll_requested = False
        self._background: Set[asyncio.Task] = set()

        self.selection_machine = SelectionMachine(now_func=now_func)
        self.read_sync = ReadStateSynchronizer(role)
        self.arrivals = NewArrivalDetector(role)
        self.autoscroll = AutoscrollController(
            threshold_px=self.config.autoscroll_threshold_px,
            debounce_ms=self.config.scroll_debounce_ms,
            now_func=now_func,
        )
        self.sender = SendPipeline(
            source,
            self.overlay,
            role,
            min_body_length=self.config.min_body_length,
            now_func=now_func,
        )
        self.scheduler = PollScheduler(self._poll_cycle, self.config.poll_interval_s)

    @property
    def selection(self) -> SelectionState:
        return self.selection_machine.state

    @property
    def compose_text(self) -> str:
        return self.compose.text

    @property
    def error_line(self) -> str:
        return self.compose.error_line

    @property
    def mounted(self) -> bool:
        return self._mounted and self._alive()

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        if self.scheduler.stopped:
            raise RuntimeError("engine was stopped")
        self._mounted = True
        self.scheduler.start()

    async def stop(self) -> None:
        # in-flight remote calls are not cancelled; their results are ignored
        self._mounted = False
        await self.scheduler.stop()

    def open_widget(self) -> None:
        if self.widget_open:
            return
        self.widget_open = True
        self.read_sync.reset()
        if self.selection_machine.on_widget_open(self.view_model):
            self._on_selection_changed()
        self._scroll_requested = True
        self._after_view_update()

    def close_widget(self) -> None:
        if not self.widget_open:
            return
        self.widget_open = False
        self.selection_machine.on_widget_close()

    # -- imperative operations -----------------------------------------------

    def select_conversation(self, key: str | None) -> bool:
        if not self.selection_machine.select(key, self.view_model, self.widget_open):
            return False
        self._on_selection_changed()
        self._after_view_update()
        if self.scheduler.running:
            # pick up anything that arrived since the last tick
            self.scheduler.tick()
        return True

    def set_compose_text(self, text: str) -> None:
        self.compose.text = text

    def dismiss_banner(self) -> None:
        self.arrivals.dismiss(self.selection)

    def on_scroll(self, position: ScrollPosition) -> None:
        self.autoscroll.note_scroll(position)
        if self.selection.banner_visible and position.distance_from_bottom < self.config.banner_dismiss_px:
            self.arrivals.dismiss(self.selection)

    def take_scroll_request(self) -> bool:
        requested = self._scroll_requested
        self._scroll_requested = False
        return requested

    async def send(self, text: str | None = None) -> str:
        raw_text = self.compose.text if text is None else text
        key = self.selection.selected_key
        eligible = self.view_model.has_conversation(key) and self._eligibility.get(key or "") is True
        result = await self.sender.run(
            key,
            raw_text,
            eligible=eligible,
            compose=self.compose,
            on_change=self._on_local_change,
            is_live=self._alive,
        )
        if result == SEND_OK and self._alive():
            await self.scheduler.run_once()
        return result

    async def poll_once(self) -> bool:
        return await self.scheduler.run_once()

    async def drain(self) -> None:
        await self.scheduler.wait_idle()
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def render(self) -> RenderState:
        key = self.selection.selected_key
        return RenderState(
            widget_open=self.widget_open,
            conversation_keys=list(self.view_model.conversations),
            unread_by_conversation=dict(self.view_model.unread_by_conversation),
            total_unread=self.view_model.total_unread,
            selected_key=key,
            transcript=list(self.view_model.conversations.get(key, [])) if key is not None else [],
            pending_ids=frozenset(self.overlay.pending_sends),
            new_since_open=frozenset(self.selection.new_since_open),
            banner_visible=self.selection.banner_visible,
            compose_text=self.compose.text,
            error_line=self.compose.error_line,
        )

    # -- poll cycle ----------------------------------------------------------

    def _alive(self) -> bool:
        return not self.scheduler.stopped

    async def _poll_cycle(self) -> None:
        try:
            messages = await self.source.fetch_messages(self.participant_id, self.role)
            if not self._alive():
                return
            messages = filter_expired(messages, self._now())
            eligibility = await self._lookup_eligibility(unique_keys(messages))
        except TransientFetchError as exc:
            logger.warning("poll cycle aborted: %s", exc)
            return
        except Exception as exc:
            logger.warning("poll cycle aborted: %s", TransientFetchError(str(exc)))
            return
        if not self._alive():
            return

        grouped = group_eligible(messages, eligibility)
        superseded = self.overlay.supersede(message for batch in grouped.values() for message in batch)
        if superseded:
            logger.debug("superseded pending sends %s", superseded)
        self._grouped = grouped
        self._eligibility = dict(eligibility)
        self._rebuild()

    async def _lookup_eligibility(self, keys: List[str]) -> Dict[str, bool]:
        if not keys:
            return {}
        if self.eligibility_cache is None:
            return dict(await self.source.get_eligibility(keys))
        hits, misses = self.eligibility_cache.split(keys)
        if misses:
            answers = await self.source.get_eligibility(misses)
            self.eligibility_cache.store({key: answers.get(key) is True for key in misses})
            hits.update(answers)
        return hits

    # -- derived state -------------------------------------------------------

    def _rebuild(self) -> None:
        self.view_model = reconcile(self._grouped, self.overlay, self.role)
        self._after_view_update()

    def _on_local_change(self) -> None:
        self._rebuild()
        self._scroll_requested = True

    def _on_selection_changed(self) -> None:
        key = self.selection.selected_key
        self.read_sync.note_selection(key)
        if key is not None:
            self._scroll_requested = self.autoscroll.on_selection_change() or self._scroll_requested

    def _after_view_update(self) -> None:
        if self.selection_machine.validate(self.view_model, self.widget_open):
            self._on_selection_changed()
        self.arrivals.scan(self.selection, self.view_model, self.overlay)

        unread_ids = self.read_sync.run(self.selection, self.view_model, self.overlay, self.widget_open)
        if unread_ids:
            logger.debug("marking %d message(s) read in %s", len(unread_ids), self.selection.selected_key)
            self._spawn(self.read_sync.acknowledge(unread_ids, self.source.mark_read))

        if self.widget_open and self.selection.selected_key is not None and self.autoscroll.on_view_update():
            self._scroll_requested = True

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
