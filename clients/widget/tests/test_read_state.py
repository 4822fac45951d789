import unittest

from chat_sync.errors import ReadAckFailure
from chat_sync.models import DIRECTION_TO_INITIATOR, DIRECTION_TO_RESPONDER, ROLE_RESPONDER
from chat_sync.overlay import LocalOverlay
from chat_sync.read_state import ReadStateSynchronizer
from chat_sync.reconciler import reconcile
from chat_sync.selection import SelectionMachine

from .sync_fakes import FakeClock, FakeSource, make_message


def _grouped():
    return {
        "c1": [
            make_message("m1", "c1", DIRECTION_TO_RESPONDER, sent_at_ms=1),
            make_message("m2", "c1", DIRECTION_TO_RESPONDER, sent_at_ms=2),
            make_message("m3", "c1", DIRECTION_TO_RESPONDER, sent_at_ms=3, read=True),
            make_message("m4", "c1", DIRECTION_TO_INITIATOR, sent_at_ms=4),
        ],
        "c2": [make_message("m5", "c2", DIRECTION_TO_RESPONDER, sent_at_ms=5)],
    }


class ReadStateRunTests(unittest.TestCase):
    def setUp(self) -> None:
        self.overlay = LocalOverlay()
        self.vm = reconcile(_grouped(), self.overlay, ROLE_RESPONDER)
        self.machine = SelectionMachine(now_func=FakeClock())
        self.sync = ReadStateSynchronizer(ROLE_RESPONDER)

    def test_marks_unread_incoming_messages_locally_first(self):
        self.machine.on_widget_open(self.vm)
        ids = self.sync.run(self.machine.state, self.vm, self.overlay, widget_open=True)

        self.assertEqual(ids, ["m1", "m2"])
        self.assertEqual(self.overlay.locally_read, {"m1", "m2"})
        self.assertEqual(self.vm.unread_by_conversation["c1"], 0)
        self.assertEqual(self.vm.total_unread, 1)
        self.assertEqual(self.sync.processed_key, "c1")

    def test_runs_once_per_selection(self):
        self.machine.on_widget_open(self.vm)
        self.sync.run(self.machine.state, self.vm, self.overlay, widget_open=True)

        grouped = _grouped()
        grouped["c1"].append(make_message("m6", "c1", DIRECTION_TO_RESPONDER, sent_at_ms=6))
        later = reconcile(grouped, self.overlay, ROLE_RESPONDER)
        self.assertEqual(self.sync.run(self.machine.state, later, self.overlay, widget_open=True), [])
        self.assertEqual(later.unread_by_conversation["c1"], 1)

        self.machine.select("c2", later, widget_open=True)
        self.assertEqual(self.sync.run(self.machine.state, later, self.overlay, widget_open=True), ["m5"])

    def test_reset_allows_rerun_on_reopen(self):
        self.machine.on_widget_open(self.vm)
        self.sync.run(self.machine.state, self.vm, self.overlay, widget_open=True)
        grouped = _grouped()
        grouped["c1"].append(make_message("m6", "c1", DIRECTION_TO_RESPONDER, sent_at_ms=6))
        later = reconcile(grouped, self.overlay, ROLE_RESPONDER)

        self.sync.reset()
        self.assertEqual(self.sync.run(self.machine.state, later, self.overlay, widget_open=True), ["m6"])

    def test_closed_widget_or_missing_conversation_does_nothing(self):
        self.machine.select("c1", self.vm, widget_open=False)
        self.assertEqual(self.sync.run(self.machine.state, self.vm, self.overlay, widget_open=False), [])
        self.assertIsNone(self.sync.processed_key)

        empty = reconcile({}, self.overlay, ROLE_RESPONDER)
        self.assertEqual(self.sync.run(self.machine.state, empty, self.overlay, widget_open=True), [])
        self.assertIsNone(self.sync.processed_key)

    def test_consumed_ids_leave_the_banner_set(self):
        self.machine.on_widget_open(self.vm)
        self.machine.state.new_since_open.update({"m2"})
        self.machine.state.banner_visible = True
        self.sync.run(self.machine.state, self.vm, self.overlay, widget_open=True)
        self.assertEqual(self.machine.state.new_since_open, set())
        self.assertFalse(self.machine.state.banner_visible)


class ReadStateAcknowledgeTests(unittest.IsolatedAsyncioTestCase):
    async def test_failures_are_logged_and_not_raised(self):
        source = FakeSource()
        source.mark_read_errors["m2"] = ReadAckFailure("m2", "http_500")
        source.mark_read_errors["m3"] = RuntimeError("boom")
        sync = ReadStateSynchronizer(ROLE_RESPONDER)

        with self.assertLogs("chat_sync.read_state", level="WARNING") as captured:
            succeeded = await sync.acknowledge(["m1", "m2", "m3"], source.mark_read)

        self.assertEqual(succeeded, 1)
        self.assertEqual(source.mark_read_calls, ["m1", "m2", "m3"])
        self.assertEqual(len(captured.records), 2)
        self.assertIn("m3", captured.output[1])
