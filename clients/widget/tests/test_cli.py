import io
import json
import os
import unittest
from unittest import mock

from chat_sync import cli
from chat_sync.models import DIRECTION_TO_RESPONDER, ViewModel

from .sync_fakes import FakeSource, make_message


class _ContextSource(FakeSource):
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self.source = _ContextSource()
        self.source.messages = [
            make_message("m1", "c1", DIRECTION_TO_RESPONDER, "welcome", 10),
            make_message("m2", "c1", DIRECTION_TO_RESPONDER, "reminder", 20, read=True),
        ]
        self.factory = mock.Mock(return_value=self.source)
        patcher = mock.patch.object(cli, "HttpMessageSource", self.factory)
        patcher.start()
        self.addCleanup(patcher.stop)
        env = mock.patch.dict(os.environ, {"CHAT_SYNC_POLL_INTERVAL_MS": "100"}, clear=True)
        env.start()
        self.addCleanup(env.stop)

    def test_snapshot_prints_view_model(self):
        output = io.StringIO()
        code = cli.main(
            [
                "snapshot",
                "--base-url",
                "https://lms.test/api",
                "--token",
                "tok",
                "--participant",
                "s1",
                "--role",
                "responder",
            ],
            output=output,
        )
        self.assertEqual(code, 0)
        payload = json.loads(output.getvalue())
        self.assertEqual(payload["total_unread"], 1)
        self.assertEqual([item["id"] for item in payload["conversations"]["c1"]], ["m1", "m2"])
        self.factory.assert_called_once_with("https://lms.test/api", "tok", "responder", timeout_s=10)
        self.assertEqual(self.source.mark_read_calls, [])

    def test_watch_prints_one_line_per_cycle(self):
        output = io.StringIO()
        with mock.patch.dict(os.environ, {"CHAT_SYNC_BASE_URL": "https://lms.test/api"}):
            code = cli.main(
                ["watch", "--participant", "s1", "--role", "responder", "--cycles", "2"],
                output=output,
            )
        self.assertEqual(code, 0)
        lines = [json.loads(line) for line in output.getvalue().splitlines()]
        self.assertEqual([line["cycle"] for line in lines], [1, 2])
        self.assertEqual(lines[-1]["unread_by_conversation"], {"c1": 1})
        self.assertEqual(self.source.fetch_calls, 2)

    def test_missing_base_url_is_a_usage_error(self):
        with mock.patch("sys.stderr", new_callable=io.StringIO):
            with self.assertRaises(SystemExit) as ctx:
                cli.main(["snapshot", "--participant", "s1", "--role", "responder"])
        self.assertEqual(ctx.exception.code, 2)

    def test_view_model_to_dict(self):
        vm = ViewModel(
            conversations={"c1": [make_message("m1", "c1", DIRECTION_TO_RESPONDER)]},
            unread_by_conversation={"c1": 1},
            total_unread=1,
        )
        payload = cli.view_model_to_dict(vm)
        self.assertEqual(payload["total_unread"], 1)
        self.assertEqual(payload["conversations"]["c1"][0]["body"], "hello there")
