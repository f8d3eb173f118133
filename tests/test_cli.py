import contextlib
import io
import os
import tempfile
import unittest
from pathlib import Path


class TestCli(unittest.TestCase):
    def _with_home(self, td: str):
        old = os.environ.get("AGENTLOGS_HOME")
        os.environ["AGENTLOGS_HOME"] = td

        def cleanup() -> None:
            if old is None:
                os.environ.pop("AGENTLOGS_HOME", None)
            else:
                os.environ["AGENTLOGS_HOME"] = old

        return cleanup

    def _run(self, argv):
        from agentlogs.daemon_main import main

        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            code = main(argv)
        return code, out.getvalue()

    def test_status_when_not_running(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cleanup = self._with_home(td)
            try:
                code, out = self._run(["status"])
                self.assertEqual(code, 1)
                self.assertIn("Service: not running", out)

                Path(td, "service.pid").write_text("999999999\n", encoding="utf-8")
                code, out = self._run(["status"])
                self.assertEqual(code, 1)
                self.assertIn("stale PID file", out)
            finally:
                cleanup()

    def test_stop_when_not_running(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cleanup = self._with_home(td)
            try:
                code, out = self._run(["stop"])
                self.assertEqual(code, 0)
                self.assertIn("Service is not running", out)
            finally:
                cleanup()

    def test_logs_renders_last_events(self) -> None:
        from agentlogs.kernel.events import append_event

        with tempfile.TemporaryDirectory() as td:
            cleanup = self._with_home(td)
            try:
                code, out = self._run(["logs"])
                self.assertEqual(code, 0)
                self.assertIn("No watcher logs yet", out)

                events = Path(td) / "watcher-events.log"
                append_event(events, type="create", path="/s/a.jsonl", timestamp=1735689600000)
                append_event(events, type="turn_complete", path="/s/a.jsonl", timestamp=1735689601000)
                code, out = self._run(["logs", "-n", "1"])
                self.assertEqual(code, 0)
                self.assertEqual(out.strip(), "[2025-01-01T00:00:01.000Z] turn_complete: /s/a.jsonl")
            finally:
                cleanup()


if __name__ == "__main__":
    unittest.main()
