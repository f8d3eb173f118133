import io
import json
import logging
import tempfile
import unittest
from pathlib import Path


class TestServiceLineFormatter(unittest.TestCase):
    def _record(self, level: int, msg: str, meta=None) -> logging.LogRecord:
        rec = logging.LogRecord("agentlogs.test", level, __file__, 1, msg, (), None)
        rec.created = 1735689600.0  # 2025-01-01T00:00:00Z
        if meta is not None:
            rec.meta = meta
        return rec

    def test_line_shape_with_metadata(self) -> None:
        from agentlogs.util.obslog import ServiceLineFormatter

        fmt = ServiceLineFormatter(component="service")
        line = fmt.format(self._record(logging.INFO, "Polling sessions", {"intervalMs": 15000}))
        self.assertEqual(line, '[2025-01-01T00:00:00.000Z] [service] [INFO] Polling sessions {"intervalMs": 15000}')

    def test_warning_renders_as_warn_without_empty_meta(self) -> None:
        from agentlogs.util.obslog import ServiceLineFormatter

        fmt = ServiceLineFormatter(component="service")
        line = fmt.format(self._record(logging.WARNING, "Sessions directory not found", {}))
        self.assertTrue(line.endswith("[WARN] Sessions directory not found"))

    def test_exception_text_goes_into_metadata(self) -> None:
        from agentlogs.util.obslog import ServiceLineFormatter

        fmt = ServiceLineFormatter(component="service")
        try:
            raise ValueError("boom")
        except ValueError:
            import sys

            rec = logging.LogRecord("agentlogs.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
        line = fmt.format(rec)
        meta = json.loads(line.split("failed ", 1)[1])
        self.assertIn("ValueError: boom", meta["exc"])

    def test_setup_writes_to_file_and_stream(self) -> None:
        from agentlogs.util.obslog import setup_service_logging

        with tempfile.TemporaryDirectory() as td:
            log_path = Path(td) / "logs" / "service.log"
            stream = io.StringIO()
            logger = setup_service_logging(log_path=log_path, level="debug", stream=stream, force=True)
            try:
                logging.getLogger("agentlogs.server").info("Service ready", extra={"meta": {"pid": 42}})
                for h in logger.handlers:
                    h.flush()
                self.assertIn('Service ready {"pid": 42}', stream.getvalue())
                self.assertIn("[service] [INFO] Service ready", log_path.read_text(encoding="utf-8"))
            finally:
                for h in list(logger.handlers):
                    logger.removeHandler(h)
                    h.close()

    def test_parse_level(self) -> None:
        from agentlogs.util.obslog import parse_level

        self.assertEqual(parse_level("warn"), logging.WARNING)
        self.assertEqual(parse_level("nonsense"), logging.INFO)
        self.assertEqual(parse_level(""), logging.INFO)


class TestEventLog(unittest.TestCase):
    def test_append_and_format(self) -> None:
        from agentlogs.kernel.events import append_event, format_event_line
        from agentlogs.util.fs import read_last_lines

        with tempfile.TemporaryDirectory() as td:
            events = Path(td) / "watcher-events.log"
            ev = append_event(events, type="update", path="/s/a.jsonl", reason="file_changed", timestamp=1735689600000)
            self.assertIsNotNone(ev)
            append_event(events, type="turn_complete", path="/s/a.jsonl", reason="agent_message")

            lines = read_last_lines(events, 10)
            self.assertEqual(len(lines), 2)
            first = json.loads(lines[0])
            self.assertEqual(first, {"type": "update", "path": "/s/a.jsonl", "reason": "file_changed", "timestamp": 1735689600000})
            self.assertEqual(format_event_line(lines[0]), "[2025-01-01T00:00:00.000Z] update: /s/a.jsonl")
            self.assertEqual(json.loads(lines[1])["type"], "turn_complete")
            self.assertEqual(read_last_lines(events, 1), [lines[1]])

    def test_unknown_event_type_is_rejected(self) -> None:
        from agentlogs.kernel.events import append_event

        with tempfile.TemporaryDirectory() as td:
            events = Path(td) / "watcher-events.log"
            self.assertIsNone(append_event(events, type="renamed", path="/x"))
            self.assertFalse(events.exists())

    def test_unwritable_log_still_returns_event(self) -> None:
        from agentlogs.kernel.events import append_event

        with tempfile.TemporaryDirectory() as td:
            blocker = Path(td) / "file"
            blocker.write_text("", encoding="utf-8")
            ev = append_event(blocker / "watcher-events.log", type="delete", path="/x")
            self.assertIsNotNone(ev)
            self.assertEqual(ev.type, "delete")

    def test_non_json_lines_pass_through(self) -> None:
        from agentlogs.kernel.events import format_event_line

        self.assertEqual(format_event_line("garbage"), "garbage")


if __name__ == "__main__":
    unittest.main()
