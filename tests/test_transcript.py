import tempfile
import unittest
from pathlib import Path

from helpers import agent_line, meta_line, user_line


class TestLastTurnMarker(unittest.TestCase):
    def _write(self, td: str, text: str) -> Path:
        p = Path(td) / "t.jsonl"
        p.write_text(text, encoding="utf-8")
        return p

    def test_latest_agent_message_wins(self) -> None:
        from agentlogs.kernel.transcript import last_turn_marker

        with tempfile.TemporaryDirectory() as td:
            p = self._write(td, meta_line() + agent_line("T1") + user_line() + agent_line("T2") + user_line())
            self.assertEqual(last_turn_marker(p), "T2")

    def test_no_completed_turn(self) -> None:
        from agentlogs.kernel.transcript import last_turn_marker

        with tempfile.TemporaryDirectory() as td:
            self.assertIsNone(last_turn_marker(self._write(td, meta_line() + user_line())))
            self.assertIsNone(last_turn_marker(self._write(td, "")))

    def test_partial_tail_is_skipped(self) -> None:
        from agentlogs.kernel.transcript import last_turn_marker

        with tempfile.TemporaryDirectory() as td:
            p = self._write(td, meta_line() + agent_line("T1") + '{"timestamp":"T2","type":"event_m')
            self.assertEqual(last_turn_marker(p), "T1")

    def test_agent_message_outside_event_msg_is_ignored(self) -> None:
        from agentlogs.kernel.transcript import last_turn_marker

        with tempfile.TemporaryDirectory() as td:
            line = '{"timestamp":"T9","type":"response_item","payload":{"type":"agent_message"}}\n'
            self.assertIsNone(last_turn_marker(self._write(td, meta_line() + line + "[1,2]\n")))

    def test_missing_file(self) -> None:
        from agentlogs.kernel.transcript import last_turn_marker

        with tempfile.TemporaryDirectory() as td:
            self.assertIsNone(last_turn_marker(Path(td) / "absent.jsonl"))


if __name__ == "__main__":
    unittest.main()
