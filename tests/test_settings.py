import tempfile
import unittest
from pathlib import Path

import yaml


def _write_settings(doc, home: Path) -> None:
    (home / "settings.yaml").write_text(yaml.safe_dump(doc, sort_keys=False), encoding="utf-8")


class TestLoadSettings(unittest.TestCase):
    def test_defaults_without_settings_file(self) -> None:
        from agentlogs.kernel.settings import load_settings

        with tempfile.TemporaryDirectory() as td:
            home = Path(td)
            s = load_settings(home=home, env={})
            self.assertEqual(s.socket_path, home / "service.sock")
            self.assertEqual(s.pid_path, home / "service.pid")
            self.assertEqual(s.log_path, home / "service.log")
            self.assertEqual(s.events_path, home / "watcher-events.log")
            self.assertEqual(s.watch_dir, Path.home() / ".codex" / "sessions")
            self.assertEqual(s.grace_period_s, 30.0)
            self.assertEqual(s.poll_interval_s, 15.0)
            self.assertEqual(s.max_file_age_s, 86400.0)
            self.assertEqual(s.extension, ".jsonl")
            self.assertTrue(s.use_watcher)
            self.assertEqual(s.upload_targets, [])

    def test_yaml_values_and_env_overrides(self) -> None:
        from agentlogs.kernel.settings import load_settings

        with tempfile.TemporaryDirectory() as td:
            home = Path(td)
            _write_settings(
                {
                    "watch_dir": str(home / "from-yaml"),
                    "extension": "ndjson",
                    "grace_period_seconds": "5",
                    "poll_interval_seconds": 2,
                    "max_file_age_seconds": -1,
                    "use_watcher": "off",
                    "log_level": "debug",
                },
                home=home,
            )
            env = {
                "AGENTLOGS_WATCH_DIR": str(home / "from-env"),
                "AGENTLOGS_SOCKET": str(home / "alt.sock"),
                "AGENTLOGS_LOG_LEVEL": "warn",
            }
            s = load_settings(home=home, env=env)
            self.assertEqual(s.watch_dir, home / "from-env")
            self.assertEqual(s.socket_path, home / "alt.sock")
            self.assertEqual(s.extension, ".ndjson")
            self.assertEqual(s.grace_period_s, 5.0)
            self.assertEqual(s.poll_interval_s, 2.0)
            # Non-positive durations fall back to the default.
            self.assertEqual(s.max_file_age_s, 86400.0)
            self.assertFalse(s.use_watcher)
            self.assertEqual(s.log_level, "WARN")

            s2 = load_settings(home=home, env={})
            self.assertEqual(s2.watch_dir, home / "from-yaml")
            self.assertEqual(s2.log_level, "DEBUG")

    def test_broken_yaml_reads_as_empty(self) -> None:
        from agentlogs.kernel.settings import load_settings, settings_path

        with tempfile.TemporaryDirectory() as td:
            home = Path(td)
            settings_path(home).write_text("grace_period_seconds: [unterminated\n", encoding="utf-8")
            s = load_settings(home=home, env={})
            self.assertEqual(s.grace_period_s, 30.0)

    def test_upload_targets_parsing(self) -> None:
        from agentlogs.kernel.settings import UploadTarget, load_settings

        with tempfile.TemporaryDirectory() as td:
            home = Path(td)
            _write_settings(
                {
                    "upload_targets": [
                        {"name": "collector", "url": "https://example.invalid/ingest", "token_env": "COLLECTOR_TOKEN"},
                        {"command": "rsync {path} backup:/transcripts/"},
                        {"name": "empty"},
                        "not-a-mapping",
                    ]
                },
                home=home,
            )
            targets = load_settings(home=home, env={}).upload_targets
            self.assertEqual(len(targets), 2)
            self.assertEqual(targets[0].name, "collector")
            self.assertEqual(targets[0].token_env, "COLLECTOR_TOKEN")
            self.assertEqual(targets[1].name, "rsync")
            self.assertEqual(targets[1].command, ["rsync", "{path}", "backup:/transcripts/"])
            self.assertEqual(UploadTarget.from_dict(targets[1].to_dict()), targets[1])


class TestCoercion(unittest.TestCase):
    def test_coerce_bool(self) -> None:
        from agentlogs.util.conv import coerce_bool

        self.assertFalse(coerce_bool("false", default=True))
        self.assertTrue(coerce_bool("YES"))
        self.assertTrue(coerce_bool("maybe", default=True))
        self.assertFalse(coerce_bool(None))
        self.assertTrue(coerce_bool(2))

    def test_coerce_float(self) -> None:
        from agentlogs.util.conv import coerce_float

        self.assertEqual(coerce_float("1.5", default=3.0), 1.5)
        self.assertEqual(coerce_float("abc", default=3.0), 3.0)
        self.assertEqual(coerce_float(0, default=3.0), 3.0)
        self.assertEqual(coerce_float(True, default=3.0), 3.0)
        self.assertEqual(coerce_float(float("nan"), default=3.0), 3.0)


if __name__ == "__main__":
    unittest.main()
