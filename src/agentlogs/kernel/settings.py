"""Service settings.

Settings come from an optional ~/.agentlogs/settings.yaml and are overridden
by environment variables. They are read once when the service starts:

- watch_dir / extension: which transcripts to follow
- grace_period_seconds / poll_interval_seconds / max_file_age_seconds
- use_watcher: disable the filesystem subscription (polling only)
- upload_targets: where completed turns are sent
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml  # type: ignore

from ..paths import agentlogs_home, default_watch_dir
from ..util.conv import coerce_bool, coerce_float


DEFAULT_GRACE_PERIOD_S = 30.0
DEFAULT_POLL_INTERVAL_S = 15.0
DEFAULT_MAX_FILE_AGE_S = 24 * 60 * 60.0
DEFAULT_EXTENSION = ".jsonl"


@dataclass(frozen=True)
class UploadTarget:
    """One destination for transcript uploads (an HTTP endpoint or a command)."""
    name: str
    url: str = ""
    token_env: str = ""
    command: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"name": self.name}
        if self.url:
            d["url"] = self.url
        if self.token_env:
            d["token_env"] = self.token_env
        if self.command:
            d["command"] = list(self.command)
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> Optional["UploadTarget"]:
        url = str(d.get("url") or "").strip()
        raw_cmd = d.get("command")
        if isinstance(raw_cmd, str):
            command = raw_cmd.split()
        elif isinstance(raw_cmd, list):
            command = [str(x) for x in raw_cmd if str(x)]
        else:
            command = []
        if not url and not command:
            return None
        name = str(d.get("name") or "").strip() or (url or command[0])
        return cls(name=name, url=url, token_env=str(d.get("token_env") or "").strip(), command=command)


@dataclass(frozen=True)
class ServiceSettings:
    home: Path
    watch_dir: Path
    socket_path: Path
    pid_path: Path
    log_path: Path
    events_path: Path
    extension: str = DEFAULT_EXTENSION
    grace_period_s: float = DEFAULT_GRACE_PERIOD_S
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S
    max_file_age_s: float = DEFAULT_MAX_FILE_AGE_S
    use_watcher: bool = True
    log_level: str = "INFO"
    upload_targets: List[UploadTarget] = field(default_factory=list)

    @property
    def events_lock_path(self) -> Path:
        return self.events_path.with_name(self.events_path.name + ".lock")


def settings_path(home: Optional[Path] = None) -> Path:
    return (home or agentlogs_home()) / "settings.yaml"


def load_settings_doc(home: Optional[Path] = None) -> Dict[str, Any]:
    """Load the raw settings document; missing or broken files read as empty."""
    p = settings_path(home)
    if not p.exists():
        return {}
    try:
        doc = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        return doc if isinstance(doc, dict) else {}
    except (OSError, yaml.YAMLError):
        return {}


def _path_setting(env: Mapping[str, str], env_key: str, doc_value: Any, default: Path) -> Path:
    raw = str(env.get(env_key, "") or "").strip()
    if not raw and isinstance(doc_value, str):
        raw = doc_value.strip()
    if not raw:
        return default
    return Path(raw).expanduser()


def _parse_targets(raw: Any) -> List[UploadTarget]:
    if not isinstance(raw, list):
        return []
    out: List[UploadTarget] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        target = UploadTarget.from_dict(item)
        if target is not None:
            out.append(target)
    return out


def load_settings(home: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> ServiceSettings:
    """Resolve the service settings snapshot (environment wins over settings.yaml)."""
    h = home or agentlogs_home()
    e = os.environ if env is None else env
    doc = load_settings_doc(h)

    extension = str(doc.get("extension") or DEFAULT_EXTENSION).strip() or DEFAULT_EXTENSION
    if not extension.startswith("."):
        extension = "." + extension

    return ServiceSettings(
        home=h,
        watch_dir=_path_setting(e, "AGENTLOGS_WATCH_DIR", doc.get("watch_dir"), default_watch_dir()),
        socket_path=_path_setting(e, "AGENTLOGS_SOCKET", None, h / "service.sock"),
        pid_path=_path_setting(e, "AGENTLOGS_PID_FILE", None, h / "service.pid"),
        log_path=_path_setting(e, "AGENTLOGS_LOG_FILE", None, h / "service.log"),
        events_path=_path_setting(e, "AGENTLOGS_EVENTS_FILE", None, h / "watcher-events.log"),
        extension=extension,
        grace_period_s=coerce_float(doc.get("grace_period_seconds"), default=DEFAULT_GRACE_PERIOD_S),
        poll_interval_s=coerce_float(doc.get("poll_interval_seconds"), default=DEFAULT_POLL_INTERVAL_S),
        max_file_age_s=coerce_float(doc.get("max_file_age_seconds"), default=DEFAULT_MAX_FILE_AGE_S),
        use_watcher=coerce_bool(doc.get("use_watcher"), default=True),
        log_level=str(e.get("AGENTLOGS_LOG_LEVEL") or doc.get("log_level") or "INFO").strip().upper(),
        upload_targets=_parse_targets(doc.get("upload_targets")),
    )
