"""Upload trigger and the uploader contract.

The service only needs one entry point from the upload pipeline:
`upload(path) -> UploadResult`. Conversion, redaction and authentication live
behind it. Triggers are fire-and-forget: the outcome is logged and appended
to the event log, never retried and never fed back into tracker state.
"""
from __future__ import annotations

import asyncio
import logging
import os
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Set

from pydantic import BaseModel, ConfigDict, Field

from ..kernel.settings import UploadTarget

logger = logging.getLogger("agentlogs.upload")

EventRecorder = Callable[[str, str, Optional[str]], None]

HTTP_TIMEOUT_S = 30.0
COMMAND_TIMEOUT_S = 120.0


class TargetResult(BaseModel):
    target: str
    success: bool
    error: Optional[str] = None
    detail: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class UploadResult(BaseModel):
    success: bool
    results: List[TargetResult] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def from_results(cls, results: Sequence[TargetResult]) -> "UploadResult":
        return cls(success=any(r.success for r in results), results=list(results))


class Uploader(ABC):
    """Uploads a transcript to every configured destination."""

    @abstractmethod
    async def upload(self, path: str) -> UploadResult:
        pass


def _post_file(target: UploadTarget, path: str) -> TargetResult:
    data = Path(path).read_bytes()
    headers = {"Content-Type": "application/x-ndjson", "X-Transcript-Name": os.path.basename(path)}
    if target.token_env:
        token = os.environ.get(target.token_env, "").strip()
        if token:
            headers["Authorization"] = f"Bearer {token}"
    req = urllib.request.Request(target.url, data=data, headers=headers, method="POST")
    try:
        with urllib.request.urlopen(req, timeout=HTTP_TIMEOUT_S) as resp:
            body = resp.read(4096).decode("utf-8", errors="replace")
            return TargetResult(target=target.name, success=200 <= resp.status < 300, detail=body or None)
    except urllib.error.HTTPError as e:
        return TargetResult(target=target.name, success=False, error=f"HTTP {e.code}: {e.reason}")
    except urllib.error.URLError as e:
        return TargetResult(target=target.name, success=False, error=str(e.reason))


async def _run_command(target: UploadTarget, path: str) -> TargetResult:
    argv = [part.replace("{path}", path) for part in target.command]
    if not any("{path}" in part for part in target.command):
        argv.append(path)
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=COMMAND_TIMEOUT_S)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return TargetResult(target=target.name, success=False, error=f"timed out after {COMMAND_TIMEOUT_S:.0f}s")
    if proc.returncode == 0:
        tail = out.decode("utf-8", errors="replace").strip()[-500:]
        return TargetResult(target=target.name, success=True, detail=tail or None)
    tail = err.decode("utf-8", errors="replace").strip()[-500:]
    return TargetResult(target=target.name, success=False, error=f"exit {proc.returncode}: {tail}".rstrip(": "))


class TargetUploader(Uploader):
    """Sends the raw transcript to each UploadTarget (HTTP POST or external command)."""

    def __init__(self, targets: Sequence[UploadTarget]):
        self._targets = list(targets)

    async def _upload_one(self, target: UploadTarget, path: str) -> TargetResult:
        try:
            if target.url:
                loop = asyncio.get_running_loop()
                return await loop.run_in_executor(None, _post_file, target, path)
            return await _run_command(target, path)
        except (OSError, ValueError) as e:
            return TargetResult(target=target.name, success=False, error=str(e))

    async def upload(self, path: str) -> UploadResult:
        if not self._targets:
            logger.warning("No upload targets configured", extra={"meta": {"path": path}})
            return UploadResult(success=False)
        results = await asyncio.gather(*(self._upload_one(t, path) for t in self._targets))
        return UploadResult.from_results(results)


class UploadTrigger:
    """Spawns uploads as tasks on the running loop and logs how they end."""

    def __init__(self, uploader: Uploader, *, record_event: Optional[EventRecorder] = None):
        self._uploader = uploader
        self._record_event = record_event
        self._inflight: Set[asyncio.Task] = set()

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def _record(self, type: str, path: str) -> None:
        if self._record_event is None:
            return
        try:
            self._record_event(type, path, None)
        except Exception:
            logger.exception("Failed to record upload event: %s", path)

    def trigger(self, path: str) -> asyncio.Task:
        logger.info("Uploading session: %s", path)
        task = asyncio.get_running_loop().create_task(self._uploader.upload(path))
        self._inflight.add(task)
        task.add_done_callback(lambda t: self._on_done(path, t))
        return task

    def _on_done(self, path: str, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            logger.debug("Upload cancelled: %s", path)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Upload error: %s", path, extra={"meta": {"error": str(exc)}})
            self._record("upload_error", path)
            return
        result: UploadResult = task.result()
        if result.success:
            logger.info(
                "Upload succeeded: %s",
                path,
                extra={"meta": {"targets": [r.target for r in result.results if r.success]}},
            )
            self._record("upload_success", path)
        else:
            logger.warning(
                "Upload failed for all targets: %s",
                path,
                extra={"meta": {"errors": [{"target": r.target, "error": r.error} for r in result.results]}},
            )
            self._record("upload_failed", path)

    async def wait_idle(self) -> None:
        """Wait for every in-flight upload to finish (outcomes are still only logged)."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
