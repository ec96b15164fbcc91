"""Process runner: run a command with a timeout and a cancel token."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# How often the runner wakes up to check the cancel token.
POLL_INTERVAL = 0.05


@dataclass
class ProcessResult:
    """Outcome of one process run. Output is bytes unless ``text=True``."""

    exit_code: int
    stdout: str | bytes = ""
    stderr: str | bytes = ""
    timed_out: bool = False
    cancelled: bool = False
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled


def _kill(proc: subprocess.Popen) -> None:
    if proc.poll() is not None:
        return
    try:
        if os.name == "posix":
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except (ProcessLookupError, PermissionError):
        proc.kill()


def run_process(
    command: str | list[str],
    *,
    cwd: str | os.PathLike | None = None,
    env: dict[str, str] | None = None,
    timeout: float | None = None,
    cancel: threading.Event | None = None,
    input: bytes | None = None,
    text: bool = True,
) -> ProcessResult:
    """Run *command* and wait for it.

    A string command runs through the shell, a list runs directly. *timeout* is
    in seconds. Setting *cancel* kills the process (and its process group on
    POSIX) and returns a result with ``cancelled=True``. A missing executable
    raises ``FileNotFoundError`` like ``subprocess.run`` does.
    """
    start = time.monotonic()
    if cancel is not None and cancel.is_set():
        return ProcessResult(exit_code=-1, stdout=_empty(text), stderr=_empty(text), cancelled=True)

    proc = subprocess.Popen(
        command,
        shell=isinstance(command, str),
        cwd=cwd,
        env=env,
        stdin=subprocess.PIPE if input is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        start_new_session=os.name == "posix",
    )
    deadline = start + timeout if timeout is not None else None
    timed_out = cancelled = False
    pending_input = input
    while True:
        wait = POLL_INTERVAL
        if deadline is not None:
            wait = max(0.0, min(wait, deadline - time.monotonic()))
        try:
            stdout, stderr = proc.communicate(input=pending_input, timeout=wait)
            break
        except subprocess.TimeoutExpired:
            pending_input = None
            if cancel is not None and cancel.is_set():
                cancelled = True
            elif deadline is not None and time.monotonic() >= deadline:
                timed_out = True
            else:
                continue
            _kill(proc)
            stdout, stderr = proc.communicate()
            break

    duration_ms = int((time.monotonic() - start) * 1000)
    if timed_out:
        logger.debug("process timed out after %sms: %s", duration_ms, command)
    if cancelled:
        logger.debug("process cancelled: %s", command)
    if text:
        stdout = stdout.decode("utf-8", errors="replace")
        stderr = stderr.decode("utf-8", errors="replace")
    return ProcessResult(
        exit_code=proc.returncode if not (timed_out or cancelled) else -1,
        stdout=stdout,
        stderr=stderr,
        timed_out=timed_out,
        cancelled=cancelled,
        duration_ms=duration_ms,
    )


def _empty(text: bool) -> str | bytes:
    return "" if text else b""
