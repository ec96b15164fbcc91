"""Tests for the process runner: output capture, exit codes, timeout, cancellation."""

import os
import threading
import time

import pytest

from agentguard.core.process import run_process


class TestRunProcess:
    def test_shell_command_output(self):
        result = run_process("echo hello")
        assert result.exit_code == 0
        assert result.ok is True
        assert "hello" in result.stdout

    def test_list_command_runs_without_shell(self):
        result = run_process(["echo", "$HOME"])
        assert result.stdout.strip() == "$HOME"

    def test_nonzero_exit(self):
        result = run_process("echo oops >&2; exit 3")
        assert result.exit_code == 3
        assert result.ok is False
        assert "oops" in result.stderr

    def test_cwd_and_env(self, tmp_path):
        env = dict(os.environ, GREETING="hi there")
        result = run_process("pwd; echo $GREETING", cwd=tmp_path, env=env)
        assert str(tmp_path.resolve()) in result.stdout
        assert "hi there" in result.stdout

    def test_bytes_output(self):
        result = run_process(["printf", "abc"], text=False)
        assert result.stdout == b"abc"

    def test_stdin_input(self):
        result = run_process(["cat"], input=b"piped")
        assert result.stdout == "piped"

    def test_timeout_kills_process(self):
        start = time.monotonic()
        result = run_process("sleep 30", timeout=0.3)
        assert result.timed_out is True
        assert result.exit_code == -1
        assert result.ok is False
        assert time.monotonic() - start < 10

    def test_cancel_kills_process(self):
        cancel = threading.Event()
        timer = threading.Timer(0.2, cancel.set)
        timer.start()
        try:
            result = run_process("sleep 30", cancel=cancel)
        finally:
            timer.cancel()
        assert result.cancelled is True
        assert result.ok is False

    def test_already_cancelled_does_not_start(self, tmp_path):
        marker = tmp_path / "ran"
        cancel = threading.Event()
        cancel.set()
        result = run_process(f"touch {marker}", cancel=cancel)
        assert result.cancelled is True
        assert not marker.exists()

    def test_missing_executable_raises(self):
        with pytest.raises(FileNotFoundError):
            run_process(["definitely-not-a-real-binary-xyz"])
