"""Tests for utils: truncation, size and time formatting, path display."""

import time
from pathlib import Path

from agentguard.core.utils import format_timestamp, human_size, short_path, truncate


class TestTruncate:
    def test_short_text_unchanged(self):
        assert truncate("hello") == "hello"

    def test_truncates_large_text(self):
        big = "x" * 200_000
        result = truncate(big, max_bytes=1000)
        assert len(result.encode()) < 2000
        assert "[truncated, 200000 bytes total]" in result

    def test_exact_boundary(self):
        text = "a" * 100
        assert truncate(text, max_bytes=100) == text

    def test_multibyte_chars(self):
        text = "你好" * 100
        result = truncate(text, max_bytes=50)
        assert "[truncated" in result


class TestHumanSize:
    def test_bytes(self):
        assert human_size(0) == "0B"
        assert human_size(512) == "512B"

    def test_kb(self):
        assert human_size(1536) == "1.5KB"

    def test_mb(self):
        assert human_size(1024 * 1024) == "1.0MB"


class TestFormatTimestamp:
    def test_milliseconds(self):
        ms = 1_700_000_000_000
        expected = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(1_700_000_000))
        assert format_timestamp(ms) == expected


class TestShortPath:
    def test_under_root(self):
        assert short_path("/work/src/a.py", Path("/work")) == "src/a.py"

    def test_outside_root(self):
        assert short_path("/elsewhere/a.py", Path("/work")) == "/elsewhere/a.py"
