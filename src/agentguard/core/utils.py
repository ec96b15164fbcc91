"""Output truncation, size/time formatting, path display."""

from __future__ import annotations

import time
from pathlib import Path

MAX_OUTPUT_BYTES = 100 * 1024  # 100KB


def truncate(text: str, max_bytes: int = MAX_OUTPUT_BYTES) -> str:
    """Truncate text to max_bytes."""
    encoded = text.encode("utf-8", errors="replace")
    if len(encoded) <= max_bytes:
        return text
    truncated = encoded[:max_bytes].decode("utf-8", errors="ignore")
    return truncated + f"\n\n... [truncated, {len(encoded)} bytes total]"


def human_size(size: int) -> str:
    """Format bytes to human readable."""
    for unit in ("B", "KB", "MB", "GB"):
        if abs(size) < 1024:
            return f"{size:.1f}{unit}" if unit != "B" else f"{size}{unit}"
        size /= 1024  # type: ignore
    return f"{size:.1f}TB"


def format_timestamp(ms: int) -> str:
    """Local time for a millisecond epoch timestamp."""
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(ms / 1000))


def short_path(p: str | Path, root: Path) -> str:
    """Return *p* relative to *root* when it lives under it."""
    try:
        return str(Path(p).relative_to(root))
    except ValueError:
        return str(p)
