"""CheckpointStore: write-once JSON records, one file per checkpoint."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

from .models import Checkpoint

logger = logging.getLogger(__name__)


class CheckpointStore:
    """In-memory index of checkpoints backed by ``<dir>/<id>.json`` files."""

    def __init__(self, directory: Path):
        self.directory = directory
        self._index: dict[str, Checkpoint] = {}
        self._lock = threading.Lock()

    def load(self) -> int:
        """(Re)load every record on disk. Unreadable records are logged and skipped."""
        self.directory.mkdir(parents=True, exist_ok=True)
        index: dict[str, Checkpoint] = {}
        for path in sorted(self.directory.glob("*.json")):
            try:
                checkpoint = Checkpoint.from_dict(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning("Skipping unreadable checkpoint record %s: %s", path, e)
                continue
            index[checkpoint.id] = checkpoint
        with self._lock:
            self._index = index
        return len(index)

    def add(self, checkpoint: Checkpoint) -> None:
        """Persist a new checkpoint. Existing records are never overwritten."""
        path = self.directory / f"{checkpoint.id}.json"
        content = json.dumps(checkpoint.to_dict(), indent=2)
        with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(path, "x", encoding="utf-8") as f:
                f.write(content)
            self._index[checkpoint.id] = checkpoint

    def get(self, checkpoint_id: str) -> Checkpoint | None:
        return self._index.get(checkpoint_id)

    def all(self) -> list[Checkpoint]:
        """Every checkpoint, newest first."""
        with self._lock:
            items = list(self._index.values())
        return sorted(items, key=lambda c: (c.timestamp, c.id), reverse=True)

    def __len__(self) -> int:
        return len(self._index)
