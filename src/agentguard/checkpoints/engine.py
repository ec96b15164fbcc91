"""CheckpointEngine: structured checkpoints and rewind on top of the shadow repository."""

from __future__ import annotations

import itertools
import logging
import os
import posixpath
import secrets
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from agentguard.core.config import DEFAULT_MAX_FILE_SIZE
from agentguard.core.errors import CheckpointNotFoundError, SnapshotError
from agentguard.core.process import run_process

from .models import (
    Checkpoint,
    CheckpointCreateOptions,
    CheckpointListItem,
    CheckpointMetadata,
    FileChange,
    GitState,
    RewindOptions,
    RewindResult,
)
from .shadow import MODE_GITLINK, ShadowRepository, TreeChange
from .store import CheckpointStore

if TYPE_CHECKING:
    from agentguard.core.config import Config

logger = logging.getLogger(__name__)

_CHANGE_TYPES = {"A": "created", "D": "deleted"}


def generate_checkpoint_name(files: list[str]) -> str:
    """Name a checkpoint after the files it changed."""
    if not files:
        return "Empty checkpoint"
    names = [posixpath.basename(f.replace(os.sep, "/")) for f in files]
    if len(names) <= 3:
        return f"Modified {', '.join(names)}"
    return f"Modified {len(names)} files"


def capture_git_state(root: Path) -> GitState | None:
    """Branch, HEAD and cleanliness of the user's own repository, if there is one."""
    env = {k: v for k, v in os.environ.items() if not k.startswith("GIT_")}

    def _git(*args: str) -> str | None:
        try:
            r = run_process(["git", *args], cwd=root, env=env, timeout=10)
        except FileNotFoundError:
            return None
        return r.stdout.strip() if r.ok else None

    if _git("rev-parse", "--is-inside-work-tree") != "true":
        return None
    commit = _git("rev-parse", "HEAD")
    if commit is None:
        return None
    status = _git("status", "--porcelain")
    return GitState(
        branch=_git("rev-parse", "--abbrev-ref", "HEAD") or "",
        commit_hash=commit,
        is_clean=status == "",
    )


class CheckpointEngine:
    """Create, list and rewind checkpoints for one project."""

    def __init__(
        self,
        project_root: Path,
        history_dir: Path,
        *,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        exclude_patterns: list[str] | tuple[str, ...] = (),
        capture_git_state: bool = True,
        on_conversation_rewind: Callable[[int], None] | None = None,
    ):
        self.shadow = ShadowRepository(project_root, history_dir, exclude_patterns)
        self.store = CheckpointStore(history_dir / "checkpoints")
        self.max_file_size = max_file_size
        self.capture_git_state = capture_git_state
        self.on_conversation_rewind = on_conversation_rewind
        self.session_id: str | None = None
        self._counter = itertools.count(1)
        self._last_ms = 0
        self._id_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Config, **kwargs) -> CheckpointEngine:
        return cls(
            config.cwd,
            config.history_dir,
            max_file_size=config.max_file_size,
            exclude_patterns=config.exclude_patterns,
            capture_git_state=config.capture_git_state,
            **kwargs,
        )

    @property
    def project_root(self) -> Path:
        return self.shadow.project_root

    def initialize(self) -> None:
        """Prepare the shadow repository and load saved checkpoints.

        Raises CheckpointingUnavailableError if checkpointing cannot work at all.
        """
        self.shadow.initialize()
        count = self.store.load()
        logger.debug("Checkpoint engine initialized with %d checkpoints", count)

    def set_session_id(self, session_id: str) -> None:
        self.session_id = session_id

    def _new_id(self) -> tuple[int, str]:
        """A non-decreasing ms timestamp and an id that sorts with it."""
        with self._id_lock:
            now = max(int(time.time() * 1000), self._last_ms)
            self._last_ms = now
            return now, f"chk_{now}_{next(self._counter):06d}_{secrets.token_hex(3)}"

    # ── create ──────────────────────────────────────────────────────

    def create(
        self,
        options: CheckpointCreateOptions | None = None,
        cancel: threading.Event | None = None,
    ) -> Checkpoint:
        """Snapshot the project and record a checkpoint for it.

        Raises SnapshotError if the snapshot fails or is cancelled; nothing is
        recorded in that case.
        """
        # The id, the commit and the record are made under one lock so that
        # checkpoint order always follows commit order.
        with self.shadow.lock:
            return self._create(options or CheckpointCreateOptions(), cancel)

    def _create(
        self, options: CheckpointCreateOptions, cancel: threading.Event | None
    ) -> Checkpoint:
        timestamp, checkpoint_id = self._new_id()
        label = options.label

        def _message(paths: list[str]) -> str:
            nonlocal label
            if label is None:
                label = generate_checkpoint_name(paths)
            return f"{label}\n\nCheckpoint-Id: {checkpoint_id}"

        snapshot = self.shadow.create_snapshot(_message, cancel)
        max_size = options.max_file_size if options.max_file_size is not None else self.max_file_size
        file_changes = tuple(self._file_change(c, max_size) for c in snapshot.changes)

        git_state = None
        if options.capture_git_state and self.capture_git_state:
            git_state = capture_git_state(self.project_root)

        checkpoint = Checkpoint(
            id=checkpoint_id,
            timestamp=timestamp,
            session_id=self.session_id or "unknown",
            message_id=options.message_id or 0,
            commit=snapshot.commit,
            file_changes=file_changes,
            label=label,
            git_state=git_state,
            metadata=CheckpointMetadata(
                is_auto=options.is_auto,
                trigger=options.trigger,
                created_by=os.getenv("USER") or os.getenv("USERNAME") or "unknown",
                tool_name=options.tool_name,
                notes=options.notes,
            ),
        )
        self.store.add(checkpoint)
        logger.debug("Checkpoint created: %s (%d files)", checkpoint.id, len(file_changes))
        return checkpoint

    def _file_change(self, change: TreeChange, max_size: int) -> FileChange:
        change_type = _CHANGE_TYPES.get(change.status, "modified")
        path = str(self.project_root / change.path)
        before = change.old_sha if change_type != "created" else None
        after = change.new_sha if change_type != "deleted" else None
        if MODE_GITLINK in (change.old_mode, change.new_mode):
            return FileChange(path, change_type, size=0, content_hash=after or before or "")
        size = self.shadow.blob_size(after or before)
        return FileChange(
            path=path,
            change_type=change_type,
            size=size,
            content_hash=after or before or "",
            original_content=self._text(before, max_size),
            new_content=self._text(after, max_size),
        )

    def _text(self, sha: str | None, max_size: int) -> str | None:
        if sha is None or self.shadow.blob_size(sha) > max_size:
            return None
        try:
            return self.shadow.read_blob(sha).decode("utf-8")
        except UnicodeDecodeError:
            return None

    # ── rewind ──────────────────────────────────────────────────────

    def rewind(
        self,
        checkpoint_id: str,
        options: RewindOptions | None = None,
        cancel: threading.Event | None = None,
    ) -> RewindResult:
        """Restore files and/or report the conversation position of a checkpoint."""
        options = options or RewindOptions()
        try:
            checkpoint = self.require_checkpoint(checkpoint_id)
        except CheckpointNotFoundError as e:
            return RewindResult(
                success=False, dry_run=options.dry_run, not_found=True, error=str(e)
            )

        restore_files = options.restore_mode in ("files", "both")
        restore_conversation = options.restore_mode in ("conversation", "both")
        result = RewindResult(success=True, dry_run=options.dry_run)
        if restore_conversation:
            result.conversation_message_id = checkpoint.message_id

        logger.debug(
            "Rewinding to %s (mode: %s, dry run: %s)",
            checkpoint_id,
            options.restore_mode,
            options.dry_run,
        )
        try:
            if options.dry_run:
                if restore_files:
                    changes = self.shadow.diff_paths(checkpoint.commit, cancel)
                    result.files_restored = [str(self.project_root / c.path) for c in changes]
                return result

            if restore_files:
                with self.shadow.lock:
                    if options.create_checkpoint:
                        safety = self.create(
                            CheckpointCreateOptions(
                                label=f"Pre-rewind to {checkpoint_id}",
                                is_auto=True,
                                notes="Taken automatically before a rewind",
                                capture_git_state=False,
                            ),
                            cancel,
                        )
                        result.safety_checkpoint_id = safety.id
                    report = self.shadow.restore(checkpoint.commit, cancel)
                result.files_restored = report.restored
                result.files_failed = report.failed
        except SnapshotError as e:
            logger.warning("Rewind to %s failed: %s", checkpoint_id, e)
            result.success = False
            result.error = str(e)
            return result

        if restore_conversation and self.on_conversation_rewind is not None:
            self.on_conversation_rewind(checkpoint.message_id)
            result.conversation_rewound = True

        if result.files_failed:
            result.success = False
            result.error = "Some files failed to restore"
        logger.debug(
            "Rewind complete: %d restored, %d failed",
            len(result.files_restored),
            len(result.files_failed),
        )
        return result

    # ── queries ─────────────────────────────────────────────────────

    def get_checkpoint(self, checkpoint_id: str) -> Checkpoint | None:
        return self.store.get(checkpoint_id)

    def require_checkpoint(self, checkpoint_id: str) -> Checkpoint:
        checkpoint = self.store.get(checkpoint_id)
        if checkpoint is None:
            raise CheckpointNotFoundError(checkpoint_id)
        return checkpoint

    def list_checkpoints(
        self, limit: int = 20, session_id: str | None = None
    ) -> list[CheckpointListItem]:
        """Newest first, optionally limited to one session."""
        checkpoints = self.store.all()
        if session_id:
            checkpoints = [c for c in checkpoints if c.session_id == session_id]
        return [CheckpointListItem.from_checkpoint(c) for c in checkpoints[:limit]]

    def get_stats(self) -> dict[str, int | None]:
        checkpoints = self.store.all()
        auto = sum(1 for c in checkpoints if c.metadata.is_auto)
        stamps = [c.timestamp for c in checkpoints]
        return {
            "total": len(checkpoints),
            "auto": auto,
            "manual": len(checkpoints) - auto,
            "oldest": min(stamps) if stamps else None,
            "newest": max(stamps) if stamps else None,
        }
