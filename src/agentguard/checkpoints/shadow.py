"""Shadow repository: an isolated git history of the project tree.

The git metadata lives outside the project (``GIT_DIR`` points into the
history directory) while the work tree is the real project root, so the
user's own repository is never read or written. Commits are built from a
throwaway index with ``write-tree``/``commit-tree`` and published with a
compare-and-swap ``update-ref``; that last call is the only step that changes
history, so a cancelled or failed snapshot leaves no partial commit behind.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from agentguard.core.errors import CheckpointingUnavailableError, SnapshotError
from agentguard.core.process import ProcessResult, run_process

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 120  # seconds

GIT_CONFIG = (
    "[user]\n"
    "  name = agentguard\n"
    "  email = agentguard@localhost\n"
    "[commit]\n"
    "  gpgsign = false\n"
    "[core]\n"
    "  autocrlf = false\n"
    "  quotePath = false\n"
)

# Always excluded from snapshots, on top of the user's .gitignore.
INTERNAL_EXCLUDES = (".git/", "node_modules/")

MODE_SYMLINK = "120000"
MODE_EXECUTABLE = "100755"
MODE_GITLINK = "160000"
NULL_SHA = "0" * 40

# One lock per project root, shared by every ShadowRepository in the process.
_project_locks: dict[str, threading.RLock] = {}
_project_locks_guard = threading.Lock()


def project_lock(root: Path) -> threading.RLock:
    key = str(root.resolve())
    with _project_locks_guard:
        if key not in _project_locks:
            _project_locks[key] = threading.RLock()
        return _project_locks[key]


@dataclass(frozen=True)
class TreeChange:
    """One entry of a tree-to-tree diff. Renames are split into D + A."""

    status: str  # "A", "M", "D" or "T"
    path: str  # relative to the project root, forward slashes
    old_mode: str = ""
    new_mode: str = ""
    old_sha: str = ""
    new_sha: str = ""


@dataclass(frozen=True)
class Snapshot:
    commit: str
    parent: str
    changes: tuple[TreeChange, ...] = ()


@dataclass(frozen=True)
class ShadowCommit:
    hash: str
    message: str
    timestamp: int  # ms since epoch


@dataclass
class RestoreReport:
    restored: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def parse_raw_diff(out: bytes) -> list[TreeChange]:
    """Parse ``git diff-tree -r -z --raw --no-abbrev`` output."""
    tokens = out.decode("utf-8", errors="surrogateescape").split("\0")
    changes: list[TreeChange] = []
    i = 0
    while i < len(tokens):
        header = tokens[i]
        if not header.startswith(":"):
            i += 1
            continue
        old_mode, new_mode, old_sha, new_sha, status = header[1:].split(" ")
        letter = status[0]
        if letter in ("R", "C"):
            src, dst = tokens[i + 1], tokens[i + 2]
            i += 3
            if letter == "R":
                changes.append(TreeChange("D", src, old_mode, "000000", old_sha, NULL_SHA))
            changes.append(TreeChange("A", dst, "000000", new_mode, NULL_SHA, new_sha))
            continue
        changes.append(TreeChange(letter, tokens[i + 1], old_mode, new_mode, old_sha, new_sha))
        i += 2
    return changes


class ShadowRepository:
    """Owns the shadow history of one project. Mutations are serialized per project."""

    def __init__(
        self,
        project_root: Path,
        history_dir: Path,
        extra_excludes: list[str] | tuple[str, ...] = (),
    ):
        self.project_root = project_root.resolve()
        self.history_dir = history_dir
        self.git_dir = history_dir / ".git"
        self.extra_excludes = tuple(extra_excludes)
        self.lock = project_lock(self.project_root)

    # ── git plumbing ────────────────────────────────────────────────

    def _env(self, index_file: Path | None = None) -> dict[str, str]:
        env = {k: v for k, v in os.environ.items() if not k.startswith("GIT_")}
        env.update(
            GIT_DIR=str(self.git_dir),
            GIT_WORK_TREE=str(self.project_root),
            HOME=str(self.history_dir),
            XDG_CONFIG_HOME=str(self.history_dir),
            GIT_CONFIG_GLOBAL=str(self.history_dir / ".gitconfig"),
            GIT_CONFIG_NOSYSTEM="1",
            GIT_TERMINAL_PROMPT="0",
        )
        if index_file is not None:
            env["GIT_INDEX_FILE"] = str(index_file)
        return env

    def _git(
        self,
        *args: str,
        index_file: Path | None = None,
        cancel: threading.Event | None = None,
        check: bool = True,
        text: bool = True,
    ) -> ProcessResult:
        cmd = ["git", *args]
        try:
            result = run_process(
                cmd,
                cwd=self.project_root,
                env=self._env(index_file),
                timeout=GIT_TIMEOUT,
                cancel=cancel,
                text=text,
            )
        except FileNotFoundError as e:
            raise SnapshotError("git is not installed or not in PATH", command=cmd) from e
        if check and not result.ok:
            if result.cancelled:
                raise SnapshotError(f"git {args[0]} cancelled", command=cmd)
            if result.timed_out:
                raise SnapshotError(f"git {args[0]} timed out", command=cmd)
            stderr = result.stderr if text else result.stderr.decode(errors="replace")
            raise SnapshotError(f"git {args[0]} failed: {stderr.strip()}", command=cmd)
        return result

    # ── setup ───────────────────────────────────────────────────────

    def is_initialized(self) -> bool:
        return (self.git_dir / "HEAD").exists()

    def initialize(self) -> None:
        """Create the shadow repository if needed and sync its ignore rules.

        Raises CheckpointingUnavailableError when git is missing or the
        history directory cannot be prepared.
        """
        if shutil.which("git") is None:
            raise CheckpointingUnavailableError(
                "Checkpointing is enabled, but git is not installed. "
                "Please install git or disable checkpointing to continue."
            )
        try:
            self.history_dir.mkdir(parents=True, exist_ok=True)
            # Keep the user's name, email and signing preferences out of the shadow repo.
            (self.history_dir / ".gitconfig").write_text(GIT_CONFIG, encoding="utf-8")
        except OSError as e:
            raise CheckpointingUnavailableError(
                f"Cannot create shadow repository at {self.history_dir}: {e}"
            ) from e

        try:
            with self.lock:
                if not self.is_initialized():
                    self._git("init", "-q")
                    self._git("symbolic-ref", "HEAD", "refs/heads/main")
                    self._git("commit", "--allow-empty", "--no-verify", "-q", "-m", "Initial commit")
                    logger.debug("Initialized shadow repository at %s", self.git_dir)
                self.sync_ignore_rules()
        except (SnapshotError, OSError) as e:
            raise CheckpointingUnavailableError(
                f"Failed to initialize checkpointing: {e}. "
                "Please check that git is working properly or disable checkpointing."
            ) from e

    def sync_ignore_rules(self) -> None:
        """Write the user's .gitignore plus internal exclusions to info/exclude."""
        user_ignore = ""
        gitignore = self.project_root / ".gitignore"
        if gitignore.is_file():
            user_ignore = gitignore.read_text(encoding="utf-8", errors="replace")
        lines = [user_ignore.rstrip("\n"), "", "# agentguard", *INTERNAL_EXCLUDES]
        try:
            rel = self.history_dir.resolve().relative_to(self.project_root)
            lines.append(f"/{rel.as_posix()}/")
        except ValueError:
            pass
        lines.extend(self.extra_excludes)
        info = self.git_dir / "info"
        info.mkdir(parents=True, exist_ok=True)
        (info / "exclude").write_text("\n".join(lines).lstrip("\n") + "\n", encoding="utf-8")

    # ── reading ─────────────────────────────────────────────────────

    def head(self) -> str:
        return self._git("rev-parse", "HEAD").stdout.strip()

    def has_commit(self, commit: str) -> bool:
        return self._git("cat-file", "-e", f"{commit}^{{commit}}", check=False).ok

    def read_blob(self, sha: str) -> bytes:
        return self._git("cat-file", "blob", sha, text=False).stdout

    def blob_size(self, sha: str) -> int:
        return int(self._git("cat-file", "-s", sha).stdout.strip())

    def list(self) -> list[ShadowCommit]:
        """All commits, newest first."""
        out = self._git("log", "--first-parent", "--format=%H%x1f%ct%x1f%s%x1e").stdout
        commits = []
        for record in out.split("\x1e"):
            record = record.strip()
            if not record:
                continue
            sha, ts, subject = record.split("\x1f", 2)
            commits.append(ShadowCommit(hash=sha, message=subject, timestamp=int(ts) * 1000))
        return commits

    def previous_of(self, commit: str) -> str | None:
        result = self._git("rev-parse", "--verify", "-q", f"{commit}~1", check=False)
        return result.stdout.strip() if result.ok else None

    def next_of(self, commit: str) -> str | None:
        """The commit one step closer to HEAD, or None if *commit* is the newest."""
        hashes = [c.hash for c in self.list()]
        if commit not in hashes:
            return None
        idx = hashes.index(commit)
        return hashes[idx - 1] if idx > 0 else None

    def _worktree_tree(
        self, cancel: threading.Event | None = None, keep_index: bool = False
    ) -> str:
        """Write the current work tree as a tree object via a temporary index."""
        tmp_index = self.history_dir / f"index-{uuid.uuid4().hex}.tmp"
        real_index = self.git_dir / "index"
        if real_index.exists():
            shutil.copyfile(real_index, tmp_index)
        try:
            self._git("add", "-A", "--", ".", index_file=tmp_index, cancel=cancel)
            tree = self._git("write-tree", index_file=tmp_index, cancel=cancel).stdout.strip()
            if keep_index:
                os.replace(tmp_index, real_index)
            return tree
        finally:
            tmp_index.unlink(missing_ok=True)

    def _diff_trees(self, old: str, new: str, renames: bool = False) -> list[TreeChange]:
        args = ["diff-tree", "-r", "-z", "--raw", "--no-abbrev", "--no-commit-id"]
        if renames:
            args.append("-M")
        out = self._git(*args, old, new, text=False).stdout
        return parse_raw_diff(out)

    def diff_paths(self, commit: str, cancel: threading.Event | None = None) -> list[TreeChange]:
        """What ``restore(commit)`` would change, computed without touching the tree."""
        with self.lock:
            if not self.has_commit(commit):
                raise SnapshotError(f"Unknown snapshot: {commit}")
            tree = self._worktree_tree(cancel)
            return self._diff_trees(tree, commit)

    # ── mutating ────────────────────────────────────────────────────

    def create_snapshot(
        self,
        message: str | Callable[[list[str]], str],
        cancel: threading.Event | None = None,
    ) -> Snapshot:
        """Commit the whole work tree. *message* may be a callable that
        receives the changed paths and returns the commit message."""
        with self.lock:
            parent = self.head()
            # The shadow index only caches stat data for the next add, so it
            # can be kept even if the commit below never happens.
            tree = self._worktree_tree(cancel, keep_index=True)
            changes = self._diff_trees(parent, tree, renames=True)
            if callable(message):
                message = message([c.path for c in changes])
            commit = self._git(
                "commit-tree", tree, "-p", parent, "-m", message, cancel=cancel
            ).stdout.strip()
            if cancel is not None and cancel.is_set():
                raise SnapshotError("snapshot cancelled before commit")
            # The compare-and-swap keeps the chain linear even across processes.
            self._git("update-ref", "-m", f"checkpoint: {message}", "HEAD", commit, parent)
            logger.debug("Snapshot %s (%d changes)", commit[:8], len(changes))
            return Snapshot(commit=commit, parent=parent, changes=tuple(changes))

    def restore(self, commit: str, cancel: threading.Event | None = None) -> RestoreReport:
        """Make the work tree match *commit*: rewrite differing files, recreate
        deleted ones, remove files created since. Per-path failures are
        collected in the report instead of aborting."""
        report = RestoreReport()
        with self.lock:
            if not self.has_commit(commit):
                raise SnapshotError(f"Unknown snapshot: {commit}")
            tree = self._worktree_tree(cancel)
            changes = self._diff_trees(tree, commit)
            # Deletions first so a file can replace a directory and vice versa.
            ordered = [c for c in changes if c.status == "D"] + [
                c for c in changes if c.status != "D"
            ]
            for change in ordered:
                target = self.project_root / change.path
                try:
                    if MODE_GITLINK in (change.old_mode, change.new_mode):
                        logger.debug("Skipping nested repository %s", change.path)
                        continue
                    if change.status == "D":
                        self._remove(target)
                    else:
                        self._write(target, change.new_sha, change.new_mode)
                except (OSError, SnapshotError) as e:
                    logger.warning("Failed to restore %s: %s", target, e)
                    report.failed.append(str(target))
                    continue
                report.restored.append(str(target))
            self._prune_new_dirs(commit, report, cancel)
        logger.debug(
            "Restored %s: %d paths, %d failed", commit[:8], len(report.restored), len(report.failed)
        )
        return report

    def _prune_new_dirs(
        self, commit: str, report: RestoreReport, cancel: threading.Event | None
    ) -> None:
        """Remove untracked, non-ignored directories that hold no files.

        ``git clean -n -d`` against an index of *commit* lists the candidates;
        a candidate that still contains any file (ignored or failed to
        restore) is left alone.
        """
        tmp_index = self.history_dir / f"index-{uuid.uuid4().hex}.tmp"
        try:
            self._git("read-tree", commit, index_file=tmp_index, cancel=cancel)
            out = self._git("clean", "-n", "-d", index_file=tmp_index, cancel=cancel).stdout
        except SnapshotError as e:
            logger.warning("Failed to list directories created since %s: %s", commit[:8], e)
            report.failed.append(str(self.project_root))
            return
        finally:
            tmp_index.unlink(missing_ok=True)

        for line in out.splitlines():
            if not (line.startswith("Would remove ") and line.endswith("/")):
                continue
            target = self.project_root / line[len("Would remove "):].rstrip("/")
            if target.is_symlink() or not target.is_dir():
                continue
            if any(not p.is_dir() or p.is_symlink() for p in target.rglob("*")):
                continue
            try:
                shutil.rmtree(target)
            except OSError as e:
                logger.warning("Failed to remove %s: %s", target, e)
                report.failed.append(str(target))
                continue
            report.restored.append(str(target))

    def _remove(self, target: Path) -> None:
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        else:
            target.unlink(missing_ok=True)
        parent = target.parent
        while parent != self.project_root and self.project_root in parent.parents:
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent

    def _write(self, target: Path, sha: str, mode: str) -> None:
        data = self.read_blob(sha)
        if target.is_symlink():
            target.unlink()
        elif target.is_dir():
            shutil.rmtree(target)
        elif mode == MODE_SYMLINK and target.exists():
            target.unlink()
        target.parent.mkdir(parents=True, exist_ok=True)
        if mode == MODE_SYMLINK:
            os.symlink(os.fsdecode(data), target)
            return
        target.write_bytes(data)
        current = target.stat().st_mode
        exec_bits = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH
        if mode == MODE_EXECUTABLE:
            os.chmod(target, current | exec_bits)
        elif current & exec_bits:
            os.chmod(target, current & ~exec_bits)
