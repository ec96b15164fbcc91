"""Checkpoints: shadow-repository snapshots of the project tree and rewind."""

from .engine import CheckpointEngine, capture_git_state, generate_checkpoint_name
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
from .shadow import RestoreReport, ShadowCommit, ShadowRepository, Snapshot, TreeChange
from .store import CheckpointStore

__all__ = [
    "Checkpoint",
    "CheckpointCreateOptions",
    "CheckpointEngine",
    "CheckpointListItem",
    "CheckpointMetadata",
    "CheckpointStore",
    "FileChange",
    "GitState",
    "RestoreReport",
    "RewindOptions",
    "RewindResult",
    "ShadowCommit",
    "ShadowRepository",
    "Snapshot",
    "TreeChange",
    "capture_git_state",
    "generate_checkpoint_name",
]
