"""Checkpoint data models and their JSON form."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

ChangeType = Literal["created", "modified", "deleted"]
Trigger = Literal["manual", "pre-tool", "pre-conversation"]
RestoreMode = Literal["files", "conversation", "both"]


@dataclass(frozen=True)
class FileChange:
    """One file's change captured by a checkpoint.

    Contents are only kept for text files up to the configured size limit;
    otherwise the record is metadata-only.
    """

    path: str  # absolute
    change_type: ChangeType
    size: int
    content_hash: str
    original_content: str | None = None
    new_content: str | None = None


@dataclass(frozen=True)
class GitState:
    """State of the user's own repository when the checkpoint was taken."""

    branch: str
    commit_hash: str
    is_clean: bool
    stash_name: str | None = None


@dataclass(frozen=True)
class CheckpointMetadata:
    is_auto: bool = False
    trigger: Trigger = "manual"
    created_by: str | None = None
    tool_name: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class Checkpoint:
    id: str
    timestamp: int  # ms since epoch
    session_id: str
    message_id: int
    commit: str
    file_changes: tuple[FileChange, ...] = ()
    label: str | None = None
    git_state: GitState | None = None
    metadata: CheckpointMetadata = field(default_factory=CheckpointMetadata)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Checkpoint:
        git = data.get("git_state")
        return cls(
            id=data["id"],
            timestamp=int(data["timestamp"]),
            session_id=data.get("session_id", "unknown"),
            message_id=int(data.get("message_id", 0)),
            commit=data["commit"],
            file_changes=tuple(FileChange(**fc) for fc in data.get("file_changes", [])),
            label=data.get("label"),
            git_state=GitState(**git) if git else None,
            metadata=CheckpointMetadata(**data.get("metadata", {})),
        )


@dataclass
class CheckpointCreateOptions:
    label: str | None = None
    is_auto: bool = False
    trigger: Trigger = "manual"
    tool_name: str | None = None
    notes: str | None = None
    message_id: int | None = None
    capture_git_state: bool = True
    max_file_size: int | None = None  # None = engine default


@dataclass
class RewindOptions:
    restore_mode: RestoreMode = "both"
    create_checkpoint: bool = True
    dry_run: bool = False


@dataclass
class RewindResult:
    success: bool
    dry_run: bool = False
    files_restored: list[str] = field(default_factory=list)
    files_failed: list[str] = field(default_factory=list)
    error: str | None = None
    not_found: bool = False
    conversation_message_id: int | None = None
    # True only when a conversation collaborator actually rolled back.
    conversation_rewound: bool = False
    safety_checkpoint_id: str | None = None


@dataclass(frozen=True)
class CheckpointListItem:
    id: str
    timestamp: int
    session_id: str
    file_changes_count: int
    is_auto: bool
    label: str | None = None
    tool_name: str | None = None

    @classmethod
    def from_checkpoint(cls, checkpoint: Checkpoint) -> CheckpointListItem:
        return cls(
            id=checkpoint.id,
            timestamp=checkpoint.timestamp,
            session_id=checkpoint.session_id,
            file_changes_count=len(checkpoint.file_changes),
            is_auto=checkpoint.metadata.is_auto,
            label=checkpoint.label,
            tool_name=checkpoint.metadata.tool_name,
        )
