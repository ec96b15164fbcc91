"""Exception types shared by hooks, checkpoints and the process runner."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

    from agentguard.hooks.models import HookExecutionResult


class ConfigError(Exception):
    """Raised when a hooks or settings file cannot be parsed.

    Attributes:
        path: The offending file, if applicable.
    """

    def __init__(self, message: str, path: Path | None = None) -> None:
        self.path = path
        super().__init__(message)


class CheckpointingUnavailableError(Exception):
    """Raised when checkpointing cannot start (git missing, shadow dir unusable)."""


class SnapshotError(Exception):
    """Raised when a shadow repository operation fails.

    Attributes:
        command: The git arguments that failed, if applicable.
    """

    def __init__(self, message: str, command: list[str] | None = None) -> None:
        self.command = command
        super().__init__(message)


class CheckpointNotFoundError(Exception):
    """Raised when a checkpoint id is unknown."""

    def __init__(self, checkpoint_id: str) -> None:
        self.checkpoint_id = checkpoint_id
        super().__init__(f"Checkpoint not found: {checkpoint_id}")


class ProcessCancelledError(Exception):
    """Raised when a running process is cancelled by its caller."""


class HookBlockedError(Exception):
    """Raised when a blocking hook vetoes the action it guards.

    Attributes:
        result: The failing hook result that caused the veto.
    """

    def __init__(self, result: HookExecutionResult) -> None:
        self.result = result
        super().__init__(result.describe())


class ToolCancelledError(Exception):
    """Raised when a tool call is cancelled before the tool runs."""
