"""Commands: slash commands for checkpoints, rewind and hooks."""

from .handler import COMMANDS, CommandHandler
from .rewind import (
    REWIND_HELP,
    RewindArgs,
    format_checkpoint_list,
    format_checkpoint_preview,
    format_rewind_result,
    parse_rewind_args,
)

__all__ = [
    "COMMANDS",
    "REWIND_HELP",
    "CommandHandler",
    "RewindArgs",
    "format_checkpoint_list",
    "format_checkpoint_preview",
    "format_rewind_result",
    "parse_rewind_args",
]
