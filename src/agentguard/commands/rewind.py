"""/rewind: argument parsing and rich-markup formatting of checkpoints and results."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from agentguard.checkpoints import Checkpoint, CheckpointListItem, RewindOptions, RewindResult
from agentguard.core.utils import format_timestamp, human_size, short_path

REWIND_HELP = """
  [bold]/rewind <id> [options][/bold]  [dim]rewind to a checkpoint[/dim]
  [bold]/rewind list[/bold]            [dim]list available checkpoints[/dim]
  [bold]/rewind help[/bold]            [dim]show this help[/dim]

  [bold]options[/bold]
    --dry-run, -n        [dim]show what would be restored without changing anything[/dim]
    --no-save            [dim]don't checkpoint the current state first[/dim]
    --files-only         [dim]only restore files, not the conversation[/dim]
    --conversation-only  [dim]only restore the conversation, not files[/dim]
    --yes, -y            [dim]skip the confirmation prompt[/dim]
"""

_ICONS = {"created": "[green]+[/green]", "modified": "[yellow]~[/yellow]", "deleted": "[red]-[/red]"}


@dataclass
class RewindArgs:
    checkpoint_id: str
    options: RewindOptions = field(default_factory=RewindOptions)
    assume_yes: bool = False
    unknown: list[str] = field(default_factory=list)


def parse_rewind_args(arg: str) -> RewindArgs:
    parts = arg.split()
    args = RewindArgs(checkpoint_id=parts[0] if parts else "")
    for part in parts[1:]:
        if part in ("--dry-run", "-n"):
            args.options.dry_run = True
        elif part == "--no-save":
            args.options.create_checkpoint = False
        elif part == "--files-only":
            args.options.restore_mode = "files"
        elif part == "--conversation-only":
            args.options.restore_mode = "conversation"
        elif part in ("--yes", "-y"):
            args.assume_yes = True
        else:
            args.unknown.append(part)
    return args


def format_checkpoint_list(items: list[CheckpointListItem]) -> str:
    if not items:
        return "[dim]no checkpoints available[/dim]"
    lines = [""]
    for item in items:
        kind = "[cyan]auto[/cyan]" if item.is_auto else "[magenta]manual[/magenta]"
        tool = f" [dim]({item.tool_name})[/dim]" if item.tool_name else ""
        lines.append(f"  [bold]{item.id}[/bold]  {kind}  {format_timestamp(item.timestamp)}{tool}")
        if item.label:
            lines.append(f"    {item.label}")
        lines.append(f"    [dim]{item.file_changes_count} file(s)[/dim]")
    lines.append("")
    return "\n".join(lines)


def format_checkpoint_preview(checkpoint: Checkpoint, options: RewindOptions, root: Path) -> str:
    lines = ["", f"  [bold]Rewind preview[/bold]  {checkpoint.id}"]
    if checkpoint.label:
        lines.append(f"  label:   {checkpoint.label}")
    lines.append(f"  created: {format_timestamp(checkpoint.timestamp)}")
    lines.append(f"  mode:    {options.restore_mode}")
    if options.dry_run:
        lines.append("  [yellow]dry run: no changes will be made[/yellow]")

    changes = checkpoint.file_changes
    lines.append(f"  captured changes: {len(changes)}")
    for fc in changes[:10]:
        size = human_size(fc.size)
        lines.append(f"    {_ICONS[fc.change_type]} {short_path(fc.path, root)} [dim]{size}[/dim]")
    if len(changes) > 10:
        lines.append(f"    [dim]... and {len(changes) - 10} more[/dim]")

    if checkpoint.git_state:
        gs = checkpoint.git_state
        clean = "clean" if gs.is_clean else "dirty"
        lines.append(f"  git: {gs.branch} @ {gs.commit_hash[:7]} ({clean})")
    lines.append("")
    return "\n".join(lines)


def format_rewind_result(result: RewindResult, root: Path) -> str:
    if result.not_found:
        return f"[red]{result.error}[/red]"

    lines = [""]
    if result.dry_run:
        lines.append(f"  [bold]Dry run[/bold]: {len(result.files_restored)} file(s) would change")
    elif result.success:
        lines.append(f"  [green]Rewind complete[/green]: {len(result.files_restored)} file(s) restored")
    else:
        lines.append(f"  [red]Rewind failed[/red]: {result.error or 'unknown error'}")

    for path in result.files_restored[:10]:
        lines.append(f"    {short_path(path, root)}")
    if len(result.files_restored) > 10:
        lines.append(f"    [dim]... and {len(result.files_restored) - 10} more[/dim]")

    if result.files_failed:
        lines.append(f"  [red]failed:[/red] {len(result.files_failed)}")
        for path in result.files_failed[:10]:
            lines.append(f"    [red]x[/red] {short_path(path, root)}")

    if result.safety_checkpoint_id:
        lines.append(f"  [dim]previous state saved as {result.safety_checkpoint_id}[/dim]")
    if result.conversation_message_id is not None:
        if result.dry_run:
            verb = "would rewind to"
        elif result.conversation_rewound:
            verb = "rewound to"
        else:
            verb = "rewind target:"
        lines.append(
            f"  [dim]conversation {verb} message {result.conversation_message_id}[/dim]"
        )
    lines.append("")
    return "\n".join(lines)
