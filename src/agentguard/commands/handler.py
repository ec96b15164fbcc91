"""CommandHandler: dispatch the /rewind, /checkpoint and /hooks slash commands."""

from __future__ import annotations

from typing import TYPE_CHECKING

from prompt_toolkit import prompt as pt_prompt
from rich.console import Console

from agentguard.checkpoints import CheckpointCreateOptions
from agentguard.core.errors import CheckpointNotFoundError, SnapshotError
from agentguard.hooks import HOOK_EVENTS

from .rewind import (
    REWIND_HELP,
    format_checkpoint_list,
    format_checkpoint_preview,
    format_rewind_result,
    parse_rewind_args,
)

if TYPE_CHECKING:
    from agentguard.hooks.middleware import ToolGuard

console = Console()

COMMANDS = {
    "/rewind": "Rewind files and conversation to a checkpoint",
    "/checkpoint": "Save a checkpoint of the project now",
    "/hooks": "Show configured hooks (/hooks reload to reload)",
    "/help": "Show available commands",
}


class CommandHandler:
    """Handle checkpoint and hook slash commands for a ToolGuard."""

    def __init__(self, guard: ToolGuard):
        self.guard = guard

    def is_command(self, text: str) -> bool:
        return text.strip().startswith("/")

    def handle(self, text: str) -> str | None:
        text = text.strip()
        if not text.startswith("/"):
            return None

        parts = text.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1] if len(parts) > 1 else ""

        if cmd == "/help":
            lines = [""]
            for c, desc in COMMANDS.items():
                lines.append(f"  [bold]{c:<12}[/bold] [dim]{desc}[/dim]")
            lines.append("")
            return "\n".join(lines)

        elif cmd == "/rewind":
            return self._handle_rewind(arg)

        elif cmd == "/checkpoint":
            return self._handle_checkpoint(arg)

        elif cmd == "/hooks":
            return self._handle_hooks(arg)

        else:
            return f"unknown command: {cmd}\n[dim]type /help for available commands[/dim]"

    def _unavailable(self) -> str:
        reason = self.guard.checkpoint_error or "checkpointing is disabled"
        return f"[red]checkpoints unavailable:[/red] {reason}"

    def _handle_rewind(self, arg: str) -> str:
        engine = self.guard.checkpoints
        if engine is None:
            return self._unavailable()

        sub = arg.split()[0].lower() if arg.strip() else "help"
        if sub == "help":
            return REWIND_HELP
        if sub in ("list", "ls"):
            stats = engine.get_stats()
            header = (
                f"[dim]{stats['total']} checkpoint(s): "
                f"{stats['auto']} auto, {stats['manual']} manual[/dim]"
            )
            return header + format_checkpoint_list(engine.list_checkpoints(limit=20))

        args = parse_rewind_args(arg)
        if args.unknown:
            return f"[red]unknown option(s):[/red] {' '.join(args.unknown)}\n{REWIND_HELP}"
        try:
            checkpoint = engine.require_checkpoint(args.checkpoint_id)
        except CheckpointNotFoundError as e:
            return f"[red]{e}[/red]"

        root = engine.project_root
        preview = format_checkpoint_preview(checkpoint, args.options, root)
        if not args.options.dry_run and not args.assume_yes:
            console.print(preview)
            answer = pt_prompt("Rewind to this checkpoint? [y/N] ").strip().lower()
            if answer not in ("y", "yes"):
                return "rewind cancelled"
            preview = ""

        result = engine.rewind(args.checkpoint_id, args.options)
        return preview + format_rewind_result(result, root)

    def _handle_checkpoint(self, arg: str) -> str:
        engine = self.guard.checkpoints
        if engine is None:
            return self._unavailable()
        try:
            checkpoint = engine.create(CheckpointCreateOptions(label=arg.strip() or None))
        except SnapshotError as e:
            return f"[red]checkpoint failed:[/red] {e}"
        return (
            f"saved checkpoint [bold]{checkpoint.id}[/bold]  {checkpoint.label}  "
            f"[dim]{len(checkpoint.file_changes)} file(s)[/dim]"
        )

    def _handle_hooks(self, arg: str) -> str:
        hooks = self.guard.hooks
        if arg.strip().lower() == "reload":
            hooks.reload_config()
            return f"reloaded hooks ({hooks.get_config().count_hooks()} configured)"

        config = hooks.get_config()
        if config.is_empty():
            return "[dim]no hooks configured[/dim]"
        lines = [""]
        for event in HOOK_EVENTS:
            rules = config.get_rules(event)
            if not rules:
                continue
            lines.append(f"  [bold]{event}[/bold]")
            for rule in rules:
                for hook in rule.hooks:
                    flag = " [red]blocking[/red]" if hook.blocking else ""
                    lines.append(
                        f"    {rule.matcher:<16} {hook.type:<8}{flag} [dim]{hook.payload}[/dim]"
                    )
        lines.append("")
        return "\n".join(lines)
