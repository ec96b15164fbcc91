"""Tests for slash commands: /rewind parsing and formatting, CommandHandler dispatch."""

import json
import shutil
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from agentguard.checkpoints import (
    Checkpoint,
    CheckpointListItem,
    CheckpointMetadata,
    FileChange,
    GitState,
    RewindOptions,
    RewindResult,
)
from agentguard.commands import (
    CommandHandler,
    format_checkpoint_list,
    format_checkpoint_preview,
    format_rewind_result,
    parse_rewind_args,
)
from agentguard.core.config import Config
from agentguard.hooks import HookDef, HookRule, HooksConfig, HookService
from agentguard.hooks.middleware import ToolGuard

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")

ROOT = Path("/work/project")


@pytest.fixture
def guard(tmp_path):
    project = tmp_path / "project"
    project.mkdir()
    config = Config(cwd=project, global_dir=tmp_path / "home", capture_git_state=False)
    hooks = HookService(
        config=HooksConfig(
            PreToolUse=(
                HookRule(matcher="^Bash$", hooks=(HookDef(type="command", command="lint", blocking=True),)),
            )
        )
    )
    g = ToolGuard(config, hooks=hooks)
    g.initialize()
    return g


@pytest.fixture
def handler(guard):
    return CommandHandler(guard)


class TestParseRewindArgs:
    def test_defaults(self):
        args = parse_rewind_args("chk_1")
        assert args.checkpoint_id == "chk_1"
        assert args.options == RewindOptions()
        assert args.assume_yes is False

    def test_all_flags(self):
        args = parse_rewind_args("chk_1 --dry-run --no-save --files-only -y")
        assert args.options.dry_run is True
        assert args.options.create_checkpoint is False
        assert args.options.restore_mode == "files"
        assert args.assume_yes is True

    def test_conversation_only(self):
        assert parse_rewind_args("chk_1 --conversation-only").options.restore_mode == "conversation"

    def test_unknown(self):
        assert parse_rewind_args("chk_1 --force").unknown == ["--force"]


class TestFormatting:
    def test_empty_list(self):
        assert "no checkpoints" in format_checkpoint_list([])

    def test_list(self):
        item = CheckpointListItem(
            id="chk_1", timestamp=0, session_id="s", file_changes_count=2, is_auto=True,
            label="Modified a.ts", tool_name="Write",
        )
        text = format_checkpoint_list([item])
        assert "chk_1" in text
        assert "auto" in text
        assert "(Write)" in text
        assert "Modified a.ts" in text
        assert "2 file(s)" in text

    def test_preview(self):
        cp = Checkpoint(
            id="chk_1",
            timestamp=0,
            session_id="s",
            message_id=0,
            commit="c" * 40,
            file_changes=(FileChange(str(ROOT / "src/a.ts"), "modified", 2048, "h"),),
            label="Modified a.ts",
            git_state=GitState(branch="main", commit_hash="abcdef1234", is_clean=False),
            metadata=CheckpointMetadata(),
        )
        text = format_checkpoint_preview(cp, RewindOptions(dry_run=True), ROOT)
        assert "src/a.ts" in text
        assert "2.0KB" in text
        assert "dry run" in text
        assert "main @ abcdef1 (dirty)" in text

    def test_result_not_found(self):
        result = RewindResult(success=False, not_found=True, error="Checkpoint not found: x")
        assert "Checkpoint not found: x" in format_rewind_result(result, ROOT)

    def test_result_dry_run(self):
        result = RewindResult(
            success=True, dry_run=True, files_restored=[str(ROOT / "a"), str(ROOT / "b")],
            conversation_message_id=3,
        )
        text = format_rewind_result(result, ROOT)
        assert "2 file(s) would change" in text
        assert "would rewind to message 3" in text

    def test_result_success(self):
        result = RewindResult(
            success=True, files_restored=[str(ROOT / "a")], safety_checkpoint_id="chk_safe"
        )
        text = format_rewind_result(result, ROOT)
        assert "Rewind complete" in text
        assert "chk_safe" in text

    def test_result_conversation_rewound(self):
        result = RewindResult(success=True, conversation_message_id=4, conversation_rewound=True)
        assert "conversation rewound to message 4" in format_rewind_result(result, ROOT)

    def test_result_conversation_not_rewound(self):
        result = RewindResult(success=True, conversation_message_id=4)
        text = format_rewind_result(result, ROOT)
        assert "rewound" not in text
        assert "conversation rewind target: message 4" in text

    def test_result_partial_failure(self):
        result = RewindResult(
            success=False, error="Some files failed to restore", files_failed=[str(ROOT / "locked")]
        )
        text = format_rewind_result(result, ROOT)
        assert "Rewind failed" in text
        assert "locked" in text


class TestIsCommand:
    def test_slash_is_command(self, handler):
        assert handler.is_command("/rewind") is True

    def test_with_spaces(self, handler):
        assert handler.is_command("  /help  ") is True

    def test_not_command(self, handler):
        assert handler.is_command("hello") is False
        assert handler.handle("hello") is None


class TestHandleHelp:
    def test_shows_all_commands(self, handler):
        result = handler.handle("/help")
        for cmd in ("/rewind", "/checkpoint", "/hooks", "/help"):
            assert cmd in result

    def test_unknown_command(self, handler):
        assert "unknown command" in handler.handle("/nope")


class TestHandleHooks:
    def test_lists_hooks(self, handler):
        result = handler.handle("/hooks")
        assert "PreToolUse" in result
        assert "^Bash$" in result
        assert "blocking" in result
        assert "lint" in result

    def test_empty(self, tmp_path):
        config = Config(cwd=tmp_path, global_dir=tmp_path / "home", checkpointing=False)
        guard = ToolGuard(config, hooks=HookService(config=HooksConfig()))
        guard.initialize()
        assert "no hooks configured" in CommandHandler(guard).handle("/hooks")

    def test_reload(self, tmp_path):
        config = Config(cwd=tmp_path, global_dir=tmp_path / "home", checkpointing=False)
        guard = ToolGuard(config)
        guard.initialize()
        config.primary_project_dir.mkdir()
        config.project_hooks_path.write_text(
            json.dumps({"SessionStart": [{"matcher": "*", "hooks": [{"command": "echo hi"}]}]})
        )
        result = CommandHandler(guard).handle("/hooks reload")
        assert "1 configured" in result


class TestCheckpointsUnavailable:
    def test_rewind_reports_reason(self, tmp_path):
        config = Config(cwd=tmp_path, global_dir=tmp_path / "home", checkpointing=False)
        guard = ToolGuard(config, hooks=HookService(config=HooksConfig()))
        guard.initialize()
        handler = CommandHandler(guard)
        assert "checkpointing is disabled" in handler.handle("/rewind list")
        assert "checkpoints unavailable" in handler.handle("/checkpoint")


@requires_git
class TestHandleRewind:
    def test_help_by_default(self, handler):
        assert "--dry-run" in handler.handle("/rewind")

    def test_list(self, handler, guard):
        cp = guard.checkpoints.create()
        result = handler.handle("/rewind list")
        assert cp.id in result
        assert "1 checkpoint(s): 0 auto, 1 manual" in result

    def test_not_found(self, handler):
        assert "Checkpoint not found: chk_missing" in handler.handle("/rewind chk_missing -y")

    def test_unknown_option(self, handler, guard):
        cp = guard.checkpoints.create()
        assert "unknown option" in handler.handle(f"/rewind {cp.id} --force")

    def test_dry_run_skips_confirmation(self, handler, guard):
        root = guard.checkpoints.project_root
        (root / "a.txt").write_text("one")
        cp = guard.checkpoints.create()
        (root / "a.txt").write_text("two")
        with patch("agentguard.commands.handler.pt_prompt") as prompt:
            result = handler.handle(f"/rewind {cp.id} --dry-run")
        prompt.assert_not_called()
        assert "1 file(s) would change" in result
        assert (root / "a.txt").read_text() == "two"

    def test_confirmed_rewind(self, handler, guard):
        root = guard.checkpoints.project_root
        (root / "a.txt").write_text("one")
        cp = guard.checkpoints.create()
        (root / "a.txt").write_text("two")
        with patch("agentguard.commands.handler.pt_prompt", return_value="y"), patch(
            "agentguard.commands.handler.console"
        ):
            result = handler.handle(f"/rewind {cp.id}")
        assert "Rewind complete" in result
        assert "rewind target: message 0" in result
        assert (root / "a.txt").read_text() == "one"

    def test_declined_rewind(self, handler, guard):
        root = guard.checkpoints.project_root
        (root / "a.txt").write_text("one")
        cp = guard.checkpoints.create()
        (root / "a.txt").write_text("two")
        with patch("agentguard.commands.handler.pt_prompt", return_value="n"), patch(
            "agentguard.commands.handler.console"
        ):
            result = handler.handle(f"/rewind {cp.id}")
        assert result == "rewind cancelled"
        assert (root / "a.txt").read_text() == "two"

    def test_yes_flag(self, handler, guard):
        cp = guard.checkpoints.create()
        prompt = MagicMock()
        with patch("agentguard.commands.handler.pt_prompt", prompt):
            result = handler.handle(f"/rewind {cp.id} --yes --no-save")
        prompt.assert_not_called()
        assert "Rewind complete" in result
        assert "previous state saved" not in result


@requires_git
class TestHandleCheckpoint:
    def test_manual_checkpoint(self, handler, guard):
        (guard.checkpoints.project_root / "a.txt").write_text("one")
        result = handler.handle("/checkpoint before refactor")
        assert "saved checkpoint" in result
        assert "before refactor" in result
        [item] = guard.checkpoints.list_checkpoints()
        assert item.label == "before refactor"
        assert item.is_auto is False

    def test_generated_label(self, handler, guard):
        (guard.checkpoints.project_root / "a.txt").write_text("one")
        assert "Modified a.txt" in handler.handle("/checkpoint")
