"""Hook execution engine: HookService, run_command_hook, run_prompt_hook."""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING

from agentguard.core.errors import ProcessCancelledError
from agentguard.core.process import run_process
from agentguard.core.utils import truncate

from .models import HookContext, HookDef, HookExecutionResult, HooksConfig
from .parser import load_hooks

if TYPE_CHECKING:
    from .prompt import PromptRunner

logger = logging.getLogger(__name__)

# Tool output included in prompt-hook context is cut to this many characters.
PROMPT_OUTPUT_LIMIT = 500


def hook_env(event: str, context: HookContext) -> dict[str, str]:
    """Environment for a command hook: inherited env + event context."""
    env = dict(os.environ)
    env.update(context.variables)
    env["AGENTGUARD_HOOK_EVENT"] = event
    env["AGENTGUARD_HOOK_CWD"] = context.cwd
    env["AGENTGUARD_HOOK_TOOL_NAME"] = context.tool_name or ""
    env["AGENTGUARD_HOOK_SESSION_ID"] = context.session_id or ""
    return env


def build_prompt_context(event: str, context: HookContext) -> str:
    lines = []
    if context.tool_name:
        lines.append(f"Tool: {context.tool_name}")
    if context.tool_args:
        lines.append(f"Arguments: {json.dumps(context.tool_args, indent=2, default=str)}")
    if context.user_prompt:
        lines.append(f"User Prompt: {context.user_prompt}")
    if context.tool_output:
        lines.append(f"Tool Output: {context.tool_output[:PROMPT_OUTPUT_LIMIT]}")
    if context.session_id:
        lines.append(f"Session ID: {context.session_id}")
    lines.append(f"Working Directory: {context.cwd}")
    lines.append(f"Hook Type: {event}")
    return "\n".join(lines)


def _apply_decision(text: str, result: HookExecutionResult) -> None:
    """Read the JSON decision protocol out of a hook's output, if present."""
    text = text.strip()
    if not text.startswith("{"):
        return
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return
    if not isinstance(data, dict):
        return

    reason = data.get("reason", "")
    hso = data.get("hookSpecificOutput") or {}
    if isinstance(hso, dict):
        if hso.get("permissionDecision") == "deny":
            result.success = False
            result.error = hso.get("permissionDecisionReason") or reason or "denied by hook"
        if isinstance(hso.get("updatedInput"), dict):
            result.updated_input = hso["updatedInput"]
        if isinstance(hso.get("modifiedPrompt"), str):
            result.modified_prompt = hso["modifiedPrompt"]

    if data.get("decision") == "block":
        result.success = False
        result.error = reason or "blocked by hook"
    if isinstance(data.get("modifiedPrompt"), str):
        result.modified_prompt = data["modifiedPrompt"]


def run_command_hook(
    hook: HookDef,
    event: str,
    context: HookContext,
    cancel: threading.Event | None = None,
) -> HookExecutionResult:
    """Execute a command hook in the context's working directory."""
    if not hook.command:
        raise ValueError("Command hook missing command field")
    proc = run_process(
        hook.command,
        cwd=context.cwd,
        env=hook_env(event, context),
        timeout=hook.timeout / 1000,
        cancel=cancel,
    )
    output = truncate(proc.stdout or proc.stderr)
    result = HookExecutionResult(success=proc.ok, output=output)
    if proc.timed_out:
        result.error = f"hook timed out after {hook.timeout}ms"
    elif proc.cancelled:
        result.error = "hook cancelled"
    elif proc.exit_code != 0:
        detail = proc.stderr.strip() or proc.stdout.strip()
        result.error = f"exit code {proc.exit_code}" + (f": {detail}" if detail else "")
    else:
        _apply_decision(proc.stdout, result)
    return result


def run_prompt_hook(
    hook: HookDef,
    event: str,
    context: HookContext,
    runner: PromptRunner | None,
    cancel: threading.Event | None = None,
) -> HookExecutionResult:
    """Send the hook instruction plus event context to the prompt runner."""
    if not hook.prompt:
        raise ValueError("Prompt hook missing prompt field")
    full_prompt = f"{hook.prompt}\n\nContext:\n{build_prompt_context(event, context)}"
    if runner is None:
        logger.debug("No prompt runner configured; echoing prompt hook")
        return HookExecutionResult(success=True, output=full_prompt)

    reply = runner.run(full_prompt, model=hook.model, timeout_ms=hook.timeout, cancel=cancel)
    result = HookExecutionResult(success=True, output=reply)
    _apply_decision(reply, result)
    return result


class HookService:
    """Load hook configuration and run it against runtime events."""

    def __init__(
        self,
        user_path: Path | None = None,
        project_path: Path | None = None,
        prompt_runner: PromptRunner | None = None,
        config: HooksConfig | None = None,
    ):
        self.user_path = user_path
        self.project_path = project_path
        self.prompt_runner = prompt_runner
        self._config = config if config is not None else HooksConfig()
        self._loaded = config is not None

    def initialize(self) -> None:
        if self.user_path is not None or self.project_path is not None:
            self._config = load_hooks(self.user_path, self.project_path)
        self._loaded = True
        logger.debug("Hook service initialized with %d hooks", self._config.count_hooks())

    def reload_config(self) -> None:
        """Load a fresh configuration. Dispatches already running keep the old one."""
        logger.debug("Reloading hooks configuration")
        self.initialize()

    def get_config(self) -> HooksConfig:
        return self._config

    def has_hooks(self, event: str) -> bool:
        return len(self._config.get_rules(event)) > 0

    def execute_hooks(
        self,
        event: str,
        context: HookContext,
        cancel: threading.Event | None = None,
    ) -> list[HookExecutionResult]:
        """Run every matching hook for *event* in order.

        Stops right after a blocking hook fails; the returned list then ends
        with that hook's result.
        """
        if not self._loaded:
            logger.warning("Hook service not initialized")
            return []
        config = self._config
        subject = context.subject
        results: list[HookExecutionResult] = []
        for rule in config.get_rules(event):
            if not rule.matches(subject):
                continue
            logger.debug("Executing %s hooks for matcher %r", event, rule.matcher)
            for hook in rule.hooks:
                result = self._execute_single(hook, event, context, cancel)
                result.matcher = rule.matcher
                results.append(result)
                if result.should_block:
                    logger.info("Blocking %s hook stopped dispatch: %s", event, result.describe())
                    return results
        return results

    def _execute_single(
        self,
        hook: HookDef,
        event: str,
        context: HookContext,
        cancel: threading.Event | None,
    ) -> HookExecutionResult:
        start = time.monotonic()
        try:
            if hook.type == "command":
                result = run_command_hook(hook, event, context, cancel)
            elif hook.type == "prompt":
                result = run_prompt_hook(hook, event, context, self.prompt_runner, cancel)
            else:
                raise ValueError(f"Unknown hook type: {hook.type}")
        except ProcessCancelledError:
            result = HookExecutionResult(success=False, error="hook cancelled")
        except Exception as e:
            logger.error("Hook execution failed: %s", e)
            result = HookExecutionResult(success=False, error=str(e))

        result.execution_time_ms = int((time.monotonic() - start) * 1000)
        result.event = event
        result.hook_type = hook.type
        result.blocking = hook.blocking
        result.payload = hook.payload
        result.should_block = hook.blocking and not result.success
        if not result.success:
            logger.debug("%s hook failed: %s", event, result.error)
        return result
