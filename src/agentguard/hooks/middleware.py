"""Tool pipeline glue: ToolGuard (hooks + pre-tool checkpoints) and HooksMiddleware."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from langchain.agents.middleware import AgentMiddleware
from langchain.messages import ToolMessage
from rich.console import Console

from agentguard.checkpoints import CheckpointCreateOptions, CheckpointEngine
from agentguard.core.errors import (
    CheckpointingUnavailableError,
    HookBlockedError,
    SnapshotError,
    ToolCancelledError,
)
from agentguard.core.log import setup_logging

from .engine import HookService
from .models import HookContext, HookExecutionResult
from .prompt import ChatModelPromptRunner

if TYPE_CHECKING:
    from langchain.tools.tool_node import ToolCallRequest
    from langgraph.types import Command

    from agentguard.checkpoints import Checkpoint
    from agentguard.core.config import Config

logger = logging.getLogger(__name__)
console = Console(stderr=True)


@dataclass
class ToolInvocation:
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    call_id: str = ""


@dataclass
class ToolRun:
    """Everything that happened around one tool call."""

    output: Any
    pre_results: list[HookExecutionResult] = field(default_factory=list)
    post_results: list[HookExecutionResult] = field(default_factory=list)
    checkpoint: Checkpoint | None = None


def first_block(results: list[HookExecutionResult]) -> HookExecutionResult | None:
    return next((r for r in results if r.should_block), None)


def _stringify(output: Any) -> str:
    if isinstance(output, str):
        return output
    content = getattr(output, "content", None)
    if isinstance(content, str):
        return content
    try:
        return json.dumps(output, default=str)
    except (TypeError, ValueError):
        return str(output)


def _message_count(request: ToolCallRequest) -> int:
    """Conversation length at the time of the tool call, used as its message id."""
    state = request.state
    if isinstance(state, dict):
        return len(state.get("messages", ()))
    return len(getattr(state, "messages", ()))


class ToolGuard:
    """Runs hooks around tool calls and prompts, and checkpoints before risky tools."""

    def __init__(
        self,
        config: Config,
        hooks: HookService | None = None,
        checkpoints: CheckpointEngine | None = None,
        on_conversation_rewind: Callable[[int], None] | None = None,
    ):
        self.config = config
        if config.verbose:
            setup_logging("DEBUG")
        self.hooks = hooks or HookService(
            user_path=config.user_hooks_path,
            project_path=config.project_hooks_path,
            prompt_runner=ChatModelPromptRunner(config.model),
        )
        if checkpoints is None and config.checkpointing:
            checkpoints = CheckpointEngine.from_config(
                config, on_conversation_rewind=on_conversation_rewind
            )
        self.checkpoints = checkpoints
        self.checkpoint_error: str | None = None
        self._error_reported = False
        self._report_lock = threading.Lock()

    def initialize(self) -> None:
        """Load hooks and start checkpointing. A checkpointing failure disables
        checkpoints for the session and is reported once."""
        self.hooks.initialize()
        if self.checkpoints is None:
            return
        try:
            self.checkpoints.initialize()
        except CheckpointingUnavailableError as e:
            self.checkpoint_error = str(e)
            self.checkpoints = None
            self._report_checkpoint_error()

    def _report_checkpoint_error(self) -> None:
        with self._report_lock:
            if self._error_reported or not self.checkpoint_error:
                return
            self._error_reported = True
        logger.error("Checkpointing disabled: %s", self.checkpoint_error)
        console.print(f"[bold red]checkpointing disabled:[/bold red] {self.checkpoint_error}")

    def _context(self, session_id: str | None, **kwargs) -> HookContext:
        return HookContext(cwd=str(self.config.cwd), session_id=session_id, **kwargs)

    def execute_hooks(
        self,
        event: str,
        context: HookContext,
        cancel: threading.Event | None = None,
    ) -> list[HookExecutionResult]:
        results = self.hooks.execute_hooks(event, context, cancel)
        if results:
            logger.debug("Executed %d hooks for %s", len(results), event)
        return results

    def create_pre_tool_checkpoint(
        self,
        invocation: ToolInvocation,
        session_id: str | None = None,
        message_id: int | None = None,
        cancel: threading.Event | None = None,
    ) -> Checkpoint | None:
        """Snapshot the tree before a state-modifying tool. Never raises: a
        failed checkpoint is logged and the tool call proceeds."""
        if self.checkpoints is None:
            return None
        if invocation.name not in self.config.checkpoint_tools:
            return None
        if session_id:
            self.checkpoints.set_session_id(session_id)
        try:
            return self.checkpoints.create(
                CheckpointCreateOptions(
                    is_auto=True,
                    trigger="pre-tool",
                    tool_name=invocation.name,
                    message_id=message_id,
                    capture_git_state=self.config.capture_git_state,
                ),
                cancel,
            )
        except (SnapshotError, OSError) as e:
            logger.warning("Pre-tool checkpoint for %s failed: %s", invocation.name, e)
            return None

    def run_tool(
        self,
        invocation: ToolInvocation,
        execute: Callable[[ToolInvocation], Any],
        session_id: str | None = None,
        message_id: int | None = None,
        cancel: threading.Event | None = None,
    ) -> ToolRun:
        """PreToolUse hooks, checkpoint, the tool itself, then PostToolUse hooks.

        Raises HookBlockedError when a blocking PreToolUse hook fails; the tool
        is not executed and no checkpoint is taken. Raises ToolCancelledError
        when *cancel* is set before the tool starts.
        """
        variables = {"TOOL_NAME": invocation.name}
        if file_path := invocation.args.get("file_path") or invocation.args.get("path"):
            variables["FILE"] = str(file_path)

        pre = self.execute_hooks(
            "PreToolUse",
            self._context(
                session_id,
                tool_name=invocation.name,
                tool_args=invocation.args,
                variables=variables,
            ),
            cancel,
        )
        if blocked := first_block(pre):
            raise HookBlockedError(blocked)
        for r in pre:
            if r.updated_input:
                invocation.args = {**invocation.args, **r.updated_input}

        checkpoint = self.create_pre_tool_checkpoint(invocation, session_id, message_id, cancel)
        if cancel is not None and cancel.is_set():
            raise ToolCancelledError(f"{invocation.name} cancelled before it ran")
        output = execute(invocation)

        post = self.execute_hooks(
            "PostToolUse",
            self._context(
                session_id,
                tool_name=invocation.name,
                tool_args=invocation.args,
                tool_output=_stringify(output),
                variables=variables,
            ),
            cancel,
        )
        if blocked := first_block(post):
            logger.warning("PostToolUse veto after %s ran: %s", invocation.name, blocked.describe())
        return ToolRun(output=output, pre_results=pre, post_results=post, checkpoint=checkpoint)

    # ── lifecycle events ────────────────────────────────────────────

    def user_prompt_submit(
        self,
        prompt: str,
        session_id: str | None = None,
        cancel: threading.Event | None = None,
    ) -> tuple[str, list[HookExecutionResult]]:
        """Run UserPromptSubmit hooks. Returns the (possibly rewritten) prompt.

        Raises HookBlockedError when a blocking hook rejects the prompt.
        """
        results = self.execute_hooks(
            "UserPromptSubmit", self._context(session_id, user_prompt=prompt), cancel
        )
        if blocked := first_block(results):
            raise HookBlockedError(blocked)
        for r in results:
            if r.modified_prompt:
                prompt = r.modified_prompt
        return prompt, results

    def session_start(self, session_id: str) -> list[HookExecutionResult]:
        if self.checkpoints is not None:
            self.checkpoints.set_session_id(session_id)
        return self.execute_hooks("SessionStart", self._context(session_id))

    def session_end(self, session_id: str) -> list[HookExecutionResult]:
        return self.execute_hooks("SessionEnd", self._context(session_id))

    def subagent_start(
        self, agent_name: str, session_id: str | None = None
    ) -> list[HookExecutionResult]:
        results = self.execute_hooks(
            "SubagentStart", self._context(session_id, agent_name=agent_name)
        )
        if blocked := first_block(results):
            raise HookBlockedError(blocked)
        return results

    def subagent_stop(
        self, agent_name: str, session_id: str | None = None
    ) -> list[HookExecutionResult]:
        return self.execute_hooks("SubagentStop", self._context(session_id, agent_name=agent_name))


class HooksMiddleware(AgentMiddleware):
    """Run agent tool calls through a ToolGuard."""

    def __init__(self, guard: ToolGuard, session_id: str | None = None):
        self.guard = guard
        self.session_id = session_id

    def wrap_tool_call(
        self,
        request: ToolCallRequest,
        handler: Callable[[ToolCallRequest], ToolMessage | Command],
    ) -> ToolMessage | Command:
        invocation = ToolInvocation(
            name=request.tool_call["name"],
            args=dict(request.tool_call.get("args", {})),
            call_id=request.tool_call.get("id", ""),
        )

        def _execute(inv: ToolInvocation) -> ToolMessage | Command:
            request.tool_call["args"] = inv.args
            return handler(request)

        try:
            run = self.guard.run_tool(
                invocation,
                _execute,
                session_id=self.session_id,
                message_id=_message_count(request),
            )
        except HookBlockedError as e:
            console.print(f"  [yellow]hook blocked {invocation.name}:[/yellow] {e}")
            return ToolMessage(
                content=f"Tool call denied by hook: {e}",
                tool_call_id=invocation.call_id,
            )

        for r in run.pre_results + run.post_results:
            msg = r.output.strip() if r.success else r.error
            if msg:
                console.print(f"  [dim]hook: {msg}[/dim]")
        return run.output
