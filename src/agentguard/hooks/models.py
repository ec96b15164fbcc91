"""Hook data models: HookDef, HookRule, HooksConfig, HookContext, HookExecutionResult."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any

logger = logging.getLogger(__name__)

HOOK_EVENTS = (
    "PreToolUse",
    "PostToolUse",
    "UserPromptSubmit",
    "SessionStart",
    "SessionEnd",
    "SubagentStart",
    "SubagentStop",
)

DEFAULT_TIMEOUT_MS = 30_000


@dataclass(frozen=True)
class HookDef:
    """A single hook action: either a shell command or a prompt for the model."""

    type: str  # "command" or "prompt"
    command: str = ""
    prompt: str = ""
    model: str | None = None
    blocking: bool = False
    timeout: int = DEFAULT_TIMEOUT_MS  # milliseconds

    @property
    def payload(self) -> str:
        return self.command if self.type == "command" else self.prompt


@dataclass(frozen=True)
class HookRule:
    """A matcher + list of hooks that fire when the matcher matches."""

    matcher: str  # regex pattern, or "*" for match-all
    hooks: tuple[HookDef, ...] = ()
    case_sensitive: bool = False

    _pattern: re.Pattern | None = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.matcher == "*":
            return
        flags = 0 if self.case_sensitive else re.IGNORECASE
        try:
            object.__setattr__(self, "_pattern", re.compile(self.matcher, flags))
        except re.error as e:
            logger.warning("Invalid hook matcher %r (%s); using exact match", self.matcher, e)

    def matches(self, value: str) -> bool:
        if self.matcher == "*":
            return True
        if self._pattern is None:
            return self.matcher == value
        return self._pattern.search(value) is not None


@dataclass(frozen=True)
class HooksConfig:
    """All hook rules grouped by event type. Never mutated; merging builds a new one."""

    PreToolUse: tuple[HookRule, ...] = ()
    PostToolUse: tuple[HookRule, ...] = ()
    UserPromptSubmit: tuple[HookRule, ...] = ()
    SessionStart: tuple[HookRule, ...] = ()
    SessionEnd: tuple[HookRule, ...] = ()
    SubagentStart: tuple[HookRule, ...] = ()
    SubagentStop: tuple[HookRule, ...] = ()

    def get_rules(self, event: str) -> tuple[HookRule, ...]:
        if event not in HOOK_EVENTS:
            return ()
        return getattr(self, event)

    def merged(self, override: HooksConfig) -> HooksConfig:
        """Return base + override, where an override rule replaces a base rule
        with the same matcher string and new matchers are appended."""
        changes = {}
        for event in HOOK_EVENTS:
            rules = list(getattr(self, event))
            for rule in getattr(override, event):
                idx = next((i for i, r in enumerate(rules) if r.matcher == rule.matcher), None)
                if idx is None:
                    rules.append(rule)
                else:
                    rules[idx] = rule
            changes[event] = tuple(rules)
        return replace(self, **changes)

    def count_hooks(self) -> int:
        return sum(len(rule.hooks) for e in HOOK_EVENTS for rule in getattr(self, e))

    def is_empty(self) -> bool:
        return all(len(getattr(self, e)) == 0 for e in HOOK_EVENTS)


@dataclass
class HookContext:
    """What a dispatch knows about the action being hooked."""

    cwd: str
    tool_name: str | None = None
    tool_args: dict[str, Any] | None = None
    user_prompt: str | None = None
    tool_output: str | None = None
    session_id: str | None = None
    agent_name: str | None = None
    variables: dict[str, str] = field(default_factory=dict)

    @property
    def subject(self) -> str:
        """The string matchers are tested against."""
        return self.tool_name or self.user_prompt or self.agent_name or ""


@dataclass
class HookExecutionResult:
    """Result of running one hook action."""

    success: bool
    output: str = ""
    error: str = ""
    should_block: bool = False
    execution_time_ms: int = 0
    event: str = ""
    matcher: str = ""
    hook_type: str = ""
    blocking: bool = False
    payload: str = ""
    modified_prompt: str | None = None
    updated_input: dict[str, Any] | None = None

    def describe(self) -> str:
        """Human-readable explanation of which hook produced this result and why."""
        what = self.payload if len(self.payload) <= 60 else self.payload[:57] + "..."
        head = f"{self.event} {self.hook_type} hook {what!r} (matcher {self.matcher!r})"
        if self.success:
            return f"{head} succeeded"
        verb = "blocked the action" if self.should_block else "failed"
        return f"{head} {verb}: {self.error or 'no reason given'}"
