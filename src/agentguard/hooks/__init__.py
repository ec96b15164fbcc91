"""Hooks: user-configured commands and prompts bound to runtime events."""

from .engine import HookService, build_prompt_context, hook_env, run_command_hook, run_prompt_hook
from .models import (
    HOOK_EVENTS,
    HookContext,
    HookDef,
    HookExecutionResult,
    HookRule,
    HooksConfig,
)
from .parser import load_hooks, load_hooks_file, parse_hook_def, parse_hook_rule, parse_hooks_config
from .prompt import ChatModelPromptRunner, PromptRunner

__all__ = [
    "HOOK_EVENTS",
    "ChatModelPromptRunner",
    "HookContext",
    "HookDef",
    "HookExecutionResult",
    "HookRule",
    "HookService",
    "HooksConfig",
    "PromptRunner",
    "build_prompt_context",
    "hook_env",
    "load_hooks",
    "load_hooks_file",
    "parse_hook_def",
    "parse_hook_rule",
    "parse_hooks_config",
    "run_command_hook",
    "run_prompt_hook",
]
