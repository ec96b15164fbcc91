"""Hook config parsing and loading: parse_hook_def/rule/config, load_hooks_file, load_hooks."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from agentguard.core.errors import ConfigError

from .models import DEFAULT_TIMEOUT_MS, HOOK_EVENTS, HookDef, HookRule, HooksConfig

logger = logging.getLogger(__name__)


def parse_hook_def(raw: dict) -> HookDef:
    hook_type = raw.get("type", "command")
    if hook_type not in ("command", "prompt"):
        raise ConfigError(f"Unknown hook type: {hook_type!r}")
    timeout = raw.get("timeout", DEFAULT_TIMEOUT_MS)
    if not isinstance(timeout, int) or isinstance(timeout, bool) or timeout <= 0:
        raise ConfigError(f"Invalid hook timeout: {timeout!r}")
    return HookDef(
        type=hook_type,
        command=raw.get("command", ""),
        prompt=raw.get("prompt", ""),
        model=raw.get("model"),
        blocking=bool(raw.get("blocking", False)),
        timeout=timeout,
    )


def parse_hook_rule(raw: dict) -> HookRule:
    matcher = raw.get("matcher", "*")
    hooks = tuple(parse_hook_def(h) for h in raw.get("hooks", []) if isinstance(h, dict))
    return HookRule(
        matcher=matcher,
        hooks=hooks,
        case_sensitive=bool(raw.get("caseSensitive", False)),
    )


def parse_hooks_config(data: dict) -> HooksConfig:
    """Parse a hooks document, bare or wrapped in a top-level ``hooks`` key."""
    if "hooks" in data and isinstance(data["hooks"], dict):
        inner = data["hooks"]
        if any(k in HOOK_EVENTS for k in inner):
            data = inner

    rules = {}
    for event in HOOK_EVENTS:
        if event in data and isinstance(data[event], list):
            rules[event] = tuple(parse_hook_rule(r) for r in data[event] if isinstance(r, dict))
    return HooksConfig(**rules)


def load_hooks_file(path: Path) -> HooksConfig:
    """Load one hooks file. A missing file is an empty config; a bad one raises ConfigError."""
    if not path.exists():
        return HooksConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read hooks file {path}: {e}", path=path) from e
    if not isinstance(data, dict):
        raise ConfigError(f"Hooks file {path} must contain a JSON object", path=path)
    try:
        return parse_hooks_config(data)
    except ConfigError as e:
        raise ConfigError(f"{path}: {e}", path=path) from e


def load_hooks(user_path: Path | None, project_path: Path | None) -> HooksConfig:
    """Load user then project scope; project matchers replace user matchers
    with the same pattern. A bad file is logged and skipped on its own."""
    config = HooksConfig()
    for path in (user_path, project_path):
        if path is None:
            continue
        try:
            config = config.merged(load_hooks_file(path))
        except ConfigError as e:
            logger.warning("Skipping hooks file: %s", e)
            continue
        if path.exists():
            logger.debug("Loaded hooks from %s", path)
    return config
