"""Configuration: env, paths, model, checkpoint settings."""

from __future__ import annotations

import hashlib
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PROJECT_DIR_NAME = ".agentguard"
HOOKS_FILE = "hooks.json"
SETTINGS_FILE = "settings.json"

# Tools that change the working tree and therefore get a pre-tool checkpoint.
DEFAULT_CHECKPOINT_TOOLS = ("Write", "Edit", "MultiEdit", "NotebookEdit", "Bash")

DEFAULT_MAX_FILE_SIZE = 1024 * 1024  # 1MB

_FALSE_VALUES = ("0", "false", "no", "off")


def _default_global_dir() -> Path:
    if home := os.getenv("AGENTGUARD_HOME"):
        return Path(home)
    return Path.home() / PROJECT_DIR_NAME


@dataclass
class Config:
    model: str = "anthropic:claude-sonnet-4-5-20250929"
    cwd: Path = field(default_factory=Path.cwd)
    global_dir: Path = field(default_factory=_default_global_dir)
    project_dir: Path | None = None  # explicit override; None = cwd/.agentguard
    verbose: bool = False
    # checkpointing
    checkpointing: bool = True
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    checkpoint_tools: tuple[str, ...] = DEFAULT_CHECKPOINT_TOOLS
    exclude_patterns: list[str] = field(default_factory=list)
    capture_git_state: bool = True

    @property
    def primary_project_dir(self) -> Path:
        if self.project_dir is not None:
            return self.project_dir
        return self.cwd / PROJECT_DIR_NAME

    @property
    def project_hooks_path(self) -> Path:
        return self.primary_project_dir / HOOKS_FILE

    @property
    def user_hooks_path(self) -> Path:
        return self.global_dir / HOOKS_FILE

    @property
    def history_dir(self) -> Path:
        """Shadow repository location for the current project, outside the project."""
        key = hashlib.sha256(str(self.cwd.resolve()).encode()).hexdigest()[:16]
        return self.global_dir / "history" / key


def _apply_settings(config: Config, path: Path) -> None:
    """Apply a single settings.json file to config. Bad files are logged and skipped."""
    if not path.exists():
        return
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable settings file %s: %s", path, e)
        return
    if not isinstance(data, dict):
        logger.warning("Ignoring settings file %s: expected a JSON object", path)
        return

    if "model" in data:
        config.model = data["model"]

    cp = data.get("checkpointing")
    if isinstance(cp, bool):
        config.checkpointing = cp
    elif isinstance(cp, dict):
        if "enabled" in cp:
            config.checkpointing = bool(cp["enabled"])
        if isinstance(cp.get("maxFileSize"), int):
            config.max_file_size = cp["maxFileSize"]
        if isinstance(cp.get("tools"), list):
            config.checkpoint_tools = tuple(str(t) for t in cp["tools"])
        if isinstance(cp.get("excludePatterns"), list):
            config.exclude_patterns.extend(str(p) for p in cp["excludePatterns"])
        if "captureGitState" in cp:
            config.capture_git_state = bool(cp["captureGitState"])


def load_config(
    model: str | None = None,
    verbose: bool = False,
    cwd: Path | None = None,
) -> Config:
    """Load config with priority: args > env > .env > settings.json > defaults."""
    load_dotenv()

    config = Config(cwd=cwd or Path.cwd())
    config.verbose = verbose

    _apply_settings(config, config.global_dir / SETTINGS_FILE)
    _apply_settings(config, config.primary_project_dir / SETTINGS_FILE)

    if env_model := os.getenv("AGENTGUARD_MODEL"):
        config.model = env_model
    if (flag := os.getenv("AGENTGUARD_CHECKPOINTING")) is not None:
        config.checkpointing = flag.strip().lower() not in _FALSE_VALUES

    if model:
        config.model = model

    return config
