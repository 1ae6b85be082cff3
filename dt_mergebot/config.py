"""Configuration loader for dt-mergebot.

Reads YAML configuration from ~/.config/dt-mergebot/config.yaml (or a custom
path) and provides the dataclass the CLI threads into the GraphQL queries,
the board metadata cache and the executor.

Requires PyYAML (pip install pyyaml).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

import yaml


BOT_LOGIN = "typescript-bot"

# Logins whose comments, reviews and column moves are not human activity
DEFAULT_EXCLUDED_BOTS: list[str] = [
    BOT_LOGIN,
    "github-actions",
    "dependabot",
    "azure-pipelines",
]

DEFAULT_OWNER = "DefinitelyTyped"
DEFAULT_REPO = "DefinitelyTyped"

# https://github.com/DefinitelyTyped/DefinitelyTyped/projects/5
DEFAULT_PROJECT_NUMBER = 5

DEFAULT_CONFIG_PATH = os.path.expanduser("~/.config/dt-mergebot/config.yaml")


@dataclass
class Config:
    """Top-level application configuration."""

    owner: str = DEFAULT_OWNER
    repo: str = DEFAULT_REPO
    project_number: int = DEFAULT_PROJECT_NUMBER
    bot_login: str = BOT_LOGIN
    excluded_bots: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDED_BOTS))


def is_bot(login: Optional[str], excluded_bots: Optional[list[str]] = None) -> bool:
    """Return True for logins that never count as human activity."""
    if not login:
        return False
    bots = DEFAULT_EXCLUDED_BOTS if excluded_bots is None else excluded_bots
    lower = login.lower()
    return lower.endswith("[bot]") or any(lower == b.lower() for b in bots)


def _expand_path(path: str) -> str:
    """Expand ~ and environment variables in a path."""
    return os.path.expanduser(os.path.expandvars(path))


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML config file. Defaults to
            ~/.config/dt-mergebot/config.yaml.

    Returns:
        A Config instance. If the config file does not exist or is not a
        mapping, returns the defaults (graceful degradation).
    """
    path = _expand_path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not os.path.isfile(path):
        return Config()

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        return Config()

    owner = data.get("owner") or DEFAULT_OWNER
    repo = data.get("repo") or DEFAULT_REPO
    bot_login = data.get("bot_login") or BOT_LOGIN

    project_number = data.get("project_number", DEFAULT_PROJECT_NUMBER)
    if not isinstance(project_number, int) or isinstance(project_number, bool):
        project_number = DEFAULT_PROJECT_NUMBER

    excluded_bots = data.get("excluded_bots")
    if not isinstance(excluded_bots, list):
        excluded_bots = list(DEFAULT_EXCLUDED_BOTS)
    excluded_bots = [str(b) for b in excluded_bots]
    if bot_login not in excluded_bots:
        excluded_bots.append(bot_login)

    return Config(
        owner=str(owner),
        repo=str(repo),
        project_number=project_number,
        bot_login=str(bot_login),
        excluded_bots=excluded_bots,
    )
