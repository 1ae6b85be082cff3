"""Label and project-board column ids, cached for the life of the process.

The repository's label set and the board's column set are assumed static;
restart the process after renaming or adding either.
"""

from __future__ import annotations

import logging
from typing import Optional

from dt_mergebot import graphql_client
from dt_mergebot.config import DEFAULT_OWNER, DEFAULT_PROJECT_NUMBER, DEFAULT_REPO
from dt_mergebot.ttl_cache import FOREVER, TTLCache

logger = logging.getLogger("dt_mergebot.cached_queries")

_cache = TTLCache()


def get_labels(owner: str = DEFAULT_OWNER, repo: str = DEFAULT_REPO) -> list[dict]:
    """All repository labels as [{"id", "name"}], sorted by name."""
    def produce():
        logger.debug("Fetching labels of %s/%s", owner, repo)
        return graphql_client.query_labels(owner, repo)
    return _cache.get(f"labels {owner}/{repo}", FOREVER, produce)


def get_project_board_columns(
    owner: str = DEFAULT_OWNER,
    repo: str = DEFAULT_REPO,
    project_number: int = DEFAULT_PROJECT_NUMBER,
) -> list[dict]:
    """All columns of the tracked board as [{"id", "name"}], sorted by name."""
    def produce():
        logger.debug("Fetching columns of %s/%s project %d", owner, repo, project_number)
        return graphql_client.query_project_columns(owner, repo, project_number)
    return _cache.get(f"columns {owner}/{repo}#{project_number}", FOREVER, produce)


def _find_id(nodes: list[dict], name: str) -> Optional[str]:
    for node in nodes:
        if node.get("name") == name:
            return node.get("id")
    return None


def label_id(name: str, owner: str = DEFAULT_OWNER, repo: str = DEFAULT_REPO) -> Optional[str]:
    return _find_id(get_labels(owner, repo), name)


def column_id(
    name: str,
    owner: str = DEFAULT_OWNER,
    repo: str = DEFAULT_REPO,
    project_number: int = DEFAULT_PROJECT_NUMBER,
) -> Optional[str]:
    return _find_id(get_project_board_columns(owner, repo, project_number), name)


def clear() -> None:
    _cache.clear()
