"""Action execution: converge a PR on GitHub to a declarative Actions value.

Mutations are computed by diffing the wanted labels, board column and
comments against the raw PR snapshot, then sent one at a time in a fixed
order: labels, board card, comments, then merge or close.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Optional

from dt_mergebot import cached_queries, graphql_client
from dt_mergebot.comments import make_comment, parse_comment
from dt_mergebot.config import BOT_LOGIN, DEFAULT_OWNER, DEFAULT_PROJECT_NUMBER, DEFAULT_REPO
from dt_mergebot.pr_data import Actions

logger = logging.getLogger("dt_mergebot.execute_actions")

# Cards in this column stay on the board when a PR is closed
KEEP_ON_REMOVE_COLUMN = "Recently Merged"


@dataclass(frozen=True)
class Mutation:
    """One GraphQL mutation with a single ``input`` argument."""
    name: str
    input: dict

    @property
    def query(self) -> str:
        return graphql_client.build_mutation(self.name)

    def to_request(self) -> dict:
        return {"query": self.query, "variables": {"input": self.input}}

    def to_json(self) -> str:
        return json.dumps(self.to_request(), ensure_ascii=False)


def _abbreviate(text: str) -> str:
    if len(text) <= 140:
        return text
    return f"{text[:100]} ... {text[-40:]}"


def format_mutation(mutation: Mutation) -> str:
    """One-line rendering for logs, with long comment bodies shortened."""
    shown = dict(mutation.input)
    if isinstance(shown.get("body"), str):
        shown["body"] = _abbreviate(shown["body"])
    return f"{mutation.name} {json.dumps(shown, ensure_ascii=False)}"


def _label_mutations(actions: Actions, pr: dict, owner: str, repo: str) -> list[Mutation]:
    current = {n["name"] for n in ((pr.get("labels") or {}).get("nodes") or []) if n}
    to_add = [name for name, on in actions.labels.items() if on and name not in current]
    to_remove = [name for name, on in actions.labels.items() if not on and name in current]

    def ids(names: list[str]) -> list[str]:
        result = []
        for name in names:
            label_id = cached_queries.label_id(name, owner, repo)
            if label_id is None:
                raise RuntimeError(f"No label named {name!r} in {owner}/{repo}")
            result.append(label_id)
        return result

    mutations = []
    if to_add:
        mutations.append(Mutation("addLabelsToLabelable", {"labelableId": pr["id"], "labelIds": ids(to_add)}))
    if to_remove:
        mutations.append(Mutation("removeLabelsFromLabelable", {"labelableId": pr["id"], "labelIds": ids(to_remove)}))
    return mutations


def _project_card(pr: dict, project_number: int) -> Optional[dict]:
    for card in (pr.get("projectCards") or {}).get("nodes") or []:
        if card and (card.get("project") or {}).get("number") == project_number:
            return card
    return None


def _card_mutations(actions: Actions, pr: dict, owner: str, repo: str, project_number: int) -> list[Mutation]:
    card = _project_card(pr, project_number)
    current_column = ((card or {}).get("column") or {}).get("name")

    if actions.should_remove_from_active_columns:
        if card is not None and current_column != KEEP_ON_REMOVE_COLUMN:
            return [Mutation("deleteProjectCard", {"cardId": card["id"]})]
        return []

    if not (actions.should_update_project_column and actions.target_column):
        return []
    if card is not None and current_column == actions.target_column:
        return []
    column_id = cached_queries.column_id(actions.target_column, owner, repo, project_number)
    if column_id is None:
        raise RuntimeError(f"No project column named {actions.target_column!r}")
    if card is None:
        return [Mutation("addProjectCard", {"projectColumnId": column_id, "contentId": pr["id"]})]
    return [Mutation("moveProjectCard", {"cardId": card["id"], "columnId": column_id})]


def _comment_mutations(actions: Actions, pr: dict, bot_login: str) -> list[Mutation]:
    bot_comments = []
    for c in (pr.get("comments") or {}).get("nodes") or []:
        if not c or ((c.get("author") or {}).get("login") or "").lower() != bot_login.lower():
            continue
        parsed = parse_comment(c.get("body") or "")
        if parsed is not None:
            bot_comments.append((c, parsed))

    mutations = []
    for wanted in actions.response_comments:
        body = make_comment(wanted.status, wanted.tag)
        existing = next((c for c, parsed in bot_comments if parsed.tag == wanted.tag), None)
        if existing is None:
            mutations.append(Mutation("addComment", {"subjectId": pr["id"], "body": body}))
        elif existing.get("body") != body:
            mutations.append(Mutation("updateIssueComment", {"id": existing["id"], "body": body}))
        else:
            logger.debug("Comment %r is up to date", wanted.tag)
    return mutations


def get_mutations(
    actions: Actions,
    pr: dict,
    owner: str = DEFAULT_OWNER,
    repo: str = DEFAULT_REPO,
    project_number: int = DEFAULT_PROJECT_NUMBER,
    bot_login: str = BOT_LOGIN,
) -> list[Mutation]:
    """Mutations needed to bring the PR to the state described by actions."""
    mutations: list[Mutation] = []
    if actions.should_update_labels:
        mutations += _label_mutations(actions, pr, owner, repo)
    mutations += _card_mutations(actions, pr, owner, repo, project_number)
    mutations += _comment_mutations(actions, pr, bot_login)
    if actions.should_merge:
        author = (pr.get("author") or {}).get("login")
        mutations.append(Mutation("mergePullRequest", {
            "pullRequestId": pr["id"],
            "expectedHeadOid": pr["headRefOid"],
            "mergeMethod": "SQUASH",
            "commitHeadline": f"🤖 Merge PR #{pr['number']} {pr.get('title', '')} by @{author}",
        }))
    if actions.should_close:
        mutations.append(Mutation("closePullRequest", {"pullRequestId": pr["id"]}))
    return mutations


def execute_pr_actions(
    actions: Actions,
    pr: dict,
    dry: bool = False,
    owner: str = DEFAULT_OWNER,
    repo: str = DEFAULT_REPO,
    project_number: int = DEFAULT_PROJECT_NUMBER,
    bot_login: str = BOT_LOGIN,
) -> list[str]:
    """Apply the actions to the PR, or in dry mode only compute the requests.

    Args:
        actions: Output of ``compute_actions.compute_actions``.
        pr: The raw pullRequest node the actions were computed from.
        dry: Return the would-be requests without sending them.
        owner: Repository owner.
        repo: Repository name.
        project_number: Number of the tracked project board.
        bot_login: Login whose comments carry tags.

    Returns:
        The JSON-encoded GraphQL requests, in the order they are (or would
        be) sent.

    Raises:
        RuntimeError: If a label or column is unknown, or a mutation fails.
    """
    mutations = get_mutations(actions, pr, owner, repo, project_number, bot_login)
    for mutation in mutations:
        if dry:
            logger.debug("PR #%d (dry): %s", actions.pr_number, format_mutation(mutation))
            continue
        logger.info("PR #%d: %s", actions.pr_number, format_mutation(mutation))
        result = graphql_client.mutate(mutation.name, mutation.input)
        logger.debug("PR #%d: %s -> %s", actions.pr_number, mutation.name, result)
    if not mutations:
        logger.debug("PR #%d: nothing to do", actions.pr_number)
    return [m.to_json() for m in mutations]
