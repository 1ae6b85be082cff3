"""Bot comment texts and the hidden-tag convention that identifies them.

Every bot comment ends with ``\\n<!--typescript_bot_<tag>-->``. The executor
finds an existing comment by parsing that trailing marker, so a comment's
identity survives edits of its visible text.
"""

from __future__ import annotations

from typing import Optional

from dt_mergebot.pr_data import Comment

TAG_PREFIX = "\n<!--typescript_bot_"
TAG_SUFFIX = "-->"


def make_comment(body: str, tag: str) -> str:
    """Append the hidden tag marker to a comment body."""
    return f"{body}{TAG_PREFIX}{tag}{TAG_SUFFIX}"


def parse_comment(body: str) -> Optional[Comment]:
    """Split a comment body into its visible status and hidden tag.

    Returns None unless the body ends exactly with a tag marker.
    """
    start = body.rfind(TAG_PREFIX)
    end = body.rfind(TAG_SUFFIX)
    if start < 0 or end < 0 or end + len(TAG_SUFFIX) != len(body):
        return None
    return Comment(
        tag=body[start + len(TAG_PREFIX):end],
        status=body[:start],
    )


def _mentions(users) -> str:
    return " ".join(f"@{u}" for u in users)


# ---------------------------------------------------------------------------
# Errors and complaints
# ---------------------------------------------------------------------------


def had_error(user: Optional[str], message: str) -> Comment:
    who = f"@{user} " if user else ""
    return Comment(
        tag="had-error",
        status=(
            f"{who}I had an error processing this PR:\n\n"
            f"```\n{message}\n```\n\n"
            "A DefinitelyTyped maintainer will take a look."
        ),
    )


def merge_conflicted(abbr_oid: str, user: str) -> Comment:
    return Comment(
        tag="merge-conflict",
        status=(
            f"@{user} Unfortunately, this pull request currently has a merge conflict 😥. "
            "Please update your PR branch to be up-to-date with respect to master. "
            "Have a nice day!"
        ),
    )


def ci_failed(abbr_oid: str, user: str, ci_url: Optional[str]) -> Comment:
    logs = f"[review the logs for more information]({ci_url})" if ci_url else "review the logs for more information"
    return Comment(
        tag="gh-actions-complaint",
        status=(
            f"@{user} The CI build failed! Please {logs}.\n\n"
            "Once you've pushed the fixes, the build will automatically re-run. Thanks!"
        ),
    )


def changes_request(abbr_oid: str, user: str) -> Comment:
    return Comment(
        tag="changereq",
        status=(
            f"@{user} One or more reviewers has requested changes. Please address their comments. "
            "I'll be back once they sign off or you've pushed new commits. Thank you!"
        ),
    )


# ---------------------------------------------------------------------------
# Reviews and merging
# ---------------------------------------------------------------------------


def ping_reviewers(names: list[str], review_link: str) -> Comment:
    return Comment(
        tag="pingers",
        status=(
            f"🔔 {_mentions(names)} - please [review this PR]({review_link}) in the next few days. "
            "Be sure to explicitly select **`Approve`** or **`Request Changes`** "
            "in the GitHub UI so I know what's going on."
        ),
    )


def ping_reviewers_other(user: str, review_link: str) -> Comment:
    return Comment(
        tag="pingers",
        status=(
            f"🔔 @{user} - you're the only owner, but it would still be good if you find someone "
            f"to [review this PR]({review_link}) in the next few days, otherwise a maintainer "
            "will look at it. (And if you do find someone, maybe even recruit them to become "
            "an owner?)"
        ),
    )


def ping_reviewers_too_many(names: list[str]) -> Comment:
    return Comment(
        tag="pingers",
        status=(
            f"⚠️ There are too many reviewers for this PR change ({len(names)}). "
            "Please merge and update owners in a separate PR, "
            "otherwise a maintainer will review it."
        ),
    )


def offer_self_merge(user: str, other_owners: list[str], abbr_oid: str) -> Comment:
    owners = ""
    if other_owners:
        owners = f" (ping {_mentions(other_owners)} to review if you want)"
    return Comment(
        tag="merge-offer",
        status=(
            f"@{user} Everything looks good here. Great job! I am ready to merge this PR "
            f"(at {abbr_oid}) on your behalf whenever you think it's ready.\n\n"
            "If you'd like that to happen, please post a comment saying:\n\n"
            "> Ready to merge\n\n"
            f"and I'll merge this PR almost instantly{owners}. Thanks for helping out! ❤️"
        ),
    )


def wait_until_merge_is_ok(user: str, abbr_oid: str, workflow_url: str) -> Comment:
    return Comment(
        tag=f"wait-for-merge-offer-{abbr_oid}",
        status=(
            f":passport_control: Hi @{user},\n\n"
            f"I can't [accept a pull request]({workflow_url}) until all of the checks "
            "are green and I have offered to merge it. Once that happens, please post "
            "\"Ready to merge\" again and I'll take care of it."
        ),
    )


def ping_stale_reviewer(abbr_oid: str, reviewers: list[str]) -> Comment:
    return Comment(
        tag=f"stale-ping-{abbr_oid}",
        status=(
            f"{_mentions(reviewers)} Thank you for reviewing this PR! "
            "The author has pushed new commits since your last review. "
            "Could you take another look and submit a fresh review?"
        ),
    )


def suggest_testing(user: str, testing_link: str) -> Comment:
    return Comment(
        tag="suggestTesting",
        status=(
            f"Hey @{user},\n\n"
            "😒🐕 Thanks for the change, but it looks like the type definitions were edited "
            "without any test changes. It would help reviewers a lot if you could "
            f"[add or update the tests]({testing_link}) that exercise this change."
        ),
    )


# ---------------------------------------------------------------------------
# Staleness
# ---------------------------------------------------------------------------

STALENESS_EXPLANATIONS: dict[str, str] = {
    "Unmerged:nearly": "please merge or say something if there's a problem, otherwise it will move to the DT maintainer queue soon!",
    "Unmerged:done": "waiting for a DT maintainer!",
    "Abandoned:nearly": "it is considered nearly abandoned!",
    "Abandoned:done": "it is considered abandoned, and therefore closed!",
    "Unreviewed:nearly": "please try to get reviewers!",
    "Unreviewed:done": "it is now in the DT maintainer queue!",
}


def staleness_comment(kind_and_state: str, author: str, other_owners: list[str], expires: str) -> Optional[str]:
    """Body of the comment posted for a staleness state, or None if it posts none."""
    if kind_and_state == "Unmerged:nearly":
        return (
            f"Re-ping @{author} / {_mentions(other_owners) or 'nobody'}:\n\n"
            "This PR has been ready to merge for a while, and I haven't seen a merge request. "
            "If you don't say \"Ready to merge\", a DT maintainer will look at it soon."
        )
    if kind_and_state == "Abandoned:nearly":
        return (
            f"@{author} I haven't seen any activity on this PR in more than three weeks, "
            "and it still has problems that prevent it from being merged. "
            f"The PR will be closed on {expires} if nothing happens.\n\n"
            "If you want to keep this PR open, please post a comment or push a new commit."
        )
    if kind_and_state == "Abandoned:done":
        return (
            f"@{author} To keep things tidy, we have to close PRs that aren't mergeable and "
            "don't have activity in the last month. No worries, though: please open a new PR "
            "if you'd like to continue with this change. Thank you!"
        )
    if kind_and_state == "Unreviewed:nearly":
        return (
            f"@{author} I haven't seen any activity on this PR in more than three weeks, "
            "and it has not been reviewed. Please try to find someone to review it; "
            f"otherwise a DT maintainer will look at it after {expires}."
        )
    return None
