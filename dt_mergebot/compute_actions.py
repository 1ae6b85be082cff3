"""Action compilation: a pure function from DerivedState to Actions.

The compiler never does I/O. Every label is set explicitly on or off and
comments are listed by tag; the executor diffs both against GitHub.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import IntFlag
from typing import Literal, Optional

from dt_mergebot import comments, urls
from dt_mergebot.pr_data import (
    LABEL_NAMES,
    Actions,
    BotError,
    BotNoPackages,
    BotRemove,
    ColumnName,
    Comment,
    DerivedState,
    PrInfo,
    ReviewInfo,
    StalenessKind,
)
from dt_mergebot.pr_info import abbreviate_oid, same_user
from dt_mergebot.welcome import create_welcome_comment

logger = logging.getLogger("dt_mergebot.compute_actions")

ApproverKind = Literal["other", "owner", "maintainer"]
StalenessState = Literal["fresh", "attention", "nearly", "done"]

TOO_MANY_OWNERS = 50

# Label and column changes wait this long after a push for CI to report
PUSH_DEBOUNCE = timedelta(minutes=1)


class ApprovalFlags(IntFlag):
    NONE = 0
    OTHER = 1
    OWNER = 2
    MAINTAINER = 4


# Reviewers senior enough to satisfy each required approver tier
REQUIRED_APPROVALS: dict[str, ApprovalFlags] = {
    "other": ApprovalFlags.OTHER | ApprovalFlags.OWNER | ApprovalFlags.MAINTAINER,
    "owner": ApprovalFlags.OWNER | ApprovalFlags.MAINTAINER,
    "maintainer": ApprovalFlags.MAINTAINER,
}

POPULARITY_APPROVER: dict[str, ApproverKind] = {
    "Well-liked by everyone": "other",
    "Popular": "owner",
    "Critical": "maintainer",
}

# (fresh, attention, nearly) day limits; anything older is "done"
STALENESS_TIMELINES: dict[str, tuple[int, int, int]] = {
    "Unmerged": (2, 4, 8),
    "Abandoned": (6, 22, 30),
    "Unreviewed": (6, 22, 30),
}


@dataclass(frozen=True)
class Staleness:
    kind: StalenessKind
    days: int
    state: StalenessState
    since: datetime
    nearly_days: int

    @property
    def kind_and_state(self) -> str:
        return f"{self.kind}:{self.state}"

    @property
    def explanation(self) -> Optional[str]:
        return comments.STALENESS_EXPLANATIONS.get(self.kind_and_state)

    @property
    def tag(self) -> str:
        # A new inactivity period gets a new comment
        if self.state == "done":
            return self.kind_and_state
        return f"{self.kind_and_state}:{self.since.date().isoformat()}"


def get_staleness(kind: StalenessKind, since: datetime, now: datetime) -> Staleness:
    fresh, attention, nearly = STALENESS_TIMELINES[kind]
    days = (now - since).days
    if days <= fresh:
        state: StalenessState = "fresh"
    elif days <= attention:
        state = "attention"
    elif days <= nearly:
        state = "nearly"
    else:
        state = "done"
    return Staleness(kind=kind, days=days, state=state, since=since, nearly_days=nearly)


@dataclass(frozen=True)
class ExtendedPrInfo:
    """PrInfo plus the booleans the policy is written in."""
    orig: PrInfo
    author_is_owner: bool
    edits_infra: bool
    check_config: bool
    all_owners: list[str]
    other_owners: list[str]
    no_other_owners: bool
    too_many_owners: bool
    edits_owners: bool
    packages: list[str]
    has_multiple_packages: bool
    has_definitions: bool
    has_tests: bool
    is_untested: bool
    new_packages: list[str]
    has_new_packages: bool
    has_edited_packages: bool
    require_maintainer: bool
    blessable: bool
    approved_reviews: list[ReviewInfo]
    changereq_reviews: list[ReviewInfo]
    stale_reviews: list[ReviewInfo]
    has_changereqs: bool
    approval_flags: ApprovalFlags
    pending_critical_packages: list[str]
    approver_kind: ApproverKind
    approved: bool
    failed_ci: bool
    can_be_merged: bool
    has_valid_merge_request: bool
    needs_author_action: bool
    staleness: Staleness
    review_column: ColumnName

    def is_author(self, user: str) -> bool:
        return same_user(user, self.orig.author)

    def approved_by(self, flag: ApprovalFlags) -> bool:
        return bool(self.approval_flags & flag)


def _unique(items) -> list:
    seen: set[str] = set()
    result = []
    for item in items:
        if item.lower() not in seen:
            seen.add(item.lower())
            result.append(item)
    return result


def extend_pr_info(info: PrInfo) -> ExtendedPrInfo:
    """Compute the derived booleans, approver tier, approval and staleness."""
    def is_author(user: str) -> bool:
        return same_user(user, info.author)

    named = [p for p in info.pkg_info if p.name is not None]
    # The infrastructure pseudo-package has no owners
    author_is_owner = all(any(is_author(o) for o in p.owners) for p in info.pkg_info)
    edits_infra = any(p.name is None for p in info.pkg_info)
    check_config = any(f.kind == "package-meta" for p in info.pkg_info for f in p.files)
    all_owners = _unique(o for p in info.pkg_info for o in p.owners)
    other_owners = [o for o in all_owners if not is_author(o)]
    no_other_owners = not other_owners
    too_many_owners = len(all_owners) > TOO_MANY_OWNERS
    edits_owners = any(
        p.kind == "edit" and (p.added_owners or p.deleted_owners) for p in info.pkg_info
    )
    packages = [p.name for p in named]
    has_multiple_packages = len(packages) > 1
    has_definitions = any(f.kind == "definition" for p in info.pkg_info for f in p.files)
    has_tests = any(f.kind == "test" for p in info.pkg_info for f in p.files)
    is_untested = has_definitions and not has_tests
    new_packages = [p.name for p in named if p.kind == "add"]
    has_new_packages = bool(new_packages)
    has_edited_packages = len(packages) > len(new_packages)
    require_maintainer = (
        edits_infra or check_config or has_multiple_packages
        or is_untested or has_new_packages or too_many_owners
    )
    blessable = not (has_new_packages or edits_infra or no_other_owners)

    approved_reviews = [r for r in info.reviews if r.type == "approved"]
    changereq_reviews = [r for r in info.reviews if r.type == "changereq"]
    stale_reviews = [r for r in info.reviews if r.type == "stale"]
    has_changereqs = bool(changereq_reviews)

    def reviewer_flag(r: ReviewInfo) -> ApprovalFlags:
        if r.is_maintainer:
            return ApprovalFlags.MAINTAINER
        if any(same_user(o, r.reviewer) for o in all_owners):
            return ApprovalFlags.OWNER
        return ApprovalFlags.OTHER

    approval_flags = ApprovalFlags.NONE
    if not has_changereqs:
        for r in approved_reviews:
            approval_flags |= reviewer_flag(r)

    pending_critical_packages = [
        p.name for p in named
        if p.popularity_level == "Critical"
        and not any(same_user(o, r.reviewer) for o in p.owners for r in approved_reviews)
    ]

    approver_kind: ApproverKind = (
        "maintainer" if require_maintainer else POPULARITY_APPROVER[info.popularity_level]
    )
    blessed = blessable and info.maintainer_blessed
    if approver_kind == "maintainer" and blessed and not no_other_owners:
        approver_kind = "owner"
    elif approver_kind == "owner" and no_other_owners:
        approver_kind = "maintainer"

    approved = bool(approval_flags & REQUIRED_APPROVALS[approver_kind])
    failed_ci = info.ci_result == "fail"
    can_be_merged = info.ci_result == "pass" and not info.has_merge_conflict and approved
    has_valid_merge_request = bool(
        info.merge_offer_date and info.merge_request_date
        and info.merge_request_date > info.merge_offer_date
    )
    needs_author_action = failed_ci or info.has_merge_conflict or has_changereqs

    if can_be_merged:
        staleness_kind: StalenessKind = "Unmerged"
    elif needs_author_action:
        staleness_kind = "Abandoned"
    else:
        staleness_kind = "Unreviewed"
    staleness = get_staleness(staleness_kind, info.last_activity_date, info.now)

    if approver_kind != "maintainer":
        review_column: ColumnName = "Waiting for Code Reviews"
    elif blessable:
        review_column = "Needs Maintainer Review"
    else:
        review_column = "Needs Maintainer Action"

    return ExtendedPrInfo(
        orig=info,
        author_is_owner=author_is_owner,
        edits_infra=edits_infra,
        check_config=check_config,
        all_owners=all_owners,
        other_owners=other_owners,
        no_other_owners=no_other_owners,
        too_many_owners=too_many_owners,
        edits_owners=edits_owners,
        packages=packages,
        has_multiple_packages=has_multiple_packages,
        has_definitions=has_definitions,
        has_tests=has_tests,
        is_untested=is_untested,
        new_packages=new_packages,
        has_new_packages=has_new_packages,
        has_edited_packages=has_edited_packages,
        require_maintainer=require_maintainer,
        blessable=blessable,
        approved_reviews=approved_reviews,
        changereq_reviews=changereq_reviews,
        stale_reviews=stale_reviews,
        has_changereqs=has_changereqs,
        approval_flags=approval_flags,
        pending_critical_packages=pending_critical_packages,
        approver_kind=approver_kind,
        approved=approved,
        failed_ci=failed_ci,
        can_be_merged=can_be_merged,
        has_valid_merge_request=has_valid_merge_request,
        needs_author_action=needs_author_action,
        staleness=staleness,
        review_column=review_column,
    )


def compute_labels(info: ExtendedPrInfo) -> dict[str, bool]:
    """Desired on/off state of every known label."""
    stale_label = info.staleness.kind if info.staleness.state in ("nearly", "done") else None
    wanted = {
        "Mergebot Error": False,
        "Has Merge Conflict": info.orig.has_merge_conflict,
        "The CI failed": info.failed_ci,
        "Revision needed": info.has_changereqs,
        "New Definition": info.has_new_packages,
        "Edits Owners": info.edits_owners,
        "Where is GH Actions?": info.orig.ci_result == "missing",
        "Owner Approved": (
            info.approved_by(ApprovalFlags.OWNER) and not info.pending_critical_packages
        ),
        "Other Approved": info.approved_by(ApprovalFlags.OTHER),
        "Maintainer Approved": info.approved_by(ApprovalFlags.MAINTAINER),
        "Self Merge": info.can_be_merged,
        "Popular package": info.orig.popularity_level == "Popular",
        "Critical package": info.orig.popularity_level == "Critical",
        "Edits Infrastructure": info.edits_infra,
        "Edits multiple packages": info.has_multiple_packages,
        "Author is Owner": info.author_is_owner,
        "No Other Owners": info.has_edited_packages and info.no_other_owners,
        "Too Many Owners": info.too_many_owners,
        "Untested Change": info.is_untested,
        "Check Config": info.check_config,
        "Unmerged": stale_label == "Unmerged",
        "Abandoned": stale_label == "Abandoned",
        "Unreviewed": stale_label == "Unreviewed",
    }
    return {name: bool(wanted[name]) for name in LABEL_NAMES}


def _ping_comment(info: ExtendedPrInfo) -> Optional[Comment]:
    if info.has_changereqs or info.approved_by(ApprovalFlags.OWNER | ApprovalFlags.MAINTAINER):
        return None
    review_link = urls.review(info.orig.pr_number)
    if info.no_other_owners:
        if info.orig.popularity_level == "Critical":
            return None
        return comments.ping_reviewers_other(info.orig.author, review_link)
    if info.too_many_owners:
        return comments.ping_reviewers_too_many(info.other_owners)
    return comments.ping_reviewers(info.other_owners, review_link)


def _staleness_comment(info: ExtendedPrInfo) -> Optional[Comment]:
    staleness = info.staleness
    expires = staleness.since + timedelta(days=staleness.nearly_days + 1)
    body = comments.staleness_comment(
        staleness.kind_and_state, info.orig.author, info.other_owners,
        f"{expires:%b} {expires.day}",
    )
    if body is None:
        return None
    return Comment(tag=staleness.tag, status=body)


def _compute_info_actions(prinfo: PrInfo) -> Actions:
    info = extend_pr_info(prinfo)
    abbr_oid = abbreviate_oid(info.orig.head_commit_oid)
    posts: list[Comment] = []
    labels = compute_labels(info)
    should_close = should_merge = should_remove = False

    posts.append(Comment(tag="welcome", status=create_welcome_comment(info)))
    if info.is_untested:
        posts.append(comments.suggest_testing(info.orig.author, urls.TESTING_EDITED_PACKAGES))
    ping = _ping_comment(info)
    if ping is not None:
        posts.append(ping)

    staleness = info.staleness
    target_column: ColumnName = "Other"
    if info.needs_author_action:
        target_column = "Needs Author Action"
        if info.orig.has_merge_conflict:
            posts.append(comments.merge_conflicted(abbr_oid, info.orig.author))
        if info.failed_ci:
            posts.append(comments.ci_failed(abbr_oid, info.orig.author, info.orig.ci_url))
        if info.has_changereqs:
            posts.append(comments.changes_request(abbr_oid, info.orig.author))
        if staleness.state == "done":
            should_close = True
            should_remove = True
    elif staleness.state == "done":
        target_column = "Needs Maintainer Action"
    elif info.orig.ci_result in ("pending", "unknown"):
        target_column = "Waiting for Code Reviews"
    elif info.orig.ci_result == "missing":
        target_column = "Other"
    elif info.orig.ci_result == "action_required":
        target_column = "Needs Maintainer Action"
    elif info.orig.ci_result == "pass":
        if not info.can_be_merged:
            target_column = info.review_column
        else:
            # Posted even when merging so the offer the request answers stays put
            offer_to = [] if info.too_many_owners or info.has_multiple_packages else info.other_owners
            posts.append(comments.offer_self_merge(info.orig.author, offer_to, abbr_oid))
            if info.has_valid_merge_request:
                should_merge = True
                target_column = "Recently Merged"
            else:
                target_column = "Waiting for Author to Merge"
        if info.stale_reviews:
            oldest = min(info.stale_reviews, key=lambda r: r.date)
            posts.append(comments.ping_stale_reviewer(
                oldest.abbr_oid, [r.reviewer for r in info.stale_reviews]
            ))

    if staleness.state in ("nearly", "done"):
        stale_comment = _staleness_comment(info)
        if stale_comment is not None:
            posts.append(stale_comment)

    if not should_merge and info.orig.merge_request_user:
        posts.append(comments.wait_until_merge_is_ok(info.orig.merge_request_user, abbr_oid, urls.WORKFLOW))

    settled = info.orig.now - info.orig.last_push_date >= PUSH_DEBOUNCE
    if not settled:
        logger.debug("PR #%d was pushed less than a minute ago, not touching labels or column", info.orig.pr_number)

    return Actions(
        pr_number=info.orig.pr_number,
        target_column=target_column,
        labels=labels,
        response_comments=posts,
        should_close=should_close,
        should_merge=should_merge,
        should_update_labels=settled,
        should_update_project_column=settled,
        should_remove_from_active_columns=should_remove,
    )


def compute_actions(state: DerivedState) -> Actions:
    """Compile the declarative actions for one derived PR state.

    Args:
        state: Output of ``pr_info.derive_state_for_pr``.

    Returns:
        A fresh, immutable Actions value.

    Raises:
        TypeError: If state is not one of the DerivedState variants.
    """
    if isinstance(state, BotRemove):
        if state.is_draft:
            return Actions(
                pr_number=state.pr_number,
                target_column="Needs Author Action",
                should_update_project_column=True,
            )
        return Actions(pr_number=state.pr_number, should_remove_from_active_columns=True)

    if isinstance(state, BotError):
        return Actions(
            pr_number=state.pr_number,
            target_column="Other",
            labels={"Mergebot Error": True},
            response_comments=[comments.had_error(state.author, state.message)],
            should_update_labels=True,
            should_update_project_column=True,
        )

    if isinstance(state, BotNoPackages):
        return Actions(
            pr_number=state.pr_number,
            target_column="Needs Maintainer Action",
            should_update_project_column=True,
        )

    if isinstance(state, PrInfo):
        actions = _compute_info_actions(state)
        logger.debug(
            "PR #%d: column %s, %d comments, merge=%s close=%s",
            actions.pr_number, actions.target_column, len(actions.response_comments),
            actions.should_merge, actions.should_close,
        )
        return actions

    raise TypeError(f"Unexpected derived state: {type(state).__name__}")
