"""State derivation: turn a raw GraphQL pull request into a DerivedState.

The raw ``pr`` argument is the ``repository.pullRequest`` node returned by
``graphql_client.query_pr_info``. File contents and npm download counts are
looked up through injected callables so a snapshot can be replayed offline.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from dt_mergebot import config_checks, dt_header
from dt_mergebot.comments import parse_comment
from dt_mergebot.config import BOT_LOGIN, is_bot
from dt_mergebot.pr_data import (
    BotError,
    BotNoPackages,
    BotRemove,
    CIResult,
    DerivedState,
    FileInfo,
    PackageInfo,
    PopularityLevel,
    PrInfo,
    ReviewInfo,
)

logger = logging.getLogger("dt_mergebot.pr_info")

FileFetcher = Callable[..., Optional[str]]
DownloadsFetcher = Callable[[str, datetime], int]

CRITICAL_POPULARITY_THRESHOLD = 5_000_000
NORMAL_POPULARITY_THRESHOLD = 200_000

# Owners only appear in the header, no need for the whole file
HEADER_BYTE_LIMIT = 10240

_PACKAGE_FILE_RE = re.compile(r"^types/([^/]+)/(.*)$")

_POPULARITY_ORDER: list[PopularityLevel] = ["Well-liked by everyone", "Popular", "Critical"]

_FAILED_CONCLUSIONS = {"FAILURE", "TIMED_OUT", "CANCELLED", "STARTUP_FAILURE"}
_PASSED_CONCLUSIONS = {"SUCCESS", "NEUTRAL", "SKIPPED"}


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a GitHub ISO-8601 timestamp into an aware datetime."""
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def abbreviate_oid(oid: str) -> str:
    """Short commit id used in bot comments; GitHub's abbreviatedOid length varies."""
    return oid[:7]


def same_user(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a.lower() == b.lower()


def _nodes(connection: Optional[dict]) -> list[dict]:
    """Non-null nodes of a GraphQL connection."""
    if not connection:
        return []
    return [n for n in connection.get("nodes") or [] if n]


def _login(node: Optional[dict]) -> Optional[str]:
    return ((node or {}).get("author") or {}).get("login")


def _latest(dates: Iterable[Optional[datetime]]) -> Optional[datetime]:
    present = [d for d in dates if d is not None]
    return max(present) if present else None


def popularity_for(downloads: int) -> PopularityLevel:
    if downloads > CRITICAL_POPULARITY_THRESHOLD:
        return "Critical"
    if downloads > NORMAL_POPULARITY_THRESHOLD:
        return "Popular"
    return "Well-liked by everyone"


def max_popularity(levels: Iterable[PopularityLevel]) -> PopularityLevel:
    return max(levels, key=_POPULARITY_ORDER.index, default="Well-liked by everyone")


def derive_state_for_pr(
    pr: Optional[dict],
    fetch_file: Optional[FileFetcher] = None,
    get_downloads: Optional[DownloadsFetcher] = None,
    now: Optional[datetime] = None,
    excluded_bots: Optional[list[str]] = None,
    bot_login: str = BOT_LOGIN,
    pr_number: int = 0,
) -> DerivedState:
    """Derive the decision state of one pull request.

    Args:
        pr: The raw pullRequest node, or None when the snapshot had none.
        fetch_file: ``fetch_file(expr, limit=None) -> text | None`` for
            "<ref>:<path>" expressions; defaults to the GraphQL lookup.
        get_downloads: ``get_downloads(package, as_of) -> int``; defaults to
            the npm registry lookup.
        now: Reference time for every age computation; defaults to the
            current UTC time.
        excluded_bots: Logins whose activity is not human activity.
        bot_login: Login the bot posts its own comments as.
        pr_number: Reported in the error state when ``pr`` is None.

    Returns:
        PrInfo for an actionable PR, otherwise BotError, BotRemove or
        BotNoPackages.
    """
    if fetch_file is None:
        from dt_mergebot.graphql_client import fetch_file
    if get_downloads is None:
        from dt_mergebot.npm import get_monthly_download_count as get_downloads
    if now is None:
        now = datetime.now(timezone.utc)

    if not pr:
        return BotError(pr_number, "No PR with this number exists")
    pr_number = pr.get("number") or pr_number

    author = _login(pr)
    if not author:
        return BotError(pr_number, "PR author does not exist")

    if pr.get("isDraft"):
        return BotRemove(pr_number, is_draft=True, message="PR is a draft")
    if pr.get("state") != "OPEN":
        return BotRemove(pr_number, is_draft=False, message="PR is not active")

    head_oid = pr.get("headRefOid")
    head_commit = next(
        (n["commit"] for n in _nodes(pr.get("commits"))
         if n.get("commit") and n["commit"].get("oid") == head_oid),
        None,
    )
    if head_commit is None:
        return BotError(pr_number, "No head commit found", author)

    try:
        return _derive_info(
            pr, pr_number, author, head_commit, fetch_file, get_downloads,
            now, excluded_bots, bot_login,
        )
    except Exception as e:
        logger.exception("Failed to derive state for PR #%d", pr_number)
        return BotError(pr_number, str(e) or type(e).__name__, author)


def _derive_info(
    pr: dict,
    pr_number: int,
    author: str,
    head_commit: dict,
    fetch_file: FileFetcher,
    get_downloads: DownloadsFetcher,
    now: datetime,
    excluded_bots: Optional[list[str]],
    bot_login: str,
) -> DerivedState:
    def human(login: Optional[str]) -> bool:
        return bool(login) and not is_bot(login, excluded_bots)

    head_oid = head_commit["oid"]
    abbr_oid = abbreviate_oid(head_oid)
    created_date = parse_date(pr.get("createdAt"))

    # Timestamps
    last_push_date = parse_date(head_commit.get("pushedDate")) or created_date
    comments = _nodes(pr.get("comments"))
    reviews = _nodes(pr.get("reviews"))
    last_comment_date = _latest(
        [parse_date(c.get("createdAt")) for c in comments if human(_login(c))]
        + [parse_date(r.get("submittedAt")) for r in reviews if human(_login(r))]
        + [parse_date(rc.get("createdAt"))
           for r in reviews for rc in _nodes(r.get("comments")) if human(_login(rc))]
    )
    timeline = _nodes(pr.get("timelineItems"))
    reopened_date = _latest(
        parse_date(e.get("createdAt")) for e in timeline
        if e.get("__typename") in ("ReopenedEvent", "ReadyForReviewEvent")
    )
    last_blessing_date = _latest(
        parse_date(e.get("createdAt")) for e in timeline
        if e.get("__typename") == "MovedColumnsInProjectEvent"
        and human((e.get("actor") or {}).get("login"))
    )
    maintainer_blessed = last_blessing_date is not None and last_blessing_date >= last_push_date
    last_activity_date = _latest([created_date, last_push_date, last_comment_date, reopened_date])

    # Files and packages
    paths = [f["path"] for f in _nodes(pr.get("files")) if f.get("path")]
    if not paths:
        return BotNoPackages(pr_number, "PR touches no files")
    pkg_info = _get_packages_info(paths, head_oid, fetch_file, get_downloads, last_push_date)
    popularity_level = max_popularity(p.popularity_level for p in pkg_info)
    logger.debug(
        "PR #%d packages: %s, popularity %s",
        pr_number, [p.name for p in pkg_info], popularity_level,
    )

    # Merge offer and request
    merge_offer_date = _latest(
        parse_date(c.get("lastEditedAt") or c.get("createdAt"))
        for c in comments
        if same_user(_login(c), bot_login) and _is_merge_offer(c.get("body") or "", abbr_oid)
    )
    owners = {o.lower() for p in pkg_info for o in p.owners}
    request_floor = _latest([created_date, reopened_date, last_push_date])
    merge_request = None
    for c in comments:
        login = _login(c)
        if not login or not (same_user(login, author) or login.lower() in owners):
            continue
        if not (c.get("body") or "").strip().lower().startswith("ready to merge"):
            continue
        date = parse_date(c.get("createdAt"))
        if date is None or date <= request_floor:
            continue
        if merge_request is None or date > merge_request[0]:
            merge_request = (date, login)

    ci_result, ci_url = get_ci_result(_nodes(head_commit.get("checkSuites")))
    logger.debug("PR #%d CI result: %s", pr_number, ci_result)

    return PrInfo(
        pr_number=pr_number,
        now=now,
        author=author,
        head_commit_oid=head_oid,
        ci_result=ci_result,
        ci_url=ci_url,
        has_merge_conflict=pr.get("mergeable") == "CONFLICTING",
        last_push_date=last_push_date,
        last_activity_date=last_activity_date,
        maintainer_blessed=maintainer_blessed,
        last_blessing_date=last_blessing_date,
        is_first_contribution=pr.get("authorAssociation") in ("FIRST_TIME_CONTRIBUTOR", "FIRST_TIMER"),
        popularity_level=popularity_level,
        merge_offer_date=merge_offer_date,
        merge_request_date=merge_request[0] if merge_request else None,
        merge_request_user=merge_request[1] if merge_request else None,
        pkg_info=pkg_info,
        reviews=get_reviews(reviews, author, head_oid),
    )


def _is_merge_offer(body: str, abbr_oid: str) -> bool:
    parsed = parse_comment(body)
    return parsed is not None and parsed.tag == "merge-offer" and f"(at {abbr_oid})" in parsed.status


# ---------------------------------------------------------------------------
# Files, owners, popularity
# ---------------------------------------------------------------------------


def classify_file(path: str) -> tuple[Optional[str], FileInfo]:
    """Return (package name or None, FileInfo) for a changed path.

    Config files come back as "package-meta" and are refined later by
    ``config_checks``.
    """
    m = _PACKAGE_FILE_RE.match(path)
    if not m:
        return None, FileInfo(path=path, kind="infrastructure")
    name, rest = m.group(1), m.group(2)
    if rest.endswith(".d.ts") or rest.endswith(".d.mts") or rest.endswith(".d.cts"):
        kind = "definition"
    elif rest.endswith((".ts", ".tsx", ".mts", ".cts")):
        kind = "test"
    elif rest.endswith(".md"):
        kind = "markdown"
    else:
        kind = "package-meta"
    return name, FileInfo(path=path, kind=kind)


def _owners_from(text: Optional[str]) -> Optional[list[str]]:
    """Owners listed in a header; None if the file is missing, [] if unparseable."""
    if text is None:
        return None
    try:
        return dt_header.get_owners(text)
    except dt_header.HeaderParseError as e:
        # CI reports the broken header; treat the package as present
        logger.debug("Header parse error: %s", e)
        return []


def _difference(a: list[str], b: list[str]) -> list[str]:
    lower_b = {x.lower() for x in b}
    return [x for x in a if x.lower() not in lower_b]


def _check_config_file(file: FileInfo, head_oid: str, fetch_file: FileFetcher) -> FileInfo:
    filename = file.path.rsplit("/", 1)[-1]
    if not config_checks.is_checked_config(filename):
        return file
    new_text = fetch_file(f"{head_oid}:{file.path}")
    if new_text is None:
        return file
    old_text = fetch_file(f"master:{file.path}")
    result = config_checks.check_config_edit(filename, old_text, new_text)
    if result.ok:
        return FileInfo(path=file.path, kind="package-meta-ok")
    return FileInfo(path=file.path, kind="package-meta", suspect=result.suspect, suggestion=result.suggestion)


def _get_packages_info(
    paths: list[str],
    head_oid: str,
    fetch_file: FileFetcher,
    get_downloads: DownloadsFetcher,
    as_of: datetime,
) -> list[PackageInfo]:
    by_package: dict[Optional[str], list[FileInfo]] = {}
    for path in paths:
        name, info = classify_file(path)
        by_package.setdefault(name, []).append(info)

    result: list[PackageInfo] = []
    for name, files in by_package.items():
        if name is None:
            continue
        index_path = f"types/{name}/index.d.ts"
        old_owners = _owners_from(fetch_file(f"master:{index_path}", HEADER_BYTE_LIMIT))
        if any(f.path == index_path for f in files):
            new_owners = _owners_from(fetch_file(f"{head_oid}:{index_path}", HEADER_BYTE_LIMIT))
        else:
            new_owners = old_owners

        if old_owners is None:
            kind = "add"
        elif new_owners is None:
            kind = "delete"
        else:
            kind = "edit"
        logger.debug("Package %s: %s, owners %s -> %s", name, kind, old_owners, new_owners)

        if kind != "delete":
            files = [
                _check_config_file(f, head_oid, fetch_file) if f.kind == "package-meta" else f
                for f in files
            ]
        else:
            files = [
                FileInfo(path=f.path, kind="package-meta-ok") if f.kind == "package-meta" else f
                for f in files
            ]

        popularity: PopularityLevel = "Well-liked by everyone"
        if kind != "add":
            popularity = popularity_for(get_downloads(name, as_of))

        result.append(PackageInfo(
            name=name,
            kind=kind,
            files=files,
            owners=list(old_owners if old_owners is not None else new_owners or []),
            added_owners=_difference(new_owners, old_owners) if kind == "edit" else [],
            deleted_owners=_difference(old_owners, new_owners) if kind == "edit" else [],
            popularity_level=popularity,
        ))

    if None in by_package:
        result.append(PackageInfo(name=None, kind="edit", files=by_package[None]))
    return result


# ---------------------------------------------------------------------------
# Reviews and CI
# ---------------------------------------------------------------------------


def get_reviews(nodes: list[dict], author: str, head_oid: str) -> list[ReviewInfo]:
    """Latest non-self review of each reviewer, newest first."""
    candidates = [
        r for r in nodes
        if r.get("state") in ("APPROVED", "CHANGES_REQUESTED")
        and _login(r) and r.get("commit") and r.get("submittedAt")
    ]
    candidates.sort(key=lambda r: parse_date(r["submittedAt"]), reverse=True)

    seen: set[str] = set()
    result: list[ReviewInfo] = []
    for r in candidates:
        reviewer = _login(r)
        if reviewer.lower() in seen:
            continue
        seen.add(reviewer.lower())
        if same_user(reviewer, author):
            continue
        date = parse_date(r["submittedAt"])
        commit = r["commit"]
        if commit.get("oid") != head_oid:
            result.append(ReviewInfo(
                type="stale", reviewer=reviewer, date=date,
                abbr_oid=abbreviate_oid(commit.get("oid", "")),
            ))
        elif r["state"] == "APPROVED":
            result.append(ReviewInfo(
                type="approved", reviewer=reviewer, date=date,
                is_maintainer=r.get("authorAssociation") in ("OWNER", "MEMBER"),
            ))
        else:
            result.append(ReviewInfo(type="changereq", reviewer=reviewer, date=date))
    return result


def get_ci_result(suites: list[dict]) -> tuple[CIResult, Optional[str]]:
    """Summarize the head commit's check suites as (result, failure url)."""
    for suite in suites:
        if suite.get("conclusion") == "ACTION_REQUIRED":
            return "action_required", suite.get("url")
    if not suites:
        return "missing", None
    for suite in suites:
        if suite.get("conclusion") in _FAILED_CONCLUSIONS:
            return "fail", suite.get("url")
    if any(not suite.get("conclusion") for suite in suites):
        return "pending", None
    if all(suite.get("conclusion") in _PASSED_CONCLUSIONS for suite in suites):
        return "pass", None
    return "unknown", None
