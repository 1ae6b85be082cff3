"""Shared pytest fixtures and snapshot builders.

The builders produce GraphQL-shaped pullRequest dicts and PrInfo values with
sensible defaults, so each test only spells out what it is about.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from dt_mergebot import cached_queries
from dt_mergebot.pr_data import FileInfo, PackageInfo, PrInfo, ReviewInfo

NOW = datetime(2024, 6, 10, 12, 0, tzinfo=timezone.utc)
HEAD_OID = "abcdef1234567890abcdef1234567890abcdef12"
HEAD_ABBR = "abcdef1"
OLD_OID = "0123456789abcdef0123456789abcdef01234567"
OLD_ABBR = "0123456"


def iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


def days_ago(n: float) -> datetime:
    return NOW - timedelta(days=n)


def header(*owners: str) -> str:
    """An index.d.ts whose header lists the given GitHub logins."""
    lines = ["// Type definitions for foo 1.2", "// Project: https://github.com/foo/foo"]
    for i, login in enumerate(owners):
        lead = "// Definitions by: " if i == 0 else "//                 "
        lines.append(f"{lead}{login.title()} <https://github.com/{login}>")
    lines.append("// Definitions: https://github.com/DefinitelyTyped/DefinitelyTyped")
    lines.append("")
    lines.append("export function foo(): void;")
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Raw GraphQL snapshot builders
# ---------------------------------------------------------------------------


def check_suite(conclusion: Optional[str] = "SUCCESS", url: str = "https://github.com/runs/1") -> dict:
    return {
        "app": {"name": "GitHub Actions"},
        "conclusion": conclusion,
        "status": "COMPLETED" if conclusion else "IN_PROGRESS",
        "url": url,
    }


def review_node(
    login: str,
    state: str = "APPROVED",
    oid: str = HEAD_OID,
    submitted: datetime = None,
    association: str = "CONTRIBUTOR",
) -> dict:
    submitted = submitted or days_ago(1)
    return {
        "author": {"login": login},
        "commit": {"oid": oid, "abbreviatedOid": oid[:7]},
        "comments": {"nodes": []},
        "authorAssociation": association,
        "state": state,
        "submittedAt": iso(submitted),
        "url": f"https://github.com/review/{login}",
    }


def comment_node(
    login: str,
    body: str,
    created: datetime = None,
    comment_id: str = "IC_1",
    edited: Optional[datetime] = None,
) -> dict:
    created = created or days_ago(1)
    return {
        "id": comment_id,
        "author": {"login": login},
        "body": body,
        "createdAt": iso(created),
        "lastEditedAt": iso(edited) if edited else None,
    }


def make_pr(**overrides) -> dict:
    """A raw pullRequest node: open, mergeable, green, editing types/foo with tests."""
    pr = {
        "id": "PR_kwDOAAA",
        "title": "Update foo",
        "number": 1234,
        "createdAt": iso(days_ago(3)),
        "author": {"login": "alice"},
        "authorAssociation": "CONTRIBUTOR",
        "isDraft": False,
        "state": "OPEN",
        "mergeable": "MERGEABLE",
        "headRefOid": HEAD_OID,
        "labels": {"nodes": []},
        "timelineItems": {"nodes": []},
        "reviews": {"nodes": []},
        "commits": {"totalCount": 1, "nodes": [{"commit": {
            "oid": HEAD_OID,
            "abbreviatedOid": HEAD_ABBR,
            "pushedDate": iso(days_ago(2)),
            "checkSuites": {"nodes": [check_suite()]},
        }}]},
        "comments": {"totalCount": 0, "nodes": []},
        "files": {"totalCount": 2, "nodes": [
            {"path": "types/foo/index.d.ts", "additions": 1, "deletions": 1},
            {"path": "types/foo/foo-tests.ts", "additions": 1, "deletions": 0},
        ]},
        "projectCards": {"nodes": []},
    }
    pr.update(overrides)
    return pr


def set_files(pr: dict, *paths: str) -> dict:
    pr["files"] = {"totalCount": len(paths), "nodes": [{"path": p} for p in paths]}
    return pr


def head_commit(pr: dict) -> dict:
    return pr["commits"]["nodes"][0]["commit"]


class FakeFiles:
    """Stand-in for graphql_client.fetch_file backed by a dict of expressions."""

    def __init__(self, files: Optional[dict] = None):
        self.files = files or {}
        self.calls: list[str] = []

    def __call__(self, expr: str, limit: Optional[int] = None) -> Optional[str]:
        self.calls.append(expr)
        text = self.files.get(expr)
        if text is not None and limit:
            return text[:limit]
        return text


class FakeDownloads:
    """Stand-in for npm.get_monthly_download_count."""

    def __init__(self, counts: Optional[dict] = None, default: int = 1000):
        self.counts = counts or {}
        self.default = default
        self.calls: list[tuple[str, datetime]] = []

    def __call__(self, name: str, as_of: datetime) -> int:
        self.calls.append((name, as_of))
        return self.counts.get(name, self.default)


def foo_files(*owners: str, head_owners: Optional[tuple] = None) -> FakeFiles:
    """types/foo/index.d.ts on master (and at head if head_owners is given)."""
    files = {"master:types/foo/index.d.ts": header(*owners)}
    files[f"{HEAD_OID}:types/foo/index.d.ts"] = header(*(head_owners if head_owners is not None else owners))
    return FakeFiles(files)


# ---------------------------------------------------------------------------
# PrInfo builders
# ---------------------------------------------------------------------------


def package(
    name: Optional[str] = "foo",
    kind: str = "edit",
    files: Optional[list] = None,
    owners: Optional[list] = None,
    popularity_level: str = "Well-liked by everyone",
    **kw,
) -> PackageInfo:
    if files is None:
        files = [
            FileInfo(path=f"types/{name}/index.d.ts", kind="definition"),
            FileInfo(path=f"types/{name}/{name}-tests.ts", kind="test"),
        ]
    return PackageInfo(
        name=name, kind=kind, files=files,
        owners=list(owners if owners is not None else ["alice", "bob"]),
        popularity_level=popularity_level, **kw,
    )


def approved(reviewer: str, is_maintainer: bool = False, days: float = 1) -> ReviewInfo:
    return ReviewInfo(type="approved", reviewer=reviewer, date=days_ago(days), is_maintainer=is_maintainer)


def make_info(**overrides) -> PrInfo:
    """PrInfo for a green, conflict-free, single-package edit by alice (owners alice, bob)."""
    fields = dict(
        pr_number=1234,
        now=NOW,
        author="alice",
        head_commit_oid=HEAD_OID,
        ci_result="pass",
        has_merge_conflict=False,
        last_push_date=days_ago(2),
        last_activity_date=days_ago(1),
        maintainer_blessed=False,
        is_first_contribution=False,
        popularity_level="Well-liked by everyone",
        pkg_info=[package()],
        reviews=[],
    )
    fields.update(overrides)
    return PrInfo(**fields)


@pytest.fixture(autouse=True)
def _clear_metadata_cache():
    cached_queries.clear()
    yield
    cached_queries.clear()
