"""Structured PR decision data, produced by pr_info and consumed by compute_actions."""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Literal, Optional, Union, get_args


PopularityLevel = Literal["Well-liked by everyone", "Popular", "Critical"]

CIResult = Literal["pass", "fail", "pending", "missing", "action_required", "unknown"]

FileKind = Literal[
    "test",
    "definition",
    "markdown",
    "package-meta",
    "package-meta-ok",
    "infrastructure",
]

PackageKind = Literal["add", "edit", "delete"]

ReviewType = Literal["approved", "changereq", "stale"]

ColumnName = Literal[
    "Needs Maintainer Action",
    "Needs Maintainer Review",
    "Other",
    "Waiting for Author to Merge",
    "Needs Author Action",
    "Recently Merged",
    "Waiting for Code Reviews",
]

StalenessKind = Literal["Unmerged", "Abandoned", "Unreviewed"]

# Staleness kinds double as label names
LabelName = Literal[
    "Mergebot Error",
    "Has Merge Conflict",
    "The CI failed",
    "Revision needed",
    "New Definition",
    "Edits Owners",
    "Where is GH Actions?",
    "Owner Approved",
    "Other Approved",
    "Maintainer Approved",
    "Self Merge",
    "Popular package",
    "Critical package",
    "Edits Infrastructure",
    "Edits multiple packages",
    "Author is Owner",
    "No Other Owners",
    "Too Many Owners",
    "Untested Change",
    "Check Config",
    "Unmerged",
    "Abandoned",
    "Unreviewed",
]

COLUMN_NAMES: tuple[str, ...] = get_args(ColumnName)
LABEL_NAMES: tuple[str, ...] = get_args(LabelName)
STALENESS_KINDS: tuple[str, ...] = get_args(StalenessKind)


@dataclass
class FileInfo:
    """A changed file and how the bot classified it."""
    path: str
    kind: FileKind
    suspect: Optional[str] = None     # why a config edit looks wrong
    suggestion: Optional[str] = None  # expected-form rewrite of the config file


@dataclass
class ReviewInfo:
    """The latest review of one reviewer."""
    type: ReviewType
    reviewer: str
    date: datetime
    is_maintainer: bool = False  # only meaningful for "approved"
    abbr_oid: str = ""           # reviewed commit, only set for "stale"


@dataclass
class PackageInfo:
    """One touched package; name is None for files outside types/<package>/."""
    name: Optional[str]
    kind: PackageKind
    files: List[FileInfo] = field(default_factory=list)
    owners: List[str] = field(default_factory=list)
    added_owners: List[str] = field(default_factory=list)
    deleted_owners: List[str] = field(default_factory=list)
    popularity_level: PopularityLevel = "Well-liked by everyone"


@dataclass
class PrInfo:
    """Normalized, actionable state of an open pull request."""
    pr_number: int
    now: datetime
    author: str
    head_commit_oid: str
    ci_result: CIResult
    has_merge_conflict: bool
    last_push_date: datetime
    last_activity_date: datetime
    maintainer_blessed: bool
    is_first_contribution: bool
    popularity_level: PopularityLevel
    ci_url: Optional[str] = None
    last_blessing_date: Optional[datetime] = None
    merge_offer_date: Optional[datetime] = None
    merge_request_date: Optional[datetime] = None
    merge_request_user: Optional[str] = None
    pkg_info: List[PackageInfo] = field(default_factory=list)
    reviews: List[ReviewInfo] = field(default_factory=list)


@dataclass
class BotError:
    """Processing failed; the author gets a complaint comment."""
    pr_number: int
    message: str
    author: Optional[str] = None


@dataclass
class BotRemove:
    """Draft or no longer open: take the PR off the active board."""
    pr_number: int
    is_draft: bool
    message: str


@dataclass
class BotNoPackages:
    """The diff has no files the bot can attribute to anything."""
    pr_number: int
    message: str


DerivedState = Union[PrInfo, BotError, BotRemove, BotNoPackages]


@dataclass(frozen=True)
class Comment:
    """A bot comment identified by its hidden tag."""
    tag: str
    status: str


@dataclass(frozen=True)
class Actions:
    """Declarative outcome for one PR; the executor converges GitHub to it."""
    pr_number: int
    target_column: Optional[ColumnName] = None
    labels: Dict[str, bool] = field(default_factory=dict)
    response_comments: List[Comment] = field(default_factory=list)
    should_close: bool = False
    should_merge: bool = False
    should_update_labels: bool = False
    should_update_project_column: bool = False
    should_remove_from_active_columns: bool = False


def _json_default(value):
    if isinstance(value, datetime):
        return value.isoformat().replace("+00:00", "Z")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_jsonable(obj) -> dict:
    """Convert a dataclass tree to plain JSON-compatible dicts."""
    return json.loads(json.dumps(dataclasses.asdict(obj), default=_json_default))


def to_json(obj, indent: int = 2) -> str:
    """Serialize a dataclass tree, rendering datetimes as ISO-8601 UTC."""
    return json.dumps(dataclasses.asdict(obj), indent=indent, default=_json_default, ensure_ascii=False)
