"""Markdown renderer for the live "welcome" status comment."""

from __future__ import annotations

import hashlib
import json
import re
from typing import TYPE_CHECKING

from dt_mergebot import urls
from dt_mergebot.pr_data import FileInfo, to_jsonable

if TYPE_CHECKING:
    from dt_mergebot.compute_actions import ExtendedPrInfo


def _emoji(ok: bool) -> str:
    return "✅" if ok else "❌"


def _plural(what: str, items) -> str:
    return f"{len(items)} {what}{'' if len(items) == 1 else 's'}"


def _review_link(info: ExtendedPrInfo, f: FileInfo) -> str:
    """Markdown link to one file in the PR's diff view."""
    short = re.sub(r"^types/(.*/)", r"\1", f.path)
    anchor = hashlib.sha256(f.path.encode("utf-8")).hexdigest()
    return f"[`{short}`]({urls.review(info.orig.pr_number)}/{info.orig.head_commit_oid}#diff-{anchor})"


def _users(info: ExtendedPrInfo, users: list[str]) -> str:
    return ", ".join(("✎" if info.is_author(u) else "") + "@" + u for u in users)


def _required_approver(info: ExtendedPrInfo, critical_count: int) -> str:
    if info.approver_kind == "other":
        return "type definition owners, DT maintainers or others"
    if info.approver_kind == "maintainer":
        return "a DT maintainer"
    if critical_count <= 1:
        return "type definition owners or DT maintainers"
    return "all owners or a DT maintainer"


def create_welcome_comment(info: ExtendedPrInfo) -> str:
    """Render the status dashboard comment for a PR.

    Args:
        info: Extended PR info with approver tier, approval and staleness.

    Returns:
        Markdown text, without the hidden tag marker.
    """
    lines: list[str] = []
    critical_count = sum(1 for p in info.orig.pkg_info if p.popularity_level == "Critical")
    required = _required_approver(info, critical_count)
    required_cap = required[0].upper() + required[1:]
    tests_link = urls.TESTING_NEW_PACKAGES if info.has_new_packages else urls.TESTING_EDITED_PACKAGES

    first_time = ""
    if info.orig.is_first_contribution:
        first_time = (
            " I see this is your first time submitting to DefinitelyTyped 👋"
            " I'm the local bot who will help you through the process of getting things through."
        )
    lines.append(f"@{info.orig.author} Thank you for submitting this PR!{first_time}")
    lines.append("")
    lines.append("***This is a live comment which I will keep updated.***")

    if info.edits_infra and not info.is_untested:
        lines.append("")
        lines.append(
            f"This PR touches some part of DefinitelyTyped infrastructure, so {required} "
            "will need to review it. This is rare. Did you mean to do this?"
        )

    # Packages
    lines.append("")
    lines.append(f"## {_plural('package', info.packages)} in this PR")
    lines.append("")
    if not info.packages:
        lines.append("This PR is editing only infrastructure files!")
    added_self_to_many = 0
    for p in info.orig.pkg_info:
        if p.name is None:
            continue
        kind = " (*new!*)" if p.kind == "add" else " (*probably deleted!*)" if p.kind == "delete" else ""
        npm_name = re.sub(r"^(.*?)__(.)", r"@\1/\2", p.name)
        line = (
            f"* `{p.name}`{kind} [on npm](https://www.npmjs.com/package/{npm_name}), "
            f"[on unpkg](https://unpkg.com/browse/{npm_name}@latest/)"
        )
        if any(info.is_author(o) for o in p.owners):
            line += " (author is owner)"
        lines.append(line)

        approvers = [
            r.reviewer for r in info.approved_reviews
            if any(o.lower() == r.reviewer.lower() for o in p.owners)
        ]
        if approvers:
            lines.append(f"  - owner-approval: {_users(info, approvers)}")
        if p.added_owners:
            lines.append(f"  - {_plural('added owner', p.added_owners)}: {_users(info, p.added_owners)}")
        if p.deleted_owners:
            lines.append(f"  - {_plural('removed owner', p.deleted_owners)}: {_users(info, p.deleted_owners)}")
        if not info.author_is_owner and len(p.owners) >= 4 and any(info.is_author(o) for o in p.added_owners):
            added_self_to_many += 1

        suspects = [f for f in p.files if f.suspect]
        if suspects:
            lines.append("  - Config files to check:")
            for f in suspects:
                lines.append(f"    - {_review_link(info, f)}: {f.suspect}")

    if added_self_to_many:
        several = " to several packages" if added_self_to_many > 1 else ""
        lines.append("")
        lines.append(
            f"@{info.orig.author}: I see that you have added yourself as an owner{several}, "
            f"are you sure you want to [become an owner]({urls.DEFINITION_OWNERS})?"
        )

    # Who needs to review
    lines.append("")
    lines.append("## Code Reviews")
    lines.append("")
    blessed = info.orig.maintainer_blessed
    if info.has_new_packages:
        lines.append(f"This PR adds a new definition, so it needs to be reviewed by {required} before it can be merged.")
    elif info.orig.popularity_level == "Critical" and not blessed:
        lines.append(f"Because this is a widely-used package, {required} will need to review it before it can be merged.")
    elif not info.require_maintainer:
        and_ = (
            "and updated the tests (👏)" if info.has_definitions and info.has_tests
            else "and there were no type definition changes"
        )
        lines.append(f"Because you edited one package {and_}, I can help you merge this PR once someone else signs off on it.")
    elif info.no_other_owners and not blessed:
        lines.append(f"There aren't any other owners of this package, so {required} will review it.")
    elif info.has_multiple_packages and not blessed:
        lines.append(f"Because this PR edits multiple packages, it can be merged once it's reviewed by {required}.")
    elif info.check_config and not blessed:
        lines.append(f"Because this PR edits the configuration file, it can be merged once it's reviewed by {required}.")
    elif not blessed:
        lines.append(f"This PR can be merged once it's reviewed by {required}.")
    else:
        lines.append("This PR can be merged once it's reviewed.")

    # Checklist
    lines.append("")
    lines.append("## Status")
    lines.append("")
    lines.append(f" * {_emoji(not info.orig.has_merge_conflict)} No merge conflicts")
    expected = "finished" if info.orig.ci_result in ("pending", "unknown") else "passed"
    lines.append(f" * {_emoji(info.orig.ci_result == 'pass')} Continuous integration tests have {expected}")
    approved = _emoji(info.approved)
    if info.has_new_packages:
        lines.append(f" * {approved} Only {required} can approve changes when there are new packages added")
    elif info.edits_infra:
        infra = next(p for p in info.orig.pkg_info if p.name is None)
        links = ", ".join(_review_link(info, f) for f in infra.files)
        lines.append(f" * {approved} {required_cap} needs to approve changes which affect DT infrastructure ({links})")
    elif critical_count > 1 and blessed:
        lines.append(f" * {approved} {required_cap} needs to approve changes which affect more than one package")
        for p in info.orig.pkg_info:
            if p.name and p.popularity_level == "Critical":
                lines.append(f"   - {_emoji(p.name not in info.pending_critical_packages)} {p.name}")
    elif info.has_multiple_packages:
        lines.append(f" * {approved} {required_cap} needs to approve changes which affect more than one package")
    elif not info.require_maintainer or blessed:
        lines.append(f" * {approved} Most recent commit is approved by {required}")
    elif info.no_other_owners:
        lines.append(f" * {approved} {required_cap} can merge changes when there are no other reviewers")
    elif info.check_config:
        lines.append(f" * {approved} {required_cap} needs to approve changes which affect module config files")
    else:
        lines.append(f" * {approved} Only {required} can approve changes [without tests]({tests_link})")

    lines.append("")
    if not info.can_be_merged:
        lines.append("Once every item on this list is checked, I'll ask you for permission to merge and publish the changes.")
    else:
        lines.append(
            "All of the items on the list are green. **To merge, you need to post a comment "
            "including the string \"Ready to merge\"** to bring in your changes."
        )

    staleness = info.staleness
    if staleness.state != "fresh":
        explanation = f": {staleness.explanation}" if staleness.explanation else "."
        lines.append("")
        lines.append("## Inactive")
        lines.append("")
        lines.append(f"This PR has been inactive for {staleness.days} days{explanation}")

    # "now" changes every run, keep it out so the comment isn't edited every time
    diagnostic = to_jsonable(info.orig)
    diagnostic["now"] = "-"
    lines.append("")
    lines.append("----------------------")
    lines.append(
        "<details><summary>Diagnostic Information: What the bot saw about this PR</summary>\n\n"
        "```json\n" + json.dumps(diagnostic, indent=2, ensure_ascii=False) + "\n```\n\n"
        "</details>"
    )

    return "\n".join(lines).rstrip()
