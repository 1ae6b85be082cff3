"""Unit tests for welcome.py.

Run with: python3 -m pytest tests/test_welcome.py -v
"""

import hashlib
import json
from datetime import timedelta

from conftest import HEAD_OID, NOW, approved, days_ago, make_info, package

from dt_mergebot.compute_actions import extend_pr_info
from dt_mergebot.pr_data import FileInfo
from dt_mergebot.welcome import create_welcome_comment


def render(**overrides) -> str:
    return create_welcome_comment(extend_pr_info(make_info(**overrides)))


class TestWelcomeComment:
    """Tests for create_welcome_comment."""

    def test_plain_pr(self):
        text = render()
        assert text.startswith("@alice Thank you for submitting this PR!\n")
        assert "## 1 package in this PR" in text
        assert (
            "* `foo` [on npm](https://www.npmjs.com/package/foo), "
            "[on unpkg](https://unpkg.com/browse/foo@latest/) (author is owner)"
        ) in text
        assert "Because you edited one package and updated the tests (👏)" in text
        assert " * ✅ No merge conflicts" in text
        assert " * ✅ Continuous integration tests have passed" in text
        assert " * ❌ Most recent commit is approved by type definition owners, DT maintainers or others" in text
        assert "## Inactive" not in text

    def test_first_contribution(self):
        assert "your first time submitting to DefinitelyTyped" in render(is_first_contribution=True)

    def test_scoped_package_links(self):
        text = render(pkg_info=[package(name="babel__core")])
        assert "https://www.npmjs.com/package/@babel/core" in text

    def test_new_package(self):
        text = render(pkg_info=[package(kind="add")])
        assert "`foo` (*new!*)" in text
        assert "This PR adds a new definition, so it needs to be reviewed by a DT maintainer" in text

    def test_owner_approval_listed(self):
        text = render(reviews=[approved("bob"), approved("carol")])
        assert "  - owner-approval: @bob" in text
        assert "@carol" not in text.split("## Code Reviews")[0]

    def test_added_owners(self):
        text = render(pkg_info=[package(added_owners=["carol", "alice"])])
        assert "  - 2 added owners: @carol, ✎@alice" in text

    def test_suspect_config_linked(self):
        path = "types/foo/tsconfig.json"
        text = render(pkg_info=[package(files=[
            FileInfo("types/foo/index.d.ts", "definition"),
            FileInfo("types/foo/foo-tests.ts", "test"),
            FileInfo(path, "package-meta", suspect="not [the expected form](x)"),
        ])])
        anchor = hashlib.sha256(path.encode("utf-8")).hexdigest()
        assert "  - Config files to check:" in text
        assert "[`foo/tsconfig.json`](" in text
        assert f"/pull/1234/files/{HEAD_OID}#diff-{anchor}): not [the expected form](x)" in text
        assert "reviewed by a DT maintainer" in text

    def test_infrastructure_only(self):
        text = render(pkg_info=[package(name=None, owners=[], files=[FileInfo(".github/ci.yml", "infrastructure")])])
        assert "## 0 packages in this PR" in text
        assert "This PR is editing only infrastructure files!" in text

    def test_ready_to_merge(self):
        text = render(reviews=[approved("bob")])
        assert " * ✅ Most recent commit is approved" in text
        assert "To merge, you need to post a comment including the string \"Ready to merge\"" in text

    def test_inactive(self):
        text = render(last_push_date=days_ago(12), last_activity_date=days_ago(10))
        assert "## Inactive" in text
        assert "This PR has been inactive for 10 days." in text

    def test_inactive_with_explanation(self):
        text = render(last_push_date=days_ago(25), last_activity_date=days_ago(25))
        assert "inactive for 25 days: please try to get reviewers!" in text

    def test_diagnostics_do_not_depend_on_now(self):
        a = render()
        b = render(now=NOW + timedelta(hours=1))
        assert a == b
        blob = a.split("```json\n", 1)[1].split("\n```", 1)[0]
        data = json.loads(blob)
        assert data["now"] == "-"
        assert data["author"] == "alice"
