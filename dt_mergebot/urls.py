"""Links used in bot comments."""

BASE_URL = "https://github.com/DefinitelyTyped/DefinitelyTyped"

TESTING_EDITED_PACKAGES = f"{BASE_URL}#testing"
TESTING_NEW_PACKAGES = f"{BASE_URL}#testing"
DEFINITION_OWNERS = f"{BASE_URL}#definition-owners"
WORKFLOW = f"{BASE_URL}#make-a-pull-request"
TSLINT_JSON = f"{BASE_URL}#linter-tslintjson"
TSCONFIG_JSON = f"{BASE_URL}#tsconfigjson"
PACKAGE_JSON = f"{BASE_URL}#packagejson"


def review(pr_number: int) -> str:
    """Link to the "Files changed" tab of a PR."""
    return f"{BASE_URL}/pull/{pr_number}/files"
