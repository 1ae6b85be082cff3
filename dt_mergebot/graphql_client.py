"""GraphQL client for GitHub API via gh CLI.

Provides the snapshot, file-content, board metadata and mutation calls used by
the mergebot. All requests are executed via `gh api graphql`, with the JSON
request body passed on stdin so variables keep their GraphQL types.
"""

import json
import logging
import random
import subprocess
import sys
import time
from typing import Optional

from dt_mergebot.config import DEFAULT_OWNER, DEFAULT_PROJECT_NUMBER, DEFAULT_REPO

logger = logging.getLogger("dt_mergebot.graphql_client")


def graphql_query(query: str, variables: Optional[dict] = None) -> dict:
    """Execute a GraphQL query via gh api graphql and return the data dict.

    Args:
        query: The GraphQL query string.
        variables: Optional dict of variables to pass to the query.

    Returns:
        The 'data' dict from the GraphQL response.

    Raises:
        RuntimeError: If the response contains non-rate-limit errors or
            the gh command fails.
    """
    cmd = ["gh", "api", "graphql", "--input", "-"]
    body = json.dumps({"query": query, "variables": variables or {}})

    try:
        result = subprocess.run(
            cmd,
            input=body,
            capture_output=True,
            text=True,
            check=True,
            timeout=120,
        )
    except FileNotFoundError:
        print("Error: gh CLI is not installed.", file=sys.stderr)
        sys.exit(1)
    except subprocess.TimeoutExpired:
        raise RuntimeError("gh api graphql timed out") from None
    except subprocess.CalledProcessError as e:
        raise RuntimeError(
            f"gh api graphql failed:\n{e.stderr}"
        ) from e

    response = json.loads(result.stdout)

    errors = response.get("errors")
    if errors:
        # Check if all errors are rate-limit errors
        rate_limited = all(
            err.get("type") == "RATE_LIMITED" for err in errors
        )
        if rate_limited:
            raise _RateLimitError(errors[0].get("message", "Rate limited"))
        # Non-rate-limit errors are fatal
        messages = "; ".join(err.get("message", str(err)) for err in errors)
        raise RuntimeError(f"GraphQL errors: {messages}")

    return response.get("data") or {}


class _RateLimitError(RuntimeError):
    """Internal error raised when GitHub returns RATE_LIMITED."""


def graphql_with_retry(
    query: str,
    variables: Optional[dict] = None,
    max_retries: int = 3,
) -> dict:
    """Execute a GraphQL query with retry on rate limiting.

    Retries with exponential backoff (1s, 2s, 4s) when the API returns
    RATE_LIMITED errors.

    Args:
        query: The GraphQL query string.
        variables: Optional dict of variables.
        max_retries: Maximum number of attempts (default 3).

    Returns:
        The 'data' dict from the GraphQL response.

    Raises:
        RuntimeError: After exhausting retries or on non-rate-limit errors.
    """
    for attempt in range(max_retries):
        try:
            return graphql_query(query, variables)
        except _RateLimitError:
            if attempt == max_retries - 1:
                raise RuntimeError(
                    "GraphQL rate limit exceeded after retries"
                )
            wait = 2 ** attempt  # 1s, 2s, 4s
            print(
                f"Rate limited, retrying in {wait}s...",
                file=sys.stderr,
            )
            time.sleep(wait)
    # Should not reach here, but satisfy type checker
    raise RuntimeError("GraphQL rate limit exceeded after retries")


# ---------------------------------------------------------------------------
# PR snapshot
# ---------------------------------------------------------------------------

PR_QUERY = """\
query PR($owner: String!, $name: String!, $pr_number: Int!) {
  repository(owner: $owner, name: $name) {
    id
    pullRequest(number: $pr_number) {
      id
      title
      number
      createdAt
      author { login }
      authorAssociation
      isDraft
      state
      mergeable
      headRefOid
      labels(first: 100) {
        nodes { name }
      }
      timelineItems(last: 200, itemTypes: [REOPENED_EVENT, READY_FOR_REVIEW_EVENT, MOVED_COLUMNS_IN_PROJECT_EVENT]) {
        nodes {
          __typename
          ... on ReopenedEvent { createdAt actor { login } }
          ... on ReadyForReviewEvent { createdAt actor { login } }
          ... on MovedColumnsInProjectEvent { createdAt actor { login } }
        }
      }
      reviews(last: 100) {
        nodes {
          author { login }
          commit { oid abbreviatedOid }
          comments(last: 10) {
            nodes {
              author { login }
              createdAt
            }
          }
          authorAssociation
          state
          submittedAt
          url
        }
      }
      commits(last: 100) {
        totalCount
        nodes {
          commit {
            oid
            abbreviatedOid
            pushedDate
            checkSuites(first: 100) {
              nodes {
                app { name }
                conclusion
                status
                url
              }
            }
          }
        }
      }
      comments(last: 100) {
        totalCount
        nodes {
          id
          author { login }
          body
          createdAt
          lastEditedAt
        }
      }
      files(first: 100) {
        totalCount
        nodes { path additions deletions }
      }
      projectCards(first: 10) {
        nodes {
          id
          project { id number name }
          column { id name }
        }
      }
    }
  }
}"""


def query_pr_info(
    pr_number: int,
    owner: str = DEFAULT_OWNER,
    name: str = DEFAULT_REPO,
    max_attempts: int = 5,
) -> dict:
    """Fetch the raw PR snapshot, retrying while GitHub reports mergeable UNKNOWN.

    GitHub computes mergeability lazily, so the first query after a push often
    answers UNKNOWN. Re-query a bounded number of times with randomized
    backoff, then return whatever came back last.

    Args:
        pr_number: The pull request number.
        owner: Repository owner.
        name: Repository name.
        max_attempts: Maximum number of queries (default 5).

    Returns:
        The 'data' dict; data["repository"]["pullRequest"] may be None.
    """
    variables = {"owner": owner, "name": name, "pr_number": int(pr_number)}
    data: dict = {}
    for attempt in range(max_attempts):
        data = graphql_with_retry(PR_QUERY, variables)
        pr = (data.get("repository") or {}).get("pullRequest")
        if not pr or pr.get("mergeable") != "UNKNOWN":
            return data
        if attempt < max_attempts - 1:
            wait = (attempt + 1) * (1 + random.random())
            logger.debug(
                "PR #%d mergeable state unknown, retrying in %.1fs", pr_number, wait
            )
            time.sleep(wait)
    logger.warning("PR #%d mergeable state still unknown after %d attempts", pr_number, max_attempts)
    return data


def get_pull_request(data: dict) -> Optional[dict]:
    """Extract the pullRequest node from a query_pr_info response."""
    return (data.get("repository") or {}).get("pullRequest")


# ---------------------------------------------------------------------------
# File contents
# ---------------------------------------------------------------------------

FILE_QUERY = """\
query GetFileContent($owner: String!, $name: String!, $expr: String!) {
  repository(owner: $owner, name: $name) {
    id
    object(expression: $expr) {
      __typename
      ... on Blob {
        id
        text
        byteSize
      }
    }
  }
}"""


def fetch_file(
    expr: str,
    limit: Optional[int] = None,
    owner: str = DEFAULT_OWNER,
    name: str = DEFAULT_REPO,
) -> Optional[str]:
    """Fetch a file's text at a ref.

    Args:
        expr: A "<ref>:<path>" expression, e.g. "master:types/node/index.d.ts".
        limit: Truncate the text to at most this many characters.
        owner: Repository owner.
        name: Repository name.

    Returns:
        The file text, or None if there is no blob at that expression.
    """
    data = graphql_with_retry(FILE_QUERY, {"owner": owner, "name": name, "expr": expr})
    obj = (data.get("repository") or {}).get("object")
    if not obj or obj.get("__typename") != "Blob":
        return None
    text = obj.get("text")
    if text is None:
        return None
    if limit and len(text) > limit:
        return text[:limit]
    return text


# ---------------------------------------------------------------------------
# Board and label metadata
# ---------------------------------------------------------------------------

LABELS_QUERY = """\
query GetLabels($owner: String!, $name: String!) {
  repository(owner: $owner, name: $name) {
    id
    labels(first: 100) {
      nodes { id name }
    }
  }
}"""

PROJECT_COLUMNS_QUERY = """\
query GetProjectColumns($owner: String!, $name: String!, $number: Int!) {
  repository(owner: $owner, name: $name) {
    id
    project(number: $number) {
      id
      columns(first: 30) {
        nodes { id name }
      }
    }
  }
}"""


def parse_labels_response(data: dict) -> list[dict]:
    """Return [{"id", "name"}] label nodes sorted by name."""
    nodes = ((data.get("repository") or {}).get("labels") or {}).get("nodes") or []
    return sorted((n for n in nodes if n), key=lambda n: n["name"])


def parse_project_columns_response(data: dict) -> list[dict]:
    """Return [{"id", "name"}] column nodes sorted by name."""
    project = (data.get("repository") or {}).get("project") or {}
    nodes = (project.get("columns") or {}).get("nodes") or []
    return sorted((n for n in nodes if n), key=lambda n: n["name"])


def query_labels(owner: str = DEFAULT_OWNER, name: str = DEFAULT_REPO) -> list[dict]:
    data = graphql_with_retry(LABELS_QUERY, {"owner": owner, "name": name})
    return parse_labels_response(data)


def query_project_columns(
    owner: str = DEFAULT_OWNER,
    name: str = DEFAULT_REPO,
    project_number: int = DEFAULT_PROJECT_NUMBER,
) -> list[dict]:
    data = graphql_with_retry(
        PROJECT_COLUMNS_QUERY,
        {"owner": owner, "name": name, "number": project_number},
    )
    return parse_project_columns_response(data)


# ---------------------------------------------------------------------------
# Open PRs
# ---------------------------------------------------------------------------

OPEN_PRS_QUERY = """\
query GetAllOpenPRs($owner: String!, $name: String!, $after: String) {
  repository(owner: $owner, name: $name) {
    id
    pullRequests(states: OPEN, orderBy: { field: UPDATED_AT, direction: DESC }, first: 100, after: $after) {
      pageInfo { hasNextPage endCursor }
      nodes { number }
    }
  }
}"""


def get_all_open_prs(owner: str = DEFAULT_OWNER, name: str = DEFAULT_REPO) -> list[int]:
    """Page through all open PR numbers of the repository."""
    numbers: list[int] = []
    after: Optional[str] = None
    while True:
        data = graphql_with_retry(OPEN_PRS_QUERY, {"owner": owner, "name": name, "after": after})
        prs = (data.get("repository") or {}).get("pullRequests") or {}
        for node in prs.get("nodes") or []:
            if node and node.get("number"):
                numbers.append(node["number"])
        page = prs.get("pageInfo") or {}
        if not page.get("hasNextPage"):
            return numbers
        after = page.get("endCursor")


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def build_mutation(name: str) -> str:
    """Build a single-input mutation document, e.g. addComment(input: $input)."""
    input_type = name[0].upper() + name[1:] + "Input"
    return (
        f"mutation($input: {input_type}!) {{\n"
        f"  {name}(input: $input) {{\n"
        f"    __typename\n"
        f"  }}\n}}"
    )


def mutate(name: str, mutation_input: dict) -> str:
    """Send one mutation and return the raw response data as JSON text."""
    data = graphql_with_retry(build_mutation(name), {"input": mutation_input}, max_retries=3)
    return json.dumps(data)
