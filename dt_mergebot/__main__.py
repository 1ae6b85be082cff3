#!/usr/bin/env python3
"""DefinitelyTyped merge bot: decide and apply what happens to open PRs.

Per-PR pipeline:
  1. Snapshot: query the PR via GraphQL (retrying "mergeable: UNKNOWN")
  2. Derive: normalize the snapshot into a decision state
  3. Compute: compile the state into declarative actions
  4. Execute: diff the actions against the PR and send the mutations

With --dry, nothing is sent; the --show-* flags print each stage.
"""

import argparse
import json
import logging
import sys

import yaml

from dt_mergebot import graphql_client
from dt_mergebot.compute_actions import compute_actions
from dt_mergebot.config import load_config
from dt_mergebot.execute_actions import execute_pr_actions
from dt_mergebot.pr_data import to_jsonable
from dt_mergebot.pr_info import derive_state_for_pr


def parse_pr_numbers(values: list[str]) -> list[int]:
    """Expand "123" and "100-105" style arguments into PR numbers."""
    numbers: list[int] = []
    for value in values:
        if "-" in value:
            lo, _, hi = value.partition("-")
            start, end = int(lo), int(hi)
            if start > end:
                raise ValueError(f"Invalid PR range '{value}': start is after end.")
            numbers.extend(range(start, end + 1))
        else:
            numbers.append(int(value))
    return numbers


def _show(title: str, value, fmt: str) -> None:
    if fmt == "yaml":
        text = yaml.safe_dump(value, sort_keys=False, allow_unicode=True)
    else:
        text = json.dumps(value, indent=2, ensure_ascii=False)
    print(f"=== {title} ===")
    print(text)


def process_pr(pr_number: int, args, config) -> None:
    data = graphql_client.query_pr_info(pr_number, owner=config.owner, name=config.repo)
    if args.show_raw:
        _show(f"Raw #{pr_number}", data, args.format)
    pr = graphql_client.get_pull_request(data)

    def fetch_file(expr, limit=None):
        return graphql_client.fetch_file(expr, limit, owner=config.owner, name=config.repo)

    state = derive_state_for_pr(
        pr,
        fetch_file=fetch_file,
        excluded_bots=config.excluded_bots,
        bot_login=config.bot_login,
        pr_number=pr_number,
    )
    if args.show_basic:
        basic = to_jsonable(state)
        basic["type"] = type(state).__name__
        _show(f"Derived #{pr_number}", basic, args.format)

    actions = compute_actions(state)
    if args.show_actions:
        _show(f"Actions #{pr_number}", to_jsonable(actions), args.format)

    if pr is None:
        print(f"Warning: PR #{pr_number} not found, nothing to execute.", file=sys.stderr)
        return
    mutations = execute_pr_actions(
        actions,
        pr,
        dry=args.dry,
        owner=config.owner,
        repo=config.repo,
        project_number=config.project_number,
        bot_login=config.bot_login,
    )
    if args.show_mutations:
        _show(f"Mutations #{pr_number}", [json.loads(m) for m in mutations], args.format)


def main():
    parser = argparse.ArgumentParser(
        description="Run the DefinitelyTyped merge bot policy on pull requests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="PRs are numbers or N-M ranges. When none are given, all open PRs are processed.",
    )
    parser.add_argument("prs", nargs="*", metavar="PR", help="PR number or N-M range")
    parser.add_argument("--config", dest="config_path", default=None, help="path to YAML config file (default: ~/.config/dt-mergebot/config.yaml)")
    parser.add_argument("-d", "--dry", action="store_true", default=False, help="compute mutations without sending them (default: %(default)s)")
    parser.add_argument(
        "--format", default="json", choices=["json", "yaml"],
        help="output format for --show-* (default: json)",
    )
    parser.add_argument("--show-raw", dest="show_raw", action="store_true", default=False, help="print the raw GraphQL snapshot")
    parser.add_argument("--show-basic", dest="show_basic", action="store_true", default=False, help="print the derived PR state")
    parser.add_argument("--show-actions", dest="show_actions", action="store_true", default=False, help="print the computed actions")
    parser.add_argument("--show-mutations", dest="show_mutations", action="store_true", default=False, help="print the mutation requests")
    parser.add_argument("-v", "--verbose", action="store_true", default=False, help="enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = load_config(args.config_path)

    try:
        pr_numbers = parse_pr_numbers(args.prs)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if not pr_numbers:
        print("Fetching open PRs...", file=sys.stderr)
        try:
            pr_numbers = graphql_client.get_all_open_prs(config.owner, config.repo)
        except RuntimeError as e:
            print(f"Error: listing open PRs failed: {e}", file=sys.stderr)
            sys.exit(1)

    failed = 0
    for pr_number in pr_numbers:
        try:
            process_pr(pr_number, args, config)
        except RuntimeError as e:
            failed += 1
            print(f"Warning: PR #{pr_number} failed: {e}", file=sys.stderr)

    if failed:
        print(f"Error: {failed} of {len(pr_numbers)} PRs failed.", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
