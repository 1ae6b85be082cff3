"""Unit tests for the dt_mergebot command line.

Run with: python3 -m pytest tests/test_main.py -v
"""

import sys
from unittest.mock import patch

import pytest

from conftest import make_pr

from dt_mergebot import __main__ as cli
from dt_mergebot.config import Config
from dt_mergebot.pr_data import BotRemove


class TestParsePrNumbers:
    """Tests for parse_pr_numbers."""

    def test_single_and_range(self):
        assert cli.parse_pr_numbers(["5", "10-12"]) == [5, 10, 11, 12]

    def test_empty(self):
        assert cli.parse_pr_numbers([]) == []

    def test_backwards_range(self):
        with pytest.raises(ValueError, match="start is after end"):
            cli.parse_pr_numbers(["12-10"])

    def test_not_a_number(self):
        with pytest.raises(ValueError):
            cli.parse_pr_numbers(["abc"])


class TestMain:
    """Tests for main() argument handling and the per-PR loop."""

    def _run(self, argv):
        with patch.object(sys, "argv", ["dt-mergebot"] + argv), \
                patch("dt_mergebot.__main__.load_config", return_value=Config()):
            cli.main()

    @patch("dt_mergebot.__main__.process_pr")
    def test_processes_each_pr(self, mock_process):
        self._run(["1", "3-4", "--dry"])
        assert [c[0][0] for c in mock_process.call_args_list] == [1, 3, 4]
        assert mock_process.call_args[0][1].dry is True

    @patch("dt_mergebot.__main__.graphql_client.get_all_open_prs", return_value=[7, 8])
    @patch("dt_mergebot.__main__.process_pr")
    def test_all_open_prs_by_default(self, mock_process, mock_open_prs):
        self._run([])
        mock_open_prs.assert_called_once_with("DefinitelyTyped", "DefinitelyTyped")
        assert mock_process.call_count == 2

    @patch("dt_mergebot.__main__.process_pr")
    def test_failure_continues_then_exits(self, mock_process, capsys):
        mock_process.side_effect = [RuntimeError("boom"), None]
        with pytest.raises(SystemExit) as exc:
            self._run(["1", "2"])
        assert exc.value.code == 1
        assert mock_process.call_count == 2
        assert "Warning: PR #1 failed: boom" in capsys.readouterr().err

    def test_bad_range_exits(self, capsys):
        with pytest.raises(SystemExit):
            self._run(["9-1"])
        assert "Error:" in capsys.readouterr().err


class TestProcessPr:
    """Tests for process_pr with the GraphQL layer patched out."""

    @patch("dt_mergebot.__main__.execute_pr_actions", return_value=['{"query": "q"}'])
    @patch("dt_mergebot.__main__.derive_state_for_pr")
    @patch("dt_mergebot.__main__.graphql_client.query_pr_info")
    def test_draft_pipeline(self, mock_query, mock_derive, mock_execute, capsys):
        pr = make_pr(isDraft=True)
        mock_query.return_value = {"repository": {"pullRequest": pr}}
        mock_derive.return_value = BotRemove(1234, is_draft=True, message="PR is a draft")
        args = cli.argparse.Namespace(
            dry=True, format="json", show_raw=False, show_basic=True,
            show_actions=False, show_mutations=True,
        )
        cli.process_pr(1234, args, Config())

        actions = mock_execute.call_args[0][0]
        assert actions.target_column == "Needs Author Action"
        assert mock_execute.call_args[0][1] is pr
        assert mock_execute.call_args[1]["dry"] is True
        out = capsys.readouterr().out
        assert "=== Derived #1234 ===" in out
        assert '"type": "BotRemove"' in out
        assert "=== Mutations #1234 ===" in out

    @patch("dt_mergebot.__main__.execute_pr_actions")
    @patch("dt_mergebot.__main__.graphql_client.query_pr_info")
    def test_missing_pr_is_not_executed(self, mock_query, mock_execute, capsys):
        mock_query.return_value = {"repository": {"pullRequest": None}}
        args = cli.argparse.Namespace(
            dry=True, format="yaml", show_raw=False, show_basic=False,
            show_actions=True, show_mutations=False,
        )
        cli.process_pr(99, args, Config())
        mock_execute.assert_not_called()
        captured = capsys.readouterr()
        assert "Mergebot Error" in captured.out
        assert "not found" in captured.err
