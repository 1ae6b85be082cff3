"""Unit tests for npm.py.

Run with: python3 -m pytest tests/test_npm.py -v
"""

import io
import json
import urllib.error
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from dt_mergebot.npm import get_monthly_download_count


def _response(payload: dict) -> MagicMock:
    resp = MagicMock()
    resp.read.return_value = json.dumps(payload).encode("utf-8")
    resp.__enter__.return_value = resp
    return resp


class TestMonthlyDownloads:
    """Tests for get_monthly_download_count."""

    @patch("dt_mergebot.npm.urllib.request.urlopen")
    def test_last_month(self, mock_urlopen):
        mock_urlopen.return_value = _response({"downloads": 123456, "package": "@types/node"})
        assert get_monthly_download_count("node") == 123456
        req = mock_urlopen.call_args[0][0]
        assert req.full_url == "https://api.npmjs.org/downloads/point/last-month/@types/node"

    @patch("dt_mergebot.npm.urllib.request.urlopen")
    def test_window_ends_at_as_of(self, mock_urlopen):
        mock_urlopen.return_value = _response({"downloads": 7})
        as_of = datetime(2024, 6, 10, 8, 0, tzinfo=timezone.utc)
        assert get_monthly_download_count("babel__core", as_of) == 7
        req = mock_urlopen.call_args[0][0]
        assert req.full_url == (
            "https://api.npmjs.org/downloads/point/2024-05-11:2024-06-10/@types/babel__core"
        )

    @patch("dt_mergebot.npm.urllib.request.urlopen")
    def test_missing_package_is_zero(self, mock_urlopen):
        mock_urlopen.side_effect = urllib.error.HTTPError(
            "https://api.npmjs.org", 404, "Not Found", {}, io.BytesIO(b"{}")
        )
        assert get_monthly_download_count("not-a-package") == 0

    @patch("dt_mergebot.npm.urllib.request.urlopen")
    def test_no_downloads_field_is_zero(self, mock_urlopen):
        mock_urlopen.return_value = _response({"error": "package not found"})
        assert get_monthly_download_count("foo") == 0

    @patch("dt_mergebot.npm.urllib.request.urlopen")
    def test_server_error_raises(self, mock_urlopen):
        mock_urlopen.side_effect = urllib.error.HTTPError(
            "https://api.npmjs.org", 503, "Unavailable", {}, io.BytesIO(b"")
        )
        with pytest.raises(RuntimeError, match="HTTP 503"):
            get_monthly_download_count("foo")

    @patch("dt_mergebot.npm.urllib.request.urlopen")
    def test_connection_error_raises(self, mock_urlopen):
        mock_urlopen.side_effect = urllib.error.URLError("no route")
        with pytest.raises(RuntimeError, match="Failed to connect"):
            get_monthly_download_count("foo")
