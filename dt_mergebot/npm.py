"""Monthly download counts of @types packages from the npm registry.

Uses only stdlib modules (json, urllib.request, urllib.error).
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from datetime import datetime, timedelta
from typing import Optional

logger = logging.getLogger("dt_mergebot.npm")

DOWNLOADS_URL = "https://api.npmjs.org/downloads/point/{period}/@types/{name}"


def _period(as_of: Optional[datetime]) -> str:
    """npm download period: the 30 days up to ``as_of``, or "last-month"."""
    if as_of is None:
        return "last-month"
    end = as_of.date()
    start = end - timedelta(days=30)
    return f"{start.isoformat()}:{end.isoformat()}"


def get_monthly_download_count(
    package_name: str,
    as_of: Optional[datetime] = None,
    timeout: int = 30,
) -> int:
    """Return the monthly download count of ``@types/<package_name>``.

    Args:
        package_name: DefinitelyTyped package directory name, e.g. "node"
            or "babel__core".
        as_of: End of the 30-day window; defaults to npm's "last-month".
        timeout: HTTP request timeout in seconds.

    Returns:
        The download count; 0 for packages that are not on npm.

    Raises:
        RuntimeError: If the registry cannot be reached or answers with an
            error other than 404.
    """
    url = DOWNLOADS_URL.format(period=_period(as_of), name=package_name)
    req = urllib.request.Request(url, headers={"Accept": "application/json"})

    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            body = resp.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as e:
        if e.code == 404:
            logger.debug("@types/%s is not on npm", package_name)
            return 0
        raise RuntimeError(
            f"npm downloads API returned HTTP {e.code} for @types/{package_name}"
        ) from e
    except urllib.error.URLError as e:
        raise RuntimeError(f"Failed to connect to npm: {e.reason}") from e

    downloads = json.loads(body).get("downloads")
    count = downloads if isinstance(downloads, int) else 0
    logger.debug("@types/%s: %d downloads (%s)", package_name, count, _period(as_of))
    return count
