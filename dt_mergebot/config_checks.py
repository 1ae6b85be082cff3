"""Suspicious-edit detection for per-package configuration files.

Each known config file has an expected form: a set of JSON properties that
every package should carry with fixed values. An edit is fine when the new
file deviates from that form in no way the old file didn't already.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from dt_mergebot import urls

logger = logging.getLogger("dt_mergebot.config_checks")


@dataclass(frozen=True)
class ConfigChecker:
    expected: dict
    doc_url: str


CHECKERS: dict[str, ConfigChecker] = {
    "tsconfig.json": ConfigChecker(
        expected={
            "compilerOptions": {
                "module": "commonjs",
                "noImplicitAny": True,
                "noImplicitThis": True,
                "strictNullChecks": True,
                "strictFunctionTypes": True,
                "baseUrl": "../",
                "typeRoots": ["../"],
                "types": [],
                "noEmit": True,
                "forceConsistentCasingInFileNames": True,
            },
        },
        doc_url=urls.TSCONFIG_JSON,
    ),
    "tslint.json": ConfigChecker(
        expected={"extends": "@definitelytyped/dtslint/dt.json"},
        doc_url=urls.TSLINT_JSON,
    ),
    "package.json": ConfigChecker(
        expected={"private": True},
        doc_url=urls.PACKAGE_JSON,
    ),
}


@dataclass(frozen=True)
class CheckResult:
    suspect: Optional[str] = None
    suggestion: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.suspect is None


def is_checked_config(filename: str) -> bool:
    return filename in CHECKERS


def _deviations(expected: dict, actual: Any, prefix: str = "") -> set[str]:
    """Dotted paths of expected properties that are missing or differ."""
    found: set[str] = set()
    if not isinstance(actual, dict):
        return {prefix or "."}
    for key, want in expected.items():
        path = f"{prefix}.{key}" if prefix else key
        if isinstance(want, dict):
            found |= _deviations(want, actual.get(key), path)
        elif key not in actual or actual[key] != want:
            found.add(path)
    return found


def _apply_expected(expected: dict, actual: Any) -> dict:
    """Overlay the expected properties onto a copy of actual."""
    result = dict(actual) if isinstance(actual, dict) else {}
    for key, want in expected.items():
        if isinstance(want, dict):
            result[key] = _apply_expected(want, result.get(key))
        else:
            result[key] = want
    return result


def check_config_edit(filename: str, old_text: Optional[str], new_text: str) -> CheckResult:
    """Decide whether an edit of a known config file looks suspicious.

    Args:
        filename: Base name of the file, e.g. "tsconfig.json".
        old_text: File text before the change, None for a new file.
        new_text: File text after the change.

    Returns:
        A CheckResult; ``suspect`` is set when the edit moves away from the
        expected form, with ``suggestion`` holding the corrected JSON text.
    """
    checker = CHECKERS[filename]
    try:
        new_json = json.loads(new_text)
    except ValueError as e:
        logger.debug("%s: unparseable json: %s", filename, e)
        return CheckResult(suspect=f"couldn't parse json: {e}")

    new_devs = _deviations(checker.expected, new_json)
    if not new_devs:
        return CheckResult()

    old_devs: Optional[set[str]] = None
    if old_text is not None:
        try:
            old_devs = _deviations(checker.expected, json.loads(old_text))
        except ValueError:
            old_devs = None
    if old_devs is not None and new_devs <= old_devs:
        logger.debug("%s: deviations %s already present before the edit", filename, sorted(new_devs))
        return CheckResult()

    logger.debug("%s: new deviations %s", filename, sorted(new_devs - (old_devs or set())))
    suggestion = json.dumps(_apply_expected(checker.expected, new_json), indent=4)
    return CheckResult(
        suspect=f"not [the expected form]({checker.doc_url})",
        suggestion=suggestion,
    )
