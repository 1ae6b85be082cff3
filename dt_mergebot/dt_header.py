"""Parser for the DefinitelyTyped ``index.d.ts`` header comment.

Only the contributor list matters to the bot: GitHub logins listed under
``// Definitions by:`` are the package owners.

    // Type definitions for foo 1.2
    // Project: https://github.com/foo/foo
    // Definitions by: Jane Doe <https://github.com/janedoe>
    //                 John Roe <https://github.com/jroe>
    // Definitions: https://github.com/DefinitelyTyped/DefinitelyTyped
"""

from __future__ import annotations

import re
from typing import Optional

_TITLE_RE = re.compile(r"^//\s*Type definitions for\s+\S")
_DEFINITIONS_BY_RE = re.compile(r"^//\s*Definitions by:\s*(.*)$")
_CONTINUATION_RE = re.compile(r"^//\s+(.*)$")
_END_OF_CONTRIBUTORS_RE = re.compile(r"^//\s*(Definitions|TypeScript Version|Minimum TypeScript Version):")
_CONTRIBUTOR_RE = re.compile(r"([^<>,]+?)\s*<([^<>]+)>")
_GITHUB_URL_RE = re.compile(r"^https?://github\.com/([A-Za-z0-9-]+)/?$", re.IGNORECASE)


class HeaderParseError(ValueError):
    """The file does not start with a well-formed DefinitelyTyped header."""


def _github_login(url: str) -> Optional[str]:
    m = _GITHUB_URL_RE.match(url.strip())
    return m.group(1) if m else None


def parse_contributors(text: str) -> list[tuple[str, Optional[str]]]:
    """Return (name, github_login) pairs from the header of a declaration file.

    Raises:
        HeaderParseError: If there is no "Type definitions for" title or no
            "Definitions by:" section, or a contributor entry is malformed.
    """
    lines = [line.strip() for line in text.lstrip("\ufeff").splitlines()]
    header = []
    for line in lines:
        if not line:
            continue
        if not line.startswith("//"):
            break
        header.append(line)

    if not header or not _TITLE_RE.match(header[0]):
        raise HeaderParseError("Header must start with '// Type definitions for'")

    chunks: list[str] = []
    in_contributors = False
    for line in header:
        if not in_contributors:
            m = _DEFINITIONS_BY_RE.match(line)
            if m:
                in_contributors = True
                chunks.append(m.group(1))
            continue
        if _END_OF_CONTRIBUTORS_RE.match(line):
            break
        m = _CONTINUATION_RE.match(line)
        if not m:
            break
        chunks.append(m.group(1))

    if not in_contributors:
        raise HeaderParseError("Header has no '// Definitions by:' line")

    contributors = []
    for chunk in chunks:
        for entry in chunk.split(">,"):
            entry = entry.strip().rstrip(",").strip()
            if not entry:
                continue
            if not entry.endswith(">"):
                entry += ">"
            m = _CONTRIBUTOR_RE.fullmatch(entry)
            if not m:
                raise HeaderParseError(f"Malformed contributor: {entry!r}")
            contributors.append((m.group(1).strip(), _github_login(m.group(2))))
    if not contributors:
        raise HeaderParseError("Header lists no contributors")
    return contributors


def get_owners(text: str) -> list[str]:
    """GitHub logins of the package owners, in header order."""
    return [login for _, login in parse_contributors(text) if login]
