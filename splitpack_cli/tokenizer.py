"""Statement-level scanner for ES ``import`` and CommonJS ``require`` forms.

The scanner does not parse the language grammar.  It walks the source once,
skipping comments, string and template literals, tracks bracket depth, and
only considers ``import`` / ``const|let|var … = require(…)`` statements found
at depth 0.  Anything that starts like an import but does not match the
expected shape is skipped, the rest of the file is still scanned.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

from .models import ImportBlock, RawStatement

logger = logging.getLogger(__name__)

IMPORT_RE = re.compile(
    r"""import(?:\s+|(?=[{*"']))"""
    r"""(?:(?P<clause>[\w$\s,*{}]+?)\s*\bfrom\s*)?"""
    r"""(?P<quote>["'])(?P<module>[^"'\r\n]+)(?P=quote)"""
    r"""(?:\s*(?:assert|with)\s*\{[^{}]*\})?[ \t]*;?"""
)

REQUIRE_RE = re.compile(
    r"""(?:const|let|var)\s+(?P<binding>[\w$]+|\{[^{}]*\})\s*=\s*"""
    r"""require\s*\(\s*(?P<quote>["'])(?P<module>[^"'\r\n]+)(?P=quote)\s*\)[ \t]*;?"""
)

_WORD_RE = re.compile(r"[A-Za-z_$][\w$]*")
_OPEN = "([{"
_CLOSE = ")]}"


def _skip_string(source: str, i: int) -> int:
    quote = source[i]
    i += 1
    while i < len(source):
        ch = source[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote or ch == "\n":
            return i + 1
        i += 1
    return i


def _skip_template(source: str, i: int) -> int:
    i += 1
    depth = 0
    while i < len(source):
        ch = source[i]
        if ch == "\\":
            i += 2
            continue
        if depth == 0 and ch == "`":
            return i + 1
        if ch == "$" and source.startswith("${", i):
            depth += 1
            i += 2
            continue
        if depth and ch == "}":
            depth -= 1
        elif depth and ch in "'\"":
            i = _skip_string(source, i)
            continue
        i += 1
    return i


def _line_of(source: str, offset: int) -> int:
    return source.count("\n", 0, offset) + 1


def _statement(source: str, match: re.Match) -> RawStatement:
    start, end = match.span()
    return RawStatement(
        text=match.group(0),
        start=start,
        end=end,
        line=_line_of(source, start),
        end_line=_line_of(source, max(start, end - 1)),
    )


def tokenize_imports(source: str) -> Optional[ImportBlock]:
    """Collect the top-level import/require statements of *source*.

    Returns ``None`` when the module has no such statement.
    """
    statements: List[RawStatement] = []
    depth = 0
    i = 0
    length = len(source)

    while i < length:
        ch = source[i]

        if ch == "/" and source.startswith("//", i):
            newline = source.find("\n", i)
            i = length if newline == -1 else newline + 1
            continue
        if ch == "/" and source.startswith("/*", i):
            close = source.find("*/", i + 2)
            i = length if close == -1 else close + 2
            continue
        if ch in "'\"":
            i = _skip_string(source, i)
            continue
        if ch == "`":
            i = _skip_template(source, i)
            continue
        if ch in _OPEN:
            depth += 1
            i += 1
            continue
        if ch in _CLOSE:
            depth = max(0, depth - 1)
            i += 1
            continue

        word = _WORD_RE.match(source, i) if (ch.isalpha() or ch in "_$") else None
        if word is None:
            i += 1
            continue

        name = word.group(0)
        member_access = i > 0 and source[i - 1] == "."
        if depth == 0 and not member_access and name == "import":
            following = source[word.end():word.end() + 64].lstrip()
            if following.startswith(("(", ".")):
                # dynamic import() or import.meta
                i = word.end()
                continue
            match = IMPORT_RE.match(source, i)
            if match:
                statements.append(_statement(source, match))
                i = match.end()
                continue
            logger.debug("Skipping malformed import at line %d", _line_of(source, i))
        elif depth == 0 and not member_access and name in ("const", "let", "var"):
            match = REQUIRE_RE.match(source, i)
            if match:
                statements.append(_statement(source, match))
                i = match.end()
                continue

        i = word.end()

    if not statements:
        return None
    return ImportBlock(statements)


def locate_import_block(source: str) -> Optional[Tuple[int, int]]:
    """Line span ``(start, end)`` occupied by the import statements."""
    block = tokenize_imports(source)
    return block.lines if block else None
