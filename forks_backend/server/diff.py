"""Unified diff of two in-memory texts."""

from __future__ import annotations

import difflib
import re

NO_NEWLINE_MARKER = "\\ No newline at end of file\n"

_LINE_END = re.compile(r"(?<=\n)")


def split_lines(text: str) -> list[str]:
    """Split on `\\n` only, keeping terminators.

    `str.splitlines` also breaks on `\\r`, form feeds and other Unicode line
    boundaries, which would turn one patch line into several.
    """
    lines = _LINE_END.split(text)
    if lines[-1] == "":
        lines.pop()
    return lines


def unified_diff(original: str, modified: str, context: int = 3) -> str:
    """Line-based unified diff with `a`/`b` headers; empty when the texts match."""
    lines = difflib.unified_diff(
        split_lines(original),
        split_lines(modified),
        fromfile="a",
        tofile="b",
        n=context,
    )
    out: list[str] = []
    for line in lines:
        if line.endswith("\n"):
            out.append(line)
        else:
            out.append(line + "\n")
            out.append(NO_NEWLINE_MARKER)
    return "".join(out)
