"""Read JSON documents that humans have edited by hand.

Name map and settings files are meant to be opened in an editor.  People leave
``// notes`` behind, comment out entries and forget to remove the comma after
the last one.  :func:`loads` accepts those documents by blanking comments and
dropping trailing commas before handing the text to :mod:`json`.  String
literals are left untouched, so ``"http://..."`` survives.
"""

from __future__ import annotations

import json
from typing import Any, List


def strip_comments(text: str) -> str:
    """Return ``text`` with ``//`` and ``/* */`` comments replaced by spaces.

    Newlines inside comments are preserved so that error positions reported by
    :mod:`json` still point at the right line.
    """

    out: List[str] = []
    index = 0
    length = len(text)
    in_string = False

    while index < length:
        char = text[index]
        if in_string:
            out.append(char)
            if char == "\\" and index + 1 < length:
                out.append(text[index + 1])
                index += 2
                continue
            if char == '"':
                in_string = False
            index += 1
            continue

        if char == '"':
            in_string = True
            out.append(char)
            index += 1
            continue

        if text.startswith("//", index):
            end = text.find("\n", index)
            end = length if end == -1 else end
            out.append(" " * (end - index))
            index = end
            continue

        if text.startswith("/*", index):
            end = text.find("*/", index + 2)
            if end == -1:
                raise ValueError(f"unterminated block comment at offset {index}")
            end += 2
            out.append("".join(ch if ch == "\n" else " " for ch in text[index:end]))
            index = end
            continue

        out.append(char)
        index += 1

    return "".join(out)


def strip_trailing_commas(text: str) -> str:
    """Remove commas that directly precede a closing ``}`` or ``]``.

    Expects comment free input.
    """

    out: List[str] = []
    index = 0
    length = len(text)
    in_string = False

    while index < length:
        char = text[index]
        if in_string:
            out.append(char)
            if char == "\\" and index + 1 < length:
                out.append(text[index + 1])
                index += 2
                continue
            if char == '"':
                in_string = False
            index += 1
            continue

        if char == '"':
            in_string = True
        elif char == ",":
            lookahead = index + 1
            while lookahead < length and text[lookahead].isspace():
                lookahead += 1
            if lookahead < length and text[lookahead] in "}]":
                index += 1
                continue
        out.append(char)
        index += 1

    return "".join(out)


def loads(text: str) -> Any:
    """Parse a JSON document that may contain comments and trailing commas."""

    if text.startswith("\ufeff"):
        text = text[1:]
    return json.loads(strip_trailing_commas(strip_comments(text)))


__all__ = ["loads", "strip_comments", "strip_trailing_commas"]
