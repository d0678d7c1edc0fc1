"""Replace sequence point comments in disassembly with the source they cover.

With sequence points enabled the disassembler emits comments such as::

    // sequence point: (line 5, col 5) to (line 5, col 35) in Foo.cs

in front of the instructions they describe.  Line and column numbers are only
useful next to the source file, so this module swaps every such comment for
the literal source text, one comment line per covered source line.  Columns
are 1-based and the end column is exclusive.

Spans that cross lines are sliced from the start column on every line: the
start column is taken as the indentation of the whole statement.  A span whose
end column does not lie right of its start column cannot be sliced that way;
it is reported and the original comment is kept.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

SEQUENCE_POINT_PATTERN = re.compile(
    r"^(?P<indent>\s*)// sequence point: "
    r"\(line (?P<start_line>\d+), col (?P<start_column>\d+)\) to "
    r"\(line (?P<end_line>\d+), col (?P<end_column>\d+)\)"
    r"(?P<trailing>.*)$"
)
_LINE_BREAK = re.compile(r"\r\n|\r|\n")


class MissingSourceLineError(IndexError):
    """A sequence point references source text the file does not have.

    Raised for lines past the end of the file and for columns past the end
    of a line, both signs of a stale source file.
    """


@dataclass(frozen=True)
class SequencePointSpan:
    """Source extent of a sequence point (1-based, end column exclusive)."""

    start_line: int
    start_column: int
    end_line: int
    end_column: int

    @property
    def is_multiline(self) -> bool:
        return self.end_line > self.start_line

    @property
    def is_well_formed(self) -> bool:
        if self.start_line < 1 or self.start_column < 1:
            return False
        if self.end_line < self.start_line:
            return False
        return self.end_column > self.start_column

    def extract(self, source_lines: Sequence[str]) -> List[str]:
        """Return the covered text, one entry per source line."""

        if self.end_line > len(source_lines):
            raise MissingSourceLineError(
                f"line {self.end_line} is past the end of the source ({len(source_lines)} lines)"
            )
        start = self.start_column - 1
        stop = self.end_column - 1
        covered: List[str] = []
        for number in range(self.start_line, self.end_line + 1):
            text = source_lines[number - 1]
            end = stop if number == self.end_line else len(text)
            if end > len(text) or start > len(text):
                raise MissingSourceLineError(
                    f"line {number} has {len(text)} columns, the sequence point needs "
                    f"columns {self.start_column} to {end + 1}"
                )
            covered.append(text[start:end])
        return covered


def split_lines(text: str) -> List[str]:
    """Split on CR, LF and CRLF only.

    :meth:`str.splitlines` also breaks on form feeds and Unicode separators,
    which would shift the line numbers sequence points refer to.
    """

    lines = _LINE_BREAK.split(text)
    if lines[-1] == "":
        lines.pop()
    return lines


def parse_annotation(line: str) -> Optional[tuple[str, SequencePointSpan]]:
    """Return ``(indent, span)`` when ``line`` is a sequence point comment."""

    match = SEQUENCE_POINT_PATTERN.match(line)
    if match is None:
        return None
    span = SequencePointSpan(
        start_line=int(match.group("start_line")),
        start_column=int(match.group("start_column")),
        end_line=int(match.group("end_line")),
        end_column=int(match.group("end_column")),
    )
    return match.group("indent"), span


def replace_with_source(
    lines: Iterable[str],
    source_lines: Sequence[str],
    source_name: str = "<source>",
) -> List[str]:
    """Rewrite every sequence point comment in ``lines``.

    Raises :class:`MissingSourceLineError` when a comment points past the end
    of ``source_lines``.
    """

    output: List[str] = []
    for line in lines:
        parsed = parse_annotation(line)
        if parsed is None:
            output.append(line)
            continue

        indent, span = parsed
        if not span.is_well_formed:
            logger.warning(
                "sequence point (line %d, col %d) to (line %d, col %d) in %s does not follow "
                "its indentation; keeping the annotation",
                span.start_line,
                span.start_column,
                span.end_line,
                span.end_column,
                source_name,
            )
            output.append(line)
            continue

        try:
            covered = span.extract(source_lines)
        except MissingSourceLineError as exc:
            raise MissingSourceLineError(f"{source_name}: {exc}") from exc
        output.extend(f"{indent}// {text}" for text in covered)
    return output


def reconcile(text: str, source_path: Path) -> str:
    """Return ``text`` with its sequence point comments replaced."""

    source_lines = split_lines(source_path.read_bytes().decode("utf-8-sig"))
    lines = split_lines(text)
    result = "\n".join(replace_with_source(lines, source_lines, str(source_path)))
    if text.endswith(("\n", "\r")):
        result += "\n"
    return result


def reconcile_file(listing_path: Path, source_path: Path, output_path: Optional[Path] = None) -> Path:
    """Reconcile a listing on disk, in place unless ``output_path`` is given."""

    target = output_path or listing_path
    text = listing_path.read_text("utf-8")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(reconcile(text, source_path), "utf-8")
    return target


__all__ = [
    "MissingSourceLineError",
    "SEQUENCE_POINT_PATTERN",
    "SequencePointSpan",
    "parse_annotation",
    "reconcile",
    "reconcile_file",
    "replace_with_source",
    "split_lines",
]
