import logging
from pathlib import Path

import pytest

from dspdecomp import MissingSourceLineError, SequencePointSpan, reconcile
from dspdecomp.sequence_points import parse_annotation, reconcile_file, replace_with_source, split_lines

SOURCE = [
    "using System;",
    "",
    "class T",
    "{",
    "    var total = ComputeTotal(x, y);",
    "    void Run()",
    "    {",
    "        if (ready)",
    "    {",
    "        Call(first,",
    "             second,",
    "             third);",
]


def test_single_line_span_is_replaced_with_source_text():
    lines = ["// sequence point: (line 5, col 5) to (line 5, col 35)"]

    assert replace_with_source(lines, SOURCE) == ["// var total = ComputeTotal(x, y)"]


def test_indentation_and_trailing_text_are_handled():
    lines = [
        "\t\tIL_0000: nop",
        "\t\t// sequence point: (line 5, col 5) to (line 5, col 14) in C:\\src\\T.cs",
        "\t\tIL_0001: ldarg.0",
    ]

    assert replace_with_source(lines, SOURCE) == [
        "\t\tIL_0000: nop",
        "\t\t// var total",
        "\t\tIL_0001: ldarg.0",
    ]


def test_multi_line_span_reuses_the_start_column():
    lines = ["    // sequence point: (line 10, col 9) to (line 12, col 20)"]

    assert replace_with_source(lines, SOURCE) == [
        "    // Call(first,",
        "    //      second,",
        "    //      third)",
    ]


def test_multi_line_span_with_end_before_start_is_kept(caplog):
    line = "    // sequence point: (line 8, col 10) to (line 9, col 5)"

    with caplog.at_level(logging.WARNING, logger="dspdecomp.sequence_points"):
        result = replace_with_source([line, "    IL_0002: ret"], SOURCE, "T.cs")

    assert result == [line, "    IL_0002: ret"]
    assert len(caplog.records) == 1
    assert "T.cs" in caplog.records[0].getMessage()


def test_zero_width_same_line_span_is_kept(caplog):
    line = "// sequence point: (line 5, col 9) to (line 5, col 9)"

    with caplog.at_level(logging.WARNING):
        assert replace_with_source([line], SOURCE) == [line]
    assert "keeping the annotation" in caplog.text


def test_reference_past_the_end_of_the_source_fails():
    lines = ["// sequence point: (line 40, col 1) to (line 40, col 3)"]

    with pytest.raises(MissingSourceLineError, match="T.cs"):
        replace_with_source(lines, SOURCE, "T.cs")


def test_parse_annotation_ignores_other_comments():
    assert parse_annotation("// not a sequence point") is None
    assert parse_annotation("IL_0000: nop // sequence point: (line 1, col 1) to (line 1, col 2)") is None

    indent, span = parse_annotation("  // sequence point: (line 3, col 2) to (line 4, col 7) x")
    assert indent == "  "
    assert span == SequencePointSpan(3, 2, 4, 7)
    assert span.is_multiline


def test_reconcile_reads_the_source_file(tmp_path: Path):
    source = tmp_path / "T.cs"
    source.write_text("\n".join(SOURCE) + "\n", "utf-8")
    listing = "IL_0000: nop\n  // sequence point: (line 1, col 1) to (line 1, col 13)\n"

    assert reconcile(listing, source) == "IL_0000: nop\n  // using System\n"


def test_reconcile_file_rewrites_in_place(tmp_path: Path):
    source = tmp_path / "T.cs"
    source.write_text("\n".join(SOURCE), "utf-8")
    listing = tmp_path / "T.cs.il"
    listing.write_text("// sequence point: (line 3, col 1) to (line 3, col 8)\n", "utf-8")

    assert reconcile_file(listing, source) == listing
    assert listing.read_text("utf-8") == "// class T\n"


def test_form_feeds_do_not_shift_line_numbers(tmp_path: Path):
    source = tmp_path / "T.cs"
    source.write_bytes('var s = "a\fb";\r\nsecond line\r\n'.encode("utf-8"))
    listing = "// sequence point: (line 2, col 1) to (line 2, col 7)\n"

    assert reconcile(listing, source) == "// second\n"


def test_split_lines_only_breaks_on_newlines():
    assert split_lines("a\fb\r\nc\rd\ne f\n") == ["a\fb", "c", "d", "e f"]
    assert split_lines("") == []


@pytest.mark.parametrize(
    "annotation",
    [
        "// sequence point: (line 3, col 12) to (line 3, col 14)",
        "// sequence point: (line 3, col 1) to (line 3, col 20)",
    ],
)
def test_columns_past_the_end_of_the_line_fail(annotation):
    with pytest.raises(MissingSourceLineError, match="line 3 has 7 columns"):
        replace_with_source([annotation], SOURCE, "T.cs")
