import json
import logging
from pathlib import Path

import pytest

from dspdecomp import LocalNameMap, LocalVariableKey, MethodIdentity
from dspdecomp.name_store import (
    from_compact_json,
    group_by_source_file,
    index_by_method,
    load_name_store,
    save_name_store,
    to_compact_json,
)


def _maps() -> list:
    return [
        LocalNameMap(MethodIdentity("N.T", "Run"), {"0|0": "count", "1|2": "buffer"}),
        LocalNameMap(MethodIdentity("N.T", "void Foo(int)"), {"0|1": "index"}),
        LocalNameMap(MethodIdentity("N.Other", "Tick"), {"0|0": "délai"}),
    ]


def _content(maps) -> dict:
    return {(entry.method, token): name for entry in maps for token, name in entry.locals.items()}


def test_compact_json_groups_by_type_then_method():
    payload = json.loads(to_compact_json(_maps()))

    assert payload == {
        "N.T": {
            "Run": {"0|0": "count", "1|2": "buffer"},
            "void Foo(int)": {"0|1": "index"},
        },
        "N.Other": {"Tick": {"0|0": "délai"}},
    }


def test_compact_json_keeps_non_ascii_names_readable():
    assert "délai" in to_compact_json(_maps())


def test_hand_edited_fragment_with_comments_and_trailing_commas():
    text = """
    // names for the player loop
    {
      "N.T": {
        "Run": {
          "0|0": "count", // renamed by hand
          /* "1|2": "old", */
          "1|2": "buffer",
        },
      },
    }
    """

    maps = from_compact_json(text, fragment="T.cs.m.json")

    assert len(maps) == 1
    assert maps[0].method == MethodIdentity("N.T", "Run")
    assert maps[0].locals == {"0|0": "count", "1|2": "buffer"}
    assert maps[0].fragment == "T.cs.m.json"


def test_unknown_fields_are_ignored():
    text = json.dumps(
        {
            "$schema": "name-map",
            "N.T": {
                "$comment": "ignored",
                "Run": {"0|0": "count", "$note": "x", "1|1": 5},
                "Broken": ["not", "a", "table"],
            },
        }
    )

    maps = from_compact_json(text)

    assert [(entry.method.signature_key, entry.locals) for entry in maps] == [("Run", {"0|0": "count"})]


def test_invalid_local_keys_are_skipped_with_a_warning(caplog):
    text = json.dumps({"N.T": {"Run": {"first": "count", "0|3": "value"}}})

    with caplog.at_level(logging.WARNING):
        maps = from_compact_json(text, fragment="T.cs.m.json")

    assert maps[0].locals == {"0|3": "value"}
    assert "first" in caplog.text


def test_top_level_must_be_an_object():
    with pytest.raises(ValueError):
        from_compact_json("[1, 2]")


@pytest.mark.parametrize("token", ["1", "a|2", "1|-2", "1|2|3", ""])
def test_local_variable_key_rejects_bad_tokens(token):
    with pytest.raises(ValueError):
        LocalVariableKey.parse(token)


def test_local_variable_key_token():
    key = LocalVariableKey.parse("3|7")
    assert (key.declaration_order, key.slot_index) == (3, 7)
    assert key.token == "3|7"


def test_directory_round_trip(tmp_path: Path):
    maps = _maps()
    grouped = {"N/T.cs": maps[:2], "N/Other.cs": maps[2:]}

    written = save_name_store(tmp_path / "names", grouped)
    assert sorted(path.relative_to(tmp_path).as_posix() for path in written) == [
        "names/N/Other.cs.m.json",
        "names/N/T.cs.m.json",
    ]

    loaded = load_name_store(tmp_path / "names")
    assert _content(loaded) == _content(maps)
    assert {entry.fragment for entry in loaded} == {"N/T.cs.m.json", "N/Other.cs.m.json"}

    save_name_store(tmp_path / "copy", group_by_source_file(loaded))
    assert _content(load_name_store(tmp_path / "copy")) == _content(maps)


def test_save_replaces_previous_fragments(tmp_path: Path):
    directory = tmp_path / "names"
    save_name_store(directory, {"Old.cs": _maps()[:1]})
    save_name_store(directory, {"New.cs": _maps()[1:2]})

    assert [path.name for path in directory.rglob("*.m.json")] == ["New.cs.m.json"]


def test_malformed_fragment_is_skipped(tmp_path: Path, caplog):
    directory = tmp_path / "names"
    save_name_store(directory, {"A.cs": _maps()[:1], "sub/B.cs": _maps()[1:2], "C.cs": _maps()[2:]})
    (directory / "broken.cs.m.json").write_text('{"N.T": {"Run": {"0|0": ', "utf-8")
    (directory / "notes.txt").write_text("not a fragment", "utf-8")

    with caplog.at_level(logging.WARNING, logger="dspdecomp.name_store"):
        skipped = []
        loaded = load_name_store(directory, skipped=skipped)

    assert _content(loaded) == _content(_maps())
    warnings = [record for record in caplog.records if record.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "broken.cs.m.json" in warnings[0].getMessage()
    assert skipped == [directory / "broken.cs.m.json"]


def test_missing_directory_loads_nothing(tmp_path: Path):
    assert load_name_store(tmp_path / "absent") == []


def test_index_by_method_merges_duplicates(caplog):
    identity = MethodIdentity("N.T", "Run")
    maps = [
        LocalNameMap(identity, {"0|0": "a", "1|1": "b"}, fragment="Old.cs.m.json"),
        LocalNameMap(identity, {"1|1": "c"}, fragment="New.cs.m.json"),
    ]

    with caplog.at_level(logging.WARNING):
        index = index_by_method(maps)

    assert index == {identity: {"0|0": "a", "1|1": "c"}}
    assert "Old.cs.m.json" in caplog.text and "New.cs.m.json" in caplog.text
