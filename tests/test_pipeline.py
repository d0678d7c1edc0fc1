import json
import logging
from pathlib import Path
from typing import Dict, List

import pytest

from dspdecomp import (
    DecompilationRun,
    DecompilerEngine,
    LocalVariable,
    ModuleMetadata,
    UnsupportedSignatureError,
)
from dspdecomp.layout import files_to_decompile, methods_in_file


def _module() -> ModuleMetadata:
    return ModuleMetadata.from_json(
        {
            "name": "Assembly-CSharp",
            "types": [
                {
                    "namespace": "Game",
                    "name": "Player",
                    "methods": [
                        {"name": "Update"},
                        {"name": "Move", "signature": {"parameters": ["int"]}},
                        {"name": "Move", "signature": {"parameters": ["float"]}},
                    ],
                },
                {"namespace": "Game", "name": "Inventory", "methods": [{"name": "Add"}]},
            ],
        }
    )


class FakeEngine(DecompilerEngine):
    """Names every method's two locals ``num0``/``num1`` unless overridden."""

    def __init__(self, bad_listing: str = "") -> None:
        self.bad_listing = bad_listing
        self.generated: Dict[str, List[str]] = {}

    def decompile_project(self, metadata, project_dir, settings, debug_info):
        for source_file, types in files_to_decompile(metadata, settings).items():
            lines = []
            for method in methods_in_file(metadata, types):
                lines.append(f"void {metadata.get_method(method).name}()")
                for order in range(2):
                    variable = LocalVariable(method, order, order)
                    name = debug_info.pre_generate_name(variable) or f"num{order}"
                    name = debug_info.post_generate_name(variable, name)
                    lines.append(f"    int {name} = {order};")
            path = project_dir / source_file
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("\n".join(lines) + "\n", "utf-8")
            self.generated[source_file] = lines
        return "project-id"

    def disassemble_types(self, metadata, types, debug_info):
        names = {metadata.get_type(handle).name for handle in types}
        line = 99 if self.bad_listing in names else 2
        return (
            "  IL_0000: nop\n"
            f"  // sequence point: (line {line}, col 5) to (line {line}, col 10) in source\n"
            "  IL_0001: ret\n"
        )


def _fragment(tmp_path: Path, name: str) -> dict:
    path = tmp_path / "Assembly-CSharp-localnamemap" / "Game" / f"{name}.cs.m.json"
    return json.loads(path.read_text("utf-8"))


def test_first_run_records_generated_names(tmp_path: Path):
    report = DecompilationRun(FakeEngine(), _module(), tmp_path, max_workers=2).run()

    assert report.project == "project-id"
    assert not report.failures
    assert [result.source_file for result in report.files] == ["Game/Inventory.cs", "Game/Player.cs"]
    assert _fragment(tmp_path, "Player") == {
        "Game.Player": {
            "Update": {"0|0": "num0", "1|1": "num1"},
            "void Move(int)": {"0|0": "num0", "1|1": "num1"},
            "void Move(float)": {"0|0": "num0", "1|1": "num1"},
        }
    }
    listing = (tmp_path / "Assembly-CSharp-il" / "Game" / "Player.cs.il").read_text("utf-8")
    assert "  // int n" in listing
    assert "sequence point" not in listing


def test_hand_edited_names_survive_the_next_run(tmp_path: Path):
    DecompilationRun(FakeEngine(), _module(), tmp_path).run()

    fragment = tmp_path / "Assembly-CSharp-localnamemap" / "Game" / "Player.cs.m.json"
    payload = json.loads(fragment.read_text("utf-8"))
    payload["Game.Player"]["void Move(int)"]["0|0"] = "distance"
    fragment.write_text(
        "// renamed by hand\n" + json.dumps(payload, indent=2)[:-2] + ",\n}\n", "utf-8"
    )

    engine = FakeEngine()
    report = DecompilationRun(engine, _module(), tmp_path).run()

    assert report.applied_overrides == 8
    assert report.seeded_methods == 4
    assert "    int distance = 0;" in engine.generated["Game/Player.cs"]
    assert _fragment(tmp_path, "Player")["Game.Player"]["void Move(int)"] == {
        "0|0": "distance",
        "1|1": "num1",
    }
    source = (tmp_path / "Assembly-CSharp" / "Game" / "Player.cs").read_text("utf-8")
    assert "int distance = 0;" in source


def test_one_failing_file_does_not_stop_the_others(tmp_path: Path):
    report = DecompilationRun(FakeEngine(bad_listing="Inventory"), _module(), tmp_path).run()

    assert [result.source_file for result in report.failures] == ["Game/Inventory.cs"]
    assert "line 99" in report.failures[0].errors[0]
    assert report.failures[0].fragment is not None
    assert (tmp_path / "Assembly-CSharp-il" / "Game" / "Player.cs.il").exists()
    assert not (tmp_path / "Assembly-CSharp-il" / "Game" / "Inventory.cs.il").exists()
    assert any("failed: Game/Inventory.cs" in line for line in report.summary_lines())


def test_stale_fragments_are_replaced(tmp_path: Path):
    stale = tmp_path / "Assembly-CSharp-localnamemap" / "Old" / "Removed.cs.m.json"
    stale.parent.mkdir(parents=True)
    stale.write_text(json.dumps({"Old.Removed": {"Run": {"0|0": "x"}}}), "utf-8")

    report = DecompilationRun(FakeEngine(), _module(), tmp_path).run()

    assert report.stale_methods == 1
    assert not stale.exists()


def test_unsupported_signature_aborts_before_writing(tmp_path: Path):
    metadata = ModuleMetadata.from_json(
        {
            "name": "Native",
            "types": [
                {
                    "namespace": "N",
                    "name": "Interop",
                    "methods": [{"name": "Call", "signature": {"parameters": [{"kind": "pinned", "element": "int"}]}}],
                }
            ],
        }
    )

    with pytest.raises(UnsupportedSignatureError):
        DecompilationRun(FakeEngine(), metadata, tmp_path).run()
    assert not (tmp_path / "Native").exists()


class CrashingEngine(FakeEngine):
    def disassemble_types(self, metadata, types, debug_info):
        if any(metadata.get_type(handle).name == "Inventory" for handle in types):
            raise RuntimeError("disassembler crashed")
        return super().disassemble_types(metadata, types, debug_info)


def test_unexpected_engine_errors_are_isolated_per_file(tmp_path: Path, caplog):
    with caplog.at_level(logging.ERROR, logger="dspdecomp.pipeline"):
        report = DecompilationRun(CrashingEngine(), _module(), tmp_path).run()

    assert [result.source_file for result in report.failures] == ["Game/Inventory.cs"]
    assert report.failures[0].errors == ["listing: RuntimeError: disassembler crashed"]
    assert (tmp_path / "Assembly-CSharp-il" / "Game" / "Player.cs.il").exists()
    assert (tmp_path / "Assembly-CSharp-localnamemap" / "Game" / "Inventory.cs.m.json").exists()
    assert "Game/Inventory.cs" in caplog.text
