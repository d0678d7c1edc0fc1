"""Decompiler options persisted between runs.

The settings file is a flat JSON object of boolean options, kept next to the
output directory (``decompilerSettings.json``) so a run can be repeated with
the same switches.  Only the options listed in :data:`BOOLEAN_OPTIONS` are
read or written; anything else in the file is reported and ignored.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from . import jsonc

logger = logging.getLogger(__name__)

SETTINGS_FILE_NAME = "decompilerSettings.json"

LANGUAGE_VERSIONS = (
    "CSharp1",
    "CSharp2",
    "CSharp3",
    "CSharp4",
    "CSharp5",
    "CSharp6",
    "CSharp7",
    "CSharp7_1",
    "CSharp7_2",
    "CSharp7_3",
    "CSharp8_0",
    "CSharp9_0",
    "CSharp10_0",
    "Preview",
    "Latest",
)

BOOLEAN_OPTIONS = (
    "throw_on_assembly_resolve_errors",
    "use_sdk_style_project_format",
    "use_nested_directories_for_namespaces",
    "show_sequence_points",
    "remove_dead_code",
    "always_use_braces",
    "use_debug_symbols",
)


@dataclass
class DecompilerSettings:
    """Options forwarded to the decompilation engine."""

    throw_on_assembly_resolve_errors: bool = False
    use_sdk_style_project_format: bool = True
    use_nested_directories_for_namespaces: bool = True
    show_sequence_points: bool = True
    remove_dead_code: bool = False
    always_use_braces: bool = True
    use_debug_symbols: bool = True
    language_version: str = "CSharp7_3"

    def to_json(self) -> Dict[str, bool]:
        return {name: getattr(self, name) for name in BOOLEAN_OPTIONS}

    def apply(self, payload: Mapping[str, Any], *, source: str = "<settings>") -> None:
        """Apply the known boolean options of ``payload``."""

        for key, value in payload.items():
            if key not in BOOLEAN_OPTIONS:
                logger.warning("ignoring unknown decompiler option %r in %s", key, source)
                continue
            if not isinstance(value, bool):
                logger.warning("ignoring non-boolean value for %r in %s", key, source)
                continue
            setattr(self, key, value)

    def set_language_version(self, version: str) -> None:
        if version not in LANGUAGE_VERSIONS:
            raise ValueError(f"unknown C# language version: {version!r}")
        self.language_version = version

    @classmethod
    def load(cls, path: Path) -> "DecompilerSettings":
        settings = cls()
        payload = jsonc.loads(path.read_text("utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"{path} must contain a JSON object")
        settings.apply(payload, source=str(path))
        return settings

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_json(), indent=2) + "\n", "utf-8")

    @classmethod
    def resolve(
        cls,
        path: Path,
        *,
        language_version: Optional[str] = None,
    ) -> "DecompilerSettings":
        """Load ``path`` when it exists, apply the language version, save back."""

        settings = cls.load(path) if path.exists() else cls()
        if language_version is not None:
            settings.set_language_version(language_version)
        settings.save(path)
        return settings


__all__ = ["BOOLEAN_OPTIONS", "DecompilerSettings", "LANGUAGE_VERSIONS", "SETTINGS_FILE_NAME"]
