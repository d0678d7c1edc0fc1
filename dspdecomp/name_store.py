"""Persisted local variable names.

Names are stored next to the decompiled project as *fragments*: one JSON file
per emitted source file, named after it with a fixed suffix
(``Foo/Bar.cs`` -> ``Foo/Bar.cs.m.json``).  Each fragment groups the methods of
the types emitted into that source file::

    {
      "N.Outer": {
        "Run": {
          "0|0": "count",
          "1|2": "buffer"
        },
        "void Foo(int)": {
          "0|1": "index"
        }
      }
    }

The innermost keys are :class:`LocalVariableKey` tokens (declaration order and
storage slot).  Fragments are meant to be edited by hand: comments and
trailing commas are accepted on read, and entries of an unexpected shape are
ignored instead of failing the whole file.
"""

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from . import jsonc
from .identity import MethodIdentity

logger = logging.getLogger(__name__)

FRAGMENT_SUFFIX = ".m.json"


@dataclass(frozen=True, order=True)
class LocalVariableKey:
    """Composite key of a local: declaration order within the method and slot.

    The engine may reuse or reorder slot indices, so the order in which the variable was declared is part of the key.
    """

    declaration_order: int
    slot_index: int

    @property
    def token(self) -> str:
        return f"{self.declaration_order}|{self.slot_index}"

    def __str__(self) -> str:
        return self.token

    @classmethod
    def parse(cls, token: str) -> "LocalVariableKey":
        order, sep, slot = token.partition("|")
        if not sep or not order.isdigit() or not slot.isdigit():
            raise ValueError(f"invalid local variable key: {token!r}")
        return cls(int(order), int(slot))

    @classmethod
    def of(cls, variable: Any) -> "LocalVariableKey":
        """Build the key of an engine variable (``index_in_function``/``index``)."""

        return cls(int(variable.index_in_function), int(variable.index))


@dataclass
class LocalNameMap:
    """Chosen local names of one method."""

    method: MethodIdentity
    locals: Dict[str, str] = field(default_factory=dict)
    fragment: Optional[str] = None


# ---------------------------------------------------------------------------
# compact JSON format
# ---------------------------------------------------------------------------


def to_compact_json(maps: Iterable[LocalNameMap]) -> str:
    """Serialise ``maps`` grouped by type name, then by signature key."""

    grouped: Dict[str, Dict[str, Dict[str, str]]] = {}
    for entry in maps:
        methods = grouped.setdefault(entry.method.type_name, {})
        table = methods.setdefault(entry.method.signature_key, {})
        table.update(entry.locals)
    return json.dumps(grouped, indent=2, ensure_ascii=False) + "\n"


def from_compact_json(text: str, *, fragment: Optional[str] = None) -> List[LocalNameMap]:
    """Parse a fragment produced by :func:`to_compact_json` or edited by hand."""

    data = jsonc.loads(text)
    if not isinstance(data, dict):
        raise ValueError("name map fragment must contain a JSON object")

    maps: List[LocalNameMap] = []
    for type_name, methods in data.items():
        if type_name.startswith("$") or not isinstance(methods, dict):
            logger.debug("ignoring field %r in %s", type_name, fragment or "<string>")
            continue
        for signature_key, table in methods.items():
            if signature_key.startswith("$") or not isinstance(table, dict):
                logger.debug(
                    "ignoring field %r of %s in %s", signature_key, type_name, fragment or "<string>"
                )
                continue
            maps.append(
                LocalNameMap(
                    method=MethodIdentity(type_name, signature_key),
                    locals=_read_locals(table, f"{type_name}.{signature_key}", fragment),
                    fragment=fragment,
                )
            )
    return maps


def _read_locals(
    table: Mapping[str, Any], method_label: str, fragment: Optional[str]
) -> Dict[str, str]:
    locals_: Dict[str, str] = {}
    for token, name in table.items():
        if token.startswith("$"):
            continue
        if not isinstance(name, str) or not name.strip():
            logger.debug("ignoring non-name value for %s in %s", token, method_label)
            continue
        try:
            key = LocalVariableKey.parse(token)
        except ValueError:
            logger.warning(
                "skipping local %r of %s in %s: not a '<order>|<slot>' key",
                token,
                method_label,
                fragment or "<string>",
            )
            continue
        locals_[key.token] = name
    return locals_


# ---------------------------------------------------------------------------
# directory level helpers
# ---------------------------------------------------------------------------


def fragment_path(directory: Path, source_file: str, suffix: str = FRAGMENT_SUFFIX) -> Path:
    """Return where the fragment for ``source_file`` lives under ``directory``."""

    return directory / f"{source_file}{suffix}"


def load_name_store(
    directory: Path,
    suffix: str = FRAGMENT_SUFFIX,
    *,
    skipped: Optional[List[Path]] = None,
) -> List[LocalNameMap]:
    """Collect every fragment below ``directory``.

    Fragments that cannot be read or parsed are logged and skipped (and
    appended to ``skipped`` when given); the names from the remaining
    fragments still apply.
    """

    if not directory.is_dir():
        return []

    maps: List[LocalNameMap] = []
    for path in sorted(directory.rglob(f"*{suffix}")):
        if not path.is_file():
            continue
        relative = path.relative_to(directory).as_posix()
        try:
            maps.extend(from_compact_json(path.read_text("utf-8"), fragment=relative))
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            logger.warning("skipping malformed name map fragment %s: %s", path, exc)
            if skipped is not None:
                skipped.append(path)
    return maps


def write_fragment(
    directory: Path,
    source_file: str,
    maps: Sequence[LocalNameMap],
    suffix: str = FRAGMENT_SUFFIX,
) -> Path:
    """Write the fragment for one emitted source file."""

    path = fragment_path(directory, source_file, suffix)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(to_compact_json(maps), "utf-8")
    return path


def clear_directory(directory: Path) -> None:
    """Delete ``directory`` with its contents and recreate it empty."""

    if directory.exists():
        shutil.rmtree(directory)
    directory.mkdir(parents=True, exist_ok=True)


def save_name_store(
    directory: Path,
    grouped: Mapping[str, Sequence[LocalNameMap]],
    suffix: str = FRAGMENT_SUFFIX,
) -> List[Path]:
    """Replace the contents of ``directory`` with one fragment per source file."""

    clear_directory(directory)
    return [
        write_fragment(directory, source_file, maps, suffix)
        for source_file, maps in grouped.items()
    ]


def group_by_source_file(
    maps: Iterable[LocalNameMap], suffix: str = FRAGMENT_SUFFIX
) -> Dict[str, List[LocalNameMap]]:
    """Group loaded records by the source file their fragment belongs to.

    The result has the shape :func:`save_name_store` expects.  Records that
    were not read from a fragment are skipped.
    """

    grouped: Dict[str, List[LocalNameMap]] = {}
    for entry in maps:
        if not entry.fragment:
            continue
        source_file = entry.fragment
        if source_file.endswith(suffix):
            source_file = source_file[: -len(suffix)]
        grouped.setdefault(source_file, []).append(entry)
    return grouped


def index_by_method(maps: Iterable[LocalNameMap]) -> Dict[MethodIdentity, Dict[str, str]]:
    """Flatten records into one table per method.

    A method present in several fragments (usually after a type moved to a
    different file) is merged, the later fragment winning per local.
    """

    index: Dict[MethodIdentity, Dict[str, str]] = {}
    origins: Dict[MethodIdentity, Optional[str]] = {}
    for entry in maps:
        table = index.get(entry.method)
        if table is None:
            index[entry.method] = dict(entry.locals)
            origins[entry.method] = entry.fragment
            continue
        logger.warning(
            "method %s appears in both %s and %s; merging names",
            entry.method,
            origins[entry.method],
            entry.fragment,
        )
        table.update(entry.locals)
        origins[entry.method] = entry.fragment
    return index


__all__ = [
    "FRAGMENT_SUFFIX",
    "LocalNameMap",
    "LocalVariableKey",
    "clear_directory",
    "fragment_path",
    "from_compact_json",
    "group_by_source_file",
    "index_by_method",
    "load_name_store",
    "save_name_store",
    "to_compact_json",
    "write_fragment",
]
