"""Where decompiled types, name maps and listings end up on disk.

The engine writes each top-level type into ``<Name>.cs``, inside a directory
derived from its namespace; nested types travel with their outermost type.
Name map fragments and reconciled listings mirror that layout in two sibling
directories of the project::

    out/Assembly-CSharp/               decompiled sources
    out/Assembly-CSharp-localnamemap/  <file>.cs.m.json fragments
    out/Assembly-CSharp-il/            <file>.cs.il listings
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List

from .metadata import MethodHandle, ModuleMetadata, TypeDefinition, TypeHandle
from .settings import DecompilerSettings
from .signatures import strip_arity

SOURCE_SUFFIX = ".cs"
LISTING_SUFFIX = ".il"
NAME_MAP_DIR_SUFFIX = "-localnamemap"
LISTING_DIR_SUFFIX = "-il"

_INVALID_FILE_CHARS = set('<>:"/\\|?*')


def clean_file_name(name: str) -> str:
    """Replace characters that are not allowed in file names."""

    cleaned = "".join(
        "-" if char in _INVALID_FILE_CHARS or ord(char) < 32 else char for char in name
    ).strip(" .")
    return cleaned or "-"


def include_type(type_def: TypeDefinition) -> bool:
    """Return whether a top-level type gets its own source file.

    The ``<Module>`` pseudo type and compiler generated types such as
    ``<PrivateImplementationDetails>`` are not emitted.
    """

    return not type_def.is_nested and not type_def.name.startswith("<")


def source_file_for(type_def: TypeDefinition, settings: DecompilerSettings) -> str:
    """Return the project relative, ``/`` separated source file of a type."""

    file_name = clean_file_name(strip_arity(type_def.name)) + SOURCE_SUFFIX
    if not type_def.namespace:
        return file_name
    if settings.use_nested_directories_for_namespaces:
        directory = "/".join(clean_file_name(part) for part in type_def.namespace.split("."))
    else:
        directory = clean_file_name(type_def.namespace)
    return f"{directory}/{file_name}"


def files_to_decompile(
    metadata: ModuleMetadata, settings: DecompilerSettings
) -> Dict[str, List[TypeHandle]]:
    """Group the emitted top-level types by source file.

    File names are compared case-insensitively; the first spelling wins.
    """

    files: Dict[str, List[TypeHandle]] = {}
    spelling: Dict[str, str] = {}
    for type_def in metadata.top_level_types():
        if not include_type(type_def):
            continue
        path = source_file_for(type_def, settings)
        key = path.lower()
        display = spelling.setdefault(key, path)
        files.setdefault(display, []).append(type_def.handle)
    return files


def methods_in_file(metadata: ModuleMetadata, types: List[TypeHandle]) -> List[MethodHandle]:
    """Return the methods of ``types`` and of the types nested in them."""

    methods: List[MethodHandle] = []
    for handle in types:
        for type_def in [metadata.get_type(handle), *metadata.nested_types_of(handle)]:
            methods.extend(type_def.methods)
    return methods


def name_map_directory(project_dir: Path) -> Path:
    return project_dir.with_name(project_dir.name + NAME_MAP_DIR_SUFFIX)


def listing_directory(project_dir: Path) -> Path:
    return project_dir.with_name(project_dir.name + LISTING_DIR_SUFFIX)


def listing_path(project_dir: Path, source_file: str) -> Path:
    return listing_directory(project_dir) / f"{source_file}{LISTING_SUFFIX}"


__all__ = [
    "LISTING_SUFFIX",
    "SOURCE_SUFFIX",
    "clean_file_name",
    "files_to_decompile",
    "include_type",
    "listing_directory",
    "listing_path",
    "methods_in_file",
    "name_map_directory",
    "source_file_for",
]
