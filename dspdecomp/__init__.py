"""Persistent local variable names for decompiled .NET assemblies."""

from .debug_info import EmptyDebugInfoProvider, SequencePoint, Variable, WrappedDebugInfoProvider
from .identity import MethodIdentity, build_method_identities, type_full_name
from .metadata import ModuleMetadata
from .name_store import (
    LocalNameMap,
    LocalVariableKey,
    from_compact_json,
    load_name_store,
    save_name_store,
    to_compact_json,
)
from .naming_hook import HookState, LocalVariable, RecordNamesHook
from .pipeline import DecompilationRun, DecompilerEngine, RunReport
from .sequence_points import MissingSourceLineError, SequencePointSpan, reconcile
from .settings import DecompilerSettings
from .signatures import UnsupportedSignatureError

__all__ = [
    "DecompilationRun",
    "DecompilerEngine",
    "DecompilerSettings",
    "EmptyDebugInfoProvider",
    "HookState",
    "LocalNameMap",
    "LocalVariable",
    "LocalVariableKey",
    "MethodIdentity",
    "MissingSourceLineError",
    "ModuleMetadata",
    "RecordNamesHook",
    "RunReport",
    "SequencePoint",
    "SequencePointSpan",
    "UnsupportedSignatureError",
    "Variable",
    "WrappedDebugInfoProvider",
    "build_method_identities",
    "from_compact_json",
    "load_name_store",
    "reconcile",
    "save_name_store",
    "to_compact_json",
    "type_full_name",
]
