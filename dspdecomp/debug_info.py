"""Debug information providers handed to the decompilation engine.

The engine asks a debug information provider for sequence points and local
variable names while it decompiles and disassembles.  A module may or may not
ship real debug information, so :class:`WrappedDebugInfoProvider` puts a
uniform face on both cases and layers persisted local names on top of
whatever the underlying provider knows.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, List, Mapping, Optional, Sequence

from .metadata import MethodHandle

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from .naming_hook import RecordNamesHook


@dataclass(frozen=True)
class SequencePoint:
    """Maps an instruction offset to a span of the original source."""

    offset: int
    start_line: int
    start_column: int
    end_line: int
    end_column: int
    document: str = ""

    @property
    def is_hidden(self) -> bool:
        return self.start_line == 0xFEEFEE


@dataclass(frozen=True)
class Variable:
    index: int
    name: str


class DebugInfoProvider:
    """Interface the engine queries for debug information."""

    description = "debug info"
    source_file_name = ""

    def get_sequence_points(self, method: MethodHandle) -> List[SequencePoint]:
        raise NotImplementedError

    def get_variables(self, method: MethodHandle) -> List[Variable]:
        raise NotImplementedError

    def try_get_name(self, method: MethodHandle, index: int) -> Optional[str]:
        raise NotImplementedError

    def try_get_extra_type_info(self, method: MethodHandle, index: int) -> Optional[Any]:
        raise NotImplementedError


class EmptyDebugInfoProvider(DebugInfoProvider):
    """Stand-in for modules without debug information."""

    description = "EmptyDebugInfoProvider"

    def get_sequence_points(self, method: MethodHandle) -> List[SequencePoint]:
        return []

    def get_variables(self, method: MethodHandle) -> List[Variable]:
        return []

    def try_get_name(self, method: MethodHandle, index: int) -> Optional[str]:
        return None

    def try_get_extra_type_info(self, method: MethodHandle, index: int) -> Optional[Any]:
        return None


EMPTY_DEBUG_INFO = EmptyDebugInfoProvider()


class WrappedDebugInfoProvider(DebugInfoProvider):
    """Forward to an optional base provider, overriding local names.

    Overrides are looked up in ``slot_names`` first (one name per slot index,
    blank entries meaning "no override") and then in the naming hook's
    persisted names.  The wrapper also forwards the engine's naming callbacks
    to the hook so it can be handed to the engine as a single object.
    """

    description = "WrappedDebugInfoProvider"

    def __init__(
        self,
        base: Optional[DebugInfoProvider] = None,
        hook: Optional["RecordNamesHook"] = None,
        slot_names: Optional[Mapping[MethodHandle, Sequence[str]]] = None,
    ) -> None:
        self._base = base
        self.hook = hook
        self._slot_names = dict(slot_names or {})

    @property
    def base(self) -> DebugInfoProvider:
        return self._base or EMPTY_DEBUG_INFO

    @property
    def source_file_name(self) -> str:  # type: ignore[override]
        return self.base.source_file_name

    def get_sequence_points(self, method: MethodHandle) -> List[SequencePoint]:
        return self.base.get_sequence_points(method)

    def get_variables(self, method: MethodHandle) -> List[Variable]:
        variables = sorted(self.base.get_variables(method), key=lambda variable: variable.index)
        result: List[Variable] = []
        for variable in variables:
            override = self._name_override(method, variable.index)
            result.append(Variable(variable.index, override) if override else variable)
        return result

    def try_get_name(self, method: MethodHandle, index: int) -> Optional[str]:
        override = self._name_override(method, index)
        if override:
            return override
        return self.base.try_get_name(method, index)

    def try_get_extra_type_info(self, method: MethodHandle, index: int) -> Optional[Any]:
        return self.base.try_get_extra_type_info(method, index)

    def pre_generate_name(self, variable: Any) -> Optional[str]:
        if self.hook is None:
            return None
        return self.hook.pre_generate_name(variable)

    def post_generate_name(self, variable: Any, proposed_name: str) -> str:
        if self.hook is None:
            return proposed_name
        return self.hook.post_generate_name(variable, proposed_name)

    def _name_override(self, method: MethodHandle, index: int) -> Optional[str]:
        names = self._slot_names.get(method)
        if names is not None and 0 <= index < len(names) and names[index].strip():
            return names[index]
        if self.hook is not None:
            name = self.hook.override_for_slot(method, index)
            if name and name.strip():
                return name
        return None


__all__ = [
    "DebugInfoProvider",
    "EMPTY_DEBUG_INFO",
    "EmptyDebugInfoProvider",
    "SequencePoint",
    "Variable",
    "WrappedDebugInfoProvider",
]
