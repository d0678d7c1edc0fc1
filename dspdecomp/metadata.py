"""Declared-metadata model consumed by the identity builder.

The external decompilation engine owns the PE reader.  What this package needs
from it is small: the declared types (with their nesting and generic arity),
the declared methods of each type and the decoded signature of every method.
The classes below capture exactly that in an engine independent way.  Handles
are plain integers (metadata tokens when the data comes from a real module)
and are only ever used as in-memory keys; nothing derived from them is
persisted.

Metadata can also be loaded from a JSON dump (see :meth:`ModuleMetadata.load`)
which keeps the command line tools and the tests independent of any binary
reader.  The dump format is intentionally close to what a metadata reader
reports::

    {
      "types": [
        {
          "namespace": "N",
          "name": "Outer`1",
          "generic_parameters": 1,
          "methods": [
            {"name": "Foo", "signature": {"return": "void", "parameters": ["int"]}}
          ]
        }
      ]
    }

Signature types are either strings (a primitive such as ``"int"`` or
``"Int32"``, or a dotted type name) or objects tagged with ``"kind"``.
"""

from __future__ import annotations

import json
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Set, Tuple

TypeHandle = int
MethodHandle = int

TYPE_DEF_TOKEN_BASE = 0x02000000
METHOD_DEF_TOKEN_BASE = 0x06000000

#: C# keywords for the primitive type codes a signature blob can contain.
PRIMITIVE_KEYWORDS: Dict[str, str] = {
    "Boolean": "bool",
    "Byte": "byte",
    "Char": "char",
    "Double": "double",
    "Int16": "short",
    "Int32": "int",
    "Int64": "long",
    "IntPtr": "nint",
    "Object": "object",
    "SByte": "sbyte",
    "Single": "float",
    "String": "string",
    "TypedReference": "typedref",
    "UInt16": "ushort",
    "UInt32": "uint",
    "UInt64": "ulong",
    "UIntPtr": "nuint",
    "Void": "void",
}

_KEYWORD_CODES = {keyword: code for code, keyword in PRIMITIVE_KEYWORDS.items()}


# ---------------------------------------------------------------------------
# signature type nodes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SignatureType:
    """Base class for all decoded signature types."""

    pass


@dataclass(frozen=True)
class PrimitiveType(SignatureType):
    """A primitive type identified by its CLR type code (``Int32``...)."""

    code: str


@dataclass(frozen=True)
class NamedType(SignatureType):
    """A type definition or reference.

    ``generic_parameter_count`` is the total CLR arity of the type, including
    the parameters it inherits from ``declaring_type`` when nested.
    """

    namespace: str
    name: str
    generic_parameter_count: int = 0
    declaring_type: Optional["NamedType"] = None

    @property
    def own_generic_parameter_count(self) -> int:
        inherited = self.declaring_type.generic_parameter_count if self.declaring_type else 0
        return max(0, self.generic_parameter_count - inherited)


@dataclass(frozen=True)
class SZArrayType(SignatureType):
    """Single dimensional, zero based array (``T[]``)."""

    element: SignatureType


@dataclass(frozen=True)
class ArrayType(SignatureType):
    """General array with an explicit rank (``T[,]``)."""

    element: SignatureType
    rank: int


@dataclass(frozen=True)
class ByReferenceType(SignatureType):
    element: SignatureType


@dataclass(frozen=True)
class PointerType(SignatureType):
    element: SignatureType


@dataclass(frozen=True)
class GenericInstantiation(SignatureType):
    """A generic type applied to concrete arguments."""

    generic_type: SignatureType
    arguments: Tuple[SignatureType, ...]


@dataclass(frozen=True)
class GenericTypeParameter(SignatureType):
    index: int


@dataclass(frozen=True)
class GenericMethodParameter(SignatureType):
    index: int


@dataclass(frozen=True)
class FunctionPointerType(SignatureType):
    signature: "MethodSignature"


@dataclass(frozen=True)
class ModifiedType(SignatureType):
    """A type carrying a ``modreq``/``modopt`` custom modifier."""

    modifier: SignatureType
    unmodified: SignatureType
    is_required: bool


@dataclass(frozen=True)
class PinnedType(SignatureType):
    element: SignatureType


@dataclass(frozen=True)
class MethodSignature:
    """Decoded method signature."""

    return_type: SignatureType
    parameter_types: Tuple[SignatureType, ...] = ()
    generic_parameter_count: int = 0


# ---------------------------------------------------------------------------
# definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MethodDefinition:
    handle: MethodHandle
    name: str
    signature: MethodSignature
    declaring_type: TypeHandle


@dataclass(frozen=True)
class TypeDefinition:
    """A declared type.

    ``generic_parameter_count`` follows the CLR convention: nested types
    repeat the generic parameters of their enclosing types.
    """

    handle: TypeHandle
    namespace: str
    name: str
    generic_parameter_count: int = 0
    declaring_type: Optional[TypeHandle] = None
    methods: Tuple[MethodHandle, ...] = ()

    @property
    def is_nested(self) -> bool:
        return self.declaring_type is not None


class ModuleMetadata:
    """Read-only view over the declared types and methods of one module."""

    def __init__(
        self,
        types: Iterable[TypeDefinition],
        methods: Iterable[MethodDefinition],
        *,
        name: str = "",
    ) -> None:
        self.name = name
        self._types: Dict[TypeHandle, TypeDefinition] = {}
        for type_def in types:
            if type_def.handle in self._types:
                raise ValueError(f"duplicate type handle 0x{type_def.handle:08X}")
            self._types[type_def.handle] = type_def
        self._methods: Dict[MethodHandle, MethodDefinition] = {}
        for method in methods:
            if method.handle in self._methods:
                raise ValueError(f"duplicate method handle 0x{method.handle:08X}")
            if method.declaring_type not in self._types:
                raise ValueError(
                    f"method {method.name} references unknown type 0x{method.declaring_type:08X}"
                )
            self._methods[method.handle] = method
        for type_def in self._types.values():
            if type_def.declaring_type is not None and type_def.declaring_type not in self._types:
                raise ValueError(f"type {type_def.name} has an unknown declaring type")
            for handle in type_def.methods:
                method = self._methods.get(handle)
                if method is None or method.declaring_type != type_def.handle:
                    raise ValueError(
                        f"type {type_def.name} lists method 0x{handle:08X} it does not declare"
                    )
        self._nested: Dict[TypeHandle, List[TypeHandle]] = {}
        for type_def in self._types.values():
            if type_def.declaring_type is not None:
                self._nested.setdefault(type_def.declaring_type, []).append(type_def.handle)
        self._check_nesting()

    # ------------------------------------------------------------------
    # lookup helpers
    # ------------------------------------------------------------------
    def get_type(self, handle: TypeHandle) -> TypeDefinition:
        return self._types[handle]

    def get_method(self, handle: MethodHandle) -> MethodDefinition:
        return self._methods[handle]

    @property
    def type_definitions(self) -> Iterator[TypeDefinition]:
        return iter(self._types.values())

    @property
    def method_definitions(self) -> Iterator[MethodDefinition]:
        return iter(self._methods.values())

    def methods_of(self, handle: TypeHandle) -> List[MethodDefinition]:
        return [self._methods[method] for method in self._types[handle].methods]

    def top_level_types(self) -> List[TypeDefinition]:
        return [type_def for type_def in self._types.values() if not type_def.is_nested]

    def nested_types_of(self, handle: TypeHandle) -> List[TypeDefinition]:
        """Return every type nested (transitively) inside ``handle``."""

        nested: List[TypeDefinition] = []
        pending = deque([handle])
        while pending:
            for child in self._nested.get(pending.popleft(), ()):
                nested.append(self._types[child])
                pending.append(child)
        return nested

    def declaring_chain(self, handle: TypeHandle) -> List[TypeDefinition]:
        """Return the nesting chain from the outermost type down to ``handle``."""

        chain: List[TypeDefinition] = []
        current: Optional[TypeHandle] = handle
        while current is not None:
            type_def = self._types[current]
            chain.append(type_def)
            current = type_def.declaring_type
        chain.reverse()
        return chain

    def _check_nesting(self) -> None:
        resolved: Set[TypeHandle] = set()
        for handle in self._types:
            visited: List[TypeHandle] = []
            current: Optional[TypeHandle] = handle
            while current is not None and current not in resolved:
                if current in visited:
                    names = " -> ".join(self._types[entry].name for entry in visited)
                    raise ValueError(f"cyclic type nesting: {names}")
                visited.append(current)
                current = self._types[current].declaring_type
            resolved.update(visited)

    # ------------------------------------------------------------------
    # JSON loading
    # ------------------------------------------------------------------
    @classmethod
    def load(cls, path: Path) -> "ModuleMetadata":
        """Load a metadata dump written as JSON."""

        payload = json.loads(path.read_text("utf-8"))
        return cls.from_json(payload, name=path.stem)

    @classmethod
    def from_json(cls, payload: Mapping[str, Any], *, name: str = "") -> "ModuleMetadata":
        entries = payload.get("types")
        if not isinstance(entries, list):
            raise ValueError("metadata dump must contain a 'types' list")

        types: List[TypeDefinition] = []
        methods: List[MethodDefinition] = []
        handles_by_index: Dict[int, TypeHandle] = {}
        next_method = METHOD_DEF_TOKEN_BASE + 1

        for position, entry in enumerate(entries):
            if not isinstance(entry, Mapping):
                raise ValueError(f"type entry {position} must be a JSON object")
            handles_by_index[position] = int(entry.get("handle", TYPE_DEF_TOKEN_BASE + position + 1))

        for position, entry in enumerate(entries):
            handle = handles_by_index[position]
            # declaring_type is the position of the enclosing entry in the list
            declaring = entry.get("declaring_type")
            declaring_handle: Optional[TypeHandle] = None
            if declaring is not None:
                if declaring not in handles_by_index or declaring == position:
                    raise ValueError(f"type entry {position} has an invalid declaring_type")
                declaring_handle = handles_by_index[declaring]

            method_handles: List[MethodHandle] = []
            for method_entry in entry.get("methods", []):
                method_handle = int(method_entry.get("handle", next_method))
                next_method = max(next_method, method_handle) + 1
                methods.append(
                    MethodDefinition(
                        handle=method_handle,
                        name=str(method_entry["name"]),
                        signature=_signature_from_json(method_entry.get("signature", {})),
                        declaring_type=handle,
                    )
                )
                method_handles.append(method_handle)

            types.append(
                TypeDefinition(
                    handle=handle,
                    namespace=str(entry.get("namespace", "")),
                    name=str(entry["name"]),
                    generic_parameter_count=int(entry.get("generic_parameters", 0)),
                    declaring_type=declaring_handle,
                    methods=tuple(method_handles),
                )
            )

        return cls(types, methods, name=name or str(payload.get("name", "")))


def _signature_from_json(entry: Mapping[str, Any]) -> MethodSignature:
    return MethodSignature(
        return_type=signature_type_from_json(entry.get("return", "void")),
        parameter_types=tuple(
            signature_type_from_json(item) for item in entry.get("parameters", [])
        ),
        generic_parameter_count=int(entry.get("generic_parameters", 0)),
    )


def signature_type_from_json(entry: Any) -> SignatureType:
    """Decode one signature type from its JSON representation."""

    if isinstance(entry, str):
        if entry in PRIMITIVE_KEYWORDS:
            return PrimitiveType(entry)
        if entry in _KEYWORD_CODES:
            return PrimitiveType(_KEYWORD_CODES[entry])
        namespace, _, name = entry.rpartition(".")
        return NamedType(namespace, name)
    if not isinstance(entry, Mapping):
        raise ValueError(f"unsupported signature type entry: {entry!r}")

    kind = entry.get("kind")
    if kind == "primitive":
        return PrimitiveType(str(entry["code"]))
    if kind == "named":
        declaring = entry.get("declaring_type")
        declaring_type = signature_type_from_json(declaring) if declaring else None
        if declaring_type is not None and not isinstance(declaring_type, NamedType):
            raise ValueError("declaring_type must describe a named type")
        return NamedType(
            namespace=str(entry.get("namespace", "")),
            name=str(entry["name"]),
            generic_parameter_count=int(entry.get("generic_parameters", 0)),
            declaring_type=declaring_type,
        )
    if kind == "szarray":
        return SZArrayType(signature_type_from_json(entry["element"]))
    if kind == "array":
        return ArrayType(signature_type_from_json(entry["element"]), int(entry.get("rank", 1)))
    if kind == "byref":
        return ByReferenceType(signature_type_from_json(entry["element"]))
    if kind == "pointer":
        return PointerType(signature_type_from_json(entry["element"]))
    if kind == "generic":
        return GenericInstantiation(
            signature_type_from_json(entry["type"]),
            tuple(signature_type_from_json(arg) for arg in entry.get("arguments", [])),
        )
    if kind == "type_parameter":
        return GenericTypeParameter(int(entry["index"]))
    if kind == "method_parameter":
        return GenericMethodParameter(int(entry["index"]))
    if kind == "function_pointer":
        return FunctionPointerType(_signature_from_json(entry.get("signature", {})))
    if kind == "modified":
        return ModifiedType(
            modifier=signature_type_from_json(entry["modifier"]),
            unmodified=signature_type_from_json(entry["type"]),
            is_required=bool(entry.get("required", True)),
        )
    if kind == "pinned":
        return PinnedType(signature_type_from_json(entry["element"]))
    raise ValueError(f"unknown signature type kind: {kind!r}")


__all__ = [
    "ArrayType",
    "ByReferenceType",
    "FunctionPointerType",
    "GenericInstantiation",
    "GenericMethodParameter",
    "GenericTypeParameter",
    "MethodDefinition",
    "MethodHandle",
    "MethodSignature",
    "ModifiedType",
    "ModuleMetadata",
    "NamedType",
    "PinnedType",
    "PointerType",
    "PRIMITIVE_KEYWORDS",
    "PrimitiveType",
    "SZArrayType",
    "SignatureType",
    "TypeDefinition",
    "TypeHandle",
    "signature_type_from_json",
]
