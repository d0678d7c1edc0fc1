"""Stable method identities.

The decompilation engine refers to methods by metadata handle and to locals by
indices it is free to renumber.  Names chosen by a user must survive those
renumberings, so every method is keyed by a :class:`MethodIdentity` derived
purely from declared metadata:

* the fully qualified name of the declaring type, with nested types written as
  dotted segments that each carry their own generic parameters
  (``N.Outer<T>.Inner<T>``),
* the bare method name, or a minimal signature such as ``void Foo(int)`` when
  another method of the same type shares that name.

Keys stay short for the common case and only grow where overloads force it,
which keeps the persisted name maps readable in a diff.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Dict

from .metadata import MethodHandle, ModuleMetadata, TypeHandle
from .signatures import SignatureRenderer, UnsupportedSignatureError, generic_suffix, strip_arity


@dataclass(frozen=True)
class MethodIdentity:
    """Run independent identity of a declared method."""

    type_name: str
    signature_key: str

    def __str__(self) -> str:
        return f"{self.type_name}.{self.signature_key}"


def type_full_name(metadata: ModuleMetadata, handle: TypeHandle) -> str:
    """Return the namespace qualified, dotted name of a declared type."""

    chain = metadata.declaring_chain(handle)
    segments = []
    inherited = 0
    for type_def in chain:
        own = max(0, type_def.generic_parameter_count - inherited)
        segments.append(strip_arity(type_def.name) + generic_suffix(own))
        inherited = max(inherited, type_def.generic_parameter_count)
    name = ".".join(segments)
    namespace = chain[0].namespace
    return f"{namespace}.{name}" if namespace else name


def build_method_identities(
    metadata: ModuleMetadata,
    *,
    renderer: SignatureRenderer | None = None,
) -> Dict[MethodHandle, MethodIdentity]:
    """Assign a :class:`MethodIdentity` to every declared method.

    Every signature is rendered, even for methods that end up keyed by their
    bare name, so an unsupported construct anywhere in the module aborts the
    run with :class:`UnsupportedSignatureError` instead of surfacing later.
    """

    renderer = renderer or SignatureRenderer()
    identities: Dict[MethodHandle, MethodIdentity] = {}
    seen: Dict[MethodIdentity, MethodHandle] = {}

    for type_def in metadata.type_definitions:
        type_name = type_full_name(metadata, type_def.handle)
        methods = metadata.methods_of(type_def.handle)
        name_counts = Counter(method.name for method in methods)

        for method in methods:
            try:
                rendered = renderer.render_method(method.name, method.signature)
            except UnsupportedSignatureError as exc:
                raise UnsupportedSignatureError(
                    f"cannot build an identity for {type_name}.{method.name}: {exc}"
                ) from exc

            key = rendered if name_counts[method.name] > 1 else method.name
            identity = MethodIdentity(type_name, key)
            if identity in seen:
                # two overloads that only differ in constructs the minimal
                # rendering drops (namespaces, modifiers) would share a key
                raise UnsupportedSignatureError(
                    f"methods 0x{seen[identity]:08X} and 0x{method.handle:08X} "
                    f"both map to identity {identity}"
                )
            seen[identity] = method.handle
            identities[method.handle] = identity

    return identities


__all__ = ["MethodIdentity", "build_method_identities", "type_full_name"]
