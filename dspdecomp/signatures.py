"""Minimal textual rendering of decoded method signatures.

Overloaded methods are disambiguated by a signature string such as
``void Foo(int)`` or ``List<T> Map<T,T2>(T[],Func<T, T2>)``.  The rendering is
short: namespaces are dropped, primitives use their C# keywords
and generic parameters are named positionally.  The strings end up as keys in
hand-edited name map files, so they favour readability over round-tripping.

A handful of signature constructs have no sensible short rendering.  A guessed key would attach stored names to the wrong
method, so the renderer rejects them with :class:`UnsupportedSignatureError`.
"""

from __future__ import annotations

from typing import List

from .metadata import (
    PRIMITIVE_KEYWORDS,
    ArrayType,
    ByReferenceType,
    FunctionPointerType,
    GenericInstantiation,
    GenericMethodParameter,
    GenericTypeParameter,
    MethodSignature,
    ModifiedType,
    NamedType,
    PinnedType,
    PointerType,
    PrimitiveType,
    SignatureType,
    SZArrayType,
)

UNSUPPORTED_PRIMITIVES = frozenset({"TypedReference"})


class UnsupportedSignatureError(ValueError):
    """Raised when a signature uses a construct without a stable rendering."""


def generic_parameter_name(index: int) -> str:
    """Return the positional name of a generic parameter: ``T``, ``T2``, ..."""

    return "T" if index == 0 else f"T{index + 1}"


def generic_suffix(count: int) -> str:
    """Return ``<T>``, ``<T,T2>``... for ``count`` declared generic parameters."""

    if count <= 0:
        return ""
    return "<" + ",".join(generic_parameter_name(index) for index in range(count)) + ">"


def strip_arity(name: str) -> str:
    """Drop the CLR arity marker from a metadata name (``List`1`` -> ``List``)."""

    return name.split("`", 1)[0]


class SignatureRenderer:
    """Render :class:`~dspdecomp.metadata.SignatureType` trees as short strings."""

    def render(self, signature_type: SignatureType) -> str:
        if isinstance(signature_type, PrimitiveType):
            return self._render_primitive(signature_type)
        if isinstance(signature_type, NamedType):
            return self.render_named(signature_type)
        if isinstance(signature_type, SZArrayType):
            return f"{self.render(signature_type.element)}[]"
        if isinstance(signature_type, ArrayType):
            commas = "," * max(0, signature_type.rank - 1)
            return f"{self.render(signature_type.element)}[{commas}]"
        if isinstance(signature_type, ByReferenceType):
            return f"{self.render(signature_type.element)}&"
        if isinstance(signature_type, PointerType):
            return f"{self.render(signature_type.element)}*"
        if isinstance(signature_type, GenericInstantiation):
            arguments = ", ".join(self.render(arg) for arg in signature_type.arguments)
            return f"{self.render(signature_type.generic_type)}<{arguments}>"
        if isinstance(signature_type, (GenericTypeParameter, GenericMethodParameter)):
            return generic_parameter_name(signature_type.index)
        if isinstance(signature_type, FunctionPointerType):
            raise UnsupportedSignatureError("function pointer types cannot be rendered")
        if isinstance(signature_type, ModifiedType):
            kind = "required" if signature_type.is_required else "optional"
            raise UnsupportedSignatureError(f"{kind} custom modifiers cannot be rendered")
        if isinstance(signature_type, PinnedType):
            raise UnsupportedSignatureError("pinned types cannot be rendered")
        raise TypeError(f"unsupported signature type node: {type(signature_type)!r}")

    def render_named(self, named: NamedType) -> str:
        """Render a type name without its namespace.

        Nested types become dotted segments from the outermost type inwards,
        each carrying the generic parameters it declares itself.
        """

        if named.declaring_type is None:
            return strip_arity(named.name)

        chain: List[NamedType] = []
        current = named
        while current is not None:
            chain.append(current)
            current = current.declaring_type
        chain.reverse()
        return ".".join(
            strip_arity(segment.name) + generic_suffix(segment.own_generic_parameter_count)
            for segment in chain
        )

    def render_method(self, name: str, signature: MethodSignature) -> str:
        """Return ``<return> <name><generics>(<param>,<param>)``."""

        return_type = self.render(signature.return_type)
        parameters = ",".join(self.render(param) for param in signature.parameter_types)
        return f"{return_type} {name}{generic_suffix(signature.generic_parameter_count)}({parameters})"

    @staticmethod
    def _render_primitive(primitive: PrimitiveType) -> str:
        if primitive.code in UNSUPPORTED_PRIMITIVES:
            raise UnsupportedSignatureError(f"{primitive.code} cannot be rendered")
        keyword = PRIMITIVE_KEYWORDS.get(primitive.code)
        if keyword is None:
            raise ValueError(f"unknown primitive type code: {primitive.code!r}")
        return keyword


__all__ = [
    "SignatureRenderer",
    "UnsupportedSignatureError",
    "generic_parameter_name",
    "generic_suffix",
    "strip_arity",
]
