"""
Property values: literals, references to other resources, and interpolations.

Plain Python scalars, lists and dicts placed in a resource's properties are
treated as literals; ``Reference``, ``Interpolation`` and ``ContextRef`` may be
nested anywhere inside them.
"""

from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Tuple

STRUCTURAL_ATTRIBUTES = (None, "Ref", "Id")


@dataclass(frozen=True)
class Literal:
    """A concrete value. ``sensitive`` literals never show up in logs or state."""
    value: Any
    sensitive: bool = False

    def __repr__(self) -> str:
        if self.sensitive:
            return "Literal([REDACTED], sensitive=True)"
        return f"Literal({self.value!r})"


@dataclass(frozen=True)
class Reference:
    """
    Pointer to another resource's identifier or runtime attribute.

    ``attribute`` of ``None`` (or ``"Ref"``) targets the identifier assigned by
    the backend at create time. Any other attribute is only known once the
    target is ready.
    """
    target_id: str
    attribute: Optional[str] = None

    @property
    def structural(self) -> bool:
        return self.attribute in STRUCTURAL_ATTRIBUTES

    def __str__(self) -> str:
        if self.structural:
            return f"${{{self.target_id}}}"
        return f"${{{self.target_id}.{self.attribute}}}"


@dataclass(frozen=True)
class ContextRef:
    """Pseudo-reference to a DeployContext field such as ``region`` or ``account``."""
    name: str

    def __str__(self) -> str:
        return f"${{ctx:{self.name}}}"


@dataclass(frozen=True)
class Interpolation:
    """Ordered parts concatenated after each one is resolved."""
    parts: Tuple[Any, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        return "".join(str(p.value) if isinstance(p, Literal) else str(p) for p in self.parts)


def ref(target_id: str) -> Reference:
    return Reference(target_id)


def attr(target_id: str, attribute: str) -> Reference:
    return Reference(target_id, attribute)


def ctx(name: str) -> ContextRef:
    return ContextRef(name)


def join(*parts: Any) -> Interpolation:
    return Interpolation(tuple(parts))


def sensitive(value: Any) -> Literal:
    return Literal(value, sensitive=True)


def iter_references(value: Any) -> Iterator[Reference]:
    """Yield every Reference nested inside a value, depth first."""
    if isinstance(value, Reference):
        yield value
    elif isinstance(value, Literal):
        yield from iter_references(value.value)
    elif isinstance(value, Interpolation):
        for part in value.parts:
            yield from iter_references(part)
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)


def contains_sensitive(value: Any) -> bool:
    if isinstance(value, Literal):
        return value.sensitive or contains_sensitive(value.value)
    if isinstance(value, Interpolation):
        return any(contains_sensitive(p) for p in value.parts)
    if isinstance(value, dict):
        return any(contains_sensitive(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(contains_sensitive(v) for v in value)
    return False
