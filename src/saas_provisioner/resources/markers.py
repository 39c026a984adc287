"""Declarative field markers for resource models.

Two markers attach to Pydantic fields via ``Annotated``:

- ``Immutable``:  the provider refuses to change the field after creation
- ``NaturalKey``: the field identifies the remote object (used by adopt)

Helper functions introspect these markers at runtime, and collect the
implicit dependencies a resource has on other resources' outputs.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel

if TYPE_CHECKING:
    from pydantic.fields import FieldInfo

M = TypeVar("M")


@dataclass(frozen=True, slots=True)
class ResourceRef:
    """Where an output came from: ``(scope, kind, logical_id)``."""

    scope: str
    kind: str
    logical_id: str


# ── Marker dataclasses ──────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Immutable:
    """Field is sent on create but left out of update payloads."""


@dataclass(frozen=True, slots=True)
class NaturalKey:
    """Field names the remote object; an existing object with the same key is a conflict."""


# ── Shared introspection primitives ─────────────────────────────────


def _find_marker(field_info: FieldInfo, marker_type: type[M]) -> M | None:
    """Return the first marker of *marker_type* on a field, or ``None``."""
    return next((m for m in field_info.metadata if isinstance(m, marker_type)), None)


def _iter_marked_fields(
    model_or_cls: Any,
    marker_type: type[M],
) -> list[tuple[str, FieldInfo, M]]:
    """Return ``(field_name, field_info, marker)`` for every field carrying *marker_type*."""
    cls = model_or_cls if isinstance(model_or_cls, type) else type(model_or_cls)
    return [
        (name, fi, marker)
        for name, fi in cls.model_fields.items()
        if (marker := _find_marker(fi, marker_type)) is not None
    ]


# ── Public helpers ──────────────────────────────────────────────────


def collect_immutable_fields(model_or_cls: Any) -> frozenset[str]:
    """Names of fields marked ``Immutable``."""
    return frozenset(name for name, _, _ in _iter_marked_fields(model_or_cls, Immutable))


def natural_key_field(model_or_cls: Any) -> str | None:
    """Name of the field marked ``NaturalKey``, if any."""
    fields = _iter_marked_fields(model_or_cls, NaturalKey)
    return fields[0][0] if fields else None


def _walk_refs(value: Any, refs: list[ResourceRef]) -> None:
    ref = getattr(value, "resource_ref", None)
    if isinstance(ref, ResourceRef):
        if ref not in refs:
            refs.append(ref)
        return
    if isinstance(value, BaseModel):
        for name in type(value).model_fields:
            _walk_refs(getattr(value, name), refs)
    elif isinstance(value, Mapping):
        for v in value.values():
            _walk_refs(v, refs)
    elif isinstance(value, list | tuple | set | frozenset):
        for v in value:
            _walk_refs(v, refs)


def collect_output_refs(resource: BaseModel) -> list[ResourceRef]:
    """Collect refs of bound outputs held anywhere in *resource*'s fields."""
    refs: list[ResourceRef] = []
    for name in type(resource).model_fields:
        _walk_refs(getattr(resource, name), refs)
    return refs
