"""Resource kind registry for handler dispatch."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from saas_provisioner.errors import UnknownResourceTypeError

if TYPE_CHECKING:
    from saas_provisioner.engine.handlers import ResourceHandler
    from saas_provisioner.resources.base import Resource, ResourceOutput

_KIND_RE = re.compile(r"^[A-Za-z][\w-]*::[A-Za-z][\w.-]*$")


@dataclass(frozen=True)
class ResourceKindRegistration:
    kind: str
    model: type[Resource]
    output: type[ResourceOutput]
    handler: ResourceHandler[Any]


class ResourceKindRegistry:
    """Registry mapping kind -> (props model, output model, handler)."""

    def __init__(self) -> None:
        self._registrations: dict[str, ResourceKindRegistration] = {}

    def register(
        self,
        model: type[Resource],
        handler: ResourceHandler[Any],
        *,
        output: type[ResourceOutput],
    ) -> ResourceKindRegistration:
        kind = getattr(model, "kind", None)
        if not isinstance(kind, str) or not kind:
            raise ValueError("Resource model must define a non-empty classvar `kind`")
        if not _KIND_RE.match(kind):
            raise ValueError(f"Resource kind must look like '<provider>::<Type>': {kind}")

        if kind in self._registrations:
            raise ValueError(f"Resource kind already registered: {kind}")

        registration = ResourceKindRegistration(
            kind=kind,
            model=model,
            output=output,
            handler=handler,
        )
        self._registrations[kind] = registration
        return registration

    def get(self, kind: str) -> ResourceKindRegistration:
        try:
            return self._registrations[kind]
        except KeyError as e:
            raise UnknownResourceTypeError(kind) from e

    def kinds(self) -> list[str]:
        return sorted(self._registrations)

    def __contains__(self, kind: object) -> bool:
        return kind in self._registrations
