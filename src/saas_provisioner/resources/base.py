"""Base classes for resource props and outputs."""

from typing import ClassVar, Self

from pydantic import BaseModel, ConfigDict, PrivateAttr

from saas_provisioner.resources.markers import ResourceRef, collect_output_refs


class Resource(BaseModel):
    """Base class for the declared props of one resource kind.

    Resources are pure data - they define the desired state.
    Handlers know how to create, update and delete them.
    """

    model_config = ConfigDict(extra="forbid")

    kind: ClassVar[str]
    lifecycle_fields: ClassVar[frozenset[str]] = frozenset({"adopt", "depends_on"})

    # Lifecycle
    adopt: bool = False
    depends_on: list[str] = []

    def references(self) -> list[ResourceRef]:
        """Outputs of other resources held by this one (implicit dependencies)."""
        return collect_output_refs(self)


class ResourceOutput(BaseModel):
    """Mixin for output models: declared props merged with provider fields.

    Subclass it together with the props model::

        class TeamOutput(TeamProps, ResourceOutput):
            id: str
    """

    _resource_ref: ResourceRef | None = PrivateAttr(default=None)

    @property
    def resource_ref(self) -> ResourceRef | None:
        """Where this output came from; ``None`` until the engine returns it."""
        return self._resource_ref

    def bind(self, ref: ResourceRef) -> Self:
        self._resource_ref = ref
        return self
