"""Resource model base classes and field markers."""

from saas_provisioner.resources.base import Resource, ResourceOutput
from saas_provisioner.resources.markers import Immutable, NaturalKey, ResourceRef

__all__ = ["Immutable", "NaturalKey", "Resource", "ResourceOutput", "ResourceRef"]
