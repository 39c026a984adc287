"""Declarative, idempotent provisioning of SaaS resources."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("saas-provisioner")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"
