"""Building blocks for provider handlers."""

from saas_provisioner.providers.http import ApiClient
from saas_provisioner.providers.rest import RestResourceHandler

__all__ = ["ApiClient", "RestResourceHandler"]
