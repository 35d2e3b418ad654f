"""Provisioning service clients for sandbox workspaces."""

from sandboxchat.client_state.provisioning.base import ProvisioningService
from sandboxchat.client_state.provisioning.http import HttpProvisioningClient

__all__ = ["HttpProvisioningClient", "ProvisioningService"]
