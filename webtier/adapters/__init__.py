"""Adapters — provisioning, probing and forwarding bindings.

Public re-exports for convenient access.
"""

from webtier.adapters.base import (
    Forwarder,
    Prober,
    ProvisionContext,
    Provisioner,
    UpstreamError,
    UpstreamTimeout,
)
from webtier.adapters.mock import MockForwarder, MockProber, MockProvisioner
from webtier.adapters.registry import ProvisionerRegistry

__all__ = [
    "Forwarder",
    "MockForwarder",
    "MockProber",
    "MockProvisioner",
    "Prober",
    "ProvisionContext",
    "Provisioner",
    "ProvisionerRegistry",
    "UpstreamError",
    "UpstreamTimeout",
]
