"""External collaborators consumed by the orchestrator."""

from leasehold.adapters.provisioning import (
    HttpProvisioningClient,
    LocalProvisioningClient,
    ProvisioningClient,
)
from leasehold.adapters.rotation import HttpRotationService, NoopRotationService, RotationService

__all__ = [
    "HttpProvisioningClient",
    "HttpRotationService",
    "LocalProvisioningClient",
    "NoopRotationService",
    "ProvisioningClient",
    "RotationService",
]
