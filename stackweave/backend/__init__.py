"""
Provisioning backends the reconciliation engine can drive.
"""

from .base import BackendState, ProvisioningBackend
from .cloudcontrol import CloudControlBackend
from .memory import InMemoryBackend

__all__ = [
    "BackendState",
    "ProvisioningBackend",
    "InMemoryBackend",
    "CloudControlBackend",
    "get_backend",
]


def get_backend(name: str, region: str = "us-east-1", **kwargs) -> ProvisioningBackend:
    """
    Build a backend by name.

    Args:
        name: ``memory`` or ``aws``
        region: AWS region

    Returns:
        ProvisioningBackend instance
    """
    if name == "memory":
        return InMemoryBackend(region=region, **kwargs)
    if name == "aws":
        return CloudControlBackend(region=region, **kwargs)
    raise ValueError(f"Unknown backend: {name}")
