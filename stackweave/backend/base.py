"""
Provisioning backend interface.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Tuple


class BackendState(Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class ProvisioningBackend(ABC):
    """
    The control plane the engine drives. Any cloud or on-prem API that can
    create, describe, update and delete resources by type fits.
    """

    name = "base"

    @abstractmethod
    def create(self, resource_type: str, properties: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        """
        Start creating a resource.

        Returns:
            Tuple of (identifier, initial attributes)

        Raises:
            TransientProvisioningError: On throttling or eventual-consistency lag
            PermanentProvisioningError: On any other failure
        """

    @abstractmethod
    def describe(self, resource_type: str, physical_id: str) -> Tuple[BackendState, Dict[str, Any]]:
        """Return the resource's state and its known attributes."""

    @abstractmethod
    def update(self, resource_type: str, physical_id: str, properties: Dict[str, Any]) -> None:
        """Update in place, or raise NotSupported."""

    @abstractmethod
    def delete(self, resource_type: str, physical_id: str) -> None:
        """Delete the resource. Deleting an already deleted resource is not an error."""
