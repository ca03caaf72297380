"""
Per-resource provisioning records kept by the engine across apply cycles.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


class ResourceStatus(Enum):
    PENDING = "pending"
    CREATING = "creating"
    CREATED = "created"
    FAILED = "failed"
    DELETED = "deleted"

    @property
    def terminal(self) -> bool:
        return self in (ResourceStatus.CREATED, ResourceStatus.FAILED)


@dataclass
class ResourceRecord:
    """What the engine knows about one provisioned resource."""
    resource_id: str
    type: str
    physical_id: Optional[str] = None
    fingerprint: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    status: ResourceStatus = ResourceStatus.PENDING
    error: Optional[str] = None
    superseded: List[str] = field(default_factory=list)

    def supersede(self, physical_id: Optional[str]) -> None:
        """Queue a replaced physical id for deletion; it stays tracked until deleted."""
        if physical_id and physical_id not in self.superseded:
            self.superseded.append(physical_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "type": self.type,
            "physical_id": self.physical_id,
            "fingerprint": self.fingerprint,
            "attributes": dict(self.attributes),
            "status": self.status.value,
            "error": self.error,
            "superseded": list(self.superseded),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceRecord":
        return cls(
            resource_id=data["resource_id"],
            type=data["type"],
            physical_id=data.get("physical_id"),
            fingerprint=data.get("fingerprint"),
            attributes=dict(data.get("attributes") or {}),
            status=ResourceStatus(data.get("status", "pending")),
            error=data.get("error"),
            superseded=list(data.get("superseded") or []),
        )


class DeploymentState:
    """Records keyed by resource id. Single writer during an apply cycle."""

    def __init__(self, records: Optional[Dict[str, ResourceRecord]] = None):
        self._records: Dict[str, ResourceRecord] = dict(records or {})

    def get(self, resource_id: str) -> Optional[ResourceRecord]:
        return self._records.get(resource_id)

    def put(self, record: ResourceRecord) -> None:
        self._records[record.resource_id] = record

    def remove(self, resource_id: str) -> None:
        self._records.pop(resource_id, None)

    def __iter__(self) -> Iterator[ResourceRecord]:
        return iter(list(self._records.values()))

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, resource_id: str) -> bool:
        return resource_id in self._records

    def status(self, resource_id: str) -> ResourceStatus:
        record = self._records.get(resource_id)
        return record.status if record else ResourceStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {rid: rec.to_dict() for rid, rec in sorted(self._records.items())}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentState":
        return cls({rid: ResourceRecord.from_dict(rec) for rid, rec in (data or {}).items()})
