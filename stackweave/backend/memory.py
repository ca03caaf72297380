"""
In-memory provisioning backend.

Simulates a control plane: assigns identifiers, synthesizes runtime attributes
once a resource becomes ready, and supports failure injection. Used for dry
runs (``--backend memory``) and tests.
"""

import itertools
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..errors import NotSupported, PermanentProvisioningError
from ..model import ResourceTypes
from .base import BackendState, ProvisioningBackend

Matcher = Callable[[str, Dict[str, Any]], bool]

ID_PREFIXES = {
    ResourceTypes.NETWORK: "vpc",
    ResourceTypes.SUBNET: "subnet",
    ResourceTypes.INTERNET_GATEWAY: "igw",
    ResourceTypes.ELASTIC_IP: "eipalloc",
    ResourceTypes.NAT_GATEWAY: "nat",
    ResourceTypes.ROUTE_TABLE: "rtb",
    ResourceTypes.NETWORK_ACL: "acl",
    ResourceTypes.SECURITY_GROUP: "sg",
    ResourceTypes.VPC_ENDPOINT: "vpce",
    ResourceTypes.INSTANCE: "i",
    ResourceTypes.LOAD_BALANCER: "nlb",
    ResourceTypes.TARGET_GROUP: "tg",
    ResourceTypes.DATABASE: "db",
    ResourceTypes.API: "api",
    ResourceTypes.VPC_LINK: "vpclink",
}


@dataclass
class _Injected:
    match: Matcher
    error: Optional[Exception]
    phase: str
    remaining: Optional[int]


@dataclass
class _Simulated:
    resource_type: str
    properties: Dict[str, Any]
    describes: int = 0
    failed: bool = False
    attributes: Dict[str, Any] = field(default_factory=dict)


class InMemoryBackend(ProvisioningBackend):
    """Deterministic, thread-safe simulated backend."""

    name = "memory"

    def __init__(self, region: str = "us-east-1", account: str = "000000000000",
                 ready_after: int = 0, update_unsupported: Optional[Set[str]] = None):
        self.region = region
        self.account = account
        self.ready_after = ready_after
        self.update_unsupported = set(update_unsupported or ())
        self.resources: Dict[str, _Simulated] = {}
        self.calls: List[Tuple[str, str, Optional[str]]] = []
        self._injected: List[_Injected] = []
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def fail_when(self, match: Matcher, error: Optional[Exception] = None,
                  times: Optional[int] = None, phase: str = "create") -> None:
        """
        Inject a failure.

        Args:
            match: Predicate on (resource type, properties)
            error: Exception to raise; ignored for the ``ready`` phase
            times: Number of times to fail, or None for always
            phase: One of ``create``, ``update``, ``delete`` or ``ready``
                (``ready`` makes describe report FAILED)
        """
        self._injected.append(_Injected(match, error, phase, times))

    def count(self, op: str, resource_type: Optional[str] = None) -> int:
        return sum(1 for call in self.calls if call[0] == op and (resource_type is None or call[1] == resource_type))

    def create(self, resource_type, properties):
        with self._lock:
            self.calls.append(("create", resource_type, None))
            self._raise_injected("create", resource_type, properties)
            prefix = ID_PREFIXES.get(resource_type, resource_type.lower())
            physical_id = f"{prefix}-{next(self._counter):08x}"
            sim = _Simulated(resource_type, dict(properties))
            sim.failed = self._matches("ready", resource_type, properties)
            self.resources[physical_id] = sim
            return physical_id, {}

    def describe(self, resource_type, physical_id):
        with self._lock:
            self.calls.append(("describe", resource_type, physical_id))
            sim = self.resources.get(physical_id)
            if sim is None:
                raise PermanentProvisioningError(f"{resource_type} {physical_id} does not exist")
            if sim.failed:
                return BackendState.FAILED, {}
            sim.describes += 1
            if sim.describes <= self.ready_after:
                return BackendState.PENDING, {}
            if not sim.attributes:
                sim.attributes = self._attributes(resource_type, physical_id, sim.properties)
            return BackendState.READY, dict(sim.attributes)

    def update(self, resource_type, physical_id, properties):
        with self._lock:
            self.calls.append(("update", resource_type, physical_id))
            if resource_type in self.update_unsupported:
                raise NotSupported(f"{resource_type} cannot be updated in place")
            self._raise_injected("update", resource_type, properties)
            sim = self.resources.get(physical_id)
            if sim is None:
                raise PermanentProvisioningError(f"{resource_type} {physical_id} does not exist")
            sim.properties = dict(properties)
            sim.attributes = {}
            sim.describes = 0

    def delete(self, resource_type, physical_id):
        with self._lock:
            self.calls.append(("delete", resource_type, physical_id))
            sim = self.resources.get(physical_id)
            self._raise_injected("delete", resource_type, sim.properties if sim else {})
            self.resources.pop(physical_id, None)

    def _matches(self, phase, resource_type, properties) -> bool:
        for injected in self._injected:
            if injected.phase != phase or injected.remaining == 0:
                continue
            if injected.match(resource_type, properties):
                if injected.remaining is not None:
                    injected.remaining -= 1
                return True
        return False

    def _raise_injected(self, phase, resource_type, properties) -> None:
        for injected in self._injected:
            if injected.phase != phase or injected.remaining == 0:
                continue
            if injected.match(resource_type, properties):
                if injected.remaining is not None:
                    injected.remaining -= 1
                raise injected.error or PermanentProvisioningError(f"injected {phase} failure")

    def _attributes(self, resource_type, physical_id, properties) -> Dict[str, Any]:
        service = resource_type.lower()
        attributes: Dict[str, Any] = {
            "Arn": f"arn:aws:{service}:{self.region}:{self.account}:{service}/{physical_id}",
        }
        if resource_type == ResourceTypes.LOAD_BALANCER:
            attributes["DnsName"] = f"{physical_id}.elb.{self.region}.amazonaws.com"
        elif resource_type == ResourceTypes.DATABASE:
            attributes["Endpoint.Address"] = f"{physical_id}.cluster.{self.region}.rds.amazonaws.com"
            attributes["Endpoint.Port"] = str(properties.get("Port", 3306))
        elif resource_type == ResourceTypes.ELASTIC_IP:
            attributes["AllocationId"] = physical_id
            attributes["PublicIp"] = "203.0.113.10"
        elif resource_type == ResourceTypes.API:
            attributes["RootResourceId"] = f"root-{physical_id}"
        return attributes
