"""
Network and security posture checks run before any apply.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Set

from .errors import SecurityViolation
from .graph import ResourceGraph
from .model import (
    ANY_CIDR, SENSITIVE_PROPERTIES, Literal, Reference, Resource, ResourceTypes,
    contains_sensitive,
)

logger = logging.getLogger(__name__)

PUBLIC_INGRESS_ROLES = {"bastion", "public-ingress"}


class Severity(Enum):
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Violation:
    rule: str
    severity: Severity
    resource_id: str
    message: str

    def to_dict(self):
        return {
            "rule": self.rule,
            "severity": self.severity.value,
            "resource_id": self.resource_id,
            "message": self.message,
        }


class InvariantChecker:
    """Encodes the topology's security policy as checkable rules."""

    def __init__(self, graph: ResourceGraph):
        self.graph = graph

    def check(self) -> List[Violation]:
        violations: List[Violation] = []
        violations += self._database_ingress()
        violations += self._subnet_routes()
        violations += self._open_ingress()
        violations += self._sensitive_placement()
        return violations

    def _database_ingress(self) -> List[Violation]:
        violations = []
        for resource in self.graph:
            if not _is_database_tier(resource):
                continue
            for group in self._referenced_of_type(resource, ResourceTypes.SECURITY_GROUP):
                for rule in group.rules:
                    if rule.direction == "ingress" and rule.cidr is not None:
                        violations.append(Violation(
                            "database-peer-only", Severity.ERROR, group.id,
                            f"security group of database-tier {resource.id} allows ingress from "
                            f"CIDR {rule.cidr}; use a peer security group",
                        ))
        return violations

    def _subnet_routes(self) -> List[Violation]:
        violations = []
        for subnet in self._of_type(ResourceTypes.SUBNET):
            public = _is_public_subnet(subnet)
            targets = self._default_route_targets(subnet)
            if public:
                if not targets:
                    violations.append(Violation(
                        "public-default-route", Severity.ERROR, subnet.id,
                        "public subnet has no default route",
                    ))
                elif any(t != ResourceTypes.INTERNET_GATEWAY for t in targets):
                    violations.append(Violation(
                        "public-default-route", Severity.ERROR, subnet.id,
                        "public subnet default route must go through the internet gateway",
                    ))
            else:
                if ResourceTypes.INTERNET_GATEWAY in targets:
                    violations.append(Violation(
                        "private-default-route", Severity.ERROR, subnet.id,
                        "private subnet routes default traffic through an internet gateway",
                    ))
                elif any(t != ResourceTypes.NAT_GATEWAY for t in targets):
                    violations.append(Violation(
                        "private-default-route", Severity.ERROR, subnet.id,
                        "private subnet default route must go through a NAT gateway",
                    ))
                elif not targets:
                    violations.append(Violation(
                        "private-default-route", Severity.WARNING, subnet.id,
                        "private subnet has no default route",
                    ))
        return violations

    def _open_ingress(self) -> List[Violation]:
        violations = []
        for group in self._of_type(ResourceTypes.SECURITY_GROUP):
            open_rules = [r for r in group.rules if r.direction == "ingress" and r.cidr == ANY_CIDR]
            if open_rules and group.metadata.get("ingress_role") not in PUBLIC_INGRESS_ROLES:
                ports = ", ".join(str(r.from_port) if r.from_port is not None else "all" for r in open_rules)
                violations.append(Violation(
                    "undocumented-open-ingress", Severity.WARNING, group.id,
                    f"ingress from {ANY_CIDR} on port(s) {ports} without a documented "
                    f"bastion/public-ingress role",
                ))
        return violations

    def _sensitive_placement(self) -> List[Violation]:
        violations = []
        for resource in self.graph:
            allowed = SENSITIVE_PROPERTIES.get(resource.type, set())
            for key, value in resource.properties.items():
                if key not in allowed and contains_sensitive(value):
                    violations.append(Violation(
                        "sensitive-placement", Severity.ERROR, resource.id,
                        f"sensitive value in property {key}",
                    ))
        return violations

    def _default_route_targets(self, subnet: Resource) -> Set[str]:
        """Types of the gateways default routes of the subnet's route tables point at."""
        tables = set()
        for assoc in self._of_type(ResourceTypes.ROUTE_TABLE_ASSOCIATION):
            if _target_of(assoc.properties.get("SubnetId")) == subnet.id:
                table = _target_of(assoc.properties.get("RouteTableId"))
                if table:
                    tables.add(table)
        targets = set()
        for route in self._of_type(ResourceTypes.ROUTE):
            if _target_of(route.properties.get("RouteTableId")) not in tables:
                continue
            if _literal(route.properties.get("DestinationCidrBlock")) != ANY_CIDR:
                continue
            for key in ("GatewayId", "NatGatewayId"):
                target = _target_of(route.properties.get(key))
                if target and target in self.graph:
                    targets.add(self.graph.get(target).type)
        return targets

    def _of_type(self, resource_type: str) -> List[Resource]:
        return [r for r in self.graph if r.type == resource_type]

    def _referenced_of_type(self, resource: Resource, resource_type: str) -> List[Resource]:
        found = {}
        for reference in resource.references():
            if reference.target_id in self.graph:
                target = self.graph.get(reference.target_id)
                if target.type == resource_type:
                    found[target.id] = target
        return [found[k] for k in sorted(found)]


def check(graph: ResourceGraph) -> List[Violation]:
    return InvariantChecker(graph).check()


def ensure_deployable(graph: ResourceGraph) -> List[Violation]:
    """
    Run the checks and block on errors.

    Returns:
        Warning-severity violations, which never block

    Raises:
        SecurityViolation: If any Error-severity violation exists
    """
    violations = check(graph)
    errors = [v for v in violations if v.severity is Severity.ERROR]
    if errors:
        raise SecurityViolation(errors)
    warnings = [v for v in violations if v.severity is Severity.WARNING]
    for warning in warnings:
        logger.warning(f"{warning.rule} on {warning.resource_id}: {warning.message}")
    return warnings


def _is_database_tier(resource: Resource) -> bool:
    return resource.type == ResourceTypes.DATABASE or resource.metadata.get("tier") == "database"


def _is_public_subnet(subnet: Resource) -> bool:
    tier = subnet.metadata.get("tier")
    if tier:
        return tier == "public"
    return _literal(subnet.properties.get("MapPublicIpOnLaunch")) is True


def _literal(value: Any) -> Any:
    while isinstance(value, Literal):
        value = value.value
    return value


def _target_of(value: Any) -> Optional[str]:
    return value.target_id if isinstance(value, Reference) else None
