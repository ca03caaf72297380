"""
Resource, security rule, output and deploy context models.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set

from .values import Reference, iter_references

ANY_CIDR = "0.0.0.0/0"


class ResourceTypes:
    """Well-known resource type names. The set is open; any string is accepted."""
    NETWORK = "Network"
    SUBNET = "Subnet"
    INTERNET_GATEWAY = "InternetGateway"
    GATEWAY_ATTACHMENT = "GatewayAttachment"
    ELASTIC_IP = "ElasticIp"
    NAT_GATEWAY = "NatGateway"
    ROUTE_TABLE = "RouteTable"
    ROUTE = "Route"
    ROUTE_TABLE_ASSOCIATION = "RouteTableAssociation"
    NETWORK_ACL = "NetworkAcl"
    NETWORK_ACL_ENTRY = "NetworkAclEntry"
    SECURITY_GROUP = "SecurityGroup"
    VPC_ENDPOINT = "VpcEndpoint"
    ROLE = "Role"
    POLICY = "Policy"
    INSTANCE_PROFILE = "InstanceProfile"
    INSTANCE = "Instance"
    LOG_GROUP = "LogGroup"
    LOAD_BALANCER = "LoadBalancer"
    TARGET_GROUP = "TargetGroup"
    LISTENER = "Listener"
    CLUSTER = "Cluster"
    TASK_DEFINITION = "TaskDefinition"
    SERVICE = "Service"
    SCALABLE_TARGET = "ScalableTarget"
    SCALING_POLICY = "ScalingPolicy"
    DB_SUBNET_GROUP = "DbSubnetGroup"
    DATABASE = "Database"
    SECRET = "Secret"
    FUNCTION = "Function"
    FUNCTION_PERMISSION = "FunctionPermission"
    API = "Api"
    API_RESOURCE = "ApiResource"
    API_AUTHORIZER = "ApiAuthorizer"
    API_METHOD = "ApiMethod"
    VPC_LINK = "VpcLink"


# Properties allowed to carry sensitive literals, per resource type
SENSITIVE_PROPERTIES: Dict[str, Set[str]] = {
    ResourceTypes.SECRET: {"SecretString"},
    ResourceTypes.DATABASE: {"MasterUserPassword"},
}


class Retention(Enum):
    """What happens to a resource created by an apply that later fails."""
    RETAIN = "retain"
    EPHEMERAL = "ephemeral"


class DeletionPolicy(Enum):
    """What happens to a resource on destroy."""
    DELETE = "delete"
    RETAIN = "retain"


@dataclass(frozen=True)
class SecurityRule:
    """
    One ingress or egress rule of a security group.

    Exactly one of ``cidr`` and ``source_group`` identifies the peer. Ports of
    ``None`` mean all ports.
    """
    direction: str
    protocol: str = "tcp"
    from_port: Optional[int] = None
    to_port: Optional[int] = None
    cidr: Optional[str] = None
    source_group: Optional[Reference] = None

    @classmethod
    def ingress(cls, port: Optional[int] = None, protocol: str = "tcp", cidr: Optional[str] = None,
                source_group: Optional[Reference] = None, to_port: Optional[int] = None) -> "SecurityRule":
        return cls("ingress", protocol, port, to_port if to_port is not None else port, cidr, source_group)

    @classmethod
    def egress(cls, port: Optional[int] = None, protocol: str = "tcp", cidr: Optional[str] = ANY_CIDR,
               source_group: Optional[Reference] = None) -> "SecurityRule":
        return cls("egress", protocol, port, port, cidr, source_group)

    @property
    def all_ports(self) -> bool:
        return self.from_port is None and self.to_port is None

    def to_properties(self) -> Dict[str, Any]:
        props: Dict[str, Any] = {"IpProtocol": self.protocol}
        if not self.all_ports:
            props["FromPort"] = self.from_port
            props["ToPort"] = self.to_port
        if self.cidr is not None:
            props["CidrIp"] = self.cidr
        if self.source_group is not None:
            key = "SourceSecurityGroupId" if self.direction == "ingress" else "DestinationSecurityGroupId"
            props[key] = self.source_group
        return props


@dataclass
class Resource:
    id: str
    type: str
    properties: Dict[str, Any] = field(default_factory=dict)
    explicit_dependencies: Set[str] = field(default_factory=set)
    rules: List[SecurityRule] = field(default_factory=list)
    retention: Retention = Retention.RETAIN
    deletion_policy: DeletionPolicy = DeletionPolicy.DELETE
    metadata: Dict[str, str] = field(default_factory=dict)

    def references(self) -> Iterator[Reference]:
        """All references in properties and security rules."""
        yield from iter_references(self.properties)
        for rule in self.rules:
            if rule.source_group is not None:
                yield rule.source_group

    def desired_properties(self) -> Dict[str, Any]:
        """Properties as sent to a backend, with security rules folded in."""
        props = dict(self.properties)
        if self.rules:
            props["SecurityGroupIngress"] = [r.to_properties() for r in self.rules if r.direction == "ingress"]
            props["SecurityGroupEgress"] = [r.to_properties() for r in self.rules if r.direction == "egress"]
        return props


@dataclass(frozen=True)
class Output:
    name: str
    source: Reference
    description: str = ""


@dataclass(frozen=True)
class DeployContext:
    """Deploy-time values used for naming and interpolation."""
    environment: str = "Production"
    region: str = "us-east-1"
    account: str = "000000000000"
    db_password: Optional[str] = field(default=None, repr=False)

    def lookup(self, name: str) -> str:
        if name not in ("environment", "region", "account"):
            raise KeyError(f"Unknown context value: {name}")
        return getattr(self, name)
