"""
AWS Cloud Control API backend.

Cloud Control exposes create/read/update/delete for CloudFormation resource
types, which matches the engine's backend contract one to one.
"""

import json
import logging
import time
from typing import Any, Dict, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import (
    NotSupported, PermanentProvisioningError, ProvisioningError, TransientProvisioningError,
)
from ..model import ResourceTypes
from .base import BackendState, ProvisioningBackend

logger = logging.getLogger(__name__)

TYPE_NAMES = {
    ResourceTypes.NETWORK: "AWS::EC2::VPC",
    ResourceTypes.SUBNET: "AWS::EC2::Subnet",
    ResourceTypes.INTERNET_GATEWAY: "AWS::EC2::InternetGateway",
    ResourceTypes.GATEWAY_ATTACHMENT: "AWS::EC2::VPCGatewayAttachment",
    ResourceTypes.ELASTIC_IP: "AWS::EC2::EIP",
    ResourceTypes.NAT_GATEWAY: "AWS::EC2::NatGateway",
    ResourceTypes.ROUTE_TABLE: "AWS::EC2::RouteTable",
    ResourceTypes.ROUTE: "AWS::EC2::Route",
    ResourceTypes.ROUTE_TABLE_ASSOCIATION: "AWS::EC2::SubnetRouteTableAssociation",
    ResourceTypes.NETWORK_ACL: "AWS::EC2::NetworkAcl",
    ResourceTypes.NETWORK_ACL_ENTRY: "AWS::EC2::NetworkAclEntry",
    ResourceTypes.SECURITY_GROUP: "AWS::EC2::SecurityGroup",
    ResourceTypes.VPC_ENDPOINT: "AWS::EC2::VPCEndpoint",
    ResourceTypes.INSTANCE: "AWS::EC2::Instance",
    ResourceTypes.ROLE: "AWS::IAM::Role",
    ResourceTypes.POLICY: "AWS::IAM::RolePolicy",
    ResourceTypes.INSTANCE_PROFILE: "AWS::IAM::InstanceProfile",
    ResourceTypes.LOG_GROUP: "AWS::Logs::LogGroup",
    ResourceTypes.LOAD_BALANCER: "AWS::ElasticLoadBalancingV2::LoadBalancer",
    ResourceTypes.TARGET_GROUP: "AWS::ElasticLoadBalancingV2::TargetGroup",
    ResourceTypes.LISTENER: "AWS::ElasticLoadBalancingV2::Listener",
    ResourceTypes.CLUSTER: "AWS::ECS::Cluster",
    ResourceTypes.TASK_DEFINITION: "AWS::ECS::TaskDefinition",
    ResourceTypes.SERVICE: "AWS::ECS::Service",
    ResourceTypes.SCALABLE_TARGET: "AWS::ApplicationAutoScaling::ScalableTarget",
    ResourceTypes.SCALING_POLICY: "AWS::ApplicationAutoScaling::ScalingPolicy",
    ResourceTypes.DB_SUBNET_GROUP: "AWS::RDS::DBSubnetGroup",
    ResourceTypes.DATABASE: "AWS::RDS::DBInstance",
    ResourceTypes.SECRET: "AWS::SecretsManager::Secret",
    ResourceTypes.FUNCTION: "AWS::Lambda::Function",
    ResourceTypes.FUNCTION_PERMISSION: "AWS::Lambda::Permission",
    ResourceTypes.API: "AWS::ApiGateway::RestApi",
    ResourceTypes.API_RESOURCE: "AWS::ApiGateway::Resource",
    ResourceTypes.API_AUTHORIZER: "AWS::ApiGateway::Authorizer",
    ResourceTypes.API_METHOD: "AWS::ApiGateway::Method",
    ResourceTypes.VPC_LINK: "AWS::ApiGateway::VpcLink",
}

# Our attribute name -> Cloud Control property path
ATTRIBUTE_ALIASES = {
    ResourceTypes.LOAD_BALANCER: {"DnsName": "DNSName", "Arn": "LoadBalancerArn"},
    ResourceTypes.TARGET_GROUP: {"Arn": "TargetGroupArn"},
    ResourceTypes.SECRET: {"Arn": "Id"},
    ResourceTypes.ELASTIC_IP: {"AllocationId": "AllocationId"},
}

TRANSIENT_CODES = {
    "Throttling", "ThrottlingException", "RequestLimitExceeded", "ServiceInternalError",
    "NetworkFailure", "ResourceConflict", "NotStabilized", "ConcurrentOperationException",
    "ServiceLimitExceeded",
}
NOT_UPDATABLE_CODES = {"NotUpdatable", "UnsupportedActionException"}
NOT_FOUND_CODES = {"NotFound", "ResourceNotFoundException"}


def type_name(resource_type: str) -> str:
    if "::" in resource_type:
        return resource_type
    try:
        return TYPE_NAMES[resource_type]
    except KeyError:
        raise PermanentProvisioningError(f"No Cloud Control type for {resource_type}") from None


def flatten(properties: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flatten nested dicts to dotted keys, e.g. Endpoint.Address."""
    flat: Dict[str, Any] = {}
    for key, value in properties.items():
        path = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(flatten(value, f"{path}."))
        else:
            flat[path] = value
    return flat


class CloudControlBackend(ProvisioningBackend):
    """Drives AWS through the Cloud Control API using boto3."""

    name = "aws"

    def __init__(self, region: str = "us-east-1", client=None, poll_interval: float = 2.0,
                 identifier_timeout: float = 120.0, sleep=time.sleep):
        self.region = region
        self.client = client or boto3.client("cloudcontrol", region_name=region)
        self.poll_interval = poll_interval
        self.identifier_timeout = identifier_timeout
        self._sleep = sleep
        self._pending: Dict[str, str] = {}

    def create(self, resource_type, properties):
        event = self._call(
            "create_resource",
            TypeName=type_name(resource_type),
            DesiredState=json.dumps(properties, sort_keys=True),
        )["ProgressEvent"]
        waited = 0.0
        while not event.get("Identifier"):
            self._raise_if_failed(event)
            if waited >= self.identifier_timeout:
                raise TransientProvisioningError(
                    f"Cloud Control did not assign an identifier to {resource_type} within "
                    f"{self.identifier_timeout:.0f}s"
                )
            self._sleep(self.poll_interval)
            waited += self.poll_interval
            event = self._status(event["RequestToken"])
        self._pending[event["Identifier"]] = event["RequestToken"]
        logger.debug(f"Create of {resource_type} accepted as {event['Identifier']}")
        return event["Identifier"], {}

    def describe(self, resource_type, physical_id):
        token = self._pending.get(physical_id)
        if token is not None:
            event = self._status(token)
            status = event.get("OperationStatus")
            if status == "FAILED":
                self._pending.pop(physical_id, None)
                logger.warning(f"{resource_type} {physical_id} failed: {event.get('StatusMessage')}")
                return BackendState.FAILED, {"StatusMessage": event.get("StatusMessage", "")}
            if status != "SUCCESS":
                return BackendState.PENDING, {}
            self._pending.pop(physical_id, None)

        description = self._call(
            "get_resource", TypeName=type_name(resource_type), Identifier=physical_id
        )["ResourceDescription"]
        attributes = flatten(json.loads(description.get("Properties") or "{}"))
        for ours, theirs in ATTRIBUTE_ALIASES.get(resource_type, {}).items():
            if theirs in attributes:
                attributes[ours] = attributes[theirs]
        return BackendState.READY, attributes

    def update(self, resource_type, physical_id, properties):
        patch = [{"op": "add", "path": f"/{key}", "value": value} for key, value in sorted(properties.items())]
        event = self._call(
            "update_resource",
            TypeName=type_name(resource_type),
            Identifier=physical_id,
            PatchDocument=json.dumps(patch),
        )["ProgressEvent"]
        self._raise_if_failed(event)
        self._pending[physical_id] = event["RequestToken"]

    def delete(self, resource_type, physical_id):
        try:
            event = self._call(
                "delete_resource", TypeName=type_name(resource_type), Identifier=physical_id
            )["ProgressEvent"]
        except PermanentProvisioningError as e:
            if getattr(e, "code", None) in NOT_FOUND_CODES:
                return
            raise
        while event.get("OperationStatus") in ("PENDING", "IN_PROGRESS"):
            self._sleep(self.poll_interval)
            event = self._status(event["RequestToken"])
        if event.get("OperationStatus") == "FAILED" and event.get("ErrorCode") not in NOT_FOUND_CODES:
            self._raise_if_failed(event)

    def _status(self, token: str) -> Dict[str, Any]:
        return self._call("get_resource_request_status", RequestToken=token)["ProgressEvent"]

    def _raise_if_failed(self, event: Dict[str, Any]) -> None:
        if event.get("OperationStatus") != "FAILED":
            return
        raise _error_for(event.get("ErrorCode"), event.get("StatusMessage") or "operation failed")

    def _call(self, operation: str, **kwargs) -> Dict[str, Any]:
        try:
            return getattr(self.client, operation)(**kwargs)
        except ClientError as e:
            error = e.response.get("Error", {})
            raise _error_for(error.get("Code"), error.get("Message") or str(e)) from e
        except BotoCoreError as e:
            raise TransientProvisioningError(f"{operation} failed: {e}") from e


def _error_for(code: Optional[str], message: str) -> ProvisioningError:
    if code in NOT_UPDATABLE_CODES:
        error: ProvisioningError = NotSupported(f"{code}: {message}")
    elif code in TRANSIENT_CODES:
        error = TransientProvisioningError(f"{code}: {message}")
    else:
        error = PermanentProvisioningError(f"{code}: {message}" if code else message)
    error.code = code
    return error
