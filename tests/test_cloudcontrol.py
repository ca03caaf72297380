"""
Tests for the Cloud Control backend against a mocked boto3 client.
"""

import json
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from stackweave.backend.base import BackendState
from stackweave.backend.cloudcontrol import CloudControlBackend, flatten, type_name
from stackweave.errors import NotSupported, PermanentProvisioningError, TransientProvisioningError
from stackweave.model import ResourceTypes


def _event(status="IN_PROGRESS", identifier=None, token="tok-1", **extra):
    event = {"OperationStatus": status, "RequestToken": token}
    if identifier:
        event["Identifier"] = identifier
    event.update(extra)
    return {"ProgressEvent": event}


def _client_error(code, operation="CreateResource"):
    return ClientError({"Error": {"Code": code, "Message": "boom"}}, operation)


@pytest.fixture
def client():
    return Mock()


@pytest.fixture
def backend(client):
    return CloudControlBackend(client=client, poll_interval=1.0, identifier_timeout=3.0, sleep=lambda s: None)


class TestTypeNames:
    def test_known_type(self):
        assert type_name(ResourceTypes.DATABASE) == "AWS::RDS::DBInstance"

    def test_passthrough(self):
        assert type_name("AWS::SNS::Topic") == "AWS::SNS::Topic"

    def test_unknown_type(self):
        with pytest.raises(PermanentProvisioningError):
            type_name("Teleporter")

    def test_flatten(self):
        assert flatten({"Endpoint": {"Address": "a", "Port": "3306"}, "Arn": "x"}) == {
            "Endpoint.Address": "a", "Endpoint.Port": "3306", "Arn": "x",
        }


class TestCreate:
    """Test create and identifier polling."""

    def test_identifier_in_first_event(self, backend, client):
        client.create_resource.return_value = _event(identifier="vpc-1")

        physical_id, attributes = backend.create(ResourceTypes.NETWORK, {"CidrBlock": "10.0.0.0/16"})

        assert physical_id == "vpc-1"
        assert attributes == {}
        kwargs = client.create_resource.call_args.kwargs
        assert kwargs["TypeName"] == "AWS::EC2::VPC"
        assert json.loads(kwargs["DesiredState"]) == {"CidrBlock": "10.0.0.0/16"}

    def test_polls_for_identifier(self, backend, client):
        client.create_resource.return_value = _event()
        client.get_resource_request_status.side_effect = [_event(), _event(identifier="db-1")]

        physical_id, _ = backend.create(ResourceTypes.DATABASE, {})

        assert physical_id == "db-1"
        assert client.get_resource_request_status.call_count == 2

    def test_identifier_never_assigned(self, backend, client):
        client.create_resource.return_value = _event()
        client.get_resource_request_status.return_value = _event()

        with pytest.raises(TransientProvisioningError, match="did not assign an identifier"):
            backend.create(ResourceTypes.DATABASE, {})

    def test_failed_before_identifier(self, backend, client):
        client.create_resource.return_value = _event("FAILED", ErrorCode="InvalidRequest", StatusMessage="bad cidr")

        with pytest.raises(PermanentProvisioningError, match="bad cidr"):
            backend.create(ResourceTypes.NETWORK, {})

    @pytest.mark.parametrize("code,error", [
        ("ThrottlingException", TransientProvisioningError),
        ("AccessDeniedException", PermanentProvisioningError),
    ])
    def test_client_errors_classified(self, backend, client, code, error):
        client.create_resource.side_effect = _client_error(code)

        with pytest.raises(error):
            backend.create(ResourceTypes.NETWORK, {})


class TestDescribe:
    """Test describe across request status and resource reads."""

    def test_pending_then_ready(self, backend, client):
        client.create_resource.return_value = _event(identifier="nlb-1")
        backend.create(ResourceTypes.LOAD_BALANCER, {})
        client.get_resource_request_status.side_effect = [
            _event(identifier="nlb-1"), _event("SUCCESS", identifier="nlb-1"),
        ]
        client.get_resource.return_value = {"ResourceDescription": {
            "Identifier": "nlb-1", "Properties": json.dumps({"DNSName": "nlb-1.elb", "LoadBalancerArn": "arn:nlb"}),
        }}

        assert backend.describe(ResourceTypes.LOAD_BALANCER, "nlb-1") == (BackendState.PENDING, {})
        state, attributes = backend.describe(ResourceTypes.LOAD_BALANCER, "nlb-1")

        assert state is BackendState.READY
        assert attributes["DnsName"] == "nlb-1.elb"
        assert attributes["Arn"] == "arn:nlb"

    def test_operation_failed(self, backend, client):
        client.create_resource.return_value = _event(identifier="db-1")
        backend.create(ResourceTypes.DATABASE, {})
        client.get_resource_request_status.return_value = _event("FAILED", StatusMessage="quota")

        state, attributes = backend.describe(ResourceTypes.DATABASE, "db-1")

        assert state is BackendState.FAILED
        assert attributes["StatusMessage"] == "quota"

    def test_database_endpoint_flattened(self, backend, client):
        client.get_resource.return_value = {"ResourceDescription": {
            "Properties": json.dumps({"Endpoint": {"Address": "db.example", "Port": "3306"}}),
        }}

        state, attributes = backend.describe(ResourceTypes.DATABASE, "db-1")

        assert state is BackendState.READY
        assert attributes["Endpoint.Address"] == "db.example"
        assert attributes["Endpoint.Port"] == "3306"


class TestUpdateAndDelete:
    def test_update_sends_patch(self, backend, client):
        client.update_resource.return_value = _event(identifier="sg-1")

        backend.update(ResourceTypes.SECURITY_GROUP, "sg-1", {"GroupDescription": "x"})

        patch = json.loads(client.update_resource.call_args.kwargs["PatchDocument"])
        assert patch == [{"op": "add", "path": "/GroupDescription", "value": "x"}]

    def test_update_not_supported(self, backend, client):
        client.update_resource.side_effect = _client_error("NotUpdatable", "UpdateResource")

        with pytest.raises(NotSupported):
            backend.update(ResourceTypes.DATABASE, "db-1", {})

    def test_delete_waits_for_completion(self, backend, client):
        client.delete_resource.return_value = _event()
        client.get_resource_request_status.side_effect = [_event(), _event("SUCCESS")]

        backend.delete(ResourceTypes.NETWORK, "vpc-1")

        assert client.get_resource_request_status.call_count == 2

    def test_delete_already_gone(self, backend, client):
        client.delete_resource.side_effect = _client_error("ResourceNotFoundException", "DeleteResource")

        backend.delete(ResourceTypes.NETWORK, "vpc-1")

    def test_delete_failure(self, backend, client):
        client.delete_resource.return_value = _event("FAILED", ErrorCode="GeneralServiceException",
                                                     StatusMessage="in use")

        with pytest.raises(PermanentProvisioningError, match="in use"):
            backend.delete(ResourceTypes.NETWORK, "vpc-1")
