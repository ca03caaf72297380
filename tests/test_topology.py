"""
Tests for the declared stack.
"""

import json

import pytest

from stackweave.model import (
    DeployContext, DeploymentState, ResourceRecord, ResourceStatus, ResourceTypes, attr, sensitive,
)
from stackweave.resolver import ResolutionContext, resolve
from stackweave.secrets import build_secret_payload
from stackweave.topology import build_topology, secret_name


@pytest.fixture
def topology():
    return build_topology(DeployContext(environment="Staging", db_password="p\"w"), deployment_id="d-1")


class TestBuildTopology:
    """Test the declared graph's shape."""

    def test_validates(self, topology):
        assert topology.graph.validate() == []

    def test_outputs(self, topology):
        assert [o.name for o in topology.outputs] == [
            "VPCId", "PublicSubnetId", "PrivateSubnet1Id", "PrivateSubnet2Id",
            "RDSInstanceEndpoint", "RDSInstancePort",
        ]

    def test_explicit_dependencies(self, topology):
        graph = topology.graph

        assert {"SecretsManagerPolicy", "ECSExecutionRole", "ECSServiceRole"} <= \
            graph.dependencies("SampleTaskDefinition")
        assert {"ODataListenerTCP", "SecretsManagerSecret"} <= graph.dependencies("SampleService")
        assert "AttachGateway" in graph.dependencies("PublicRoute")

    def test_secret_waits_for_database(self, topology):
        assert "RDSMySQL" in topology.graph.dependencies("SecretsManagerSecret")

    def test_secret_name_follows_environment(self, topology):
        secret = topology.graph.get("SecretsManagerSecret")

        assert secret.properties["Name"] == "Sample/Staging/DB/Connection"
        assert secret_name("Production") == "Sample/Production/DB/Connection"

    def test_tags_carry_deployment_id(self, topology):
        tags = {t["Key"]: t["Value"] for t in topology.graph.get("VPC").properties["Tags"]}

        assert tags["deployment_id"] == "d-1"

    def test_database_is_private(self, topology):
        db = topology.graph.get("RDSMySQL")

        assert db.type == ResourceTypes.DATABASE
        assert db.properties["PubliclyAccessible"] is False
        assert db.metadata["tier"] == "database"


class TestSecretPayload:
    """The secret string resolves to a complete, valid JSON payload."""

    def _context(self, password):
        state = DeploymentState()
        state.put(ResourceRecord("Db", "Database", physical_id="db-1", status=ResourceStatus.CREATED,
                                 attributes={"Endpoint.Address": "db-1.rds.example"}))
        return ResolutionContext(state=state, deploy=DeployContext(db_password=password))

    def test_resolves_to_json(self):
        payload = build_secret_payload(attr("Db", "Endpoint.Address"), "test", "admin", sensitive('p"w\\x'))

        raw = resolve(payload, self._context('p"w\\x'))

        assert json.loads(raw) == {
            "Server": "db-1.rds.example", "Database": "test", "User": "admin", "Password": 'p"w\\x',
        }

    def test_declared_secret_string(self, topology):
        state = DeploymentState()
        state.put(ResourceRecord("RDSMySQL", "Database", physical_id="db-1", status=ResourceStatus.CREATED,
                                 attributes={"Endpoint.Address": "db-1.rds.example"}))
        context = ResolutionContext(state=state, deploy=DeployContext(db_password='p"w'))

        raw = resolve(topology.graph.get("SecretsManagerSecret").properties["SecretString"], context)

        assert json.loads(raw)["Password"] == 'p"w'
