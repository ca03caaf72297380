"""
Tests for output projection.
"""

import pytest

from stackweave.engine import ApplyStatus
from stackweave.errors import OutputNotReady, UnknownResource
from stackweave.graph import ResourceGraph
from stackweave.model import (
    DeployContext, DeploymentState, Output, Resource, ResourceRecord, ResourceStatus, attr, ref,
)
from stackweave.outputs import project
from stackweave.topology import build_topology


def _graph():
    graph = ResourceGraph()
    graph.add_resource(Resource("VPC", "Network"))
    graph.add_resource(Resource("Db", "Database"))
    return graph


class TestProject:
    def test_identifier_and_attribute(self):
        state = DeploymentState()
        state.put(ResourceRecord("VPC", "Network", physical_id="vpc-1", status=ResourceStatus.CREATED))
        state.put(ResourceRecord("Db", "Database", physical_id="db-1", status=ResourceStatus.CREATED,
                                 attributes={"Endpoint.Port": 3306}))

        projected = project(_graph(), [Output("VPCId", ref("VPC")), Output("Port", attr("Db", "Endpoint.Port"))], state)

        assert projected == {"VPCId": "vpc-1", "Port": "3306"}

    def test_source_not_created(self):
        state = DeploymentState()
        state.put(ResourceRecord("VPC", "Network", physical_id="vpc-1", status=ResourceStatus.FAILED))

        with pytest.raises(OutputNotReady) as exc_info:
            project(_graph(), [Output("VPCId", ref("VPC"))], state)

        assert exc_info.value.resource_id == "VPC"
        assert exc_info.value.status == "failed"

    def test_source_never_applied(self):
        with pytest.raises(OutputNotReady):
            project(_graph(), [Output("VPCId", ref("VPC"))], DeploymentState())

    def test_unknown_source(self):
        with pytest.raises(UnknownResource):
            project(_graph(), [Output("Ghost", ref("Ghost"))], DeploymentState())


class TestTopologyOutputs:
    def test_all_six_outputs_after_apply(self, make_engine):
        topology = build_topology(DeployContext(db_password="s3cret-pw"))
        engine = make_engine()

        result = engine.apply(topology.graph, outputs=topology.outputs)

        assert result.status is ApplyStatus.SUCCEEDED
        assert set(result.outputs) == {
            "VPCId", "PublicSubnetId", "PrivateSubnet1Id", "PrivateSubnet2Id",
            "RDSInstanceEndpoint", "RDSInstancePort",
        }
        assert result.outputs["VPCId"] == engine.state.get("VPC").physical_id
        assert result.outputs["RDSInstancePort"] == "3306"
        assert result.outputs["RDSInstanceEndpoint"].endswith(".rds.amazonaws.com")
