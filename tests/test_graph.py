"""
Tests for the resource graph and its structural validation.
"""

import pytest

from stackweave.errors import (
    CyclicDependency, DuplicateId, MalformedRule, UnknownResource, UnresolvedReference,
)
from stackweave.graph import ResourceGraph
from stackweave.model import Resource, ResourceTypes, SecurityRule, attr, join, ref


class TestResourceGraph:
    """Test graph construction and edge inference."""

    def test_duplicate_id_rejected(self):
        graph = ResourceGraph()
        graph.add_resource(Resource("VPC", ResourceTypes.NETWORK))

        with pytest.raises(DuplicateId):
            graph.add_resource(Resource("VPC", ResourceTypes.NETWORK))

    def test_edges_from_references(self):
        """References nested in lists, dicts and interpolations all become edges."""
        graph = ResourceGraph()
        graph.add_resource(Resource("VPC", ResourceTypes.NETWORK))
        graph.add_resource(Resource("LB", ResourceTypes.LOAD_BALANCER))
        graph.add_resource(Resource("Subnet", ResourceTypes.SUBNET, {"VpcId": ref("VPC")}))
        graph.add_resource(Resource("Method", ResourceTypes.API_METHOD, {
            "Integration": {"Uri": join("http://", attr("LB", "DnsName"), "/odata")},
            "Subnets": [ref("Subnet")],
        }))

        assert graph.dependencies("Method") == {"LB", "Subnet"}
        assert graph.dependents("VPC") == {"Subnet"}
        assert graph.edges() == [("LB", "Method"), ("Subnet", "Method"), ("VPC", "Subnet")]

    def test_explicit_dependency(self):
        graph = ResourceGraph()
        graph.add_resource(Resource("Role", ResourceTypes.ROLE))
        graph.add_resource(Resource("Task", ResourceTypes.TASK_DEFINITION))
        graph.add_explicit_dependency("Task", "Role")

        assert graph.dependencies("Task") == {"Role"}

    def test_explicit_dependency_unknown_id(self):
        graph = ResourceGraph()
        graph.add_resource(Resource("Task", ResourceTypes.TASK_DEFINITION))

        with pytest.raises(UnknownResource):
            graph.add_explicit_dependency("Task", "Missing")

    def test_rule_peer_is_an_edge(self):
        graph = ResourceGraph()
        graph.add_resource(Resource("AppSG", ResourceTypes.SECURITY_GROUP))
        graph.add_resource(Resource("DbSG", ResourceTypes.SECURITY_GROUP, rules=[
            SecurityRule.ingress(3306, source_group=ref("AppSG")),
        ]))

        assert graph.dependencies("DbSG") == {"AppSG"}


class TestValidate:
    """Test validate() reporting."""

    def test_valid_graph_has_no_errors(self):
        graph = ResourceGraph()
        graph.add_resource(Resource("VPC", ResourceTypes.NETWORK))
        graph.add_resource(Resource("Subnet", ResourceTypes.SUBNET, {"VpcId": ref("VPC")}))

        assert graph.validate() == []

    def test_dangling_reference(self):
        graph = ResourceGraph()
        graph.add_resource(Resource("Subnet", ResourceTypes.SUBNET, {"VpcId": ref("Nope")}))

        errors = graph.validate()

        assert len(errors) == 1
        assert isinstance(errors[0], UnresolvedReference)
        assert errors[0].target_id == "Nope"
        assert errors[0].source_id == "Subnet"

    def test_listener_on_missing_target_group(self):
        graph = ResourceGraph()
        graph.add_resource(Resource("NLB", ResourceTypes.LOAD_BALANCER, {
            "DefaultActions": [{"Type": "forward", "TargetGroupArn": ref("ODataTargetGroup")}],
        }))

        errors = graph.validate()

        assert [type(e) for e in errors] == [UnresolvedReference]
        assert errors[0].target_id == "ODataTargetGroup"

    def test_unknown_explicit_dependency(self):
        graph = ResourceGraph()
        graph.add_resource(Resource("Task", ResourceTypes.TASK_DEFINITION, explicit_dependencies={"Ghost"}))

        errors = graph.validate()

        assert [type(e) for e in errors] == [UnknownResource]

    def test_cycle_names_members(self):
        """Two security groups referencing each other form a cycle."""
        graph = ResourceGraph()
        graph.add_resource(Resource("SG-A", ResourceTypes.SECURITY_GROUP, rules=[
            SecurityRule.ingress(443, source_group=ref("SG-B")),
        ]))
        graph.add_resource(Resource("SG-B", ResourceTypes.SECURITY_GROUP, rules=[
            SecurityRule.ingress(443, source_group=ref("SG-A")),
        ]))

        errors = graph.validate()
        cycles = [e for e in errors if isinstance(e, CyclicDependency)]

        assert len(cycles) == 1
        assert cycles[0].resource_ids == ["SG-A", "SG-B"]

    def test_self_reference_is_a_cycle(self):
        graph = ResourceGraph()
        graph.add_resource(Resource("Loop", "Thing", {"Self": ref("Loop")}))

        errors = graph.validate()

        assert isinstance(errors[0], CyclicDependency)
        assert errors[0].resource_ids == ["Loop"]

    @pytest.mark.parametrize("rule", [
        SecurityRule.ingress(80),
        SecurityRule.ingress(80, cidr="10.0.0.0/16", source_group=ref("Peer")),
        SecurityRule("ingress", "tcp", 90, 80, "10.0.0.0/16"),
        SecurityRule("ingress", "tcp", 80, None, "10.0.0.0/16"),
        SecurityRule("sideways", "tcp", 80, 80, "10.0.0.0/16"),
    ])
    def test_malformed_rules(self, rule):
        graph = ResourceGraph()
        graph.add_resource(Resource("Peer", ResourceTypes.SECURITY_GROUP))
        graph.add_resource(Resource("SG", ResourceTypes.SECURITY_GROUP, rules=[rule]))

        errors = graph.validate()

        assert any(isinstance(e, MalformedRule) for e in errors)

    def test_rules_on_non_security_group(self):
        graph = ResourceGraph()
        graph.add_resource(Resource("Db", ResourceTypes.DATABASE, rules=[
            SecurityRule.ingress(3306, cidr="10.0.0.0/16"),
        ]))

        errors = graph.validate()

        assert [type(e) for e in errors] == [MalformedRule]

    def test_peer_must_be_security_group(self):
        graph = ResourceGraph()
        graph.add_resource(Resource("VPC", ResourceTypes.NETWORK))
        graph.add_resource(Resource("SG", ResourceTypes.SECURITY_GROUP, rules=[
            SecurityRule.ingress(22, source_group=ref("VPC")),
        ]))

        errors = graph.validate()

        assert len(errors) == 1
        assert "not a security group" in str(errors[0])
