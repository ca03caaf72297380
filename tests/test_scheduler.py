"""
Tests for staged planning.
"""

import pytest

from stackweave.errors import CyclicDependency
from stackweave.graph import ResourceGraph
from stackweave.model import DeployContext, Resource, ref
from stackweave.scheduler import plan, render_plan, stage_index, teardown
from stackweave.topology import build_topology

from .conftest import chain_graph


def _diamond() -> ResourceGraph:
    graph = ResourceGraph()
    graph.add_resource(Resource("a", "Thing"))
    graph.add_resource(Resource("b", "Thing", {"Up": ref("a")}))
    graph.add_resource(Resource("c", "Thing", {"Up": ref("a")}))
    graph.add_resource(Resource("d", "Thing", {"Left": ref("b"), "Right": ref("c")}))
    return graph


class TestPlan:
    """Test plan() ordering."""

    def test_diamond_stages(self):
        assert plan(_diamond()) == [["a"], ["b", "c"], ["d"]]

    def test_independent_resources_share_a_stage(self):
        graph = ResourceGraph()
        for rid in ("z", "m", "a"):
            graph.add_resource(Resource(rid, "Thing"))

        assert plan(graph) == [["a", "m", "z"]]

    def test_chain_is_one_resource_per_stage(self):
        stages = plan(chain_graph(10))

        assert len(stages) == 10
        assert stages[6] == ["r07"]

    def test_every_edge_crosses_stages_forward(self):
        """For every (dependency, dependent) edge the dependency's stage is strictly earlier."""
        graph = build_topology(DeployContext(db_password="pw")).graph
        index = stage_index(plan(graph))

        for dependency, dependent in graph.edges():
            assert index[dependency] < index[dependent], (dependency, dependent)

    def test_plan_is_deterministic(self):
        graph = build_topology(DeployContext(db_password="pw")).graph

        assert plan(graph) == plan(graph)

    def test_mutual_explicit_dependencies(self):
        graph = ResourceGraph()
        graph.add_resource(Resource("left", "Thing"))
        graph.add_resource(Resource("right", "Thing"))
        graph.add_explicit_dependency("left", "right")
        graph.add_explicit_dependency("right", "left")

        with pytest.raises(CyclicDependency) as exc_info:
            plan(graph)

        assert exc_info.value.resource_ids == ["left", "right"]

    def test_cycle_error_excludes_schedulable_resources(self):
        graph = ResourceGraph()
        graph.add_resource(Resource("root", "Thing"))
        graph.add_resource(Resource("x", "Thing", {"Root": ref("root"), "Y": ref("y")}))
        graph.add_resource(Resource("y", "Thing", {"X": ref("x")}))

        with pytest.raises(CyclicDependency) as exc_info:
            plan(graph)

        assert exc_info.value.resource_ids == ["x", "y"]


class TestTeardown:
    """Test teardown ordering and plan rendering."""

    def test_teardown_reverses_plan(self):
        assert teardown(_diamond()) == [["d"], ["b", "c"], ["a"]]

    def test_render_plan(self):
        graph = _diamond()
        rendered = render_plan(graph, plan(graph))

        assert rendered[2] == {
            "stage": 3,
            "resources": [{"id": "d", "type": "Thing", "depends_on": ["b", "c"]}],
        }
