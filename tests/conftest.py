"""
Shared fixtures and graph builders.
"""

import pytest

from stackweave.backend import InMemoryBackend
from stackweave.config import EngineConfig
from stackweave.engine import ReconciliationEngine
from stackweave.graph import ResourceGraph
from stackweave.model import DeployContext, Resource, ref


@pytest.fixture
def stackweave_home(tmp_path, monkeypatch):
    """Use a temporary directory as STACKWEAVE_HOME."""
    monkeypatch.setenv("STACKWEAVE_HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def fast_config():
    return EngineConfig(concurrency=4, max_attempts=3, backoff_base=0.5, backoff_max=2.0,
                        poll_interval=1.0, resource_timeout=60.0)


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def make_engine(backend, fast_config):
    """Engine factory with a recording no-op sleep."""

    def factory(**kwargs):
        sleeps = []
        kwargs.setdefault("backend", backend)
        kwargs.setdefault("config", fast_config)
        kwargs.setdefault("deploy", DeployContext(db_password="s3cret-pw"))
        kwargs.setdefault("sleep", sleeps.append)
        engine = ReconciliationEngine(**kwargs)
        engine.sleeps = sleeps
        return engine

    return factory


def chain_graph(length: int, resource_type: str = "Thing") -> ResourceGraph:
    """r01 <- r02 <- ... each resource references the previous one."""
    graph = ResourceGraph()
    for index in range(1, length + 1):
        props = {"Name": f"r{index:02d}"}
        if index > 1:
            props["Parent"] = ref(f"r{index - 1:02d}")
        graph.add_resource(Resource(f"r{index:02d}", resource_type, props))
    return graph
