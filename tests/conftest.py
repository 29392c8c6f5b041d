import pytest

from fakes import FakeCluster
from nodehog.config import ExperimentConfig


@pytest.fixture
def make_config():
    def _make(**overrides):
        values = {
            "run_id": "test-run",
            "chaos_duration": 60,
            "timeout": 5,
            "ramp_time": 0,
            "poll_interval": 0.01,
            "teardown_backoff": 0,
            "termination_grace_period_seconds": 0,
            "lib_image": "litmuschaos/go-runner:test",
        }
        values.update(overrides)
        return ExperimentConfig(**values)

    return _make


@pytest.fixture
def cluster():
    return FakeCluster(nodes=["node-a", "node-b", "node-c", "node-d", "node-e"])
