import pytest
from pydantic import ValidationError

from nodehog.config import ExperimentConfig
from nodehog.errors import ConfigError
from nodehog.models import Sequence


def test_from_env_maps_litmus_variables():
    config = ExperimentConfig.from_env(
        {
            "EXPERIMENT_NAME": "node-cpu-hog",
            "RUN_ID": "abc123",
            "TOTAL_CHAOS_DURATION": "90",
            "RAMP_TIME": "10",
            "TARGET_NODES": "node-1, node-2,,node-1",
            "NODES_AFFECTED_PERC": "40",
            "SEQUENCE": "Serial",
            "NODE_CPU_CORE": "0",
            "CPU_LOAD": "80",
            "LIB_IMAGE": "litmuschaos/go-runner:3.0.0",
            "LIB_IMAGE_PULL_POLICY": "IfNotPresent",
            "TERMINATION_GRACE_PERIOD_SECONDS": "15",
            "STATUS_CHECK_TIMEOUT": "30",
            "TARGET_DELAY": "5",
            "STATUS_CHECK_DELAY": "1",
            "CHAOS_NAMESPACE": "chaos",
        }
    )

    assert config.run_id == "abc123"
    assert config.chaos_duration == 90
    assert config.ramp_time == 10
    assert config.target_nodes == ("node-1", "node-2")
    assert config.nodes_affected_perc == 40
    assert config.sequence == Sequence.SERIAL
    assert config.node_cpu_cores == 0
    assert config.cpu_load == 80
    assert config.lib_image_pull_policy == "IfNotPresent"
    assert config.termination_grace_period_seconds == 15
    assert config.timeout == 30
    assert config.delay == 5
    assert config.poll_interval == 1.0
    assert config.chaos_namespace == "chaos"
    assert config.helper_deadline == 120


def test_empty_env_values_fall_back_to_defaults():
    config = ExperimentConfig.from_env({"TARGET_NODES": "", "RAMP_TIME": ""})

    assert config.target_nodes == ()
    assert config.ramp_time == 0
    assert config.sequence == Sequence.PARALLEL
    assert config.run_id


@pytest.mark.parametrize(
    "overrides",
    [
        {"chaos_duration": 0},
        {"nodes_affected_perc": 101},
        {"nodes_affected_perc": -1},
        {"cpu_load": 150},
        {"sequence": "random"},
        {"lib_image_pull_policy": "Sometimes"},
        {"teardown_retries": 0},
        {"ramp_time": -5},
        {"run_id": "  "},
        {"unknown_field": 1},
    ],
)
def test_invalid_values_are_rejected_at_construction(overrides):
    with pytest.raises(ConfigError):
        ExperimentConfig.build(**overrides)


def test_config_is_immutable(make_config):
    config = make_config()

    with pytest.raises(ValidationError):
        config.chaos_duration = 10


def test_from_yaml(tmp_path):
    path = tmp_path / "experiment.yaml"
    path.write_text(
        "run_id: yaml-run\n"
        "chaos_duration: 30\n"
        "sequence: parallel\n"
        "target_nodes:\n"
        "  - worker-1\n"
        "  - worker-2\n"
        "helper_resources:\n"
        "  requests:\n"
        "    cpu: 100m\n"
    )

    config = ExperimentConfig.from_yaml(path)

    assert config.run_id == "yaml-run"
    assert config.target_nodes == ("worker-1", "worker-2")
    assert config.helper_resources == {"requests": {"cpu": "100m"}}


def test_from_yaml_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        ExperimentConfig.from_yaml(tmp_path / "missing.yaml")


def test_from_yaml_rejects_non_mapping(tmp_path):
    path = tmp_path / "experiment.yaml"
    path.write_text("- just\n- a list\n")

    with pytest.raises(ConfigError):
        ExperimentConfig.from_yaml(path)


def test_helper_resources_cannot_be_mutated(make_config):
    config = make_config(helper_resources={"requests": {"cpu": "100m"}})

    with pytest.raises(TypeError):
        config.helper_resources["limits"] = {"cpu": "1"}
    with pytest.raises(TypeError):
        config.helper_resources["requests"]["cpu"] = "1"

    manifest = config.resources_manifest()
    manifest["requests"]["cpu"] = "1"

    assert isinstance(manifest["requests"], dict)
    assert config.helper_resources["requests"]["cpu"] == "100m"
