"""Experiment parameters for a node CPU hog run."""

import os
import random
import string
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from nodehog.errors import ConfigError
from nodehog.models import Sequence

# Environment variable -> ExperimentConfig field.
ENV_FIELDS = {
    "EXPERIMENT_NAME": "experiment_name",
    "CHAOSENGINE": "engine_name",
    "CHAOS_UID": "chaos_uid",
    "INSTANCE_ID": "instance_id",
    "RUN_ID": "run_id",
    "TOTAL_CHAOS_DURATION": "chaos_duration",
    "RAMP_TIME": "ramp_time",
    "TARGET_NODES": "target_nodes",
    "NODE_LABEL": "node_label",
    "APP_NAMESPACE": "app_namespace",
    "APP_LABEL": "app_label",
    "APP_KIND": "app_kind",
    "NODES_AFFECTED_PERC": "nodes_affected_perc",
    "SEQUENCE": "sequence",
    "NODE_CPU_CORE": "node_cpu_cores",
    "CPU_LOAD": "cpu_load",
    "LIB_IMAGE": "lib_image",
    "LIB_IMAGE_PULL_POLICY": "lib_image_pull_policy",
    "TERMINATION_GRACE_PERIOD_SECONDS": "termination_grace_period_seconds",
    "STATUS_CHECK_TIMEOUT": "timeout",
    "TARGET_DELAY": "delay",
    "STATUS_CHECK_DELAY": "poll_interval",
    "TEARDOWN_RETRIES": "teardown_retries",
    "TEARDOWN_BACKOFF": "teardown_backoff",
    "CHAOS_NAMESPACE": "chaos_namespace",
    "AUXILIARY_APPINFO": "auxiliary_app_info",
}

PULL_POLICIES = ("Always", "IfNotPresent", "Never")


def generate_run_id(length: int = 6) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


def freeze(value):
    """Read-only copy of nested mappings and lists."""
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    return value


def thaw(value):
    """Plain dict/list copy of a frozen value, as the kubernetes client expects."""
    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [thaw(item) for item in value]
    return value


class ExperimentConfig(BaseModel):
    """Validated, immutable parameter set of one experiment run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    experiment_name: str = "node-cpu-hog"
    engine_name: str = ""
    chaos_uid: str = ""
    instance_id: str = ""
    run_id: str = Field(default_factory=generate_run_id)

    chaos_duration: int = Field(default=60, gt=0)
    ramp_time: int = Field(default=0, ge=0)

    target_nodes: tuple[str, ...] = ()
    node_label: str = ""
    app_namespace: str = ""
    app_label: str = ""
    app_kind: str = ""
    nodes_affected_perc: int = Field(default=0, ge=0, le=100)
    sequence: Sequence = Sequence.PARALLEL

    node_cpu_cores: int = Field(default=2, ge=0)
    cpu_load: int = Field(default=100, ge=0, le=100)
    lib_image: str = "litmuschaos/go-runner:latest"
    lib_image_pull_policy: str = "Always"
    helper_resources: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)

    termination_grace_period_seconds: int = Field(default=0, ge=0)
    timeout: int = Field(default=180, ge=0)
    delay: int = Field(default=0, ge=0)
    poll_interval: float = Field(default=2.0, gt=0)
    teardown_retries: int = Field(default=3, ge=1)
    teardown_backoff: float = Field(default=1.0, ge=0)

    chaos_namespace: str = "litmus"
    auxiliary_app_info: str = ""

    @field_validator("target_nodes", mode="before")
    @classmethod
    def _split_target_nodes(cls, value):
        if value is None:
            return ()
        if isinstance(value, str):
            value = value.split(",")
        names = []
        for name in value:
            name = str(name).strip()
            if name and name not in names:
                names.append(name)
        return tuple(names)

    @field_validator("sequence", mode="before")
    @classmethod
    def _normalize_sequence(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("lib_image_pull_policy")
    @classmethod
    def _check_pull_policy(cls, value: str) -> str:
        if value not in PULL_POLICIES:
            raise ValueError(f"must be one of {', '.join(PULL_POLICIES)}")
        return value

    @field_validator("run_id", "lib_image")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("helper_resources")
    @classmethod
    def _freeze_resources(cls, value):
        return freeze(value)

    @property
    def helper_deadline(self) -> int:
        """Seconds a helper may take from launch to exit."""
        return self.chaos_duration + self.timeout

    def resources_manifest(self) -> dict:
        """Mutable copy of `helper_resources` for the helper pod spec."""
        return thaw(self.helper_resources)

    @classmethod
    def build(cls, **values) -> "ExperimentConfig":
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError(f"invalid experiment config: {e}") from e

    @classmethod
    def from_env(cls, environ: dict | None = None) -> "ExperimentConfig":
        """Read the Litmus-style environment (and a local .env, if present)."""
        if environ is None:
            load_dotenv()
            environ = os.environ
        values = {}
        for env_name, field_name in ENV_FIELDS.items():
            raw = environ.get(env_name)
            if raw is None or raw == "":
                continue
            values[field_name] = raw
        return cls.build(**values)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "ExperimentConfig":
        path = Path(path)
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"cannot read config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"config file {path} must hold a mapping")
        return cls.build(**data)
