"""Durable experiment state, keyed by run id."""

import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path

import yaml

from nodehog.errors import StateNotFoundError
from nodehog.models import ExperimentState
from nodehog.service.kubectl import KubeCtl

logger = logging.getLogger("all.nodehog.recorder")

STATE_KEY = "state.yaml"


def dump_state(state: ExperimentState) -> str:
    return yaml.safe_dump(state.to_dict(), sort_keys=False)


def parse_state(text: str) -> ExperimentState:
    return ExperimentState.from_dict(yaml.safe_load(text))


class StateRecorder(ABC):
    @abstractmethod
    def persist(self, state: ExperimentState):
        pass

    @abstractmethod
    def load(self, run_id: str) -> ExperimentState:
        """Raises StateNotFoundError if nothing was recorded for `run_id`."""

    @abstractmethod
    def delete(self, run_id: str):
        pass


class MemoryStateRecorder(StateRecorder):
    """Keeps serialized snapshots in process; every persist is kept in `history`."""

    def __init__(self):
        self._records: dict[str, str] = {}
        self.history: list[dict] = []
        self._lock = threading.Lock()

    def persist(self, state: ExperimentState):
        text = dump_state(state)
        with self._lock:
            self._records[state.run_id] = text
            self.history.append(yaml.safe_load(text))

    def load(self, run_id: str) -> ExperimentState:
        with self._lock:
            text = self._records.get(run_id)
        if text is None:
            raise StateNotFoundError(run_id)
        return parse_state(text)

    def delete(self, run_id: str):
        with self._lock:
            self._records.pop(run_id, None)


class FileStateRecorder(StateRecorder):
    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def path_for(self, run_id: str) -> Path:
        return self.directory / f"{run_id}.yaml"

    def persist(self, state: ExperimentState):
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self.path_for(state.run_id)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f".{state.run_id}-", suffix=".yaml")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(dump_state(state))
            os.replace(tmp_path, target)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        logger.debug(f"Recorded state of run {state.run_id} ({state.phase.value}) to {target}")

    def load(self, run_id: str) -> ExperimentState:
        path = self.path_for(run_id)
        if not path.exists():
            raise StateNotFoundError(run_id)
        return parse_state(path.read_text())

    def delete(self, run_id: str):
        self.path_for(run_id).unlink(missing_ok=True)


class ConfigMapStateRecorder(StateRecorder):
    """Stores each run in a ConfigMap so the record survives pod restarts."""

    def __init__(self, kubectl: KubeCtl, namespace: str):
        self.kubectl = kubectl
        self.namespace = namespace

    def configmap_name(self, run_id: str) -> str:
        return f"nodehog-state-{run_id}"

    def persist(self, state: ExperimentState):
        self.kubectl.create_or_update_configmap(
            self.configmap_name(state.run_id),
            self.namespace,
            {STATE_KEY: dump_state(state)},
            labels={"app.kubernetes.io/part-of": "nodehog", "nodehog/run-id": state.run_id},
        )

    def load(self, run_id: str) -> ExperimentState:
        data = self.kubectl.read_configmap_data(self.configmap_name(run_id), self.namespace)
        if not data or STATE_KEY not in data:
            raise StateNotFoundError(run_id)
        return parse_state(data[STATE_KEY])

    def delete(self, run_id: str):
        self.kubectl.delete_configmap(self.configmap_name(run_id), self.namespace)
