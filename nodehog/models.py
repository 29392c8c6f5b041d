"""Runtime records shared by the resolver, helper manager, sequencer and recorder."""

import time
from dataclasses import dataclass, field
from enum import Enum

from nodehog.errors import InvalidTransitionError


class Sequence(str, Enum):
    SERIAL = "serial"
    PARALLEL = "parallel"


class Verdict(str, Enum):
    PASS = "Pass"
    FAIL = "Fail"


class WorkloadPhase(str, Enum):
    """Phase reported by the cluster for a helper workload."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


@dataclass
class WorkloadStatus:
    phase: WorkloadPhase
    exit_code: int | None = None
    reason: str | None = None
    # Set when the scheduler reports the pod cannot be placed on its node.
    unschedulable: bool = False


class HelperPhase(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"
    CLEANED = "Cleaned"

    @property
    def is_terminal(self) -> bool:
        return self in _HELPER_TERMINAL

    def can_transition_to(self, other: "HelperPhase") -> bool:
        return other in _HELPER_TRANSITIONS[self]


_HELPER_TERMINAL = frozenset(
    {HelperPhase.SUCCEEDED, HelperPhase.FAILED, HelperPhase.TIMED_OUT, HelperPhase.CLEANED}
)

_HELPER_TRANSITIONS = {
    HelperPhase.PENDING: {HelperPhase.RUNNING, HelperPhase.SUCCEEDED, HelperPhase.FAILED, HelperPhase.TIMED_OUT},
    HelperPhase.RUNNING: {HelperPhase.SUCCEEDED, HelperPhase.FAILED, HelperPhase.TIMED_OUT},
    HelperPhase.SUCCEEDED: {HelperPhase.CLEANED},
    HelperPhase.FAILED: {HelperPhase.CLEANED},
    HelperPhase.TIMED_OUT: {HelperPhase.CLEANED},
    HelperPhase.CLEANED: set(),
}


class ExperimentPhase(str, Enum):
    INITIALIZING = "Initializing"
    RAMPING_UP = "RampingUp"
    INJECTING = "Injecting"
    VERIFYING = "Verifying"
    CLEANING_UP = "CleaningUp"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExperimentPhase.COMPLETED, ExperimentPhase.FAILED)

    def can_transition_to(self, other: "ExperimentPhase") -> bool:
        return other in _EXPERIMENT_TRANSITIONS[self]


_EXPERIMENT_TRANSITIONS = {
    ExperimentPhase.INITIALIZING: {ExperimentPhase.RAMPING_UP, ExperimentPhase.CLEANING_UP, ExperimentPhase.FAILED},
    ExperimentPhase.RAMPING_UP: {ExperimentPhase.INJECTING, ExperimentPhase.CLEANING_UP, ExperimentPhase.FAILED},
    ExperimentPhase.INJECTING: {ExperimentPhase.VERIFYING, ExperimentPhase.CLEANING_UP, ExperimentPhase.FAILED},
    ExperimentPhase.VERIFYING: {ExperimentPhase.CLEANING_UP, ExperimentPhase.FAILED},
    ExperimentPhase.CLEANING_UP: {ExperimentPhase.COMPLETED, ExperimentPhase.FAILED},
    ExperimentPhase.COMPLETED: set(),
    ExperimentPhase.FAILED: set(),
}


@dataclass(frozen=True)
class TargetNode:
    name: str
    ready: bool = True


@dataclass
class HelperTask:
    """One helper workload pinned to one target node."""

    node: str
    workload_id: str | None = None
    phase: HelperPhase = HelperPhase.PENDING
    # Terminal phase reached before teardown, kept once the task is Cleaned.
    outcome: HelperPhase | None = None
    launched_at: float | None = None
    started_at: float | None = None
    finished_at: float | None = None
    cleaned_at: float | None = None
    exit_reason: str | None = None
    error: str | None = None
    cleanup_pending: bool = False
    node_ready_after: bool | None = None

    def to_dict(self) -> dict:
        return {
            "node": self.node,
            "workload_id": self.workload_id,
            "phase": self.phase.value,
            "outcome": self.outcome.value if self.outcome else None,
            "launched_at": self.launched_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "cleaned_at": self.cleaned_at,
            "exit_reason": self.exit_reason,
            "error": self.error,
            "cleanup_pending": self.cleanup_pending,
            "node_ready_after": self.node_ready_after,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HelperTask":
        return cls(
            node=data["node"],
            workload_id=data.get("workload_id"),
            phase=HelperPhase(data.get("phase", HelperPhase.PENDING.value)),
            outcome=HelperPhase(data["outcome"]) if data.get("outcome") else None,
            launched_at=data.get("launched_at"),
            started_at=data.get("started_at"),
            finished_at=data.get("finished_at"),
            cleaned_at=data.get("cleaned_at"),
            exit_reason=data.get("exit_reason"),
            error=data.get("error"),
            cleanup_pending=bool(data.get("cleanup_pending", False)),
            node_ready_after=data.get("node_ready_after"),
        )


@dataclass
class ExperimentState:
    run_id: str
    experiment_name: str = "node-cpu-hog"
    phase: ExperimentPhase = ExperimentPhase.INITIALIZING
    targets: list[TargetNode] = field(default_factory=list)
    tasks: list[HelperTask] = field(default_factory=list)
    verdict: Verdict | None = None
    reason: str | None = None
    updated_at: float = field(default_factory=time.time)

    def advance(self, phase: ExperimentPhase):
        if not self.phase.can_transition_to(phase):
            raise InvalidTransitionError(f"experiment cannot move from {self.phase.value} to {phase.value}")
        self.phase = phase
        self.updated_at = time.time()

    def unfinished_tasks(self) -> list[HelperTask]:
        return [t for t in self.tasks if t.phase != HelperPhase.CLEANED]

    def all_settled(self) -> bool:
        """True once every task is terminal and nothing awaits cleanup."""
        return all(t.phase.is_terminal and not t.cleanup_pending for t in self.tasks)

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "experiment_name": self.experiment_name,
            "phase": self.phase.value,
            "targets": [{"name": t.name, "ready": t.ready} for t in self.targets],
            "tasks": [t.to_dict() for t in list(self.tasks)],
            "verdict": self.verdict.value if self.verdict else None,
            "reason": self.reason,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExperimentState":
        return cls(
            run_id=data["run_id"],
            experiment_name=data.get("experiment_name", "node-cpu-hog"),
            phase=ExperimentPhase(data.get("phase", ExperimentPhase.INITIALIZING.value)),
            targets=[TargetNode(name=t["name"], ready=t.get("ready", True)) for t in data.get("targets") or []],
            tasks=[HelperTask.from_dict(t) for t in data.get("tasks") or []],
            verdict=Verdict(data["verdict"]) if data.get("verdict") else None,
            reason=data.get("reason"),
            updated_at=data.get("updated_at") or time.time(),
        )


@dataclass
class TargetDetail:
    node: str
    phase: str
    exit_reason: str | None = None
    error: str | None = None
    cleaned: bool = False
    node_ready_after: bool | None = None


@dataclass
class ExperimentResult:
    run_id: str
    verdict: Verdict
    phase: ExperimentPhase
    reason: str | None = None
    targets: list[TargetDetail] = field(default_factory=list)

    @property
    def succeeded_nodes(self) -> list[str]:
        return [d.node for d in self.targets if d.phase == HelperPhase.SUCCEEDED.value]

    @property
    def failed_nodes(self) -> list[str]:
        return [d.node for d in self.targets if d.phase != HelperPhase.SUCCEEDED.value]

    @classmethod
    def from_state(cls, state: ExperimentState) -> "ExperimentResult":
        details = [
            TargetDetail(
                node=t.node,
                phase=(t.outcome or t.phase).value,
                exit_reason=t.exit_reason,
                error=t.error,
                cleaned=t.phase == HelperPhase.CLEANED,
                node_ready_after=t.node_ready_after,
            )
            for t in state.tasks
        ]
        return cls(
            run_id=state.run_id,
            verdict=state.verdict or Verdict.FAIL,
            phase=state.phase,
            reason=state.reason,
            targets=details,
        )

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "result": self.verdict.value,
            "phase": self.phase.value,
            "reason": self.reason,
            "succeeded": self.succeeded_nodes,
            "failed": self.failed_nodes,
            "perTargetDetail": [
                {
                    "node": d.node,
                    "phase": d.phase,
                    "exitReason": d.exit_reason,
                    "error": d.error,
                    "cleaned": d.cleaned,
                    "nodeReadyAfter": d.node_ready_after,
                }
                for d in self.targets
            ],
        }
