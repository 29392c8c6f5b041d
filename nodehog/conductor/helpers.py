"""Launch, watch and remove the helper pods that hog CPU on target nodes.

Every helper is watched by its own monitor thread. All changes to a
HelperTask go through the HelperManager that launched (or adopted) it, under a
single lock, and every phase change is reported through `on_transition` so the
caller can persist it.
"""

import logging
import random
import string
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from nodehog.config import ExperimentConfig
from nodehog.errors import (
    ClusterError,
    ExecutionError,
    HelperError,
    HelperTimeoutError,
    InvalidTransitionError,
    NodeHogError,
    SchedulingError,
    TeardownError,
    WorkloadNotFoundError,
)
from nodehog.models import HelperPhase, HelperTask, TargetNode, WorkloadPhase, WorkloadStatus
from nodehog.service.base import ClusterAPI

logger = logging.getLogger("all.nodehog.helpers")

PART_OF_LABEL = "app.kubernetes.io/part-of"
RUN_ID_LABEL = "nodehog/run-id"


@dataclass
class _Handle:
    deadline: float
    stop: threading.Event = field(default_factory=threading.Event)
    done: threading.Event = field(default_factory=threading.Event)
    thread: threading.Thread | None = None


def helper_name(experiment_name: str) -> str:
    suffix = "".join(random.choices(string.ascii_lowercase, k=5))
    return f"{experiment_name}-helper-{suffix}"


class HelperManager:
    def __init__(
        self,
        cluster: ClusterAPI,
        config: ExperimentConfig,
        on_transition: Callable[[HelperTask], None] | None = None,
        force_delete_wait: float = 10.0,
    ):
        self.cluster = cluster
        self.config = config
        self.on_transition = on_transition
        self.force_delete_wait = force_delete_wait
        self._lock = threading.RLock()
        self._handles: dict[int, _Handle] = {}
        self._wait_step = min(config.poll_interval, 0.5)
        self._deadline_slack = max(1.0, 2 * config.poll_interval)

    ############# LAUNCH ################

    def helper_args(self, cores: int) -> list[str]:
        return [
            "--cpu",
            str(cores),
            "--cpu-load",
            str(self.config.cpu_load),
            "--timeout",
            f"{self.config.chaos_duration}s",
        ]

    def helper_labels(self, name: str) -> dict[str, str]:
        return {
            "app": f"{self.config.experiment_name}-helper",
            "name": name,
            "chaosUID": self.config.chaos_uid,
            PART_OF_LABEL: "nodehog",
            RUN_ID_LABEL: self.config.run_id,
        }

    def launch(self, target: TargetNode) -> HelperTask:
        """Start a helper on `target` and return its task without waiting for it.

        The workload name is chosen and recorded before the create call, so a
        restart between the two still leaves a record to clean up.
        """
        name = helper_name(self.config.experiment_name)
        task = HelperTask(node=target.name, workload_id=name, launched_at=time.time())
        handle = _Handle(deadline=time.monotonic() + self.config.helper_deadline)
        with self._lock:
            self._handles[id(task)] = handle
        self._notify(task)

        try:
            cores = self.config.node_cpu_cores or self.cluster.get_node_cpu_capacity(target.name)
            self.cluster.create_workload(
                target.name,
                self.config.lib_image,
                self.helper_args(cores),
                self.config.resources_manifest(),
                name=name,
                labels=self.helper_labels(name),
                pull_policy=self.config.lib_image_pull_policy,
                grace_period=self.config.termination_grace_period_seconds,
            )
        except Exception as e:
            self._finish(task, HelperPhase.FAILED, SchedulingError(target.name, str(e)))
            return task

        logger.info(f"[{target.name}] Launched helper {name} ({cores} cores at {self.config.cpu_load}% load)")
        thread = threading.Thread(
            target=self._monitor, args=(task, handle), name=f"helper-monitor-{target.name}", daemon=True
        )
        handle.thread = thread
        thread.start()
        return task

    def adopt(self, task: HelperTask):
        """Take ownership of a task recorded by an earlier process."""
        handle = _Handle(deadline=time.monotonic())
        if task.phase.is_terminal:
            handle.done.set()
        with self._lock:
            self._handles[id(task)] = handle

    ############# MONITORING ################

    def _monitor(self, task: HelperTask, handle: _Handle):
        try:
            self._poll(task, handle)
        finally:
            if not handle.stop.is_set() and not task.phase.is_terminal:
                self._finish(task, HelperPhase.FAILED, ExecutionError(task.node, "helper monitor stopped unexpectedly"))

    def _poll(self, task: HelperTask, handle: _Handle):
        node = task.node
        while not handle.stop.is_set():
            status = None
            try:
                status = self.cluster.get_workload_status(task.workload_id)
            except WorkloadNotFoundError:
                if not handle.stop.is_set():
                    self._finish(task, HelperPhase.FAILED, ExecutionError(node, "helper workload disappeared"))
                return
            except ClusterError as e:
                logger.warning(f"[{node}] Status poll for {task.workload_id} failed: {e}")
            except Exception as e:
                logger.exception(f"[{node}] Unexpected error polling {task.workload_id}: {e}")

            if status is not None:
                logger.debug(f"[{node}] {task.workload_id} is {status.phase.value}")
                if self._observe(task, status):
                    return

            if time.monotonic() >= handle.deadline:
                self._time_out(task)
                return
            handle.stop.wait(self.config.poll_interval)

    def _time_out(self, task: HelperTask):
        self._finish(
            task,
            HelperPhase.TIMED_OUT,
            HelperTimeoutError(task.node, f"helper did not exit within {self.config.helper_deadline}s"),
        )

    def _observe(self, task: HelperTask, status: WorkloadStatus) -> bool:
        """Apply a polled status to the task; True once the task is terminal."""
        if status.phase == WorkloadPhase.RUNNING:
            with self._lock:
                if task.phase != HelperPhase.PENDING:
                    return task.phase.is_terminal
                self._set_phase(task, HelperPhase.RUNNING)
                task.started_at = time.time()
            logger.info(f"[{task.node}] Helper {task.workload_id} is running")
            self._notify(task)
            return False

        if status.phase == WorkloadPhase.SUCCEEDED:
            self._finish(task, HelperPhase.SUCCEEDED, exit_reason=status.reason or "Completed")
            return True

        if status.phase == WorkloadPhase.FAILED:
            detail = status.reason or "helper failed"
            if status.exit_code is not None:
                # A terminated container means the helper did run.
                error = ExecutionError(task.node, f"exit code {status.exit_code}: {detail}")
            else:
                error = SchedulingError(task.node, detail)
            self._finish(task, HelperPhase.FAILED, error)
            return True

        if status.unschedulable:
            self._finish(task, HelperPhase.FAILED, SchedulingError(task.node, status.reason or "unschedulable"))
            return True
        return False

    def wait(self, task: HelperTask, cancel_event: threading.Event | None = None) -> bool:
        """Block until `task` is terminal. Returns False if cancelled first.

        The helper deadline is enforced here too, in case the monitor could not.
        """
        with self._lock:
            handle = self._handles.get(id(task))
        if handle is None:
            return task.phase.is_terminal
        while not handle.done.wait(self._wait_step):
            if cancel_event is not None and cancel_event.is_set():
                return False
            if time.monotonic() >= handle.deadline + self._deadline_slack:
                logger.warning(f"[{task.node}] Monitor missed the helper deadline")
                self._time_out(task)
        return True

    def record_node_health(self, task: HelperTask):
        try:
            ready = self.cluster.is_node_ready(task.node)
        except ClusterError as e:
            logger.warning(f"[{task.node}] Could not read node readiness: {e}")
            return
        with self._lock:
            task.node_ready_after = ready
        if not ready:
            logger.warning(f"[{task.node}] Node is not Ready after the fault")
        self._notify(task)

    ############# TEARDOWN ################

    def teardown(self, task: HelperTask):
        """Remove the helper of `task` and mark it Cleaned. Safe to repeat."""
        with self._lock:
            if task.phase == HelperPhase.CLEANED:
                logger.debug(f"[{task.node}] Helper already cleaned")
                return
            handle = self._handles.get(id(task))

        if handle is not None:
            handle.stop.set()
            if handle.thread is not None and handle.thread is not threading.current_thread():
                handle.thread.join(timeout=max(1.0, 2 * self.config.poll_interval))

        self._finish(task, HelperPhase.FAILED, ExecutionError(task.node, "stopped before completion"))

        if task.workload_id:
            self._remove(task.workload_id)

        with self._lock:
            self._set_phase(task, HelperPhase.CLEANED)
            task.cleaned_at = time.time()
            task.cleanup_pending = False
            self._handles.pop(id(task), None)
        logger.info(f"[{task.node}] Helper {task.workload_id} removed")
        self._notify(task)

    def _remove(self, workload_id: str):
        grace = self.config.termination_grace_period_seconds
        try:
            self.cluster.delete_workload(workload_id, grace)
            if self._await_gone(workload_id, grace):
                return
            logger.warning(f"Helper {workload_id} still present after {grace}s grace period, forcing removal")
            self.cluster.delete_workload(workload_id, 0)
            if self._await_gone(workload_id, self.force_delete_wait):
                return
        except Exception as e:
            raise TeardownError(workload_id, str(e)) from e
        raise TeardownError(workload_id, "workload still present after forced removal")

    def _await_gone(self, workload_id: str, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while True:
            try:
                self.cluster.get_workload_status(workload_id)
            except WorkloadNotFoundError:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            time.sleep(min(self._wait_step, remaining))

    def cleanup(self, task: HelperTask) -> bool:
        """Teardown with exponential backoff; False once retries are exhausted.

        Never raises, so one helper cannot stop the cleanup of the others.
        """
        attempts = self.config.teardown_retries
        for attempt in range(attempts):
            try:
                self.teardown(task)
                return True
            except TeardownError as e:
                logger.warning(f"[{task.node}] Teardown attempt {attempt + 1}/{attempts} failed: {e}")
                if attempt + 1 < attempts:
                    time.sleep(self.config.teardown_backoff * 2**attempt)
            except Exception as e:
                logger.exception(f"[{task.node}] Teardown of {task.workload_id} failed unexpectedly: {e}")
                break
        self.mark_cleanup_pending(task)
        return False

    def mark_cleanup_pending(self, task: HelperTask):
        with self._lock:
            if task.phase == HelperPhase.CLEANED:
                return
            task.cleanup_pending = True
        logger.error(f"[{task.node}] Helper {task.workload_id} left pending cleanup")
        self._notify(task)

    ############# STATE CHANGES ################

    def _set_phase(self, task: HelperTask, phase: HelperPhase):
        if not task.phase.can_transition_to(phase):
            raise InvalidTransitionError(f"helper on {task.node} cannot move from {task.phase.value} to {phase.value}")
        task.phase = phase

    def _finish(
        self,
        task: HelperTask,
        phase: HelperPhase,
        error: HelperError | None = None,
        exit_reason: str | None = None,
    ) -> bool:
        with self._lock:
            if task.phase.is_terminal:
                return False
            self._set_phase(task, phase)
            task.outcome = phase
            task.finished_at = time.time()
            task.exit_reason = exit_reason or (error.detail if error else None)
            task.error = type(error).__name__ if error else None
            handle = self._handles.get(id(task))
            if handle is not None:
                handle.done.set()

        if error is None:
            logger.info(f"[{task.node}] Helper {task.workload_id} finished: {phase.value}")
        else:
            logger.warning(f"[{task.node}] Helper {task.workload_id} {phase.value}: {error}")
        self._notify(task)
        return True

    def _notify(self, task: HelperTask):
        if self.on_transition is None:
            return
        try:
            self.on_transition(task)
        except (NodeHogError, OSError) as e:
            logger.error(f"[{task.node}] Failed to record helper state: {e}")
