"""Drive one experiment run from target selection to verified cleanup."""

import logging
import threading

from nodehog.conductor.helpers import HelperManager
from nodehog.conductor.recorder import StateRecorder
from nodehog.conductor.targets import TargetResolver
from nodehog.config import ExperimentConfig
from nodehog.errors import ClusterError, NodeHogError, ResolutionError
from nodehog.models import (
    ExperimentPhase,
    ExperimentResult,
    ExperimentState,
    HelperPhase,
    HelperTask,
    Sequence,
    TargetNode,
    Verdict,
)
from nodehog.service.base import ClusterAPI

logger = logging.getLogger("all.nodehog.sequencer")

ABORTED_REASON = "experiment aborted"


class ExperimentSequencer:
    def __init__(
        self,
        cluster: ClusterAPI,
        config: ExperimentConfig,
        recorder: StateRecorder,
        cancel_event: threading.Event | None = None,
        force_delete_wait: float = 10.0,
    ):
        self.cluster = cluster
        self.config = config
        self.recorder = recorder
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()
        self.state = ExperimentState(run_id=config.run_id, experiment_name=config.experiment_name)
        self.resolver = TargetResolver(cluster, config)
        self.manager = HelperManager(
            cluster, config, on_transition=self._task_changed, force_delete_wait=force_delete_wait
        )
        self._record_lock = threading.Lock()

    def cancel(self):
        self.cancel_event.set()

    def result(self) -> ExperimentResult:
        return ExperimentResult.from_state(self.state)

    def run(self) -> ExperimentResult:
        logger.info(f"Starting {self.config.experiment_name} run {self.config.run_id}")
        self._record()

        try:
            targets = self.resolver.resolve()
        except (ResolutionError, ClusterError) as e:
            logger.error(f"Target resolution failed: {e}")
            self._fail(f"target resolution failed: {e}")
            return self.result()
        self.state.targets = targets
        self._record()

        failure = None
        try:
            if self._ramp_up() or self._inject(targets):
                logger.warning(f"Run {self.config.run_id} aborted, cleaning up launched helpers")
                self.state.verdict = Verdict.FAIL
                self.state.reason = ABORTED_REASON
            else:
                self._verify(targets)
        except NodeHogError as e:
            logger.error(f"Run {self.config.run_id} failed: {e}")
            failure = str(e)
        except Exception:
            self._clean_up()
            self._fail("unexpected error during injection")
            raise

        pending = self._clean_up()
        self._finish(failure, pending)
        return self.result()

    ############# PHASES ################

    def _ramp_up(self) -> bool:
        """Returns True if the run was cancelled before injection."""
        if self.cancel_event.is_set():
            return True
        self._advance(ExperimentPhase.RAMPING_UP)
        if self.config.ramp_time:
            logger.info(f"Waiting for the ramp time of {self.config.ramp_time}s")
        return self._idle(self.config.ramp_time)

    def _inject(self, targets: list[TargetNode]) -> bool:
        """Run the helpers in sequence order. Returns True if cancelled."""
        self._advance(ExperimentPhase.INJECTING)
        if self.config.sequence == Sequence.SERIAL:
            for index, target in enumerate(targets):
                if self.cancel_event.is_set():
                    return True
                if index and self.config.delay:
                    logger.info(f"Waiting {self.config.delay}s before the next target")
                    if self._idle(self.config.delay):
                        return True
                task = self.manager.launch(target)
                if not self.manager.wait(task, self.cancel_event):
                    return True
            return False

        tasks = []
        for target in targets:
            if self.cancel_event.is_set():
                return True
            tasks.append(self.manager.launch(target))
        for task in tasks:
            if not self.manager.wait(task, self.cancel_event):
                return True
        return False

    def _verify(self, targets: list[TargetNode]):
        self._advance(ExperimentPhase.VERIFYING)
        tasks = list(self.state.tasks)
        for task in tasks:
            self.manager.record_node_health(task)

        failed = [t for t in tasks if t.outcome != HelperPhase.SUCCEEDED]
        if tasks and len(tasks) == len(targets) and not failed:
            self.state.verdict = Verdict.PASS
            self.state.reason = None
            logger.info(f"All {len(tasks)} helpers ran for the full window")
        else:
            self.state.verdict = Verdict.FAIL
            self.state.reason = f"{len(failed)}/{len(targets)} targets did not succeed: " + ", ".join(
                f"{t.node} ({(t.outcome or t.phase).value})" for t in failed
            )
            logger.warning(self.state.reason)
        self._record()

    def _clean_up(self) -> list[HelperTask]:
        """Tear down every helper; returns the tasks still pending cleanup."""
        if self.state.phase != ExperimentPhase.CLEANING_UP:
            self._advance(ExperimentPhase.CLEANING_UP)
        pending = []
        for task in list(self.state.tasks):
            if not self.manager.cleanup(task):
                pending.append(task)
        return pending

    def _finish(self, failure: str | None, pending: list[HelperTask]):
        if pending:
            nodes = ", ".join(t.node for t in pending)
            reason = f"cleanup pending for {nodes}"
            self._fail(f"{failure}; {reason}" if failure else reason)
        elif failure:
            self._fail(failure)
        elif not self.state.all_settled():
            self._fail("helpers did not settle before completion")
        else:
            self.state.verdict = self.state.verdict or Verdict.FAIL
            self._advance(ExperimentPhase.COMPLETED)
        logger.info(f"Run {self.config.run_id} finished: {self.state.phase.value}, result {self.state.verdict.value}")

    ############# BOOKKEEPING ################

    def _idle(self, seconds: float) -> bool:
        """Interruptible wait; True if cancelled."""
        if seconds <= 0:
            return self.cancel_event.is_set()
        return self.cancel_event.wait(seconds)

    def _advance(self, phase: ExperimentPhase):
        self.state.advance(phase)
        logger.info(f"Run {self.config.run_id}: {phase.value}")
        self._record()

    def _fail(self, reason: str):
        self.state.verdict = Verdict.FAIL
        self.state.reason = reason
        self.state.advance(ExperimentPhase.FAILED)
        self._record()

    def _task_changed(self, task: HelperTask):
        with self._record_lock:
            if not any(t is task for t in self.state.tasks):
                self.state.tasks.append(task)
        self._record()

    def _record(self):
        with self._record_lock:
            try:
                self.recorder.persist(self.state)
            except (NodeHogError, OSError) as e:
                logger.error(f"Failed to record state of run {self.state.run_id}: {e}")
