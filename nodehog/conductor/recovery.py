"""Finish the cleanup of a run whose orchestrator process went away."""

import logging
import threading

from nodehog.conductor.helpers import HelperManager
from nodehog.conductor.recorder import StateRecorder
from nodehog.config import ExperimentConfig
from nodehog.errors import NodeHogError
from nodehog.models import ExperimentPhase, ExperimentResult, HelperTask, Verdict
from nodehog.service.base import ClusterAPI

logger = logging.getLogger("all.nodehog.recovery")

INTERRUPTED_REASON = "run interrupted; helpers cleaned up on recovery"


def recover(
    run_id: str,
    cluster: ClusterAPI,
    config: ExperimentConfig,
    recorder: StateRecorder,
    force_delete_wait: float = 10.0,
) -> ExperimentResult:
    """Tear down every recorded helper of `run_id` that is not Cleaned yet.

    A run that had not reached a terminal phase re-enters CleaningUp and ends
    Completed or Failed. A terminal run keeps its phase; only its pending
    cleanups are retried.
    """
    state = recorder.load(run_id)
    lock = threading.Lock()

    def record(_task: HelperTask | None = None):
        with lock:
            try:
                recorder.persist(state)
            except (NodeHogError, OSError) as e:
                logger.error(f"Failed to record state of run {run_id}: {e}")

    manager = HelperManager(cluster, config, on_transition=record, force_delete_wait=force_delete_wait)
    leftovers = state.unfinished_tasks()
    logger.info(f"Recovering run {run_id} ({state.phase.value}): {len(leftovers)} helpers to clean up")
    for task in leftovers:
        manager.adopt(task)

    was_terminal = state.phase.is_terminal
    if not was_terminal and state.phase != ExperimentPhase.CLEANING_UP:
        state.advance(ExperimentPhase.CLEANING_UP)
        record()

    pending = [task for task in leftovers if not manager.cleanup(task)]

    if was_terminal:
        if pending:
            logger.error(f"Run {run_id}: cleanup still pending for {', '.join(t.node for t in pending)}")
    elif pending:
        state.verdict = Verdict.FAIL
        state.reason = f"cleanup pending for {', '.join(t.node for t in pending)}"
        state.advance(ExperimentPhase.FAILED)
    else:
        if state.verdict is None:
            state.verdict = Verdict.FAIL
            state.reason = state.reason or INTERRUPTED_REASON
        state.advance(ExperimentPhase.COMPLETED)
    record()
    logger.info(f"Recovery of run {run_id} finished: {state.phase.value}")
    return ExperimentResult.from_state(state)
