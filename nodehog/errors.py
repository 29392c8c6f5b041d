"""Exception hierarchy for node CPU hog experiments."""


class NodeHogError(Exception):
    """Base class for every error raised by nodehog."""


class ConfigError(NodeHogError):
    """The experiment parameters are missing or invalid."""


class ClusterError(NodeHogError):
    """A call to the cluster API failed."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class WorkloadNotFoundError(ClusterError):
    """The helper workload does not exist (anymore)."""


class ResolutionError(NodeHogError):
    """Target nodes could not be resolved."""


class NoEligibleTargetsError(ResolutionError):
    pass


class HelperError(NodeHogError):
    """A helper workload did not complete its injection window."""

    def __init__(self, node: str, message: str):
        super().__init__(f"{node}: {message}")
        self.node = node
        self.detail = message


class SchedulingError(HelperError):
    """The helper could not be placed on its node."""


class ExecutionError(HelperError):
    """The helper ran but exited abnormally."""


class HelperTimeoutError(HelperError, TimeoutError):
    """The helper did not finish within chaos duration plus timeout."""


class TeardownError(NodeHogError):
    """A helper workload could not be removed from the cluster."""

    def __init__(self, workload_id: str, message: str):
        super().__init__(f"{workload_id}: {message}")
        self.workload_id = workload_id


class InvalidTransitionError(NodeHogError):
    pass


class StateNotFoundError(NodeHogError):
    def __init__(self, run_id: str):
        super().__init__(f"no recorded state for run '{run_id}'")
        self.run_id = run_id
