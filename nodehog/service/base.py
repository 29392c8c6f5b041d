"""Workload-placement API the orchestrator drives."""

from abc import ABC, abstractmethod

from nodehog.models import WorkloadStatus


class ClusterAPI(ABC):
    @abstractmethod
    def list_nodes(self, selector: str | None = None) -> list[str]:
        """Names of the nodes matching a label selector (all nodes when None)."""

    @abstractmethod
    def list_app_nodes(self, namespace: str, label_selector: str) -> list[str]:
        """Names of the nodes hosting pods of an application."""

    @abstractmethod
    def is_node_ready(self, node_name: str) -> bool:
        pass

    @abstractmethod
    def get_node_cpu_capacity(self, node_name: str) -> int:
        pass

    @abstractmethod
    def create_workload(
        self,
        node_name: str,
        image: str,
        args: list[str],
        resources: dict,
        *,
        name: str,
        labels: dict[str, str],
        pull_policy: str = "Always",
        grace_period: int = 0,
    ) -> str:
        """Start a helper on `node_name` and return its workload id."""

    @abstractmethod
    def get_workload_status(self, workload_id: str) -> WorkloadStatus:
        """Raises WorkloadNotFoundError once the workload is gone."""

    @abstractmethod
    def delete_workload(self, workload_id: str, grace_seconds: int) -> None:
        """Request deletion. Deleting a missing workload is not an error."""
