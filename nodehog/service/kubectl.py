"""Interface to K8S controller service."""

import logging
import math
import re

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError

from nodehog.errors import ClusterError, WorkloadNotFoundError
from nodehog.models import WorkloadPhase, WorkloadStatus
from nodehog.service.base import ClusterAPI

logger = logging.getLogger("all.nodehog.kubectl")

# Waiting reasons that mean the helper will never start on its node.
UNSTARTABLE_REASONS = frozenset({"ErrImagePull", "ImagePullBackOff", "InvalidImageName", "CreateContainerConfigError"})

# Connection resets, DNS failures and exhausted retries never reach ApiException.
TRANSPORT_ERRORS = (HTTPError, OSError)

CPU_SUFFIXES = {
    "k": 1e3,
    "M": 1e6,
    "G": 1e9,
    "T": 1e12,
    "P": 1e15,
    "E": 1e18,
    "Ki": 2**10,
    "Mi": 2**20,
    "Gi": 2**30,
    "Ti": 2**40,
    "Pi": 2**50,
    "Ei": 2**60,
}


class KubeCtl(ClusterAPI):
    def __init__(self, namespace: str = "default", core_v1_api: client.CoreV1Api | None = None):
        """Load the in-cluster configuration, falling back to the local kubeconfig."""
        self.namespace = namespace
        if core_v1_api is None:
            try:
                config.load_incluster_config()
            except ConfigException:
                try:
                    config.load_kube_config()
                except (ConfigException, OSError) as e:
                    logger.error("Missing kubeconfig. Please set up a cluster.")
                    raise ClusterError(f"cannot load kubernetes configuration: {e}") from e
            core_v1_api = client.CoreV1Api()
        self.core_v1_api = core_v1_api

    ############# NODES ################

    def list_nodes(self, selector: str | None = None) -> list[str]:
        try:
            if selector:
                nodes = self.core_v1_api.list_node(label_selector=selector)
            else:
                nodes = self.core_v1_api.list_node()
        except ApiException as e:
            raise ClusterError(f"failed to list nodes: {e.reason}", e.status) from e
        except TRANSPORT_ERRORS as e:
            raise ClusterError(f"failed to list nodes: {e}") from e
        return [node.metadata.name for node in nodes.items]

    def list_app_nodes(self, namespace: str, label_selector: str) -> list[str]:
        try:
            pods = self.core_v1_api.list_namespaced_pod(namespace, label_selector=label_selector)
        except ApiException as e:
            raise ClusterError(f"failed to list pods in '{namespace}': {e.reason}", e.status) from e
        except TRANSPORT_ERRORS as e:
            raise ClusterError(f"failed to list pods in '{namespace}': {e}") from e
        names = []
        for pod in pods.items:
            node_name = pod.spec.node_name
            if node_name and node_name not in names:
                names.append(node_name)
        return names

    def is_node_ready(self, node_name: str) -> bool:
        try:
            node = self.core_v1_api.read_node(node_name)
        except ApiException as e:
            if e.status == 404:
                return False
            raise ClusterError(f"failed to read node '{node_name}': {e.reason}", e.status) from e
        except TRANSPORT_ERRORS as e:
            raise ClusterError(f"failed to read node '{node_name}': {e}") from e
        for condition in node.status.conditions or []:
            if condition.type == "Ready":
                return condition.status == "True"
        return False

    def get_node_cpu_capacity(self, node_name: str) -> int:
        try:
            node = self.core_v1_api.read_node(node_name)
        except ApiException as e:
            raise ClusterError(f"failed to read node '{node_name}': {e.reason}", e.status) from e
        except TRANSPORT_ERRORS as e:
            raise ClusterError(f"failed to read node '{node_name}': {e}") from e
        capacity = (node.status.capacity or {}).get("cpu")
        if not capacity:
            raise ClusterError(f"node '{node_name}' does not report a cpu capacity")
        try:
            return self.parse_cpu_quantity(capacity)
        except ValueError as e:
            raise ClusterError(f"node '{node_name}' reports an unreadable cpu capacity: {e}") from e

    def parse_cpu_quantity(self, cpu_str: str) -> int:
        """Whole cores in a CPU quantity such as '4', '3500m', '1e3' or '2k' (rounded up)."""
        match = re.match(r"^\+?([0-9]*\.?[0-9]+(?:[eE][+-]?[0-9]+)?)([a-zA-Z]{1,2})?$", str(cpu_str).strip())
        if not match:
            raise ValueError(f"Invalid Kubernetes cpu quantity: {cpu_str}")
        number, suffix = match.groups()
        if suffix and suffix != "m" and suffix not in CPU_SUFFIXES:
            raise ValueError(f"Invalid Kubernetes cpu quantity: {cpu_str}")
        if suffix == "m":
            value = float(number) / 1000
        else:
            value = float(number) * CPU_SUFFIXES.get(suffix, 1)
        return max(1, math.ceil(value))

    ############# HELPER WORKLOADS ################

    def helper_pod_manifest(
        self,
        node_name: str,
        image: str,
        args: list[str],
        resources: dict,
        name: str,
        labels: dict[str, str],
        pull_policy: str,
        grace_period: int,
    ) -> dict:
        container = {
            "name": name,
            "image": image,
            "imagePullPolicy": pull_policy,
            "command": ["stress-ng"],
            "args": list(args),
        }
        if resources:
            container["resources"] = resources
        return {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {"name": name, "namespace": self.namespace, "labels": dict(labels)},
            "spec": {
                "nodeName": node_name,
                "restartPolicy": "Never",
                "terminationGracePeriodSeconds": grace_period,
                "containers": [container],
            },
        }

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
        body = self.helper_pod_manifest(node_name, image, args, resources, name, labels, pull_policy, grace_period)
        try:
            pod = self.core_v1_api.create_namespaced_pod(self.namespace, body)
        except ApiException as e:
            raise ClusterError(f"failed to create helper pod '{name}' on '{node_name}': {e.reason}", e.status) from e
        except TRANSPORT_ERRORS as e:
            raise ClusterError(f"failed to create helper pod '{name}' on '{node_name}': {e}") from e
        logger.debug(f"Created helper pod {name} on node {node_name}")
        return pod.metadata.name

    def get_workload_status(self, workload_id: str) -> WorkloadStatus:
        try:
            pod = self.core_v1_api.read_namespaced_pod(workload_id, self.namespace)
        except ApiException as e:
            if e.status == 404:
                raise WorkloadNotFoundError(f"helper pod '{workload_id}' not found", 404) from e
            raise ClusterError(f"failed to read helper pod '{workload_id}': {e.reason}", e.status) from e
        except TRANSPORT_ERRORS as e:
            raise ClusterError(f"failed to read helper pod '{workload_id}': {e}") from e
        return self.pod_status(pod)

    def pod_status(self, pod) -> WorkloadStatus:
        phase = pod.status.phase or "Pending"
        container_statuses = pod.status.container_statuses or []
        conditions = pod.status.conditions or []

        if phase in ("Succeeded", "Failed"):
            exit_code = None
            reason = pod.status.reason
            for cs in container_statuses:
                if cs.state and cs.state.terminated:
                    exit_code = cs.state.terminated.exit_code
                    reason = cs.state.terminated.reason or reason
                    break
            return WorkloadStatus(WorkloadPhase(phase), exit_code=exit_code, reason=reason)

        if phase == "Running":
            return WorkloadStatus(WorkloadPhase.RUNNING)

        for cs in container_statuses:
            if cs.state and cs.state.waiting and cs.state.waiting.reason in UNSTARTABLE_REASONS:
                return WorkloadStatus(WorkloadPhase.PENDING, reason=cs.state.waiting.reason, unschedulable=True)

        for cond in conditions:
            if cond.type == "PodScheduled" and cond.status == "False":
                return WorkloadStatus(
                    WorkloadPhase.PENDING, reason=cond.reason or cond.message, unschedulable=True
                )

        return WorkloadStatus(WorkloadPhase.PENDING, reason=pod.status.reason)

    def delete_workload(self, workload_id: str, grace_seconds: int) -> None:
        try:
            self.core_v1_api.delete_namespaced_pod(
                workload_id,
                self.namespace,
                grace_period_seconds=grace_seconds,
                body=client.V1DeleteOptions(grace_period_seconds=grace_seconds, propagation_policy="Background"),
            )
        except ApiException as e:
            if e.status == 404:
                return
            raise ClusterError(f"failed to delete helper pod '{workload_id}': {e.reason}", e.status) from e
        except TRANSPORT_ERRORS as e:
            raise ClusterError(f"failed to delete helper pod '{workload_id}': {e}") from e

    ############# CONFIGMAPS ################

    def read_configmap_data(self, name: str, namespace: str) -> dict | None:
        """Return the data of a configmap, or None if it does not exist."""
        try:
            configmap = self.core_v1_api.read_namespaced_config_map(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise ClusterError(f"failed to read configmap '{name}': {e.reason}", e.status) from e
        except TRANSPORT_ERRORS as e:
            raise ClusterError(f"failed to read configmap '{name}': {e}") from e
        return configmap.data or {}

    def create_or_update_configmap(self, name: str, namespace: str, data: dict, labels: dict | None = None):
        """Create a configmap if it doesn't exist, or update it if it does."""
        try:
            existing_configmap = self.core_v1_api.read_namespaced_config_map(name, namespace)
            existing_configmap.data = data
            self.core_v1_api.replace_namespaced_config_map(name, namespace, existing_configmap)
        except ApiException as e:
            if e.status != 404:
                raise ClusterError(f"failed to update configmap '{name}': {e.reason}", e.status) from e
            body = client.V1ConfigMap(metadata=client.V1ObjectMeta(name=name, labels=labels), data=data)
            try:
                self.core_v1_api.create_namespaced_config_map(namespace, body)
            except ApiException as create_error:
                raise ClusterError(
                    f"failed to create configmap '{name}': {create_error.reason}", create_error.status
                ) from create_error
            except TRANSPORT_ERRORS as create_error:
                raise ClusterError(f"failed to create configmap '{name}': {create_error}") from create_error
        except TRANSPORT_ERRORS as e:
            raise ClusterError(f"failed to update configmap '{name}': {e}") from e

    def delete_configmap(self, name: str, namespace: str):
        try:
            self.core_v1_api.delete_namespaced_config_map(name, namespace)
        except ApiException as e:
            if e.status != 404:
                raise ClusterError(f"failed to delete configmap '{name}': {e.reason}", e.status) from e
        except TRANSPORT_ERRORS as e:
            raise ClusterError(f"failed to delete configmap '{name}': {e}") from e
