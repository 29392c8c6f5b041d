from unittest.mock import MagicMock

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import MaxRetryError

from nodehog.errors import ClusterError, WorkloadNotFoundError
from nodehog.models import WorkloadPhase
from nodehog.service.kubectl import KubeCtl


@pytest.fixture
def core_v1_api():
    return MagicMock()


@pytest.fixture
def kubectl(core_v1_api):
    return KubeCtl(namespace="litmus", core_v1_api=core_v1_api)


def make_node(name, ready="True", cpu="4"):
    return client.V1Node(
        metadata=client.V1ObjectMeta(name=name),
        status=client.V1NodeStatus(
            capacity={"cpu": cpu},
            conditions=[client.V1NodeCondition(type="Ready", status=ready)],
        ),
    )


def container_status(state):
    return client.V1ContainerStatus(
        name="helper", image="stress", image_id="", ready=False, restart_count=0, state=state
    )


def make_pod(phase, container_statuses=None, conditions=None, reason=None):
    return client.V1Pod(
        metadata=client.V1ObjectMeta(name="helper"),
        status=client.V1PodStatus(
            phase=phase, container_statuses=container_statuses, conditions=conditions, reason=reason
        ),
    )


def test_list_nodes_with_selector(kubectl, core_v1_api):
    core_v1_api.list_node.return_value = client.V1NodeList(items=[make_node("node-a"), make_node("node-b")])

    assert kubectl.list_nodes("pool=batch") == ["node-a", "node-b"]
    core_v1_api.list_node.assert_called_once_with(label_selector="pool=batch")


def test_list_nodes_wraps_api_errors(kubectl, core_v1_api):
    core_v1_api.list_node.side_effect = ApiException(status=403, reason="Forbidden")

    with pytest.raises(ClusterError) as exc_info:
        kubectl.list_nodes()
    assert exc_info.value.status == 403


def test_list_app_nodes_deduplicates(kubectl, core_v1_api):
    pods = [
        client.V1Pod(spec=client.V1PodSpec(containers=[], node_name=node))
        for node in ["node-b", "node-a", "node-b", None]
    ]
    core_v1_api.list_namespaced_pod.return_value = client.V1PodList(items=pods)

    assert kubectl.list_app_nodes("shop", "app=cart") == ["node-b", "node-a"]


@pytest.mark.parametrize("ready,expected", [("True", True), ("False", False), ("Unknown", False)])
def test_is_node_ready(kubectl, core_v1_api, ready, expected):
    core_v1_api.read_node.return_value = make_node("node-a", ready=ready)

    assert kubectl.is_node_ready("node-a") is expected


def test_missing_node_is_not_ready(kubectl, core_v1_api):
    core_v1_api.read_node.side_effect = ApiException(status=404, reason="Not Found")

    assert kubectl.is_node_ready("gone") is False


@pytest.mark.parametrize("quantity,cores", [("4", 4), ("3500m", 4), ("250m", 1), ("0.5", 1), ("16", 16)])
def test_parse_cpu_quantity(kubectl, quantity, cores):
    assert kubectl.parse_cpu_quantity(quantity) == cores


def test_parse_cpu_quantity_rejects_garbage(kubectl):
    with pytest.raises(ValueError):
        kubectl.parse_cpu_quantity("four")


def test_get_node_cpu_capacity(kubectl, core_v1_api):
    core_v1_api.read_node.return_value = make_node("node-a", cpu="7500m")

    assert kubectl.get_node_cpu_capacity("node-a") == 8


def test_create_workload_pins_pod_to_node(kubectl, core_v1_api):
    core_v1_api.create_namespaced_pod.return_value = client.V1Pod(metadata=client.V1ObjectMeta(name="hog-helper-x"))

    workload_id = kubectl.create_workload(
        "node-a",
        "litmuschaos/go-runner:latest",
        ["--cpu", "2"],
        {"limits": {"cpu": "2"}},
        name="hog-helper-x",
        labels={"app": "hog-helper"},
        pull_policy="IfNotPresent",
        grace_period=5,
    )

    assert workload_id == "hog-helper-x"
    namespace, body = core_v1_api.create_namespaced_pod.call_args.args
    assert namespace == "litmus"
    assert body["metadata"] == {"name": "hog-helper-x", "namespace": "litmus", "labels": {"app": "hog-helper"}}
    assert body["spec"]["nodeName"] == "node-a"
    assert body["spec"]["restartPolicy"] == "Never"
    assert body["spec"]["terminationGracePeriodSeconds"] == 5
    container = body["spec"]["containers"][0]
    assert container["command"] == ["stress-ng"]
    assert container["args"] == ["--cpu", "2"]
    assert container["imagePullPolicy"] == "IfNotPresent"
    assert container["resources"] == {"limits": {"cpu": "2"}}


def test_create_workload_failure(kubectl, core_v1_api):
    core_v1_api.create_namespaced_pod.side_effect = ApiException(status=409, reason="Conflict")

    with pytest.raises(ClusterError):
        kubectl.create_workload("node-a", "image", [], {}, name="x", labels={})


def test_missing_workload_raises_not_found(kubectl, core_v1_api):
    core_v1_api.read_namespaced_pod.side_effect = ApiException(status=404, reason="Not Found")

    with pytest.raises(WorkloadNotFoundError):
        kubectl.get_workload_status("x")


def test_succeeded_pod_reports_exit_code(kubectl):
    terminated = client.V1ContainerStateTerminated(exit_code=0, reason="Completed")
    pod = make_pod("Succeeded", [container_status(client.V1ContainerState(terminated=terminated))])

    status = kubectl.pod_status(pod)

    assert status.phase == WorkloadPhase.SUCCEEDED
    assert status.exit_code == 0
    assert status.reason == "Completed"


def test_failed_pod_reports_exit_code(kubectl):
    terminated = client.V1ContainerStateTerminated(exit_code=2, reason="Error")
    pod = make_pod("Failed", [container_status(client.V1ContainerState(terminated=terminated))])

    status = kubectl.pod_status(pod)

    assert status.phase == WorkloadPhase.FAILED
    assert status.exit_code == 2


def test_image_pull_failure_is_unschedulable(kubectl):
    waiting = client.V1ContainerStateWaiting(reason="ImagePullBackOff")
    pod = make_pod("Pending", [container_status(client.V1ContainerState(waiting=waiting))])

    status = kubectl.pod_status(pod)

    assert status.unschedulable is True
    assert status.reason == "ImagePullBackOff"


def test_unscheduled_pod_is_unschedulable(kubectl):
    condition = client.V1PodCondition(type="PodScheduled", status="False", reason="Unschedulable")
    status = kubectl.pod_status(make_pod("Pending", conditions=[condition]))

    assert status.phase == WorkloadPhase.PENDING
    assert status.unschedulable is True


def test_pending_pod_is_not_unschedulable(kubectl):
    waiting = client.V1ContainerStateWaiting(reason="ContainerCreating")
    pod = make_pod("Pending", [container_status(client.V1ContainerState(waiting=waiting))])

    assert kubectl.pod_status(pod).unschedulable is False


def test_delete_workload_passes_grace_period(kubectl, core_v1_api):
    kubectl.delete_workload("x", 7)

    args, kwargs = core_v1_api.delete_namespaced_pod.call_args
    assert args == ("x", "litmus")
    assert kwargs["grace_period_seconds"] == 7


def test_delete_missing_workload_is_ignored(kubectl, core_v1_api):
    core_v1_api.delete_namespaced_pod.side_effect = ApiException(status=404, reason="Not Found")

    kubectl.delete_workload("x", 0)


def test_delete_workload_wraps_other_errors(kubectl, core_v1_api):
    core_v1_api.delete_namespaced_pod.side_effect = ApiException(status=500, reason="Internal")

    with pytest.raises(ClusterError):
        kubectl.delete_workload("x", 0)


def test_create_configmap_when_missing(kubectl, core_v1_api):
    core_v1_api.read_namespaced_config_map.side_effect = ApiException(status=404, reason="Not Found")

    kubectl.create_or_update_configmap("state", "litmus", {"k": "v"}, labels={"a": "b"})

    namespace, body = core_v1_api.create_namespaced_config_map.call_args.args
    assert namespace == "litmus"
    assert body.data == {"k": "v"}
    assert body.metadata.labels == {"a": "b"}
    core_v1_api.replace_namespaced_config_map.assert_not_called()


def test_update_existing_configmap(kubectl, core_v1_api):
    existing = client.V1ConfigMap(metadata=client.V1ObjectMeta(name="state"), data={"k": "old"})
    core_v1_api.read_namespaced_config_map.return_value = existing

    kubectl.create_or_update_configmap("state", "litmus", {"k": "new"})

    core_v1_api.replace_namespaced_config_map.assert_called_once_with("state", "litmus", existing)
    assert existing.data == {"k": "new"}


def test_read_missing_configmap(kubectl, core_v1_api):
    core_v1_api.read_namespaced_config_map.side_effect = ApiException(status=404, reason="Not Found")

    assert kubectl.read_configmap_data("state", "litmus") is None


@pytest.mark.parametrize("quantity,cores", [("1e3", 1000), ("2k", 2000), ("1.5", 2), ("2E", 2 * 10**18)])
def test_parse_cpu_quantity_exponent_and_suffix_forms(kubectl, quantity, cores):
    assert kubectl.parse_cpu_quantity(quantity) == cores


def test_unreadable_cpu_capacity_is_cluster_error(kubectl, core_v1_api):
    core_v1_api.read_node.return_value = make_node("node-a", cpu="lots")

    with pytest.raises(ClusterError):
        kubectl.get_node_cpu_capacity("node-a")


@pytest.mark.parametrize(
    "error",
    [MaxRetryError(None, "/api/v1/namespaces/litmus/pods/x"), ConnectionResetError("connection reset by peer")],
)
def test_transport_errors_become_cluster_errors(kubectl, core_v1_api, error):
    core_v1_api.read_namespaced_pod.side_effect = error
    core_v1_api.delete_namespaced_pod.side_effect = error
    core_v1_api.list_node.side_effect = error
    core_v1_api.create_namespaced_pod.side_effect = error

    with pytest.raises(ClusterError):
        kubectl.get_workload_status("x")
    with pytest.raises(ClusterError):
        kubectl.delete_workload("x", 0)
    with pytest.raises(ClusterError):
        kubectl.list_nodes()
    with pytest.raises(ClusterError):
        kubectl.create_workload("node-a", "image", [], {}, name="x", labels={})
