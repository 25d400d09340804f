import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException

from cluster_control_plane import (
    KubectlControlPlane,
    KubernetesApiControlPlane,
    parse_cpu_millicores,
    parse_memory_mb,
    selector_string,
)
from scaling_errors import MetricsUnavailableError, NotFoundError, ScaleCommandError, ScalingError
from scaling_models import ScalingTarget, WorkloadType

TARGET = ScalingTarget(WorkloadType.DEPLOYMENT, "web", "shop")

DEPLOYMENT_JSON = {
    "metadata": {"name": "web", "namespace": "shop"},
    "spec": {"replicas": 3, "selector": {"matchLabels": {"app": "web", "tier": "frontend"}}},
    "status": {"readyReplicas": 2},
}

PODS_JSON = {
    "items": [
        {
            "metadata": {"name": "web-1"},
            "spec": {"containers": [{"resources": {"limits": {"memory": "256Mi"}}}]},
            "status": {"phase": "Running"},
        },
        {
            "metadata": {"name": "web-2"},
            "spec": {"containers": [{"resources": {}}]},
            "status": {"phase": "Pending"},
        },
    ]
}


def completed(stdout="", returncode=0, stderr=""):
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def kubectl():
    return KubectlControlPlane(context="staging", timeout=15)


def test_parse_cpu_quantities():
    assert parse_cpu_millicores("250m") == 250
    assert parse_cpu_millicores("2") == 2000
    assert parse_cpu_millicores("500000000n") == 500
    assert parse_cpu_millicores("1500u") == 1.5
    with pytest.raises(ValueError):
        parse_cpu_millicores("lots")


def test_parse_memory_quantities():
    assert parse_memory_mb("128Mi") == 128
    assert parse_memory_mb("2Gi") == 2048
    assert parse_memory_mb("1024Ki") == 1
    assert parse_memory_mb("1048576") == 1
    with pytest.raises(ValueError):
        parse_memory_mb("12Qi")


def test_selector_string_is_sorted():
    assert selector_string({"tier": "frontend", "app": "web"}) == "app=web,tier=frontend"
    assert selector_string(None) == ""


@patch("cluster_control_plane.subprocess.run")
def test_get_workload(mock_run, kubectl):
    mock_run.return_value = completed(json.dumps(DEPLOYMENT_JSON))

    status = kubectl.get_workload(TARGET)

    assert status.replicas == 3
    assert status.ready_replicas == 2
    assert status.selector == {"app": "web", "tier": "frontend"}
    cmd = mock_run.call_args[0][0]
    assert cmd[:2] == ["kubectl", "--context=staging"]
    assert cmd[2:] == ["get", "deployment", "web", "-n", "shop", "-o", "json"]
    assert mock_run.call_args[1]["timeout"] == 15


@patch("cluster_control_plane.subprocess.run")
def test_get_missing_workload(mock_run, kubectl):
    mock_run.return_value = completed(
        returncode=1, stderr='Error from server (NotFound): deployments.apps "web" not found'
    )

    with pytest.raises(NotFoundError):
        kubectl.get_workload(TARGET)


@patch("cluster_control_plane.subprocess.run")
def test_kubectl_timeout_is_reported(mock_run, kubectl):
    mock_run.side_effect = subprocess.TimeoutExpired(cmd="kubectl", timeout=15)

    with pytest.raises(ScalingError) as excinfo:
        kubectl.get_workload(TARGET)
    assert "timed out" in str(excinfo.value)


@patch("cluster_control_plane.subprocess.run")
def test_list_workloads_across_namespaces(mock_run, kubectl):
    items = {"items": [
        {"metadata": {"name": "web", "namespace": "eu"}},
        {"metadata": {"name": "web", "namespace": "us"}},
    ]}
    mock_run.return_value = completed(json.dumps(items))

    assert kubectl.list_workloads(WorkloadType.DEPLOYMENT, "tier=frontend") == [("web", "eu"), ("web", "us")]
    assert "--all-namespaces" in mock_run.call_args[0][0]

    kubectl.list_workloads(WorkloadType.DEPLOYMENT, "tier=frontend", namespace="eu")
    assert mock_run.call_args[0][0][-6:] == ["-n", "eu", "-l", "tier=frontend", "-o", "json"]


@patch("cluster_control_plane.subprocess.run")
def test_non_json_listing_is_a_scaling_error(mock_run, kubectl):
    mock_run.return_value = completed("No resources found in shop namespace.")

    with pytest.raises(ScalingError) as excinfo:
        kubectl.list_workloads(WorkloadType.DEPLOYMENT, "tier=frontend", namespace="shop")
    assert "Unexpected kubectl output" in str(excinfo.value)

    with pytest.raises(ScalingError):
        kubectl.list_pods("shop", "app=web")


@patch("cluster_control_plane.subprocess.run")
def test_scale(mock_run, kubectl):
    mock_run.return_value = completed("deployment.apps/web scaled")

    kubectl.scale(TARGET, 5)

    assert mock_run.call_args[0][0][2:] == ["scale", "deployment", "web", "-n", "shop", "--replicas=5"]


@patch("cluster_control_plane.subprocess.run")
def test_scale_failure(mock_run, kubectl):
    mock_run.return_value = completed(returncode=1, stderr="error: forbidden")

    with pytest.raises(ScaleCommandError):
        kubectl.scale(TARGET, 5)


@patch("cluster_control_plane.subprocess.run")
def test_list_pods(mock_run, kubectl):
    mock_run.return_value = completed(json.dumps(PODS_JSON))

    pods = kubectl.list_pods("shop", "app=web")

    assert [(p.name, p.phase) for p in pods] == [("web-1", "Running"), ("web-2", "Pending")]


@patch("cluster_control_plane.subprocess.run")
def test_top_pods_includes_memory_limits(mock_run, kubectl):
    mock_run.side_effect = [
        completed("web-1   250m   128Mi\nweb-2   150m   64Mi\ngarbage\n"),
        completed(json.dumps(PODS_JSON)),
    ]

    usage = kubectl.top_pods("shop", "app=web")

    assert [(u.name, u.cpu_millicores, u.memory_mb) for u in usage] == [("web-1", 250, 128), ("web-2", 150, 64)]
    assert usage[0].memory_limit_mb == 256
    assert usage[1].memory_limit_mb is None


@patch("cluster_control_plane.subprocess.run")
def test_top_pods_without_metrics_api(mock_run, kubectl):
    mock_run.return_value = completed(returncode=1, stderr="error: Metrics API not available")

    with pytest.raises(MetricsUnavailableError):
        kubectl.top_pods("shop", "app=web")


@patch("cluster_control_plane.subprocess.run")
def test_current_namespace_falls_back_to_default(mock_run, kubectl):
    mock_run.return_value = completed("")
    assert kubectl.current_namespace() == "default"

    mock_run.return_value = completed("shop")
    assert kubectl.current_namespace() == "shop"


@patch("cluster_control_plane.subprocess.run")
def test_pod_selector_falls_back_to_app_label(mock_run, kubectl):
    bare = dict(DEPLOYMENT_JSON, spec={"replicas": 1})
    mock_run.return_value = completed(json.dumps(bare))

    assert kubectl.pod_selector(TARGET) == "app=web"


@pytest.fixture
def api_plane():
    plane = KubernetesApiControlPlane(api_client=MagicMock(), timeout=10)
    plane.apps_v1 = MagicMock()
    plane.core_v1 = MagicMock()
    plane.custom_objects = MagicMock()
    return plane


def test_api_get_workload(api_plane):
    workload = MagicMock()
    workload.spec.replicas = 4
    workload.spec.selector.match_labels = {"app": "web"}
    workload.status.ready_replicas = None
    api_plane.apps_v1.read_namespaced_stateful_set.return_value = workload

    status = api_plane.get_workload(ScalingTarget(WorkloadType.STATEFULSET, "web", "shop"))

    assert (status.replicas, status.ready_replicas, status.selector) == (4, 0, {"app": "web"})
    api_plane.apps_v1.read_namespaced_stateful_set.assert_called_once_with("web", "shop", _request_timeout=10)


def test_api_missing_workload(api_plane):
    api_plane.apps_v1.read_namespaced_deployment.side_effect = ApiException(status=404, reason="Not Found")

    with pytest.raises(NotFoundError):
        api_plane.get_workload(TARGET)


def test_api_scale_failure(api_plane):
    api_plane.apps_v1.patch_namespaced_deployment_scale.side_effect = ApiException(status=403, reason="Forbidden")

    with pytest.raises(ScaleCommandError):
        api_plane.scale(TARGET, 2)


def test_api_scale_patches_replicas(api_plane):
    api_plane.scale(TARGET, 2)

    api_plane.apps_v1.patch_namespaced_deployment_scale.assert_called_once_with(
        "web", "shop", {"spec": {"replicas": 2}}, _request_timeout=10
    )


def test_api_top_pods(api_plane):
    api_plane.custom_objects.list_namespaced_custom_object.return_value = {"items": [
        {"metadata": {"name": "web-1"}, "containers": [
            {"usage": {"cpu": "100m", "memory": "64Mi"}},
            {"usage": {"cpu": "50000000n", "memory": "32Mi"}},
        ]},
    ]}
    api_plane.core_v1.list_namespaced_pod.return_value.items = []

    usage = api_plane.top_pods("shop", "app=web")

    assert len(usage) == 1
    assert usage[0].cpu_millicores == 150
    assert usage[0].memory_mb == 96
