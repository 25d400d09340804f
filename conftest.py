"""
Shared pytest fixtures: an in-memory cluster, a canned metrics source and a
manual clock so nothing sleeps or talks to a real cluster.
"""

from typing import Dict, List, Optional, Tuple

import pytest

from cluster_control_plane import ClusterControlPlane
from scaling_errors import MetricsUnavailableError, NotFoundError, ScaleCommandError
from scaling_models import MetricSample, PodStatus, PodUsage, ScalingTarget, WorkloadStatus, WorkloadType
from workload_metrics import MetricsSource


class FakeControlPlane(ClusterControlPlane):
    """In-memory cluster keyed by (type, name, namespace)"""

    def __init__(self, namespace: str = "default"):
        self.namespace = namespace
        self.workloads: Dict[Tuple[WorkloadType, str, str], Dict] = {}
        # ready counts handed out by successive get_workload calls; the last one sticks
        self.ready_sequences: Dict[Tuple[WorkloadType, str, str], List[int]] = {}
        self.pods: Dict[str, List[PodStatus]] = {}
        self.usage: Dict[str, List[PodUsage]] = {}
        self.scale_calls: List[Tuple[ScalingTarget, int]] = []
        self.failing = set()
        self.converge = True
        self.metrics_api = True

    def add_workload(self, name: str, namespace: str = "default", replicas: int = 1,
                     ready_replicas: Optional[int] = None, workload_type: WorkloadType = WorkloadType.DEPLOYMENT,
                     labels: Optional[Dict[str, str]] = None) -> ScalingTarget:
        self.workloads[(workload_type, name, namespace)] = {
            "replicas": replicas,
            "ready": replicas if ready_replicas is None else ready_replicas,
            "labels": labels if labels is not None else {"app": name},
        }
        return ScalingTarget(workload_type, name, namespace)

    @staticmethod
    def _key(target: ScalingTarget):
        return (target.workload_type, target.name, target.namespace)

    def get_workload(self, target: ScalingTarget) -> WorkloadStatus:
        key = self._key(target)
        if key not in self.workloads:
            raise NotFoundError(f"{target} not found.")
        workload = self.workloads[key]
        sequence = self.ready_sequences.get(key)
        if sequence:
            workload["ready"] = sequence.pop(0)
        return WorkloadStatus(workload["replicas"], workload["ready"], dict(workload["labels"]))

    def list_workloads(self, workload_type, selector, namespace=None):
        wanted = dict(pair.split("=", 1) for pair in selector.split(","))
        return [
            (name, ns)
            for (kind, name, ns), workload in self.workloads.items()
            if kind == workload_type
            and (namespace is None or ns == namespace)
            and all(workload["labels"].get(k) == v for k, v in wanted.items())
        ]

    def scale(self, target: ScalingTarget, replicas: int) -> None:
        key = self._key(target)
        if key in self.failing:
            raise ScaleCommandError(f"Failed to scale {target}: admission webhook denied the request")
        if key not in self.workloads:
            raise NotFoundError(f"{target} not found.")
        self.scale_calls.append((target, replicas))
        self.workloads[key]["replicas"] = replicas
        if self.converge:
            self.workloads[key]["ready"] = replicas

    def list_pods(self, namespace, selector):
        return list(self.pods.get(namespace, []))

    def top_pods(self, namespace, selector):
        return list(self.usage.get(namespace, []))

    def current_namespace(self) -> str:
        return self.namespace

    def metrics_api_available(self) -> bool:
        return self.metrics_api


class FakeMetricsSource(MetricsSource):
    def __init__(self, sample: Optional[MetricSample] = None):
        self.sample = sample
        self.requested: List[ScalingTarget] = []
        self.queries: List[Optional[str]] = []

    def get_usage(self, target: ScalingTarget, query: Optional[str] = None) -> MetricSample:
        self.requested.append(target)
        self.queries.append(query)
        if self.sample is None:
            raise MetricsUnavailableError(f"No metrics available for {target}.")
        return self.sample


class ManualClock:
    """Monotonic clock advanced only by sleep()"""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def control_plane():
    """Empty in-memory cluster whose current namespace is 'default'"""
    return FakeControlPlane()


@pytest.fixture
def metrics_source():
    return FakeMetricsSource()


@pytest.fixture
def clock():
    return ManualClock()
