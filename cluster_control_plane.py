#!/usr/bin/env python3
"""
Workload Scaler Control Plane Adapters
======================================

The scaling engine talks to the cluster through the narrow
``ClusterControlPlane`` interface. Two adapters are provided:

* ``KubectlControlPlane`` shells out to kubectl, honouring ``--context`` and
  ``KUBECONFIG`` the same way an operator's terminal would
* ``KubernetesApiControlPlane`` uses the official kubernetes Python client

Both translate failures into the scaling error taxonomy: missing objects
raise ``NotFoundError``, rejected scale calls raise ``ScaleCommandError``
and unusable metrics raise ``MetricsUnavailableError``.
"""

import json
import logging
import os
import re
import subprocess
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

import scaler_config
from scaling_errors import MetricsUnavailableError, NotFoundError, ScaleCommandError, ScalingError
from scaling_models import PodStatus, PodUsage, ScalingTarget, WorkloadStatus, WorkloadType

logger = logging.getLogger(__name__)

METRICS_API_SERVICE = "v1beta1.metrics.k8s.io"
IN_CLUSTER_NAMESPACE_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"

MEMORY_UNITS_MB = {
    "Ki": 1 / 1024, "Mi": 1.0, "Gi": 1024.0, "Ti": 1024.0 * 1024,
    "K": 1000 / 1024 / 1024, "k": 1000 / 1024 / 1024, "M": 1000 ** 2 / 1024 / 1024,
    "G": 1000 ** 3 / 1024 / 1024, "T": 1000 ** 4 / 1024 / 1024,
}
QUANTITY_PATTERN = re.compile(r"^([0-9.]+)([A-Za-z]*)$")


def parse_cpu_millicores(quantity: str) -> float:
    """Parse a CPU quantity ("150m", "250000000n", "2") into millicores"""
    match = QUANTITY_PATTERN.match((quantity or "").strip())
    if not match:
        raise ValueError(f"Unparsable CPU quantity: {quantity!r}")
    value, unit = float(match.group(1)), match.group(2)
    if unit == "m":
        return value
    if unit == "n":
        return value / 1_000_000
    if unit == "u":
        return value / 1000
    if unit == "":
        return value * 1000
    raise ValueError(f"Unknown CPU unit in {quantity!r}")


def parse_memory_mb(quantity: str) -> float:
    """Parse a memory quantity ("128Mi", "1Gi", "512000Ki", "1048576") into MB"""
    match = QUANTITY_PATTERN.match((quantity or "").strip())
    if not match:
        raise ValueError(f"Unparsable memory quantity: {quantity!r}")
    value, unit = float(match.group(1)), match.group(2)
    if unit == "":
        return value / 1024 / 1024
    if unit not in MEMORY_UNITS_MB:
        raise ValueError(f"Unknown memory unit in {quantity!r}")
    return value * MEMORY_UNITS_MB[unit]


def selector_string(match_labels: Optional[Dict[str, str]]) -> str:
    return ",".join(f"{key}={value}" for key, value in sorted((match_labels or {}).items()))


def _sum_memory_limits(containers: List[Any], get_limits) -> Optional[float]:
    """Total memory limit of a pod, or None unless every container sets one"""
    total = 0.0
    for container in containers or []:
        limits = get_limits(container) or {}
        memory = limits.get("memory")
        if not memory:
            return None
        total += parse_memory_mb(memory)
    return total or None


class ClusterControlPlane(ABC):
    """Operations the scaling engine needs from the cluster"""

    @abstractmethod
    def get_workload(self, target: ScalingTarget) -> WorkloadStatus:
        """Replica counts and pod selector; raises NotFoundError"""

    @abstractmethod
    def list_workloads(self, workload_type: WorkloadType, selector: str,
                       namespace: Optional[str] = None) -> List[Tuple[str, str]]:
        """(name, namespace) pairs matching a label selector"""

    @abstractmethod
    def scale(self, target: ScalingTarget, replicas: int) -> None:
        """Set spec.replicas; raises ScaleCommandError"""

    @abstractmethod
    def list_pods(self, namespace: str, selector: str) -> List[PodStatus]:
        """Pod names and phases for a selector"""

    @abstractmethod
    def top_pods(self, namespace: str, selector: str) -> List[PodUsage]:
        """Per-pod CPU/memory usage from the metrics API"""

    @abstractmethod
    def current_namespace(self) -> str:
        """Namespace of the active context"""

    @abstractmethod
    def metrics_api_available(self) -> bool:
        """Whether metrics-server is registered with the API server"""

    def pod_selector(self, target: ScalingTarget, status: Optional[WorkloadStatus] = None) -> str:
        """Label selector for the target's pods, defaulting to app=<name>"""
        if status is None:
            status = self.get_workload(target)
        selector = selector_string(status.selector)
        if not selector:
            selector = f"app={target.name}"
            logger.warning(f"⚠️ Could not determine pod selector for {target}, using default: {selector}")
        return selector


class KubectlControlPlane(ClusterControlPlane):
    """Control plane adapter that shells out to kubectl"""

    def __init__(self, kubeconfig_path: Optional[str] = None, context: Optional[str] = None,
                 timeout: int = scaler_config.KUBECTL_TIMEOUT_SECONDS):
        self.kubeconfig_path = kubeconfig_path
        self.context = context
        self.timeout = timeout
        self.kubectl_env = {}
        if kubeconfig_path:
            self.kubectl_env['KUBECONFIG'] = kubeconfig_path

    def _execute_kubectl(self, args: List[str]) -> Dict[str, Any]:
        """Execute kubectl command"""
        cmd = ['kubectl']
        if self.context:
            cmd.append(f'--context={self.context}')
        cmd.extend(args)
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env={**os.environ, **self.kubectl_env} if self.kubectl_env else None
            )
        except subprocess.TimeoutExpired:
            return {
                'success': False,
                'error': f'Command timed out after {self.timeout}s'
            }
        except OSError as e:
            return {
                'success': False,
                'error': str(e)
            }

        if result.returncode == 0:
            return {
                'success': True,
                'output': result.stdout,
                'result': self._parse_output(result.stdout)
            }
        return {
            'success': False,
            'error': (result.stderr or 'Command failed').strip(),
            'output': result.stdout
        }

    def _parse_output(self, output: str) -> Any:
        """Parse kubectl output"""
        try:
            return json.loads(output)
        except ValueError:
            return output

    @staticmethod
    def _is_not_found(error: str) -> bool:
        return 'NotFound' in error or 'not found' in error.lower()

    def get_workload(self, target: ScalingTarget) -> WorkloadStatus:
        result = self._execute_kubectl([
            'get', target.workload_type.value, target.name, '-n', target.namespace, '-o', 'json'
        ])
        if not result['success']:
            if self._is_not_found(result['error']):
                raise NotFoundError(f"{target} not found.")
            raise ScalingError(f"Failed to read {target}: {result['error']}")

        workload = result['result']
        if not isinstance(workload, dict):
            raise ScalingError(f"Unexpected kubectl output for {target}")
        spec = workload.get('spec') or {}
        status = workload.get('status') or {}
        return WorkloadStatus(
            replicas=int(spec.get('replicas') or 0),
            ready_replicas=int(status.get('readyReplicas') or 0),
            selector=(spec.get('selector') or {}).get('matchLabels') or {}
        )

    def list_workloads(self, workload_type: WorkloadType, selector: str,
                       namespace: Optional[str] = None) -> List[Tuple[str, str]]:
        scope = ['-n', namespace] if namespace else ['--all-namespaces']
        result = self._execute_kubectl(['get', workload_type.value, *scope, '-l', selector, '-o', 'json'])
        if not result['success']:
            raise ScalingError(f"Failed to list {workload_type.value} with selector '{selector}': {result['error']}")

        listing = result['result']
        if not isinstance(listing, dict):
            raise ScalingError(f"Unexpected kubectl output listing {workload_type.value} with selector '{selector}'")
        items = listing.get('items') or []
        return [(item['metadata']['name'], item['metadata']['namespace']) for item in items]

    def scale(self, target: ScalingTarget, replicas: int) -> None:
        result = self._execute_kubectl([
            'scale', target.workload_type.value, target.name, '-n', target.namespace,
            f'--replicas={replicas}'
        ])
        if not result['success']:
            if self._is_not_found(result['error']):
                raise NotFoundError(f"{target} not found.")
            raise ScaleCommandError(f"Failed to scale {target}: {result['error']}")

    def _get_pods(self, namespace: str, selector: str) -> List[Dict[str, Any]]:
        result = self._execute_kubectl(['get', 'pods', '-n', namespace, '-l', selector, '-o', 'json'])
        if not result['success']:
            raise ScalingError(f"Failed to list pods with selector '{selector}': {result['error']}")
        listing = result['result']
        if not isinstance(listing, dict):
            raise ScalingError(f"Unexpected kubectl output listing pods with selector '{selector}'")
        return listing.get('items') or []

    def list_pods(self, namespace: str, selector: str) -> List[PodStatus]:
        return [
            PodStatus(name=pod['metadata']['name'], phase=(pod.get('status') or {}).get('phase', 'Unknown'))
            for pod in self._get_pods(namespace, selector)
        ]

    def _memory_limits(self, namespace: str, selector: str) -> Dict[str, Optional[float]]:
        limits = {}
        try:
            pods = self._get_pods(namespace, selector)
        except ScalingError as e:
            logger.debug(f"Memory limits unavailable: {e}")
            return limits
        for pod in pods:
            containers = (pod.get('spec') or {}).get('containers') or []
            try:
                limits[pod['metadata']['name']] = _sum_memory_limits(
                    containers, lambda c: (c.get('resources') or {}).get('limits')
                )
            except ValueError:
                limits[pod['metadata']['name']] = None
        return limits

    def top_pods(self, namespace: str, selector: str) -> List[PodUsage]:
        result = self._execute_kubectl(['top', 'pods', '-n', namespace, '-l', selector, '--no-headers'])
        if not result['success']:
            raise MetricsUnavailableError(f"kubectl top failed for selector '{selector}': {result['error']}")

        limits = self._memory_limits(namespace, selector)
        usage = []
        for line in result['output'].strip().splitlines():
            parts = line.split()
            if len(parts) < 3:
                continue
            try:
                usage.append(PodUsage(
                    name=parts[0],
                    cpu_millicores=parse_cpu_millicores(parts[1]),
                    memory_mb=parse_memory_mb(parts[2]),
                    memory_limit_mb=limits.get(parts[0])
                ))
            except ValueError as e:
                logger.warning(f"⚠️ Failed to parse pod metrics line: {line} - Error: {e}")
        return usage

    def current_namespace(self) -> str:
        result = self._execute_kubectl(['config', 'view', '--minify', '--output', 'jsonpath={..namespace}'])
        namespace = result.get('output', '').strip() if result['success'] else ''
        return namespace or 'default'

    def metrics_api_available(self) -> bool:
        return self._execute_kubectl(['get', 'apiservice', METRICS_API_SERVICE])['success']


class KubernetesApiControlPlane(ClusterControlPlane):
    """Control plane adapter backed by the kubernetes Python client"""

    API_SUFFIXES = {
        WorkloadType.DEPLOYMENT: "deployment",
        WorkloadType.STATEFULSET: "stateful_set",
        WorkloadType.REPLICASET: "replica_set",
    }

    def __init__(self, kubeconfig_path: Optional[str] = None, context: Optional[str] = None,
                 timeout: int = scaler_config.KUBECTL_TIMEOUT_SECONDS, api_client=None):
        self.kubeconfig_path = kubeconfig_path
        self.context = context
        self.timeout = timeout
        self.in_cluster = False
        self.api_client = api_client or self._initialize_k8s_client()
        self.apps_v1 = client.AppsV1Api(self.api_client)
        self.core_v1 = client.CoreV1Api(self.api_client)
        self.custom_objects = client.CustomObjectsApi(self.api_client)

    def _initialize_k8s_client(self):
        """Initialize Kubernetes client"""
        try:
            if self.kubeconfig_path or self.context:
                logger.info(f"Loading kubeconfig from: {self.kubeconfig_path or 'default location'}")
                config.load_kube_config(config_file=self.kubeconfig_path, context=self.context)
            else:
                try:
                    config.load_incluster_config()
                    self.in_cluster = True
                    logger.info("Using in-cluster config")
                except ConfigException:
                    config.load_kube_config()
                    logger.info("Using default kubeconfig")
        except (ConfigException, OSError) as e:
            raise ScalingError(f"Failed to initialize Kubernetes client: {e}")
        return client.ApiClient()

    def _apps_call(self, action: str, workload_type: WorkloadType):
        return getattr(self.apps_v1, action.format(self.API_SUFFIXES[workload_type]))

    def get_workload(self, target: ScalingTarget) -> WorkloadStatus:
        read = self._apps_call("read_namespaced_{}", target.workload_type)
        try:
            workload = read(target.name, target.namespace, _request_timeout=self.timeout)
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(f"{target} not found.")
            raise ScalingError(f"Failed to read {target}: {e.reason}")

        selector = workload.spec.selector.match_labels if workload.spec.selector else None
        return WorkloadStatus(
            replicas=workload.spec.replicas or 0,
            ready_replicas=workload.status.ready_replicas or 0,
            selector=selector or {}
        )

    def list_workloads(self, workload_type: WorkloadType, selector: str,
                       namespace: Optional[str] = None) -> List[Tuple[str, str]]:
        try:
            if namespace:
                items = self._apps_call("list_namespaced_{}", workload_type)(
                    namespace, label_selector=selector, _request_timeout=self.timeout
                ).items
            else:
                items = self._apps_call("list_{}_for_all_namespaces", workload_type)(
                    label_selector=selector, _request_timeout=self.timeout
                ).items
        except ApiException as e:
            raise ScalingError(f"Failed to list {workload_type.value} with selector '{selector}': {e.reason}")
        return [(item.metadata.name, item.metadata.namespace) for item in items]

    def scale(self, target: ScalingTarget, replicas: int) -> None:
        patch = self._apps_call("patch_namespaced_{}_scale", target.workload_type)
        try:
            patch(target.name, target.namespace, {'spec': {'replicas': replicas}},
                  _request_timeout=self.timeout)
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(f"{target} not found.")
            raise ScaleCommandError(f"Failed to scale {target}: {e.reason}")

    def _pods(self, namespace: str, selector: str):
        try:
            return self.core_v1.list_namespaced_pod(
                namespace, label_selector=selector, _request_timeout=self.timeout
            ).items
        except ApiException as e:
            raise ScalingError(f"Failed to list pods with selector '{selector}': {e.reason}")

    def list_pods(self, namespace: str, selector: str) -> List[PodStatus]:
        return [
            PodStatus(name=pod.metadata.name, phase=pod.status.phase or 'Unknown')
            for pod in self._pods(namespace, selector)
        ]

    def top_pods(self, namespace: str, selector: str) -> List[PodUsage]:
        try:
            response = self.custom_objects.list_namespaced_custom_object(
                'metrics.k8s.io', 'v1beta1', namespace, 'pods',
                label_selector=selector, _request_timeout=self.timeout
            )
        except ApiException as e:
            raise MetricsUnavailableError(f"Metrics API query failed for selector '{selector}': {e.reason}")

        limits = {}
        try:
            for pod in self._pods(namespace, selector):
                limits[pod.metadata.name] = _sum_memory_limits(
                    pod.spec.containers, lambda c: c.resources.limits if c.resources else None
                )
        except (ScalingError, ValueError) as e:
            logger.debug(f"Memory limits unavailable: {e}")

        usage = []
        for item in response.get('items', []):
            name = item['metadata']['name']
            try:
                containers = item.get('containers') or []
                usage.append(PodUsage(
                    name=name,
                    cpu_millicores=sum(parse_cpu_millicores(c['usage']['cpu']) for c in containers),
                    memory_mb=sum(parse_memory_mb(c['usage']['memory']) for c in containers),
                    memory_limit_mb=limits.get(name)
                ))
            except (KeyError, ValueError) as e:
                logger.warning(f"⚠️ Failed to parse metrics for pod {name}: {e}")
        return usage

    def current_namespace(self) -> str:
        if self.in_cluster and os.path.isfile(IN_CLUSTER_NAMESPACE_FILE):
            with open(IN_CLUSTER_NAMESPACE_FILE) as f:
                return f.read().strip() or 'default'
        try:
            contexts, active = config.list_kube_config_contexts(config_file=self.kubeconfig_path)
        except (ConfigException, OSError):
            return 'default'
        if self.context:
            active = next((c for c in contexts if c.get('name') == self.context), active)
        return ((active or {}).get('context') or {}).get('namespace') or 'default'

    def metrics_api_available(self) -> bool:
        try:
            client.ApiregistrationV1Api(self.api_client).read_api_service(
                METRICS_API_SERVICE, _request_timeout=self.timeout
            )
            return True
        except ApiException:
            return False
