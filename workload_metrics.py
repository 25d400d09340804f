#!/usr/bin/env python3
"""
Workload Metrics Sources
========================

Live CPU/memory usage for a single workload, used by metric-triggered
scaling. Samples are fetched fresh on every evaluation and never cached.

* ``MetricsServerSource`` averages per-pod usage reported by metrics-server
* ``PrometheusSource`` runs instant queries against a Prometheus server
"""

import logging
import math
from abc import ABC, abstractmethod
from statistics import mean
from string import Template
from typing import Optional

import requests

import scaler_config
from cluster_control_plane import ClusterControlPlane
from scaling_errors import MetricsUnavailableError
from scaling_models import MetricSample, ScalingTarget

logger = logging.getLogger(__name__)

POD_NAME_PATTERN = '${name}-[a-z0-9]+-[a-z0-9]+'
DEFAULT_CPU_QUERY = (
    'avg(rate(container_cpu_usage_seconds_total{namespace="${namespace}",pod=~"' + POD_NAME_PATTERN + '",'
    'container!="POD",container!=""}[5m])) * 100'
)
DEFAULT_MEMORY_QUERY = (
    'avg(container_memory_usage_bytes{namespace="${namespace}",pod=~"' + POD_NAME_PATTERN + '",'
    'container!="POD",container!=""}) / 1024 / 1024'
)


class MetricsSource(ABC):
    """Produces a MetricSample for one workload"""

    @abstractmethod
    def get_usage(self, target: ScalingTarget, query: Optional[str] = None) -> MetricSample:
        """Raises MetricsUnavailableError when no usable data exists.

        ``query`` overrides the source's own query where the source supports one.
        """


class MetricsServerSource(MetricsSource):
    """Per-pod averages from metrics-server via the control plane"""

    def __init__(self, control_plane: ClusterControlPlane):
        self.control_plane = control_plane

    def get_usage(self, target: ScalingTarget, query: Optional[str] = None) -> MetricSample:
        logger.info(f"Getting metrics for {target}...")
        if query:
            logger.warning("⚠️ Custom queries only apply to the Prometheus source; using metrics-server averages.")
        selector = self.control_plane.pod_selector(target)
        pods = self.control_plane.top_pods(target.namespace, selector)
        if not pods:
            raise MetricsUnavailableError(f"No metrics available for pods with selector '{selector}'.")

        # CPU percent is relative to one core (1000m)
        cpu_usage = mean(pod.cpu_millicores for pod in pods) / 10
        memory_usage = mean(pod.memory_mb for pod in pods)
        limits = [pod.memory_limit_mb for pod in pods]
        memory_limit = mean(limits) if all(limits) else None

        sample = MetricSample(cpu_usage_pct=cpu_usage, mem_usage_mb=memory_usage, mem_limit_mb=memory_limit)
        logger.info(f"📊 Current metrics - CPU: {cpu_usage:.1f}%, Memory: {memory_usage:.1f}MB "
                    f"across {len(pods)} pods")
        return sample


class PrometheusSource(MetricsSource):
    """Instant queries against the Prometheus HTTP API.

    A custom query is a ``string.Template`` that may reference
    ``${namespace}``, ``${name}`` and ``${type}``. Its scalar result is read
    as a CPU fraction; memory is reported as 0.
    """

    def __init__(self, url: str, query: Optional[str] = None,
                 timeout: int = scaler_config.PROMETHEUS_TIMEOUT_SECONDS):
        self.url = url.rstrip('/')
        self.query = query
        self.timeout = timeout

    @staticmethod
    def _render(template: str, target: ScalingTarget) -> str:
        return Template(template).safe_substitute(
            namespace=target.namespace, name=target.name, type=target.workload_type.value
        )

    def _query(self, promql: str) -> Optional[float]:
        try:
            response = requests.get(
                f"{self.url}/api/v1/query",
                params={'query': promql},
                timeout=self.timeout
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            raise MetricsUnavailableError(f"Prometheus query failed: {e}")
        except ValueError as e:
            raise MetricsUnavailableError(f"Prometheus returned invalid JSON: {e}")

        if payload.get('status') != 'success':
            raise MetricsUnavailableError(f"Prometheus query error: {payload.get('error', 'unknown error')}")

        results = (payload.get('data') or {}).get('result') or []
        if not results:
            return None
        try:
            value = float(results[0]['value'][1])
        except (KeyError, IndexError, TypeError, ValueError):
            return None
        return None if math.isnan(value) else value

    def get_usage(self, target: ScalingTarget, query: Optional[str] = None) -> MetricSample:
        logger.info(f"Getting metrics for {target} from Prometheus...")
        template = query or self.query
        if template:
            promql = self._render(template, target)
            logger.info(f"Using custom Prometheus query: {promql}")
            value = self._query(promql)
            if value is None:
                raise MetricsUnavailableError("No results from custom Prometheus query.")
            sample = MetricSample(cpu_usage_pct=value * 100, mem_usage_mb=0)
        else:
            cpu_usage = self._query(self._render(DEFAULT_CPU_QUERY, target))
            memory_usage = self._query(self._render(DEFAULT_MEMORY_QUERY, target))
            if cpu_usage is None and memory_usage is None:
                raise MetricsUnavailableError(f"No CPU or memory metrics available from Prometheus for {target}.")
            if cpu_usage is None:
                logger.warning("⚠️ No CPU metrics available from Prometheus.")
            if memory_usage is None:
                logger.warning("⚠️ No memory metrics available from Prometheus.")
            sample = MetricSample(cpu_usage_pct=cpu_usage or 0.0, mem_usage_mb=memory_usage or 0.0)

        logger.info(f"📊 Current metrics - CPU: {sample.cpu_usage_pct:.1f}%, Memory: {sample.mem_usage_mb:.1f}MB")
        return sample

    def check_available(self) -> bool:
        try:
            response = requests.get(f"{self.url}/api/v1/status/config", timeout=self.timeout)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.warning(f"⚠️ Cannot connect to Prometheus at {self.url}: {e}")
            return False
