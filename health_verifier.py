#!/usr/bin/env python3
"""
Workload Scaler Health Verifier
===============================

Polls a freshly scaled workload until its ready replica count matches the
requested count. Terminal states:

* HEALTHY   - ready replicas reached the target
* NOT_FOUND - the workload disappeared while polling
* TIMEOUT   - the deadline passed; the last seen ready count and the names
  of non-running pods are kept for diagnostics
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

import scaler_config
from cluster_control_plane import ClusterControlPlane
from scaling_errors import NotFoundError, ScalingError, VerificationTimeoutError
from scaling_models import ScalingTarget, WorkloadStatus

logger = logging.getLogger(__name__)


class HealthState(str, Enum):
    POLLING = "polling"
    HEALTHY = "healthy"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"


@dataclass
class VerificationResult:
    target: ScalingTarget
    desired_replicas: int
    state: HealthState = HealthState.POLLING
    ready_replicas: int = 0
    elapsed: float = 0.0
    polls: int = 0
    unhealthy_pods: List[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return self.state is HealthState.HEALTHY

    def raise_for_state(self):
        if self.state is HealthState.TIMEOUT:
            raise VerificationTimeoutError(
                f"Timeout waiting for {self.target} to become healthy. Expected {self.desired_replicas} "
                f"replicas, but only {self.ready_replicas} are ready.",
                ready_replicas=self.ready_replicas,
                unhealthy_pods=self.unhealthy_pods,
            )
        if self.state is HealthState.NOT_FOUND:
            raise NotFoundError(f"{self.target} not found during verification.")


class HealthVerifier:
    """Wait for a scaled workload to converge on its desired replica count"""

    def __init__(self, control_plane: ClusterControlPlane,
                 poll_interval: float = scaler_config.VERIFY_POLL_INTERVAL_SECONDS,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.control_plane = control_plane
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.clock = clock

    def verify(self, target: ScalingTarget, desired_replicas: int, timeout: float,
               grace_period: float = 0) -> VerificationResult:
        logger.info(f"Verifying {target} health after scaling...")
        if grace_period > 0:
            logger.info(f"Waiting for {grace_period}s grace period before verification...")
            self.sleep(grace_period)

        result = VerificationResult(target, desired_replicas)
        start = self.clock()
        deadline = start + timeout
        status: Optional[WorkloadStatus] = None

        while True:
            try:
                status = self.control_plane.get_workload(target)
            except NotFoundError:
                logger.error(f"❌ {target} not found during verification.")
                result.state = HealthState.NOT_FOUND
                result.elapsed = self.clock() - start
                return result

            result.polls += 1
            result.ready_replicas = status.ready_replicas
            logger.info(f"{target} has {status.ready_replicas} ready replicas of {desired_replicas} target replicas.")

            if status.ready_replicas == desired_replicas:
                result.state = HealthState.HEALTHY
                result.elapsed = self.clock() - start
                logger.info(f"✅ {target} is healthy with {status.ready_replicas} ready replicas.")
                pod_issues = self._non_running_pods(target, status)
                if pod_issues:
                    logger.warning(f"⚠️ Some pods may have issues: {', '.join(pod_issues)}")
                return result

            if self.clock() > deadline:
                break
            self.sleep(self.poll_interval)

        result.state = HealthState.TIMEOUT
        result.elapsed = self.clock() - start
        result.unhealthy_pods = self._non_running_pods(target, status)
        logger.error(f"❌ Timeout waiting for {target} to become healthy.")
        logger.error(f"❌ Expected {desired_replicas} replicas, but only {result.ready_replicas} are ready.")
        if result.unhealthy_pods:
            logger.info(f"Non-running pods: {', '.join(result.unhealthy_pods)}")
        return result

    def _non_running_pods(self, target: ScalingTarget, status: Optional[WorkloadStatus]) -> List[str]:
        try:
            selector = self.control_plane.pod_selector(target, status)
            pods = self.control_plane.list_pods(target.namespace, selector)
        except ScalingError as e:
            logger.warning(f"⚠️ Could not read pod status for {target}: {e}")
            return []
        not_running = [pod for pod in pods if pod.phase != "Running"]
        for pod in not_running:
            logger.debug(f"Pod {pod.name} is {pod.phase}")
        return [pod.name for pod in not_running]
