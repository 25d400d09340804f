#!/usr/bin/env python3
"""
Workload Scaler Executor
========================

Applies a desired replica count to one target. Unchanged counts never reach
the control plane, dry runs only record what would happen, and every
mutation draws from the run-wide operations budget.
"""

import logging

from cluster_control_plane import ClusterControlPlane
from scaling_decision import RunContext, ScalingDecision
from scaling_models import ScalingTarget

logger = logging.getLogger(__name__)


class ScalingExecutor:
    """Apply replica counts through the control plane"""

    def __init__(self, control_plane: ClusterControlPlane):
        self.control_plane = control_plane

    def apply(self, target: ScalingTarget, current_replicas: int, desired_replicas: int,
              context: RunContext, trigger: str = "fixed") -> ScalingDecision:
        """Scale ``target``; raises ScaleCommandError if the mutation fails"""
        if desired_replicas == current_replicas:
            logger.info(f"{target} already has {current_replicas} replicas.")
            return ScalingDecision(target, current_replicas, desired_replicas,
                                   trigger=trigger, reason="replica count unchanged")

        if not context.consume_operation():
            logger.warning(f"⚠️ Reached maximum number of scaling operations ({context.max_operations}); "
                           f"skipping {target}.")
            return ScalingDecision(target, current_replicas, desired_replicas, skipped=True,
                                   trigger=trigger, reason="operation cap reached")

        if context.dry_run:
            logger.info(f"[DRY-RUN] Would scale {target} from {current_replicas} to {desired_replicas} replicas.")
            return ScalingDecision(target, current_replicas, desired_replicas, dry_run=True,
                                   trigger=trigger, reason="dry run")

        logger.info(f"Scaling {target} from {current_replicas} to {desired_replicas} replicas...")
        self.control_plane.scale(target, desired_replicas)
        logger.info(f"✅ Scaled {target} to {desired_replicas} replicas.")
        return ScalingDecision(target, current_replicas, desired_replicas, applied=True,
                               trigger=trigger, reason="scaled")
