#!/usr/bin/env python3
"""
Workload Scaling Engine
=======================

Composes the target resolver, trigger evaluator, scaling executor and
health verifier into a single run:

    request -> targets -> desired replicas -> scale (or dry run) -> verify

Targets are processed one at a time in resolution order. Request and
trigger validation, and resolution failures in single-target mode, abort
the run before any mutation. Per-target failures are logged, counted and
the run moves on to the next target.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from cluster_control_plane import ClusterControlPlane
from health_verifier import HealthVerifier
from scaling_decision import RunContext, RunSummary, ScalingDecision
from scaling_errors import (
    ConfirmationRequiredError,
    MetricsUnavailableError,
    NotFoundError,
    ScalingError,
    VerificationTimeoutError,
)
from scaling_executor import ScalingExecutor
from scaling_models import MetricSourceType, MetricTrigger, ScalingRequest, trigger_kind
from target_resolver import PlannedScale, TargetResolver
from trigger_evaluator import TriggerEvaluator
from workload_metrics import MetricsSource

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    summary: RunSummary
    decisions: List[ScalingDecision] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.summary.has_failures

    def to_dict(self) -> Dict:
        return {
            "summary": self.summary.to_dict(),
            "decisions": [d.to_dict() for d in self.decisions],
        }


class WorkloadScalingEngine:
    """Run scaling requests against a cluster control plane"""

    def __init__(self, control_plane: ClusterControlPlane,
                 metrics_sources: Optional[Dict[MetricSourceType, MetricsSource]] = None,
                 verifier: Optional[HealthVerifier] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.control_plane = control_plane
        self.resolver = TargetResolver(control_plane)
        self.evaluator = TriggerEvaluator(metrics_sources, clock=clock)
        self.executor = ScalingExecutor(control_plane)
        self.verifier = verifier or HealthVerifier(control_plane)

    def run(self, request: ScalingRequest, force: bool = False) -> RunResult:
        """Execute one scaling run.

        Mutating runs need ``force=True``; prompting the operator is the
        caller's job. Dry runs never mutate and need no confirmation.
        """
        request.validate()
        if not force and not request.dry_run:
            raise ConfirmationRequiredError("This operation will scale Kubernetes workloads; pass force=True to proceed.")

        context = RunContext(max_operations=request.max_operations, dry_run=request.dry_run)
        logger.info(f"Starting workload scaling in {request.mode} mode...")

        resolution = self.resolver.plan(request)
        context.summary.skipped_by_cap += resolution.truncated

        for planned in resolution.planned:
            context.summary.targets_processed += 1
            try:
                self._process(planned, request, context)
            except Exception as e:
                logger.exception(f"❌ Unexpected error while processing {planned.target}: {e}")
                context.summary.scales_failed += 1

        self._log_summary(context.summary)
        return RunResult(summary=context.summary, decisions=context.decisions)

    def _process(self, planned: PlannedScale, request: ScalingRequest, context: RunContext):
        summary = context.summary
        target = planned.target
        kind = trigger_kind(planned.trigger)
        logger.info(f"Processing {target} ({kind} trigger)")

        try:
            current = self.control_plane.get_workload(target).replicas
        except NotFoundError as e:
            logger.warning(f"⚠️ Skipping invalid workload: {e}")
            summary.targets_missing += 1
            return
        except ScalingError as e:
            logger.error(f"❌ {e}")
            summary.scales_failed += 1
            return

        try:
            desired = self.evaluator.evaluate(target, planned.trigger, current)
        except MetricsUnavailableError as e:
            logger.warning(f"⚠️ {e} Leaving {target} at {current} replicas.")
            summary.metrics_unavailable += 1
            summary.noops += 1
            context.decisions.append(ScalingDecision(target, current, current, trigger=kind,
                                                     reason="metrics unavailable"))
            return

        if desired is None:
            logger.info(f"No scaling needed for {target}, current replica count is optimal.")
            summary.noops += 1
            context.decisions.append(ScalingDecision(target, current, current, trigger=kind,
                                                     reason="no scaling needed"))
            return

        try:
            decision = self.executor.apply(target, current, desired, context, trigger=kind)
        except ScalingError as e:
            logger.error(f"❌ {e}")
            summary.scales_failed += 1
            context.decisions.append(ScalingDecision(target, current, desired, trigger=kind, reason=str(e)))
            return

        context.decisions.append(decision)
        if decision.skipped:
            summary.skipped_by_cap += 1
            return
        if decision.dry_run:
            summary.dry_run_scales += 1
            if request.post_scale_check:
                logger.info(f"[DRY-RUN] Would verify {target} health after scaling.")
            return
        if not decision.applied:
            summary.noops += 1
            return

        summary.scales_applied += 1
        if request.post_scale_check:
            self._verify(planned, desired, request, context)

    def _verify(self, planned: PlannedScale, desired: int, request: ScalingRequest, context: RunContext):
        # only metric-driven scales wait for the control plane to settle
        grace_period = request.grace_period if isinstance(planned.trigger, MetricTrigger) else 0
        result = self.verifier.verify(planned.target, desired, request.verify_timeout, grace_period)
        try:
            result.raise_for_state()
        except VerificationTimeoutError as e:
            logger.warning(f"⚠️ {e}")
            if e.unhealthy_pods:
                logger.warning(f"⚠️ Non-running pods: {', '.join(e.unhealthy_pods)}")
            context.summary.verification_failures += 1
        except NotFoundError as e:
            logger.warning(f"⚠️ {e}")
            context.summary.verification_failures += 1

    def _log_summary(self, summary: RunSummary):
        logger.info("Run summary:")
        logger.info(f"  Targets processed:      {summary.targets_processed}")
        logger.info(f"  Scales applied:         {summary.scales_applied}")
        logger.info(f"  Dry-run scales:         {summary.dry_run_scales}")
        logger.info(f"  No-ops:                 {summary.noops}")
        logger.info(f"  Scales failed:          {summary.scales_failed}")
        logger.info(f"  Verification failures:  {summary.verification_failures}")
        logger.info(f"  Missing workloads:      {summary.targets_missing}")
        logger.info(f"  Skipped (max ops cap):  {summary.skipped_by_cap}")
        if summary.metrics_unavailable:
            logger.info(f"  Metrics unavailable:    {summary.metrics_unavailable}")
        if summary.has_failures:
            logger.error("❌ Workload scaling completed with failures.")
        else:
            logger.info("✅ Workload scaling completed.")
