#!/usr/bin/env python3
"""
Common decision and run-state contracts for workload scaling.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from scaling_models import ScalingTarget


@dataclass(frozen=True)
class ScalingDecision:
    target: ScalingTarget
    current_replicas: int
    desired_replicas: int
    applied: bool = False
    dry_run: bool = False
    skipped: bool = False
    trigger: str = "fixed"
    reason: str = ""

    @property
    def action(self) -> str:
        if self.desired_replicas > self.current_replicas:
            return "scale_up"
        if self.desired_replicas < self.current_replicas:
            return "scale_down"
        return "none"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target.to_dict(),
            "current_replicas": self.current_replicas,
            "desired_replicas": self.desired_replicas,
            "action": self.action,
            "applied": self.applied,
            "dry_run": self.dry_run,
            "skipped": self.skipped,
            "trigger": self.trigger,
            "reason": self.reason,
        }


@dataclass
class RunSummary:
    targets_processed: int = 0
    scales_applied: int = 0
    scales_failed: int = 0
    verification_failures: int = 0
    skipped_by_cap: int = 0
    targets_missing: int = 0
    noops: int = 0
    dry_run_scales: int = 0
    metrics_unavailable: int = 0

    @property
    def has_failures(self) -> bool:
        return bool(self.scales_failed or self.verification_failures or self.targets_missing)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targets_processed": self.targets_processed,
            "scales_applied": self.scales_applied,
            "scales_failed": self.scales_failed,
            "verification_failures": self.verification_failures,
            "skipped_by_cap": self.skipped_by_cap,
            "targets_missing": self.targets_missing,
            "noops": self.noops,
            "dry_run_scales": self.dry_run_scales,
            "metrics_unavailable": self.metrics_unavailable,
            "success": not self.has_failures,
        }


@dataclass
class RunContext:
    """State shared by every stage of a single engine run.

    Targets are processed sequentially, so the operations budget is a plain
    counter. Anything that fans targets out concurrently must guard
    ``consume_operation`` with a lock.
    """
    max_operations: int
    dry_run: bool = False
    operations_used: int = 0
    summary: RunSummary = field(default_factory=RunSummary)
    decisions: List[ScalingDecision] = field(default_factory=list)

    @property
    def operations_remaining(self) -> int:
        return max(self.max_operations - self.operations_used, 0)

    def consume_operation(self) -> bool:
        if self.operations_used >= self.max_operations:
            return False
        self.operations_used += 1
        return True
