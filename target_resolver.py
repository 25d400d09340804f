#!/usr/bin/env python3
"""
Workload Scaler Target Resolver
===============================

Expands a scaling request into the ordered list of workloads to act on:

* single name - the workload must exist, otherwise the run fails
* label selector - every matching workload; no match is an error
* batch file - ``type,name,namespace,replicas`` records, each carrying its
  own fixed replica count

Selector and batch lists are truncated to the run's operation cap; the
number of dropped entries is reported back so it lands in the run summary.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Iterable, List

from cluster_control_plane import ClusterControlPlane
from scaling_errors import EmptyResultError, ValidationError
from scaling_models import FixedTrigger, ScalingRequest, ScalingTarget, TriggerSpec, WorkloadType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchRecord:
    workload_type: WorkloadType
    name: str
    namespace: str
    replicas: int


@dataclass(frozen=True)
class PlannedScale:
    target: ScalingTarget
    trigger: TriggerSpec


@dataclass
class Resolution:
    planned: List[PlannedScale] = field(default_factory=list)
    truncated: int = 0

    @property
    def targets(self) -> List[ScalingTarget]:
        return [p.target for p in self.planned]


def parse_batch_line(line: str) -> BatchRecord:
    fields = [part.strip() for part in line.split(",")]
    if len(fields) != 4 or not all(fields):
        raise ValidationError("Expected format: 'type,name,namespace,replicas'")
    workload_type, name, namespace, replicas = fields
    if not replicas.isdigit():
        raise ValidationError(f"Replica count must be a non-negative integer, got '{replicas}'")
    return BatchRecord(WorkloadType.parse(workload_type), name, namespace, int(replicas))


def parse_batch_lines(lines: Iterable[str]) -> List[BatchRecord]:
    """Parse batch records; comments, blank and malformed lines are skipped"""
    records = []
    for line_number, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        try:
            records.append(parse_batch_line(line))
        except ValidationError as e:
            logger.warning(f"⚠️ Invalid line format in batch file (line {line_number}): {line} - {e}")
    return records


def load_batch_file(path: str) -> List[BatchRecord]:
    if not os.path.isfile(path):
        raise ValidationError(f"Batch file not found: {path}")
    with open(path) as f:
        return parse_batch_lines(f)


class TargetResolver:
    """Turns a ScalingRequest into planned (target, trigger) pairs"""

    def __init__(self, control_plane: ClusterControlPlane):
        self.control_plane = control_plane

    def resolve(self, request: ScalingRequest) -> List[ScalingTarget]:
        return self.plan(request).targets

    def plan(self, request: ScalingRequest) -> Resolution:
        if request.mode == "batch":
            return self._plan_batch(request)
        if request.mode == "selector":
            return self._plan_selector(request)
        return self._plan_single(request)

    def _plan_single(self, request: ScalingRequest) -> Resolution:
        namespace = request.namespace or self.control_plane.current_namespace()
        target = ScalingTarget(request.workload_type, request.name, namespace)
        logger.info(f"Validating {target}...")
        status = self.control_plane.get_workload(target)
        logger.info(f"✅ Found {target} with {status.replicas} replicas.")
        return Resolution(planned=[PlannedScale(target, request.trigger)])

    def _plan_selector(self, request: ScalingRequest) -> Resolution:
        scope = f"namespace '{request.namespace}'" if request.namespace else "all namespaces"
        logger.info(f"Processing {request.workload_type.value} matching selector '{request.selector}' in {scope}...")
        matches = self.control_plane.list_workloads(request.workload_type, request.selector, request.namespace)
        if not matches:
            raise EmptyResultError(f"No {request.workload_type.value} found matching selector: {request.selector}")

        planned = [
            PlannedScale(ScalingTarget(request.workload_type, name, namespace), request.trigger)
            for name, namespace in matches
        ]
        return self._cap(planned, request.max_operations)

    def _plan_batch(self, request: ScalingRequest) -> Resolution:
        logger.info(f"Processing batch operations from file: {request.batch_file}...")
        if request.trigger is not None:
            logger.warning("⚠️ Batch records carry their own replica counts; the requested trigger is ignored.")
        records = load_batch_file(request.batch_file)
        if not records:
            raise EmptyResultError(f"No valid entries in batch file: {request.batch_file}")

        planned = [
            PlannedScale(ScalingTarget(r.workload_type, r.name, r.namespace), FixedTrigger(r.replicas))
            for r in records
        ]
        return self._cap(planned, request.max_operations)

    @staticmethod
    def _cap(planned: List[PlannedScale], max_operations: int) -> Resolution:
        if len(planned) <= max_operations:
            return Resolution(planned=planned)
        truncated = len(planned) - max_operations
        logger.warning(f"⚠️ Reached maximum number of scaling operations ({max_operations}); "
                       f"{truncated} remaining targets will not be processed.")
        return Resolution(planned=planned[:max_operations], truncated=truncated)
