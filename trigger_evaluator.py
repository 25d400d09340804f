#!/usr/bin/env python3
"""
Workload Scaler Trigger Evaluator
=================================

Decides the desired replica count for one target under a fixed, metric or
schedule trigger. ``evaluate`` returns ``None`` when no scaling action is
warranted.

Metric policy:

* scale up when CPU or memory is above its threshold; the proposal is
  ``current * max(cpu_ratio, mem_ratio) * scaling_factor`` truncated, kept
  within ``[current, current + step]``
* scale down when CPU and memory are both below half their thresholds; the
  proposal is the larger of the CPU- and memory-proportional counts, and
  never less than ``current - step``
* anything in between is the dead zone
* the result is always clamped to ``[min_replicas, max_replicas]``
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from scaling_errors import MetricsUnavailableError, ValidationError
from scaling_models import (
    FixedTrigger,
    MetricSample,
    MetricSourceType,
    MetricTrigger,
    ScalingTarget,
    ScheduleTrigger,
    TriggerSpec,
)
from schedule_matcher import first_matching_entry
from workload_metrics import MetricsSource

logger = logging.getLogger(__name__)


def calculate_target_replicas(current_replicas: int, sample: MetricSample, trigger: MetricTrigger) -> int:
    """Replica count proposed by the metric policy for one sample"""
    cpu_usage = sample.cpu_usage_pct
    memory_usage = sample.memory_value
    target_replicas = current_replicas

    if cpu_usage > trigger.cpu_threshold or memory_usage > trigger.memory_threshold:
        scaling_ratio = max(cpu_usage / trigger.cpu_threshold, memory_usage / trigger.memory_threshold)
        calculated = int(current_replicas * scaling_ratio * trigger.scaling_factor)
        target_replicas = min(calculated, current_replicas + trigger.step_size)
        if target_replicas < current_replicas:
            logger.info(f"Scaling factor {trigger.scaling_factor} proposes {target_replicas} replicas "
                        f"under load, keeping current {current_replicas}")
            target_replicas = current_replicas
        logger.info(f"Resource usage above threshold (ratio {scaling_ratio:.2f}), "
                    f"calculated target replicas for scale up: {target_replicas}")

    elif cpu_usage < trigger.cpu_threshold / 2 and memory_usage < trigger.memory_threshold / 2:
        cpu_target = int(current_replicas * cpu_usage / trigger.cpu_threshold)
        memory_target = int(current_replicas * memory_usage / trigger.memory_threshold)
        # the larger proposal keeps the scale-down conservative
        calculated = max(cpu_target, memory_target)
        target_replicas = max(calculated, current_replicas - trigger.step_size)
        logger.info(f"Resource usage well below threshold, "
                    f"calculated target replicas for scale down: {target_replicas}")

    else:
        logger.info("Resource usage within acceptable range, no scaling needed.")

    if target_replicas < trigger.min_replicas:
        logger.info(f"Adjusted target replicas to minimum: {trigger.min_replicas}")
        return trigger.min_replicas
    if target_replicas > trigger.max_replicas:
        logger.info(f"Adjusted target replicas to maximum: {trigger.max_replicas}")
        return trigger.max_replicas
    return target_replicas


class TriggerEvaluator:
    """Computes desired replicas for a target under its trigger"""

    def __init__(self, metrics_sources: Optional[Dict[MetricSourceType, MetricsSource]] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.metrics_sources = metrics_sources or {}
        self.clock = clock

    def evaluate(self, target: ScalingTarget, trigger: TriggerSpec, current_replicas: int) -> Optional[int]:
        if isinstance(trigger, FixedTrigger):
            return trigger.replicas
        if isinstance(trigger, MetricTrigger):
            return self._evaluate_metrics(target, trigger, current_replicas)
        if isinstance(trigger, ScheduleTrigger):
            return self._evaluate_schedule(target, trigger)
        raise ValidationError(f"Unsupported trigger: {trigger!r}")

    def _evaluate_metrics(self, target: ScalingTarget, trigger: MetricTrigger,
                          current_replicas: int) -> Optional[int]:
        source = self.metrics_sources.get(trigger.source)
        if source is None:
            raise MetricsUnavailableError(f"Metric source '{trigger.source.value}' is not configured.")

        sample = source.get_usage(target, query=trigger.query)
        logger.info(f"Current replicas: {current_replicas}, CPU usage: {sample.cpu_usage_pct:.1f}%, "
                    f"Memory usage: {sample.mem_usage_mb:.1f}MB")
        desired = calculate_target_replicas(current_replicas, sample, trigger)
        if desired == current_replicas:
            return None
        return desired

    def _evaluate_schedule(self, target: ScalingTarget, trigger: ScheduleTrigger) -> Optional[int]:
        now = self.clock()
        entry = first_matching_entry(trigger.entries, now)
        if entry is None:
            logger.info(f"No schedule matches {now:%Y-%m-%d %H:%M} for {target}.")
            return None
        logger.info(f"Schedule '{entry.schedule}' matches! Desired replicas for {target}: {entry.replicas}")
        return entry.replicas
