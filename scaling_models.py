#!/usr/bin/env python3
"""
Workload Scaler Models
======================

Data classes shared across the scaling engine: workload targets, trigger
specifications, metric samples and the scaling request itself.

Triggers are plain frozen dataclasses; ``TriggerSpec`` is their union and
the trigger evaluator dispatches on the concrete type.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple, Union

from scaling_errors import ValidationError

if TYPE_CHECKING:
    from schedule_matcher import ScheduleEntry


class WorkloadType(str, Enum):
    """Scalable workload kinds"""
    DEPLOYMENT = "deployment"
    STATEFULSET = "statefulset"
    REPLICASET = "replicaset"

    @classmethod
    def parse(cls, value: Union[str, "WorkloadType"]) -> "WorkloadType":
        if isinstance(value, WorkloadType):
            return value
        normalized = (value or "").strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        supported = ", ".join(m.value for m in cls)
        raise ValidationError(f"Unsupported workload type '{value}'. Supported types: {supported}")

    @property
    def kind(self) -> str:
        return {
            WorkloadType.DEPLOYMENT: "Deployment",
            WorkloadType.STATEFULSET: "StatefulSet",
            WorkloadType.REPLICASET: "ReplicaSet",
        }[self]


class MetricSourceType(str, Enum):
    METRICS_SERVER = "metrics-server"
    PROMETHEUS = "prometheus"

    @classmethod
    def parse(cls, value: Union[str, "MetricSourceType"]) -> "MetricSourceType":
        if isinstance(value, MetricSourceType):
            return value
        for member in cls:
            if member.value == (value or "").strip().lower():
                return member
        raise ValidationError(
            f"Unsupported metric source '{value}'. Supported sources: metrics-server, prometheus"
        )


@dataclass(frozen=True)
class ScalingTarget:
    """One resolved workload to evaluate and scale"""
    workload_type: WorkloadType
    name: str
    namespace: str

    def __str__(self) -> str:
        return f"{self.workload_type.value} '{self.name}' in namespace '{self.namespace}'"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.workload_type.value,
            "name": self.name,
            "namespace": self.namespace,
        }


@dataclass(frozen=True)
class FixedTrigger:
    replicas: int

    def __post_init__(self):
        if self.replicas < 0:
            raise ValidationError("Replica count must be a non-negative integer.")


@dataclass(frozen=True)
class MetricTrigger:
    min_replicas: int = 1
    max_replicas: int = 10
    cpu_threshold: int = 80
    memory_threshold: int = 80
    scaling_factor: float = 1.5
    step_size: int = 1
    source: MetricSourceType = MetricSourceType.METRICS_SERVER
    query: Optional[str] = None

    def __post_init__(self):
        if self.min_replicas < 0:
            raise ValidationError("Minimum replicas must be a non-negative integer.")
        if self.min_replicas > self.max_replicas:
            raise ValidationError(
                f"Minimum replicas ({self.min_replicas}) cannot exceed maximum replicas ({self.max_replicas})."
            )
        if self.step_size < 1:
            raise ValidationError("Scaling step must be at least 1.")
        for label, threshold in (("CPU", self.cpu_threshold), ("Memory", self.memory_threshold)):
            if not 0 < threshold <= 100:
                raise ValidationError(f"{label} threshold must be within (0, 100], got {threshold}.")
        if self.scaling_factor <= 0:
            raise ValidationError("Scaling factor must be positive.")


@dataclass(frozen=True)
class ScheduleTrigger:
    # evaluated in order; the first matching entry wins
    entries: Tuple["ScheduleEntry", ...]

    def __post_init__(self):
        if not self.entries:
            raise ValidationError("Schedule trigger needs at least one schedule entry.")


TriggerSpec = Union[FixedTrigger, MetricTrigger, ScheduleTrigger]


def trigger_kind(trigger: TriggerSpec) -> str:
    if isinstance(trigger, FixedTrigger):
        return "fixed"
    if isinstance(trigger, MetricTrigger):
        return "metrics"
    if isinstance(trigger, ScheduleTrigger):
        return "schedule"
    raise ValidationError(f"Unknown trigger type: {type(trigger).__name__}")


@dataclass(frozen=True)
class MetricSample:
    """Live usage for one workload, averaged over its pods"""
    cpu_usage_pct: float
    mem_usage_mb: float
    mem_limit_mb: Optional[float] = None

    @property
    def memory_value(self) -> float:
        """Memory figure compared against the memory threshold.

        Percent of the pod memory limit when the limit is known, otherwise
        the raw MB average.
        """
        if self.mem_limit_mb:
            return self.mem_usage_mb / self.mem_limit_mb * 100
        return self.mem_usage_mb


@dataclass(frozen=True)
class WorkloadStatus:
    replicas: int
    ready_replicas: int
    selector: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PodStatus:
    name: str
    phase: str


@dataclass(frozen=True)
class PodUsage:
    name: str
    cpu_millicores: float
    memory_mb: float
    memory_limit_mb: Optional[float] = None


@dataclass
class ScalingRequest:
    """What to scale and how; exactly one of name, selector or batch_file"""
    trigger: Optional[TriggerSpec] = None
    workload_type: WorkloadType = WorkloadType.DEPLOYMENT
    name: Optional[str] = None
    namespace: Optional[str] = None
    selector: Optional[str] = None
    batch_file: Optional[str] = None
    dry_run: bool = False
    post_scale_check: bool = True
    grace_period: float = 30
    verify_timeout: float = 120
    max_operations: int = 5

    @property
    def mode(self) -> str:
        if self.batch_file:
            return "batch"
        if self.selector:
            return "selector"
        return "single"

    def validate(self):
        sources = [s for s in (self.name, self.selector, self.batch_file) if s]
        if not sources:
            raise ValidationError("Workload name, selector, or batch file is required.")
        if len(sources) > 1:
            raise ValidationError("Use only one of workload name, selector, or batch file.")
        if self.mode != "batch" and self.trigger is None:
            raise ValidationError(f"A scaling trigger is required for {self.mode} mode.")
        if self.max_operations < 1:
            raise ValidationError("Maximum scaling operations must be at least 1.")
        if self.verify_timeout < 0 or self.grace_period < 0:
            raise ValidationError("Timeouts and grace periods cannot be negative.")
        self.workload_type = WorkloadType.parse(self.workload_type)
