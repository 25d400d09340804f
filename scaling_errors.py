#!/usr/bin/env python3
"""
Workload Scaler Errors
======================

Error taxonomy shared by the scaling engine and its cluster adapters.
"""


class ScalingError(Exception):
    """Base exception for workload scaling errors"""
    pass


class NotFoundError(ScalingError):
    """Raised when a workload or namespace does not exist"""
    pass


class EmptyResultError(ScalingError):
    """Raised when a selector or batch file matches nothing"""
    pass


class ValidationError(ScalingError):
    """Raised for malformed triggers, bounds, schedules or batch lines"""
    pass


class ScaleCommandError(ScalingError):
    """Raised when the control plane rejects a scale mutation"""
    pass


class VerificationTimeoutError(ScalingError):
    """Raised when a scaled workload does not converge before the deadline"""

    def __init__(self, message: str, ready_replicas: int = 0, unhealthy_pods=None):
        super().__init__(message)
        self.ready_replicas = ready_replicas
        self.unhealthy_pods = list(unhealthy_pods or [])


class MetricsUnavailableError(ScalingError):
    """Raised when the metrics source is unreachable or returned no data"""
    pass


class ConfirmationRequiredError(ScalingError):
    """Raised when a mutating run is started without force or dry-run"""
    pass
