#!/usr/bin/env python3
"""
Central runtime configuration defaults for the workload scaler.
"""

import os
from typing import Any, Dict

import yaml

from scaling_errors import ValidationError

# Replica bounds and metric thresholds
DEFAULT_MIN_REPLICAS = int(os.getenv("SCALER_MIN_REPLICAS", "1"))
DEFAULT_MAX_REPLICAS = int(os.getenv("SCALER_MAX_REPLICAS", "10"))
DEFAULT_CPU_THRESHOLD = int(os.getenv("SCALER_CPU_THRESHOLD", "80"))
DEFAULT_MEMORY_THRESHOLD = int(os.getenv("SCALER_MEMORY_THRESHOLD", "80"))
DEFAULT_SCALING_FACTOR = float(os.getenv("SCALER_SCALING_FACTOR", "1.5"))
DEFAULT_SCALING_STEP = int(os.getenv("SCALER_SCALING_STEP", "1"))

# Run cadence and limits
DEFAULT_SCALING_INTERVAL_SECONDS = int(os.getenv("SCALER_SCALING_INTERVAL_SECONDS", "300"))
DEFAULT_GRACE_PERIOD_SECONDS = int(os.getenv("SCALER_GRACE_PERIOD_SECONDS", "30"))
DEFAULT_MAX_OPERATIONS = int(os.getenv("SCALER_MAX_OPERATIONS", "5"))

# Timeouts
DEFAULT_OPERATION_TIMEOUT_SECONDS = int(os.getenv("SCALER_OPERATION_TIMEOUT_SECONDS", "300"))
DEFAULT_VERIFY_TIMEOUT_SECONDS = int(os.getenv("SCALER_VERIFY_TIMEOUT_SECONDS", "120"))
VERIFY_POLL_INTERVAL_SECONDS = int(os.getenv("SCALER_VERIFY_POLL_INTERVAL_SECONDS", "5"))
KUBECTL_TIMEOUT_SECONDS = int(os.getenv("SCALER_KUBECTL_TIMEOUT_SECONDS", "30"))
PROMETHEUS_TIMEOUT_SECONDS = int(os.getenv("SCALER_PROMETHEUS_TIMEOUT_SECONDS", "10"))

# Metrics
DEFAULT_METRIC_SOURCE = os.getenv("SCALER_METRIC_SOURCE", "metrics-server")
PROMETHEUS_URL = os.getenv("SCALER_PROMETHEUS_URL", "")

# Keys a settings file may set, in argparse dest form
SETTINGS_KEYS = {
    "type", "namespace", "context", "kubeconfig", "backend",
    "min", "max", "cpu_threshold", "memory_threshold", "scaling_factor",
    "interval", "step", "grace_period", "metric_source",
    "prometheus_url", "prometheus_query", "max_operations",
    "timeout", "verify_timeout", "log", "post_check", "dry_run", "force",
}


def load_settings_file(path: str) -> Dict[str, Any]:
    """Load CLI defaults from a YAML settings file.

    Keys are CLI option names in either ``cpu-threshold`` or
    ``cpu_threshold`` form. The result is suitable for
    ``ArgumentParser.set_defaults``.
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ValidationError(f"Cannot read settings file {path}: {e}")
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML in settings file {path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError(f"Settings file {path} must contain a mapping of option names")

    settings = {}
    for key, value in data.items():
        dest = str(key).strip().replace("-", "_")
        if dest not in SETTINGS_KEYS:
            raise ValidationError(f"Unknown setting '{key}' in {path}")
        settings[dest] = value
    return settings
