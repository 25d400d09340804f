#!/usr/bin/env python3
"""
Kubernetes Workload Scaler CLI
==============================

Command-line front end for the workload scaling engine. Scales
deployments, statefulsets and replicasets by fixed count, resource
metrics, time schedule, label selector or batch file.

Examples:
    scale-workloads --name web --replicas 3 --force
    scale-workloads --name web --metrics --min 2 --max 10 --cpu-threshold 70
    scale-workloads --name web --schedule "weekdays 08:00" --replicas 5
    scale-workloads --batch-file scale.csv --max-operations 10 --dry-run
    scale-workloads --selector tier=frontend --replicas 2 --namespace shop

Exit codes: 0 success, 1 scaling/verification failure, 2 invalid arguments.
"""

import argparse
import logging
import shutil
import sys
import time
from typing import Dict, List, Optional

import scaler_config
from autoscaling_engine import RunResult, WorkloadScalingEngine
from cluster_control_plane import ClusterControlPlane, KubectlControlPlane, KubernetesApiControlPlane
from health_verifier import HealthVerifier
from logging_utils import log_separator, setup_logging
from scaling_errors import MetricsUnavailableError, ScalingError, ValidationError
from scaling_models import (
    FixedTrigger,
    MetricSourceType,
    MetricTrigger,
    ScalingRequest,
    ScheduleTrigger,
    TriggerSpec,
    WorkloadType,
)
from schedule_matcher import build_schedule_entry, load_schedule_file
from workload_metrics import MetricsServerSource, MetricsSource, PrometheusSource

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scale-workloads",
        description="Scale Kubernetes workloads by fixed count, metrics, schedule, selector or batch file",
    )
    parser.add_argument("--config", help="YAML settings file providing option defaults")

    target = parser.add_argument_group("targets")
    target.add_argument("--name", help="Workload name")
    target.add_argument("--selector", help="Label selector matching the workloads to scale")
    target.add_argument("--batch-file", help="File of 'type,name,namespace,replicas' lines")
    target.add_argument("--type", default=WorkloadType.DEPLOYMENT.value,
                        help="Workload type: deployment, statefulset or replicaset (default: deployment)")
    target.add_argument("--namespace", help="Namespace (default: current context namespace; "
                                            "all namespaces for --selector)")

    trigger = parser.add_argument_group("triggers")
    trigger.add_argument("--replicas", type=int, help="Fixed replica count, or the count for --schedule")
    trigger.add_argument("--metrics", action="store_true", help="Scale on CPU/memory usage")
    trigger.add_argument("--schedule", help="Cron expression or 'daily|weekdays|weekends|<day> HH:MM'")
    trigger.add_argument("--schedule-file", help="File of 'schedule,replicas' lines")

    metrics = parser.add_argument_group("metrics scaling")
    metrics.add_argument("--min", type=int, default=scaler_config.DEFAULT_MIN_REPLICAS,
                         help=f"Minimum replicas (default: {scaler_config.DEFAULT_MIN_REPLICAS})")
    metrics.add_argument("--max", type=int, default=scaler_config.DEFAULT_MAX_REPLICAS,
                         help=f"Maximum replicas (default: {scaler_config.DEFAULT_MAX_REPLICAS})")
    metrics.add_argument("--cpu-threshold", type=int, default=scaler_config.DEFAULT_CPU_THRESHOLD,
                         help=f"CPU threshold percent (default: {scaler_config.DEFAULT_CPU_THRESHOLD})")
    metrics.add_argument("--memory-threshold", type=int, default=scaler_config.DEFAULT_MEMORY_THRESHOLD,
                         help=f"Memory threshold percent (default: {scaler_config.DEFAULT_MEMORY_THRESHOLD})")
    metrics.add_argument("--scaling-factor", type=float, default=scaler_config.DEFAULT_SCALING_FACTOR,
                         help=f"Scale-up multiplier (default: {scaler_config.DEFAULT_SCALING_FACTOR})")
    metrics.add_argument("--step", type=int, default=scaler_config.DEFAULT_SCALING_STEP,
                         help=f"Maximum replica change per decision (default: {scaler_config.DEFAULT_SCALING_STEP})")
    metrics.add_argument("--grace-period", type=int, default=scaler_config.DEFAULT_GRACE_PERIOD_SECONDS,
                         help="Seconds to wait before verifying a metric-triggered scale "
                              f"(default: {scaler_config.DEFAULT_GRACE_PERIOD_SECONDS})")
    metrics.add_argument("--metric-source", default=scaler_config.DEFAULT_METRIC_SOURCE,
                         help="metrics-server or prometheus (default: %(default)s)")
    metrics.add_argument("--prometheus-url", default=scaler_config.PROMETHEUS_URL or None,
                         help="Prometheus server URL")
    metrics.add_argument("--prometheus-query",
                         help="Custom PromQL template; may use $namespace, $name and $type")

    run = parser.add_argument_group("run control")
    run.add_argument("--context", help="Kubernetes context to use")
    run.add_argument("--kubeconfig", help="Path to kubeconfig file")
    run.add_argument("--backend", choices=["kubectl", "api"], default="kubectl",
                     help="Talk to the cluster via kubectl or the Kubernetes API client (default: kubectl)")
    run.add_argument("--max-operations", type=int, default=scaler_config.DEFAULT_MAX_OPERATIONS,
                     help=f"Maximum scaling operations per run (default: {scaler_config.DEFAULT_MAX_OPERATIONS})")
    run.add_argument("--timeout", type=int, default=scaler_config.DEFAULT_OPERATION_TIMEOUT_SECONDS,
                     help="Timeout for each cluster or metrics call in seconds "
                          f"(default: {scaler_config.DEFAULT_OPERATION_TIMEOUT_SECONDS})")
    run.add_argument("--verify-timeout", type=int, default=scaler_config.DEFAULT_VERIFY_TIMEOUT_SECONDS,
                     help="Timeout for post-scale verification in seconds "
                          f"(default: {scaler_config.DEFAULT_VERIFY_TIMEOUT_SECONDS})")
    run.add_argument("--no-post-check", dest="post_check", action="store_false",
                     help="Skip the post-scale health check")
    run.add_argument("--watch", action="store_true", help="Re-run every --interval seconds until interrupted")
    run.add_argument("--interval", type=int, default=scaler_config.DEFAULT_SCALING_INTERVAL_SECONDS,
                     help="Seconds between runs in --watch mode "
                          f"(default: {scaler_config.DEFAULT_SCALING_INTERVAL_SECONDS})")
    run.add_argument("--dry-run", action="store_true", help="Show what would be scaled without changing anything")
    run.add_argument("--force", action="store_true", help="Scale without asking for confirmation")
    run.add_argument("--log", help="Append log output to this file")
    run.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments, taking defaults from --config when given"""
    parser = build_parser()
    pre_parser = argparse.ArgumentParser(add_help=False)
    pre_parser.add_argument("--config")
    known, _ = pre_parser.parse_known_args(argv)
    if known.config:
        parser.set_defaults(**scaler_config.load_settings_file(known.config))
    return parser.parse_args(argv)


def build_trigger(args: argparse.Namespace) -> Optional[TriggerSpec]:
    """Translate trigger flags into a TriggerSpec; None when only a batch file drives the run"""
    if args.metrics and (args.schedule or args.schedule_file):
        raise ValidationError("Cannot combine --metrics with schedule-based scaling.")
    if args.schedule and args.schedule_file:
        raise ValidationError("Use either --schedule or --schedule-file, not both.")

    if args.metrics:
        return MetricTrigger(
            min_replicas=args.min,
            max_replicas=args.max,
            cpu_threshold=args.cpu_threshold,
            memory_threshold=args.memory_threshold,
            scaling_factor=args.scaling_factor,
            step_size=args.step,
            source=MetricSourceType.parse(args.metric_source),
            query=args.prometheus_query,
        )
    if args.schedule_file:
        entries = load_schedule_file(args.schedule_file)
        if not entries:
            raise ValidationError(f"No valid schedule entries in {args.schedule_file}")
        return ScheduleTrigger(tuple(entries))
    if args.schedule:
        if args.replicas is None:
            raise ValidationError("--schedule requires --replicas.")
        return ScheduleTrigger((build_schedule_entry(args.schedule, args.replicas),))
    if args.replicas is not None:
        return FixedTrigger(args.replicas)
    return None


def build_request(args: argparse.Namespace, trigger: Optional[TriggerSpec]) -> ScalingRequest:
    request = ScalingRequest(
        trigger=trigger,
        workload_type=WorkloadType.parse(args.type),
        name=args.name,
        namespace=args.namespace,
        selector=args.selector,
        batch_file=args.batch_file,
        dry_run=args.dry_run,
        post_scale_check=args.post_check,
        grace_period=args.grace_period,
        verify_timeout=args.verify_timeout,
        max_operations=args.max_operations,
    )
    request.validate()
    return request


def build_control_plane(args: argparse.Namespace) -> ClusterControlPlane:
    if args.backend == "api":
        return KubernetesApiControlPlane(kubeconfig_path=args.kubeconfig, context=args.context, timeout=args.timeout)
    if not shutil.which("kubectl"):
        raise ScalingError("kubectl is not installed or not on PATH.")
    return KubectlControlPlane(kubeconfig_path=args.kubeconfig, context=args.context, timeout=args.timeout)


def build_metrics_sources(args: argparse.Namespace,
                          control_plane: ClusterControlPlane) -> Dict[MetricSourceType, MetricsSource]:
    sources: Dict[MetricSourceType, MetricsSource] = {
        MetricSourceType.METRICS_SERVER: MetricsServerSource(control_plane),
    }
    if args.prometheus_url:
        sources[MetricSourceType.PROMETHEUS] = PrometheusSource(
            args.prometheus_url, timeout=args.timeout
        )
    return sources


def check_requirements(request: ScalingRequest, control_plane: ClusterControlPlane,
                       sources: Dict[MetricSourceType, MetricsSource]):
    """Fail early when a metrics trigger has no usable backend"""
    trigger = request.trigger
    if request.mode == "batch" or not isinstance(trigger, MetricTrigger):
        return

    if trigger.source is MetricSourceType.METRICS_SERVER:
        if not control_plane.metrics_api_available():
            raise MetricsUnavailableError(
                "Metrics server is not available. Install metrics-server or use --metric-source prometheus."
            )
        return

    source = sources.get(MetricSourceType.PROMETHEUS)
    if source is None:
        raise ValidationError("Prometheus URL is required when using Prometheus as the metric source.")
    if not source.check_available():
        raise MetricsUnavailableError(f"Cannot connect to Prometheus at {source.url}")


def log_configuration(request: ScalingRequest, args: argparse.Namespace):
    logger.info("Configuration:")
    logger.info(f"  Mode:              {request.mode}")
    if request.name:
        logger.info(f"  Workload:          {request.workload_type.value} '{request.name}'")
    if request.selector:
        logger.info(f"  Label Selector:    {request.selector}")
    if request.batch_file:
        logger.info(f"  Batch File:        {request.batch_file}")
    logger.info(f"  Namespace:         {request.namespace or 'current context'}")

    trigger = request.trigger
    if isinstance(trigger, FixedTrigger):
        logger.info(f"  Target Replicas:   {trigger.replicas}")
    elif isinstance(trigger, MetricTrigger):
        logger.info(f"  Min/Max Replicas:  {trigger.min_replicas}/{trigger.max_replicas}")
        logger.info(f"  CPU Threshold:     {trigger.cpu_threshold}%")
        logger.info(f"  Memory Threshold:  {trigger.memory_threshold}%")
        logger.info(f"  Scaling Factor:    {trigger.scaling_factor}")
        logger.info(f"  Scaling Step:      {trigger.step_size}")
        logger.info(f"  Metric Source:     {trigger.source.value}")
    elif isinstance(trigger, ScheduleTrigger):
        for entry in trigger.entries:
            logger.info(f"  Schedule:          {entry.schedule} -> {entry.replicas} replicas")

    logger.info(f"  Max Operations:    {request.max_operations}")
    logger.info(f"  Post-Scale Check:  {request.post_scale_check}")
    logger.info(f"  Dry Run:           {request.dry_run}")
    if args.context:
        logger.info(f"  Context:           {args.context}")


def confirm(prompt: str = "Do you want to continue? (y/n): ") -> bool:
    try:
        answer = input(prompt)
    except EOFError:
        return False
    return answer.strip().lower() == "y"


def run_once(engine: WorkloadScalingEngine, request: ScalingRequest) -> int:
    try:
        result: RunResult = engine.run(request, force=True)
    except ValidationError as e:
        logger.error(f"❌ {e}")
        return EXIT_USAGE
    except ScalingError as e:
        logger.error(f"❌ {e}")
        return EXIT_FAILURE
    return EXIT_SUCCESS if result.success else EXIT_FAILURE


def main(argv: Optional[List[str]] = None) -> int:
    try:
        args = parse_args(argv)
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE

    try:
        setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log)
    except OSError as e:
        print(f"Error: cannot write to log file {args.log}: {e}", file=sys.stderr)
        return EXIT_FAILURE

    log_separator(logger, "Kubernetes Workload Scaling")
    try:
        request = build_request(args, build_trigger(args))
    except ValidationError as e:
        logger.error(f"❌ {e}")
        return EXIT_USAGE

    log_configuration(request, args)

    try:
        control_plane = build_control_plane(args)
        sources = build_metrics_sources(args, control_plane)
        check_requirements(request, control_plane, sources)
    except ValidationError as e:
        logger.error(f"❌ {e}")
        return EXIT_USAGE
    except ScalingError as e:
        logger.error(f"❌ {e}")
        return EXIT_FAILURE

    if not args.force and not request.dry_run:
        logger.warning("⚠️ This operation will scale Kubernetes workloads.")
        if not confirm():
            logger.info("Operation cancelled by user.")
            return EXIT_SUCCESS

    engine = WorkloadScalingEngine(
        control_plane,
        metrics_sources=sources,
        verifier=HealthVerifier(control_plane),
    )

    if not args.watch:
        return run_once(engine, request)

    logger.info(f"Watching workloads every {args.interval}s (Ctrl+C to stop)...")
    exit_code = EXIT_SUCCESS
    try:
        while True:
            exit_code = run_once(engine, request)
            if exit_code == EXIT_USAGE:
                return exit_code
            time.sleep(args.interval)
    except KeyboardInterrupt:
        logger.info("Stopped watching workloads.")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
