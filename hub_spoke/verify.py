"""Verify the demo deployment on a spoke cluster and print a report."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

import requests
from kubernetes import client as k8s_client

from . import manifests
from .common import PreconditionError, log
from .config import Config
from .credentials import AuthMode
from .deploy import connect_spoke
from .kube import ApiException, get_external_ip, namespace_exists

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class VerificationReport:
    namespace: str
    ready_replicas: int = 0
    desired_replicas: int = 0
    running_pods: int = 0
    external_ip: Optional[str] = None
    reachable: bool = False
    headers: List[str] = field(default_factory=list)
    response_times: List[float] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    resources: Dict[str, Dict[str, str]] = field(default_factory=dict)
    events: List[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return self.ready_replicas == self.desired_replicas


def _section(number: int, title: str) -> None:
    log.info("")
    log.info("%d. %s", number, title)
    log.info("=" * (len(title) + 3))


def _event_time(event) -> datetime:
    return event.last_timestamp or event.event_time or EPOCH


def recent_events(core_v1: k8s_client.CoreV1Api, namespace: str, limit: int = 10) -> List[str]:
    """The ``limit`` most recent events, oldest first (``--sort-by=.lastTimestamp | tail``)."""
    events = sorted(core_v1.list_namespaced_event(namespace).items, key=_event_time)
    lines = []
    for event in events[-limit:]:
        obj = event.involved_object
        lines.append(
            f"{event.type or '':8} {event.reason or '':20} "
            f"{(obj.kind or '').lower()}/{obj.name or ''}: {(event.message or '').strip()}"
        )
    return lines


def sample_http(address: str, samples: int = 3, timeout: int = 10) -> Dict[str, list]:
    """Reachability, the first five response headers and per-request timings."""
    url = f"http://{address}"
    try:
        first = requests.get(url, timeout=timeout)
    except requests.RequestException as exc:
        log.debug("HTTP probe of %s failed: %s", url, exc)
        return {"headers": [], "times": []}

    headers = [f"HTTP {first.status_code} {first.reason or ''}".strip()]
    headers.extend(f"{k}: {v}" for k, v in first.headers.items())
    times = [round(first.elapsed.total_seconds(), 3)]
    for _ in range(samples - 1):
        try:
            times.append(round(requests.get(url, timeout=timeout).elapsed.total_seconds(), 3))
        except requests.RequestException:
            break
    return {"headers": headers[:5], "times": times}


def _container_details(report: VerificationReport, deployment) -> None:
    report.labels = dict(deployment.metadata.labels or {})
    containers = deployment.spec.template.spec.containers or []
    if not containers:
        return
    container = containers[0]
    report.env = {e.name: e.value or "" for e in container.env or []}
    if container.resources is not None:
        report.resources = {
            "requests": dict(container.resources.requests or {}),
            "limits": dict(container.resources.limits or {}),
        }


def collect_report(api_client, namespace: str = manifests.DEMO_NAMESPACE) -> VerificationReport:
    core_v1 = k8s_client.CoreV1Api(api_client)
    apps_v1 = k8s_client.AppsV1Api(api_client)

    if not namespace_exists(core_v1, namespace):
        raise PreconditionError(
            f"{namespace} namespace not found. Please run the deployment script first"
        )
    log.info("  ✓ Connected to spoke cluster")
    report = VerificationReport(namespace=namespace)

    _section(1, "Deployment Status")
    try:
        deployment = apps_v1.read_namespaced_deployment(manifests.DEMO_APP, namespace)
    except ApiException as exc:
        if exc.status != 404:
            raise
        raise PreconditionError(f"deployment/{manifests.DEMO_APP} not found in {namespace}") from exc
    report.desired_replicas = deployment.spec.replicas or 0
    report.ready_replicas = (deployment.status.ready_replicas or 0) if deployment.status else 0
    if report.healthy:
        log.info("  ✓ Deployment is healthy (%d/%d replicas ready)",
                 report.ready_replicas, report.desired_replicas)
    else:
        log.warning("  ⚠ Deployment may still be starting (%d/%d replicas ready)",
                    report.ready_replicas, report.desired_replicas)

    _section(2, "Pod Status")
    pods = core_v1.list_namespaced_pod(namespace, field_selector="status.phase=Running")
    report.running_pods = len(pods.items)
    log.info("  Running pods: %d", report.running_pods)

    _section(3, "External Access Test")
    report.external_ip = get_external_ip(core_v1, manifests.DEMO_SERVICE, namespace)
    if report.external_ip:
        log.info("  External IP: %s", report.external_ip)
        sample = sample_http(report.external_ip)
        report.headers, report.response_times = sample["headers"], sample["times"]
        report.reachable = bool(report.headers)
        if report.reachable:
            log.info("  ✓ Application is accessible!")
            log.info("  Response headers:")
            for header in report.headers:
                log.info("    %s", header)
            log.info("  Response time test:")
            for i, seconds in enumerate(report.response_times, 1):
                log.info("    Request %d: %.3fs", i, seconds)
        else:
            log.warning("  ⚠ Application is not yet accessible (may still be starting)")
    else:
        log.warning("  ⚠ External IP not yet assigned")

    _section(4, "Deployment Metadata")
    _container_details(report, deployment)
    log.info("  Labels:")
    for key, value in report.labels.items():
        log.info("    %s=%s", key, value)
    log.info("  Environment:")
    for key, value in report.env.items():
        log.info("    %s=%s", key, value)
    for kind, values in report.resources.items():
        log.info("  %s: %s", kind.capitalize(),
                 ", ".join(f"{k}={v}" for k, v in values.items()) or "(none)")

    _section(5, "Recent Events")
    report.events = recent_events(core_v1, namespace)
    for line in report.events:
        log.info("  %s", line)
    if not report.events:
        log.info("  (no events)")

    return report


def print_report_summary(report: VerificationReport) -> None:
    log.info("")
    log.info("=== Verification Summary ===")
    log.info("Namespace:  ✓ %s exists", report.namespace)
    log.info("Deployment: %s", "✓ Healthy" if report.healthy else "⚠ Starting")
    log.info("Pods:       ✓ %d pods running", report.running_pods)
    log.info("Service:    %s", "✓ External IP assigned" if report.external_ip else "⚠ External IP pending")
    log.info("Access:     %s", "✓ Application accessible" if report.reachable else "⚠ Not yet accessible")
    if report.external_ip:
        log.info("")
        log.info("🌐 Access your application at: http://%s", report.external_ip)


def verify_deployment(cfg: Config) -> VerificationReport:
    cfg.require("spoke_cluster_name", "spoke_rg")
    cfg.print_banner("Hub-to-Spoke Deployment Verification")

    api_client = connect_spoke(cfg, AuthMode.parse(cfg.auth_mode))
    report = collect_report(api_client)
    print_report_summary(report)
    return report
