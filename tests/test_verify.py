from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from conftest import load_balancer_service
from hub_spoke import verify
from hub_spoke.common import PreconditionError
from hub_spoke.kube import ApiException

T0 = datetime(2024, 3, 5, 12, 0, tzinfo=timezone.utc)


def _event(minute, reason):
    return SimpleNamespace(
        type="Normal",
        reason=reason,
        message=f"event {minute}",
        last_timestamp=T0 + timedelta(minutes=minute),
        event_time=None,
        involved_object=SimpleNamespace(kind="Pod", name=f"nginx-demo-{minute}"),
    )


def _deployment(ready):
    container = SimpleNamespace(
        env=[SimpleNamespace(name="TARGET_CLUSTER", value="spoke-dev")],
        resources=SimpleNamespace(
            requests={"cpu": "100m", "memory": "128Mi"},
            limits={"cpu": "200m", "memory": "256Mi"},
        ),
    )
    return SimpleNamespace(
        metadata=SimpleNamespace(labels={"app": "nginx-demo", "managed-by": "hub-cluster"}),
        spec=SimpleNamespace(
            replicas=3,
            template=SimpleNamespace(spec=SimpleNamespace(containers=[container])),
        ),
        status=SimpleNamespace(ready_replicas=ready),
    )


@pytest.fixture
def apis(monkeypatch):
    core, apps = MagicMock(), MagicMock()
    core.read_namespace.return_value = SimpleNamespace(status=SimpleNamespace(phase="Active"))
    core.list_namespaced_pod.return_value = SimpleNamespace(items=[object()] * 3)
    core.read_namespaced_service.return_value = load_balancer_service("20.1.2.3")
    core.list_namespaced_event.return_value = SimpleNamespace(
        items=[_event(m, f"r{m}") for m in (5, 1, 12, 3, 0, 7, 9, 2, 11, 4, 6, 8)]
    )
    apps.read_namespaced_deployment.return_value = _deployment(3)
    monkeypatch.setattr(verify.k8s_client, "CoreV1Api", lambda api_client=None: core)
    monkeypatch.setattr(verify.k8s_client, "AppsV1Api", lambda api_client=None: apps)
    monkeypatch.setattr(verify, "sample_http", lambda address: {
        "headers": ["HTTP 200 OK", "Server: nginx/1.25.5"],
        "times": [0.012, 0.010, 0.011],
    })
    return core, apps


def test_collect_report_healthy(apis):
    report = verify.collect_report(object())
    assert report.healthy
    assert report.ready_replicas == report.desired_replicas == 3
    assert report.running_pods == 3
    assert report.external_ip == "20.1.2.3"
    assert report.reachable
    assert len(report.response_times) == 3
    assert report.env == {"TARGET_CLUSTER": "spoke-dev"}
    assert report.resources["limits"]["memory"] == "256Mi"


def test_running_pods_use_phase_selector(apis):
    core, _ = apis
    verify.collect_report(object())
    assert core.list_namespaced_pod.call_args.kwargs["field_selector"] == "status.phase=Running"


def test_events_are_most_recent_ten_in_order(apis):
    report = verify.collect_report(object())
    assert len(report.events) == 10
    assert "r2 " in report.events[0]
    assert "r12" in report.events[-1]


def test_partially_ready_is_not_healthy(apis):
    _, apps = apis
    apps.read_namespaced_deployment.return_value = _deployment(1)
    assert not verify.collect_report(object()).healthy


def test_missing_namespace(apis):
    core, _ = apis
    core.read_namespace.side_effect = ApiException(status=404)
    with pytest.raises(PreconditionError, match="demo-app namespace not found"):
        verify.collect_report(object())


def test_pending_external_ip_skips_http(apis, monkeypatch):
    core, _ = apis
    core.read_namespaced_service.return_value = load_balancer_service()

    def never(address):
        raise AssertionError("probed")

    monkeypatch.setattr(verify, "sample_http", never)
    report = verify.collect_report(object())
    assert report.external_ip is None
    assert not report.reachable


def test_sample_http_keeps_first_five_headers(monkeypatch):
    response = SimpleNamespace(
        status_code=200,
        reason="OK",
        headers={f"X-H{i}": str(i) for i in range(10)},
        elapsed=timedelta(milliseconds=15),
    )
    monkeypatch.setattr(verify.requests, "get", lambda url, timeout: response)
    sample = verify.sample_http("20.1.2.3")
    assert len(sample["headers"]) == 5
    assert sample["headers"][0] == "HTTP 200 OK"
    assert sample["times"] == [0.015, 0.015, 0.015]


def test_healthy_is_ready_equals_desired():
    assert verify.VerificationReport("demo-app", ready_replicas=0, desired_replicas=0).healthy
    assert verify.VerificationReport("demo-app", ready_replicas=3, desired_replicas=3).healthy
    assert not verify.VerificationReport("demo-app", ready_replicas=2, desired_replicas=3).healthy
