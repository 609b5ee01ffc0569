from unittest.mock import MagicMock

import pytest
import yaml

from hub_spoke import deploy
from hub_spoke.arm import ClusterInfo, IdentityInfo
from hub_spoke.common import ConfigError, PreconditionError
from hub_spoke.credentials import AuthMode
from hub_spoke.manifests import demo_namespace


@pytest.fixture
def azure():
    ctx = MagicMock()
    ctx.get_identity.return_value = IdentityInfo("myorg-hub-identity", "client-123", "principal-1", "/id")
    ctx.find_cluster.return_value = ClusterInfo("spoke-dev", "rg-dev", "/clusters/spoke-dev",
                                                disable_local_accounts=True)
    return ctx


@pytest.fixture
def cluster(monkeypatch):
    """Record every Kubernetes interaction in order."""
    events = []
    monkeypatch.setattr(deploy, "get_credentials",
                        lambda rg, name, mode, kubeconfig, **kw: events.append(("credentials", mode)))
    monkeypatch.setattr(deploy, "load_api_client", lambda kubeconfig, context=None: object())
    monkeypatch.setattr(deploy, "check_connectivity", lambda api_client: "v1.29.0")
    monkeypatch.setattr(deploy, "apply_manifest",
                        lambda api_client, doc: events.append(("apply", doc)) or "created")
    monkeypatch.setattr(deploy, "wait_for_deployment",
                        lambda apps, name, ns, timeout: events.append(("wait", name)))
    monkeypatch.setattr(deploy, "wait_for_external_ip", lambda *a, **k: "20.1.2.3")
    monkeypatch.setattr(deploy, "probe_http", lambda address: True)
    monkeypatch.setattr(deploy, "kubectl_get", lambda *a: None)
    return events


def test_quick_deploy_applies_demo_in_order(cfg, azure, cluster):
    result = deploy.quick_deploy(cfg, azure)

    assert result.external_ip == "20.1.2.3"
    assert result.reachable
    sequence = [(e[0], e[1]["kind"]) if e[0] == "apply" else e for e in cluster]
    assert sequence == [
        ("credentials", AuthMode.AZURECLI),
        ("apply", "Namespace"),
        ("apply", "Deployment"),
        ("wait", "nginx-demo"),
        ("apply", "Service"),
    ]
    deployment = cluster[2][1]
    assert deployment["spec"]["replicas"] == 3
    env = {e["name"]: e["value"] for e in deployment["spec"]["template"]["spec"]["containers"][0]["env"]}
    assert env["DEPLOYED_BY"] == "client-123"
    azure.get_identity.assert_called_once_with("myorg-hub-rg", "myorg-hub-identity")


def test_quick_deploy_uses_configured_client_id(cfg, azure, cluster):
    cfg.hub_identity_client_id = "from-env"
    deploy.quick_deploy(cfg, azure)
    azure.get_identity.assert_not_called()


def test_quick_deploy_missing_spoke_lists_clusters(cfg, azure, cluster):
    azure.find_cluster.return_value = None
    azure.list_clusters.return_value = [ClusterInfo("other", "rg-other", "/x")]
    with pytest.raises(PreconditionError, match="spoke-dev"):
        deploy.quick_deploy(cfg, azure)
    azure.list_clusters.assert_called_once()
    assert cluster == []


def test_quick_deploy_requires_target(cfg, azure):
    cfg.spoke_rg = ""
    with pytest.raises(ConfigError, match="SPOKE_RG"):
        deploy.quick_deploy(cfg, azure)


def test_quick_deploy_dry_run_touches_nothing(cfg, azure, cluster):
    cfg.dry_run = True
    result = deploy.quick_deploy(cfg, azure)
    assert result.external_ip is None
    assert cluster == []
    azure.get_identity.assert_not_called()


def test_deploy_to_spoke_uses_workload_identity(cfg, cluster):
    deploy.deploy_to_spoke(cfg)
    assert cluster[0] == ("credentials", AuthMode.WORKLOAD_IDENTITY)
    assert [e[1]["kind"] for e in cluster if e[0] == "apply"] == ["Namespace", "Deployment", "Service"]


def test_deploy_to_spoke_from_directory(cfg, cluster, tmp_path):
    (tmp_path / "ns.yaml").write_text(yaml.safe_dump(demo_namespace()))
    deploy.deploy_to_spoke(cfg, manifests_dir=str(tmp_path), mode=AuthMode.MSI)
    applied = [e[1]["kind"] for e in cluster if e[0] == "apply"]
    assert applied == ["Namespace"]


def test_probe_http_handles_connection_errors(monkeypatch):
    def refuse(url, timeout):
        raise deploy.requests.ConnectionError("refused")

    monkeypatch.setattr(deploy.requests, "get", refuse)
    assert deploy.probe_http("20.1.2.3") is False


def test_manifests_without_namespace_land_in_demo_namespace(cfg, cluster, monkeypatch, tmp_path):
    waited = []
    monkeypatch.setattr(deploy, "wait_for_deployment",
                        lambda apps, name, ns, timeout: waited.append((name, ns)))
    deployment = {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": "web"},
        "spec": {"replicas": 1},
    }
    (tmp_path / "app.yaml").write_text(yaml.safe_dump_all([demo_namespace(), deployment]))

    deploy.deploy_to_spoke(cfg, manifests_dir=str(tmp_path))

    applied = {e[1]["kind"]: e[1]["metadata"] for e in cluster if e[0] == "apply"}
    assert applied["Deployment"]["namespace"] == "demo-app"
    assert "namespace" not in applied["Namespace"]
    assert waited == [("web", "demo-app")]


def test_explicit_namespace_is_kept():
    doc = {"kind": "Service", "metadata": {"name": "svc", "namespace": "other"}}
    assert deploy.with_namespace(doc, "demo-app") is doc
    cluster_role = {"kind": "ClusterRole", "metadata": {"name": "r"}}
    assert "namespace" not in deploy.with_namespace(cluster_role, "demo-app")["metadata"]
