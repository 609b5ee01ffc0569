"""Manifests pushed into spoke clusters.

The demo workload (Namespace, nginx Deployment, LoadBalancer Service) and
the spoke bootstrap RBAC bundle, built as plain dicts so they can be
applied through the API or rendered to YAML for ``--dry-run`` and for the
Kustomize overlays ArgoCD syncs from git.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

import yaml

from .common import HubSpokeError

DEMO_NAMESPACE = "demo-app"
DEMO_APP = "nginx-demo"
DEMO_SERVICE = "nginx-demo-service"

BOOTSTRAP_NAMESPACE = "argocd-managed"
BOOTSTRAP_SERVICE_ACCOUNT = "hub-deployer"
WORKLOAD_IDENTITY_ANNOTATION = "azure.workload.identity/client-id"


def demo_namespace(method: str = "direct-kubectl", now: Optional[datetime] = None) -> dict:
    now = now or datetime.now(timezone.utc)
    return {
        "apiVersion": "v1",
        "kind": "Namespace",
        "metadata": {
            "name": DEMO_NAMESPACE,
            "labels": {
                "managed-by": "hub-cluster",
                "deployment-method": method,
                "deployment-time": now.strftime("%Y%m%d-%H%M%S"),
            },
        },
    }


def nginx_deployment(
    target_cluster: str,
    deployed_by: str,
    image: str = "nginx:1.25",
    replicas: int = 3,
    source: str = "hub-cluster-script",
    now: Optional[datetime] = None,
) -> dict:
    now = now or datetime.now(timezone.utc)
    labels = {"app": DEMO_APP}
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": DEMO_APP,
            "namespace": DEMO_NAMESPACE,
            "labels": {**labels, "managed-by": "hub-cluster"},
        },
        "spec": {
            "replicas": replicas,
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "containers": [
                        {
                            "name": "nginx",
                            "image": image,
                            "ports": [{"containerPort": 80}],
                            "resources": {
                                "requests": {"cpu": "100m", "memory": "128Mi"},
                                "limits": {"cpu": "200m", "memory": "256Mi"},
                            },
                            "env": [
                                {"name": "DEPLOYMENT_SOURCE", "value": source},
                                {"name": "TARGET_CLUSTER", "value": target_cluster},
                                {"name": "DEPLOYED_BY", "value": deployed_by},
                                {"name": "DEPLOYMENT_TIME", "value": now.strftime("%a %b %d %H:%M:%S UTC %Y")},
                            ],
                        }
                    ]
                },
            },
        },
    }


def nginx_service() -> dict:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": DEMO_SERVICE,
            "namespace": DEMO_NAMESPACE,
            "labels": {"app": DEMO_APP, "managed-by": "hub-cluster"},
            "annotations": {
                "service.beta.kubernetes.io/azure-load-balancer-health-probe-request-path": "/",
            },
        },
        "spec": {
            "type": "LoadBalancer",
            "ports": [{"port": 80, "targetPort": 80, "protocol": "TCP", "name": "http"}],
            "selector": {"app": DEMO_APP},
        },
    }


def bootstrap_bundle(hub_client_id: str, environment: str = "") -> List[dict]:
    """Namespace, workload-identity ServiceAccount and cluster-admin binding
    that let the hub identity manage a spoke."""
    labels = {"app.kubernetes.io/managed-by": "argocd", "cluster-type": "spoke"}
    if environment:
        labels["cluster-environment"] = environment

    return [
        {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {"name": BOOTSTRAP_NAMESPACE, "labels": dict(labels)},
        },
        {
            "apiVersion": "v1",
            "kind": "ServiceAccount",
            "metadata": {
                "name": BOOTSTRAP_SERVICE_ACCOUNT,
                "namespace": BOOTSTRAP_NAMESPACE,
                "labels": {**labels, "azure.workload.identity/use": "true"},
                "annotations": {WORKLOAD_IDENTITY_ANNOTATION: hub_client_id},
            },
        },
        {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "ClusterRole",
            "metadata": {"name": f"{BOOTSTRAP_SERVICE_ACCOUNT}-role", "labels": dict(labels)},
            "rules": [
                {"apiGroups": ["", "apps"], "resources": ["*"], "verbs": ["*"]},
                {"apiGroups": ["rbac.authorization.k8s.io"], "resources": ["*"], "verbs": ["get", "list", "watch"]},
            ],
        },
        {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "ClusterRoleBinding",
            "metadata": {"name": f"{BOOTSTRAP_SERVICE_ACCOUNT}-binding", "labels": dict(labels)},
            "roleRef": {
                "apiGroup": "rbac.authorization.k8s.io",
                "kind": "ClusterRole",
                "name": f"{BOOTSTRAP_SERVICE_ACCOUNT}-role",
            },
            "subjects": [
                {
                    "kind": "ServiceAccount",
                    "name": BOOTSTRAP_SERVICE_ACCOUNT,
                    "namespace": BOOTSTRAP_NAMESPACE,
                }
            ],
        },
    ]


def load_manifest_dir(path: str) -> List[dict]:
    """All YAML documents from ``*.yaml``/``*.yml`` files in a directory, by file name."""
    directory = Path(path)
    if not directory.is_dir():
        raise HubSpokeError(f"Manifests directory not found: {path}")

    docs: List[dict] = []
    files = sorted([*directory.glob("*.yaml"), *directory.glob("*.yml")])
    for manifest in files:
        with manifest.open("r", encoding="utf-8") as handle:
            docs.extend(d for d in yaml.safe_load_all(handle) if d)
    if not docs:
        raise HubSpokeError(f"No manifests found in {path}")
    return docs


def render_yaml(docs: Iterable[dict]) -> str:
    return yaml.safe_dump_all(list(docs), sort_keys=False, default_flow_style=False)
