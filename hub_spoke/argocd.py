"""ArgoCD hub configuration: spoke cluster registration and bootstrap.

Spoke clusters are registered with ArgoCD as labelled cluster Secrets in
the hub's ``argocd`` namespace. The ``spoke-cluster-bootstrap``
ApplicationSet selects every Secret labelled ``environment: spoke`` and
generates one Application per cluster, pointing at the Kustomize overlay
named by the Secret's ``cluster-environment`` label.

Reconciliation itself belongs to the ArgoCD controller; this module only
writes its inputs. ``preview_applications`` evaluates the cluster
generator locally so the outcome can be checked before anything is
applied.
"""

from __future__ import annotations

import base64
import json
import re
import tempfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import yaml
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config

from . import manifests
from .common import ConfigError, PreconditionError, confirm, log
from .config import Config
from .credentials import AuthMode, current_context, get_credentials, read_cluster_entry, read_user_entry
from .kube import ApiException, apply_manifest, load_api_client

APPLICATIONSET_NAME = "spoke-cluster-bootstrap"
ENVIRONMENTS = ("dev", "staging", "prod")
CLUSTER_SECRET_TYPE = "argocd.argoproj.io/secret-type"
ARGO_GROUP = "argoproj.io"
ARGO_VERSION = "v1alpha1"

_PLACEHOLDER = re.compile(r"\{\{\s*([^}\s]+)\s*\}\}")


# ---------------------------------------------------------------------------
# Manifests
# ---------------------------------------------------------------------------
def render_applicationset(
    repo_url: str = "https://github.com/srinman/aks-cicd",
    revision: str = "main",
    path_prefix: str = "argo/spoke-bootstrap/overlays",
    namespace: str = "argocd",
) -> dict:
    return {
        "apiVersion": f"{ARGO_GROUP}/{ARGO_VERSION}",
        "kind": "ApplicationSet",
        "metadata": {
            "name": APPLICATIONSET_NAME,
            "namespace": namespace,
            "labels": {
                "app.kubernetes.io/name": APPLICATIONSET_NAME,
                "app.kubernetes.io/managed-by": "argocd",
            },
        },
        "spec": {
            "generators": [
                {"clusters": {"selector": {"matchLabels": {"environment": "spoke"}}}}
            ],
            "template": {
                "metadata": {
                    "name": "{{name}}-bootstrap",
                    "labels": {
                        "environment": "{{metadata.labels.cluster-environment}}",
                        "cluster-type": "spoke",
                        "managed-by": "applicationset",
                    },
                },
                "spec": {
                    "project": "default",
                    "source": {
                        "repoURL": repo_url,
                        "path": f"{path_prefix.rstrip('/')}/{{{{metadata.labels.cluster-environment}}}}",
                        "targetRevision": revision,
                    },
                    "destination": {
                        "server": "{{server}}",
                        "namespace": manifests.BOOTSTRAP_NAMESPACE,
                    },
                    "syncPolicy": {
                        "automated": {"prune": True, "selfHeal": True},
                        "syncOptions": [
                            "CreateNamespace=true",
                            "ServerSideApply=true",
                            "RespectIgnoreDifferences=true",
                        ],
                        "retry": {
                            "limit": 5,
                            "backoff": {"duration": "5s", "factor": 2, "maxDuration": "3m"},
                        },
                    },
                },
            },
        },
    }


def cluster_secret(
    name: str,
    resource_group: str,
    environment: str,
    server: str,
    ca_data: str,
    cert_data: str,
    key_data: str,
    namespace: str = "argocd",
) -> dict:
    """ArgoCD declarative cluster Secret for a spoke, labelled for the ApplicationSet."""
    tls = {
        "tlsClientConfig": {
            "insecure": False,
            "caData": ca_data,
            "certData": cert_data,
            "keyData": key_data,
        }
    }
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "Opaque",
        "metadata": {
            "name": f"{name}-secret",
            "namespace": namespace,
            "labels": {
                CLUSTER_SECRET_TYPE: "cluster",
                "environment": "spoke",
                "cluster-environment": environment,
                "cluster-name": name,
            },
            "annotations": {
                "managed-by": "spoke-cluster-automation",
                "resource-group": resource_group,
            },
        },
        "stringData": {
            "name": name,
            "server": server,
            "config": json.dumps(tls, indent=2),
        },
    }


def render_bootstrap_overlays(output_dir: str, hub_client_id: str) -> List[Path]:
    """Write the ``base`` bundle and one Kustomize overlay per environment."""
    root = Path(output_dir)
    base = root / "base"
    base.mkdir(parents=True, exist_ok=True)

    written: List[Path] = []
    resources = []
    for doc in manifests.bootstrap_bundle(hub_client_id):
        filename = f"{doc['kind'].lower()}.yaml"
        path = base / filename
        path.write_text(manifests.render_yaml([doc]))
        resources.append(filename)
        written.append(path)

    kustomization = {
        "apiVersion": "kustomize.config.k8s.io/v1beta1",
        "kind": "Kustomization",
        "resources": resources,
    }
    (base / "kustomization.yaml").write_text(yaml.safe_dump(kustomization, sort_keys=False))
    written.append(base / "kustomization.yaml")

    for env in ENVIRONMENTS:
        overlay = root / "overlays" / env
        overlay.mkdir(parents=True, exist_ok=True)
        kustomization = {
            "apiVersion": "kustomize.config.k8s.io/v1beta1",
            "kind": "Kustomization",
            "resources": ["../../base"],
            "labels": [{"pairs": {"cluster-environment": env}, "includeSelectors": False}],
        }
        path = overlay / "kustomization.yaml"
        path.write_text(yaml.safe_dump(kustomization, sort_keys=False))
        written.append(path)

    log.info("  ✓ Wrote %d bootstrap files under %s", len(written), root)
    return written


# ---------------------------------------------------------------------------
# Cluster generator preview
# ---------------------------------------------------------------------------
def _secret_value(secret: dict, key: str) -> str:
    if key in (secret.get("stringData") or {}):
        return secret["stringData"][key]
    encoded = (secret.get("data") or {}).get(key)
    return base64.b64decode(encoded).decode() if encoded else ""


def cluster_params(secret: dict) -> Dict[str, str]:
    """Template parameters the cluster generator exposes for one Secret."""
    metadata = secret.get("metadata", {})
    name = _secret_value(secret, "name") or metadata.get("name", "")
    params = {
        "name": name,
        "nameNormalized": re.sub(r"[^a-z0-9.-]", "-", name.lower()),
        "server": _secret_value(secret, "server"),
    }
    for key, value in (metadata.get("labels") or {}).items():
        params[f"metadata.labels.{key}"] = value
    for key, value in (metadata.get("annotations") or {}).items():
        params[f"metadata.annotations.{key}"] = value
    return params


def _matches(selector: dict, labels: Dict[str, str]) -> bool:
    for key, value in (selector.get("matchLabels") or {}).items():
        if labels.get(key) != value:
            return False
    for expr in selector.get("matchExpressions") or []:
        present = expr["key"] in labels
        value = labels.get(expr["key"])
        operator = expr["operator"]
        if operator == "In" and value not in expr.get("values", []):
            return False
        if operator == "NotIn" and present and value in expr.get("values", []):
            return False
        if operator == "Exists" and not present:
            return False
        if operator == "DoesNotExist" and present:
            return False
    return True


def _substitute(node, params: Dict[str, str]):
    if isinstance(node, str):
        return _PLACEHOLDER.sub(lambda m: params.get(m.group(1), m.group(0)), node)
    if isinstance(node, dict):
        return {k: _substitute(v, params) for k, v in node.items()}
    if isinstance(node, list):
        return [_substitute(v, params) for v in node]
    return node


def preview_applications(appset: dict, cluster_secrets: Iterable[dict]) -> List[dict]:
    """Applications the ``clusters`` generators would produce for these Secrets."""
    spec = appset["spec"]
    namespace = appset["metadata"].get("namespace", "argocd")
    secrets = [
        s for s in cluster_secrets
        if (s.get("metadata", {}).get("labels") or {}).get(CLUSTER_SECRET_TYPE) == "cluster"
    ]

    applications = []
    for generator in spec.get("generators", []):
        if "clusters" not in generator:
            continue
        selector = (generator["clusters"] or {}).get("selector") or {}
        for secret in secrets:
            if not _matches(selector, secret["metadata"].get("labels") or {}):
                continue
            rendered = _substitute(spec["template"], cluster_params(secret))
            applications.append({
                "apiVersion": f"{ARGO_GROUP}/{ARGO_VERSION}",
                "kind": "Application",
                "metadata": {**rendered.get("metadata", {}), "namespace": namespace},
                "spec": rendered.get("spec", {}),
            })
    return applications


def load_cluster_secrets(api_client, namespace: str = "argocd") -> List[dict]:
    """Cluster Secrets currently registered on the hub, as manifest dicts."""
    core_v1 = k8s_client.CoreV1Api(api_client)
    secrets = core_v1.list_namespaced_secret(namespace, label_selector=f"{CLUSTER_SECRET_TYPE}=cluster")
    return [api_client.sanitize_for_serialization(s) for s in secrets.items]


# ---------------------------------------------------------------------------
# Hub-side commands
# ---------------------------------------------------------------------------
def check_hub_context(cfg: Config) -> None:
    """Confirm before acting when the current kube context does not look like the hub."""
    context = current_context(cfg.kubeconfig)
    if "hub" in context:
        return
    log.warning("  ⚠ Current context '%s' doesn't appear to be the hub cluster", context)
    if not confirm("Continue anyway?", assume_yes=cfg.assume_yes):
        raise PreconditionError("Aborted: not connected to the hub cluster")


def hub_client(cfg: Config):
    try:
        return load_api_client(cfg.kubeconfig, context=cfg.hub_context)
    except k8s_config.ConfigException as exc:
        raise PreconditionError(
            f"Could not switch to {cfg.hub_context} context. Make sure hub cluster is configured"
        ) from exc


def _prompt_client_id(cfg: Config) -> str:
    if cfg.assume_yes:
        return ""
    try:
        return input("Enter your Hub Identity Client ID: ").strip()
    except EOFError:
        return ""


def setup_applicationset(cfg: Config, api_client=None) -> dict:
    log.info("=== Setting up ArgoCD ApplicationSet for spoke cluster automation ===")
    appset = render_applicationset(
        cfg.repo_url, cfg.target_revision, cfg.bootstrap_path, cfg.argocd_namespace
    )
    if cfg.dry_run:
        log.info(manifests.render_yaml([appset]))
        return appset

    check_hub_context(cfg)
    client_id = cfg.hub_identity_client_id
    if not client_id:
        log.info("  Hub Identity Client ID not found in environment variable.")
        client_id = _prompt_client_id(cfg)
        if not client_id:
            raise ConfigError("Hub Identity Client ID is required")
    log.info("  Using Hub Identity Client ID: %s", client_id)

    api_client = api_client or hub_client(cfg)
    apply_manifest(api_client, appset)
    log.info("  ✓ ApplicationSet '%s' created successfully!", APPLICATIONSET_NAME)

    report_applicationset_status(api_client, cfg.argocd_namespace)
    log.info("")
    log.info("Next steps:")
    log.info("  hub-spoke add-spoke-cluster -n <cluster> -g <resource-group> -e <dev|staging|prod>")
    log.info("  kubectl logs -n %s deployment/argocd-applicationset-controller", cfg.argocd_namespace)
    return appset


def report_applicationset_status(api_client, namespace: str) -> None:
    api = k8s_client.CustomObjectsApi(api_client)
    try:
        live = api.get_namespaced_custom_object(
            ARGO_GROUP, ARGO_VERSION, namespace, "applicationsets", APPLICATIONSET_NAME
        )
    except ApiException as exc:
        log.warning("  ⚠ Could not read ApplicationSet status (%s)", exc.reason)
        return
    conditions = (live.get("status") or {}).get("conditions") or []
    if not conditions:
        log.info("  → No status conditions reported yet")
    for cond in conditions:
        log.info("  %s=%s %s", cond.get("type"), cond.get("status"), cond.get("message", ""))


def fetch_admin_credentials(name: str, resource_group: str, kubeconfig: str) -> Dict[str, str]:
    """Server, CA and client cert/key of the cluster's local admin user."""
    get_credentials(resource_group, name, AuthMode.ADMIN, kubeconfig)
    cluster = read_cluster_entry(kubeconfig, name)
    user = read_user_entry(kubeconfig, f"clusterAdmin_{resource_group}_{name}")

    creds = {
        "server": cluster.get("server", ""),
        "ca_data": cluster.get("certificate-authority-data", ""),
        "cert_data": user.get("client-certificate-data", ""),
        "key_data": user.get("client-key-data", ""),
    }
    labels = {
        "server": "cluster server",
        "ca_data": "cluster CA certificate",
        "cert_data": "client certificate",
        "key_data": "client key",
    }
    for key, what in labels.items():
        if not creds[key]:
            raise PreconditionError(f"Could not get {what} from admin credentials")
    return creds


def add_spoke_cluster(
    cfg: Config,
    name: str,
    resource_group: str,
    environment: str,
    hub_client_id: Optional[str] = None,
    api_client=None,
) -> dict:
    """Register a spoke with ArgoCD. Re-running replaces the same Secret."""
    if not name or not resource_group or not environment:
        raise ConfigError("Missing required parameters: cluster name, resource group and environment")
    if environment not in ENVIRONMENTS:
        raise ConfigError(f"Environment must be one of: {', '.join(ENVIRONMENTS)}")
    hub_client_id = hub_client_id or cfg.hub_identity_client_id
    if not hub_client_id:
        raise ConfigError(
            "Hub Identity Client ID not provided. Set HUB_IDENTITY_CLIENT_ID or use -i"
        )

    log.info("Adding spoke cluster to ArgoCD:")
    log.info("  Cluster Name:   %s", name)
    log.info("  Resource Group: %s", resource_group)
    log.info("  Environment:    %s", environment)
    log.info("  Hub Identity:   %s", hub_client_id)
    log.info("")

    if cfg.dry_run:
        secret = cluster_secret(name, resource_group, environment, "<server>", "<ca>", "<cert>", "<key>",
                                namespace=cfg.argocd_namespace)
        log.info(manifests.render_yaml([secret]))
        return secret

    check_hub_context(cfg)

    log.info("  → Getting cluster details from Azure...")
    with tempfile.TemporaryDirectory(prefix="hub-spoke-") as tmp:
        creds = fetch_admin_credentials(name, resource_group, str(Path(tmp) / "kubeconfig"))
    log.info("  Cluster Server: %s", creds["server"])

    secret = cluster_secret(name, resource_group, environment, namespace=cfg.argocd_namespace, **creds)
    log.info("  → Creating ArgoCD cluster secret: %s", secret["metadata"]["name"])
    api_client = api_client or hub_client(cfg)
    apply_manifest(api_client, secret)
    log.info("  ✓ Cluster secret created successfully!")

    log.info("")
    log.info("Cluster secret labels:")
    for key, value in secret["metadata"]["labels"].items():
        log.info("  %s=%s", key, value)

    log.info("")
    log.info("✓ Spoke cluster '%s' added to ArgoCD successfully!", name)
    log.info("The ApplicationSet will automatically detect this cluster and deploy bootstrap configuration.")
    log.info("  kubectl get applications -n %s -l cluster-type=spoke", cfg.argocd_namespace)
    log.info("  kubectl get applicationset %s -n %s -o wide", APPLICATIONSET_NAME, cfg.argocd_namespace)
    return secret
