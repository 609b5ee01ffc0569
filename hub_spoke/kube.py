"""Kubernetes API helpers: apply, wait, poll, delete.

Resources are applied with create-or-replace semantics (try create, on
409 Conflict read the live object and replace it), which keeps every
command idempotent the way ``kubectl apply`` made the runbooks
idempotent.
"""

from __future__ import annotations

import copy
import shutil
import time
from typing import Optional

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config

from .common import HubSpokeError, log, run_cmd

ApiException = k8s_client.ApiException


def load_api_client(kubeconfig: str, context: Optional[str] = None) -> k8s_client.ApiClient:
    """An API client bound to one kubeconfig file/context (no global state)."""
    return k8s_config.new_client_from_config(config_file=kubeconfig, context=context)


# ---------------------------------------------------------------------------
# Apply
# ---------------------------------------------------------------------------
# kind → (API class, method suffix, namespaced)
BUILTIN_KINDS = {
    "Namespace": ("CoreV1Api", "namespace", False),
    "Service": ("CoreV1Api", "namespaced_service", True),
    "Secret": ("CoreV1Api", "namespaced_secret", True),
    "ConfigMap": ("CoreV1Api", "namespaced_config_map", True),
    "ServiceAccount": ("CoreV1Api", "namespaced_service_account", True),
    "Deployment": ("AppsV1Api", "namespaced_deployment", True),
    "ClusterRole": ("RbacAuthorizationV1Api", "cluster_role", False),
    "ClusterRoleBinding": ("RbacAuthorizationV1Api", "cluster_role_binding", False),
}

# argoproj.io custom resources: kind → plural
ARGO_KINDS = {
    "Application": "applications",
    "ApplicationSet": "applicationsets",
    "AppProject": "appprojects",
}


def _resource_version(live) -> Optional[str]:
    if isinstance(live, dict):
        return live.get("metadata", {}).get("resourceVersion")
    return live.metadata.resource_version


def _carry_over_immutable(kind: str, live, body: dict) -> None:
    """Copy server-assigned fields a replace must not clear."""
    body.setdefault("metadata", {})["resourceVersion"] = _resource_version(live)
    if kind == "Service" and live.spec is not None:
        spec = body.setdefault("spec", {})
        if live.spec.cluster_ip:
            spec.setdefault("clusterIP", live.spec.cluster_ip)
        if live.spec.cluster_i_ps:
            spec.setdefault("clusterIPs", live.spec.cluster_i_ps)


def _apply_custom(api_client, doc: dict) -> str:
    api = k8s_client.CustomObjectsApi(api_client)
    group, version = doc["apiVersion"].split("/", 1)
    plural = ARGO_KINDS[doc["kind"]]
    name = doc["metadata"]["name"]
    namespace = doc["metadata"].get("namespace", "argocd")

    try:
        api.create_namespaced_custom_object(group, version, namespace, plural, doc)
        return "created"
    except ApiException as exc:
        if exc.status != 409:
            raise

    live = api.get_namespaced_custom_object(group, version, namespace, plural, name)
    body = dict(doc)
    body["metadata"] = {**doc["metadata"], "resourceVersion": _resource_version(live)}
    api.replace_namespaced_custom_object(group, version, namespace, plural, name, body)
    return "configured"


def apply_manifest(api_client, doc: dict) -> str:
    """Create or replace one manifest. Returns 'created' or 'configured'."""
    kind = doc.get("kind", "")
    name = doc.get("metadata", {}).get("name", "")

    if kind in ARGO_KINDS:
        outcome = _apply_custom(api_client, doc)
        log.info("  %s/%s %s", kind.lower(), name, outcome)
        return outcome

    if kind not in BUILTIN_KINDS:
        raise HubSpokeError(f"Unsupported manifest kind: {kind or '(missing)'}")

    api_name, suffix, namespaced = BUILTIN_KINDS[kind]
    api = getattr(k8s_client, api_name)(api_client)
    scope = {"namespace": doc["metadata"].get("namespace", "default")} if namespaced else {}

    try:
        getattr(api, f"create_{suffix}")(body=doc, **scope)
        outcome = "created"
    except ApiException as exc:
        if exc.status != 409:
            raise
        live = getattr(api, f"read_{suffix}")(name=name, **scope)
        body = copy.deepcopy(doc)
        _carry_over_immutable(kind, live, body)
        getattr(api, f"replace_{suffix}")(name=name, body=body, **scope)
        outcome = "configured"

    log.info("  %s/%s %s", kind.lower(), name, outcome)
    return outcome


# ---------------------------------------------------------------------------
# Wait / poll
# ---------------------------------------------------------------------------
def deployment_available(dep) -> bool:
    for cond in (dep.status.conditions or []) if dep.status else []:
        if cond.type == "Available":
            return cond.status == "True"
    return False


def wait_for_deployment(
    apps_v1: k8s_client.AppsV1Api,
    name: str,
    namespace: str,
    timeout: int,
    interval: int = 5,
) -> None:
    """Block until the Deployment reports condition Available=True.

    Raises HubSpokeError on timeout (``kubectl wait --for=condition=available``).
    """
    log.info("  → Waiting for deployment/%s (timeout: %ds)...", name, timeout)
    deadline = time.monotonic() + timeout

    while True:
        try:
            dep = apps_v1.read_namespaced_deployment(name=name, namespace=namespace)
            if deployment_available(dep):
                ready = dep.status.ready_replicas or 0
                log.info("  ✓ deployment/%s available (%d/%d ready)", name, ready, dep.spec.replicas or 0)
                return
        except ApiException as exc:
            if exc.status != 404:
                raise
        if time.monotonic() >= deadline:
            break
        time.sleep(interval)

    raise HubSpokeError(f"deployment/{name} not available within {timeout}s")


def service_external_ip(service) -> Optional[str]:
    lb = service.status.load_balancer if service.status else None
    for ingress in (lb.ingress or []) if lb else []:
        address = ingress.ip or ingress.hostname
        if address:
            return address
    return None


def wait_for_external_ip(
    core_v1: k8s_client.CoreV1Api,
    name: str,
    namespace: str,
    attempts: int = 30,
    interval: int = 10,
) -> Optional[str]:
    """Poll a LoadBalancer Service for its ingress IP. Returns None if never assigned."""
    for attempt in range(1, attempts + 1):
        try:
            address = service_external_ip(
                core_v1.read_namespaced_service(name=name, namespace=namespace)
            )
        except ApiException as exc:
            if exc.status != 404:
                raise
            address = None
        if address:
            return address
        log.info("  Waiting for external IP... (attempt %d/%d)", attempt, attempts)
        if attempt < attempts:
            time.sleep(interval)
    return None


def get_external_ip(core_v1: k8s_client.CoreV1Api, name: str, namespace: str) -> Optional[str]:
    try:
        return service_external_ip(core_v1.read_namespaced_service(name=name, namespace=namespace))
    except ApiException as exc:
        if exc.status == 404:
            return None
        raise


# ---------------------------------------------------------------------------
# Namespaces
# ---------------------------------------------------------------------------
def namespace_phase(core_v1: k8s_client.CoreV1Api, name: str) -> Optional[str]:
    """Namespace phase ('Active', 'Terminating'), or None when it does not exist."""
    try:
        ns = core_v1.read_namespace(name=name)
    except ApiException as exc:
        if exc.status == 404:
            return None
        raise
    return ns.status.phase if ns.status else "Active"


def namespace_exists(core_v1: k8s_client.CoreV1Api, name: str) -> bool:
    return namespace_phase(core_v1, name) is not None


def delete_namespace(
    core_v1: k8s_client.CoreV1Api,
    name: str,
    timeout: int = 300,
    interval: int = 5,
) -> str:
    """Delete a namespace and wait for it to go away.

    Returns 'deleted' once the namespace is gone, or 'terminating' if it
    still exists when the timeout expires.
    """
    try:
        core_v1.delete_namespace(name=name)
    except ApiException as exc:
        if exc.status == 404:
            return "deleted"
        raise

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not namespace_exists(core_v1, name):
            return "deleted"
        time.sleep(interval)

    return "deleted" if not namespace_exists(core_v1, name) else "terminating"


def kubectl_get(kubeconfig: str, *args: str) -> None:
    """Stream ``kubectl get ...`` output for the operator (informational only)."""
    if shutil.which("kubectl") is None:
        log.debug("kubectl not installed; skipping 'kubectl get %s'", " ".join(args))
        return
    run_cmd(["kubectl", "--kubeconfig", kubeconfig, "get", *args], check=False, capture=False)
