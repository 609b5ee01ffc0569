import logging
from types import SimpleNamespace

import pytest

from hub_spoke.common import log
from hub_spoke.config import ENV_NAMES, Config

EXTRA_ENV = [
    "HUB_CONTEXT", "ARGOCD_NAMESPACE", "BOOTSTRAP_REPO_URL", "BOOTSTRAP_REVISION",
    "TERRAFORM_DIR", "NGINX_IMAGE", "WAIT_TIMEOUT", "EXTERNAL_IP_ATTEMPTS",
    "EXTERNAL_IP_INTERVAL", "STATUS_FILE",
    "AZURE_CLIENT_ID", "AZURE_TENANT_ID", "AZURE_FEDERATED_TOKEN_FILE", "AZURE_CLIENT_SECRET",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in [*ENV_NAMES.values(), *EXTRA_ENV]:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    log.handlers[:] = []
    log.setLevel(logging.NOTSET)
    log.propagate = True


@pytest.fixture
def cfg(tmp_path) -> Config:
    return Config(
        spoke_cluster_name="spoke-dev",
        spoke_rg="rg-dev",
        kubeconfig=str(tmp_path / "kubeconfig"),
        status_file=str(tmp_path / "status.json"),
        wait_timeout=1,
        ip_attempts=2,
        ip_interval=0,
        subscription_id="00000000-0000-0000-0000-000000000000",
    )


def load_balancer_service(ip=None):
    ingress = [SimpleNamespace(ip=ip, hostname=None)] if ip else None
    return SimpleNamespace(
        status=SimpleNamespace(load_balancer=SimpleNamespace(ingress=ingress)),
    )
