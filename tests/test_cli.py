from types import SimpleNamespace

import pytest

from hub_spoke import cli
from hub_spoke.common import PreconditionError


def test_flags_override_environment(monkeypatch):
    monkeypatch.setenv("SPOKE_RG", "rg-from-env")
    args = cli.build_parser().parse_args(
        ["--dry-run", "--yes", "--kubeconfig", "/tmp/kc", "quick-deploy", "--cluster-name", "spoke-x"]
    )
    cfg = cli.config_from_args(args)
    assert cfg.dry_run and cfg.assume_yes
    assert cfg.kubeconfig == "/tmp/kc"
    assert cfg.spoke_cluster_name == "spoke-x"
    assert cfg.spoke_rg == "rg-from-env"


def test_add_spoke_cluster_does_not_retarget_config():
    args = cli.build_parser().parse_args(["add-spoke-cluster", "-n", "spoke-a", "-g", "rg-a", "-e", "dev"])
    cfg = cli.config_from_args(args)
    assert cfg.spoke_cluster_name == ""
    assert args.cluster_name == "spoke-a"


def test_add_spoke_cluster_requires_name():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["add-spoke-cluster", "-g", "rg-a", "-e", "dev"])


def test_success_exit_code(monkeypatch):
    seen = []
    monkeypatch.setattr("hub_spoke.cleanup.cleanup", lambda cfg: seen.append(cfg) or "deleted")
    assert cli.main(["cleanup", "--cluster-name", "spoke-dev", "--resource-group", "rg-dev"]) == 0
    assert seen[0].spoke_rg == "rg-dev"


def test_known_failure_exit_code(monkeypatch):
    def fail(cfg):
        raise PreconditionError("no cluster")

    monkeypatch.setattr("hub_spoke.cleanup.cleanup", fail)
    assert cli.main(["cleanup"]) == 1


def test_unexpected_failure_exit_code(monkeypatch):
    def fail(cfg):
        raise RuntimeError("boom")

    monkeypatch.setattr("hub_spoke.cleanup.cleanup", fail)
    assert cli.main(["cleanup"]) == 1


def test_interrupt_exit_code(monkeypatch):
    def interrupt(cfg):
        raise KeyboardInterrupt

    monkeypatch.setattr("hub_spoke.cleanup.cleanup", interrupt)
    assert cli.main(["cleanup"]) == 130


def test_missing_configuration_exit_code():
    assert cli.main(["disable-local-accounts"]) == 1


@pytest.mark.parametrize("healthy, strict, expected", [
    (True, True, 0),
    (False, True, 1),
    (False, False, 0),
])
def test_verify_strict(monkeypatch, healthy, strict, expected):
    monkeypatch.setattr("hub_spoke.verify.verify_deployment", lambda cfg: SimpleNamespace(healthy=healthy))
    argv = ["verify", "--strict"] if strict else ["verify"]
    assert cli.main(argv) == expected


def test_render_bootstrap(tmp_path):
    out = tmp_path / "bootstrap"
    assert cli.main(["render-bootstrap", "--output-dir", str(out), "-i", "client-123"]) == 0
    assert (out / "overlays" / "prod" / "kustomization.yaml").is_file()


def test_preview_from_secret_files(tmp_path):
    from hub_spoke.argocd import cluster_secret
    from hub_spoke.manifests import render_yaml

    secrets = tmp_path / "secrets.yaml"
    secrets.write_text(render_yaml([
        cluster_secret("spoke-dev", "rg-dev", "dev", "https://spoke-dev:443", "ca", "cert", "key"),
    ]))
    assert cli.main(["preview-applications", "--secrets", str(secrets)]) == 0


def test_invalid_integer_setting_exit_code(monkeypatch):
    monkeypatch.setenv("WAIT_TIMEOUT", "soon")
    assert cli.main(["cleanup"]) == 1
