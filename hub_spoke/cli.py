"""hub-spoke command line.

One subcommand per operational task. Configuration comes from the
environment (see ``hub_spoke.config``); flags override it.

Usage:
    hub-spoke quick-deploy
    hub-spoke --dry-run deploy-to-spoke --manifests-dir ./manifests
    hub-spoke add-spoke-cluster -n myorg-dev-aks -g myorg-dev-rg -e dev
    hub-spoke --log-format json pipeline

Exit codes: 0 success, 1 failure, 130 interrupted.
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

import yaml

from . import __version__
from .arm import AKS_CLUSTER_ADMIN_ROLE
from .common import ConfigError, HubSpokeError, log, setup_logging
from .config import Config
from .credentials import AuthMode

AUTH_MODES = [m.value for m in AuthMode]


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------
def cmd_quick_deploy(cfg: Config, args) -> int:
    from .deploy import quick_deploy
    quick_deploy(cfg)
    return 0


def cmd_deploy_to_spoke(cfg: Config, args) -> int:
    from .deploy import deploy_to_spoke
    deploy_to_spoke(cfg, manifests_dir=args.manifests_dir, mode=AuthMode.parse(args.auth_mode))
    return 0


def cmd_verify(cfg: Config, args) -> int:
    from .verify import verify_deployment
    report = verify_deployment(cfg)
    return 0 if report.healthy or not args.strict else 1


def cmd_cleanup(cfg: Config, args) -> int:
    from .cleanup import cleanup
    cleanup(cfg)
    return 0


def cmd_add_spoke_cluster(cfg: Config, args) -> int:
    from .argocd import add_spoke_cluster
    add_spoke_cluster(cfg, args.cluster_name, args.resource_group, args.environment, args.hub_identity)
    return 0


def cmd_setup_applicationset(cfg: Config, args) -> int:
    from .argocd import setup_applicationset
    setup_applicationset(cfg)
    return 0


def cmd_render_bootstrap(cfg: Config, args) -> int:
    from .argocd import render_bootstrap_overlays
    client_id = args.hub_identity or cfg.hub_identity_client_id
    if not client_id:
        raise ConfigError("Hub Identity Client ID is required (HUB_IDENTITY_CLIENT_ID or -i)")
    render_bootstrap_overlays(args.output_dir, client_id)
    return 0


def cmd_preview_applications(cfg: Config, args) -> int:
    from .argocd import hub_client, load_cluster_secrets, preview_applications, render_applicationset
    from .manifests import render_yaml

    appset = render_applicationset(cfg.repo_url, cfg.target_revision, cfg.bootstrap_path, cfg.argocd_namespace)
    if args.secrets:
        secrets = []
        for path in args.secrets:
            with open(path, "r", encoding="utf-8") as handle:
                secrets.extend(d for d in yaml.safe_load_all(handle) if d)
    else:
        secrets = load_cluster_secrets(hub_client(cfg), cfg.argocd_namespace)

    applications = preview_applications(appset, secrets)
    log.info("%d Application(s) would be generated", len(applications))
    if applications:
        log.info(render_yaml(applications))
    return 0


def _spokes(cfg: Config, args):
    from .rbac import default_spokes, parse_spoke
    return [parse_spoke(s) for s in args.spoke] if args.spoke else default_spokes(cfg)


def cmd_grant_access(cfg: Config, args) -> int:
    from .rbac import grant_hub_access
    grant_hub_access(cfg, _spokes(cfg, args), role=args.role)
    return 0


def cmd_revoke_access(cfg: Config, args) -> int:
    from .rbac import revoke_hub_access
    revoke_hub_access(cfg, _spokes(cfg, args), role=args.role)
    return 0


def cmd_federate(cfg: Config, args) -> int:
    from .rbac import federate_service_account, parse_spoke
    federate_service_account(cfg, parse_spoke(args.hub_cluster), args.namespace, args.service_account)
    return 0


def cmd_disable_local_accounts(cfg: Config, args) -> int:
    from .rbac import harden_cluster
    cfg.require("spoke_cluster_name", "spoke_rg")
    harden_cluster(cfg, cfg.spoke_rg, cfg.spoke_cluster_name)
    return 0


def cmd_terraform_deploy(cfg: Config, args) -> int:
    from .terraform import terraform_deploy
    terraform_deploy(cfg)
    return 0


def cmd_pipeline(cfg: Config, args) -> int:
    from .orchestrator import run_steps
    return 0 if run_steps(cfg, args.steps, dry_run=cfg.dry_run) else 1


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------
def _add_target(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--cluster-name", help="Spoke cluster name (SPOKE_CLUSTER_NAME)")
    parser.add_argument("--resource-group", help="Spoke resource group (SPOKE_RG)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hub-spoke",
        description="AKS hub-spoke cluster management with ArgoCD",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-format", choices=["text", "json"], default="text",
                        help="Log output format (default: text)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--dry-run", action="store_true", help="Print what would be done and exit")
    parser.add_argument("--yes", "-y", action="store_true", help="Answer yes to confirmation prompts")
    parser.add_argument("--kubeconfig", help="Kubeconfig path (KUBECONFIG)")
    parser.add_argument("--auth-mode", dest="global_auth_mode", choices=AUTH_MODES,
                        help="kubelogin login mode (AUTH_MODE)")

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    p = sub.add_parser("quick-deploy", help="Deploy the nginx demo to a spoke")
    _add_target(p)
    p.set_defaults(func=cmd_quick_deploy)

    p = sub.add_parser("deploy-to-spoke", help="Deploy from inside the hub with workload identity")
    _add_target(p)
    p.add_argument("--manifests-dir", help="Apply YAML files from this directory instead of the demo")
    p.add_argument("--auth-mode", choices=AUTH_MODES, default=AuthMode.WORKLOAD_IDENTITY.value,
                   help="kubelogin login mode (default: workloadidentity)")
    p.set_defaults(func=cmd_deploy_to_spoke)

    p = sub.add_parser("verify", help="Verify the demo deployment")
    _add_target(p)
    p.add_argument("--strict", action="store_true", help="Exit 1 unless all replicas are ready")
    p.set_defaults(func=cmd_verify)

    p = sub.add_parser("cleanup", help="Delete the demo namespace")
    _add_target(p)
    p.set_defaults(func=cmd_cleanup)

    p = sub.add_parser("add-spoke-cluster", help="Register a spoke cluster with ArgoCD")
    p.add_argument("-n", "--cluster-name", required=True, help="Name of the spoke cluster")
    p.add_argument("-g", "--resource-group", required=True, help="Resource group of the spoke cluster")
    p.add_argument("-e", "--environment", required=True, help="Environment (dev/staging/prod)")
    p.add_argument("-i", "--hub-identity", help="Hub identity client ID (default: HUB_IDENTITY_CLIENT_ID)")
    p.set_defaults(func=cmd_add_spoke_cluster)

    p = sub.add_parser("setup-applicationset", help="Create the spoke bootstrap ApplicationSet")
    p.add_argument("--repo-url", help="Repository holding the overlays (BOOTSTRAP_REPO_URL)")
    p.add_argument("--revision", help="Git revision (BOOTSTRAP_REVISION)")
    p.set_defaults(func=cmd_setup_applicationset)

    p = sub.add_parser("render-bootstrap", help="Write the bootstrap base and overlays")
    p.add_argument("--output-dir", default="argo/spoke-bootstrap", help="Target directory")
    p.add_argument("-i", "--hub-identity", help="Hub identity client ID (default: HUB_IDENTITY_CLIENT_ID)")
    p.set_defaults(func=cmd_render_bootstrap)

    p = sub.add_parser("preview-applications", help="Show the Applications the ApplicationSet would generate")
    p.add_argument("--secrets", nargs="*", metavar="FILE",
                   help="Cluster Secret YAML files (default: read from the hub)")
    p.set_defaults(func=cmd_preview_applications)

    for name, func, text in (
        ("grant-access", cmd_grant_access, "Grant the hub identity a role on spoke clusters"),
        ("revoke-access", cmd_revoke_access, "Remove the hub identity's role on spoke clusters"),
    ):
        p = sub.add_parser(name, help=text)
        p.add_argument("--spoke", action="append", metavar="RG/NAME",
                       help="Spoke cluster (repeatable, default: SPOKE_RG/SPOKE_CLUSTER_NAME)")
        p.add_argument("--role", default=AKS_CLUSTER_ADMIN_ROLE, help="Role definition name")
        p.set_defaults(func=func)

    p = sub.add_parser("federate", help="Federate a hub service account with the hub identity")
    p.add_argument("--hub-cluster", required=True, metavar="RG/NAME", help="Hub AKS cluster")
    p.add_argument("--namespace", default="argocd", help="Service account namespace")
    p.add_argument("--service-account", default="argocd-application-controller",
                   help="Service account name")
    p.set_defaults(func=cmd_federate)

    p = sub.add_parser("disable-local-accounts", help="Disable local admin accounts on a spoke")
    _add_target(p)
    p.set_defaults(func=cmd_disable_local_accounts)

    p = sub.add_parser("terraform-deploy", help="Resolve the spoke from Terraform and deploy")
    p.add_argument("--terraform-dir", help="Terraform root (TERRAFORM_DIR)")
    p.set_defaults(func=cmd_terraform_deploy)

    p = sub.add_parser("pipeline", help="Run identity, credentials, deploy and verify in order")
    p.add_argument("--steps", nargs="*", help="Specific steps to run")
    p.set_defaults(func=cmd_pipeline)

    return parser


def config_from_args(args) -> Config:
    cfg = Config(dry_run=args.dry_run, assume_yes=args.yes)
    overrides = {
        "kubeconfig": args.kubeconfig,
        "auth_mode": args.global_auth_mode,
        "spoke_cluster_name": getattr(args, "cluster_name", None) if args.command != "add-spoke-cluster" else None,
        "spoke_rg": getattr(args, "resource_group", None) if args.command != "add-spoke-cluster" else None,
        "repo_url": getattr(args, "repo_url", None),
        "target_revision": getattr(args, "revision", None),
        "terraform_dir": getattr(args, "terraform_dir", None),
    }
    for name, value in overrides.items():
        if value:
            setattr(cfg, name, value)
    return cfg


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(structured=args.log_format == "json", verbose=args.verbose)

    try:
        cfg = config_from_args(args)
        return args.func(cfg, args)
    except KeyboardInterrupt:
        log.info("")
        log.info("✗ Interrupted")
        return 130
    except HubSpokeError as exc:
        log.error("✗ %s", exc)
        return 1
    except Exception as exc:
        log.error("✗ %s failed: %s", args.command, exc, exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
