"""Terraform-driven deployment.

Runs the Terraform root under ``TERRAFORM_DIR`` to look up the spoke
cluster, turns its outputs into configuration, configures kubectl for the
spoke and hands over to the quick deploy. With --dry-run nothing is run:
the spoke is read from terraform.tfvars and the commands are only logged.

Outputs read:
    environment_variables   — JSON map of SPOKE_RG, SPOKE_CLUSTER_NAME,
                              SPOKE_FQDN, HUB_IDENTITY_CLIENT_ID
    hub_identity_client_id  — fallback when the map is unavailable
    spoke_cluster_fqdn      — fallback when the map is unavailable
    kubectl_config_command  — credentials command for the spoke
"""

from __future__ import annotations

import dataclasses
import json
import shlex
from pathlib import Path
from typing import Dict, List, Optional

import hcl2

from .common import CommandError, ConfigError, PreconditionError, ensure_command, log, run_cmd
from .config import Config
from .credentials import check_connectivity
from .deploy import DeploymentResult, quick_deploy
from .kube import load_api_client

OUTPUT_FIELDS = {
    "SPOKE_RG": "spoke_rg",
    "SPOKE_CLUSTER_NAME": "spoke_cluster_name",
    "SPOKE_FQDN": "spoke_fqdn",
    "HUB_IDENTITY_CLIENT_ID": "hub_identity_client_id",
}

TFVARS_FIELDS = {
    "spoke_resource_group_name": "spoke_rg",
    "spoke_cluster_name": "spoke_cluster_name",
}


class Terraform:
    """``terraform`` CLI bound to one working directory."""

    def __init__(self, workdir: str, timeout: int = 1800):
        self.workdir = Path(workdir)
        self.timeout = timeout

    def run(self, *args: str, check: bool = True):
        return run_cmd(
            ["terraform", f"-chdir={self.workdir}", *args],
            check=check,
            timeout=self.timeout,
        )

    def output_json(self, name: str) -> Optional[dict]:
        result = self.run("output", "-json", name, check=False)
        if result.returncode != 0 or not result.stdout.strip():
            return None
        try:
            value = json.loads(result.stdout)
        except json.JSONDecodeError:
            return None
        return value if isinstance(value, dict) else None

    def output_raw(self, name: str) -> str:
        result = self.run("output", "-raw", name, check=False)
        return result.stdout.strip() if result.returncode == 0 else ""


def _unquote(value) -> str:
    if isinstance(value, list):
        value = value[0] if value else ""
    return str(value).strip().strip('"')


def read_tfvars(path: Path) -> Dict[str, str]:
    with path.open("r", encoding="utf-8") as handle:
        parsed = hcl2.load(handle)
    return {key: _unquote(value) for key, value in parsed.items()}


def resolve_outputs(tf: Terraform) -> Dict[str, str]:
    """Config field values from Terraform outputs, with the tfvars fallback."""
    env_vars = tf.output_json("environment_variables")
    if env_vars:
        return {
            field: str(env_vars.get(output) or "")
            for output, field in OUTPUT_FIELDS.items()
        }

    log.warning("  ⚠ JSON output parsing failed, using individual outputs...")
    tfvars = read_tfvars(tf.workdir / "terraform.tfvars")
    values = {field: tfvars.get(var, "") for var, field in TFVARS_FIELDS.items()}
    values["hub_identity_client_id"] = tf.output_raw("hub_identity_client_id")
    values["spoke_fqdn"] = tf.output_raw("spoke_cluster_fqdn")
    return values


def default_kubectl_config_command(cfg: Config) -> List[str]:
    return [
        "az", "aks", "get-credentials",
        "--resource-group", cfg.spoke_rg,
        "--name", cfg.spoke_cluster_name,
        "--file", cfg.kubeconfig,
        "--use-azuread",
        "--overwrite-existing",
    ]


def kubectl_config_command(tf: Terraform, cfg: Config) -> List[str]:
    command = tf.output_raw("kubectl_config_command")
    if command:
        return shlex.split(command)
    return default_kubectl_config_command(cfg)


def _require_spoke(resolved: Config) -> None:
    try:
        resolved.require("spoke_rg", "spoke_cluster_name")
    except ConfigError:
        log.error("  ✗ Required variables not set:")
        log.error("    SPOKE_RG: '%s'", resolved.spoke_rg)
        log.error("    SPOKE_CLUSTER_NAME: '%s'", resolved.spoke_cluster_name)
        raise

    log.info("  ✓ Cluster information extracted:")
    log.info("    Resource Group: %s", resolved.spoke_rg)
    log.info("    Cluster Name:   %s", resolved.spoke_cluster_name)
    log.info("    FQDN:           %s", resolved.spoke_fqdn or "N/A")
    log.info("    Hub Identity:   %s", resolved.hub_identity_client_id or "N/A")


def _dry_run(cfg: Config, tf: Terraform) -> DeploymentResult:
    """Resolve the spoke from terraform.tfvars alone; nothing is run."""
    log.info("=== DRY RUN — no changes will be made ===")
    if not (tf.workdir / ".terraform").is_dir():
        log.info("  [DRY-RUN] Would run: terraform -chdir=%s init -input=false", tf.workdir)
    log.info("  [DRY-RUN] Would run: terraform -chdir=%s validate", tf.workdir)
    log.info("  [DRY-RUN] Would run: terraform -chdir=%s apply -auto-approve -input=false", tf.workdir)

    tfvars = read_tfvars(tf.workdir / "terraform.tfvars")
    values = {field: tfvars.get(var, "") for var, field in TFVARS_FIELDS.items()}
    resolved = dataclasses.replace(cfg, **{k: v for k, v in values.items() if v})
    _require_spoke(resolved)

    log.info(
        "  [DRY-RUN] Would run: %s",
        shlex.join(default_kubectl_config_command(resolved)),
    )
    return quick_deploy(resolved)


def terraform_deploy(cfg: Config) -> DeploymentResult:
    log.info("=== Starting Terraform-integrated deployment ===")
    ensure_command("terraform")
    ensure_command("az")

    tf = Terraform(cfg.terraform_dir)
    if not (tf.workdir / "terraform.tfvars").is_file():
        raise PreconditionError(
            f"terraform.tfvars not found in {tf.workdir}. "
            f"Create it from terraform.tfvars.example"
        )

    if cfg.dry_run:
        return _dry_run(cfg, tf)

    if not (tf.workdir / ".terraform").is_dir():
        log.info("  → Initializing Terraform...")
        tf.run("init", "-input=false")

    log.info("  → Validating Terraform configuration...")
    tf.run("validate")

    log.info("  → Fetching spoke cluster information...")
    tf.run("apply", "-auto-approve", "-input=false")

    log.info("  → Extracting cluster information...")
    resolved = dataclasses.replace(cfg, **resolve_outputs(tf))
    _require_spoke(resolved)

    log.info("  → Configuring kubectl for spoke cluster...")
    try:
        # KUBECONFIG and AZURE_SUBSCRIPTION_ID reach az/kubelogin through the environment
        run_cmd(kubectl_config_command(tf, resolved), env=resolved.as_env())
    except CommandError:
        log.error("  ✗ kubectl configuration failed")
        raise
    log.info("  ✓ kubectl configured successfully")

    log.info("  → Verifying cluster connectivity...")
    check_connectivity(load_api_client(resolved.kubeconfig))

    log.info("  → Running deployment...")
    result = quick_deploy(resolved)
    log.info("✓ Terraform-integrated deployment completed!")
    log.info("  Verify with:  hub-spoke verify")
    log.info("  Clean up with: hub-spoke cleanup")
    return result
