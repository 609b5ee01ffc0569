"""
Pipeline Orchestrator

Runs the four hub-spoke stages in order with status reporting:

    identity     grant the hub identity access to the spoke
    credentials  acquire spoke credentials and check connectivity
    deploy       apply the demo workload and wait for it
    verify       collect the verification report

Each stage runs inside a StepRunner; the status file (STATUS_FILE) is
rewritten after every stage, and the run stops at the first failure.

Usage:
    hub-spoke pipeline
    hub-spoke pipeline --steps credentials deploy
    hub-spoke --dry-run pipeline
"""

from __future__ import annotations

import time
from typing import Callable, Dict, List, Optional

from kubernetes import client as k8s_client

from .arm import AzureContext
from .common import ConfigError, StepRunner, StepStatus, log_error, log_info, write_status
from .config import Config
from .credentials import AuthMode
from .deploy import apply_demo_app, connect_spoke, demo_manifests, print_summary, resolve_hub_client_id
from .rbac import default_spokes, grant_hub_access
from .verify import collect_report, print_report_summary

# =============================================================================
# Step Definitions
# =============================================================================

# Steps share one state dict: the Azure context, API client and results.
StepFn = Callable[[Config, dict], None]


def _azure(cfg: Config, state: dict) -> AzureContext:
    if "azure" not in state:
        state["azure"] = AzureContext.from_config(cfg)
    return state["azure"]


def step_identity(cfg: Config, state: dict) -> None:
    assignments = grant_hub_access(cfg, default_spokes(cfg), azure=_azure(cfg, state))
    state["details"] = {"assignments": [a.name for a in assignments]}


def step_credentials(cfg: Config, state: dict) -> None:
    state["api_client"] = connect_spoke(cfg, AuthMode.parse(cfg.auth_mode))
    state["details"] = {"kubeconfig": cfg.kubeconfig}


def _api_client(state: dict) -> k8s_client.ApiClient:
    if "api_client" not in state:
        raise ConfigError("The credentials step must run before this step")
    return state["api_client"]


def step_deploy(cfg: Config, state: dict) -> None:
    api_client = _api_client(state)
    hub_client_id = resolve_hub_client_id(cfg, _azure(cfg, state))
    docs = demo_manifests(cfg, hub_client_id, "pipeline", "hub-spoke-pipeline")
    result = apply_demo_app(cfg, api_client, docs)
    print_summary(cfg, result)
    state["details"] = {"external_ip": result.external_ip, "reachable": result.reachable}


def step_verify(cfg: Config, state: dict) -> None:
    report = collect_report(_api_client(state))
    print_report_summary(report)
    state["details"] = {
        "ready_replicas": report.ready_replicas,
        "desired_replicas": report.desired_replicas,
        "healthy": report.healthy,
    }


PIPELINE_STEPS: Dict[str, StepFn] = {
    "identity": step_identity,
    "credentials": step_credentials,
    "deploy": step_deploy,
    "verify": step_verify,
}


# =============================================================================
# Orchestrator
# =============================================================================

def run_steps(
    cfg: Config,
    step_names: Optional[List[str]] = None,
    *,
    dry_run: bool = False,
    state: Optional[dict] = None,
) -> bool:
    """
    Execute steps sequentially. Returns True if all succeeded.

    Args:
        cfg: Resolved configuration shared by every step.
        step_names: Names from PIPELINE_STEPS (default: all, in order).
        dry_run: Print step list without executing.
        state: Pre-seeded shared state (API client, Azure context).
    """
    step_names = list(step_names or PIPELINE_STEPS)
    unknown = [n for n in step_names if n not in PIPELINE_STEPS]
    if unknown:
        raise ConfigError(
            f"Unknown step(s): {', '.join(unknown)}. Choose from: {', '.join(PIPELINE_STEPS)}"
        )

    start_time = time.monotonic()
    statuses: List[StepStatus] = []
    state = state if state is not None else {}
    all_ok = True

    log_info(f"Pipeline starting with {len(step_names)} steps")
    log_info(f"Steps: {', '.join(step_names)}")

    if dry_run:
        log_info("DRY RUN — printing step list without execution")
        for i, name in enumerate(step_names, 1):
            log_info(f"  {i}. {name}")
        return True

    for i, name in enumerate(step_names, 1):
        log_info(f"Step {i}/{len(step_names)}: {name}")
        runner = StepRunner(name)
        try:
            with runner as step:
                state["details"] = {}
                PIPELINE_STEPS[name](cfg, state)
                step.details.update(state["details"])
        except Exception:
            all_ok = False
        finally:
            statuses.append(runner.status)
            write_status(statuses, cfg.status_file)

        if not all_ok:
            log_error(
                f"Aborting pipeline — step '{name}' failed. "
                f"Completed {i-1}/{len(step_names)} steps successfully."
            )
            break

    total_duration = round(time.monotonic() - start_time, 2)
    log_info(
        f"Pipeline finished: {'ALL PASSED' if all_ok else 'FAILED'} ({total_duration}s)",
        duration_seconds=total_duration,
    )
    log_info(f"Status written to: {cfg.status_file}")
    return all_ok
