"""
Common utilities for the hub-spoke commands.

Provides logging setup, subprocess execution, the error hierarchy,
interactive confirmation, and step status reporting used by every
command module.

Usage from a command module:
    from .common import StepRunner, run_cmd, log, log_info
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import sys
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union


log = logging.getLogger("hub-spoke")


# =============================================================================
# Errors
# =============================================================================

class HubSpokeError(Exception):
    """Base class for failures reported to the operator with exit code 1."""


class ConfigError(HubSpokeError):
    """Required input is missing or invalid."""


class PreconditionError(HubSpokeError):
    """The environment is not in the state a command needs."""


class CommandError(HubSpokeError):
    """An external tool exited non-zero."""

    def __init__(self, command: str, returncode: int, stderr: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        message = f"Command failed (exit {returncode}): {command}"
        if stderr:
            message += f"\n{stderr.strip()[:500]}"
        super().__init__(message)


# =============================================================================
# Structured Logging
# =============================================================================

class StructuredFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, message and extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            **getattr(record, "fields", {}),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(structured: bool = False, verbose: bool = False) -> None:
    """Attach a single stdout handler to the hub-spoke logger."""
    handler = logging.StreamHandler(sys.stdout)
    if structured:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(message)s"))

    log.handlers[:] = [handler]
    log.setLevel(logging.DEBUG if verbose else logging.INFO)
    log.propagate = False


def log_info(message: str, **kwargs) -> None:
    log.info(message, extra={"fields": kwargs})


def log_error(message: str, **kwargs) -> None:
    log.error(message, extra={"fields": kwargs})


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# =============================================================================
# Command Execution
# =============================================================================

@dataclass
class CmdResult:
    """Result of a subprocess execution."""
    returncode: int
    stdout: str
    stderr: str
    command: str
    duration_seconds: float


def run_cmd(
    cmd: List[str],
    *,
    check: bool = True,
    timeout: int = 300,
    env: Optional[Dict[str, str]] = None,
    capture: bool = True,
) -> CmdResult:
    """
    Execute a command with structured logging and timing.

    Args:
        cmd: Command as list of args.
        check: Raise CommandError on non-zero exit code.
        timeout: Seconds before killing the process.
        env: Additional environment variables (merged with os.environ).
        capture: Capture stdout/stderr (False to stream live).

    Returns:
        CmdResult with exit code, output, and timing.
    """
    cmd_str = " ".join(cmd)
    log.debug("  $ %s", cmd_str)

    merged_env = {**os.environ, **(env or {})}
    start = time.monotonic()

    try:
        result = subprocess.run(
            cmd,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=merged_env,
        )
    except subprocess.TimeoutExpired as exc:
        log_error(f"Command timed out after {timeout}s", command=cmd_str)
        raise CommandError(cmd_str, -1, f"timed out after {timeout}s") from exc
    except FileNotFoundError as exc:
        raise PreconditionError(f"{cmd[0]} is not installed") from exc

    duration = round(time.monotonic() - start, 2)
    cmd_result = CmdResult(
        returncode=result.returncode,
        stdout=result.stdout if capture else "",
        stderr=result.stderr if capture else "",
        command=cmd_str,
        duration_seconds=duration,
    )

    if result.returncode != 0:
        log.debug("Command failed (exit %d) after %ss", result.returncode, duration)
        if check:
            raise CommandError(cmd_str, result.returncode, cmd_result.stderr)
    else:
        log.debug("Command succeeded in %ss", duration)

    return cmd_result


def ensure_command(name: str) -> None:
    """Fail early when a required CLI tool is not on PATH."""
    if shutil.which(name) is None:
        raise PreconditionError(f"{name} is not installed")


def confirm(prompt: str, *, assume_yes: bool = False) -> bool:
    """Ask a y/N question on the terminal. --yes answers for the operator."""
    if assume_yes:
        return True
    try:
        reply = input(f"{prompt} [y/N]: ")
    except EOFError:
        return False
    return reply.strip().lower() in ("y", "yes")


# =============================================================================
# Step Status Reporting
# =============================================================================

@dataclass
class StepStatus:
    """Status of a single pipeline step."""
    step_name: str
    status: str  # "running", "success", "failed"
    started_at: str = ""
    completed_at: str = ""
    duration_seconds: float = 0.0
    error: str = ""
    details: dict = field(default_factory=dict)


def write_status(statuses: List[StepStatus], status_file: Union[str, Path]) -> None:
    """Write step statuses to the status file (JSON)."""
    data = {
        "updated_at": datetime.now(timezone.utc).isoformat(),
        "steps": [asdict(s) for s in statuses],
    }
    Path(status_file).write_text(json.dumps(data, indent=2))


class StepRunner:
    """
    Context manager for running a pipeline step with timing and status reporting.

    Usage:
        with StepRunner("acquire-credentials") as step:
            # ... step logic ...
            step.details["kubeconfig"] = path

        # On success: step.status.status == "success"
        # On exception: step.status.status == "failed", error recorded
    """

    def __init__(self, step_name: str):
        self.step_name = step_name
        self._status = StepStatus(step_name=step_name, status="running")
        self._start_time = 0.0
        self.details: dict = {}

    def __enter__(self) -> "StepRunner":
        log_info(f"=== Starting step: {self.step_name} ===")
        self._status.started_at = datetime.now(timezone.utc).isoformat()
        self._start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.monotonic() - self._start_time
        self._status.duration_seconds = round(duration, 2)
        self._status.completed_at = datetime.now(timezone.utc).isoformat()
        self._status.details = self.details

        if exc_type is not None:
            self._status.status = "failed"
            self._status.error = str(exc_val)
            log_error(
                f"Step '{self.step_name}' FAILED in {duration:.1f}s",
                error=str(exc_val),
            )
            return False

        self._status.status = "success"
        log_info(f"Step '{self.step_name}' completed in {duration:.1f}s")
        return False

    @property
    def status(self) -> StepStatus:
        return self._status
