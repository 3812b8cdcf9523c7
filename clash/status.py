"""Environment readiness checks (`clash doctor`) and table rendering."""

import shutil
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version as dist_version
from pathlib import Path

from rich.table import Table

from clash.audit import ledger_path
from clash.config import load_policy
from clash.context import ContextSnapshot
from clash.errors import PolicyError


def get_version() -> str:
    try:
        return dist_version("clash")
    except PackageNotFoundError:
        return "0.0.0+unknown"


@dataclass
class DoctorInfo:
    version: str
    cwd: str
    repo_root: str | None
    changed: int
    untracked: int
    policy: str            # path of the override document, or "embedded default"
    policy_status: str     # "ok" | error message
    ledger: str
    git: str               # "found" | "not found"
    find: str


def get_doctor_info(ctx: ContextSnapshot, policy_path: Path | None) -> DoctorInfo:
    """Gather readiness facts into a plain dataclass (no display side-effects)."""
    try:
        load_policy(policy_path)
        policy_status = "ok"
    except PolicyError as e:
        policy_status = str(e)

    return DoctorInfo(
        version=get_version(),
        cwd=ctx.cwd,
        repo_root=ctx.repo_root,
        changed=ctx.git.changed,
        untracked=ctx.git.untracked,
        policy=str(policy_path) if policy_path else "embedded default",
        policy_status=policy_status,
        ledger=str(ledger_path(ctx.repo_root)),
        git="found" if shutil.which("git") else "not found",
        find="found" if shutil.which("find") else "not found",
    )


def render_doctor_table(info: DoctorInfo) -> Table:
    """Build a Rich Table from DoctorInfo using semantic styles."""
    table = Table(title=f"CLASH doctor (v{info.version})")
    table.add_column("Check", style="accent")
    table.add_column("Status", style="info")
    table.add_column("Details", style="success")

    table.add_row("cwd", "ok", info.cwd)
    if info.repo_root:
        table.add_row("repo root", "ok", info.repo_root)
        table.add_row("git status", "clean" if not (info.changed or info.untracked) else "dirty",
                      f"{info.changed} changed, {info.untracked} untracked")
    else:
        table.add_row("repo root", "none", "using cwd")
    table.add_row("policy", info.policy_status, info.policy)
    table.add_row("audit log", "ok", info.ledger)
    table.add_row("git binary", info.git, "needed for git clean previews")
    table.add_row("find binary", info.find, "needed for find -delete previews")
    return table
