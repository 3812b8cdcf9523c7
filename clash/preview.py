"""Dry-run previews for destructive commands.

Each simulator forecasts how many items a command would touch and
samples some of them, without deleting or modifying anything. Failures
are returned inside the PreviewResult and run_preview never raises.
"""

import enum
import logging
import os
import subprocess
from dataclasses import dataclass, field

from clash._shell_env import restricted_env
from clash.context import ContextSnapshot, resolve_path

logger = logging.getLogger(__name__)


class HintKind(str, enum.Enum):
    RM          = "rm"
    FIND_DELETE = "find-delete"
    GIT_CLEAN   = "git-clean"


@dataclass(frozen=True)
class PreviewHint:
    """Which simulator to run, with the full argv and extracted targets."""

    kind: HintKind
    args: tuple[str, ...]
    targets: tuple[str, ...] = ()


@dataclass
class PreviewResult:
    count: int = 0
    sample: list[str] = field(default_factory=list)
    note: str = ""
    error: str | None = None


def run_preview(hint: PreviewHint, ctx: ContextSnapshot, sample_limit: int) -> PreviewResult:
    """Dispatch to the simulator for *hint*. Errors become PreviewResult.error."""
    simulators = {
        HintKind.RM: _preview_rm,
        HintKind.FIND_DELETE: _preview_find_delete,
        HintKind.GIT_CLEAN: _preview_git_clean,
    }
    simulator = simulators.get(hint.kind)
    if simulator is None:
        return PreviewResult(error="no preview available")
    try:
        return simulator(hint, ctx, max(sample_limit, 0))
    except Exception as e:
        logger.warning("preview %s failed: %s", hint.kind.value, e)
        return PreviewResult(error=str(e) or type(e).__name__)


def _preview_rm(hint: PreviewHint, ctx: ContextSnapshot, sample_limit: int) -> PreviewResult:
    sample: list[str] = []
    count = 0
    for target in hint.targets:
        try:
            resolved = resolve_path(ctx.cwd, target)
        except OSError:
            continue
        if os.path.lexists(resolved):
            count += 1
            if len(sample) < sample_limit:
                sample.append(resolved)
    return PreviewResult(count=count, sample=sample, note="targets resolved from provided arguments")


# find actions other than -delete that write, execute or prompt
_FIND_SIDE_EFFECT_ACTIONS = {
    "-exec", "-execdir", "-ok", "-okdir",
    "-fprint", "-fprint0", "-fprintf", "-fls",
}


def _preview_find_delete(hint: PreviewHint, ctx: ContextSnapshot, sample_limit: int) -> PreviewResult:
    if any(a in _FIND_SIDE_EFFECT_ACTIONS for a in hint.args[1:]):
        return PreviewResult(error="find expression has side-effecting actions; preview skipped")
    args = [a for a in hint.args if a != "-delete"]
    if not args:
        return PreviewResult(error="no args for find")
    lines = _run_readonly(["find", *args[1:]], cwd=ctx.cwd)
    return PreviewResult(
        count=len(lines), sample=lines[:sample_limit], note="find output without -delete",
    )


def _preview_git_clean(hint: PreviewHint, ctx: ContextSnapshot, sample_limit: int) -> PreviewResult:
    # -n forces the dry run no matter what the caller passed
    args = ["git", "clean", "-nd", *_without_force_or_dry_run(hint.args[2:])]
    lines = _run_readonly(args, cwd=ctx.cwd)
    return PreviewResult(count=len(lines), sample=lines[:sample_limit], note="git clean -nd preview")


def _without_force_or_dry_run(args) -> list[str]:
    """Drop -f/--force/-n/--dry-run, including f and n inside combined short flags."""
    kept: list[str] = []
    for a in args:
        if a in ("--force", "--dry-run"):
            continue
        if a.startswith("-") and not a.startswith("--") and len(a) > 1:
            letters = a[1:].replace("f", "").replace("n", "")
            if letters:
                kept.append("-" + letters)
            continue
        kept.append(a)
    return kept


def _run_readonly(argv: list[str], cwd: str) -> list[str]:
    """Run a read-only helper and return its non-blank output lines.

    Raises RuntimeError on spawn failure or non-zero exit.
    """
    logger.debug("preview exec %s in %s", argv, cwd)
    try:
        proc = subprocess.run(
            argv, cwd=cwd, env=restricted_env(),
            stdin=subprocess.DEVNULL, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
        )
    except OSError as e:
        raise RuntimeError(f"cannot run {argv[0]}: {e}")
    if proc.returncode != 0:
        detail = proc.stderr.decode("utf-8", errors="replace").strip()
        raise RuntimeError(f"{argv[0]} exited {proc.returncode}: {detail}" if detail
                           else f"{argv[0]} exited {proc.returncode}")
    output = proc.stdout.decode("utf-8", errors="replace")
    return [line for line in output.splitlines() if line.strip()]
