"""Decision ladder: command + context + policy -> Verdict.

Pure and total. Tiers are evaluated in order and the first one that
fires wins:

1. empty command
2. hard blocks (block list, catastrophic rm, dirty git reset --hard,
   unguarded git clean -fdx)
3. allow list
4. risk-signal accumulation -> CONFIRM, or ALLOW when nothing fires
"""

import enum
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from clash.config import Policy
from clash.context import ContextSnapshot, is_inside_repo, resolve_path
from clash.preview import HintKind, PreviewHint

logger = logging.getLogger(__name__)


class Decision(str, enum.Enum):
    ALLOW   = "ALLOW"
    CONFIRM = "CONFIRM"
    BLOCK   = "BLOCK"


@dataclass(frozen=True)
class Verdict:
    decision: Decision
    hard: bool = False
    reasons: tuple[str, ...] = ()
    signals: tuple[str, ...] = ()
    preview_hint: PreviewHint | None = None
    safer_alternative: str = ""


# -- Signal names (stable: they are recorded in the audit ledger) -------------

SIGNAL_MUTATING      = "mutating command"
SIGNAL_PROTECTED     = "touches protected path"
SIGNAL_FORCE         = "force flag present"
SIGNAL_OUTSIDE_REPO  = "outside repo root"
SIGNAL_NETWORK       = "network egress command"
SIGNAL_PACKAGE       = "package manager install/upgrade"
SIGNAL_FIND_DELETE   = "find -delete"

_MUTATING_COMMANDS = {"rm", "rmdir", "mv", "chmod", "chown", "truncate", "git"}
_FORCE_FLAGS = {"-f", "--force", "--hard", "-rf", "-fr"}
_RECURSIVE_RM_FLAGS = {"-r", "-R", "-rf", "-fr", "-Rf", "-fR", "--recursive"}

_SAFER_BY_COMMAND = {
    "rm": "add --dry-run or target fewer files",
    "git": "run with --dry-run or limit path",
    "find": "run find without -delete first",
    "npm": "pin versions and review diff before install",
    "pnpm": "pin versions and review diff before install",
    "yarn": "pin versions and review diff before install",
    "pip": "pin versions and review diff before install",
    "pip3": "pin versions and review diff before install",
}


def evaluate(command: list[str] | tuple[str, ...], ctx: ContextSnapshot, policy: Policy) -> Verdict:
    """Classify *command*. Never raises."""
    args = list(command)
    if not args:
        return Verdict(Decision.BLOCK, hard=True, reasons=("no command provided",))

    cmd = args[0].lower()
    targets = extract_targets(args)

    # 1) Deterministic hard blocks
    if _in_list_prefix(cmd, policy.block_commands):
        return _hard_block("command is in hard block list")
    if _is_catastrophic_rm(cmd, args, targets, ctx):
        return _hard_block("catastrophic rm target", "narrow path or remove -rf")
    if _is_unsafe_git_reset(args, ctx):
        return _hard_block("git reset --hard with dirty tree", "commit or stash first")
    if _is_unsafe_git_clean(args):
        return _hard_block("git clean -fdx without dry-run", "git clean -ndx")

    # 2) Deterministic allow list
    if _in_allow_list(args, policy.allow_commands):
        logger.debug("allow list matched %r", args)
        return Verdict(Decision.ALLOW, reasons=("allowlisted read-only command",))

    # 3) Risk signals leading to confirm
    signals: list[str] = []
    hint: PreviewHint | None = None

    if cmd in _MUTATING_COMMANDS:
        signals.append(SIGNAL_MUTATING)
    if _touches_protected(targets, ctx, policy.protected_paths):
        signals.append(SIGNAL_PROTECTED)
    if any(a in _FORCE_FLAGS for a in args):
        signals.append(SIGNAL_FORCE)
    if not policy.options.allow_outside_repo and _is_outside_repo(targets, ctx):
        signals.append(SIGNAL_OUTSIDE_REPO)
    if _in_list_exact(cmd, policy.network_egress):
        signals.append(SIGNAL_NETWORK)
    if _in_list_exact(cmd, policy.package_managers):
        signals.append(SIGNAL_PACKAGE)
    if _is_find_delete(cmd, args):
        signals.append(SIGNAL_FIND_DELETE)
        hint = PreviewHint(HintKind.FIND_DELETE, args=tuple(args))
    if cmd == "rm":
        hint = PreviewHint(HintKind.RM, args=tuple(args), targets=tuple(targets))
    if _is_git_clean(args):
        hint = PreviewHint(HintKind.GIT_CLEAN, args=tuple(args))

    if not signals:
        return Verdict(Decision.ALLOW, reasons=("no risk signals",))

    logger.debug("confirm %r signals=%s", args, signals)
    return Verdict(
        Decision.CONFIRM,
        reasons=("risk signals present",),
        signals=tuple(signals),
        preview_hint=hint,
        safer_alternative=_suggest_alternative(cmd, hint),
    )


def extract_targets(args: list[str]) -> list[str]:
    """Positional arguments after the command name; everything after `--` verbatim."""
    targets: list[str] = []
    for i, arg in enumerate(args[1:], start=1):
        if arg == "--":
            targets.extend(args[i + 1:])
            break
        if arg.startswith("-"):
            continue
        targets.append(arg)
    return targets


def _hard_block(reason: str, safer: str = "") -> Verdict:
    logger.debug("hard block: %s", reason)
    return Verdict(Decision.BLOCK, hard=True, reasons=(reason,), safer_alternative=safer)


def _resolved(targets: list[str], ctx: ContextSnapshot):
    """Yield resolvable targets. Unresolvable ones are skipped, not flagged."""
    for t in targets:
        try:
            yield resolve_path(ctx.cwd, t)
        except (OSError, RuntimeError):
            continue


def _in_list_prefix(cmd: str, entries: list[str]) -> bool:
    return any(e and cmd.startswith(e.lower()) for e in entries)


def _in_list_exact(cmd: str, entries: list[str]) -> bool:
    return any(cmd == e.lower() for e in entries)


def _in_allow_list(args: list[str], allow: list[str]) -> bool:
    joined = " ".join(args).lower()
    for entry in allow:
        entry = entry.lower()
        if joined == entry or joined.startswith(entry + " "):
            return True
    return False


def _is_catastrophic_rm(cmd: str, args: list[str], targets: list[str], ctx: ContextSnapshot) -> bool:
    if cmd != "rm":
        return False
    if not any(a in _RECURSIVE_RM_FLAGS for a in args[1:]):
        return False
    home = str(Path.home().resolve())
    for resolved in _resolved(targets, ctx):
        if resolved == "/" or resolved == home:
            return True
        if ctx.in_repo and not is_inside_repo(ctx.repo_root, resolved):
            return True
    return False


def _is_unsafe_git_reset(args: list[str], ctx: ContextSnapshot) -> bool:
    return (
        len(args) >= 3
        and args[0] == "git" and args[1] == "reset"
        and "--hard" in args[2:]
        and ctx.git.dirty
    )


def _is_git_clean(args: list[str]) -> bool:
    return len(args) >= 2 and args[0] == "git" and args[1] == "clean"


def _git_clean_flags(args: list[str]) -> set[str]:
    """Short-flag letters implied by git clean arguments, long forms folded in."""
    letters: set[str] = set()
    long_forms = {"--force": "f", "--dry-run": "n"}
    for a in args[2:]:
        if a in long_forms:
            letters.add(long_forms[a])
        elif a.startswith("-") and not a.startswith("--"):
            letters.update(a[1:])
    return letters


def _is_unsafe_git_clean(args: list[str]) -> bool:
    if not _is_git_clean(args):
        return False
    flags = _git_clean_flags(args)
    has_target = any(not a.startswith("-") for a in args[2:])
    return {"f", "d", "x"} <= flags and "n" not in flags and not has_target


def _is_find_delete(cmd: str, args: list[str]) -> bool:
    return cmd == "find" and "-delete" in args[1:]


def _expand_protected(pattern: str) -> str:
    """Expand a leading ~ or $VAR in a protected-path pattern."""
    if pattern.startswith("~"):
        return str(Path(pattern).expanduser())
    if pattern.startswith("$"):
        return os.path.expandvars(pattern)
    return pattern


def _touches_protected(targets: list[str], ctx: ContextSnapshot, protected: list[str]) -> bool:
    patterns = [_expand_protected(p) for p in protected if p]
    for resolved in _resolved(targets, ctx):
        if any(resolved.startswith(p) for p in patterns):
            return True
    return False


def _is_outside_repo(targets: list[str], ctx: ContextSnapshot) -> bool:
    if not ctx.in_repo:
        return len(targets) > 0
    return any(not is_inside_repo(ctx.repo_root, r) for r in _resolved(targets, ctx))


def _suggest_alternative(cmd: str, hint: PreviewHint | None) -> str:
    if cmd in _SAFER_BY_COMMAND:
        return _SAFER_BY_COMMAND[cmd]
    if hint is not None and hint.kind == HintKind.GIT_CLEAN:
        return "use git clean -ndx first"
    return ""
