import logging
import sys
from dataclasses import dataclass
from pathlib import Path

import typer

from clash.audit import AuditEntry, AuditLedger
from clash.config import POLICY_FILENAME, default_policy_yaml, find_policy_file, load_policy, policy_to_yaml, settings
from clash.context import detect_context
from clash.display import TerminalFrontend, console, display_error, display_info, err_console, set_theme
from clash.errors import ClashError
from clash.runner import RunOptions, run_gated
from clash.status import get_doctor_info, get_version, render_doctor_table

app = typer.Typer(
    help="CLASH - Command Line Agent Safety Harness. A policy-aware chokepoint for agent-issued commands.",
    context_settings={"help_option_names": ["--help", "-h"]},
    no_args_is_help=True,
)
policy_app = typer.Typer(help="Inspect the effective policy.", no_args_is_help=True)
decision_app = typer.Typer(help="Inspect recorded decisions.", no_args_is_help=True)
app.add_typer(policy_app, name="policy")
app.add_typer(decision_app, name="decision")

# Agent CLIs that get a `clash <name> -- [args]` wrapper
AGENT_WRAPPERS = ("codex", "gemini", "claude", "copilot")

_PASSTHROUGH = {"allow_extra_args": True, "ignore_unknown_options": True}


@dataclass
class GlobalOptions:
    policy_path: str | None = None
    yes: bool = False
    break_glass: bool = False
    break_glass_reason: str = ""


def _setup_logging(level: str) -> None:
    logging.basicConfig(level=level, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s", force=True)


@app.callback()
def main(
    ctx: typer.Context,
    policy: str = typer.Option(None, "--policy", help="Path to clash.yaml (defaults to repo root if present)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Auto-approve confirmation prompts"),
    break_glass: bool = typer.Option(False, "--break-glass", help="Enable the audited override flow"),
    break_glass_reason: str = typer.Option("", "--break-glass-reason", help="Reason to record when using break-glass"),
    theme: str = typer.Option(None, "--theme", "-t", help="Color theme: dark or light"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging on stderr"),
):
    """Global options apply to every subcommand."""
    if theme:
        set_theme(theme)
    _setup_logging("DEBUG" if verbose else settings.log_level)
    if settings.trace:
        from clash.telemetry import setup_tracing
        setup_tracing(get_version())
    ctx.obj = GlobalOptions(
        policy_path=policy, yes=yes, break_glass=break_glass, break_glass_reason=break_glass_reason,
    )


def _gate(args: list[str], opts: GlobalOptions) -> int:
    """Run *args* through the gate and return the exit code for this process."""
    if not args:
        display_error("provide a command to run", hint="Usage: clash run -- <command> [args...]")
        return 1
    try:
        context = detect_context()
        policy = load_policy(find_policy_file(opts.policy_path, context.base_dir))
        ledger = AuditLedger.for_context(context)
        result = run_gated(
            args,
            ctx=context,
            policy=policy,
            ledger=ledger,
            frontend=TerminalFrontend(),
            options=RunOptions(
                auto_yes=opts.yes,
                break_glass=opts.break_glass,
                break_glass_reason=opts.break_glass_reason,
            ),
        )
    except ClashError as e:
        display_error(str(e), hint=e.hint)
        return 1
    err_console.print(f"[hint]audit id: {result.entry.id}[/hint]")
    return result.exit_code


def _merged_options(ctx: typer.Context, yes: bool, break_glass: bool, break_glass_reason: str) -> GlobalOptions:
    """Flags given after the subcommand count the same as global ones."""
    base = ctx.obj or GlobalOptions()
    return GlobalOptions(
        policy_path=base.policy_path,
        yes=base.yes or yes,
        break_glass=base.break_glass or break_glass,
        break_glass_reason=break_glass_reason or base.break_glass_reason,
    )


@app.command(context_settings=_PASSTHROUGH)
def run(
    ctx: typer.Context,
    command: list[str] = typer.Argument(None, help="Command and arguments, after `--`"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Auto-approve confirmation prompts"),
    break_glass: bool = typer.Option(False, "--break-glass", help="Enable the audited override flow"),
    break_glass_reason: str = typer.Option("", "--break-glass-reason", help="Reason to record"),
):
    """Execute a command through CLASH: clash run -- <command> [args...]"""
    args = list(command or []) + list(ctx.args)
    raise typer.Exit(_gate(args, _merged_options(ctx, yes, break_glass, break_glass_reason)))


def _make_wrapper(name: str):
    def wrapper(
        ctx: typer.Context,
        args: list[str] = typer.Argument(None, help=f"Arguments passed to {name}"),
    ):
        wrapped = [name, *(args or []), *ctx.args]
        raise typer.Exit(_gate(wrapped, ctx.obj or GlobalOptions()))

    wrapper.__doc__ = f"Wrap the {name.title()} CLI via CLASH: clash {name} -- [args...]"
    return wrapper


for _name in AGENT_WRAPPERS:
    app.command(name=_name, context_settings=_PASSTHROUGH)(_make_wrapper(_name))


@app.command()
def init():
    """Create a default clash.yaml in the repo root (or cwd outside a repo)."""
    try:
        context = detect_context()
    except ClashError as e:
        display_error(str(e), hint=e.hint)
        raise typer.Exit(1)
    target = Path(context.base_dir) / POLICY_FILENAME
    if target.exists():
        display_error(f"{POLICY_FILENAME} already exists at {target}")
        raise typer.Exit(1)
    target.write_text(default_policy_yaml())
    console.print(f"[success]Created {target}[/success]")


@policy_app.command("explain")
def policy_explain(ctx: typer.Context):
    """Print the effective policy (defaults merged with any override)."""
    opts: GlobalOptions = ctx.obj or GlobalOptions()
    try:
        context = detect_context()
        path = find_policy_file(opts.policy_path, context.base_dir)
        policy = load_policy(path)
    except ClashError as e:
        display_error(str(e), hint=e.hint)
        raise typer.Exit(1)
    typer.echo(f"# source: {path or 'embedded default'}")
    typer.echo(policy_to_yaml(policy), nl=False)


def _render_entry(entry: AuditEntry) -> None:
    lines = [
        f"Decision: {entry.decision} (hard={str(entry.hard).lower()})",
        f"Command: {entry.command}",
    ]
    if entry.signals:
        lines.append(f"Signals: {', '.join(entry.signals)}")
    if entry.reasons:
        lines.append(f"Reasons: {', '.join(entry.reasons)}")
    if entry.preview is not None:
        preview = f"Preview: {entry.preview.count} items"
        if entry.preview.sample:
            preview += f" sample: {', '.join(entry.preview.sample)}"
        if entry.preview.err:
            preview += f" (error: {entry.preview.err})"
        lines.append(preview)
    outcome = entry.outcome.value if entry.outcome else "unknown"
    lines.append(f"Outcome: {outcome} exit={entry.exit_code}")
    if entry.approved_by:
        lines.append(f"Approved by: {entry.approved_by}")
    if entry.break_glass:
        lines.append(f"Break-glass reason: {entry.break_glass_reason or ''}")
    if entry.error:
        lines.append(f"Error: {entry.error}")
    for line in lines:
        console.print(line, markup=False, highlight=False)


@decision_app.command("explain")
def decision_explain(audit_id: str = typer.Argument(..., help="Audit id printed after a run")):
    """Explain a prior decision from the audit log."""
    try:
        ledger = AuditLedger.for_context(detect_context())
        entry = ledger.find(audit_id)
    except ClashError as e:
        display_error(str(e), hint=e.hint)
        raise typer.Exit(1)
    _render_entry(entry)


@app.command()
def doctor(ctx: typer.Context):
    """Validate environment readiness."""
    opts: GlobalOptions = ctx.obj or GlobalOptions()
    try:
        context = detect_context()
    except ClashError as e:
        display_error(str(e), hint=e.hint)
        raise typer.Exit(1)
    info = get_doctor_info(context, find_policy_file(opts.policy_path, context.base_dir))
    console.print(render_doctor_table(info))
    if info.policy_status != "ok":
        display_info("Fix the policy document before running commands through CLASH.")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
