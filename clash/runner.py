"""Execution orchestrator: the gate's state machine.

Start -> Classified -> (Arbitrated) -> (Previewed)
      -> Decided{Blocked | Cancelled | Approved}
      -> (BreakGlassChecked) -> Executed | Failed -> Recorded

Every path through run_gated() writes exactly one audit entry. Policy,
ledger, arbiter, executor and frontend are passed in explicitly; nothing
here reads global state.
"""

import logging
import shlex
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from opentelemetry import trace

from clash.arbiter import ArbiterProtocol, apply_arbiter, build_arbiter
from clash.audit import AuditEntry, AuditLedger, PreviewRecord
from clash.classifier import Decision, Verdict, evaluate
from clash.config import Policy
from clash.context import ContextSnapshot
from clash.errors import Outcome
from clash.preview import PreviewResult, run_preview
from clash.shell_backend import ExecResult, ExecutorProtocol, ShellBackend

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("clash")

BREAK_GLASS_PHRASE = "break glass for clash"
APPROVED_BY_FLAG = "--yes"
APPROVED_BY_USER = "user"
EXIT_REFUSED = 1
EXIT_INTERRUPTED = 130  # 128 + SIGINT


# ---------------------------------------------------------------------------
# FrontendProtocol: display and operator interaction
# ---------------------------------------------------------------------------


@runtime_checkable
class FrontendProtocol(Protocol):
    """Display and interaction contract for the orchestrator.

    Implementations: TerminalFrontend (Rich), RecordingFrontend (tests).
    """

    def on_allow(self, verdict: Verdict) -> None:
        """One-line fast-path notice."""
        ...

    def on_block(self, verdict: Verdict) -> None:
        """Every reason plus any safer alternative."""
        ...

    def on_confirm(self, verdict: Verdict, preview: PreviewResult | None) -> None:
        """Every signal plus the preview summary or its error."""
        ...

    def on_status(self, message: str) -> None:
        """Progress and warning messages."""
        ...

    def confirm(self, prompt: str) -> bool:
        """True when the operator approves."""
        ...

    def require_phrase(self, prompt: str, phrase: str) -> bool:
        """True when the operator typed *phrase* exactly."""
        ...


@dataclass
class RunOptions:
    auto_yes: bool = False
    break_glass: bool = False
    break_glass_reason: str = ""


@dataclass
class RunResult:
    exit_code: int
    entry: AuditEntry

    @property
    def outcome(self) -> Outcome | None:
        return self.entry.outcome


def run_gated(
    args: list[str],
    *,
    ctx: ContextSnapshot,
    policy: Policy,
    ledger: AuditLedger,
    frontend: FrontendProtocol,
    executor: ExecutorProtocol | None = None,
    arbiter: ArbiterProtocol | None = None,
    options: RunOptions | None = None,
) -> RunResult:
    """Classify, decide, maybe execute, and record *args*.

    Returns the process exit code to use: the child's on executed/failed
    paths, 1 on blocked/cancelled. Raises LedgerError when the audit
    entry cannot be written.
    """
    options = options or RunOptions()
    executor = executor or ShellBackend()
    command = shlex.join(args)

    with tracer.start_as_current_span("clash.run") as run_span:
        run_span.set_attribute("clash.command", command)

        # -- Classified ---------------------------------------------------------
        with tracer.start_as_current_span("clash.classify") as span:
            verdict = evaluate(args, ctx, policy)
            span.set_attribute("clash.decision", verdict.decision.value)
            span.set_attribute("clash.hard", verdict.hard)
        logger.info("classified %r as %s (hard=%s)", command, verdict.decision.value, verdict.hard)

        # -- Arbitrated ---------------------------------------------------------
        if policy.arbiter.enabled and verdict.decision == Decision.CONFIRM:
            with tracer.start_as_current_span("clash.arbitrate") as span:
                verdict = apply_arbiter(verdict, arbiter or build_arbiter(policy.arbiter), command)
                span.set_attribute("clash.decision", verdict.decision.value)

        entry = AuditEntry.for_context(
            command, ctx,
            decision=verdict.decision.value,
            hard=verdict.hard,
            signals=list(verdict.signals),
            reasons=list(verdict.reasons),
            safer_alternative=verdict.safer_alternative,
        )
        run_span.set_attribute("clash.audit_id", entry.id)

        # -- Previewed ----------------------------------------------------------
        preview: PreviewResult | None = None
        if verdict.preview_hint is not None and verdict.decision == Decision.CONFIRM:
            with tracer.start_as_current_span("clash.preview") as span:
                preview = run_preview(verdict.preview_hint, ctx, policy.thresholds.preview_sample)
                span.set_attribute("clash.preview.count", preview.count)
            entry.preview = PreviewRecord(
                count=preview.count, sample=list(preview.sample), note=preview.note, err=preview.error,
            )

        # -- Decided ------------------------------------------------------------
        if verdict.decision == Decision.BLOCK:
            frontend.on_block(verdict)
            return _finish(ledger, entry, Outcome.BLOCKED, EXIT_REFUSED, run_span)

        if verdict.decision == Decision.CONFIRM:
            frontend.on_confirm(verdict, preview)
            _warn_thresholds(frontend, preview, policy)
            if options.auto_yes:
                entry.approved_by = APPROVED_BY_FLAG
            elif options.break_glass:
                # The phrase check below stands in for the confirmation prompt
                frontend.on_status("Break-glass requested: skipping confirmation prompt.")
            elif _ask(frontend.confirm, "Proceed with execution?"):
                entry.approved_by = APPROVED_BY_USER
            else:
                frontend.on_status("Cancelled.")
                return _finish(ledger, entry, Outcome.CANCELLED, EXIT_REFUSED, run_span)
        else:
            frontend.on_allow(verdict)

        # -- BreakGlassChecked --------------------------------------------------
        if options.break_glass:
            if policy.options.require_clean_tree_for_break_glass and ctx.git.dirty:
                frontend.on_status("Break-glass requires a clean working tree; aborting.")
                entry.error = "break-glass refused: working tree has changes"
                return _finish(ledger, entry, Outcome.CANCELLED, EXIT_REFUSED, run_span)
            if not _ask(frontend.require_phrase, "Break-glass override requested.", BREAK_GLASS_PHRASE):
                frontend.on_status("Break-glass phrase mismatch; aborting.")
                return _finish(ledger, entry, Outcome.CANCELLED, EXIT_REFUSED, run_span)
            entry.break_glass = True
            entry.break_glass_reason = options.break_glass_reason or None
            logger.warning("break-glass used for %r: %s", command, options.break_glass_reason)

        # -- Executed | Failed --------------------------------------------------
        with tracer.start_as_current_span("clash.execute") as span:
            try:
                result = executor.run(list(args), ctx.cwd)
            except KeyboardInterrupt:
                # subprocess.run kills the child before re-raising
                result = ExecResult(EXIT_INTERRUPTED, "interrupted")
            span.set_attribute("clash.exit_code", result.exit_code)
        if result.ok:
            return _finish(ledger, entry, Outcome.EXECUTED, result.exit_code, run_span)
        entry.error = result.error or f"exit status {result.exit_code}"
        return _finish(ledger, entry, Outcome.FAILED, result.exit_code, run_span)


def _ask(prompt_fn, *args) -> bool:
    """Run an operator prompt. Ctrl-C or EOF at the prompt counts as a refusal."""
    try:
        return prompt_fn(*args)
    except (KeyboardInterrupt, EOFError):
        return False


def _warn_thresholds(frontend: FrontendProtocol, preview: PreviewResult | None, policy: Policy) -> None:
    limit = policy.thresholds.delete_count
    if preview is not None and limit and preview.count > limit:
        frontend.on_status(f"Warning: {preview.count} items exceeds the delete threshold of {limit}.")


def _finish(ledger: AuditLedger, entry: AuditEntry, outcome: Outcome, exit_code: int, span) -> RunResult:
    """Recorded: the single ledger write for this invocation."""
    entry.outcome = outcome
    entry.exit_code = exit_code
    span.set_attribute("clash.outcome", outcome.value)
    ledger.record(entry)
    logger.info("audit %s outcome=%s exit=%d", entry.id, outcome.value, exit_code)
    return RunResult(exit_code=exit_code, entry=entry)
