"""Error taxonomy and terminal outcomes for the gate.

Configuration and environment errors abort before any command is
evaluated; ledger errors abort after the decision. Classification and
preview never raise; their failures are carried as data.
"""

import enum


class Outcome(str, enum.Enum):
    BLOCKED   = "blocked"     # ladder or arbiter refused
    CANCELLED = "cancelled"   # operator declined or phrase mismatch
    EXECUTED  = "executed"    # child exited 0
    FAILED    = "failed"      # child exited non-zero or could not spawn


class ClashError(Exception):
    """Base class for errors surfaced to the operator."""

    hint: str | None = None

    def __init__(self, message: str, hint: str | None = None):
        super().__init__(message)
        if hint is not None:
            self.hint = hint


class PolicyError(ClashError):
    """Policy document is unreadable or malformed. Nothing is recorded."""

    hint = "Run `clash policy explain` against the default policy to compare."


class ContextError(ClashError):
    """Invocation environment could not be determined. Nothing is recorded."""


class LedgerError(ClashError):
    """Audit entry could not be written durably."""

    hint = "The decision was made but is not on record. Check ledger permissions."


class AuditNotFoundError(ClashError):
    """No ledger entry carries the requested identifier."""
