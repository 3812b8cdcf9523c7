"""Append-only JSON-lines audit ledger.

One line per invocation, written once and never rewritten. Appends are
serialized across processes with an exclusive flock on the ledger file,
and a torn final line from an interrupted writer is newline-terminated
before the next entry so every complete entry stays on its own line.
"""

import fcntl
import logging
import os
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from pydantic import BaseModel, Field, ValidationError

from clash.context import ContextSnapshot
from clash.errors import AuditNotFoundError, LedgerError, Outcome

logger = logging.getLogger(__name__)

LEDGER_DIRNAME = ".clash"
LEDGER_FILENAME = "audit.log"


class GitRecord(BaseModel):
    changed: int = 0
    untracked: int = 0


class PreviewRecord(BaseModel):
    count: int = 0
    sample: list[str] = Field(default_factory=list)
    note: str = ""
    err: str | None = None


class AuditEntry(BaseModel):
    """One decision and what became of it."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    command: str
    cwd: str
    repo_root: str | None = None
    git: GitRecord = Field(default_factory=GitRecord)
    decision: str
    hard: bool = False
    signals: list[str] = Field(default_factory=list)
    reasons: list[str] = Field(default_factory=list)
    safer_alternative: str = ""
    preview: PreviewRecord | None = None
    approved_by: str | None = None  # "--yes" | "user" | None
    break_glass: bool = False
    break_glass_reason: str | None = None
    outcome: Outcome | None = None
    exit_code: int = 0
    error: str | None = None

    @classmethod
    def for_context(cls, command: str, ctx: ContextSnapshot, **fields) -> "AuditEntry":
        return cls(
            command=command,
            cwd=ctx.cwd,
            repo_root=ctx.repo_root,
            git=GitRecord(changed=ctx.git.changed, untracked=ctx.git.untracked),
            **fields,
        )


def ledger_path(repo_root: str | None) -> Path:
    """<repo>/.clash/audit.log inside a repository, else ~/.clash/audit.log."""
    base = Path(repo_root) if repo_root else Path.home()
    return base / LEDGER_DIRNAME / LEDGER_FILENAME


class AuditLedger:
    """Handle on one ledger file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    @classmethod
    def for_context(cls, ctx: ContextSnapshot) -> "AuditLedger":
        return cls(ledger_path(ctx.repo_root))

    def record(self, entry: AuditEntry) -> None:
        """Append *entry* as one JSON line. Raises LedgerError on any I/O failure."""
        data = (entry.model_dump_json(exclude_none=True) + "\n").encode("utf-8")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_CREAT | os.O_RDWR | os.O_APPEND, 0o644)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX)
                if _ends_without_newline(fd):
                    data = b"\n" + data
                view = memoryview(data)
                while view:
                    written = os.write(fd, view)
                    view = view[written:]
                os.fsync(fd)
            finally:
                # Closing the descriptor releases the lock
                os.close(fd)
        except OSError as e:
            raise LedgerError(f"Cannot write audit entry {entry.id} to {self.path}: {e}")
        logger.debug("recorded %s outcome=%s", entry.id, entry.outcome)

    def entries(self) -> Iterator[AuditEntry]:
        """Yield entries oldest first. Unparseable lines are skipped."""
        try:
            with open(self.path, "r", encoding="utf-8", errors="replace") as f:
                for lineno, line in enumerate(f, start=1):
                    if not line.strip():
                        continue
                    try:
                        yield AuditEntry.model_validate_json(line)
                    except ValidationError:
                        logger.debug("skipping corrupt ledger line %d in %s", lineno, self.path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise LedgerError(f"Cannot read audit log {self.path}: {e}")

    def find(self, entry_id: str) -> AuditEntry:
        """Return the first entry with *entry_id*. Raises AuditNotFoundError."""
        for entry in self.entries():
            if entry.id == entry_id:
                return entry
        raise AuditNotFoundError(f"audit id not found: {entry_id}", hint=f"Searched {self.path}")


def _ends_without_newline(fd: int) -> bool:
    size = os.fstat(fd).st_size
    if size == 0:
        return False
    return os.pread(fd, 1, size - 1) != b"\n"
