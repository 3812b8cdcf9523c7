"""Final execution step: run the approved argv with inherited stdio."""

import errno
import logging
import subprocess
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

# Shell convention for "command not found"
EXIT_NOT_FOUND = 127


@dataclass(frozen=True)
class ExecResult:
    exit_code: int
    error: str | None = None  # set for non-zero exits and spawn failures

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and self.error is None


@runtime_checkable
class ExecutorProtocol(Protocol):
    """Runs an approved command and reports how it ended."""

    def run(self, args: list[str], cwd: str) -> ExecResult: ...


class ShellBackend:
    """Runs the literal argument vector without a shell.

    stdin/stdout/stderr are inherited so interactive tools behave as if
    invoked directly. There is no timeout; the gate waits for the child.
    """

    def run(self, args: list[str], cwd: str) -> ExecResult:
        logger.debug("exec %r in %s", args, cwd)
        try:
            proc = subprocess.run(args, cwd=cwd)
        except FileNotFoundError as e:
            return ExecResult(EXIT_NOT_FOUND, f"command not found: {e.filename or args[0]}")
        except OSError as e:
            code = EXIT_NOT_FOUND if e.errno == errno.ENOENT else 1
            return ExecResult(code, f"cannot execute {args[0]}: {e.strerror or e}")

        if proc.returncode != 0:
            # Negative return codes mean the child died from a signal
            code = proc.returncode if proc.returncode > 0 else 128 - proc.returncode
            return ExecResult(code, f"exit status {proc.returncode}")
        return ExecResult(0)
