"""Environment sanitization for preview helper processes."""

import os


# Allowlist: only these host env vars propagate to preview subprocesses.
_SAFE_ENV_VARS = {
    "PATH", "HOME", "USER", "LOGNAME", "LANG", "LC_ALL",
    "TERM", "SHELL", "TMPDIR", "XDG_RUNTIME_DIR",
}


def restricted_env() -> dict[str, str]:
    """Build a sanitized environment for preview helpers (find, git clean -n).

    Uses an allowlist so pager/editor hooks and repo-level git config
    indirections cannot turn a dry run into something else.
    """
    base = {k: v for k, v in os.environ.items() if k in _SAFE_ENV_VARS}
    # Never page or prompt from a preview
    base["PAGER"] = "cat"
    base["GIT_PAGER"] = "cat"
    base["GIT_TERMINAL_PROMPT"] = "0"
    base["LC_ALL"] = "C"
    return base
