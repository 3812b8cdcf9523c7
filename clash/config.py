import os
import json
import logging
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from clash.errors import PolicyError

APP_NAME = "clash"
POLICY_FILENAME = "clash.yaml"

# XDG Paths - Explicit XDG resolution so ~/.config/ is used even on macOS
CONFIG_DIR = Path(os.getenv("XDG_CONFIG_HOME", Path.home() / ".config")) / APP_NAME
DATA_DIR = Path(os.getenv("XDG_DATA_HOME", Path.home() / ".local" / "share")) / APP_NAME
SETTINGS_FILE = CONFIG_DIR / "settings.json"

DEFAULT_POLICY_FILE = Path(__file__).resolve().parent / "default_policy.yaml"

logger = logging.getLogger(__name__)


# -- Policy model --------------------------------------------------------------


class Thresholds(BaseModel):
    model_config = ConfigDict(frozen=True)

    delete_count: int = Field(default=0, ge=0)
    modify_count: int = Field(default=0, ge=0)
    preview_sample: int = Field(default=0, ge=0)


class ArbiterConfig(BaseModel):
    """Optional second-opinion arbiter consulted on CONFIRM verdicts."""
    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=False)
    provider: str = Field(default="")
    model: str = Field(default="")
    # Name of the env var holding the credential, never the credential itself
    api_key_env: str = Field(default="")


class PolicyOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    allow_outside_repo: bool = Field(default=False)
    require_clean_tree_for_break_glass: bool = Field(default=False)


class Policy(BaseModel):
    """Effective ruleset for one invocation.

    Field defaults are the zero values an override document starts from;
    the shipped defaults live in default_policy.yaml.
    """
    model_config = ConfigDict(frozen=True)

    thresholds: Thresholds = Field(default_factory=Thresholds)
    protected_paths: list[str] = Field(default_factory=list)
    allow_commands: list[str] = Field(default_factory=list)
    block_commands: list[str] = Field(default_factory=list)
    confirm_commands: list[str] = Field(default_factory=list)
    network_egress: list[str] = Field(default_factory=list)
    package_managers: list[str] = Field(default_factory=list)
    arbiter: ArbiterConfig = Field(default_factory=ArbiterConfig)
    options: PolicyOptions = Field(default_factory=PolicyOptions)

    @field_validator(
        "protected_paths", "allow_commands", "block_commands",
        "confirm_commands", "network_egress", "package_managers",
        mode="before",
    )
    @classmethod
    def _parse_list(cls, v: str | list[str] | None) -> list[str]:
        # `key:` with no items parses as None in YAML
        if v is None:
            return []
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return [str(s) for s in v]

    @field_validator("thresholds", "arbiter", "options", mode="before")
    @classmethod
    def _parse_section(cls, v):
        return {} if v is None else v


def parse_policy(text: str, source: str = "<policy>") -> Policy:
    """Parse a YAML policy document. Raises PolicyError when malformed."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise PolicyError(f"Policy {source} is not valid YAML: {e}")
    if data is None:
        return Policy()
    if not isinstance(data, dict):
        raise PolicyError(f"Policy {source} must be a mapping, got {type(data).__name__}")
    try:
        return Policy.model_validate(data)
    except ValidationError as e:
        raise PolicyError(f"Policy {source} is invalid: {e}")


def default_policy_yaml() -> str:
    """Return the built-in default policy document."""
    return DEFAULT_POLICY_FILE.read_text()


def default_policy() -> Policy:
    return parse_policy(default_policy_yaml(), source="default")


def merge_policy(base: Policy, override: Policy) -> Policy:
    """Overlay a user document onto the defaults.

    Lists replace wholesale when non-empty; thresholds replace when
    non-zero. allow_outside_repo is OR'd; require_clean_tree_for_break_glass
    can only be switched on by an override, never off.
    """
    thresholds = base.thresholds.model_copy(update={
        name: value
        for name, value in override.thresholds.model_dump().items()
        if value != 0
    })

    update: dict = {"thresholds": thresholds}
    for name in (
        "protected_paths", "allow_commands", "block_commands",
        "confirm_commands", "network_egress", "package_managers",
    ):
        value = getattr(override, name)
        if value:
            update[name] = list(value)

    arb = override.arbiter
    if arb.enabled or arb.provider or arb.model or arb.api_key_env:
        update["arbiter"] = arb

    update["options"] = PolicyOptions(
        allow_outside_repo=base.options.allow_outside_repo or override.options.allow_outside_repo,
        require_clean_tree_for_break_glass=(
            True if override.options.require_clean_tree_for_break_glass
            else base.options.require_clean_tree_for_break_glass
        ),
    )
    return base.model_copy(update=update)


def load_policy(path: Path | None = None) -> Policy:
    """Return the default policy merged with the document at *path*.

    A missing file is not an error: the defaults apply. An unreadable or
    malformed file raises PolicyError.
    """
    base = default_policy()
    if path is None:
        return base
    if not path.exists():
        logger.debug("policy file %s not found, using defaults", path)
        return base
    try:
        text = path.read_text()
    except OSError as e:
        raise PolicyError(f"Cannot read policy {path}: {e}")
    logger.debug("merging policy overrides from %s", path)
    return merge_policy(base, parse_policy(text, source=str(path)))


def find_policy_file(explicit: str | None, search_dir: str) -> Path | None:
    """Resolve which policy file applies: --policy, $CLASH_POLICY, then <dir>/clash.yaml."""
    chosen = explicit or os.getenv("CLASH_POLICY")
    if chosen:
        return Path(chosen).expanduser()
    candidate = Path(search_dir) / POLICY_FILENAME
    return candidate if candidate.is_file() else None


def policy_to_yaml(policy: Policy) -> str:
    """Render a policy back to a YAML document that parse_policy accepts."""
    return yaml.safe_dump(policy.model_dump(mode="json"), sort_keys=False, default_flow_style=False)


# -- Application settings ------------------------------------------------------


class Settings(BaseModel):
    theme: Literal["light", "dark"] = Field(default="light")
    log_level: str = Field(default="WARNING")
    # Export pipeline spans to DATA_DIR/clash.db
    trace: bool = Field(default=False)

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"log_level must be a logging level name, got '{v}'")
        return level

    @model_validator(mode="before")
    @classmethod
    def fill_from_env(cls, data: dict) -> dict:
        """Env vars override file-based values (highest precedence layer)."""
        env_map = {
            "theme": "CLASH_THEME",
            "log_level": "CLASH_LOG_LEVEL",
            "trace": "CLASH_TRACE",
        }
        for field, env_var in env_map.items():
            val = os.getenv(env_var)
            if val:
                data[field] = val
        return data


def load_settings() -> Settings:
    data: dict = {}
    if SETTINGS_FILE.exists():
        with open(SETTINGS_FILE, "r") as f:
            try:
                data = json.load(f)
            except ValueError as e:
                logger.warning("Error loading %s: %s. Using defaults.", SETTINGS_FILE, e)
    return Settings.model_validate(data)


# Lazy settings singleton, read on first access, not at import time.
_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the global Settings instance, creating it on first call."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def __getattr__(name: str):
    """Lazy module attribute: ``from clash.config import settings`` works without import-time side effects."""
    if name == "settings":
        return get_settings()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
