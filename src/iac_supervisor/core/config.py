# src/iac_supervisor/core/config.py
"""
Configuration schema and loading for the IaC supervisor.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.

The environment variables that form the wrapper's external interface
(IAC_BINARY, IAC_BINARY_PATH, TERRAGRUNT_WORKING_DIR, TF_CLI_ARGS,
TERRAGRUNT_REAL_PATH) are overlaid last and always win.
"""

import os
import signal
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from iac_supervisor.contracts import ConfigurationError

DEFAULT_SEARCH_DIRS = (Path("/bin"), Path("/usr/bin"), Path("/usr/local/bin"))

# Everything a CI runner may deliver while cancelling a job, plus the
# user-defined, pipe, alarm and abort signals
DEFAULT_RELAY_SIGNALS = (
    "SIGTERM",
    "SIGINT",
    "SIGHUP",
    "SIGQUIT",
    "SIGUSR1",
    "SIGUSR2",
    "SIGPIPE",
    "SIGALRM",
    "SIGABRT",
)

ORCHESTRATOR_RELAY_SIGNALS = ("SIGINT", "SIGTERM", "SIGHUP", "SIGQUIT")

# SIGKILL and SIGSTOP cannot be caught
_UNCATCHABLE = frozenset({"SIGKILL", "SIGSTOP"})


def signal_number(name: str) -> int:
    """Resolve a signal name (SIGTERM or TERM) to its number.

    Raises:
        ValueError: If the name is not a signal on this platform
    """
    canonical = name.upper()
    if not canonical.startswith("SIG"):
        canonical = f"SIG{canonical}"
    try:
        return int(signal.Signals[canonical])
    except KeyError:
        raise ValueError(f"Unknown signal: {name}") from None


def _normalize_signal_name(name: str) -> str:
    signal_number(name)
    canonical = name.upper()
    return canonical if canonical.startswith("SIG") else f"SIG{canonical}"


class RelaySettings(BaseModel):
    """Signal relay configuration.

    On receipt of any signal in `signals` the supervisor relays it to the
    child, waits up to grace_seconds for the child to exit, optionally sends
    escalation_signal and waits escalation_grace_seconds, then sends SIGKILL.

    Example YAML:
        relay:
          grace_seconds: 30
          poll_interval_seconds: 0.5
    """

    model_config = {"frozen": True}

    signals: tuple[str, ...] = Field(
        default=DEFAULT_RELAY_SIGNALS,
        description="Signals intercepted and relayed to the child",
    )
    grace_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Time the child gets to exit after the relayed signal",
    )
    poll_interval_seconds: float = Field(
        default=0.5,
        gt=0,
        description="How often the child is checked during the grace window",
    )
    escalation_signal: str | None = Field(
        default=None,
        description="Optional signal sent after the grace window, before SIGKILL",
    )
    escalation_grace_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Time the child gets after escalation_signal",
    )

    @field_validator("signals")
    @classmethod
    def validate_signals(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Every entry must be a real, catchable signal."""
        if not v:
            raise ValueError("at least one signal must be relayed")
        names = tuple(_normalize_signal_name(name) for name in v)
        blocked = _UNCATCHABLE.intersection(names)
        if blocked:
            raise ValueError(f"signals cannot be caught: {sorted(blocked)}")
        return names

    @field_validator("escalation_signal")
    @classmethod
    def validate_escalation_signal(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _normalize_signal_name(v)

    @model_validator(mode="after")
    def validate_poll_within_grace(self) -> "RelaySettings":
        """Polling slower than the grace window would skip the check entirely."""
        if self.poll_interval_seconds > self.grace_seconds:
            raise ValueError(
                f"poll_interval_seconds ({self.poll_interval_seconds}) must not exceed "
                f"grace_seconds ({self.grace_seconds})"
            )
        return self

    @property
    def signal_numbers(self) -> tuple[int, ...]:
        return tuple(signal_number(name) for name in self.signals)

    @property
    def escalation_signal_number(self) -> int | None:
        if self.escalation_signal is None:
            return None
        return signal_number(self.escalation_signal)


class OrchestratorSettings(BaseModel):
    """Configuration for wrapping the orchestrator (terragrunt) itself.

    The orchestrator gets a short grace window and an intermediate SIGTERM,
    since it still needs time to forward the signal down to its own children.
    """

    model_config = {"frozen": True}

    binary: str = Field(default="terragrunt", description="Orchestrator binary name")
    binary_path: Path | None = Field(
        default=None,
        description="Explicit path to the real orchestrator (TERRAGRUNT_REAL_PATH)",
    )
    relay: RelaySettings = Field(
        default_factory=lambda: RelaySettings(
            signals=ORCHESTRATOR_RELAY_SIGNALS,
            grace_seconds=8.0,
            poll_interval_seconds=1.0,
            escalation_signal="SIGTERM",
            escalation_grace_seconds=1.0,
        ),
        description="Signal relay for the orchestrator process",
    )


class LoggingSettings(BaseModel):
    """Diagnostic logging configuration. Diagnostics always go to stderr."""

    model_config = {"frozen": True}

    level: str = Field(default="INFO", description="Minimum log level")
    json_output: bool = Field(default=False, description="Render records as JSON lines")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level


class SupervisorSettings(BaseModel):
    """Top-level supervisor configuration.

    This is the single source of truth for one wrapper process.
    All settings are validated and frozen after construction.
    """

    model_config = {"frozen": True}

    # Binary resolution
    binary: str = Field(default="terraform", description="IaC binary family (IAC_BINARY)")
    binary_path: Path | None = Field(
        default=None,
        description="Explicit path to the real IaC binary (IAC_BINARY_PATH)",
    )
    search_dirs: tuple[Path, ...] = Field(
        default=DEFAULT_SEARCH_DIRS,
        description="Well-known installation directories, searched in order",
    )
    real_suffix: str = Field(
        default=".real",
        description="Suffix of the renamed-aside original binary",
    )

    # Module directory resolution
    working_dir_hint: Path | None = Field(
        default=None,
        description="Module directory provided by the orchestrator (TERRAGRUNT_WORKING_DIR)",
    )
    module_descriptor: str = Field(
        default="terragrunt.hcl",
        description="File that marks a module directory",
    )

    # Argument handling
    separator: str = Field(
        default="-",
        description="Orchestrator-injected token stripped from forwarded arguments",
    )
    cli_args: str | None = Field(
        default=None,
        description="Ambient default arguments for the IaC tool (value of TF_CLI_ARGS)",
    )
    cli_args_env_var: str = Field(
        default="TF_CLI_ARGS",
        description="Environment variable cleared for inspection calls",
    )

    # Process handling
    isolate_process_group: bool = Field(
        default=True,
        description="Start the child in its own session so only the relay delivers signals",
    )
    fs_settle_seconds: float = Field(
        default=0.1,
        ge=0,
        description="Pause before reading the plan file written by the child",
    )
    tf_log: str | None = Field(default=None, description="TF_LOG exported to the child")
    tf_log_path: str | None = Field(
        default=None,
        description="TF_LOG_PATH exported to the child; {pid} is the wrapper pid",
    )

    # Subsystems
    relay: RelaySettings = Field(
        default_factory=RelaySettings,
        description="Signal relay for the IaC tool process",
    )
    orchestrator: OrchestratorSettings = Field(
        default_factory=OrchestratorSettings,
        description="Orchestrator wrapper configuration",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Diagnostic logging configuration",
    )

    @field_validator("binary")
    @classmethod
    def validate_binary(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("binary must not be empty")
        return v

    @field_validator("separator")
    @classmethod
    def validate_separator(cls, v: str) -> str:
        if not v:
            raise ValueError("separator must not be empty")
        return v

    def child_env_overrides(self, wrapper_pid: int) -> dict[str, str | None]:
        """Variables exported to every IaC child (TF_LOG debug support)."""
        overrides: dict[str, str | None] = {}
        if self.tf_log is not None:
            overrides["TF_LOG"] = self.tf_log
        if self.tf_log_path is not None:
            overrides["TF_LOG_PATH"] = self.tf_log_path.replace("{pid}", str(wrapper_pid))
        return overrides

    def inspection_env_overrides(self) -> dict[str, str | None]:
        """Variables forced for show/inspection calls.

        The ambient default-arguments variable is set to empty so an
        orchestrator-wide override cannot change the rendering format.
        """
        return {self.cli_args_env_var: ""}


# Interface variables -> (settings path) they populate
_INTERFACE_VARIABLES: dict[str, tuple[str, ...]] = {
    "IAC_BINARY": ("binary",),
    "IAC_BINARY_PATH": ("binary_path",),
    "TERRAGRUNT_WORKING_DIR": ("working_dir_hint",),
    "TF_CLI_ARGS": ("cli_args",),
    "TERRAGRUNT_REAL_PATH": ("orchestrator", "binary_path"),
}


def _apply_interface_variables(
    raw_config: dict[str, Any], environ: Mapping[str, str]
) -> dict[str, Any]:
    """Overlay the fixed interface environment variables onto raw config.

    Empty values are ignored, matching `[ -n "$VAR" ]` semantics, except
    TF_CLI_ARGS whose presence alone matters.
    """
    for var, path in _INTERFACE_VARIABLES.items():
        value = environ.get(var)
        if value is None or (value == "" and var != "TF_CLI_ARGS"):
            continue
        target = raw_config
        for key in path[:-1]:
            existing = target.get(key)
            target[key] = dict(existing) if isinstance(existing, Mapping) else {}
            target = target[key]
        target[path[-1]] = value
    return raw_config


def load_settings(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> SupervisorSettings:
    """Load settings from an optional file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Interface variables (IAC_BINARY, TF_CLI_ARGS, ...) - highest priority
    2. Environment variables (IAC_SUPERVISOR_*)
    3. Config file (YAML/TOML), when given
    4. Defaults from Pydantic schema - lowest priority

    Environment variable format: IAC_SUPERVISOR_RELAY__GRACE_SECONDS for
    nested keys.

    Args:
        config_path: Optional path to a settings file
        environ: Environment to read interface variables from (os.environ)

    Returns:
        Validated SupervisorSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        ConfigurationError: If config_path is given but doesn't exist
    """
    from dynaconf import Dynaconf

    # Explicit check for file existence (Dynaconf silently accepts missing files)
    if config_path is not None and not config_path.exists():
        raise ConfigurationError(f"Settings file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="IAC_SUPERVISOR",
        settings_files=[str(config_path)] if config_path is not None else [],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; convert to lowercase for Pydantic
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {
        k.lower(): _lower_keys(v)
        for k, v in dynaconf_settings.as_dict().items()
        if k not in internal_keys
    }
    raw_config = _apply_interface_variables(
        raw_config, os.environ if environ is None else environ
    )
    return SupervisorSettings(**raw_config)


def _lower_keys(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value


def resolve_config(settings: SupervisorSettings) -> dict[str, Any]:
    """Convert validated settings to a JSON-safe dict for diagnostics."""
    return settings.model_dump(mode="json")


def apply_env_overrides(
    base: Mapping[str, str], overrides: Mapping[str, str | None]
) -> dict[str, str]:
    """Copy base with overrides applied; a None value removes the variable.

    An empty string is kept: `TF_CLI_ARGS=` must reach the child as set-but-empty.
    """
    env = dict(base)
    for key, value in overrides.items():
        if value is None:
            env.pop(key, None)
        else:
            env[key] = value
    return env
