# src/iac_supervisor/core/__init__.py
"""Core infrastructure: Configuration, Logging, Canonical JSON, Resolution."""

from iac_supervisor.core.arguments import (
    find_plan_file,
    normalize_arguments,
    strip_separator,
)
from iac_supervisor.core.canonical import (
    canonical_json,
    error_document,
    stable_hash,
)
from iac_supervisor.core.config import (
    LoggingSettings,
    OrchestratorSettings,
    RelaySettings,
    SupervisorSettings,
    load_settings,
    signal_number,
)
from iac_supervisor.core.locator import (
    locate_binary,
    running_wrapper_paths,
)
from iac_supervisor.core.logging import (
    configure_logging,
    get_logger,
)
from iac_supervisor.core.module_dir import (
    find_module_dir,
    resolve_module_dir,
)

__all__ = [
    "LoggingSettings",
    "OrchestratorSettings",
    "RelaySettings",
    "SupervisorSettings",
    "canonical_json",
    "configure_logging",
    "error_document",
    "find_module_dir",
    "find_plan_file",
    "get_logger",
    "load_settings",
    "locate_binary",
    "normalize_arguments",
    "resolve_module_dir",
    "running_wrapper_paths",
    "signal_number",
    "stable_hash",
    "strip_separator",
]
