# src/iac_supervisor/contracts/__init__.py
"""Shared contracts for cross-boundary data types.

All dataclasses, enums, and exceptions that cross subsystem boundaries
(core <-> engine <-> cli) are defined here.

Import pattern:
    from iac_supervisor.contracts import Invocation, Subcommand, SpawnError
"""

from iac_supervisor.contracts.enums import (
    RenderFormat,
    Subcommand,
    SupervisorState,
)
from iac_supervisor.contracts.errors import (
    EXIT_NOT_EXECUTABLE,
    EXIT_NOT_FOUND,
    ConfigurationError,
    InspectionInterrupted,
    SpawnError,
    SupervisorError,
)
from iac_supervisor.contracts.invocation import (
    CAPTURED_SUBCOMMANDS,
    Invocation,
    NormalizedArgs,
)
from iac_supervisor.contracts.results import (
    ArtifactDescriptor,
    InvocationResult,
    PlanArtifactsResult,
    SupervisionResult,
)

__all__ = [
    "CAPTURED_SUBCOMMANDS",
    "EXIT_NOT_EXECUTABLE",
    "EXIT_NOT_FOUND",
    "ArtifactDescriptor",
    "ConfigurationError",
    "InspectionInterrupted",
    "Invocation",
    "InvocationResult",
    "NormalizedArgs",
    "PlanArtifactsResult",
    "RenderFormat",
    "SpawnError",
    "Subcommand",
    "SupervisionResult",
    "SupervisorError",
    "SupervisorState",
]
