# src/iac_supervisor/engine/__init__.py
"""Supervision engine: Capture, Supervisor, PlanArtifacts, Invocation."""

from iac_supervisor.engine.capture import LogCapturePipe
from iac_supervisor.engine.invocation import (
    InvocationRunner,
    build_invocation,
    run_orchestrator,
    transcript_name,
)
from iac_supervisor.engine.plan_artifacts import (
    JSON_ARTIFACT,
    RAW_ARTIFACT,
    PlanArtifactProcessor,
)
from iac_supervisor.engine.supervisor import (
    ProcessSupervisor,
    exit_code_from_returncode,
    signal_exit_code,
)

__all__ = [
    "JSON_ARTIFACT",
    "RAW_ARTIFACT",
    "InvocationRunner",
    "LogCapturePipe",
    "PlanArtifactProcessor",
    "ProcessSupervisor",
    "build_invocation",
    "exit_code_from_returncode",
    "run_orchestrator",
    "signal_exit_code",
    "transcript_name",
]
