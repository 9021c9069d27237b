# src/iac_supervisor/contracts/errors.py
"""Exceptions raised across subsystem boundaries.

Spawn failure and an interrupted plan inspection end an invocation.
Resolution problems are absorbed where they happen and never surface as
these types.
"""

from iac_supervisor.contracts.results import SupervisionResult

# Conventional shell exit codes for exec failures
EXIT_NOT_FOUND = 127
EXIT_NOT_EXECUTABLE = 126


class SupervisorError(Exception):
    """Base class for supervisor errors."""


class ConfigurationError(SupervisorError):
    """Settings could not be loaded or are inconsistent."""


class SpawnError(SupervisorError):
    """The real IaC binary could not be started.

    No retry is attempted. Retrying a failed infrastructure run is the
    invoking pipeline's responsibility.
    """

    def __init__(self, binary: str, reason: str, exit_code: int) -> None:
        super().__init__(f"Cannot execute {binary}: {reason}")
        self.binary = binary
        self.reason = reason
        self.exit_code = exit_code

    @classmethod
    def from_os_error(cls, binary: str, error: OSError) -> "SpawnError":
        """Build from the OSError raised by Popen.

        FileNotFoundError maps to 127, everything else (permission denied,
        exec format error) to 126, matching what a shell reports.
        """
        if isinstance(error, FileNotFoundError):
            return cls(binary, "executable not found", EXIT_NOT_FOUND)
        return cls(binary, error.strerror or str(error), EXIT_NOT_EXECUTABLE)


class InspectionInterrupted(SupervisorError):
    """A relayed signal arrived while a plan was being rendered.

    supervision is the outcome of the interrupted inspection call; its
    exit_code (128+N) becomes the wrapper's exit status.
    """

    def __init__(self, supervision: SupervisionResult) -> None:
        super().__init__(f"Plan inspection interrupted by signal {supervision.received_signal}")
        self.supervision = supervision

    @property
    def exit_code(self) -> int:
        return self.supervision.exit_code
