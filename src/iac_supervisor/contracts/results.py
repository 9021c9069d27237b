# src/iac_supervisor/contracts/results.py
"""Operation outcomes and results.

These types answer: "What did an invocation produce?"

IMPORTANT:
- exit_code is always the code the wrapper process exits with, already
  mapped (128+N for signal-driven termination)
- A placeholder artifact is still an artifact: it exists on disk and carries
  an explicit error marker
"""

import hashlib
from dataclasses import dataclass, field
from pathlib import Path

from iac_supervisor.contracts.enums import RenderFormat, SupervisorState


@dataclass(frozen=True)
class ArtifactDescriptor:
    """Descriptor for a file written into the module directory.

    content_hash and size_bytes let callers compare runs without re-reading
    the artifact (post-processing is expected to be byte-for-byte repeatable).
    """

    path: Path
    content_hash: str
    size_bytes: int
    placeholder: bool = False

    @classmethod
    def for_file(cls, path: Path, *, placeholder: bool = False) -> "ArtifactDescriptor":
        """Describe a file that exists on disk."""
        sha256 = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                sha256.update(chunk)
        return cls(
            path=path,
            content_hash=sha256.hexdigest(),
            size_bytes=path.stat().st_size,
            placeholder=placeholder,
        )


@dataclass
class PlanArtifactsResult:
    """Result of post-processing a successful plan.

    renderings maps each requested format to the artifact written for it.
    copied_plan is None when the plan file was never found.
    """

    plan_file: str
    plan_found: bool = False
    copied_plan: Path | None = None
    renderings: dict[RenderFormat, ArtifactDescriptor] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def has_placeholders(self) -> bool:
        return any(a.placeholder for a in self.renderings.values())


@dataclass
class SupervisionResult:
    """Outcome of supervising one child process.

    exit_code is the wrapper's own exit status. child_returncode is the raw
    Popen return code (negative when the child died by a signal).
    """

    exit_code: int
    state: SupervisorState
    child_pid: int | None = None
    child_returncode: int | None = None
    received_signal: int | None = None
    forced_kill: bool = False

    @property
    def signaled(self) -> bool:
        return self.state is SupervisorState.SIGNALED


@dataclass
class InvocationResult:
    """Final result of one wrapped invocation."""

    supervision: SupervisionResult
    log_artifact: ArtifactDescriptor | None = None
    plan_artifacts: PlanArtifactsResult | None = None

    @property
    def exit_code(self) -> int:
        return self.supervision.exit_code
