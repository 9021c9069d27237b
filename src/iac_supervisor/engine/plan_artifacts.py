# src/iac_supervisor/engine/plan_artifacts.py
"""Plan artifact post-processing.

After a plan exits 0 with an output plan file, the module directory gets:

- a copy of the raw plan file
- plan_output.json      (`<tool> show -json <plan>`)
- plan_output_raw.log   (`<tool> show <plan>`)

Downstream consumers read these by fixed name, so every expected file is
always written: when a rendering cannot be produced, a placeholder with an
explicit error marker takes its place. Nothing here fails the invocation,
except a termination signal: each inspection call runs under the same relay
as the plan itself, and an interrupted call ends post-processing.
"""

import os
import shutil
import subprocess
import tempfile
import time
from collections.abc import Mapping
from pathlib import Path

from iac_supervisor.contracts import (
    ArtifactDescriptor,
    InspectionInterrupted,
    PlanArtifactsResult,
    RenderFormat,
    SpawnError,
)
from iac_supervisor.core.canonical import error_document
from iac_supervisor.core.config import RelaySettings, apply_env_overrides
from iac_supervisor.core.logging import get_logger
from iac_supervisor.engine.supervisor import ProcessSupervisor

logger = get_logger(__name__)

JSON_ARTIFACT = "plan_output.json"
RAW_ARTIFACT = "plan_output_raw.log"

ARTIFACT_NAMES = {
    RenderFormat.JSON: JSON_ARTIFACT,
    RenderFormat.RAW: RAW_ARTIFACT,
}

# Rendering order is fixed so repeated runs issue identical calls
RENDER_ORDER = (RenderFormat.JSON, RenderFormat.RAW)


def show_arguments(fmt: RenderFormat, plan_path: str) -> list[str]:
    """Arguments to the IaC tool's inspection subcommand."""
    if fmt is RenderFormat.JSON:
        return ["show", "-json", plan_path]
    return ["show", plan_path]


def not_found_placeholder(fmt: RenderFormat, plan_file: str) -> bytes:
    if fmt is RenderFormat.JSON:
        return error_document("Plan file not found").encode("utf-8")
    return f"Plan file {plan_file} not found\n".encode()


def failed_placeholder(fmt: RenderFormat) -> bytes:
    if fmt is RenderFormat.JSON:
        return error_document("Failed to generate plan output").encode("utf-8")
    return b"Failed to generate raw plan output\n"


class PlanArtifactProcessor:
    """Derives plan artifacts from a successful plan invocation.

    Inspection calls run with the ambient default-arguments variable
    cleared (see SupervisorSettings.inspection_env_overrides), since an
    orchestrator-wide TF_CLI_ARGS could change the output format.
    """

    def __init__(
        self,
        binary: str,
        module_dir: Path,
        *,
        cwd: Path,
        env_overrides: Mapping[str, str | None],
        base_env: Mapping[str, str] | None = None,
        fs_settle_seconds: float = 0.1,
        relay: RelaySettings | None = None,
        isolate_process_group: bool = True,
    ) -> None:
        """Initialize processor.

        Args:
            binary: Resolved IaC binary used for inspection
            module_dir: Durable directory receiving the artifacts
            cwd: Working directory the plan ran in (relative plan paths)
            env_overrides: Variables forced for inspection calls
            base_env: Environment the overrides apply to (os.environ)
            fs_settle_seconds: Pause before looking for the plan file
            relay: Signal relay for the inspection calls (defaults)
            isolate_process_group: Start inspection calls in their own session
        """
        self._binary = binary
        self._module_dir = module_dir
        self._cwd = cwd
        self._env = apply_env_overrides(
            os.environ if base_env is None else base_env, env_overrides
        )
        self._settle = fs_settle_seconds
        self._relay = relay if relay is not None else RelaySettings()
        self._isolate = isolate_process_group

    def plan_path(self, plan_file: str) -> Path:
        """Where the child wrote the plan file."""
        path = Path(plan_file)
        return path if path.is_absolute() else self._cwd / path

    def copy_destination(self, plan_file: str) -> Path:
        """Where the plan file is copied in the module directory."""
        path = Path(plan_file)
        if path.is_absolute():
            return self._module_dir / path.name
        return self._module_dir / path

    def process(self, plan_file: str) -> PlanArtifactsResult:
        """Copy the plan and write both renderings (or placeholders).

        Raises:
            InspectionInterrupted: A relayed signal arrived during a show call
        """
        result = PlanArtifactsResult(plan_file=plan_file)
        self._module_dir.mkdir(parents=True, exist_ok=True)

        # Let writes from the just-exited child become visible
        if self._settle > 0:
            time.sleep(self._settle)

        source = self.plan_path(plan_file)
        if not source.is_file():
            logger.warning("Plan file not found", plan_file=plan_file, path=str(source))
            result.errors.append(f"Plan file {plan_file} not found")
            for fmt in RENDER_ORDER:
                result.renderings[fmt] = self._write(
                    fmt, not_found_placeholder(fmt, plan_file), placeholder=True
                )
            return result

        result.plan_found = True
        result.copied_plan = self._copy_plan(source, self.copy_destination(plan_file))

        for fmt in RENDER_ORDER:
            attempts = [str(source)]
            if result.copied_plan is not None:
                attempts.append(str(result.copied_plan))
            content = self._render(fmt, attempts)
            if content is None:
                result.errors.append(f"Failed to generate {fmt.value} plan output")
                result.renderings[fmt] = self._write(fmt, failed_placeholder(fmt), placeholder=True)
            else:
                result.renderings[fmt] = self._write(fmt, content, placeholder=False)

        logger.info(
            "Plan artifacts written",
            module_dir=str(self._module_dir),
            placeholders=result.has_placeholders,
        )
        return result

    def _copy_plan(self, source: Path, destination: Path) -> Path | None:
        try:
            if destination.exists() and source.samefile(destination):
                return destination
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, destination)
        except OSError as e:
            logger.error(
                "Could not copy plan file",
                source=str(source),
                destination=str(destination),
                error=str(e),
            )
            return None
        return destination

    def _render(self, fmt: RenderFormat, plan_paths: list[str]) -> bytes | None:
        """Run the inspection subcommand, retrying with the next path on failure.

        Raises:
            InspectionInterrupted: If a relayed signal arrived during a call
        """
        for plan_path in plan_paths:
            command = [self._binary, *show_arguments(fmt, plan_path)]
            try:
                returncode, stdout, stderr = self._inspect(command)
            except SpawnError as e:
                logger.warning("Inspection call could not start", command=command, error=str(e))
                continue
            if returncode == 0:
                return stdout
            logger.warning(
                "Inspection call failed",
                command=command,
                returncode=returncode,
                stderr=stderr.decode("utf-8", errors="replace").strip(),
            )
        return None

    def _inspect(self, command: list[str]) -> tuple[int | None, bytes, bytes]:
        """Run one inspection call under its own signal relay.

        Output goes to temporary files so a large rendering cannot fill a
        pipe while the supervisor is waiting.
        """
        supervisor = ProcessSupervisor(
            self._relay,
            name=f"{Path(self._binary).name} show",
            isolate_process_group=self._isolate,
        )
        with tempfile.TemporaryFile() as out, tempfile.TemporaryFile() as err:
            with supervisor:
                supervisor.spawn(
                    command,
                    env=self._env,
                    cwd=self._cwd,
                    stdin=subprocess.DEVNULL,
                    stdout=out,
                    stderr=err,
                )
                returncode = supervisor.wait()
            outcome = supervisor.result()
            if outcome.signaled:
                raise InspectionInterrupted(outcome)
            out.seek(0)
            err.seek(0)
            return returncode, out.read(), err.read()

    def _write(self, fmt: RenderFormat, content: bytes, *, placeholder: bool) -> ArtifactDescriptor:
        path = self._module_dir / ARTIFACT_NAMES[fmt]
        path.write_bytes(content)
        return ArtifactDescriptor.for_file(path, placeholder=placeholder)
