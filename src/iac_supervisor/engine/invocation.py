# src/iac_supervisor/engine/invocation.py
"""Invocation runner: wires resolution, capture, supervision and post-processing.

Control flow for one wrapped IaC call:

1. resolve module directory and binary (once, before anything is written)
2. normalize and classify the arguments
3. for init/plan/apply/destroy, start the capture pipe
4. spawn and supervise the child; wait for exit, then for the drain
5. after a successful plan with an output file, write plan artifacts; the
   inspection calls are relayed too, and a signal during them sets the
   exit status
"""

import dataclasses
import os
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import BinaryIO

from iac_supervisor.contracts import (
    InspectionInterrupted,
    Invocation,
    InvocationResult,
    PlanArtifactsResult,
    SpawnError,
    Subcommand,
    SupervisionResult,
)
from iac_supervisor.core.arguments import normalize_arguments
from iac_supervisor.core.config import SupervisorSettings, apply_env_overrides
from iac_supervisor.core.locator import locate_binary, running_wrapper_paths
from iac_supervisor.core.logging import get_logger
from iac_supervisor.core.module_dir import resolve_module_dir
from iac_supervisor.engine.capture import LogCapturePipe
from iac_supervisor.engine.plan_artifacts import PlanArtifactProcessor
from iac_supervisor.engine.supervisor import ProcessSupervisor

logger = get_logger(__name__)


def transcript_name(subcommand: Subcommand) -> str:
    """Fixed transcript file name for a captured subcommand (plan_log.jsonl)."""
    return f"{subcommand.value}_log.jsonl"


def log_startup(args: Sequence[str], *, role: str) -> None:
    pid = os.getpid()
    try:
        pgid: int | str = os.getpgid(pid)
    except OSError:
        pgid = "unknown"
    logger.info(
        "Wrapper started",
        role=role,
        wrapper_pid=pid,
        wrapper_pgid=pgid,
        parent_pid=os.getppid(),
        arguments=list(args),
    )


def _inspection_overrides(settings: SupervisorSettings) -> dict[str, str | None]:
    if settings.cli_args:
        logger.info(
            "Clearing ambient CLI arguments for inspection",
            variable=settings.cli_args_env_var,
            cli_args=settings.cli_args,
        )
    return settings.inspection_env_overrides()


def build_invocation(
    argv: Sequence[str],
    settings: SupervisorSettings,
    *,
    cwd: Path | None = None,
) -> Invocation:
    """Resolve everything an invocation needs before spawning.

    Args:
        argv: Wrapper arguments; the first is the IaC subcommand
        settings: Loaded supervisor settings
        cwd: Launch directory (current working directory)
    """
    launch_dir = cwd if cwd is not None else Path.cwd()
    arguments = normalize_arguments(argv, separator=settings.separator)

    module_dir = resolve_module_dir(
        cwd=launch_dir,
        hint=settings.working_dir_hint,
        descriptor=settings.module_descriptor,
    )
    binary = locate_binary(
        settings.binary,
        override=settings.binary_path,
        search_dirs=settings.search_dirs,
        real_suffix=settings.real_suffix,
        exclude=running_wrapper_paths(),
    )

    env_overrides = settings.child_env_overrides(os.getpid())
    if arguments.subcommand is Subcommand.SHOW:
        env_overrides.update(_inspection_overrides(settings))

    invocation = Invocation(
        arguments=arguments,
        binary=binary,
        cwd=launch_dir,
        module_dir=module_dir,
        env_overrides=env_overrides,
    )
    logger.info(
        "Invocation resolved",
        subcommand=arguments.subcommand.value,
        binary=binary,
        module_dir=str(module_dir),
        cwd=str(launch_dir),
        captured=invocation.captures_output,
        plan_file=arguments.plan_file,
    )
    return invocation


class InvocationRunner:
    """Runs one Invocation to completion and reports the exit status."""

    def __init__(
        self,
        settings: SupervisorSettings,
        *,
        console: BinaryIO | None = None,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize runner.

        Args:
            settings: Loaded supervisor settings
            console: Stream the transcript is mirrored to (sys.stdout.buffer)
            base_env: Environment passed to the child (os.environ)
        """
        self._settings = settings
        self._console = console
        self._base_env = base_env

    def _environment(self, overrides: Mapping[str, str | None]) -> dict[str, str]:
        base = os.environ if self._base_env is None else self._base_env
        return apply_env_overrides(base, overrides)

    def run(self, invocation: Invocation) -> InvocationResult:
        """Supervise the child and post-process its output.

        Raises:
            SpawnError: If the real binary cannot be started
        """
        supervisor = ProcessSupervisor(
            self._settings.relay,
            name=Path(invocation.binary).name,
            isolate_process_group=self._settings.isolate_process_group,
        )
        pipe: LogCapturePipe | None = None
        if invocation.captures_output:
            pipe = LogCapturePipe(
                invocation.module_dir / transcript_name(invocation.subcommand),
                console=self._console,
            )

        log_artifact = None
        plan_artifacts = None
        interrupted: SupervisionResult | None = None
        try:
            with supervisor:
                if pipe is not None:
                    pipe.start()
                    supervisor.spawn(
                        invocation.command_line,
                        env=self._environment(invocation.env_overrides),
                        cwd=invocation.cwd,
                        stdout=pipe.child_fd,
                        stderr=subprocess.STDOUT,
                    )
                    pipe.release_child_end()
                else:
                    supervisor.spawn(
                        invocation.command_line,
                        env=self._environment(invocation.env_overrides),
                        cwd=invocation.cwd,
                    )
                supervisor.wait()
                if pipe is not None:
                    log_artifact = pipe.wait()

                # Post-processing stays inside the relay: between inspection
                # calls a signal is recorded here, during one it is relayed
                if self._should_post_process(invocation, supervisor.result()):
                    try:
                        plan_artifacts = self._post_process(invocation)
                    except InspectionInterrupted as e:
                        interrupted = e.supervision
                        logger.warning(
                            "Plan artifact generation interrupted",
                            module_dir=str(invocation.module_dir),
                            received_signal=interrupted.received_signal,
                            exit_code=interrupted.exit_code,
                        )
        except SpawnError:
            if pipe is not None:
                pipe.wait()
            raise

        supervision = supervisor.result()
        if interrupted is not None:
            # The plan itself succeeded; the cancellation decides the exit status
            supervision = dataclasses.replace(
                supervision,
                exit_code=interrupted.exit_code,
                state=interrupted.state,
                received_signal=interrupted.received_signal,
                forced_kill=interrupted.forced_kill,
            )
        result = InvocationResult(
            supervision=supervision,
            log_artifact=log_artifact,
            plan_artifacts=plan_artifacts,
        )

        logger.info(
            "Invocation complete",
            subcommand=invocation.subcommand.value,
            exit_code=result.exit_code,
            state=supervision.state.value,
        )
        return result

    def _should_post_process(self, invocation: Invocation, supervision: SupervisionResult) -> bool:
        return (
            invocation.subcommand is Subcommand.PLAN
            and invocation.arguments.plan_file is not None
            and not supervision.signaled
            and supervision.exit_code == 0
        )

    def _post_process(self, invocation: Invocation) -> PlanArtifactsResult | None:
        plan_file = invocation.arguments.plan_file
        if plan_file is None:
            return None
        processor = PlanArtifactProcessor(
            invocation.binary,
            invocation.module_dir,
            cwd=invocation.cwd,
            env_overrides=_inspection_overrides(self._settings),
            base_env=self._base_env,
            fs_settle_seconds=self._settings.fs_settle_seconds,
            relay=self._settings.relay,
            isolate_process_group=self._settings.isolate_process_group,
        )
        try:
            return processor.process(plan_file)
        except OSError as e:
            # Artifact problems never turn a successful plan into a failure
            logger.error(
                "Plan artifact generation failed",
                module_dir=str(invocation.module_dir),
                error=str(e),
            )
            return None


def run_orchestrator(
    args: Sequence[str],
    settings: SupervisorSettings,
    *,
    cwd: Path | None = None,
    base_env: Mapping[str, str] | None = None,
) -> SupervisionResult:
    """Run the orchestrator itself under the signal relay.

    Arguments are passed through untouched and nothing is captured: the
    orchestrator's own output already reaches the CI log, and each module's
    IaC call is captured by its own wrapper.

    Raises:
        SpawnError: If the orchestrator binary cannot be started
    """
    orchestrator = settings.orchestrator
    binary = locate_binary(
        orchestrator.binary,
        override=orchestrator.binary_path,
        search_dirs=settings.search_dirs,
        real_suffix=settings.real_suffix,
        exclude=running_wrapper_paths(),
    )
    logger.info("Using orchestrator binary", binary=binary)

    supervisor = ProcessSupervisor(
        orchestrator.relay,
        name=Path(binary).name,
        isolate_process_group=settings.isolate_process_group,
    )
    with supervisor:
        supervisor.spawn(
            [binary, *args],
            env=dict(os.environ if base_env is None else base_env),
            cwd=cwd,
        )
        supervisor.wait()
    return supervisor.result()
