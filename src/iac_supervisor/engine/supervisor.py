# src/iac_supervisor/engine/supervisor.py
"""Process supervisor and signal relay.

State machine: idle -> spawned -> running -> {exited, signaled}

Terragrunt holds termination signals for a fixed delay before forwarding
them to its children, and CI runners escalate INT -> TERM -> KILL within
seconds. Without a relay the IaC tool is usually SIGKILLed before it ever
sees the interrupt, leaving state locks behind. The supervisor therefore
installs handlers for every termination-class signal and, on receipt:

1. relays the same signal to the child at once
2. waits up to the grace window for the child to exit
3. optionally sends an escalation signal and waits again
4. sends SIGKILL (exactly once) if the child is still alive

The wrapper then exits with 128 + the received signal number.

Signal handlers run in the main thread. The child handle is assigned once,
right after spawn, and only read afterwards.
"""

import os
import signal
import subprocess
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from types import FrameType, TracebackType
from typing import IO, Any

from iac_supervisor.contracts import SpawnError, SupervisionResult, SupervisorState
from iac_supervisor.core.config import RelaySettings
from iac_supervisor.core.logging import get_logger

logger = get_logger(__name__)

SIGNAL_EXIT_BASE = 128

KillFn = Callable[[int, int], None]

_Handler = Callable[[int, FrameType | None], Any] | int | signal.Handlers | None


def signal_exit_code(signum: int) -> int:
    """Conventional exit status for termination by signal N."""
    return SIGNAL_EXIT_BASE + signum


def exit_code_from_returncode(returncode: int) -> int:
    """Map a Popen return code to a shell-style exit status.

    Negative return codes (child killed by signal N) become 128 + N.
    """
    if returncode < 0:
        return signal_exit_code(-returncode)
    return returncode


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


class ProcessSupervisor:
    """Owns one child process and relays termination signals to it.

    Example:
        supervisor = ProcessSupervisor(settings.relay, name="terraform")
        with supervisor:  # handlers installed
            supervisor.spawn([binary, "plan", "-out=tfplan"], stdout=pipe.child_fd)
            supervisor.wait()
            pipe.wait()
        result = supervisor.result()
    """

    def __init__(
        self,
        relay: RelaySettings,
        *,
        name: str = "child",
        isolate_process_group: bool = True,
        kill: KillFn = os.kill,
        killpg: KillFn = os.killpg,
    ) -> None:
        """Initialize in the idle state.

        Args:
            relay: Signals to intercept plus grace/escalation timing
            name: Label used in diagnostics
            isolate_process_group: Start the child in its own session, so
                only the relay (not the orchestrator's group-wide signals)
                reaches it
            kill: Signal delivery to a pid (os.kill)
            killpg: Signal delivery to a process group (os.killpg)
        """
        self._relay_settings = relay
        self._name = name
        self._isolate = isolate_process_group
        self._kill = kill
        self._killpg = killpg

        self._state = SupervisorState.IDLE
        self.transitions: list[SupervisorState] = [SupervisorState.IDLE]
        self._proc: subprocess.Popen[bytes] | None = None
        self._child_pgid: int | None = None
        self._returncode: int | None = None

        self._received_signal: int | None = None
        self._relayed = False
        self._handling = False
        self._forced_kill = False

        self._previous_handlers: dict[int, _Handler] = {}

    # === Lifecycle ===

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def child_pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def received_signal(self) -> int | None:
        return self._received_signal

    @property
    def forced_kill(self) -> bool:
        return self._forced_kill

    def _transition(self, state: SupervisorState) -> None:
        logger.debug(
            "Supervisor state change",
            child=self._name,
            previous=self._state.value,
            state=state.value,
        )
        self._state = state
        self.transitions.append(state)

    def __enter__(self) -> "ProcessSupervisor":
        self.install_handlers()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.restore_handlers()

    def install_handlers(self) -> None:
        """Install on_signal for every configured signal.

        Only possible from the main thread; elsewhere the relay is disabled
        and a warning is logged.
        """
        if threading.current_thread() is not threading.main_thread():
            logger.warning("Signal relay unavailable outside the main thread", child=self._name)
            return
        for signum in self._relay_settings.signal_numbers:
            if signum in self._previous_handlers:
                continue
            self._previous_handlers[signum] = signal.signal(signum, self.on_signal)
        logger.debug(
            "Signal handlers installed",
            child=self._name,
            signals=list(self._relay_settings.signals),
        )

    def restore_handlers(self) -> None:
        """Put back whatever handlers were active before install_handlers()."""
        for signum, previous in self._previous_handlers.items():
            signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
        self._previous_handlers.clear()

    def spawn(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
        stdin: int | IO[Any] | None = None,
        stdout: int | IO[Any] | None = None,
        stderr: int | IO[Any] | None = None,
    ) -> None:
        """Launch the child: idle -> spawned -> running.

        If a handled signal already arrived during startup, nothing is
        launched and the supervisor goes straight to signaled.

        Raises:
            SpawnError: If the binary is missing or not executable
        """
        if self._state is not SupervisorState.IDLE:
            raise RuntimeError(f"spawn() called in state {self._state.value}")

        if self._received_signal is not None:
            logger.warning(
                "Signal received before spawn, not starting child",
                child=self._name,
                signal=_signal_name(self._received_signal),
            )
            self._transition(SupervisorState.SIGNALED)
            return

        try:
            self._proc = subprocess.Popen(
                list(command),
                env=dict(env) if env is not None else None,
                cwd=cwd,
                stdin=stdin,
                stdout=stdout,
                stderr=stderr,
                start_new_session=self._isolate,
            )
        except OSError as e:
            raise SpawnError.from_os_error(command[0], e) from e

        self._transition(SupervisorState.SPAWNED)
        try:
            self._child_pgid = os.getpgid(self._proc.pid)
        except ProcessLookupError:
            self._child_pgid = None
        logger.info(
            "Child started",
            child=self._name,
            child_pid=self._proc.pid,
            child_pgid=self._child_pgid,
            command=list(command),
        )
        self._transition(SupervisorState.RUNNING)

        # A signal that landed between Popen returning and the handle being
        # recorded was only queued; relay it now
        if self._received_signal is not None and not self._relayed:
            self._handle(self._received_signal)

    def wait(self) -> int | None:
        """Block until the child has been reaped.

        Returns:
            The child's Popen return code, or None if nothing was spawned
        """
        if self._proc is None:
            return None
        self._returncode = self._proc.wait()
        if self._state is SupervisorState.RUNNING:
            self._transition(SupervisorState.EXITED)
        logger.info(
            "Child finished",
            child=self._name,
            child_pid=self._proc.pid,
            returncode=self._returncode,
            state=self._state.value,
        )
        return self._returncode

    def result(self) -> SupervisionResult:
        """Final outcome; exit_code is what the wrapper must exit with."""
        if self._received_signal is not None:
            exit_code = signal_exit_code(self._received_signal)
        elif self._returncode is not None:
            exit_code = exit_code_from_returncode(self._returncode)
        else:
            raise RuntimeError("result() called before the child finished")
        return SupervisionResult(
            exit_code=exit_code,
            state=self._state,
            child_pid=self.child_pid,
            child_returncode=self._returncode,
            received_signal=self._received_signal,
            forced_kill=self._forced_kill,
        )

    # === Signal relay ===

    def on_signal(self, signum: int, frame: FrameType | None = None) -> None:
        """Handler registered for every relayed signal.

        The child is signalled before anything is logged. A signal that
        arrives while a previous one is still being handled is relayed
        straight away and does not start a second grace window.
        A signal received after the child has exited still decides the
        wrapper's exit status.
        """
        if self._handling:
            self._send(signum)
            self._log_received(signum, nested=True)
            return

        if self._received_signal is None:
            self._received_signal = signum

        if self._proc is None:
            self._log_received(signum)
            logger.warning("No child process to forward signal to yet", child=self._name)
            return

        self._handle(signum)

    def _log_received(self, signum: int, *, nested: bool = False) -> None:
        logger.warning(
            "Received signal",
            child=self._name,
            signal=_signal_name(signum),
            signum=signum,
            child_pid=self.child_pid,
            during_grace=nested,
        )

    def _handle(self, signum: int) -> None:
        """Relay, await grace, escalate: one unit per received signal."""
        self._handling = True
        try:
            self._relayed = True
            self._send(signum)
            self._log_received(signum)

            settings = self._relay_settings
            exited = self._await_exit(settings.grace_seconds)

            escalation = settings.escalation_signal_number
            if not exited and escalation is not None:
                logger.warning(
                    "Child still running after grace window, escalating",
                    child=self._name,
                    signal=_signal_name(escalation),
                    grace_seconds=settings.grace_seconds,
                )
                self._send(escalation)
                exited = self._await_exit(settings.escalation_grace_seconds)

            if exited:
                logger.info("Child terminated gracefully", child=self._name)
            else:
                self._force_kill()
        finally:
            self._handling = False

        if self._state is not SupervisorState.SIGNALED:
            self._transition(SupervisorState.SIGNALED)

    def _send(self, signum: int) -> None:
        """Deliver signum to the child; fall back to its process group.

        The group is only signalled when the child itself is gone (its
        detached descendants may still be alive), and never when it is the
        wrapper's own group.
        """
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        try:
            self._kill(proc.pid, signum)
            logger.info(
                "Forwarded signal to child",
                child=self._name,
                signal=_signal_name(signum),
                child_pid=proc.pid,
            )
            return
        except ProcessLookupError:
            logger.debug("Child already gone, trying process group", child_pid=proc.pid)
        self._send_group(signum)

    def _send_group(self, signum: int) -> None:
        pgid = self._child_pgid
        if pgid is None or pgid == os.getpgrp():
            return
        try:
            self._killpg(pgid, signum)
            logger.info(
                "Forwarded signal to child process group",
                child=self._name,
                signal=_signal_name(signum),
                child_pgid=pgid,
            )
        except (ProcessLookupError, PermissionError) as e:
            logger.debug("Process group signal failed", child_pgid=pgid, error=str(e))

    def _force_kill(self) -> None:
        if self._forced_kill:
            return
        self._forced_kill = True
        logger.error(
            "Child still running after grace window, sending SIGKILL",
            child=self._name,
            child_pid=self.child_pid,
            grace_seconds=self._relay_settings.grace_seconds,
        )
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        try:
            self._kill(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        # Descendants holding the capture pipe open would block the drain forever
        self._send_group(signal.SIGKILL)

    def _await_exit(self, timeout: float) -> bool:
        """Poll until the child exits or timeout elapses."""
        poll_interval = self._relay_settings.poll_interval_seconds
        deadline = time.monotonic() + timeout
        logger.info("Waiting for child to exit", child=self._name, timeout_seconds=timeout)
        while True:
            if self._child_exited():
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            time.sleep(min(poll_interval, remaining))

    def _child_exited(self) -> bool:
        """Non-reaping exit check.

        WNOWAIT leaves the zombie in place so the main thread's Popen.wait()
        still collects the real exit status. Popen.poll() cannot be used here:
        the interrupted wait() holds its lock.
        """
        proc = self._proc
        if proc is None:
            return True
        if proc.returncode is not None:
            return True
        try:
            info = os.waitid(os.P_PID, proc.pid, os.WEXITED | os.WNOHANG | os.WNOWAIT)
        except ChildProcessError:
            return True
        return info is not None
