# src/iac_supervisor/engine/capture.py
"""Log capture pipe: fan-out of the child's combined output.

The child's stdout and stderr are joined onto one OS pipe. A drain thread
reads raw chunks as they arrive and writes each one to:

- the per-module transcript (append mode, created on the first chunk)
- the wrapper's own stdout, so the orchestrator and CI log still see it

There is no line buffering: a chunk is on disk as soon as the OS pipe hands
it over. The drain thread lives until the pipe reaches EOF, which happens
only after every process holding the write end has exited.
"""

import os
import signal
import sys
import threading
from pathlib import Path
from typing import BinaryIO

from iac_supervisor.contracts import ArtifactDescriptor
from iac_supervisor.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


def _default_console() -> BinaryIO | None:
    return getattr(sys.stdout, "buffer", None)


class LogCapturePipe:
    """Duplicating sink between a child's output descriptor and two destinations.

    Example:
        pipe = LogCapturePipe(module_dir / "plan_log.jsonl")
        proc = subprocess.Popen(cmd, stdout=pipe.child_fd, stderr=subprocess.STDOUT)
        pipe.start()
        pipe.release_child_end()
        proc.wait()
        artifact = pipe.wait()  # unbounded: returns once the pipe is drained

    Exactly one writer (the drain thread) ever touches the transcript.
    """

    def __init__(
        self,
        log_path: Path,
        *,
        console: BinaryIO | None = None,
        mirror_to_console: bool = True,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """Create the OS pipe. Nothing is read until start().

        Args:
            log_path: Transcript file (appended to, never truncated)
            console: Binary stream mirrored to (sys.stdout.buffer)
            mirror_to_console: Set False to write the transcript only
            chunk_size: Maximum bytes per read from the pipe
        """
        self.log_path = log_path
        self._console = (console or _default_console()) if mirror_to_console else None
        self._chunk_size = chunk_size
        self._read_fd, self._write_fd = os.pipe()
        self._thread: threading.Thread | None = None
        self._file: BinaryIO | None = None
        self._file_failed = False
        self.bytes_captured = 0

    @property
    def child_fd(self) -> int:
        """Write end of the pipe, to be passed as the child's stdout."""
        if self._write_fd < 0:
            raise RuntimeError("child end of the capture pipe was already released")
        return self._write_fd

    def start(self) -> None:
        """Start the drain thread."""
        if self._thread is not None:
            raise RuntimeError("capture pipe already started")
        self._thread = threading.Thread(
            target=self._drain,
            name=f"log-capture:{self.log_path.name}",
            daemon=True,
        )
        self._thread.start()

    def release_child_end(self) -> None:
        """Close the parent's copy of the write end.

        Must be called once the child holds its own copy, otherwise the
        drain thread never sees EOF.
        """
        if self._write_fd >= 0:
            os.close(self._write_fd)
            self._write_fd = -1

    def wait(self) -> ArtifactDescriptor | None:
        """Block until the pipe is fully drained and the transcript closed.

        Returns:
            Descriptor of the transcript, or None if the child wrote nothing
            and no transcript existed before
        """
        self.release_child_end()
        if self._thread is not None:
            self._thread.join()
        else:
            # Never started: nothing can have been written to the pipe by us
            self._close_read_end()
        if not self.log_path.exists():
            return None
        return ArtifactDescriptor.for_file(self.log_path)

    def _drain(self) -> None:
        # A closed console reader must surface as EPIPE on this thread's write,
        # not as a process-directed SIGPIPE that the relay would act on
        signal.pthread_sigmask(signal.SIG_BLOCK, {signal.SIGPIPE})
        try:
            while True:
                chunk = os.read(self._read_fd, self._chunk_size)
                if not chunk:
                    break
                self.bytes_captured += len(chunk)
                self._write_transcript(chunk)
                self._write_console(chunk)
        finally:
            self._close_read_end()
            if self._file is not None:
                self._file.close()
                self._file = None
            logger.debug(
                "Capture pipe drained",
                transcript=str(self.log_path),
                bytes_captured=self.bytes_captured,
            )

    def _close_read_end(self) -> None:
        if self._read_fd >= 0:
            os.close(self._read_fd)
            self._read_fd = -1

    def _write_transcript(self, chunk: bytes) -> None:
        if self._file_failed:
            return
        try:
            if self._file is None:
                self.log_path.parent.mkdir(parents=True, exist_ok=True)
                self._file = open(self.log_path, "ab")  # noqa: SIM115 - lifecycle managed by drain thread
            self._file.write(chunk)
            self._file.flush()
        except OSError as e:
            # The console leg keeps the child unblocked even when the disk is not writable
            self._file_failed = True
            logger.error("Transcript write failed", transcript=str(self.log_path), error=str(e))

    def _write_console(self, chunk: bytes) -> None:
        if self._console is None:
            return
        try:
            self._console.write(chunk)
            self._console.flush()
        except (BrokenPipeError, ValueError) as e:
            # Reader went away (or stream closed); the transcript still gets every byte
            console = self._console
            self._console = None
            logger.warning("Console mirror disabled", error=str(e))
            if isinstance(e, BrokenPipeError):
                _discard_console(console)


def _discard_console(console: BinaryIO) -> None:
    """Point a broken console descriptor at /dev/null.

    Bytes still sitting in the stream's buffer would otherwise fail again
    at interpreter shutdown and turn a clean exit into status 120.
    """
    try:
        devnull = os.open(os.devnull, os.O_WRONLY)
        try:
            os.dup2(devnull, console.fileno())
        finally:
            os.close(devnull)
    except (OSError, ValueError) as e:
        logger.debug("Console descriptor left as is", error=str(e))
