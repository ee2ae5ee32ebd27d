"""Process lifecycle controller with isolation and reliable termination.

claude-code-provider runtime module v0.1.0

This module provides:
- Cross-platform subprocess isolation (new session/process group)
- Concurrent stdin delivery, stdout reading and stderr draining
- A terminate-once latch resolving cancel/timeout/exit races
- Reliable termination (SIGTERM -> timeout -> SIGKILL) of the whole group
- Cancel-safe cleanup using asyncio.shield

Key design points:
- POSIX: start_new_session=True to create new process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- Stdout reads race against a stop event, so a child that ignores signals
  or leaks its stdout to a grandchild cannot wedge the reader
- Stderr is kept as a bounded tail and never interleaved with stdout
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

__all__ = [
    "IS_WINDOWS",
    "ProcessHandle",
    "ProcessRunner",
    "ProcessSpec",
    "StderrTail",
    "TerminationReason",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Default timeouts
DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL

# Default limits
DEFAULT_STDERR_LIMIT = 64 * 1024
DEFAULT_READ_SIZE = 64 * 1024
STDERR_DRAIN_GRACE = 0.5  # seconds to let stderr reach EOF after exit


class TerminationReason(str, Enum):
    """Why a process stopped. Exactly one reason is ever recorded per process."""

    EXITED = "exited"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    ABORTED = "aborted"


@dataclass(frozen=True)
class ProcessSpec:
    """Description of a subprocess to run.

    Attributes:
        argv: Command line arguments (first element is the executable)
        cwd: Working directory for the process (None = inherit)
        env: Environment variables (None = inherit parent)
        stdin_bytes: Optional bytes to write to stdin
        keep_stdin_open: Leave stdin open after writing (streaming input mode)
    """

    argv: list[str]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    stdin_bytes: bytes | None = None
    keep_stdin_open: bool = False


class StderrTail:
    """Bounded buffer keeping the most recent stderr bytes."""

    def __init__(self, limit: int = DEFAULT_STDERR_LIMIT) -> None:
        self._limit = limit
        self._buffer = bytearray()
        self.total_bytes = 0

    def append(self, chunk: bytes) -> None:
        self.total_bytes += len(chunk)
        self._buffer.extend(chunk)
        overflow = len(self._buffer) - self._limit
        if overflow > 0:
            del self._buffer[:overflow]

    @property
    def truncated(self) -> bool:
        return self.total_bytes > len(self._buffer)

    def text(self) -> str:
        return self._buffer.decode("utf-8", errors="replace")


class ProcessHandle:
    """A running CLI process owned by exactly one request.

    The handle owns three helper tasks (stdin writer, stderr drain and, once
    requested, the terminator) and a terminate-once latch. The first of
    ``request_termination()`` / ``mark_exited()`` to claim the latch decides
    the termination reason; later claims are no-ops.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        spec: ProcessSpec,
        *,
        term_timeout: float = DEFAULT_TERM_TIMEOUT,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
        stderr_limit: int = DEFAULT_STDERR_LIMIT,
    ) -> None:
        self._process = process
        self._spec = spec
        self._term_timeout = term_timeout
        self._kill_timeout = kill_timeout

        self._stop = asyncio.Event()
        self._reason: TerminationReason | None = None
        self._detail: str | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._terminate_task: asyncio.Task[None] | None = None
        self._closed = False
        self._done_callbacks: list[Callable[[ProcessHandle], None]] = []

        self.stderr_tail = StderrTail(stderr_limit)
        self._stderr_task: asyncio.Task[None] = asyncio.create_task(self._drain_stderr())
        self._writer_task: asyncio.Task[None] | None = None
        if spec.stdin_bytes is not None and process.stdin is not None:
            self._writer_task = asyncio.create_task(self._write_stdin(spec.stdin_bytes))

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def reason(self) -> TerminationReason | None:
        """Termination reason, None while the latch is unclaimed."""
        return self._reason

    @property
    def detail(self) -> str | None:
        """Free-form detail recorded with the termination reason."""
        return self._detail

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    @property
    def closed(self) -> bool:
        return self._closed

    def stderr_text(self) -> str:
        return self.stderr_tail.text()

    # -------------------------------------------------------------------------
    # Terminate-once latch
    # -------------------------------------------------------------------------

    def request_termination(
        self,
        reason: TerminationReason,
        detail: str | None = None,
    ) -> bool:
        """Claim the latch and start terminating the process group.

        Args:
            reason: CANCELLED, TIMEOUT or ABORTED
            detail: Optional detail (cancellation reason, protocol message)

        Returns:
            True if this call claimed the latch
        """
        if reason is TerminationReason.EXITED:
            raise ValueError("use mark_exited() for natural exit")
        if not self._claim(reason, detail):
            return False

        logger.debug(f"Termination requested pid={self.pid} reason={reason.value}")
        if self._process.returncode is None and self._terminate_task is None:
            self._terminate_task = asyncio.create_task(self._terminate_process())
        return True

    def mark_exited(self) -> TerminationReason:
        """Claim the latch for a natural exit; returns the winning reason."""
        self._claim(TerminationReason.EXITED, None)
        return self._reason or TerminationReason.EXITED

    def _claim(self, reason: TerminationReason, detail: str | None) -> bool:
        if self._reason is not None:
            return False
        self._reason = reason
        self._detail = detail
        self.disarm_timeout()
        self._stop.set()
        return True

    def arm_timeout(self, seconds: float | None) -> None:
        """Schedule TIMEOUT termination after ``seconds`` of wall-clock time."""
        if seconds is None or self._reason is not None:
            return
        self.disarm_timeout()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(
            seconds,
            self.request_termination,
            TerminationReason.TIMEOUT,
            f"{seconds:g}s",
        )

    def disarm_timeout(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # -------------------------------------------------------------------------
    # I/O
    # -------------------------------------------------------------------------

    async def read_chunk(self, size: int = DEFAULT_READ_SIZE) -> bytes | None:
        """Read the next stdout chunk.

        Returns:
            Bytes read, b"" at EOF, or None once termination was requested
        """
        if self._stop.is_set() or self._process.stdout is None:
            return None if self._stop.is_set() else b""

        read_task = asyncio.ensure_future(self._process.stdout.read(size))
        stop_task = asyncio.ensure_future(self._stop.wait())
        try:
            done, _ = await asyncio.wait(
                {read_task, stop_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (read_task, stop_task):
                if not task.done():
                    task.cancel()

        if read_task in done and not self._stop.is_set():
            return read_task.result()
        return None

    def close_stdin(self) -> None:
        """Close stdin (used when the prompt was sent as a streaming input message)."""
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            return
        if self._writer_task is not None and not self._writer_task.done():
            # Writer closes stdin itself once the pending bytes are flushed
            self._writer_task.add_done_callback(lambda _: self._close_stdin_now())
            return
        self._close_stdin_now()

    def _close_stdin_now(self) -> None:
        stdin = self._process.stdin
        if stdin is not None and not stdin.is_closing():
            try:
                stdin.close()
            except (BrokenPipeError, ConnectionResetError):
                pass

    async def _write_stdin(self, data: bytes) -> None:
        stdin = self._process.stdin
        if stdin is None:
            return
        try:
            stdin.write(data)
            await stdin.drain()
            if not self._spec.keep_stdin_open:
                stdin.close()
                await stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError) as e:
            # Child exited before reading its input; its exit status tells the story
            logger.debug(f"stdin closed early pid={self.pid}: {e}")

    async def _drain_stderr(self) -> None:
        stderr = self._process.stderr
        if stderr is None:
            return
        while True:
            chunk = await stderr.read(4096)
            if not chunk:
                break
            self.stderr_tail.append(chunk)

    # -------------------------------------------------------------------------
    # Reaping and cleanup
    # -------------------------------------------------------------------------

    async def wait(self) -> int:
        """Wait for the process to be reaped and return its exit code."""
        returncode = await self._process.wait()
        if self._terminate_task is not None:
            await asyncio.shield(self._terminate_task)
        return returncode

    def add_done_callback(self, callback: Callable[[ProcessHandle], None]) -> None:
        """Register a callback fired once after the handle is closed and reaped."""
        if self._closed:
            callback(self)
        else:
            self._done_callbacks.append(callback)

    async def aclose(self) -> None:
        """Kill the process if still alive, reap it and stop helper tasks.

        Shielded from caller cancellation; safe to call more than once.
        """
        if self._closed:
            return
        try:
            await asyncio.shield(self._do_cleanup())
        except asyncio.CancelledError:
            # Shield cancelled; still finish cleanup before propagating
            await self._do_cleanup()
            raise

    async def _do_cleanup(self) -> None:
        if self._closed:
            return

        if self._process.returncode is None:
            self.request_termination(TerminationReason.ABORTED, "handle closed")
        self.disarm_timeout()

        if self._terminate_task is not None:
            await self._terminate_task
        elif self._process.returncode is None:
            await self._terminate_process()

        if self._writer_task is not None and not self._writer_task.done():
            self._writer_task.cancel()
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass
        self._close_stdin_now()

        if not self._stderr_task.done():
            try:
                await asyncio.wait_for(asyncio.shield(self._stderr_task), STDERR_DRAIN_GRACE)
            except asyncio.TimeoutError:
                self._stderr_task.cancel()
                try:
                    await self._stderr_task
                except asyncio.CancelledError:
                    pass

        self._closed = True
        logger.debug(
            f"Subprocess closed pid={self.pid} returncode={self.returncode} "
            f"reason={self._reason.value if self._reason else None} "
            f"stderr_bytes={self.stderr_tail.total_bytes}"
        )

        callbacks, self._done_callbacks = self._done_callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception as e:
                logger.warning(f"Process done callback failed pid={self.pid}: {e}")

    async def _terminate_process(self) -> None:
        """Terminate subprocess gracefully, then forcefully if needed.

        Termination strategy:
        1. Send SIGTERM (or CTRL_BREAK_EVENT on Windows)
        2. Wait up to term_timeout for graceful exit
        3. If still running, send SIGKILL (or kill() on Windows)
        4. Wait up to kill_timeout for forced exit
        """
        process = self._process
        pid = process.pid
        if process.returncode is not None:
            return
        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            # Step 1: Graceful termination
            if IS_WINDOWS:
                self._windows_terminate()
            else:
                self._posix_signal(signal.SIGTERM)

            # Step 2: Wait for graceful exit
            try:
                await asyncio.wait_for(process.wait(), timeout=self._term_timeout)
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={process.returncode}"
                )
                return
            except asyncio.TimeoutError:
                pass

            # Step 3: Force kill
            logger.warning(f"Subprocess ignored SIGTERM, force killing pid={pid}")
            if IS_WINDOWS:
                self._windows_kill()
            else:
                self._posix_signal(signal.SIGKILL)

            # Step 4: Wait for forced exit
            try:
                await asyncio.wait_for(process.wait(), timeout=self._kill_timeout)
                logger.debug(
                    f"Subprocess killed pid={pid} "
                    f"returncode={process.returncode}"
                )
            except asyncio.TimeoutError:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
        except Exception as e:
            logger.warning(f"Error terminating subprocess pid={pid}: {e}")

    def _posix_signal(self, sig: signal.Signals) -> None:
        """Send a signal to the process group on POSIX systems."""
        process = self._process
        try:
            # Process group ID equals pid due to start_new_session
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, sig)
            logger.debug(f"Sent {sig.name} to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to direct signal: {e}")
            process.send_signal(sig)

    def _windows_terminate(self) -> None:
        """Send CTRL_BREAK_EVENT on Windows."""
        process = self._process
        try:
            # Works because the process was created with CREATE_NEW_PROCESS_GROUP
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            process.terminate()

    def _windows_kill(self) -> None:
        """Force kill on Windows."""
        try:
            self._process.kill()
            logger.debug(f"Called kill() on pid={self._process.pid}")
        except ProcessLookupError:
            pass

    def __repr__(self) -> str:
        return (
            f"ProcessHandle(pid={self.pid}, returncode={self.returncode}, "
            f"reason={self._reason.value if self._reason else None})"
        )


@dataclass
class ProcessRunner:
    """Cross-platform process spawner with isolation and reliable termination.

    Example:
        runner = ProcessRunner()
        handle = await runner.spawn(ProcessSpec(
            argv=["claude", "-p", "--output-format", "stream-json", "--verbose"],
            stdin_bytes=b"prompt text",
        ))
        try:
            while chunk := await handle.read_chunk():
                feed(chunk)
            await handle.wait()
            handle.mark_exited()
        finally:
            await handle.aclose()
    """

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    stderr_limit: int = DEFAULT_STDERR_LIMIT

    async def spawn(self, spec: ProcessSpec) -> ProcessHandle:
        """Start the subprocess in an isolated process group/session.

        Raises:
            OSError: If the executable cannot be started (missing, not executable)
        """
        kwargs = self._build_subprocess_kwargs(spec)

        # DEVNULL instead of None keeps the child off the parent's stdin
        process = await asyncio.create_subprocess_exec(
            *spec.argv,
            stdin=asyncio.subprocess.PIPE if spec.stdin_bytes is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            **kwargs,
        )

        logger.debug(
            f"Started subprocess pid={process.pid} "
            f"argv={spec.argv[0]} cwd={spec.cwd}"
        )

        return ProcessHandle(
            process,
            spec,
            term_timeout=self.term_timeout,
            kill_timeout=self.kill_timeout,
            stderr_limit=self.stderr_limit,
        )

    def _build_subprocess_kwargs(self, spec: ProcessSpec) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs."""
        kwargs: dict[str, Any] = {}

        if spec.cwd is not None:
            kwargs["cwd"] = spec.cwd

        if spec.env is not None:
            kwargs["env"] = dict(spec.env)

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # Equivalent to setsid
            kwargs["start_new_session"] = True

        return kwargs
