"""ProcessRunner unit tests.

Test coverage:
- Basic process execution (stdout reading)
- Stdin writing
- Working directory and environment
- Process isolation (new session/process group)
- Terminate-once latch (cancel, timeout, natural exit races)
- SIGTERM -> SIGKILL escalation
- Stderr tail handling
- Cleanup behavior (idempotent, shielded from cancellation)
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
import time
from pathlib import Path

import pytest

from claude_code_provider.runtime.process_runner import (
    IS_WINDOWS,
    ProcessHandle,
    ProcessRunner,
    ProcessSpec,
    StderrTail,
    TerminationReason,
)

pytestmark = pytest.mark.skipif(IS_WINDOWS, reason="POSIX process groups")

PYTHON = sys.executable


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """Create temporary workspace directory."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture
def runner() -> ProcessRunner:
    """Create ProcessRunner instance with short timeouts for testing."""
    return ProcessRunner(term_timeout=0.5, kill_timeout=0.3)


async def read_all(handle: ProcessHandle) -> bytes:
    chunks = []
    while True:
        chunk = await handle.read_chunk()
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


def python_spec(code: str, **kwargs) -> ProcessSpec:
    return ProcessSpec(argv=[PYTHON, "-c", code], **kwargs)


def pid_alive(pid: int) -> bool:
    # Orphaned zombies may linger when no init reaps them
    stat = Path(f"/proc/{pid}/stat")
    if stat.exists():
        try:
            return stat.read_text().rsplit(")", 1)[1].split()[0] != "Z"
        except OSError:
            return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


# =============================================================================
# Basic Execution Tests
# =============================================================================


class TestBasicExecution:
    """Test basic process execution."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_simple_command(self, runner: ProcessRunner):
        handle = await runner.spawn(ProcessSpec(argv=["echo", "hello"]))
        try:
            output = await read_all(handle)
            assert await handle.wait() == 0
            assert handle.mark_exited() is TerminationReason.EXITED
        finally:
            await handle.aclose()

        assert output.decode().strip() == "hello"
        assert handle.closed

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_stdin_delivery(self, runner: ProcessRunner):
        handle = await runner.spawn(ProcessSpec(argv=["cat"], stdin_bytes="prompt ✓".encode()))
        try:
            output = await read_all(handle)
            await handle.wait()
        finally:
            await handle.aclose()
        assert output.decode() == "prompt ✓"

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_no_stdin_is_devnull(self, runner: ProcessRunner):
        handle = await runner.spawn(python_spec("import sys; print(repr(sys.stdin.read()))"))
        try:
            output = await read_all(handle)
            await handle.wait()
        finally:
            await handle.aclose()
        assert output.decode().strip() == "''"

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_working_directory(self, temp_workspace: Path, runner: ProcessRunner):
        handle = await runner.spawn(ProcessSpec(argv=["pwd"], cwd=temp_workspace))
        try:
            output = await read_all(handle)
            await handle.wait()
        finally:
            await handle.aclose()
        assert Path(output.decode().strip()).resolve() == temp_workspace.resolve()

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_environment(self, runner: ProcessRunner):
        env = {**os.environ, "CCP_TEST_VALUE": "42"}
        handle = await runner.spawn(
            python_spec("import os; print(os.environ['CCP_TEST_VALUE'])", env=env)
        )
        try:
            output = await read_all(handle)
            await handle.wait()
        finally:
            await handle.aclose()
        assert output.decode().strip() == "42"

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_nonzero_exit(self, runner: ProcessRunner):
        handle = await runner.spawn(python_spec("import sys; sys.exit(3)"))
        try:
            await read_all(handle)
            assert await handle.wait() == 3
        finally:
            await handle.aclose()

    @pytest.mark.asyncio
    async def test_missing_executable(self, runner: ProcessRunner, tmp_path: Path):
        with pytest.raises(OSError):
            await runner.spawn(ProcessSpec(argv=[str(tmp_path / "does-not-exist")]))


# =============================================================================
# Isolation Tests
# =============================================================================


class TestIsolation:
    """Test process group isolation."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_new_session(self, runner: ProcessRunner):
        handle = await runner.spawn(python_spec("import time; time.sleep(5)"))
        try:
            assert os.getsid(handle.pid) == handle.pid
            assert os.getpgid(handle.pid) != os.getpgid(0)
        finally:
            await handle.aclose()

    def test_subprocess_kwargs(self, runner: ProcessRunner, temp_workspace: Path):
        kwargs = runner._build_subprocess_kwargs(
            ProcessSpec(argv=["x"], cwd=temp_workspace, env={"A": "1"})
        )
        assert kwargs["start_new_session"] is True
        assert kwargs["cwd"] == temp_workspace
        assert kwargs["env"] == {"A": "1"}

    def test_subprocess_kwargs_inherit(self, runner: ProcessRunner):
        kwargs = runner._build_subprocess_kwargs(ProcessSpec(argv=["x"]))
        assert "cwd" not in kwargs
        assert "env" not in kwargs


# =============================================================================
# Termination Tests
# =============================================================================


class TestTermination:
    """Test the terminate-once latch and escalation."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_cancel_stops_reader(self, runner: ProcessRunner):
        handle = await runner.spawn(python_spec("import time; time.sleep(30)"))
        try:
            reader = asyncio.create_task(handle.read_chunk())
            await asyncio.sleep(0.1)
            assert handle.request_termination(TerminationReason.CANCELLED, "user")

            assert await asyncio.wait_for(reader, 2.0) is None
            await asyncio.wait_for(handle.wait(), 2.0)
            assert handle.reason is TerminationReason.CANCELLED
            assert handle.detail == "user"
        finally:
            await handle.aclose()
        assert handle.returncode is not None

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_first_claim_wins(self, runner: ProcessRunner):
        handle = await runner.spawn(python_spec("import time; time.sleep(30)"))
        try:
            assert handle.request_termination(TerminationReason.TIMEOUT)
            assert not handle.request_termination(TerminationReason.CANCELLED)
            await handle.wait()
            assert handle.mark_exited() is TerminationReason.TIMEOUT
        finally:
            await handle.aclose()

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_natural_exit_wins_over_late_cancel(self, runner: ProcessRunner):
        handle = await runner.spawn(ProcessSpec(argv=["true"]))
        try:
            await read_all(handle)
            await handle.wait()
            assert handle.mark_exited() is TerminationReason.EXITED
            assert not handle.request_termination(TerminationReason.CANCELLED)
        finally:
            await handle.aclose()

    @pytest.mark.asyncio
    async def test_exited_is_not_a_request(self, runner: ProcessRunner):
        handle = await runner.spawn(ProcessSpec(argv=["true"]))
        try:
            with pytest.raises(ValueError):
                handle.request_termination(TerminationReason.EXITED)
        finally:
            await handle.aclose()

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_timeout_fires(self, runner: ProcessRunner):
        handle = await runner.spawn(python_spec("import time; time.sleep(30)"))
        try:
            handle.arm_timeout(0.2)
            assert await asyncio.wait_for(handle.read_chunk(), 3.0) is None
            await handle.wait()
            assert handle.reason is TerminationReason.TIMEOUT
        finally:
            await handle.aclose()

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_disarmed_timeout_does_not_fire(self, runner: ProcessRunner):
        handle = await runner.spawn(python_spec("import time; time.sleep(0.3)"))
        try:
            handle.arm_timeout(0.1)
            handle.disarm_timeout()
            await read_all(handle)
            await handle.wait()
            assert handle.mark_exited() is TerminationReason.EXITED
        finally:
            await handle.aclose()

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_escalates_to_sigkill(self, runner: ProcessRunner):
        code = (
            "import signal, sys, time\n"
            "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
            "print('ready', flush=True)\n"
            "time.sleep(30)\n"
        )
        handle = await runner.spawn(python_spec(code))
        try:
            assert (await handle.read_chunk()).strip() == b"ready"
            start = time.monotonic()
            handle.request_termination(TerminationReason.CANCELLED)
            returncode = await asyncio.wait_for(handle.wait(), 3.0)
            elapsed = time.monotonic() - start
        finally:
            await handle.aclose()

        assert returncode == -signal.SIGKILL
        assert elapsed < runner.term_timeout + runner.kill_timeout + 1.0

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_group_kill_reaches_grandchild(self, runner: ProcessRunner):
        handle = await runner.spawn(
            ProcessSpec(argv=["sh", "-c", "sleep 30 & echo $!; wait"])
        )
        grandchild = int((await handle.read_chunk()).decode().strip())
        assert pid_alive(grandchild)

        await handle.aclose()

        deadline = time.monotonic() + 3.0
        while pid_alive(grandchild) and time.monotonic() < deadline:
            await asyncio.sleep(0.05)
        assert not pid_alive(grandchild)


# =============================================================================
# Stderr Tests
# =============================================================================


class TestStderr:
    """Test stderr draining."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_stderr_kept_separate(self, runner: ProcessRunner):
        code = "import sys; print('out'); print('err', file=sys.stderr)"
        handle = await runner.spawn(python_spec(code))
        try:
            output = await read_all(handle)
            await handle.wait()
        finally:
            await handle.aclose()
        assert output.decode().strip() == "out"
        assert handle.stderr_text().strip() == "err"

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_large_stderr_does_not_block(self):
        runner = ProcessRunner(term_timeout=0.5, kill_timeout=0.3, stderr_limit=1024)
        code = "import sys; sys.stderr.write('x' * 500000); print('done')"
        handle = await runner.spawn(python_spec(code))
        try:
            output = await read_all(handle)
            await handle.wait()
        finally:
            await handle.aclose()
        assert output.decode().strip() == "done"
        assert handle.stderr_tail.truncated
        assert len(handle.stderr_text()) == 1024
        assert handle.stderr_tail.total_bytes == 500000

    def test_tail_keeps_latest_bytes(self):
        tail = StderrTail(limit=4)
        tail.append(b"abc")
        tail.append(b"defg")
        assert tail.text() == "defg"
        assert tail.truncated
        assert tail.total_bytes == 7


# =============================================================================
# Cleanup Tests
# =============================================================================


class TestCleanup:
    """Test cleanup behaviour."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_aclose_kills_live_process(self, runner: ProcessRunner):
        handle = await runner.spawn(python_spec("import time; time.sleep(30)"))
        await handle.aclose()
        assert handle.returncode is not None
        assert handle.reason is TerminationReason.ABORTED

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_aclose_idempotent_and_callback_once(self, runner: ProcessRunner):
        handle = await runner.spawn(ProcessSpec(argv=["true"]))
        calls: list[ProcessHandle] = []
        handle.add_done_callback(calls.append)

        await handle.aclose()
        await handle.aclose()
        assert calls == [handle]

        late: list[ProcessHandle] = []
        handle.add_done_callback(late.append)
        assert late == [handle]

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_cleanup_survives_cancellation(self, runner: ProcessRunner):
        handle = await runner.spawn(python_spec("import time; time.sleep(30)"))

        async def consume() -> None:
            try:
                await handle.read_chunk()
            finally:
                await handle.aclose()

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert handle.closed
        assert handle.returncode is not None
