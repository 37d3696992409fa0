"""Tests for the command batch session engine."""

import asyncio
import gc
from types import SimpleNamespace

import asyncssh
import pytest
from pydantic import ValidationError

from netconfig.ssh.session import (
    PTY_ECHO,
    Session,
    SessionOptions,
    SessionState,
)
from netconfig.utils.errors import (
    ExitStatusError,
    ReadError,
    SessionSetupError,
    SessionTimeoutError,
    TransmissionError,
)


class FakeWriter:
    """Stand-in for the shell's stdin stream."""

    def __init__(self, process, fail_on=None):
        self._process = process
        self._fail_on = fail_on
        self.written = []

    def write(self, data: bytes) -> None:
        line = data.decode()
        if self._fail_on is not None and line == f"{self._fail_on}\n":
            raise BrokenPipeError("channel closed")
        self.written.append(line)
        self._process.received(line)

    async def drain(self) -> None:
        await asyncio.sleep(0)


class FakeProcess:
    """Stand-in for asyncssh.SSHClientProcess running a shell.

    The shell exits when it receives "exit", or right away when
    exit_immediately is set.
    """

    def __init__(
        self,
        stdout=b"",
        stderr=b"",
        exit_status=0,
        echo=False,
        exit_immediately=False,
        delay=0.0,
        fail_on=None,
        wait_error=None,
    ):
        self.stdin = FakeWriter(self, fail_on=fail_on)
        self._stdout = bytearray(stdout)
        self._stderr = stderr
        self._exit_status = exit_status
        self._echo = echo
        self._delay = delay
        self._wait_error = wait_error
        self._exited = asyncio.Event()
        if exit_immediately:
            self._exited.set()
        self.closed = False
        self.wait_cancelled = False

    def received(self, line: str) -> None:
        if self._echo:
            self._stdout += line.encode()
        if line.strip() == "exit":
            self._exited.set()

    async def wait(self):
        try:
            await self._exited.wait()
            await asyncio.sleep(self._delay)
        except asyncio.CancelledError:
            self.wait_cancelled = True
            raise
        if self._wait_error is not None:
            raise self._wait_error
        return SimpleNamespace(
            stdout=bytes(self._stdout),
            stderr=self._stderr,
            exit_status=self._exit_status,
        )

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    """Stand-in for asyncssh.SSHClientConnection."""

    def __init__(self, process=None, error=None):
        self.process = process
        self.error = error
        self.kwargs = None

    async def create_process(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.process


class TestSessionOptions:
    """Tests for SessionOptions defaults and validation."""

    def test_defaults(self):
        """Should default to a 5 second deadline without a pty."""
        options = SessionOptions()
        assert options.timeout == 5.0
        assert options.pty is False
        assert options.term_type == "vt100"
        assert options.check_exit_status is False

    def test_rejects_non_positive_timeout(self):
        """Deadline must be positive."""
        with pytest.raises(ValidationError):
            SessionOptions(timeout=0)


class TestRunCompletion:
    """Tests for batches where the shell exits in time."""

    @pytest.mark.asyncio
    async def test_returns_output_exactly(self):
        """Shell printing ok and exiting should yield exactly that output."""
        process = FakeProcess(stdout=b"ok\n", exit_immediately=True)
        session = Session(FakeConnection(process))

        output = await session.run([])

        assert output == b"ok\n"
        assert session.state == SessionState.COMPLETED

    @pytest.mark.asyncio
    async def test_echo_in_submission_order(self):
        """Echoed commands should appear in the order they were sent."""
        process = FakeProcess(echo=True)
        commands = ["conf t", "int Gi1/0/1", "description uplink", "end", "exit"]

        output = await Session(FakeConnection(process)).run(commands)

        positions = [output.index(f"{c}\n".encode()) for c in commands]
        assert positions == sorted(positions)

    @pytest.mark.asyncio
    async def test_commands_newline_terminated(self):
        """Each command should be written once, followed by a newline."""
        process = FakeProcess()
        await Session(FakeConnection(process)).run(["show version", "exit"])
        assert process.stdin.written == ["show version\n", "exit\n"]

    @pytest.mark.asyncio
    async def test_stdout_before_stderr(self):
        """Stdout content should precede stderr content."""
        process = FakeProcess(stdout=b"out\n", stderr=b"err\n", exit_immediately=True)
        output = await Session(FakeConnection(process)).run([])
        assert output == b"out\nerr\n"

    @pytest.mark.asyncio
    async def test_closes_process(self):
        """Channel should be released after normal completion."""
        process = FakeProcess(exit_immediately=True)
        await Session(FakeConnection(process)).run([])
        assert process.closed

    @pytest.mark.asyncio
    async def test_requests_binary_shell(self):
        """Shell should be opened without a command and without decoding."""
        conn = FakeConnection(FakeProcess(exit_immediately=True))
        await Session(conn).run([])
        assert conn.kwargs == {"encoding": None}

    @pytest.mark.asyncio
    async def test_pty_request(self):
        """Pty option should request a terminal with echo disabled."""
        conn = FakeConnection(FakeProcess(exit_immediately=True))
        options = SessionOptions(pty=True, term_type="xterm")

        await Session(conn, options).run([])

        assert conn.kwargs["term_type"] == "xterm"
        assert conn.kwargs["term_modes"][PTY_ECHO] == 0


class TestRunTimeout:
    """Tests for the completion deadline."""

    @pytest.mark.asyncio
    async def test_slow_shell_times_out(self):
        """Shell exiting after the deadline should yield a timeout."""
        process = FakeProcess(stdout=b"partial\n", delay=10)
        session = Session(FakeConnection(process), SessionOptions(timeout=0.05))

        with pytest.raises(SessionTimeoutError) as exc_info:
            await session.run(["show run", "exit"])

        assert exc_info.value.timeout == 0.05
        assert session.state == SessionState.TIMED_OUT
        assert process.closed

    @pytest.mark.asyncio
    async def test_shell_never_exits(self):
        """Shell waiting for more input should time out."""
        process = FakeProcess()
        session = Session(FakeConnection(process), SessionOptions(timeout=0.05))

        with pytest.raises(SessionTimeoutError):
            await session.run(["show run"])

    @pytest.mark.asyncio
    async def test_exit_wait_cancelled(self):
        """Losing exit wait should be cancelled, not left running."""
        process = FakeProcess(delay=10)
        session = Session(FakeConnection(process), SessionOptions(timeout=0.05))

        with pytest.raises(SessionTimeoutError):
            await session.run(["exit"])
        await asyncio.sleep(0.01)

        assert process.wait_cancelled


class TestRunFailures:
    """Tests for setup, write and read failures."""

    @pytest.mark.asyncio
    async def test_channel_refused(self):
        """Refused channel should be a setup error at channel-open."""
        conn = FakeConnection(error=asyncssh.ChannelOpenError(2, "refused"))
        session = Session(conn)

        with pytest.raises(SessionSetupError) as exc_info:
            await session.run(["show version"])

        assert exc_info.value.stage == "channel-open"
        assert isinstance(exc_info.value.__cause__, asyncssh.ChannelOpenError)
        assert session.state == SessionState.FAILED

    @pytest.mark.asyncio
    async def test_shell_start_failure(self):
        """Other failures while starting should be reported at shell stage."""
        conn = FakeConnection(error=ConnectionResetError("reset"))

        with pytest.raises(SessionSetupError) as exc_info:
            await Session(conn).run(["show version"])

        assert exc_info.value.stage == "shell"

    @pytest.mark.asyncio
    async def test_closed_connection(self):
        """Missing connection should fail instead of hanging."""
        with pytest.raises(SessionSetupError, match="closed"):
            await Session(None).run(["show version"])

    @pytest.mark.asyncio
    async def test_write_failure_names_command(self):
        """Write failure should identify the failing command."""
        process = FakeProcess(fail_on="int Gi1/0/2")
        session = Session(FakeConnection(process))

        with pytest.raises(TransmissionError) as exc_info:
            await session.run(["int Gi1/0/1", "int Gi1/0/2", "exit"])

        assert exc_info.value.command == "int Gi1/0/2"
        assert process.stdin.written == ["int Gi1/0/1\n"]
        assert session.state == SessionState.FAILED
        assert process.closed

    @pytest.mark.asyncio
    async def test_read_failure(self):
        """Failure collecting output should be a read error."""
        process = FakeProcess(
            exit_immediately=True,
            wait_error=ConnectionResetError("reset"),
        )

        with pytest.raises(ReadError):
            await Session(FakeConnection(process)).run([])

        assert process.closed


class TestExitStatus:
    """Tests for exit status handling."""

    @pytest.mark.asyncio
    async def test_ignored_by_default(self):
        """Non-zero exit status should not fail the batch by default."""
        process = FakeProcess(stdout=b"% Invalid\n", exit_status=1, exit_immediately=True)
        output = await Session(FakeConnection(process)).run([])
        assert output == b"% Invalid\n"

    @pytest.mark.asyncio
    async def test_checked_non_zero(self):
        """Checked non-zero exit status should raise with the output."""
        process = FakeProcess(stdout=b"% Invalid\n", exit_status=1, exit_immediately=True)
        options = SessionOptions(check_exit_status=True)

        with pytest.raises(ExitStatusError) as exc_info:
            await Session(FakeConnection(process), options).run([])

        assert exc_info.value.exit_status == 1
        assert exc_info.value.output == b"% Invalid\n"

    @pytest.mark.asyncio
    async def test_checked_missing(self):
        """Checked missing exit status should raise."""
        process = FakeProcess(exit_status=None, exit_immediately=True)
        options = SessionOptions(check_exit_status=True)

        with pytest.raises(ExitStatusError) as exc_info:
            await Session(FakeConnection(process), options).run([])

        assert exc_info.value.exit_status is None

    @pytest.mark.asyncio
    async def test_checked_zero(self):
        """Checked zero exit status should return output."""
        process = FakeProcess(stdout=b"ok\n", exit_immediately=True)
        options = SessionOptions(check_exit_status=True)
        assert await Session(FakeConnection(process), options).run([]) == b"ok\n"


class TestAbort:
    """Tests for sessions invalidated by a closing connection."""

    @pytest.mark.asyncio
    async def test_abort_while_awaiting_completion(self):
        """Exit seen after abort should fail instead of returning output."""
        process = FakeProcess()
        session = Session(FakeConnection(process), SessionOptions(timeout=5))

        task = asyncio.ensure_future(session.run(["show run"]))
        await asyncio.sleep(0.01)
        session.abort()
        process.received("exit\n")

        with pytest.raises(ReadError, match="connection closed"):
            await task

        assert session.state == SessionState.FAILED
        assert process.closed

    @pytest.mark.asyncio
    async def test_exit_wait_error_retrieved_after_write_failure(self):
        """Failed exit wait should not be reported as unhandled."""
        reports = []
        loop = asyncio.get_running_loop()
        loop.set_exception_handler(lambda _, context: reports.append(context))
        process = FakeProcess(
            exit_immediately=True,
            wait_error=ConnectionResetError("reset"),
            fail_on="end",
        )

        try:
            with pytest.raises(TransmissionError):
                await Session(FakeConnection(process)).run(
                    ["conf t", "int Gi1/0/1", "description uplink", "end"]
                )
            gc.collect()
        finally:
            loop.set_exception_handler(None)

        assert reports == []
