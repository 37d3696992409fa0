"""Command batch execution over an interactive SSH shell.

A Session is created for one batch of commands. It opens a shell channel,
writes the commands, and then races the shell's exit against a fixed
deadline:

    created -> channel-open -> shell-started -> writing -> awaiting-completion
                                                            -> completed
                                                            -> timed-out
                                                            -> failed
"""

import asyncio
import logging
from enum import Enum
from typing import Optional, Sequence

import asyncssh
from pydantic import BaseModel, Field

from netconfig.utils.errors import (
    ExitStatusError,
    ReadError,
    SessionSetupError,
    SessionTimeoutError,
    TransmissionError,
)

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TIMEOUT = 5.0
DEFAULT_TERM_TYPE = "vt100"

# RFC 4254 terminal mode opcodes
PTY_ECHO = 53
PTY_OP_ISPEED = 128
PTY_OP_OSPEED = 129

TERM_MODES = {
    PTY_ECHO: 0,
    PTY_OP_ISPEED: 14400,
    PTY_OP_OSPEED: 14400,
}


class SessionState(str, Enum):
    """Session lifecycle states.

    asyncssh opens the channel and starts the shell in one call, so
    CHANNEL_OPEN and SHELL_STARTED are entered together once that call
    returns. A failure inside it is told apart by the error's stage.
    """

    CREATED = "created"
    CHANNEL_OPEN = "channel-open"
    SHELL_STARTED = "shell-started"
    WRITING = "writing"
    AWAITING_COMPLETION = "awaiting-completion"
    COMPLETED = "completed"
    TIMED_OUT = "timed-out"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            SessionState.COMPLETED,
            SessionState.TIMED_OUT,
            SessionState.FAILED,
        )


class SessionOptions(BaseModel):
    """Per-batch execution policy."""

    timeout: float = Field(
        DEFAULT_SESSION_TIMEOUT,
        gt=0,
        description="Seconds allowed between shell start and shell exit",
    )
    pty: bool = Field(False, description="Request a pseudo-terminal before the shell")
    term_type: str = Field(DEFAULT_TERM_TYPE, description="Terminal type when pty is set")
    check_exit_status: bool = Field(
        False,
        description="Raise ExitStatusError on a non-zero or missing exit status",
    )


class Session:
    """Runs one command batch on an open SSH connection.

    Usage:
        session = Session(conn, SessionOptions(timeout=10), label="10.0.0.1:22")
        output = await session.run(["terminal length 0", "show version", "exit"])
    """

    def __init__(
        self,
        conn: Optional[asyncssh.SSHClientConnection],
        options: Optional[SessionOptions] = None,
        label: str = "",
    ):
        self._conn = conn
        self.options = options or SessionOptions()
        self.label = label
        self.state = SessionState.CREATED
        self._aborted = False

    def abort(self) -> None:
        """Mark the session invalid because its connection is being closed.

        A batch still in flight then fails instead of returning whatever
        the torn-down channel left behind.
        """
        self._aborted = True

    def _transition(self, state: SessionState) -> None:
        logger.debug(f"{self.label}: session {self.state.value} -> {state.value}")
        self.state = state

    async def run(self, commands: Sequence[str]) -> bytes:
        """Write commands to a remote shell and return its combined output.

        Returns stdout content followed by stderr content, as produced
        before the shell exited.

        Raises:
            SessionSetupError: The channel or shell could not be started
            TransmissionError: A command could not be written
            SessionTimeoutError: The shell did not exit before the deadline
            ReadError: Output could not be collected after exit
            ExitStatusError: Exit status checking is on and the shell failed
        """
        try:
            process = await self._open_shell()
        except BaseException:
            self._transition(SessionState.FAILED)
            raise

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.options.timeout
        exit_waiter = asyncio.ensure_future(process.wait())
        try:
            self._transition(SessionState.WRITING)
            try:
                await asyncio.wait_for(
                    self._send(process.stdin, commands),
                    timeout=max(0.0, deadline - loop.time()),
                )
            except asyncio.TimeoutError:
                self._transition(SessionState.TIMED_OUT)
                raise SessionTimeoutError(timeout=self.options.timeout) from None

            self._transition(SessionState.AWAITING_COMPLETION)
            done, _ = await asyncio.wait(
                {exit_waiter},
                timeout=max(0.0, deadline - loop.time()),
            )
            if not done:
                self._transition(SessionState.TIMED_OUT)
                raise SessionTimeoutError(timeout=self.options.timeout)

            if self._aborted:
                raise ReadError("connection closed while awaiting shell exit")

            output = self._drain(exit_waiter)
            self._transition(SessionState.COMPLETED)
            return output
        except BaseException:
            if not self.state.is_terminal:
                self._transition(SessionState.FAILED)
            raise
        finally:
            if not exit_waiter.done():
                exit_waiter.cancel()
            elif not exit_waiter.cancelled():
                # Retrieve it so asyncio does not report it as unhandled
                exit_waiter.exception()
            process.close()

    async def _open_shell(self) -> asyncssh.SSHClientProcess:
        if self._conn is None:
            raise SessionSetupError("connection is closed", stage="channel-open")

        kwargs = {}
        if self.options.pty:
            kwargs["term_type"] = self.options.term_type
            kwargs["term_modes"] = TERM_MODES

        try:
            process = await self._conn.create_process(encoding=None, **kwargs)
        except asyncssh.ChannelOpenError as e:
            raise SessionSetupError(
                f"failed to create session: {e}", stage="channel-open"
            ) from e
        except (asyncssh.Error, OSError) as e:
            raise SessionSetupError(
                f"failed to start remote shell: {e}", stage="shell"
            ) from e

        self._transition(SessionState.CHANNEL_OPEN)
        self._transition(SessionState.SHELL_STARTED)
        return process

    async def _send(self, stdin: asyncssh.SSHWriter, commands: Sequence[str]) -> None:
        for command in commands:
            try:
                stdin.write(f"{command}\n".encode())
                await stdin.drain()
            except (asyncssh.Error, OSError) as e:
                raise TransmissionError(
                    f"failed to run {command!r}: {e}", command=command
                ) from e
            logger.debug(f"{self.label}: sent {command!r}")

    def _drain(self, exit_waiter: "asyncio.Future[asyncssh.SSHCompletedProcess]") -> bytes:
        try:
            completed = exit_waiter.result()
        except (asyncssh.Error, OSError) as e:
            raise ReadError(f"failed to read stdout and stderr: {e}") from e

        output = (completed.stdout or b"") + (completed.stderr or b"")

        if self.options.check_exit_status:
            exit_status = completed.exit_status
            if exit_status is None or exit_status < 0:
                raise ExitStatusError(
                    "remote shell exited without reporting a status",
                    exit_status=None,
                    output=output,
                )
            if exit_status != 0:
                raise ExitStatusError(
                    f"remote shell exited with status {exit_status}",
                    exit_status=exit_status,
                    output=output,
                )

        return output
