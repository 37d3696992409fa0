"""Error hierarchy for netconfig.

Every failure surfaced by the library derives from NetconfigError. The
original low-level cause (asyncssh, OS, timeout) is kept on __cause__.
"""

from typing import Optional


class NetconfigError(Exception):
    """Base exception for all netconfig errors."""

    pass


class ConfigurationError(NetconfigError):
    """Raised when a client configuration cannot be assembled."""

    pass


class NoAuthMethodsError(ConfigurationError):
    """Raised when a configuration is built without any authentication method."""

    def __init__(self, message: str = "no authentication methods specified"):
        super().__init__(message)


class DeviceConnectionError(NetconfigError):
    """Raised when the SSH transport to a device cannot be established.

    Covers unreachable hosts, handshake and authentication failures, and
    the connect timeout.
    """

    def __init__(
        self,
        message: str,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ):
        super().__init__(message)
        self.host = host
        self.port = port


class SessionError(NetconfigError):
    """Base exception for failures while running a command batch."""

    pass


class SessionSetupError(SessionError):
    """Raised when the session channel or remote shell cannot be started.

    stage is one of "channel-open" or "shell".
    """

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage


class TransmissionError(SessionError):
    """Raised when writing a command to the remote shell fails.

    Commands written before the failing one are not retracted.
    """

    def __init__(self, message: str, command: str):
        super().__init__(message)
        self.command = command


class SessionTimeoutError(SessionError):
    """Raised when the remote shell does not exit before the deadline.

    No output is attached.
    """

    def __init__(
        self,
        message: str = "session timed out",
        timeout: Optional[float] = None,
    ):
        super().__init__(message)
        self.timeout = timeout


class ReadError(SessionError):
    """Raised when output cannot be collected after the shell exits."""

    pass


class ExitStatusError(SessionError):
    """Raised when exit status checking is enabled and the shell failed.

    exit_status is None when the remote side never reported one.
    """

    def __init__(
        self,
        message: str,
        exit_status: Optional[int] = None,
        output: bytes = b"",
    ):
        super().__init__(message)
        self.exit_status = exit_status
        self.output = output
