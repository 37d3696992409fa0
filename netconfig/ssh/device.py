"""SSH connection to a single network device.

Usage:
    config = ClientConfigBuilder("admin").password("secret").build()
    async with await dial("10.0.0.1:22", config) as device:
        output = await device.run("conf t", "int Gi1/0/1", "description uplink", "end")
"""

import asyncio
import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

import asyncssh

from netconfig.ssh.config import ClientConfig, PasswordAuth
from netconfig.ssh.session import Session, SessionOptions
from netconfig.utils.errors import ConfigurationError, DeviceConnectionError

logger = logging.getLogger(__name__)


def split_address(address: str) -> Tuple[str, int]:
    """Split a "host:port" address. The port is required.

    IPv6 literals must be bracketed: "[2001:db8::1]:22".
    """
    host, sep, port = address.rpartition(":")
    if not sep or not host:
        raise ConfigurationError(f"address {address!r} must be of the form host:port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ConfigurationError(f"IPv6 address {address!r} must be enclosed in brackets")
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigurationError(f"invalid port in address {address!r}") from None
    if not 0 < port_number < 65536:
        raise ConfigurationError(f"port out of range in address {address!r}")
    return host, port_number


class _DeviceClient(asyncssh.SSHClient):
    """Offers the passwords after the first one, in configuration order."""

    def __init__(self, passwords: List[str]):
        self._passwords: Iterator[str] = iter(passwords)

    def password_auth_requested(self) -> Optional[str]:
        return next(self._passwords, None)


def _preferred_auth(config: ClientConfig) -> List[str]:
    methods: List[str] = []
    for method in config.auth_methods:
        names = [method.method]
        if isinstance(method, PasswordAuth):
            names.append("keyboard-interactive")
        for name in names:
            if name not in methods:
                methods.append(name)
    return methods


def connect_options(config: ClientConfig) -> Dict[str, Any]:
    """Translate a ClientConfig into asyncssh.connect keyword arguments."""
    passwords = config.passwords
    keys = config.client_keys

    options: Dict[str, Any] = {
        "username": config.user,
        "known_hosts": config.known_hosts,
        "preferred_auth": _preferred_auth(config),
        "client_keys": keys or None,
        "agent_path": None,
        "client_factory": lambda: _DeviceClient(passwords[1:]),
    }
    if passwords:
        options["password"] = passwords[0]
    if config.ciphers is not None:
        options["encryption_algs"] = config.ciphers
    return options


class Device:
    """An open SSH transport to one network device.

    Only one command batch should be in flight per device. Independent
    devices can be driven concurrently, one Device each.
    """

    def __init__(self, conn: asyncssh.SSHClientConnection, host: str, port: int):
        self._conn: Optional[asyncssh.SSHClientConnection] = conn
        self._session: Optional[Session] = None
        self.host = host
        self.port = port

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<Device {self.address} {state}>"

    @property
    def address(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    @property
    def closed(self) -> bool:
        return self._conn is None

    @classmethod
    async def dial(cls, address: str, config: ClientConfig) -> "Device":
        """Establish an SSH connection to address ("host:port")."""
        host, port = split_address(address)

        if config.known_hosts is None:
            logger.warning(
                f"Host key checking disabled for {address}; any host key is accepted"
            )

        connect = asyncssh.connect(host, port=port, **connect_options(config))
        try:
            if config.connect_timeout:
                conn = await asyncio.wait_for(connect, timeout=config.connect_timeout)
            else:
                conn = await connect
        except asyncio.TimeoutError as e:
            raise DeviceConnectionError(
                f"failed to dial {address}: timeout ({config.connect_timeout}s)",
                host=host,
                port=port,
            ) from e
        except (asyncssh.Error, OSError, ValueError) as e:
            raise DeviceConnectionError(
                f"failed to dial {address}: {e}",
                host=host,
                port=port,
            ) from e

        logger.info(f"SSH connected to {config.user}@{address}")
        return cls(conn, host, port)

    async def __aenter__(self) -> "Device":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def run(self, *commands: str, options: Optional[SessionOptions] = None) -> bytes:
        """Run commands in a new interactive shell and return its output.

        See Session.run for the errors raised.
        """
        session = Session(self._conn, options, label=self.address)
        self._session = session
        try:
            return await session.run(commands)
        finally:
            if self._session is session:
                self._session = None

    async def close(self) -> None:
        """Close the SSH connection, failing any batch still in flight."""
        if self._conn is None:
            return
        if self._session is not None:
            self._session.abort()
        conn, self._conn = self._conn, None
        conn.close()
        await conn.wait_closed()
        logger.info(f"SSH connection to {self.address} closed")


async def dial(address: str, config: ClientConfig) -> Device:
    """Establish an SSH connection to address ("host:port")."""
    return await Device.dial(address, config)
