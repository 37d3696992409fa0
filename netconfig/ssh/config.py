"""SSH client configuration builder.

Usage:
    config = (
        ClientConfigBuilder("admin")
        .allow_known_hosts("~/.ssh/known_hosts")
        .private_key("~/.ssh/id_rsa")
        .password("backup-password")
        .timeout(5)
        .ciphers("aes128-cbc", "3des-cbc")
        .build()
    )

Authentication methods are offered to the device in the order they were
added. Unless allow_known_hosts() is used, any host key is accepted.
"""

import getpass
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import List, Optional, TextIO, Tuple, Union

import asyncssh
from asyncssh.encryption import get_default_encryption_algs

from netconfig.utils.errors import ConfigurationError, NoAuthMethodsError

logger = logging.getLogger(__name__)

ACCEPT_ANY = "accept-any"
KNOWN_HOSTS = "known-hosts"


@dataclass(frozen=True)
class PasswordAuth:
    """Password authentication (also answers keyboard-interactive prompts)."""

    password: str = field(repr=False)

    @property
    def method(self) -> str:
        return "password"


@dataclass(frozen=True)
class PublicKeyAuth:
    """Public key authentication with one or more private keys."""

    keys: Tuple[asyncssh.SSHKey, ...]
    paths: Tuple[str, ...] = ()

    @property
    def method(self) -> str:
        return "publickey"


AuthMethod = Union[PasswordAuth, PublicKeyAuth]


def default_ciphers() -> List[str]:
    """Ciphers the SSH library negotiates when none are configured."""
    return [alg.decode("ascii") for alg in get_default_encryption_algs()]


@dataclass(frozen=True)
class ClientConfig:
    """Validated parameters for opening an SSH transport to a device."""

    user: str
    auth_methods: Tuple[AuthMethod, ...]
    known_hosts: Optional[asyncssh.SSHKnownHosts] = None
    known_hosts_path: Optional[str] = None
    connect_timeout: Optional[float] = None
    extra_ciphers: Tuple[str, ...] = ()

    @property
    def host_key_policy(self) -> str:
        return ACCEPT_ANY if self.known_hosts is None else KNOWN_HOSTS

    @property
    def ciphers(self) -> Optional[List[str]]:
        """Cipher list to negotiate, or None to use the library default.

        Extra ciphers are appended after the defaults.
        """
        if not self.extra_ciphers:
            return None
        return list(dict.fromkeys(default_ciphers() + list(self.extra_ciphers)))

    @property
    def passwords(self) -> List[str]:
        return [m.password for m in self.auth_methods if isinstance(m, PasswordAuth)]

    @property
    def client_keys(self) -> List[asyncssh.SSHKey]:
        keys: List[asyncssh.SSHKey] = []
        for method in self.auth_methods:
            if isinstance(method, PublicKeyAuth):
                keys.extend(method.keys)
        return keys


def prompt_password(prompt: str = "Password: ", stdin: Optional[TextIO] = None) -> str:
    """Read a password interactively without echo.

    When stdin is given, a single line is read from it instead of the
    terminal, which lets non-interactive callers feed a canned answer.
    """
    if stdin is None:
        try:
            return getpass.getpass(prompt, stream=sys.stderr)
        except (EOFError, OSError) as e:
            raise ConfigurationError("unable to read password") from e

    sys.stderr.write(prompt)
    sys.stderr.flush()
    line = stdin.readline()
    sys.stderr.write("\n")
    if not line:
        raise ConfigurationError("unable to read password: end of input")
    return line.rstrip("\r\n")


class ClientConfigBuilder:
    """Assembles a ClientConfig one option at a time.

    Every setter returns the builder. Setters that need a file raise
    ConfigurationError as soon as the file cannot be used, so a failed
    build never yields a partial configuration.
    """

    def __init__(self, user: str, stdin: Optional[TextIO] = None):
        if not user:
            raise ConfigurationError("username must not be empty")
        self._user = user
        self._stdin = stdin
        self._auth_methods: List[AuthMethod] = []
        self._known_hosts: Optional[asyncssh.SSHKnownHosts] = None
        self._known_hosts_path: Optional[str] = None
        self._connect_timeout: Optional[float] = None
        self._ciphers: List[str] = []

    def password(self, password: str = "") -> "ClientConfigBuilder":
        """Add password authentication, prompting when password is empty."""
        if not password:
            password = prompt_password(stdin=self._stdin)
        self._auth_methods.append(PasswordAuth(password))
        return self

    def private_key(
        self,
        *paths: str,
        passphrase: Optional[str] = None,
    ) -> "ClientConfigBuilder":
        """Add public key authentication using the given private key files."""
        if not paths:
            raise ConfigurationError("no private key files given")

        keys = []
        expanded = []
        for path in paths:
            path = os.path.expanduser(path)
            expanded.append(path)
            try:
                with open(path, "rb") as f:
                    data = f.read()
            except OSError as e:
                raise ConfigurationError(f"unable to read private key {path}") from e
            try:
                keys.append(asyncssh.import_private_key(data, passphrase))
            except (asyncssh.KeyImportError, ValueError) as e:
                raise ConfigurationError(f"unable to parse private key {path}") from e
            logger.debug(f"Loaded private key {path}")

        self._auth_methods.append(PublicKeyAuth(tuple(keys), tuple(expanded)))
        return self

    def allow_known_hosts(self, path: str) -> "ClientConfigBuilder":
        """Only connect to hosts whose key matches an entry in path."""
        path = os.path.expanduser(path)
        try:
            self._known_hosts = asyncssh.read_known_hosts(path)
        except OSError as e:
            raise ConfigurationError(f"unable to read known hosts {path}") from e
        except (asyncssh.KeyImportError, ValueError) as e:
            raise ConfigurationError(f"unable to parse known hosts {path}") from e
        self._known_hosts_path = path
        return self

    def timeout(self, seconds: float) -> "ClientConfigBuilder":
        """Bound the time allowed to establish the connection (0 = default)."""
        if seconds < 0:
            raise ConfigurationError(f"connect timeout must not be negative: {seconds}")
        self._connect_timeout = seconds or None
        return self

    def ciphers(self, *names: str) -> "ClientConfigBuilder":
        """Append ciphers to the negotiated set, for legacy devices."""
        self._ciphers.extend(names)
        return self

    def build(self) -> ClientConfig:
        if not self._auth_methods:
            raise NoAuthMethodsError()
        return ClientConfig(
            user=self._user,
            auth_methods=tuple(self._auth_methods),
            known_hosts=self._known_hosts,
            known_hosts_path=self._known_hosts_path,
            connect_timeout=self._connect_timeout,
            extra_ciphers=tuple(self._ciphers),
        )
