"""SSH configuration, connection and command batch execution."""

from .config import (
    ClientConfig,
    ClientConfigBuilder,
    PasswordAuth,
    PublicKeyAuth,
    default_ciphers,
)
from .device import Device, dial, split_address
from .session import Session, SessionOptions, SessionState

__all__ = [
    "ClientConfig",
    "ClientConfigBuilder",
    "PasswordAuth",
    "PublicKeyAuth",
    "default_ciphers",
    "Device",
    "dial",
    "split_address",
    "Session",
    "SessionOptions",
    "SessionState",
]
