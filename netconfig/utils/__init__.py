"""Utility modules for netconfig."""

from .errors import (
    NetconfigError,
    ConfigurationError,
    NoAuthMethodsError,
    DeviceConnectionError,
    SessionError,
    SessionSetupError,
    TransmissionError,
    SessionTimeoutError,
    ReadError,
    ExitStatusError,
)
from .retry import retry_with_backoff

__all__ = [
    "NetconfigError",
    "ConfigurationError",
    "NoAuthMethodsError",
    "DeviceConnectionError",
    "SessionError",
    "SessionSetupError",
    "TransmissionError",
    "SessionTimeoutError",
    "ReadError",
    "ExitStatusError",
    "retry_with_backoff",
]
