"""netconfig - send configuration commands to network devices over SSH."""

__version__ = "0.3.0"

from netconfig.ssh import (
    ClientConfig,
    ClientConfigBuilder,
    Device,
    SessionOptions,
    dial,
)
from netconfig.utils.errors import (
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

__all__ = [
    "__version__",
    "ClientConfig",
    "ClientConfigBuilder",
    "Device",
    "SessionOptions",
    "dial",
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
]
