"""Platform build drivers.

This module handles:
- Running native toolchains as external processes
- Locating the produced installable packages
- Cancellation and deadlines for running processes
"""

from mobile_appgen.drivers.android import AndroidDriver
from mobile_appgen.drivers.base import DriverError, PlatformDriver
from mobile_appgen.drivers.ios import IOSDriver
from mobile_appgen.drivers.process import (
    BuildCancelledError,
    CancelHandle,
    ProcessRunner,
)

__all__ = [
    "AndroidDriver",
    "BuildCancelledError",
    "CancelHandle",
    "DriverError",
    "IOSDriver",
    "PlatformDriver",
    "ProcessRunner",
]
