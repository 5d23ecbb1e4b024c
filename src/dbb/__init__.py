"""
dbb-linux - Digital Bitbox hardware wallet client

Host-side client for the Digital Bitbox over USB HID: report framing,
password-derived channel keys, AES-256-CBC (+ HMAC-SHA256 on firmware
5.0.0+) and the JSON command set on top.

Usage:
    # As a library
    from dbb import DigitalBitbox, Session
    dbb = DigitalBitbox(Session.open())
    dbb.set_password('secret')
    print(dbb.device_info().unwrap())

    # Command line
    dbb detect        # List devices
    dbb ping          # Check whether a password is set
    dbb info          # Device info
"""

from dbb.__version__ import __version__
from dbb.client import CommandResult, DeviceState, DigitalBitbox, Session, SignState
from dbb.exceptions import (
    CryptoIntegrityError,
    DbbError,
    DecryptionError,
    DeviceReportedError,
    DeviceTimeoutError,
    DeviceUnavailable,
    FramingError,
    MalformedResponse,
    PreconditionError,
    TransportError,
    ValidationError,
)
from dbb.hid_device import find_devices

__all__ = [
    # Version
    "__version__",
    # Client
    "DigitalBitbox",
    "Session",
    "CommandResult",
    "DeviceState",
    "SignState",
    "find_devices",
    # Errors
    "DbbError",
    "DeviceUnavailable",
    "TransportError",
    "DeviceTimeoutError",
    "FramingError",
    "PreconditionError",
    "ValidationError",
    "CryptoIntegrityError",
    "DecryptionError",
    "MalformedResponse",
    "DeviceReportedError",
]
