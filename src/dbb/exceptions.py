"""Exception hierarchy for the Digital Bitbox client.

Everything below the command client raises one of these.
``DigitalBitbox`` turns them into failed ``CommandResult`` values, so UI
code can branch on ``result.error.kind`` instead of catching.
"""
from __future__ import annotations

from typing import Any, Optional


class DbbError(Exception):
    """Base for all client errors."""

    kind = "error"


class DeviceUnavailable(DbbError):
    """No device handle could be obtained."""

    kind = "device_unavailable"


class TransportError(DbbError):
    """HID write or read failed at the OS level."""

    kind = "transport"


class DeviceTimeoutError(TransportError):
    """No report arrived within the configured read timeout."""

    kind = "timeout"


class FramingError(DbbError):
    """Short, malformed or mismatched USB frame."""

    kind = "framing"


class PreconditionError(DbbError):
    """Operation attempted without the required local state (e.g. no secret)."""

    kind = "precondition"


class ValidationError(DbbError):
    """Caller-supplied argument rejected before any I/O."""

    kind = "validation"


class CryptoIntegrityError(DbbError):
    """HMAC mismatch on a device reply. The payload is never decrypted."""

    kind = "integrity"


class DecryptionError(DbbError):
    """Reply authenticated (or legacy) but padding/format is invalid."""

    kind = "decryption"


class MalformedResponse(DbbError):
    """Reply is not JSON or lacks an expected field."""

    kind = "malformed"


class DeviceReportedError(DbbError):
    """The device answered with an explicit ``{"error": {...}}`` object.

    The device is reachable and speaking the protocol; only the requested
    operation failed.  The raw reply is kept in :attr:`response`.
    """

    kind = "device"

    def __init__(self, response: dict[str, Any]):
        err = response.get("error")
        if isinstance(err, dict):
            self.code: Optional[int] = err.get("code")
            self.message = str(err.get("message", ""))
        else:
            self.code = None
            self.message = str(err)
        self.response = response
        super().__init__(
            f"device error {self.code}: {self.message}" if self.code is not None
            else f"device error: {self.message}"
        )
