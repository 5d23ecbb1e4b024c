"""Message transport over a HID backend.

Drives the frame codec against the raw report I/O: one call sends a
whole message as 64-byte reports, the other blocks until a full reply is
reassembled.  One exchange at a time per device; ``transact`` holds the
lock across send and receive.
"""
from __future__ import annotations

import logging
import threading
from typing import Optional

from .constants import (
    CONT_HEADER_SIZE,
    DEFAULT_READ_TIMEOUT_MS,
    INIT_HEADER_SIZE,
    USB_REPORT_SIZE,
)
from .exceptions import DeviceUnavailable, FramingError
from .frame_codec import (
    chunk_message,
    unpack_continuation,
    unpack_initial,
)
from .hid_device import HidBackend

log = logging.getLogger(__name__)


class Transport:
    """Owns one open HID backend and serializes exchanges on it."""

    def __init__(self, backend: Optional[HidBackend],
                 report_size: int = USB_REPORT_SIZE,
                 read_timeout_ms: int = DEFAULT_READ_TIMEOUT_MS):
        if backend is None:
            raise DeviceUnavailable("device is not available")
        self._backend = backend
        self.report_size = report_size
        self.read_timeout_ms = read_timeout_ms
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def serial_number(self) -> str:
        return self._backend.serial_number

    # -- Send -------------------------------------------------------------

    def send_message(self, data: bytes) -> None:
        """Write *data* as an initial frame plus continuation frames."""
        self._ensure_open()
        frames = chunk_message(data, self.report_size)
        log.debug("send: %d bytes in %d frame(s)", len(data), len(frames))
        for i, frame in enumerate(frames):
            # header only; plain requests may carry the password
            header = INIT_HEADER_SIZE if i == 0 else CONT_HEADER_SIZE
            log.debug("  -> %s", frame[:header].hex())
            self._backend.write(frame)

    # -- Receive ----------------------------------------------------------

    def receive_message(self) -> bytes:
        """Block until a whole reply is read and return its payload.

        Raises:
            FramingError: short or mismatched frame.
            DeviceTimeoutError: a frame did not arrive in time.
        """
        self._ensure_open()
        frame = self._backend.read(self.report_size, self.read_timeout_ms)
        log.debug("  <- %s", frame.hex())
        declared, payload = unpack_initial(frame)
        buf = bytearray(payload[:declared])

        while len(buf) < declared:
            frame = self._backend.read(self.report_size, self.read_timeout_ms)
            log.debug("  <- %s", frame.hex())
            chunk = unpack_continuation(frame)
            if not chunk:
                raise FramingError("continuation frame carries no payload")
            buf += chunk[:declared - len(buf)]

        log.debug("recv: %d bytes", declared)
        return bytes(buf)

    def transact(self, data: bytes) -> bytes:
        """Send *data* and return the reply, holding the device for both."""
        with self._lock:
            self.send_message(data)
            return self.receive_message()

    # -- Lifecycle --------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise DeviceUnavailable("transport is closed")

    def close(self) -> None:
        """Release the device handle.  Waits for an in-flight exchange."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._backend.close()
            log.debug("transport closed")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
