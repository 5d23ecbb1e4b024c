#!/usr/bin/env python3
"""
HID backends for the Digital Bitbox (VID 0x03EB, PID 0x2402).

The device exposes one vendor HID interface with 64-byte interrupt
reports.  The ``HidBackend`` ABC abstracts the raw report I/O so that:
  • Tests can inject a mock backend (no real hardware needed).
  • ``HidApiBackend`` talks to the OS HID driver via HIDAPI (default).
  • ``PyUsbBackend`` claims the interface directly via pyusb (libusb).

Linux dependencies:
  • hidapi: ``pip install hidapi`` (needs libhidapi: ``apt install libhidapi-hidraw0``)
  • pyusb:  ``pip install pyusb``  (needs libusb1: ``apt install libusb-1.0-0``)
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import usb.core
import usb.util

from .constants import (
    DBB_INTERFACE,
    DBB_PID,
    DBB_USAGE_PAGE,
    DBB_VID,
    USB_REPORT_SIZE,
)
from .exceptions import DeviceTimeoutError, DeviceUnavailable, TransportError

# hidapi needs its native library; report availability instead of failing import
try:
    import hid as hidapi
    HIDAPI_AVAILABLE = True
except ImportError:
    HIDAPI_AVAILABLE = False

log = logging.getLogger(__name__)

# HIDAPI report id for devices without numbered reports
HID_REPORT_ID = 0x00

# pyusb interrupt write timeout (ms)
USB_WRITE_TIMEOUT_MS = 1000

USB_CONFIGURATION = 1

_FIRMWARE_VERSION_RE = re.compile(r"v(\d+)\.(\d+)\.(\d+)")


def parse_firmware_version(text: Optional[str]) -> Optional[str]:
    """Extract ``"5.0.0"`` from a serial-number string like ``dbb.fw:v5.0.0``.

    Returns None when no version is present.
    """
    if not text:
        return None
    match = _FIRMWARE_VERSION_RE.search(text)
    if match is None:
        return None
    return ".".join(match.groups())


# =========================================================================
# Data classes
# =========================================================================

@dataclass
class DetectedDevice:
    """One Digital Bitbox HID interface found on the bus."""
    path: Any                         # hidapi path (bytes) or pyusb bus/address tuple
    serial: str = ""
    firmware_version: Optional[str] = None
    backend: str = "hidapi"
    vid: int = DBB_VID
    pid: int = DBB_PID


# =========================================================================
# Abstract HID backend
# =========================================================================

class HidBackend(ABC):
    """Abstract report-level HID I/O -- mockable for testing."""

    @abstractmethod
    def open(self) -> None:
        """Open the device."""

    @abstractmethod
    def close(self) -> None:
        """Release the device."""

    @abstractmethod
    def write(self, report: bytes) -> int:
        """Write one report (without report id).  Returns bytes written."""

    @abstractmethod
    def read(self, length: int = USB_REPORT_SIZE, timeout_ms: int = 0) -> bytes:
        """Read one report.  ``timeout_ms=0`` blocks until data arrives.

        Raises:
            DeviceTimeoutError: nothing arrived within *timeout_ms*.
        """

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the device is currently open."""

    @property
    def serial_number(self) -> str:
        """USB serial-number string (carries the firmware version)."""
        return ""

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *exc):
        self.close()


# =========================================================================
# Real backend: HIDAPI
# =========================================================================

class HidApiBackend(HidBackend):
    """HID backend using HIDAPI (cython-hidapi).

    HIDAPI goes through the OS HID driver (hidraw on Linux), so no
    kernel driver detach and usually no root.  Every outgoing report is
    prefixed with report id 0x00, which HIDAPI strips before the wire.
    """

    def __init__(self, path: Optional[bytes] = None, vid: int = DBB_VID,
                 pid: int = DBB_PID, serial: Optional[str] = None):
        if not HIDAPI_AVAILABLE:
            raise ImportError(
                "hidapi is not installed. Install with: pip install hidapi\n"
                "Also need libhidapi: apt install libhidapi-hidraw0 (Debian/Ubuntu) "
                "or dnf install hidapi (Fedora)"
            )
        self._path = path
        self._vid = vid
        self._pid = pid
        self._serial = serial
        self._device: Any = None
        self._is_open = False

    def open(self) -> None:
        """Open by path if known, else by VID/PID."""
        device = hidapi.device()
        try:
            if self._path is not None:
                device.open_path(self._path)
            else:
                device.open(self._vid, self._pid, self._serial)
        except (OSError, IOError) as e:
            raise DeviceUnavailable(
                f"cannot open HID device {self._vid:04x}:{self._pid:04x}: {e}"
            ) from e
        device.set_nonblocking(0)
        self._device = device
        self._is_open = True
        log.debug("HIDAPI device opened: %s", self._path or f"{self._vid:04x}:{self._pid:04x}")

    def close(self) -> None:
        if self._device is not None:
            try:
                self._device.close()
            except (OSError, IOError) as e:
                log.debug("HIDAPI close: %s", e)
            self._device = None
        self._is_open = False

    def write(self, report: bytes) -> int:
        if not self._is_open or self._device is None:
            raise TransportError("HID device not open")
        try:
            written = self._device.write(bytes([HID_REPORT_ID]) + bytes(report))
        except (OSError, IOError, ValueError) as e:
            raise TransportError(f"HID write failed: {e}") from e
        if written < 0:
            raise TransportError("HID write failed")
        return written

    def read(self, length: int = USB_REPORT_SIZE, timeout_ms: int = 0) -> bytes:
        if not self._is_open or self._device is None:
            raise TransportError("HID device not open")
        try:
            if timeout_ms:
                data = self._device.read(length, timeout_ms)
            else:
                data = self._device.read(length)
        except (OSError, IOError, ValueError) as e:
            raise TransportError(f"HID read failed: {e}") from e
        if not data:
            raise DeviceTimeoutError(f"no HID report within {timeout_ms} ms")
        return bytes(data)

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def serial_number(self) -> str:
        if self._device is None:
            return ""
        try:
            return self._device.get_serial_number_string() or ""
        except (OSError, IOError) as e:
            log.debug("HIDAPI serial number: %s", e)
            return ""


# =========================================================================
# Real backend: PyUSB  (libusb)
# =========================================================================

class PyUsbBackend(HidBackend):
    """HID backend using pyusb interrupt transfers.

    Sequence:
    1. Find device by VID/PID (optionally serial, or the ``(bus, address)``
       path reported by :func:`find_devices`)
    2. Detach the usbhid kernel driver from interface 0
    3. SetConfiguration(1), ClaimInterface(0)
    4. Interrupt read/write on the auto-detected endpoints

    Requires: ``pip install pyusb`` + ``apt install libusb-1.0-0``
    """

    def __init__(self, path: Optional[tuple[int, int]] = None, vid: int = DBB_VID,
                 pid: int = DBB_PID, serial: Optional[str] = None):
        self._path = path
        self._vid = vid
        self._pid = pid
        self._serial = serial
        self._device: Any = None
        self._is_open = False
        self._ep_out: Optional[int] = None
        self._ep_in: Optional[int] = None

    def open(self) -> None:
        kwargs: dict[str, Any] = {'idVendor': self._vid, 'idProduct': self._pid}
        if self._serial:
            kwargs['serial_number'] = self._serial
        if self._path is not None:
            bus, address = self._path
            kwargs['custom_match'] = (
                lambda d: d.bus == bus and d.address == address
            )

        self._device = usb.core.find(**kwargs)
        if self._device is None:
            raise DeviceUnavailable(
                f"USB device not found: VID={self._vid:#06x} PID={self._pid:#06x}"
            )

        try:
            if self._device.is_kernel_driver_active(DBB_INTERFACE):
                self._device.detach_kernel_driver(DBB_INTERFACE)
                log.debug("Detached kernel driver from interface %d", DBB_INTERFACE)
        except (usb.core.USBError, NotImplementedError) as e:
            log.debug("Kernel driver detach: %s", e)

        try:
            self._device.set_configuration(USB_CONFIGURATION)
            usb.util.claim_interface(self._device, DBB_INTERFACE)
        except usb.core.USBError as e:
            self._device = None
            raise DeviceUnavailable(f"cannot claim USB interface: {e}") from e
        self._is_open = True
        self._detect_endpoints()

    def _detect_endpoints(self) -> None:
        """Pick the interrupt IN/OUT endpoints of interface 0."""
        cfg = self._device.get_active_configuration()
        intf = cfg[(DBB_INTERFACE, 0)]
        for ep in intf:
            direction = usb.util.endpoint_direction(ep.bEndpointAddress)
            if direction == usb.util.ENDPOINT_OUT and self._ep_out is None:
                self._ep_out = ep.bEndpointAddress
            elif direction == usb.util.ENDPOINT_IN and self._ep_in is None:
                self._ep_in = ep.bEndpointAddress
        if self._ep_out is None or self._ep_in is None:
            raise DeviceUnavailable("interrupt endpoints not found on interface 0")
        log.debug("Endpoints: OUT=0x%02x IN=0x%02x", self._ep_out, self._ep_in)

    def close(self) -> None:
        if self._device is not None:
            try:
                usb.util.release_interface(self._device, DBB_INTERFACE)
            except usb.core.USBError as e:
                log.debug("Release interface: %s", e)
            usb.util.dispose_resources(self._device)
            self._device = None
        self._is_open = False

    def write(self, report: bytes) -> int:
        if not self._is_open or self._device is None:
            raise TransportError("USB device not open")
        try:
            return self._device.write(self._ep_out, report, timeout=USB_WRITE_TIMEOUT_MS)
        except usb.core.USBError as e:
            raise TransportError(f"USB write failed: {e}") from e

    def read(self, length: int = USB_REPORT_SIZE, timeout_ms: int = 0) -> bytes:
        if not self._is_open or self._device is None:
            raise TransportError("USB device not open")
        try:
            data = self._device.read(self._ep_in, length, timeout=timeout_ms)
        except usb.core.USBTimeoutError as e:
            raise DeviceTimeoutError(f"no USB report within {timeout_ms} ms") from e
        except usb.core.USBError as e:
            raise TransportError(f"USB read failed: {e}") from e
        return bytes(data)

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def serial_number(self) -> str:
        if self._device is None or not getattr(self._device, 'iSerialNumber', 0):
            return ""
        try:
            return usb.util.get_string(self._device, self._device.iSerialNumber) or ""
        except (usb.core.USBError, ValueError) as e:
            log.debug("USB serial number: %s", e)
            return ""


BACKENDS = {
    'hidapi': HidApiBackend,
    'pyusb': PyUsbBackend,
}


def open_backend(name: str = 'hidapi', path: Any = None) -> HidBackend:
    """Create and open a backend by name (``hidapi`` or ``pyusb``).

    *path* is a :class:`DetectedDevice` path for that backend: hidapi's
    device path, or pyusb's ``(bus, address)``.  None opens the first device.
    """
    if name not in BACKENDS:
        raise ValueError(f"Unknown HID backend: {name}")
    backend = HidApiBackend(path=path) if name == 'hidapi' else PyUsbBackend(path=path)
    backend.open()
    return backend


# =========================================================================
# Device discovery helper
# =========================================================================

def find_devices() -> list[DetectedDevice]:
    """Scan for Digital Bitbox HID interfaces.

    Uses hidapi enumeration when available (matching the vendor usage
    page on Windows/macOS, interface 0 on Linux), else pyusb.
    """
    devices: list[DetectedDevice] = []

    if HIDAPI_AVAILABLE:
        for info in hidapi.enumerate(DBB_VID, DBB_PID):
            if (info.get('usage_page') != DBB_USAGE_PAGE
                    and info.get('interface_number') != DBB_INTERFACE):
                continue
            serial = info.get('serial_number', '') or ""
            devices.append(DetectedDevice(
                path=info.get('path'),
                serial=serial,
                firmware_version=parse_firmware_version(serial),
                backend='hidapi',
            ))
        return devices

    found = usb.core.find(find_all=True, idVendor=DBB_VID, idProduct=DBB_PID)
    for dev in found or []:
        serial_idx = getattr(dev, 'iSerialNumber', 0)
        serial = usb.util.get_string(dev, serial_idx) if serial_idx else ""
        devices.append(DetectedDevice(
            path=(dev.bus, dev.address),
            serial=serial or "",
            firmware_version=parse_firmware_version(serial),
            backend='pyusb',
        ))
    return devices
