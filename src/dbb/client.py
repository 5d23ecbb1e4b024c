"""Digital Bitbox command client.

Usage:
    from dbb.client import DigitalBitbox, Session

    session = Session.open()                 # first device found, settings from conf
    dbb = DigitalBitbox(session)

    if not dbb.ping().unwrap()['ping']:      # fresh device
        dbb.create_password('secret')
    else:
        dbb.set_password('secret')

    result = dbb.device_info()
    if result.ok:
        print(result.value['device'])
    else:
        print(result.kind, result.error)

Every operation returns a :class:`CommandResult`; client-level errors
never escape as exceptions.
"""
from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Optional

from .constants import (
    BACKUP_SUFFIX,
    NAME_PATTERN,
    PING_PASSWORD_SET,
    RESET_TOKEN,
)
from .exceptions import (
    DbbError,
    DeviceReportedError,
    MalformedResponse,
    PreconditionError,
    ValidationError,
)
from .hid_device import HidBackend, find_devices, open_backend, parse_firmware_version
from .secure_channel import SecureChannel
from .security import SecurityContext, stretch_for_wallet_creation, version_tuple
from .transport import Transport

log = logging.getLogger(__name__)

_NAME_RE = re.compile(NAME_PATTERN)
_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


def _dumps(obj: Any) -> str:
    return json.dumps(obj)


def _checked(reply: dict[str, Any]) -> dict[str, Any]:
    """Raise DeviceReportedError if the device answered with an error object."""
    if 'error' in reply:
        raise DeviceReportedError(reply)
    return reply


def validate_name(name: str) -> str:
    if not isinstance(name, str) or not _NAME_RE.match(name):
        raise ValidationError("Only 1 to 31 alphanumeric characters are allowed.")
    return name


# =========================================================================
# Result / state
# =========================================================================

@dataclass
class CommandResult:
    """Outcome of one client operation: a parsed reply or a typed error."""
    value: Optional[dict[str, Any]] = None
    error: Optional[Exception] = None

    @classmethod
    def success(cls, value: dict[str, Any]) -> CommandResult:
        return cls(value=value)

    @classmethod
    def failure(cls, error: Exception) -> CommandResult:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> str:
        """``"ok"`` or the error's kind (``"validation"``, ``"device"``, ...).

        Errors that are not :class:`DbbError` (only seen from
        :meth:`DigitalBitbox.call_async`) report ``"internal"``.
        """
        if self.error is None:
            return "ok"
        return getattr(self.error, "kind", "internal")

    def unwrap(self) -> Optional[dict[str, Any]]:
        """Return the value or raise the error."""
        if self.error is not None:
            raise self.error
        return self.value


@dataclass
class DeviceState:
    """What the host knows about the device."""
    initialized: bool = False     # a password is set on the device
    seeded: bool = False          # a wallet exists
    name: str = ""


class SignState(Enum):
    AWAITING_VERIFICATION = auto()
    AWAITING_SIGNATURE = auto()
    DONE = auto()
    FAILED = auto()


# =========================================================================
# Session
# =========================================================================

class Session:
    """One open connection: transport, key material and device state.

    Owned by the caller and handed to :class:`DigitalBitbox`; nothing here
    is global.
    """

    def __init__(self, transport: Transport, version: Optional[str] = None,
                 security: Optional[SecurityContext] = None):
        self.transport = transport
        self.security = security or SecurityContext()
        self.channel = SecureChannel(transport, self.security)
        self.state = DeviceState()
        self._version = version or parse_firmware_version(transport.serial_number)
        self._password: Optional[str] = None
        log.debug("session opened (firmware %s)", self._version or "unknown")

    @classmethod
    def open(cls, backend: Optional[str] = None, path: Any = None,
             read_timeout_ms: Optional[int] = None) -> Session:
        """Open the first Digital Bitbox (or *path*) with settings from :mod:`dbb.conf`."""
        from .conf import settings

        backend = backend or settings.backend
        if read_timeout_ms is None:
            read_timeout_ms = settings.read_timeout_ms
        if path is None:
            found = [d for d in find_devices() if d.backend == backend]
            if found:
                path = found[0].path
        hid: HidBackend = open_backend(backend, path)
        return cls(Transport(hid, read_timeout_ms=read_timeout_ms))

    @property
    def version(self) -> Optional[str]:
        return self._version

    @property
    def has_password(self) -> bool:
        return self._password is not None

    def set_version(self, version: str) -> None:
        """Record the firmware version once; later differing values are ignored."""
        if self._version is not None:
            if version_tuple(version) != version_tuple(self._version):
                log.warning("ignoring firmware version %s, already negotiated %s",
                            version, self._version)
            return
        self._version = version
        if self._password is not None:
            self.security.set_secret(self._password, version)

    def commit_password(self, password: str) -> None:
        """Derive and install key material for *password*."""
        self.security.set_secret(password, self._version)
        self._password = password

    def forget_password(self) -> None:
        self.security.clear()
        self._password = None

    def stretched_wallet_key(self) -> str:
        if self._password is None:
            raise PreconditionError("password required")
        return stretch_for_wallet_creation(self._password)

    def close(self) -> None:
        self.transport.close()


# =========================================================================
# Two-phase signing
# =========================================================================

class SignFlow:
    """``sign`` is sent twice.

    The first request carries keypath + hash and makes the device show its
    verification step; the second (empty) request returns the signatures
    and signing pubkeys.  The second is only sent after the first succeeded.
    """

    def __init__(self, channel: SecureChannel, keypath: str, hash_hex: str):
        self.channel = channel
        self.keypath = keypath
        self.hash_hex = hash_hex
        self.state = SignState.AWAITING_VERIFICATION
        self.verification: Optional[dict[str, Any]] = None

    def run(self) -> dict[str, Any]:
        request = {"sign": {"meta": "hash",
                            "data": [{"keypath": self.keypath, "hash": self.hash_hex}]}}
        try:
            self.verification = _checked(self.channel.send_secure(_dumps(request)))
            self.state = SignState.AWAITING_SIGNATURE
            log.debug("sign: verification received, requesting signature")

            reply = _checked(self.channel.send_secure(_dumps({"sign": ""})))
            if 'sign' not in reply:
                raise MalformedResponse("sign reply without signatures")
        except DbbError:
            self.state = SignState.FAILED
            raise
        self.state = SignState.DONE
        return reply


# =========================================================================
# Command client
# =========================================================================

class DigitalBitbox:
    """Named device operations on top of a :class:`Session`."""

    def __init__(self, session: Session):
        self.session = session
        self.last_sign: Optional[SignFlow] = None

    @property
    def state(self) -> DeviceState:
        return self.session.state

    @property
    def channel(self) -> SecureChannel:
        return self.session.channel

    def _run(self, name: str, fn: Callable[[], dict[str, Any]]) -> CommandResult:
        try:
            value = fn()
        except DbbError as e:
            log.warning("%s failed (%s): %s", name, e.kind, e)
            return CommandResult.failure(e)
        return CommandResult.success(value)

    # -- Plain (pre-authentication) -------------------------------------

    def ping(self) -> CommandResult:
        """``{"ping": ""}``; a reply of ``"password"`` means a password is set."""
        def op():
            reply = _checked(self.channel.send_plain(_dumps({"ping": ""})))
            if 'ping' not in reply:
                raise MalformedResponse("ping reply without 'ping'")
            self.state.initialized = reply['ping'] == PING_PASSWORD_SET
            return reply
        return self._run("ping", op)

    def set_password(self, password: str) -> CommandResult:
        """Use *password* for the channel without talking to the device."""
        def op():
            self.session.commit_password(password)
            return {}
        return self._run("set_password", op)

    def create_password(self, password: str) -> CommandResult:
        """Set the initial password on an uninitialized device."""
        def op():
            if not password:
                raise ValidationError("password must not be empty")
            reply = _checked(self.channel.send_plain(_dumps({"password": password})))
            self.session.commit_password(password)
            self.state.initialized = True
            return reply
        return self._run("create_password", op)

    # -- Secure ---------------------------------------------------------

    def update_password(self, password: str) -> CommandResult:
        """Change the device password; local keys switch only once the device acks."""
        def op():
            if not password:
                raise ValidationError("password must not be empty")
            committed = []

            def commit():
                self.session.commit_password(password)
                committed.append(True)

            reply = _checked(self.channel.send_secure(
                _dumps({"password": password}), before_decrypt=commit,
            ))
            if not committed:
                raise MalformedResponse("password change not acknowledged")
            return reply
        return self._run("update_password", op)

    def set_name(self, name: str) -> CommandResult:
        def op():
            validate_name(name)
            reply = _checked(self.channel.send_secure(_dumps({"name": name})))
            self.state.name = name
            return reply
        return self._run("set_name", op)

    def get_name(self) -> CommandResult:
        def op():
            reply = _checked(self.channel.send_secure(_dumps({"name": ""})))
            if 'name' not in reply:
                raise MalformedResponse("name reply without 'name'")
            self.state.name = reply['name']
            return reply
        return self._run("get_name", op)

    def device_info(self) -> CommandResult:
        """``{"device": "info"}``; the reply must carry a ``device`` object."""
        def op():
            reply = _checked(self.channel.send_secure(_dumps({"device": "info"})))
            device = reply.get('device')
            if not isinstance(device, dict):
                raise MalformedResponse("device info reply without 'device' object")
            self.state.seeded = bool(device.get('seeded', False))
            self.state.name = device.get('name', self.state.name)
            if device.get('version'):
                self.session.set_version(device['version'])
            return reply
        return self._run("device_info", op)

    def reset(self) -> CommandResult:
        """Erase the device and drop local key material."""
        def op():
            reply = _checked(self.channel.send_secure(_dumps({"reset": RESET_TOKEN})))
            self.session.forget_password()
            self.session.state = DeviceState()
            return reply
        return self._run("reset", op)

    def create_wallet(self, name: str) -> CommandResult:
        """Create a seed; *name* also names the backup PDF on the SD card."""
        def op():
            validate_name(name)
            key = self.session.stretched_wallet_key()
            seed = {"source": "create", "key": key, "filename": name + BACKUP_SUFFIX}
            reply = _checked(self.channel.send_secure(_dumps({"seed": seed})))
            self.state.seeded = True
            return reply
        return self._run("create_wallet", op)

    def get_extended_public_key(self, keypath: str) -> CommandResult:
        def op():
            if not keypath:
                raise ValidationError("keypath must not be empty")
            return _checked(self.channel.send_secure(_dumps({"xpub": keypath})))
        return self._run("get_extended_public_key", op)

    def sign(self, keypath: str, hash_hex: str) -> CommandResult:
        """Two-phase sign; see :class:`SignFlow`."""
        def op():
            if not keypath:
                raise ValidationError("keypath must not be empty")
            if not hash_hex or not _HEX_RE.match(hash_hex):
                raise ValidationError("hash must be a hex string")
            self.last_sign = SignFlow(self.channel, keypath, hash_hex)
            return self.last_sign.run()
        return self._run("sign", op)

    def send_raw(self, content: str, use_encryption: bool = True) -> CommandResult:
        """Send an arbitrary JSON command, encrypted or plain."""
        def op():
            if use_encryption:
                return _checked(self.channel.send_secure(content))
            return _checked(self.channel.send_plain(content))
        return self._run("send_raw", op)

    # -- Async / lifecycle ----------------------------------------------

    def call_async(self, operation: Callable[..., CommandResult], *args: Any,
                   callback: Optional[Callable[[CommandResult], None]] = None
                   ) -> threading.Thread:
        """Run ``operation(*args)`` in a worker thread and hand the result to *callback*.

        Exchanges stay serialized by the transport lock.
        """
        def worker():
            try:
                result = operation(*args)
            except Exception as e:
                log.exception("%s crashed", getattr(operation, "__name__", operation))
                result = CommandResult.failure(e)
            if callback is not None:
                callback(result)

        thread = threading.Thread(target=worker, daemon=True)
        thread.start()
        return thread

    def close(self) -> None:
        self.session.close()
