"""Plain and encrypted JSON exchanges with the device.

Secure wire body (before framing)::

    legacy:         base64( IV || AES-256-CBC(enc_key, json) )
    authenticated:  base64( IV || AES-256-CBC(enc_key, json) || HMAC-SHA256(auth_key, IV || ct) )

Encrypted replies come back as ``{"ciphertext": "<base64>"}`` in the same
layout.  Anything without a ``ciphertext`` field (device errors, replies
before a password exists) is returned untouched.
"""
from __future__ import annotations

import base64
import binascii
import hmac
import json
import logging
import threading
from typing import Any, Callable, Optional

from .constants import HMAC_SIZE, MAX_MESSAGE_SIZE
from .exceptions import (
    CryptoIntegrityError,
    DbbError,
    MalformedResponse,
    PreconditionError,
    ValidationError,
)
from .security import SecurityContext, SecurityMode, aes_decrypt, aes_encrypt
from .transport import Transport

log = logging.getLogger(__name__)


def parse_reply(raw: bytes) -> dict[str, Any]:
    """Decode a reply payload as a JSON object."""
    raw = raw.rstrip(b' \t\r\n\0')
    try:
        reply = json.loads(raw.decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedResponse(f"reply is not valid JSON: {e}") from e
    if not isinstance(reply, dict):
        raise MalformedResponse(f"reply is not a JSON object: {type(reply).__name__}")
    return reply


def _check_size(body: bytes) -> bytes:
    if len(body) > MAX_MESSAGE_SIZE:
        raise ValidationError(
            f"command too large: {len(body)} bytes on the wire, limit {MAX_MESSAGE_SIZE}"
        )
    return body


def seal(mode: SecurityMode, plaintext: bytes) -> bytes:
    """Encrypt (and in authenticated mode, tag) *plaintext*; returns base64."""
    message = aes_encrypt(mode.enc_key, plaintext)
    if mode.authenticated:
        message += hmac.digest(mode.auth_key, message, 'sha256')
    return base64.b64encode(message)


def unseal(mode: SecurityMode, ciphertext: Any) -> bytes:
    """Verify and decrypt a ``ciphertext`` reply field.

    In authenticated mode the tag is checked first; on mismatch the data is
    dropped without decryption.
    """
    if isinstance(ciphertext, list):
        ciphertext = ''.join(ciphertext)
    if not isinstance(ciphertext, str):
        raise MalformedResponse("ciphertext field is not a string")
    try:
        data = base64.b64decode(ciphertext, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedResponse(f"ciphertext is not base64: {e}") from e

    if mode.authenticated:
        if len(data) < HMAC_SIZE:
            raise CryptoIntegrityError("reply too short to carry an HMAC")
        data, tag = data[:-HMAC_SIZE], data[-HMAC_SIZE:]
        expected = hmac.digest(mode.auth_key, data, 'sha256')
        if not hmac.compare_digest(tag, expected):
            raise CryptoIntegrityError("message corrupt: HMAC mismatch")

    return aes_decrypt(mode.enc_key, data)


class SecureChannel:
    """Composes a :class:`Transport` with a :class:`SecurityContext`."""

    def __init__(self, transport: Transport, security: SecurityContext):
        self.transport = transport
        self.security = security

    def send_plain(self, json_text: str) -> dict[str, Any]:
        """Send unencrypted JSON and parse the reply."""
        log.debug("send plain (%d bytes)", len(json_text))
        raw = self.transport.transact(_check_size(json_text.encode('utf-8')))
        return parse_reply(raw)

    def send_secure(self, json_text: str,
                    before_decrypt: Optional[Callable[[], None]] = None) -> dict[str, Any]:
        """Encrypt *json_text*, exchange it, and return the decrypted reply.

        *before_decrypt* runs once the device has answered with an encrypted
        reply and before that reply is decrypted.  The reply is decrypted
        with the keys that were current when the request was sent.

        Raises:
            PreconditionError: no key material set (nothing is written).
            CryptoIntegrityError: reply HMAC mismatch.
            DecryptionError: reply padding/format invalid.
        """
        mode = self.security.mode
        if mode is None:
            raise PreconditionError("secret required")

        body = _check_size(seal(mode, json_text.encode('utf-8')))
        log.debug("send secure (%d bytes plain, %d on wire, %s)",
                  len(json_text), len(body), type(mode).__name__)
        reply = parse_reply(self.transport.transact(body))

        if 'ciphertext' not in reply:
            return reply

        if before_decrypt is not None:
            before_decrypt()
        return parse_reply(unseal(mode, reply['ciphertext']))

    def send_secure_async(
        self,
        json_text: str,
        callback: Callable[[dict[str, Any]], None],
        error_callback: Optional[Callable[[Exception], None]] = None,
        before_decrypt: Optional[Callable[[], None]] = None,
    ) -> threading.Thread:
        """Run :meth:`send_secure` in a worker thread.

        The precondition is checked before the thread starts.  Exactly one
        of *callback* / *error_callback* is invoked on completion; errors
        other than :class:`DbbError` are passed to *error_callback* too.
        """
        if not self.security.has_secret:
            raise PreconditionError("secret required")

        def worker():
            try:
                reply = self.send_secure(json_text, before_decrypt)
            except DbbError as e:
                log.error("secure send failed: %s", e)
                if error_callback is not None:
                    error_callback(e)
                return
            except Exception as e:
                log.exception("secure send crashed")
                if error_callback is not None:
                    error_callback(e)
                return
            callback(reply)

        thread = threading.Thread(target=worker, daemon=True)
        thread.start()
        return thread
