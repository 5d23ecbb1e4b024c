"""Key derivation and AES-CBC helpers for the secure channel.

Firmware before 5.0.0 ("legacy") encrypts with a single key::

    key = SHA256(SHA256(password))

Firmware 5.0.0+ ("authenticated") splits a SHA-512 of that into an
encryption key and an HMAC key::

    h = SHA512(SHA256(SHA256(password)))
    enc_key, auth_key = h[:32], h[32:]

The wallet-seed key is a separate, much heavier PBKDF2 stretch and is
never used on the channel.
"""
from __future__ import annotations

import hashlib
import logging
import os
import re
import threading
from dataclasses import dataclass, field
from typing import Optional, Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .constants import (
    AES_BLOCK_SIZE,
    AES_KEY_SIZE,
    AUTHENTICATED_MIN_VERSION,
    STRETCH_HASH,
    STRETCH_ITERATIONS,
    STRETCH_KEY_SIZE,
    STRETCH_SALT,
)
from .exceptions import DecryptionError, ValidationError

log = logging.getLogger(__name__)


# =========================================================================
# Hashing / derivation
# =========================================================================

def _to_bytes(data: Union[str, bytes]) -> bytes:
    return data.encode('utf-8') if isinstance(data, str) else bytes(data)


def double_sha256(data: Union[str, bytes]) -> bytes:
    """SHA256(SHA256(data))."""
    return hashlib.sha256(hashlib.sha256(_to_bytes(data)).digest()).digest()


def sha512(data: bytes) -> bytes:
    return hashlib.sha512(data).digest()


def derive_legacy_key(password: str) -> bytes:
    """32-byte encryption key for pre-5.0.0 firmware."""
    return double_sha256(password)


def derive_split_keys(password: str) -> tuple[bytes, bytes]:
    """``(enc_key, auth_key)`` for 5.0.0+ firmware."""
    h = sha512(double_sha256(password))
    return h[:AES_KEY_SIZE], h[AES_KEY_SIZE:]


def stretch_for_wallet_creation(password: str) -> str:
    """PBKDF2-HMAC-SHA512 stretch of *password* for the seed command (hex)."""
    return hashlib.pbkdf2_hmac(
        STRETCH_HASH, _to_bytes(password), STRETCH_SALT,
        STRETCH_ITERATIONS, STRETCH_KEY_SIZE,
    ).hex()


def version_tuple(version: Optional[str]) -> Optional[tuple[int, int, int]]:
    """``"v5.1.0"`` / ``"5.1.0"`` → ``(5, 1, 0)``; None if unparseable."""
    if not version:
        return None
    match = re.search(r"(\d+)\.(\d+)\.(\d+)", version)
    if match is None:
        return None
    major, minor, patch = (int(x) for x in match.groups())
    return (major, minor, patch)


def is_authenticated_version(version: Optional[str]) -> bool:
    parsed = version_tuple(version)
    return parsed is not None and parsed >= AUTHENTICATED_MIN_VERSION


# =========================================================================
# Security modes
# =========================================================================

@dataclass(frozen=True)
class LegacyMode:
    """Single key, no authentication tag."""
    enc_key: bytes = field(repr=False)

    authenticated = False


@dataclass(frozen=True)
class AuthenticatedMode:
    """Split keys, HMAC-SHA256 tag on every message."""
    enc_key: bytes = field(repr=False)
    auth_key: bytes = field(repr=False)

    authenticated = True


SecurityMode = Union[LegacyMode, AuthenticatedMode]


class SecurityContext:
    """Holds the current key material for one connection.

    The mode object is immutable and swapped in one assignment, so a
    reader always sees either the old keys or the new ones.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._mode: Optional[SecurityMode] = None

    @property
    def mode(self) -> Optional[SecurityMode]:
        with self._lock:
            return self._mode

    @property
    def has_secret(self) -> bool:
        return self.mode is not None

    @staticmethod
    def derive(password: str, version: Optional[str] = None) -> SecurityMode:
        """Build the mode for *password* without touching any state."""
        if not password:
            raise ValidationError("password must not be empty")
        if is_authenticated_version(version):
            enc_key, auth_key = derive_split_keys(password)
            return AuthenticatedMode(enc_key, auth_key)
        return LegacyMode(derive_legacy_key(password))

    def set_secret(self, password: str, version: Optional[str] = None) -> SecurityMode:
        """Derive keys for *password* and replace the current material."""
        mode = self.derive(password, version)
        self.install(mode)
        return mode

    def install(self, mode: SecurityMode) -> None:
        with self._lock:
            self._mode = mode
        log.debug("key material set (%s)", type(mode).__name__)

    def clear(self) -> None:
        with self._lock:
            self._mode = None
        log.debug("key material cleared")


# =========================================================================
# AES-256-CBC
# =========================================================================

def aes_encrypt(key: bytes, plaintext: bytes, iv: Optional[bytes] = None) -> bytes:
    """AES-256-CBC with PKCS#7 padding.  Returns ``IV || ciphertext``."""
    if iv is None:
        iv = os.urandom(AES_BLOCK_SIZE)
    padder = padding.PKCS7(AES_BLOCK_SIZE * 8).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return iv + encryptor.update(padded) + encryptor.finalize()


def aes_decrypt(key: bytes, data: bytes) -> bytes:
    """Inverse of :func:`aes_encrypt`.

    Raises:
        DecryptionError: wrong length or invalid padding.
    """
    if len(data) < 2 * AES_BLOCK_SIZE or len(data) % AES_BLOCK_SIZE:
        raise DecryptionError(f"invalid ciphertext length: {len(data)}")
    iv, ciphertext = data[:AES_BLOCK_SIZE], data[AES_BLOCK_SIZE:]
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(AES_BLOCK_SIZE * 8).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        raise DecryptionError("invalid padding") from e
